"""Tests for session.py - user actions over the wired engine."""

from unittest.mock import MagicMock

import pytest

from marginalia.access import OWNERSHIP_KEY, VISITOR_NAME_KEY, Identity, ShareAccess, ShareAccessType
from marginalia.errors import PermissionDenied, SyncError, ValidationError
from marginalia.models import ApprovalStatus, Comment, Drawing, DrawingStatus, Point, is_temp_id
from marginalia.ranges import RangeState
from marginalia.session import DEFAULT_APPROVAL_NOTES
from marginalia.store import StoreState


@pytest.fixture
def notifier():
    return MagicMock()


@pytest.fixture
def client(reviewer, make_comment, fake_client):
    comments = [
        make_comment(id=1, video_id=2, content="early", timestamp=5.0),
        make_comment(id=2, video_id=2, content="late", timestamp=40.0),
        make_comment(id=3, video_id=1, content="old version", timestamp=1.0),
    ]
    return fake_client(reviewer, comments=comments)


@pytest.fixture
def session(client, make_session, notifier):
    return make_session(client, notifier=notifier)


@pytest.fixture
def guest_client(guest, fake_client):
    return fake_client(guest, comments=[Comment(id=1, video_id=2, content="someone else", timestamp=2.0)])


@pytest.fixture
def guest_session(guest_client, make_session, notifier):
    return make_session(guest_client, notifier=notifier, visitor_name="  Ana  ")


def draw(session, x=100, y=50):
    session.set_drawing_mode(True)
    session.engine.pointer_down(x, y)
    session.engine.pointer_move(x + 20, y)
    return session.engine.pointer_up()


class TestSessionSetup:
    """Tests for construction and version switching."""

    def test_opens_newest_version(self, session):
        assert session.current_version.version_number == 2
        assert session.store.state == StoreState.READY
        assert [c.id for c in session.store.comments] == [1, 2]

    def test_start_version(self, client, make_session):
        session = make_session(client, start_version=1)
        assert session.current_version.id == 1

    def test_needs_versions(self, client, storage):
        from marginalia.session import ReviewSession

        with pytest.raises(ValueError):
            ReviewSession(client, [], storage=storage)

    def test_switch_version_replaces_annotations(self, session):
        session.switch_version(1)
        assert [c.id for c in session.store.comments] == [3]
        assert session.clock.duration == 60.0

    def test_switch_version_leaves_modes(self, session):
        session.toggle_range()
        session.set_drawing_mode(True)
        session.switch_version(1)
        assert session.ranges.state == RangeState.IDLE
        assert session.engine.drawing_mode is False

    def test_unknown_version(self, session):
        with pytest.raises(ValidationError):
            session.switch_version(99)


class TestSubmitComment:
    """Tests for posting top-level comments."""

    def test_point_comment_sorted_by_time(self, session):
        session.clock.seek(12.3)
        comment = session.submit_comment("fix color")

        assert comment.timestamp == 12.3
        assert [t.parent.content for t in session.threads()] == ["early", "fix color", "late"]

    def test_temp_record_replaced(self, session):
        comment = session.submit_comment("new")
        assert not is_temp_id(comment.id)
        assert not any(is_temp_id(c.id) for c in session.store.comments)

    def test_range_comment_normalized(self, session, client):
        session.clock.seek(10.0)
        session.toggle_range()
        session.ranges.set_out(4.0)
        comment = session.submit_comment("too long")

        assert (comment.timestamp, comment.timestamp_end) == (4.0, 10.0)
        assert session.ranges.state == RangeState.IDLE

    def test_general_comment(self, session):
        session.clock.seek(20.0)
        comment = session.submit_comment("overall looks good", general=True)
        assert comment.timestamp is None
        assert session.threads()[-1].parent.content == "overall looks good"

    def test_general_comment_cannot_have_range(self, session):
        session.toggle_range()
        with pytest.raises(ValidationError):
            session.submit_comment("x", general=True)

    @pytest.mark.parametrize("content", ["", "   ", None])
    def test_empty_content_rejected(self, session, client, content):
        with pytest.raises(ValidationError):
            session.submit_comment(content)
        assert not any(call[0] == "create_comment" for call in client.calls)

    def test_content_trimmed(self, session):
        assert session.submit_comment("  spaced  ").content == "spaced"

    def test_failure_rolls_back_and_notifies(self, session, client, notifier):
        client.fail["create_comment"] = SyncError("Server exploded", 500)
        with pytest.raises(SyncError):
            session.submit_comment("lost")
        assert [c.content for c in session.store.comments] == ["early", "late"]
        notifier.error.assert_called_once_with("Server exploded")

    def test_failed_range_submit_keeps_selection(self, session, client):
        session.toggle_range()
        client.fail["create_comment"] = SyncError("nope")
        with pytest.raises(SyncError):
            session.submit_comment("retry me")
        assert session.ranges.is_selecting


class TestReplies:
    """Tests for replying to comments."""

    def test_reply_anchored_at_play_time(self, session):
        session.clock.seek(33.0)
        reply = session.reply(1, "agreed")
        assert reply.parent_comment_id == 1
        assert reply.timestamp == 33.0
        assert reply.timestamp_end is None
        assert [r.content for r in session.threads()[0].replies] == ["agreed"]

    def test_missing_parent(self, session):
        with pytest.raises(ValidationError):
            session.reply(404, "hello?")

    def test_reply_to_reply_rejected(self, session):
        reply = session.reply(1, "first")
        with pytest.raises(ValidationError):
            session.reply(reply.id, "nested")

    def test_reply_cannot_cover_range(self, session):
        session.toggle_range()
        with pytest.raises(ValidationError):
            session.reply(1, "ranged reply")


class TestEditDelete:
    """Tests for editing and deleting comments."""

    def test_edit(self, session):
        session.edit_comment(1, "earlier")
        assert session.store.get_comment(1).content == "earlier"

    def test_edit_failure_restores_text(self, session, client):
        client.fail["update_comment"] = SyncError("Failed to update comment")
        with pytest.raises(SyncError):
            session.edit_comment(1, "earlier")
        assert session.store.get_comment(1).content == "early"

    def test_delete_removes_replies(self, session):
        session.reply(1, "reply one")
        session.reply(1, "reply two")
        session.delete_comment(1)
        assert [c.content for c in session.store.comments] == ["late"]

    def test_unknown_comment(self, session):
        with pytest.raises(ValidationError):
            session.delete_comment(999)


class TestGuestSession:
    """Tests for share-link guests."""

    def test_visitor_name_trimmed_and_persisted(self, guest_session, storage):
        comment = guest_session.submit_comment("hi")
        assert comment.author == "Ana"
        assert storage.get(VISITOR_NAME_KEY) == "Ana"

    def test_visitor_name_restored(self, guest_client, make_session, storage):
        storage.set(VISITOR_NAME_KEY, "Bea")
        assert make_session(guest_client).visitor_name == "Bea"

    def test_name_required(self, guest_client, make_session):
        session = make_session(guest_client)
        with pytest.raises(ValidationError):
            session.submit_comment("anonymous")

    def test_view_only_share(self, fake_client, make_session):
        identity = Identity(share=ShareAccess("s1", ShareAccessType.VIEW))
        session = make_session(fake_client(identity), visitor_name="Ana")
        assert session.capabilities.can_comment is False
        with pytest.raises(PermissionDenied):
            session.submit_comment("hello")
        with pytest.raises(PermissionDenied):
            session.set_drawing_mode(True)

    def test_guest_owns_what_they_create(self, guest_session, storage):
        mine = guest_session.submit_comment("mine")
        others = guest_session.store.get_comment(1)

        assert guest_session.can_edit(mine) and guest_session.can_delete(mine)
        assert not guest_session.can_edit(others)
        assert storage.get(OWNERSHIP_KEY) == {str(mine.id): f"cap-{mine.id}"}

    def test_guest_cannot_touch_others(self, guest_session):
        with pytest.raises(PermissionDenied):
            guest_session.edit_comment(1, "vandalism")
        with pytest.raises(PermissionDenied):
            guest_session.delete_comment(1)

    def test_capability_sent_on_edit_and_delete(self, guest_session, guest_client, storage):
        mine = guest_session.submit_comment("mine")
        guest_session.edit_comment(mine.id, "still mine")
        guest_session.delete_comment(mine.id)
        assert guest_client.capabilities_sent == [f"cap-{mine.id}", f"cap-{mine.id}"]
        assert storage.get(OWNERSHIP_KEY) == {}

    def test_delete_forgets_owned_replies(self, guest_session, storage):
        mine = guest_session.submit_comment("mine")
        reply = guest_session.reply(mine.id, "and another thing")
        assert str(reply.id) in storage.get(OWNERSHIP_KEY)

        guest_session.delete_comment(mine.id)

        assert storage.get(OWNERSHIP_KEY) == {}
        assert not guest_session.can_delete(reply)

    def test_reply_ownership(self, guest_session):
        reply = guest_session.reply(1, "answer")
        assert guest_session.can_delete(reply)

    def test_guest_cannot_approve(self, guest_session):
        assert guest_session.capabilities.can_approve is False
        with pytest.raises(PermissionDenied):
            guest_session.approve("approved")
        with pytest.raises(PermissionDenied):
            guest_session.history()


class TestSessionDrawings:
    """Tests for stroke persistence through the session."""

    def test_signed_in_stroke_saved_immediately(self, session, client):
        session.clock.seek(7.05)
        draw(session)
        drawing = session.store.drawings[-1]
        assert drawing.status == DrawingStatus.COMMITTED
        assert not is_temp_id(drawing.id)
        assert drawing.timestamp == 7.05
        assert drawing.video_id == 2
        assert any(call[0] == "create_drawing" for call in client.calls)

    def test_signed_in_stroke_failure_dropped(self, session, client, notifier):
        client.fail["create_drawing"] = SyncError("Failed to save drawing")
        draw(session)
        assert session.store.drawings == []
        notifier.error.assert_called_with("Failed to save drawing")

    def test_guest_stroke_waits_for_comment(self, guest_session, guest_client):
        draw(guest_session)
        assert [d.status for d in guest_session.store.drawings] == [DrawingStatus.PENDING]
        assert not any(call[0] == "create_drawing" for call in guest_client.calls)

        guest_session.submit_comment("see the circle")
        assert [d.status for d in guest_session.store.drawings] == [DrawingStatus.COMMITTED]

    def test_guest_stroke_stays_pending_when_save_fails(self, guest_session, guest_client):
        draw(guest_session)
        guest_client.fail["create_drawing"] = SyncError("Failed to save drawing")
        guest_session.submit_comment("see the circle")
        assert [d.status for d in guest_session.store.drawings] == [DrawingStatus.PENDING]

    def test_stroke_visible_only_near_its_time(self, session):
        session.clock.seek(7.05)
        draw(session)
        session.clock.seek(7.1)
        assert len(session.engine.visible_drawings()) == 1
        session.clock.seek(7.3)
        assert session.engine.visible_drawings() == []

    def test_undo_last_stroke(self, session, client):
        draw(session, x=50)
        second = draw(session, x=120)
        removed = session.undo_last_stroke()
        assert removed.points == second.points
        assert len(session.store.drawings) == 1
        assert client.calls[-1] == ("delete_drawing", removed.id)

    def test_undo_with_nothing_on_frame(self, session):
        assert session.undo_last_stroke() is None

    def test_undo_pending_guest_stroke_is_local(self, guest_session, guest_client):
        draw(guest_session)
        guest_session.undo_last_stroke()
        assert guest_session.store.drawings == []
        assert not any(call[0] == "delete_drawing" for call in guest_client.calls)

    def test_clear_frame(self, session):
        draw(session, x=50)
        draw(session, x=120)
        session.clock.seek(30.0)
        draw(session)
        session.clock.seek(0.0)
        cleared = session.clear_frame()
        assert len(cleared) == 2
        assert [d.timestamp for d in session.store.drawings] == [30.0]

    def test_clear_frame_failure_restores(self, session, client):
        draw(session)
        client.fail["delete_drawing"] = SyncError("Failed to undo stroke")
        with pytest.raises(SyncError):
            session.clear_frame()
        assert len(session.store.drawings) == 1

    def test_resize_redraws(self, session):
        session.store.drawings = [Drawing(id=1, timestamp=0.0, points=[Point(0.5, 0.5)])]
        session.resize(400, 300)
        assert session.surface.size == (400, 300)
        assert session.surface.image.getpixel((200, 150))[3] > 0


class TestPlaybackShortcuts:
    """Tests for keyboard shortcuts."""

    def test_frame_and_second_steps(self, session):
        session.clock.seek(10.0)
        assert session.handle_key("ArrowRight")
        assert session.clock.current_time == pytest.approx(10.0 + 1 / 30)
        session.handle_key("ArrowLeft", shift=True)
        assert session.clock.current_time == pytest.approx(9.0 + 1 / 30)

    def test_play_pause_and_jog(self, session):
        session.handle_key(" ")
        assert session.clock.is_playing
        session.handle_key("K")
        assert not session.clock.is_playing
        session.clock.seek(5.0)
        session.handle_key("j")
        assert session.clock.current_time == pytest.approx(4.9)

    def test_ignored_while_typing(self, session):
        assert session.handle_key(" ", input_focused=True) is False
        assert not session.clock.is_playing

    def test_unknown_key(self, session):
        assert session.handle_key("q") is False

    def test_clamped_at_start(self, session):
        session.handle_key("ArrowLeft", shift=True)
        assert session.clock.current_time == 0.0


class TestApprovalAndMedia:
    """Tests for approvals, history and stream URLs."""

    def test_approve_with_default_notes(self, session, client):
        record = session.approve("approved")
        payload = client.calls[-1][1]
        assert payload.notes == DEFAULT_APPROVAL_NOTES[ApprovalStatus.APPROVED]
        assert record.status == ApprovalStatus.APPROVED
        assert session.current_version.approval_status == ApprovalStatus.APPROVED

    def test_request_changes_with_notes(self, session, client):
        session.approve("changes_requested", "Shorten the intro")
        assert client.calls[-1][1].notes == "Shorten the intro"
        assert [r.status for r in session.history()] == [ApprovalStatus.CHANGES_REQUESTED]

    def test_unknown_status(self, session):
        with pytest.raises(ValidationError):
            session.approve("maybe")

    def test_approval_failure_keeps_status(self, session, client):
        client.fail["submit_review"] = SyncError("Failed to save approval")
        with pytest.raises(SyncError):
            session.approve("approved")
        assert session.current_version.approval_status == ApprovalStatus.PENDING

    def test_stream_url(self, session):
        info = session.stream_url("original")
        assert info.url.endswith("/2/original.mp4")
        assert info.is_proxy is False

    def test_stream_quality_validated(self, session):
        with pytest.raises(ValidationError):
            session.stream_url("4k")

    def test_markers(self, session):
        session.clock.seek(10.0)
        session.toggle_range()
        session.ranges.set_out(20.0)
        comment = session.submit_comment("range")
        markers = {m.comment_id: m for m in session.markers(active_comment_id=comment.id)}
        assert markers[comment.id].width == pytest.approx(10.0 / 60.0)
        assert markers[comment.id].is_active
        assert markers[1].left == pytest.approx(5.0 / 60.0)

    def test_active_comments(self, session):
        session.clock.seek(40.05)
        assert [c.id for c in session.active_comments()] == [2]
