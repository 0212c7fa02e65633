"""Command-line interface for Marginalia review annotations."""

import argparse
import sys
from dataclasses import replace
from pathlib import Path

from . import __version__
from .errors import MarginaliaError
from .logging import setup_logging, get_logger

logger = get_logger(__name__)


def parse_size(value: str) -> tuple[int, int]:
    """Parse WIDTHxHEIGHT (e.g. 1920x1080)."""
    try:
        width, height = (int(part) for part in value.lower().split("x", 1))
    except ValueError as e:
        raise argparse.ArgumentTypeError(f"Expected WIDTHxHEIGHT, got {value!r}") from e
    if width <= 0 or height <= 0:
        raise argparse.ArgumentTypeError(f"Size must be positive: {value!r}")
    return width, height


def parse_time(value: str) -> float:
    """Parse a play time in seconds; rejects negative and non-finite values."""
    from .timing import parse_timestamp_seconds

    seconds = parse_timestamp_seconds(value)
    if seconds is None or seconds < 0:
        raise argparse.ArgumentTypeError(f"Expected a time in seconds, got {value!r}")
    return seconds


def open_session(args):
    """Build a review session for the signed-in user or a share-link guest."""
    from .access import Identity, ShareAccess
    from .config import get_api_url, get_share_credentials, get_timeout, require_token
    from .session import ReviewSession
    from .sync import SyncClient

    api_url = args.api_url or get_api_url()
    env_share, env_password = get_share_credentials()
    share_token = args.share or env_share

    if share_token:
        share = ShareAccess(token=share_token, password=args.password or env_password)
        client = SyncClient(api_url, Identity(share=share), timeout=get_timeout())
        client.identity = Identity(share=replace(share, access_type=client.share_access_type()))
        logger.debug("Guest access via share %s (%s)", share_token, client.identity.share.access_type.value)
    else:
        client = SyncClient(api_url, Identity(token=require_token()), timeout=get_timeout())

    versions = client.list_versions(args.video)
    start = args.video
    if getattr(args, "rev", None) is not None:
        matches = [v for v in versions if v.version_number == args.rev]
        if not matches:
            logger.error("Version %d not found (available: %s)", args.rev,
                         ", ".join(str(v.version_number) for v in versions))
            sys.exit(1)
        start = matches[0].id
    elif start is not None and not any(str(v.id) == str(start) for v in versions):
        start = None

    session = ReviewSession(
        client,
        versions,
        surface_size=getattr(args, "size", None) or (1280, 720),
        start_version=start,
    )
    if args.name:
        session.set_visitor_name(args.name)
    return session


def _seek(session, at):
    if at is not None:
        session.clock.seek(at)


def cmd_setup(args):
    """Verify dependencies and configuration."""
    from .config import check_dependencies, get_api_url, get_share_credentials, get_state_dir, get_token

    logger.info("=== Marginalia Setup ===")

    if not check_dependencies():
        logger.error("Dependencies missing. Run: pip install marginalia")
        sys.exit(1)
    logger.info("All dependencies installed.")

    logger.info("API URL: %s", get_api_url())
    logger.info("State directory: %s", get_state_dir())

    token = get_token()
    share_token, _ = get_share_credentials()
    if token:
        logger.info("Token: %s%s", "*" * 10, token[-4:])
    elif share_token:
        logger.info("Share link: %s (guest mode)", share_token)
    else:
        logger.warning("Neither MARGINALIA_TOKEN nor MARGINALIA_SHARE_TOKEN is set")
        logger.warning("Create a .env file with: MARGINALIA_TOKEN=your-token")

    logger.info("Setup complete!")


def cmd_comments(args):
    """List comment threads for a version."""
    from .timing import format_duration, format_timecode

    session = open_session(args)
    version = session.current_version
    threads = session.threads()

    logger.info("Version %d (%s): %s", version.version_number,
                format_duration(version.duration), version.approval_status.value)
    if not threads:
        logger.info("No comments yet.")
        return

    for thread in threads:
        parent = thread.parent
        if parent.timestamp is None:
            when = "general"
        elif parent.is_range:
            when = f"{format_timecode(parent.timestamp, version.frame_rate)}-" \
                   f"{format_timecode(parent.timestamp_end, version.frame_rate)}"
        else:
            when = format_timecode(parent.timestamp, version.frame_rate)
        mine = " *" if session.can_edit(parent) and session.is_guest else ""
        logger.info("[%s] #%s %s: %s%s", when, parent.id, parent.author or "Guest", parent.content, mine)
        for reply in thread.replies:
            logger.info("    #%s %s: %s", reply.id, reply.author or "Guest", reply.content)


def cmd_comment(args):
    """Add a comment at a time, over a range, or unanchored."""
    session = open_session(args)

    if args.range:
        start, end = args.range
        session.clock.seek(start)
        session.toggle_range()
        session.ranges.set_out(end)
        comment = session.submit_comment(args.text)
    elif args.general:
        comment = session.submit_comment(args.text, general=True)
    else:
        _seek(session, args.at)
        comment = session.submit_comment(args.text)

    logger.info("Comment #%s saved", comment.id)


def cmd_reply(args):
    """Reply to a top-level comment."""
    session = open_session(args)
    _seek(session, args.at)
    reply = session.reply(args.parent, args.text)
    logger.info("Reply #%s saved", reply.id)


def cmd_edit(args):
    """Change the text of a comment."""
    session = open_session(args)
    session.edit_comment(args.comment, args.text)


def cmd_delete(args):
    """Delete a comment and its replies."""
    session = open_session(args)
    session.delete_comment(args.comment)


def cmd_export(args):
    """Export comment threads to WebVTT, SRT or JSON."""
    from .export import export_threads

    session = open_session(args)
    output = Path(args.output)
    export_threads(session.threads(), output, format=args.format, version=session.current_version)


def _load_frame(path):
    if not path:
        return None
    from PIL import Image

    with Image.open(path) as img:
        img.load()
        return img.copy()


def cmd_render(args):
    """Render the drawings visible at one time to a PNG."""
    session = open_session(args)
    session.clock.seek(args.at)
    session.engine.redraw()

    drawings = session.engine.visible_drawings()
    output = Path(args.output)
    session.surface.save(output, _load_frame(args.frame))
    logger.info("Rendered %d drawing(s) at %.3fs to %s", len(drawings), session.clock.current_time, output)


def cmd_render_all(args):
    """Render one PNG per annotated moment."""
    from tqdm import tqdm

    session = open_session(args)
    output_dir = Path(args.output)
    output_dir.mkdir(parents=True, exist_ok=True)

    timestamps = sorted({d.timestamp for d in session.store.drawings})
    if not timestamps:
        logger.info("No drawings on this version.")
        return

    for i, timestamp in enumerate(tqdm(timestamps, desc="Rendering", disable=not sys.stderr.isatty()), 1):
        session.clock.seek(timestamp)
        session.engine.redraw()
        session.surface.save(output_dir / f"drawing_{i:03d}_{timestamp:.3f}s.png")

    logger.info("Rendered %d frame(s) to %s", len(timestamps), output_dir)


def cmd_approve(args):
    """Record an approval decision for a version."""
    session = open_session(args)
    session.approve(args.status, args.notes)


def cmd_history(args):
    """Show the approval history of a version."""
    session = open_session(args)
    records = session.history()
    if not records:
        logger.info("No reviews yet.")
        return

    logger.info("%-20s %-18s %-16s %s", "Date", "Status", "Reviewer", "Notes")
    logger.info("-" * 80)
    for record in records:
        created = (record.created_at or "")[:19]
        logger.info("%-20s %-18s %-16s %s", created, record.status.value, record.username or "", record.notes or "")


def cmd_stream(args):
    """Print a playable URL for a version."""
    session = open_session(args)
    info = session.stream_url(args.quality)
    logger.info("%s", info.url)
    if args.quality == "proxy" and not info.is_proxy:
        logger.info("Proxy not available, serving the original (%s)", info.mime)


def main():
    parser = argparse.ArgumentParser(
        prog="gloss",
        description="Marginalia - Time-anchored review comments and drawings",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  gloss setup                                   # Verify dependencies and credentials
  gloss comments 42                             # List threads on video 42
  gloss comment 42 "Fix the color" --at 12.3    # Point comment at 12.3s
  gloss comment 42 "Too long" --range 10 4      # Ranged comment (stored as 4-10s)
  gloss reply 42 7 "Agreed"                     # Reply to comment #7
  gloss export 42 -o notes.vtt                  # Export threads to WebVTT
  gloss render 42 --at 7.05 -o frame.png        # Render drawings at 7.05s
  gloss render-all 42 -o drawings/              # Render every annotated moment
  gloss approve 42 approved                     # Approve the current version

Guest access:
  gloss --share TOKEN --name Ana comments       # Read through a share link
  gloss --share TOKEN --name Ana comment "Nice" --at 3

Environment:
  MARGINALIA_API_URL    Backend URL (default: http://localhost:3000/api)
  MARGINALIA_TOKEN      Bearer credential for signed-in use
        """,
    )
    parser.add_argument("--version", action="version", version=f"marginalia {__version__}")
    parser.add_argument("--verbose", "-v", action="store_true", help="Show debug output")
    parser.add_argument("--quiet", "-q", action="store_true", help="Show only errors")
    parser.add_argument("--log-file", metavar="FILE", help="Write logs to file")
    parser.add_argument("--api-url", help="Backend URL (overrides MARGINALIA_API_URL)")
    parser.add_argument("--share", metavar="TOKEN", help="Use a share link (guest mode)")
    parser.add_argument("--password", help="Share link password")
    parser.add_argument("--name", help="Display name for guest comments")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    subparsers.add_parser("setup", help="Verify dependencies and configuration")

    def video_parser(name, help_text):
        sub = subparsers.add_parser(name, help=help_text)
        sub.add_argument("video", nargs="?", help="Video id (optional with --share)")
        sub.add_argument("--rev", type=int, metavar="N", help="Version number to open (default: newest)")
        return sub

    video_parser("comments", "List comment threads")

    comment_parser = video_parser("comment", "Add a comment")
    comment_parser.add_argument("text", help="Comment text")
    anchor = comment_parser.add_mutually_exclusive_group()
    anchor.add_argument("--at", type=parse_time, metavar="SECONDS", help="Anchor time (default: 0)")
    anchor.add_argument("--range", type=parse_time, nargs=2, metavar=("IN", "OUT"), help="Anchor to an in/out range")
    anchor.add_argument("--general", action="store_true", help="Not tied to any time")

    reply_parser = video_parser("reply", "Reply to a comment")
    reply_parser.add_argument("parent", help="Id of the comment to reply to")
    reply_parser.add_argument("text", help="Reply text")
    reply_parser.add_argument("--at", type=parse_time, metavar="SECONDS", help="Play time to anchor the reply")

    edit_parser = video_parser("edit", "Edit a comment")
    edit_parser.add_argument("comment", help="Comment id")
    edit_parser.add_argument("text", help="New text")

    delete_parser = video_parser("delete", "Delete a comment and its replies")
    delete_parser.add_argument("comment", help="Comment id")

    export_parser = video_parser("export", "Export comments")
    export_parser.add_argument("--output", "-o", required=True, help="Output file (.vtt, .srt or .json)")
    export_parser.add_argument("--format", "-f", choices=["vtt", "srt", "json"], help="Override the format")

    render_parser = video_parser("render", "Render drawings at a time")
    render_parser.add_argument("--at", type=parse_time, required=True, metavar="SECONDS", help="Play time")
    render_parser.add_argument("--output", "-o", required=True, help="Output PNG")
    render_parser.add_argument("--frame", help="Video frame image to draw over")
    render_parser.add_argument("--size", type=parse_size, help="Overlay size WIDTHxHEIGHT (default: 1280x720)")

    render_all_parser = video_parser("render-all", "Render every annotated moment")
    render_all_parser.add_argument("--output", "-o", required=True, help="Output directory")
    render_all_parser.add_argument("--size", type=parse_size, help="Overlay size WIDTHxHEIGHT (default: 1280x720)")

    approve_parser = video_parser("approve", "Approve a version or request changes")
    approve_parser.add_argument("status", choices=["approved", "changes_requested", "pending"])
    approve_parser.add_argument("--notes", help="Reviewer notes")

    video_parser("history", "Show approval history")

    stream_parser = video_parser("stream", "Print a playable URL")
    stream_parser.add_argument("--quality", choices=["proxy", "original"], default="proxy")

    args = parser.parse_args()

    setup_logging(
        verbose=getattr(args, "verbose", False),
        quiet=getattr(args, "quiet", False),
        log_file=getattr(args, "log_file", None),
    )

    if args.command is None:
        parser.print_help()
        return

    commands = {
        "setup": cmd_setup,
        "comments": cmd_comments,
        "comment": cmd_comment,
        "reply": cmd_reply,
        "edit": cmd_edit,
        "delete": cmd_delete,
        "export": cmd_export,
        "render": cmd_render,
        "render-all": cmd_render_all,
        "approve": cmd_approve,
        "history": cmd_history,
        "stream": cmd_stream,
    }

    if args.command != "setup" and not args.share and args.video is None:
        from .config import get_share_credentials

        if get_share_credentials()[0] is None:
            logger.error("A video id is required unless a share link is used")
            sys.exit(1)

    try:
        commands[args.command](args)
    except MarginaliaError as e:
        logger.error("%s", e)
        sys.exit(1)


if __name__ == "__main__":
    main()
