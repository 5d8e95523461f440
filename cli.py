"""CLI entry point for ani-reel.

    ani-reel play <locator> [-e N] [-q QUALITY] [--download-first]
    ani-reel download <locator> [-e N | --range A-B] [--workers N]
    ani-reel resolve <locator> [-e N]

A locator is an episode page URL, a URL template containing {n}, or an
opaque catalog ID (which needs an episode number).
"""

import argparse
import sys

from utils.exceptions import AniReelError, ConfigError
from utils.logging import configure_logging, get_logger, reset_logging


def _add_episode_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("locator", help="Episode page URL, URL with {n}, or catalog ID")
    parser.add_argument("--episode", "-e", type=int, help="Episode number (default: 1)")
    parser.add_argument("--series", "-s", help="Series name used for progress and folders")
    parser.add_argument("--mal-id", type=int, help="MyAnimeList ID, enables opening/ending skips")
    parser.add_argument("--quality", "-q", help="best, worst, interactive, or a label such as 720p")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ani-reel",
        description="Resolve, stream and download anime episodes from the terminal.",
    )
    parser.add_argument("--debug", "-d", action="store_true")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    play_parser = subparsers.add_parser("play", help="Play an episode with mpv")
    _add_episode_args(play_parser)
    play_parser.add_argument(
        "--download-first",
        action="store_true",
        help="Download the episode and play the local file",
    )
    play_parser.add_argument(
        "--after",
        type=int,
        default=12,
        metavar="N",
        help="Episodes after the chosen one offered for navigation (default: 12)",
    )
    play_parser.add_argument(
        "--before",
        type=int,
        default=0,
        metavar="N",
        help="Episodes before the chosen one offered for navigation (default: 0)",
    )

    download_parser = subparsers.add_parser("download", help="Download one episode or a range")
    _add_episode_args(download_parser)
    download_parser.add_argument("--range", "-r", metavar="A-B", help="Inclusive episode range")
    download_parser.add_argument("--workers", "-w", type=int, help="Ranged workers per file")

    resolve_parser = subparsers.add_parser("resolve", help="Print the stream variants of an episode")
    _add_episode_args(resolve_parser)

    return parser


def cli(argv: list[str] | None = None) -> int:
    """Entry point for CLI."""
    parser = build_parser()
    args = parser.parse_args(argv)

    reset_logging()
    configure_logging(debug=args.debug)
    logger = get_logger(__name__)

    if args.command is None:
        parser.print_help()
        return 2

    from commands import download, resolve, watch
    from commands.session import parse_range

    if getattr(args, "range", None):
        try:
            parse_range(args.range)
        except ConfigError as e:
            parser.error(str(e))

    handlers = {"play": watch, "download": download, "resolve": resolve}
    try:
        return handlers[args.command](args)
    except AniReelError as e:
        logger.error(f"{args.command} failed: {e}")
        print(f"✗ {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    sys.exit(cli())
