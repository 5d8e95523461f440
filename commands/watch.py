"""Play command handler.

Resolves the requested episode, applies the quality policy, optionally
downloads it first, then hands it to mpv and keeps the navigation menu
up until the user quits.
"""

from commands.session import build_episodes, build_orchestrator
from services.orchestrator import SessionPolicy
from ui.components import console
from utils.exceptions import AniReelError
from utils.logging import get_logger
from utils.video_player import format_position

logger = get_logger(__name__)


def watch(args) -> int:
    """Handle `ani-reel play`. Returns the process exit code."""
    episode_number = args.episode if args.episode is not None else 1
    first = max(1, episode_number - args.before)
    last = episode_number + args.after
    episodes = build_episodes(args, first, last)
    start = next((ep for ep in episodes if ep.number == episode_number), episodes[0])

    policy = SessionPolicy.DOWNLOAD_FIRST if args.download_first else SessionPolicy.STREAM
    orchestrator = build_orchestrator(args, policy)
    try:
        result = orchestrator.run(episodes, start)
    except AniReelError as e:
        logger.error(f"Playback failed: {e}")
        console.print(f"[error]✗ {e}[/error]")
        return 1
    except KeyboardInterrupt:
        return 130
    finally:
        orchestrator.close()

    if result is not None and result.position > 0:
        console.print(
            f"[menu.muted]Stopped at {format_position(result.position)}"
            f" of {format_position(result.duration)}[/menu.muted]"
        )
    return 0
