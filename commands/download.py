"""Download command handler: one episode or an inclusive range."""

from commands.session import build_episodes, build_orchestrator, parse_range
from services.download_service import episode_path
from services.orchestrator import SessionPolicy
from ui.components import batch_progress, console, download_progress
from utils.exceptions import AniReelError
from utils.logging import get_logger

logger = get_logger(__name__)


def download(args) -> int:
    """Handle `ani-reel download`. Returns the process exit code."""
    if args.range:
        first, last = parse_range(args.range)
    else:
        first = last = args.episode if args.episode is not None else 1

    episodes = build_episodes(args, first, last)
    orchestrator = build_orchestrator(args, SessionPolicy.STREAM)
    try:
        if len(episodes) == 1:
            return _download_one(orchestrator, episodes[0])

        with batch_progress(f"{episodes[0].series} {first}-{last}") as update:
            result = orchestrator.download_range(episodes, first, last, on_progress=update)
    except AniReelError as e:
        logger.error(f"Download failed: {e}")
        console.print(f"[error]✗ {e}[/error]")
        return 1
    except KeyboardInterrupt:
        console.print("[warning]Download interrupted[/warning]")
        return 130
    finally:
        orchestrator.close()

    if result.completed:
        console.print(f"[success]✓ Downloaded: {', '.join(map(str, result.completed))}[/success]")
    if result.skipped:
        console.print(f"[menu.muted]Already on disk: {', '.join(map(str, result.skipped))}[/menu.muted]")
    for number, reason in result.failed.items():
        console.print(f"[error]✗ Episode {number}: {reason}[/error]")
    return 1 if result.failed else 0


def _download_one(orchestrator, episode) -> int:
    path = episode_path(episode, orchestrator.downloader.settings)
    if path.exists() and path.stat().st_size > 0:
        console.print(f"[menu.muted]Already on disk: {path}[/menu.muted]")
        return 0

    url, headers = orchestrator.choose_url(episode)
    with download_progress(episode.display_name) as update:
        orchestrator.downloader.download(url, path, headers=headers, on_progress=update)
    orchestrator.write_sidecar(episode, path)
    console.print(f"[success]✓ Saved {path}[/success]")
    return 0
