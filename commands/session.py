"""Shared wiring for the play, download and resolve commands.

Turns parsed CLI arguments into EpisodeRef lists and a fully wired
Orchestrator. Nothing here is global: each command builds its own.
"""

from models.config import settings
from models.models import EpisodeRef
from scrapers.id_source import IdSource, is_likely_opaque_id
from scrapers.resolver import StreamResolver
from services.download_service import DownloadManager
from services.orchestrator import Orchestrator, SessionPolicy
from services.presence import LogPresenceSink
from services.progress_store import create_progress_store
from services.quality_service import QualitySelector
from services.skip_service import AniSkipProvider
from ui.components import action_prompt, confirm, episode_prompt, interactive, quality_prompt
from utils import cache_manager
from utils.exceptions import ConfigError
from utils.http import new_session
from utils.video_player import PlaybackController

PLACEHOLDERS = ("{n}", "{episode}")


def parse_range(value: str) -> tuple[int, int]:
    """Parse "3-7" or "5" into an inclusive (start, end) pair.

    Raises:
        ConfigError: Malformed or reversed range
    """
    start, sep, end = value.partition("-")
    try:
        first = int(start)
        last = int(end) if sep else first
    except ValueError as e:
        raise ConfigError(f"Invalid episode range: {value!r}") from e
    if first < 0 or last < first:
        raise ConfigError(f"Invalid episode range: {value!r}")
    return first, last


def series_key(locator: str, series: str | None) -> str:
    if series:
        return series
    if is_likely_opaque_id(locator):
        return locator
    trimmed = locator.split("?")[0].rstrip("/")
    for placeholder in PLACEHOLDERS:
        trimmed = trimmed.replace("/" + placeholder, "").replace(placeholder, "")
    return trimmed.rsplit("/", 1)[-1] or "anime"


def build_episodes(args, first: int = 1, last: int | None = None) -> list[EpisodeRef]:
    """Episode list for a locator.

    Opaque IDs and URLs containing {n} expand to one episode per number
    in first..last. A plain page URL is a single episode, numbered -e or first.
    """
    locator = args.locator
    series = series_key(locator, getattr(args, "series", None))
    common = {
        "series": series,
        "source": IdSource.name if is_likely_opaque_id(locator) else getattr(args, "source", None),
        "mal_id": getattr(args, "mal_id", None),
    }
    last = last if last is not None else first

    if is_likely_opaque_id(locator):
        return [EpisodeRef(source_id=locator, number=n, **common) for n in range(first, last + 1)]

    if any(p in locator for p in PLACEHOLDERS):
        episodes = []
        for n in range(first, last + 1):
            url = locator
            for placeholder in PLACEHOLDERS:
                url = url.replace(placeholder, str(n))
            episodes.append(EpisodeRef(url=url, number=n, **common))
        return episodes

    number = getattr(args, "episode", None)
    return [EpisodeRef(url=locator, number=number if number is not None else first, **common)]


def build_orchestrator(args, policy: SessionPolicy = SessionPolicy.STREAM) -> Orchestrator:
    """Wire resolver, selector, controller and downloader from settings and args."""
    session = new_session()
    progress_store = create_progress_store()
    skip_provider = AniSkipProvider(session)
    prompt = interactive()

    workers = getattr(args, "workers", None)
    download_settings = settings.download
    if workers:
        download_settings = download_settings.model_copy(update={"workers": workers})

    controller = PlaybackController(
        progress_store=progress_store,
        skip_provider=skip_provider,
        presence=LogPresenceSink(),
        confirm=confirm if prompt else None,
    )
    return Orchestrator(
        StreamResolver.default(session),
        QualitySelector(quality_prompt if prompt else None),
        controller,
        DownloadManager(session, download_settings),
        policy=policy,
        quality=getattr(args, "quality", None),
        skip_provider=skip_provider,
        url_cache=cache_manager.get_cache(),
        choose_action=action_prompt if prompt else None,
        choose_episode=episode_prompt if prompt else None,
    )
