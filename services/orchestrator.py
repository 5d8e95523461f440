"""Session orchestrator: resolve, pick quality, optionally download, play.

One Orchestrator serves one run. It owns the current playback session,
the quality selector (and with it the remembered quality), the preloader
for the next episode and every stop signal, so nothing lives in module
globals. Whether episodes are streamed or downloaded first is a policy
flag, not a separate code path.
"""

from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from enum import Enum
from pathlib import Path
from typing import NamedTuple

from diskcache import FanoutCache

from models.config import settings
from models.models import EpisodeRef, SourceKind, kind_for_url
from scrapers.resolver import StreamResolver
from services.download_service import BatchProgress, BatchResult, DownloadManager, episode_path
from services.quality_service import INTERACTIVE, QualitySelector
from services.skip_service import SidecarSkipProvider, SkipTimesProvider, write_skip_sidecar
from utils import cache_manager
from utils.exceptions import AniReelError, ConfigError
from utils.logging import get_logger
from utils.video_player import PlaybackController, PlaybackResult, PlaybackSession

logger = get_logger(__name__)


class SessionPolicy(str, Enum):
    STREAM = "stream"
    DOWNLOAD_FIRST = "download_first"


class PlaybackAction(str, Enum):
    """Choices offered while an episode plays."""

    NEXT = "Next episode"
    PREVIOUS = "Previous episode"
    SELECT = "Select episode"
    SKIP_INTRO = "Skip opening"
    PAUSE = "Pause/Resume"
    REPLAY = "Replay"
    QUIT = "Quit"


class PreparedStream(NamedTuple):
    """What the player needs for one episode."""

    url: str
    kind: SourceKind
    headers: dict[str, str] | None = None
    local: bool = False


# Receives the episode and offered actions, returns the chosen action or None
ActionPrompt = Callable[[EpisodeRef, list[PlaybackAction]], PlaybackAction | None]
EpisodePrompt = Callable[[list[EpisodeRef]], EpisodeRef | None]


class Orchestrator:
    """Compose source resolution, quality choice, downloads and playback.

    Args:
        resolver: Locator -> StreamDescriptor
        selector: Quality selector, kept for the whole run
        controller: Playback controller
        downloader: Required for the download-first policy and batches
        policy: Stream directly or download before playing
        quality: Quality policy ("best", "worst", "interactive", or a label)
        skip_provider: Skip-time source, also used for download sidecars
        url_cache: Cache for preloaded URLs; None disables preloading
        choose_action: Prompt shown while an episode plays
        choose_episode: Prompt for the "select" action
    """

    def __init__(
        self,
        resolver: StreamResolver,
        selector: QualitySelector,
        controller: PlaybackController,
        downloader: DownloadManager | None = None,
        *,
        policy: SessionPolicy = SessionPolicy.STREAM,
        quality: str | None = None,
        skip_provider: SkipTimesProvider | None = None,
        url_cache: FanoutCache | None = None,
        choose_action: ActionPrompt | None = None,
        choose_episode: EpisodePrompt | None = None,
    ) -> None:
        if policy == SessionPolicy.DOWNLOAD_FIRST and downloader is None:
            raise ConfigError("download-first policy needs a DownloadManager")

        self.resolver = resolver
        self.selector = selector
        self.controller = controller
        self.downloader = downloader
        self.policy = policy
        self.quality = quality or settings.quality.policy
        self.skip_provider = skip_provider
        self.url_cache = url_cache
        self.choose_action = choose_action
        self.choose_episode = choose_episode

        self.session: PlaybackSession | None = None
        self.episodes: list[EpisodeRef] = []
        self._preload: Future | None = None
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="preload")

    # ------------------------------------------------------------------
    # Single episode
    # ------------------------------------------------------------------

    def choose_url(self, episode: EpisodeRef) -> tuple[str, dict[str, str] | None]:
        """Resolve an episode and apply the quality policy."""
        descriptor = self.resolver.resolve_episode(episode)
        return self.selector.select(descriptor, self.quality), descriptor.headers

    def prepare(self, episode: EpisodeRef) -> PreparedStream:
        """Find the URL to play, downloading first when the policy says so.

        Raises:
            NotFound, NetworkError, ParseError, UnsupportedSource, DownloadError
        """
        if self.policy == SessionPolicy.DOWNLOAD_FIRST:
            path = episode_path(episode, self.downloader.settings)
            if not path.exists():
                url, headers = self.choose_url(episode)
                self.downloader.download(url, path, headers=headers)
                self.write_sidecar(episode, path)
            return PreparedStream(str(path), SourceKind.DIRECT, None, local=True)

        cached = self._cached_stream(episode)
        if cached:
            logger.debug(f"Using preloaded URL for {episode.display_name}")
            # Signed URLs are single use
            cache_manager.forget_stream_url(episode.series, episode.episode_key, self.url_cache)
            url, headers = cached
            return PreparedStream(url, kind_for_url(url), headers)

        url, headers = self.choose_url(episode)
        return PreparedStream(url, kind_for_url(url), headers)

    def play(self, episode: EpisodeRef, player_args: list[str] | None = None) -> PlaybackSession:
        """Stop whatever is playing, then start episode.

        Raises:
            AniReelError: Resolution, download or player spawn failed
        """
        self.stop()
        prepared = self.prepare(episode)

        controller = self.controller
        if prepared.local and self.skip_provider is not None:
            controller.skip_provider = SidecarSkipProvider(Path(prepared.url), self.skip_provider)

        session = controller.start(
            prepared.url,
            episode,
            player_args,
            kind=prepared.kind,
            headers=prepared.headers,
        )
        self.session = session
        if not session.finished:
            self.preload_next(self.upcoming(episode))
        return session

    def stop(self) -> PlaybackResult | None:
        """Quit the current session, if any, and cancel preloading."""
        if self._preload is not None:
            self._preload.cancel()
            self._preload = None
        if self.session is None:
            return None
        session, self.session = self.session, None
        return self.controller.stop(session)

    def close(self) -> None:
        self.stop()
        self._executor.shutdown(wait=False, cancel_futures=True)
        self.controller.shutdown()

    # ------------------------------------------------------------------
    # Preloading
    # ------------------------------------------------------------------

    def _cached_stream(self, episode: EpisodeRef) -> tuple[str, dict[str, str] | None] | None:
        if self.url_cache is None:
            return None
        return cache_manager.get_cached_stream(episode.series, episode.episode_key, self.url_cache)

    def upcoming(self, episode: EpisodeRef) -> EpisodeRef | None:
        """Episode after this one: from the run's list, or by number for opaque IDs."""
        following = self._neighbour(self.episodes, episode, 1)
        if following is None and episode.url is None and episode.number is not None:
            following = episode.with_number(episode.number + 1)
        return following

    def preload_next(self, upcoming: EpisodeRef | None) -> Future | None:
        """Resolve an upcoming episode in the background and cache its URL."""
        if self.url_cache is None or upcoming is None or self.policy != SessionPolicy.STREAM:
            return None

        if self.quality == INTERACTIVE and self.selector.remembered is None:
            return None

        def work() -> str | None:
            if self._cached_stream(upcoming):
                return None
            try:
                url, headers = self.choose_url(upcoming)
            except AniReelError as e:
                logger.debug(f"Preload of {upcoming.display_name} failed: {e}")
                return None
            cache_manager.save_stream_url(
                upcoming.series, upcoming.episode_key, url, self.url_cache, headers=headers
            )
            return url

        self._preload = self._executor.submit(work)
        return self._preload

    # ------------------------------------------------------------------
    # Interactive loop
    # ------------------------------------------------------------------

    @staticmethod
    def _neighbour(episodes: list[EpisodeRef], current: EpisodeRef, step: int) -> EpisodeRef | None:
        keys = [ep.episode_key for ep in episodes]
        if current.episode_key not in keys:
            return None
        index = keys.index(current.episode_key) + step
        if 0 <= index < len(episodes):
            return episodes[index]
        return None

    def available_actions(self, episodes: list[EpisodeRef], current: EpisodeRef) -> list[PlaybackAction]:
        actions = []
        if self._neighbour(episodes, current, 1):
            actions.append(PlaybackAction.NEXT)
        if self._neighbour(episodes, current, -1):
            actions.append(PlaybackAction.PREVIOUS)
        if len(episodes) > 1 and self.choose_episode is not None:
            actions.append(PlaybackAction.SELECT)
        if self.session is not None and not self.session.finished:
            if self.session.skip_times.op is not None:
                actions.append(PlaybackAction.SKIP_INTRO)
            actions.append(PlaybackAction.PAUSE)
        actions += [PlaybackAction.REPLAY, PlaybackAction.QUIT]
        return actions

    def run(self, episodes: list[EpisodeRef], start: EpisodeRef) -> PlaybackResult | None:
        """Play start, then follow the user's navigation until they quit.

        Without an action prompt, plays start to the end and returns.
        A failure to resolve or play an episode is reported and the menu
        comes back; the player is always stopped before returning.
        """
        self.episodes = list(episodes)
        current = start
        last: PlaybackResult | None = None
        try:
            self.play(current)
            if self.choose_action is None:
                return self.controller.wait(self.session)

            while True:
                action = self.choose_action(current, self.available_actions(episodes, current))
                target: EpisodeRef | None = None

                if action in (None, PlaybackAction.QUIT):
                    return self.stop()
                if action == PlaybackAction.SKIP_INTRO and self.session is not None:
                    self.controller.skip_intro(self.session)
                    continue
                if action == PlaybackAction.PAUSE and self.session is not None:
                    self.controller.toggle_pause(self.session)
                    continue
                if action == PlaybackAction.NEXT:
                    target = self._neighbour(episodes, current, 1)
                elif action == PlaybackAction.PREVIOUS:
                    target = self._neighbour(episodes, current, -1)
                elif action == PlaybackAction.SELECT and self.choose_episode is not None:
                    target = self.choose_episode(episodes)
                elif action == PlaybackAction.REPLAY:
                    target = current

                if target is None:
                    continue

                last = self.stop()
                try:
                    self.play(target)
                    current = target
                except AniReelError as e:
                    logger.error(f"Could not play {target.display_name}: {e}")
                    if self.session is not None:
                        self.stop()
        finally:
            if self.session is not None:
                last = self.stop()
        return last

    # ------------------------------------------------------------------
    # Downloads
    # ------------------------------------------------------------------

    def write_sidecar(self, episode: EpisodeRef, path: Path) -> None:
        if self.skip_provider is None:
            return
        try:
            write_skip_sidecar(path, self.skip_provider.fetch(episode), episode)
        except AniReelError as e:
            logger.debug(f"No skip sidecar for {episode.display_name}: {e}")

    def download_range(
        self,
        episodes: list[EpisodeRef],
        start: int,
        end: int,
        on_progress: Callable[[BatchProgress], None] | None = None,
    ) -> BatchResult:
        """Download episodes start..end with the run's quality policy."""
        if self.downloader is None:
            raise ConfigError("Batch downloads need a DownloadManager")
        return self.downloader.download_range(
            episodes,
            start,
            end,
            lambda ep: self.choose_url(ep)[0],
            on_progress=on_progress,
            on_complete=self.write_sidecar,
        )
