"""mpv playback sessions driven over JSON IPC.

A PlaybackController spawns one mpv process per episode and moves its
PlaybackSession through:

    STARTING -> AWAITING_FIRST_FRAME -> PLAYING <-> PAUSED -> ENDED | QUIT

While a session plays, a tracker thread pushes the position to the
progress store, skip times are sent to mpv as script options or chapter
markers, and a saved position can be resumed. Every command goes through
the session's MpvIpcClient, so only one request is in flight at a time.
"""

import subprocess
import threading
import time
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from typing import NamedTuple

from models.config import PlayerSettings, settings
from models.models import EpisodeRef, PlaybackState, SkipTimes, SourceKind
from services.presence import PresenceSink, PresenceSummary, publish_safely
from services.progress_store import ProgressStore
from services.skip_service import SkipTimesProvider
from utils.exceptions import AniReelError, PlayerProcessError
from utils.logging import get_logger
from utils.mpv_ipc import MpvIpcClient, cleanup_ipc_socket, create_ipc_socket_path
from utils.polling import Sleep, poll_until

logger = get_logger(__name__)

# Source families whose players understand chapter markers better than script-opts
CHAPTER_SOURCES = {"allanime"}

ConfirmPrompt = Callable[[str], bool]


class PlaybackResult(NamedTuple):
    """How a session ended.

    Attributes:
        state: ENDED when mpv exited by itself, QUIT when stopped
        position: Last known position in seconds
        duration: Duration in seconds (floored when mpv reported none)
        exit_code: mpv exit code, None if it had to be killed
    """

    state: PlaybackState
    position: float
    duration: float
    exit_code: int | None = None


def format_position(seconds: float) -> str:
    minutes, secs = divmod(int(seconds), 60)
    return f"{minutes}m {secs}s"


def build_chapters(times: SkipTimes, duration: float) -> list[dict]:
    """Chapter markers around the opening and ending."""
    chapters: list[dict] = []
    if times.op:
        if times.op.start > 0:
            chapters.append({"title": "Pre-Opening", "time": 0.0})
        chapters.append({"title": "Opening", "time": float(times.op.start)})
        chapters.append({"title": "Main", "time": float(times.op.end)})
    elif times.ed:
        chapters.append({"title": "Main", "time": 0.0})
    if times.ed:
        chapters.append({"title": "Ending", "time": float(times.ed.start)})
        if not duration or times.ed.end < duration:
            chapters.append({"title": "Post-Credits", "time": float(times.ed.end)})
    return chapters


def build_skip_opts(times: SkipTimes) -> str:
    """mpv script-opts value, e.g. "skip_op=85-175,skip_ed=1290-1380"."""
    opts = []
    if times.op:
        opts.append(f"skip_op={times.op.as_option()}")
    if times.ed:
        opts.append(f"skip_ed={times.ed.as_option()}")
    return ",".join(opts)


class PlaybackSession:
    """State of one mpv process.

    The socket path is unique per process. position and duration are in
    seconds; duration is fetched once after the first frame.
    """

    def __init__(
        self,
        episode: EpisodeRef,
        url: str,
        socket_path: str,
        process: subprocess.Popen,
        ipc: MpvIpcClient,
        kind: SourceKind = SourceKind.DIRECT,
    ) -> None:
        self.episode = episode
        self.url = url
        self.socket_path = socket_path
        self.process = process
        self.ipc = ipc
        self.kind = kind
        self.state = PlaybackState.STARTING
        self.position = 0.0
        self.duration = 0.0
        self.skip_times = SkipTimes()
        self.audio_track: int | None = None
        self.subtitle_track: int | None = None
        self.paused = False
        self.resume_at: float | None = None
        self.stop_event = threading.Event()
        self.tracker: threading.Thread | None = None
        self.updates_sent = 0
        self._lock = threading.Lock()

    @property
    def alive(self) -> bool:
        return self.process.poll() is None

    @property
    def finished(self) -> bool:
        return self.state in (PlaybackState.ENDED, PlaybackState.QUIT)

    def transition(self, state: PlaybackState) -> bool:
        """Move to state unless the session already finished."""
        with self._lock:
            if self.finished:
                return False
            logger.debug(f"Session {self.socket_path}: {self.state.value} -> {state.value}")
            self.state = state
            return True

    def __repr__(self) -> str:
        return f"PlaybackSession({self.episode.display_name}, {self.state.value}, {int(self.position)}s)"


class PlaybackController:
    """Spawn and drive mpv sessions.

    Args:
        player: Player settings (binary, args, cadences, thresholds)
        progress_store: Where positions are saved and read back for resume
        skip_provider: Source of opening/ending intervals
        presence: Now-playing sink
        confirm: Yes/no prompt used for the resume question; None never resumes
        popen: Process factory
        ipc_factory: Builds the IPC client for a socket path
        sleep: Sleep function used by every polling loop
    """

    def __init__(
        self,
        player: PlayerSettings | None = None,
        progress_store: ProgressStore | None = None,
        skip_provider: SkipTimesProvider | None = None,
        presence: PresenceSink | None = None,
        confirm: ConfirmPrompt | None = None,
        popen: Callable[..., subprocess.Popen] = subprocess.Popen,
        ipc_factory: Callable[[str], MpvIpcClient] = MpvIpcClient,
        sleep: Sleep = time.sleep,
        skip_wait_timeout: float | None = None,
    ) -> None:
        self.player = player or settings.player
        self.progress_store = progress_store
        self.skip_provider = skip_provider
        self.presence = presence
        self.confirm = confirm
        self.popen = popen
        self.ipc_factory = ipc_factory
        self.sleep = sleep
        self.skip_wait_timeout = skip_wait_timeout if skip_wait_timeout is not None else settings.skip.wait_timeout
        self._background = ThreadPoolExecutor(max_workers=2, thread_name_prefix="playback")

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def build_args(
        self,
        url: str,
        socket_path: str,
        episode: EpisodeRef,
        player_args: list[str] | None = None,
        headers: dict[str, str] | None = None,
        start_at: float | None = None,
    ) -> list[str]:
        args = [
            self.player.mpv_binary,
            "--no-terminal",
            "--quiet",
            f"--input-ipc-server={socket_path}",
            f"--force-media-title={episode.display_name}",
            *self.player.extra_args,
            *(player_args or []),
        ]
        if headers:
            fields = ",".join(f"{k}: {v}" for k, v in headers.items())
            args.append(f"--http-header-fields={fields}")
        if start_at:
            args.append(f"--start=+{int(start_at)}")
        args.append(url)
        return args

    def saved_position(self, episode: EpisodeRef) -> float | None:
        """Position worth resuming from, or None."""
        if self.progress_store is None:
            return None
        try:
            saved = self.progress_store.get(episode.series, episode.episode_key)
        except AniReelError as e:
            logger.warning(f"Could not read progress for {episode.display_name}: {e}")
            return None
        if not saved:
            return None
        position, duration = saved
        if position < self.player.resume_threshold:
            return None
        if duration and position >= duration - self.player.resume_threshold:
            return None
        return position

    def ask_resume(self, episode: EpisodeRef) -> float | None:
        position = self.saved_position(episode)
        if position is None or self.confirm is None:
            return None
        label = episode.number if episode.number is not None else episode.display_name
        if self.confirm(f"Resume episode {label} from {format_position(position)}?"):
            return position
        return None

    def start(
        self,
        url: str,
        episode: EpisodeRef,
        player_args: list[str] | None = None,
        *,
        kind: SourceKind = SourceKind.DIRECT,
        headers: dict[str, str] | None = None,
    ) -> PlaybackSession:
        """Spawn mpv for url and wait until it is playing.

        Raises:
            PlayerProcessError: mpv could not be spawned or its socket never appeared
        """
        resume_at = self.ask_resume(episode)
        socket_path = create_ipc_socket_path()
        defer_seek = kind == SourceKind.PLAYLIST
        args = self.build_args(
            url,
            socket_path,
            episode,
            player_args,
            headers,
            start_at=None if defer_seek else resume_at,
        )

        logger.debug(f"Launching: {' '.join(args)}")
        try:
            process = self.popen(args, stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL)
        except FileNotFoundError as e:
            raise PlayerProcessError(f"{self.player.mpv_binary} not found in PATH. Please install mpv.") from e
        except OSError as e:
            raise PlayerProcessError(f"Failed to launch mpv: {e}") from e

        session = PlaybackSession(episode, url, socket_path, process, self.ipc_factory(socket_path), kind)
        session.resume_at = resume_at
        skip_future = self._fetch_skip_times(episode)

        try:
            session.ipc.connect(
                wait=self.player.socket_wait,
                alive=lambda: session.alive,
                sleep=self.sleep,
            )
            session.transition(PlaybackState.AWAITING_FIRST_FRAME)
            self._publish(session)
            self.wait_first_frame(session)
            if session.finished or session.stop_event.is_set():
                return session

            session.transition(PlaybackState.PLAYING)
            self._publish(session)
            self._apply_skip_future(session, skip_future)

            if defer_seek and resume_at:
                if not self.seek_verified(session, resume_at):
                    logger.warning(f"Resume seek to {int(resume_at)}s could not be verified")
        except Exception:
            self.stop(session)
            raise

        self.start_tracker(session)
        return session

    def wait_first_frame(self, session: PlaybackSession) -> None:
        """Poll time-pos until mpv renders a frame, then read the duration once."""
        position = poll_until(
            lambda: self.get_property(session, "time-pos"),
            attempts=self.player.first_frame_attempts,
            interval=self.player.first_frame_interval,
            sleep=self.sleep,
            should_stop=lambda: not session.alive or session.stop_event.is_set(),
        )
        if position is None:
            if not session.alive:
                self._finish(session, PlaybackState.ENDED)
                return
            if session.stop_event.is_set():
                return
            raise PlayerProcessError(f"No frame from mpv after {self.player.first_frame_attempts} polls")
        session.position = float(position)

        duration = self.get_property(session, "duration")
        if duration is None or float(duration) < 1:
            duration = session.episode.duration_hint or self.player.duration_floor
        session.duration = float(duration)

    def wait(self, session: PlaybackSession, poll: float = 0.5) -> PlaybackResult:
        """Block until mpv exits by itself or the session is stopped."""
        while session.alive and not session.stop_event.is_set():
            self.sleep(poll)
        if not session.finished:
            self._finish(session, PlaybackState.ENDED)
        return self.result(session)

    def stop(self, session: PlaybackSession) -> PlaybackResult:
        """Quit mpv and release everything. Safe to call in any state, repeatedly."""
        session.stop_event.set()
        self._join_tracker(session)

        if session.alive and session.ipc.connected:
            try:
                session.ipc.command("quit")
            except PlayerProcessError as e:
                logger.debug(f"quit over IPC failed: {e}")

        if session.alive:
            try:
                session.process.wait(timeout=self.player.quit_timeout)
            except subprocess.TimeoutExpired:
                logger.warning("mpv ignored quit, terminating")
                session.process.terminate()
                try:
                    session.process.wait(timeout=self.player.quit_timeout)
                except subprocess.TimeoutExpired:
                    session.process.kill()

        self._finish(session, PlaybackState.QUIT)
        return self.result(session)

    def _finish(self, session: PlaybackSession, state: PlaybackState) -> None:
        session.stop_event.set()
        self._join_tracker(session)
        if session.transition(state):
            self._save_progress(session)
            self._publish(session)
        session.ipc.close()
        cleanup_ipc_socket(session.socket_path)

    @staticmethod
    def result(session: PlaybackSession) -> PlaybackResult:
        return PlaybackResult(
            state=session.state,
            position=session.position,
            duration=session.duration,
            exit_code=session.process.poll(),
        )

    def shutdown(self) -> None:
        self._background.shutdown(wait=False, cancel_futures=True)

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def send(self, session: PlaybackSession, command: list):
        """Send a raw mpv command and return its data (None on mpv-side error).

        Raises:
            PlayerProcessError: Channel closed or mpv unresponsive
        """
        reply = session.ipc.command(*command)
        if reply.get("error", "success") != "success":
            logger.debug(f"mpv rejected {command}: {reply.get('error')}")
            return None
        return reply.get("data")

    def get_property(self, session: PlaybackSession, name: str):
        """Read a property; None when unavailable or when mpv is gone."""
        try:
            return self.send(session, ["get_property", name])
        except PlayerProcessError as e:
            logger.debug(f"get_property {name} failed: {e}")
            return None

    def set_property(self, session: PlaybackSession, name: str, value) -> None:
        self.send(session, ["set_property", name, value])

    def seek(self, session: PlaybackSession, seconds: float) -> None:
        self.send(session, ["seek", float(seconds), "absolute"])

    def seek_verified(self, session: PlaybackSession, target: float) -> bool:
        """Seek and confirm the live position landed near target.

        Retries with a growing delay; playlists often ignore early seeks.
        """
        for attempt in range(1, self.player.seek_retries + 1):
            try:
                self.seek(session, target)
            except PlayerProcessError as e:
                logger.debug(f"Seek attempt {attempt} failed: {e}")
                return False
            self.sleep(0.5 * attempt)
            position = self.get_property(session, "time-pos")
            if position is not None and abs(float(position) - target) <= self.player.seek_tolerance:
                session.position = float(position)
                return True
        return False

    def toggle_pause(self, session: PlaybackSession) -> bool:
        """Flip pause and return the new paused flag."""
        paused = bool(self.get_property(session, "pause"))
        self.set_property(session, "pause", not paused)
        session.paused = not paused
        session.transition(PlaybackState.PAUSED if session.paused else PlaybackState.PLAYING)
        self._publish(session)
        return session.paused

    def set_audio_track(self, session: PlaybackSession, track_id: int) -> None:
        self.set_property(session, "aid", track_id)
        session.audio_track = track_id

    def set_subtitle_track(self, session: PlaybackSession, track_id: int | None) -> None:
        """Select a subtitle track; None turns subtitles off."""
        self.set_property(session, "sid", track_id if track_id is not None else "no")
        session.subtitle_track = track_id

    def skip_intro(self, session: PlaybackSession) -> bool:
        """Jump to the end of the opening, if known."""
        if session.skip_times.op is None:
            return False
        self.seek(session, session.skip_times.op.end)
        self.send(session, ["show-text", "Opening skipped", 2000])
        return True

    # ------------------------------------------------------------------
    # Skip times
    # ------------------------------------------------------------------

    def _fetch_skip_times(self, episode: EpisodeRef) -> Future | None:
        if self.skip_provider is None:
            return None
        return self._background.submit(self.skip_provider.fetch, episode)

    def _apply_skip_future(self, session: PlaybackSession, future: Future | None) -> None:
        if future is None:
            return
        try:
            times = future.result(timeout=self.skip_wait_timeout)
        except FutureTimeout:
            logger.debug("Skip times not ready in time, continuing without them")
            return
        except Exception as e:
            logger.debug(f"Skip times unavailable: {e}")
            return
        self.apply_skip_times(session, times)

    def apply_skip_times(self, session: PlaybackSession, times: SkipTimes) -> None:
        """Hand skip intervals to mpv."""
        if times.empty:
            return
        session.skip_times = times
        try:
            if session.episode.source in CHAPTER_SOURCES:
                self.set_property(session, "chapter-list", build_chapters(times, session.duration))
            else:
                self.set_property(session, "script-opts", build_skip_opts(times))
        except PlayerProcessError as e:
            logger.warning(f"Could not send skip times to mpv: {e}")

    # ------------------------------------------------------------------
    # Progress tracking
    # ------------------------------------------------------------------

    def tracker_interval(self, updates_sent: int) -> float:
        if updates_sent < self.player.tracker_fast_updates:
            return self.player.tracker_fast_interval
        return self.player.tracker_slow_interval

    def start_tracker(self, session: PlaybackSession) -> None:
        session.tracker = threading.Thread(
            target=self._track,
            args=(session,),
            name=f"tracker-{session.episode.episode_key}",
            daemon=True,
        )
        session.tracker.start()

    def track_once(self, session: PlaybackSession) -> bool:
        """Read position and pause state, save them, return False when mpv is gone."""
        if not session.alive:
            return False
        position = self.get_property(session, "time-pos")
        if position is None:
            return session.alive

        session.position = float(position)
        paused = self.get_property(session, "pause")
        if paused is not None and bool(paused) != session.paused:
            session.paused = bool(paused)
            session.transition(PlaybackState.PAUSED if session.paused else PlaybackState.PLAYING)

        self._save_progress(session)
        self._publish(session)
        session.updates_sent += 1
        return True

    def _track(self, session: PlaybackSession) -> None:
        while not session.stop_event.wait(self.tracker_interval(session.updates_sent)):
            if not self.track_once(session):
                break

    def _join_tracker(self, session: PlaybackSession) -> None:
        tracker = session.tracker
        if tracker is not None and tracker is not threading.current_thread():
            tracker.join(timeout=5)

    def _save_progress(self, session: PlaybackSession) -> None:
        if self.progress_store is None or session.position <= 0:
            return
        try:
            self.progress_store.put(
                session.episode.series,
                session.episode.episode_key,
                session.position,
                session.duration,
                session.episode.display_name,
            )
        except AniReelError as e:
            logger.warning(f"Could not save progress: {e}")

    def _publish(self, session: PlaybackSession) -> None:
        publish_safely(
            self.presence,
            PresenceSummary.for_episode(session.episode, session.state, session.position, session.duration),
        )
