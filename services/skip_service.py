"""Opening/ending skip times.

SkipTimesProvider is the contract the playback controller consumes.
AniSkipProvider implements it against the public AniSkip API, keyed by
MyAnimeList ID and episode number.

Downloaded episodes get a "<name>.skips.json" sidecar so the intervals
are available offline.
"""

from datetime import datetime
from pathlib import Path
from typing import Protocol

import requests

from models.config import SkipSettings, settings
from models.models import EpisodeRef, SkipInterval, SkipTimes
from utils.exceptions import NotFound, ParseError
from utils.http import fetch, new_session
from utils.logging import get_logger
from utils.persistence import JSONStore

logger = get_logger(__name__)


class SkipTimesProvider(Protocol):
    def fetch(self, episode: EpisodeRef) -> SkipTimes:
        """Skip times for an episode; empty SkipTimes when unknown.

        Raises:
            NetworkError, ParseError
        """
        ...


def parse_skip_response(payload: dict) -> SkipTimes:
    """Convert an AniSkip v1 response to SkipTimes.

    Raises:
        ParseError: Payload is not in the documented shape
    """
    if not isinstance(payload, dict):
        raise ParseError("AniSkip response is not an object")
    if not payload.get("found"):
        return SkipTimes()

    times = SkipTimes()
    try:
        for result in payload.get("results", []):
            kind = result.get("skip_type")
            if kind not in ("op", "ed"):
                continue
            interval = result["interval"]
            setattr(
                times,
                kind,
                SkipInterval(start=float(interval["start_time"]), end=float(interval["end_time"])),
            )
    except (KeyError, TypeError, ValueError) as e:
        raise ParseError(f"Malformed AniSkip result: {e}") from e
    return times


class AniSkipProvider:
    """Fetch skip times from api.aniskip.com."""

    def __init__(
        self,
        session: requests.Session | None = None,
        skip: SkipSettings | None = None,
    ) -> None:
        self.session = session or new_session()
        self.skip = skip or settings.skip

    def fetch(self, episode: EpisodeRef) -> SkipTimes:
        if not self.skip.enabled or episode.mal_id is None or episode.number is None:
            return SkipTimes()

        url = f"{self.skip.api_url.rstrip('/')}/{episode.mal_id}/{episode.number}"
        try:
            resp = fetch(self.session, url, params=[("types", "op"), ("types", "ed")])
        except NotFound:
            return SkipTimes()

        try:
            payload = resp.json()
        except ValueError as e:
            raise ParseError(f"AniSkip returned non-JSON for {url}") from e

        times = parse_skip_response(payload)
        logger.debug(f"Skip times for MAL {episode.mal_id} ep {episode.number}: {times}")
        return times


def sidecar_path(video_path: Path) -> Path:
    video_path = Path(video_path)
    return video_path.with_name(video_path.stem + ".skips.json")


def write_skip_sidecar(video_path: Path, times: SkipTimes, episode: EpisodeRef) -> Path | None:
    """Write skip times next to a downloaded file.

    Returns:
        The sidecar path, or None when there is nothing to write
    """
    if times.empty:
        return None

    path = sidecar_path(video_path)
    JSONStore(path).save(
        {
            "format": "aniskip",
            "op_start": int(times.op.start) if times.op else 0,
            "op_end": int(times.op.end) if times.op else 0,
            "ed_start": int(times.ed.start) if times.ed else 0,
            "ed_end": int(times.ed.end) if times.ed else 0,
            "updated": datetime.now().isoformat(timespec="seconds"),
            "episode": episode.number,
            "source": episode.source,
        }
    )
    return path


def read_skip_sidecar(video_path: Path) -> SkipTimes:
    """Skip times stored next to a downloaded file, empty if none."""
    path = sidecar_path(video_path)
    data = JSONStore(path).load({})
    if not data or not isinstance(data, dict):
        return SkipTimes()

    try:
        op = ed = None
        if data.get("op_end"):
            op = SkipInterval(start=data.get("op_start", 0), end=data["op_end"])
        if data.get("ed_end"):
            ed = SkipInterval(start=data.get("ed_start", 0), end=data["ed_end"])
    except ValueError as e:
        # pydantic ValidationError is a ValueError
        logger.warning(f"Ignoring invalid skip sidecar {path}: {e}")
        return SkipTimes()
    return SkipTimes(op=op, ed=ed)


class SidecarSkipProvider:
    """Skip times for local files, read from their sidecar."""

    def __init__(self, video_path: Path, fallback: SkipTimesProvider | None = None) -> None:
        self.video_path = Path(video_path)
        self.fallback = fallback

    def fetch(self, episode: EpisodeRef) -> SkipTimes:
        times = read_skip_sidecar(self.video_path)
        if times.empty and self.fallback is not None:
            return self.fallback.fetch(episode)
        return times
