"""Progress store: where playback positions are remembered.

The playback controller only needs two calls, get() and put(). Any object
providing them can be passed in. Two backings ship with ani-reel:
- JSONProgressStore: one JSON document (utils.persistence.JSONStore)
- DiskCacheProgressStore: SQLite through diskcache

Use create_progress_store() to build the configured one.
"""

from datetime import datetime
from typing import Protocol

from diskcache import Cache

from models.config import ProgressSettings, settings
from models.models import EpisodeKey, ProgressRecord, SeriesKey
from utils.exceptions import ConfigError
from utils.logging import get_logger
from utils.persistence import JSONStore

logger = get_logger(__name__)


class ProgressStore(Protocol):
    """Minimal contract used by playback and the orchestrator."""

    def get(self, series: SeriesKey, episode: EpisodeKey) -> tuple[float, float] | None:
        """Return (position, duration) in seconds, or None if nothing was saved."""
        ...

    def put(
        self,
        series: SeriesKey,
        episode: EpisodeKey,
        position: float,
        duration: float,
        title: str | None = None,
    ) -> None:
        """Save a position; the backing stamps the update time."""
        ...


def _record(position: float, duration: float, title: str | None) -> ProgressRecord:
    return ProgressRecord(
        position=max(0.0, float(position)),
        duration=max(0.0, float(duration)),
        title=title,
        updated_at=datetime.now(),
    )


class JSONProgressStore:
    """Progress kept in a JSON document: {series: {episode: record}}."""

    def __init__(self, file_path) -> None:
        self.store = JSONStore(file_path)

    def get_record(self, series: SeriesKey, episode: EpisodeKey) -> ProgressRecord | None:
        raw = self.store.load({}).get(series, {}).get(str(episode))
        if raw is None:
            return None
        return ProgressRecord.model_validate(raw)

    def get(self, series: SeriesKey, episode: EpisodeKey) -> tuple[float, float] | None:
        record = self.get_record(series, episode)
        return (record.position, record.duration) if record else None

    def put(
        self,
        series: SeriesKey,
        episode: EpisodeKey,
        position: float,
        duration: float,
        title: str | None = None,
    ) -> None:
        record = _record(position, duration, title).model_dump(mode="json")

        def apply(data: dict) -> None:
            data.setdefault(series, {})[str(episode)] = record

        self.store.update(apply)

    def records(self, series: SeriesKey) -> dict[str, ProgressRecord]:
        """Every saved episode of a series."""
        return {
            key: ProgressRecord.model_validate(raw)
            for key, raw in self.store.load({}).get(series, {}).items()
        }


class DiskCacheProgressStore:
    """Progress kept in a diskcache SQLite directory, one key per episode."""

    def __init__(self, directory) -> None:
        self.cache = Cache(directory=str(directory), timeout=1.0)

    @staticmethod
    def _key(series: SeriesKey, episode: EpisodeKey) -> str:
        return f"progress:{series}:{episode}"

    def get_record(self, series: SeriesKey, episode: EpisodeKey) -> ProgressRecord | None:
        raw = self.cache.get(self._key(series, episode))
        if raw is None:
            return None
        return ProgressRecord.model_validate(raw)

    def get(self, series: SeriesKey, episode: EpisodeKey) -> tuple[float, float] | None:
        record = self.get_record(series, episode)
        return (record.position, record.duration) if record else None

    def put(
        self,
        series: SeriesKey,
        episode: EpisodeKey,
        position: float,
        duration: float,
        title: str | None = None,
    ) -> None:
        record = _record(position, duration, title)
        self.cache.set(self._key(series, episode), record.model_dump(mode="json"))

    def close(self) -> None:
        self.cache.close()


def create_progress_store(progress: ProgressSettings | None = None) -> ProgressStore:
    """Build the backing selected in settings.

    Raises:
        ConfigError: Unknown backend name
    """
    progress = progress or settings.progress
    if progress.backend == "json":
        return JSONProgressStore(progress.file)
    if progress.backend == "diskcache":
        return DiskCacheProgressStore(progress.cache_dir)
    raise ConfigError(f"Unknown progress backend: {progress.backend}")
