"""Now-playing presence publishing.

A PresenceSink receives a short summary whenever playback state changes.
Publishing is fire-and-forget: a failing sink is logged and never
interrupts playback.
"""

from typing import Protocol

from pydantic import BaseModel, Field

from models.models import EpisodeRef, PlaybackState
from utils.logging import get_logger

logger = get_logger(__name__)


class PresenceSummary(BaseModel):
    """What is playing right now."""

    series: str
    episode: int | None = None
    title: str
    state: PlaybackState
    position: float = Field(0.0, ge=0)
    duration: float = Field(0.0, ge=0)

    @classmethod
    def for_episode(
        cls,
        episode: EpisodeRef,
        state: PlaybackState,
        position: float = 0.0,
        duration: float = 0.0,
    ) -> "PresenceSummary":
        return cls(
            series=episode.series,
            episode=episode.number,
            title=episode.display_name,
            state=state,
            position=max(0.0, position),
            duration=max(0.0, duration),
        )


class PresenceSink(Protocol):
    def publish(self, summary: PresenceSummary) -> None: ...


class LogPresenceSink:
    """Default sink: writes the summary to the debug log."""

    def publish(self, summary: PresenceSummary) -> None:
        logger.debug(
            f"Now {summary.state.value}: {summary.title} "
            f"({int(summary.position)}s/{int(summary.duration)}s)"
        )


def publish_safely(sink: PresenceSink | None, summary: PresenceSummary) -> None:
    """Publish without letting a sink failure escape."""
    if sink is None:
        return
    try:
        sink.publish(summary)
    except Exception as e:
        logger.warning(f"Presence sink {type(sink).__name__} failed: {e}")
