"""Pydantic data models for structured data transfer.

Defines DTOs (Data Transfer Objects) for:
- EpisodeRef: What the caller wants to watch or download
- StreamVariant / StreamDescriptor: Resolved stream locations
- SkipInterval / SkipTimes: Opening and ending ranges
- ProgressRecord: Saved playback position
- PlaybackState / DownloadStatus: Lifecycle enums
"""

from datetime import datetime
from enum import Enum
from typing import TypeAlias

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

SeriesKey: TypeAlias = str
EpisodeKey: TypeAlias = str
Seconds: TypeAlias = float


class SourceKind(str, Enum):
    """How a resolved stream is delivered."""

    DIRECT = "direct"
    PLAYLIST = "playlist"
    EMBED = "embed"


class PlaybackState(str, Enum):
    """Lifecycle of a playback session."""

    STARTING = "starting"
    AWAITING_FIRST_FRAME = "awaiting_first_frame"
    PLAYING = "playing"
    PAUSED = "paused"
    ENDED = "ended"
    QUIT = "quit"


class DownloadStatus(str, Enum):
    """Lifecycle of a download job."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETE = "complete"
    FAILED = "failed"


class EpisodeRef(BaseModel):
    """Reference to a single episode supplied by the caller.

    Attributes:
        series: Series key used for progress and download paths
        number: Episode number (required for identifier-keyed sources)
        url: Episode page URL
        source_id: Opaque series identifier for identifier-keyed sources
        title: Display title
        source: Source family name (e.g. "allanime")
        duration_hint: Expected duration in seconds, if known
        mal_id: MyAnimeList ID used to look up skip times

    Validation:
        - At least one of url and source_id must be set
    """

    model_config = ConfigDict(frozen=True)

    series: SeriesKey = Field(..., min_length=1, description="Series key")
    number: int | None = Field(None, ge=0, description="Episode number")
    url: str | None = Field(None, description="Episode page URL")
    source_id: str | None = Field(None, description="Opaque identifier")
    title: str | None = Field(None, description="Display title")
    source: str | None = Field(None, description="Source family name")
    duration_hint: int | None = Field(None, ge=0, description="Expected duration (s)")
    mal_id: int | None = Field(None, gt=0, description="MyAnimeList ID")

    @model_validator(mode="after")
    def validate_locator(self) -> "EpisodeRef":
        """Require a URL or an opaque identifier."""
        if not self.url and not self.source_id:
            raise ValueError("EpisodeRef needs either url or source_id")
        return self

    @property
    def locator(self) -> str:
        """The string handed to the source adapter."""
        return self.url or self.source_id

    @property
    def episode_key(self) -> EpisodeKey:
        """Key used by the progress store for this episode."""
        return str(self.number) if self.number is not None else self.locator

    @property
    def display_name(self) -> str:
        if self.title:
            return self.title
        if self.number is not None:
            return f"{self.series} - Episode {self.number}"
        return self.series

    def with_number(self, number: int) -> "EpisodeRef":
        """Copy of this reference pointing at another episode of the same series."""
        return self.model_copy(update={"number": number, "title": None})


class StreamVariant(BaseModel):
    """One quality variant of a resolved stream.

    Attributes:
        label: Quality label as published by the source ("720p", "HD", may be empty)
        url: Playable URL
    """

    label: str = Field("", description="Quality label")
    url: str = Field(..., min_length=1, description="Playable URL")

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Validate URL format."""
        if not v.startswith(("http://", "https://")):
            raise ValueError(f"Stream URL must be http(s), got: {v}")
        return v


class StreamDescriptor(BaseModel):
    """Resolved stream: ordered quality variants plus delivery kind.

    Produced fresh on every resolution. Never cached unless a caller
    explicitly stores the chosen URL.
    """

    variants: list[StreamVariant] = Field(..., min_length=1, description="Quality variants")
    kind: SourceKind = Field(SourceKind.DIRECT, description="Delivery kind")
    headers: dict[str, str] | None = Field(None, description="HTTP headers for playback")

    @classmethod
    def single(cls, url: str, headers: dict[str, str] | None = None) -> "StreamDescriptor":
        """Wrap one URL as a descriptor with a single unlabeled variant."""
        return cls(
            variants=[StreamVariant(label="", url=url)],
            kind=kind_for_url(url),
            headers=headers,
        )

    @property
    def urls(self) -> list[str]:
        return [v.url for v in self.variants]


def kind_for_url(url: str) -> SourceKind:
    """Classify a stream URL by how it is delivered."""
    lowered = url.lower()
    if ".m3u8" in lowered or ".mpd" in lowered:
        return SourceKind.PLAYLIST
    if "blogger.com/video.g" in lowered or "/embed" in lowered:
        return SourceKind.EMBED
    return SourceKind.DIRECT


class SkipInterval(BaseModel):
    """Time range inside an episode, in seconds."""

    start: Seconds = Field(..., ge=0)
    end: Seconds = Field(..., ge=0)

    @model_validator(mode="after")
    def validate_order(self) -> "SkipInterval":
        if self.end < self.start:
            raise ValueError(f"Skip interval ends before it starts: {self.start}-{self.end}")
        return self

    def as_option(self) -> str:
        """Format as mpv script option value (start-end, whole seconds)."""
        return f"{int(self.start)}-{int(self.end)}"


class SkipTimes(BaseModel):
    """Opening and ending intervals for one episode."""

    op: SkipInterval | None = None
    ed: SkipInterval | None = None

    @property
    def empty(self) -> bool:
        return self.op is None and self.ed is None


class ProgressRecord(BaseModel):
    """Saved playback position for one episode."""

    position: Seconds = Field(0.0, ge=0, description="Last known position (s)")
    duration: Seconds = Field(0.0, ge=0, description="Episode duration (s)")
    title: str | None = Field(None, description="Display title when saved")
    updated_at: datetime = Field(default_factory=datetime.now, description="Last update")
