"""Application configuration using Pydantic v2.

Centralized settings for ani-reel including:
- HTTP timeouts and identity headers
- Source endpoints (identifier-keyed API, quality endpoints)
- Download workers, concurrency and size estimates
- mpv player arguments and polling cadences
- Skip-time provider and progress store backing
- Log sinks and OS-specific data paths

Configuration can be overridden via environment variables:
    ANI_REEL__DOWNLOAD__WORKERS=8
    ANI_REEL__PLAYER__MPV_BINARY=/usr/local/bin/mpv
    ANI_REEL__PROGRESS__BACKEND=diskcache
"""

import os
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def get_data_path() -> Path:
    """Get OS-specific data directory for ani-reel.

    Returns:
        Path: ~/.local/state/ani-reel (Linux/macOS) or %APPDATA%\\ani-reel (Windows)
    """
    if os.name == "nt":
        return Path(os.environ.get("APPDATA", Path.home())) / "ani-reel"
    return Path.home() / ".local" / "state" / "ani-reel"


class HttpSettings(BaseModel):
    """Outbound HTTP configuration shared by every adapter."""

    timeout: float = Field(
        10.0,
        gt=0,
        le=120,
        description="Timeout in seconds for every outbound request",
    )
    user_agent: str = Field(
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:121.0) Gecko/20100101 Firefox/121.0",
        description="User-Agent header sent to aggregator sites",
    )


class SourceSettings(BaseModel):
    """Stream source endpoints."""

    api_url: str = Field(
        "https://api.allanime.day/api",
        description="GraphQL endpoint for identifier-keyed episode lookups",
    )
    referer: str = Field(
        "https://allanime.to",
        description="Referer header required by the identifier-keyed API",
    )
    base_url: str = Field(
        "https://allanime.day",
        description="Origin prepended to relative decoded source paths",
    )
    translation_type: Literal["sub", "dub"] = Field(
        "sub",
        description="Translation variant requested from the identifier-keyed API",
    )
    link_priorities: list[str] = Field(
        default_factory=lambda: [
            "sharepoint.com",
            "wixmp.com",
            "dropbox.com",
            "wetransfer.com",
            "gogoanime.com",
        ],
        description="Hosts ranked first when several links resolve",
    )
    quality_endpoint_patterns: list[str] = Field(
        default_factory=lambda: ["/video/"],
        description="URL fragments marking an endpoint that lists quality variants as JSON",
    )


class DownloadSettings(BaseModel):
    """Download manager configuration."""

    downloads_dir: Path = Field(
        default_factory=lambda: get_data_path() / "downloads" / "anime",
        description="Root directory for downloaded episodes (<series>/<n>.mp4)",
    )
    workers: int = Field(4, ge=1, le=32, description="Ranged workers per file")
    max_concurrent: int = Field(
        4,
        ge=1,
        le=16,
        description="Episodes downloaded at the same time in batch mode",
    )
    max_retries: int = Field(3, ge=0, le=10, description="Retries for transient network errors")
    retry_backoff: float = Field(
        1.0,
        ge=0,
        description="Base backoff in seconds, multiplied by the attempt number",
    )
    chunk_size: int = Field(32 * 1024, ge=1024, description="Streaming buffer size in bytes")
    streaming_estimate_mb: int = Field(
        500,
        ge=1,
        description="Size assumed for adaptive streams that do not report a length",
    )
    poll_interval: float = Field(
        0.5,
        gt=0,
        le=10,
        description="Seconds between file-size polls while yt-dlp runs",
    )
    ytdlp_binary: str = Field("yt-dlp", description="yt-dlp executable")
    delegated_markers: list[str] = Field(
        default_factory=lambda: [".m3u8", ".mpd", "repackager.wixmp.com", "blogger.com"],
        description="URL fragments handed to yt-dlp instead of ranged download",
    )
    streaming_hosts: list[str] = Field(
        default_factory=lambda: ["sharepoint.com", "wixmp.com", "master.m3u8", "allanime.pro"],
        description="Hosts that may omit Content-Length and get a size estimate",
    )


class PlayerSettings(BaseModel):
    """mpv playback configuration."""

    mpv_binary: str = Field("mpv", description="mpv executable")
    extra_args: list[str] = Field(
        default_factory=lambda: [
            "--hwdec=auto-safe",
            "--cache=yes",
            "--demuxer-max-bytes=300M",
            "--demuxer-readahead-secs=20",
        ],
        description="Extra arguments appended to every mpv launch",
    )
    socket_wait: float = Field(
        5.0,
        gt=0,
        le=60,
        description="Seconds to wait for the IPC socket to accept connections",
    )
    first_frame_attempts: int = Field(
        60,
        ge=1,
        description="time-pos polls before giving up on the first frame",
    )
    first_frame_interval: float = Field(1.0, gt=0, description="Seconds between time-pos polls")
    duration_floor: int = Field(
        1440,
        ge=60,
        description="Duration assumed when mpv reports less than one second (24 min)",
    )
    resume_threshold: int = Field(
        10,
        ge=0,
        description="Saved positions below this many seconds do not prompt for resume",
    )
    seek_retries: int = Field(5, ge=1, le=20, description="Attempts for deferred resume seeks")
    seek_tolerance: float = Field(
        5.0,
        ge=0,
        description="Allowed distance in seconds between requested and observed position",
    )
    tracker_fast_interval: float = Field(2.0, gt=0, description="Early progress update cadence")
    tracker_fast_updates: int = Field(5, ge=0, description="Updates sent at the early cadence")
    tracker_slow_interval: float = Field(10.0, gt=0, description="Steady progress update cadence")
    quit_timeout: float = Field(
        3.0,
        gt=0,
        description="Seconds to wait for mpv to exit after quit before terminating it",
    )


class SkipSettings(BaseModel):
    """Opening/ending skip-time provider configuration."""

    enabled: bool = Field(True, description="Fetch skip times for episodes with a MAL ID")
    api_url: str = Field(
        "https://api.aniskip.com/v1/skip-times",
        description="AniSkip skip-times endpoint",
    )
    wait_timeout: float = Field(
        3.0,
        gt=0,
        le=30,
        description="Seconds playback setup waits for skip times before continuing",
    )


class ProgressSettings(BaseModel):
    """Progress store backing."""

    backend: Literal["json", "diskcache"] = Field(
        "json",
        description="Storage backing for playback positions",
    )
    file: Path = Field(
        default_factory=lambda: get_data_path() / "progress.json",
        description="JSON file used by the json backing",
    )
    cache_dir: Path = Field(
        default_factory=lambda: get_data_path() / "progress",
        description="Directory used by the diskcache backing",
    )


class CacheSettings(BaseModel):
    """Resolved stream URL cache (SQLite via diskcache)."""

    duration_minutes: int = Field(
        30,
        ge=1,
        le=1440,
        description="How long a preloaded stream URL stays valid",
    )
    cache_dir: Path = Field(
        default_factory=lambda: get_data_path() / "cache",
        description="Path to SQLite cache directory (diskcache)",
    )


class LogSettings(BaseModel):
    """Console and file log sinks."""

    console_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        "WARNING",
        description="Console level when --debug is not given",
    )
    log_dir: Path = Field(
        default_factory=get_data_path,
        description="Directory holding ani-reel.log",
    )
    rotation: str = Field("50 MB", description="Size at which the log file rotates")
    retention: int = Field(10, ge=1, description="Rotated files kept")


class QualitySettings(BaseModel):
    """Default variant selection."""

    policy: str = Field(
        "best",
        description="best, worst, interactive or a label such as 720p",
    )

    @field_validator("policy")
    @classmethod
    def normalize_policy(cls, v: str) -> str:
        """Store policies lowercased and trimmed."""
        v = v.strip().lower()
        if not v:
            raise ValueError("Quality policy cannot be empty")
        return v


class AppSettings(BaseSettings):
    """Root application settings with environment variable support.

    Environment variables use the prefix ANI_REEL__ with nested delimiters:
    - ANI_REEL__HTTP__TIMEOUT=15
    - ANI_REEL__DOWNLOAD__MAX_CONCURRENT=2
    - ANI_REEL__QUALITY__POLICY=720p

    Can also be configured via .env file in project root.
    """

    model_config = SettingsConfigDict(
        env_nested_delimiter="__",
        env_prefix="ANI_REEL__",
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    http: HttpSettings = Field(default_factory=HttpSettings)
    sources: SourceSettings = Field(default_factory=SourceSettings)
    download: DownloadSettings = Field(default_factory=DownloadSettings)
    player: PlayerSettings = Field(default_factory=PlayerSettings)
    skip: SkipSettings = Field(default_factory=SkipSettings)
    progress: ProgressSettings = Field(default_factory=ProgressSettings)
    cache: CacheSettings = Field(default_factory=CacheSettings)
    quality: QualitySettings = Field(default_factory=QualitySettings)
    log: LogSettings = Field(default_factory=LogSettings)


# Singleton instance - import and use throughout the app
settings = AppSettings()
