"""Data models and configuration.

Pydantic models and configuration:
- models: Episode references, stream descriptors, skip times and progress records
- config: Centralized configuration (Pydantic Settings)
"""

from models.config import get_data_path, settings
from models.models import (
    EpisodeRef,
    PlaybackState,
    ProgressRecord,
    SkipTimes,
    SourceKind,
    StreamDescriptor,
    StreamVariant,
)

__all__ = [
    "EpisodeRef",
    "PlaybackState",
    "ProgressRecord",
    "SkipTimes",
    "SourceKind",
    "StreamDescriptor",
    "StreamVariant",
    "settings",
    "get_data_path",
]
