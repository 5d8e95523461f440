"""Business logic services.

- quality_service: Pick one variant from a StreamDescriptor
- download_service: Ranged, single-stream and yt-dlp downloads, batches
- progress_store: Playback position contract and its JSON/diskcache backings
- skip_service: AniSkip provider and download sidecars
- presence: Now-playing summary sinks
- orchestrator: Per-run composition of all of the above with playback
"""

from services.download_service import DownloadJob, DownloadManager
from services.progress_store import ProgressStore, create_progress_store
from services.quality_service import QualitySelector

__all__ = [
    "DownloadJob",
    "DownloadManager",
    "ProgressStore",
    "QualitySelector",
    "create_progress_store",
]
