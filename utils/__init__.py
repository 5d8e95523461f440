"""Utilities and helper functions.

- exceptions: Error hierarchy (AniReelError and subclasses)
- logging: loguru configuration and get_logger()
- http: requests session and error translation
- polling: Bounded polling/retry helpers with injectable sleep and clock
- persistence: Atomic JSON file store
- cache_manager: diskcache store for preloaded stream URLs
- mpv_ipc: mpv JSON IPC client and socket paths
- video_player: PlaybackController and PlaybackSession
"""

from utils.exceptions import AniReelError

__all__ = ["AniReelError"]
