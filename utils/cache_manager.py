"""Cache manager using diskcache with FanoutCache (SQLite backend).

Holds stream URLs chosen ahead of time by the next-episode preloader, so
switching to the next episode skips resolution. Entries expire quickly
because hosts sign their stream URLs with short-lived tokens.
"""

from pathlib import Path

from diskcache import FanoutCache

from models.config import CacheSettings, settings

_cache = None


def get_cache(cache: CacheSettings | None = None) -> FanoutCache:
    """Lazy init of global cache."""
    global _cache
    if _cache is None:
        cache_dir = (cache or settings.cache).cache_dir
        _cache = FanoutCache(
            directory=str(cache_dir),
            shards=4,  # 4 SQLite files = less contention
            timeout=1.0,
        )
    return _cache


def default_ttl() -> int:
    """Default TTL in seconds."""
    return settings.cache.duration_minutes * 60


def _resolve(cache: FanoutCache | None) -> FanoutCache:
    # An empty FanoutCache is falsy
    return cache if cache is not None else get_cache()


def _stream_key(series: str, episode: int | str) -> str:
    return f"stream:{series}:{episode}"


def save_stream_url(
    series: str,
    episode: int | str,
    url: str,
    cache: FanoutCache | None = None,
    headers: dict[str, str] | None = None,
) -> None:
    """Remember the URL chosen for an episode and the headers it plays with."""
    entry = {"url": url, "headers": headers}
    _resolve(cache).set(_stream_key(series, episode), entry, expire=default_ttl())


def get_cached_stream(
    series: str, episode: int | str, cache: FanoutCache | None = None
) -> tuple[str, dict[str, str] | None] | None:
    """(url, headers) stored by save_stream_url(), or None when missing or expired."""
    entry = _resolve(cache).get(_stream_key(series, episode))
    if not isinstance(entry, dict) or not entry.get("url"):
        return None
    return entry["url"], entry.get("headers")


def get_cached_stream_url(series: str, episode: int | str, cache: FanoutCache | None = None) -> str | None:
    cached = get_cached_stream(series, episode, cache)
    return cached[0] if cached else None


def forget_stream_url(series: str, episode: int | str, cache: FanoutCache | None = None) -> None:
    """Drop a cached URL, e.g. after it failed to play."""
    _resolve(cache).delete(_stream_key(series, episode))


def open_cache(directory: Path) -> FanoutCache:
    """Standalone cache at directory (used by tests and tools)."""
    return FanoutCache(directory=str(directory), shards=4, timeout=1.0)
