"""Download manager: ranged multi-worker downloads and yt-dlp delegation.

Provides:
- DownloadJob: Progress and part-file bookkeeping for one file
- DownloadManager.download(): Pick ranged, single-stream or delegated path
- DownloadManager.download_range(): Batch over an episode range with a
  dry pass and a cap on concurrently downloading episodes
- episode_path(): Where an episode lands on disk

Ranged path: the size is probed (HEAD, falling back to a one-byte ranged
GET), split into one contiguous range per worker, and each worker writes
"<name>.part<i>". When every worker succeeded the parts are joined in
index order and removed.

Playlists and embeds (.m3u8, .mpd, Blogger, wixmp repackager) are handed
to yt-dlp. Its output file is polled for size to estimate progress.
"""

import re
import shutil
import subprocess
import threading
import time
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import NamedTuple

import requests

from models.config import DownloadSettings, settings
from models.models import DownloadStatus, EpisodeRef
from utils.exceptions import AniReelError, DownloadError, NetworkError, PartialDownloadError
from utils.http import fetch, is_transient, new_session
from utils.logging import get_logger
from utils.polling import Sleep, retry

logger = get_logger(__name__)

MIB = 1024 * 1024

_PERCENT_RE = re.compile(r"(?i)(\d{1,3}(?:\.\d+)?)\s*%")
_CONTENT_RANGE_RE = re.compile(r"bytes\s+\d+-\d+/(\d+)")
_INVALID_NAME_CHARS = '/\\:*?"<>|'


class IncompleteRangeError(NetworkError):
    """A range response ended before all of its bytes arrived."""

    pass


class DownloadJob:
    """One file being downloaded.

    bytes_received only ever grows while the job runs and is guarded by a
    lock, since every worker thread adds to it.
    """

    def __init__(self, url: str, destination: Path, worker_count: int = 1) -> None:
        self.url = url
        self.destination = Path(destination)
        self.worker_count = worker_count
        self.total_bytes = 0
        self.estimated = False
        self.part_files: list[Path] = []
        self.status = DownloadStatus.PENDING
        self._received = 0
        self._lock = threading.Lock()

    @property
    def bytes_received(self) -> int:
        with self._lock:
            return self._received

    def add(self, n: int) -> int:
        """Count n more bytes and return the new total."""
        with self._lock:
            self._received += n
            return self._received

    def advance_to(self, n: int) -> int:
        """Raise the counter to n; lower values are ignored."""
        with self._lock:
            if n > self._received:
                self._received = n
            return self._received

    def finish(self) -> None:
        """Mark complete; estimated totals are topped up to 100%."""
        with self._lock:
            if self.estimated or self._received < self.total_bytes:
                self._received = max(self._received, self.total_bytes)
            self.status = DownloadStatus.COMPLETE

    @property
    def fraction(self) -> float:
        if not self.total_bytes:
            return 0.0
        return min(1.0, self.bytes_received / self.total_bytes)

    def __repr__(self) -> str:
        return (
            f"DownloadJob({self.destination.name}, {self.status.value}, "
            f"{self.bytes_received}/{self.total_bytes})"
        )


ProgressCallback = Callable[[DownloadJob], None]


def split_ranges(size: int, workers: int) -> list[tuple[int, int]]:
    """Inclusive byte ranges covering [0, size), the last one absorbing the remainder."""
    if size <= 0:
        return []
    workers = max(1, min(workers, size))
    chunk = size // workers
    ranges = []
    for i in range(workers):
        start = i * chunk
        end = size - 1 if i == workers - 1 else start + chunk - 1
        ranges.append((start, end))
    return ranges


def sanitize_name(name: str) -> str:
    """Make a series title safe to use as a directory name."""
    cleaned = re.sub(r"\[[^\]]*\]", "", name).strip()
    for ch in _INVALID_NAME_CHARS:
        cleaned = cleaned.replace(ch, "_")
    cleaned = cleaned.strip(". ")
    return cleaned or "untitled"


def episode_path(episode: EpisodeRef, download: DownloadSettings | None = None) -> Path:
    """Destination for an episode: <downloads_dir>/<series>/<number>.mp4.

    Raises:
        DownloadError: The episode has no number, or the path escapes downloads_dir
    """
    download = download or settings.download
    if episode.number is None:
        raise DownloadError(f"Cannot place {episode.series} on disk without an episode number")

    root = Path(download.downloads_dir).expanduser().resolve()
    path = (root / sanitize_name(episode.series) / f"{episode.number}.mp4").resolve()
    if root not in path.parents:
        raise DownloadError(f"Refusing to write outside {root}: {path}")
    return path


def content_range_total(header: str | None) -> int | None:
    """Total size from a "bytes a-b/total" Content-Range header."""
    if not header:
        return None
    match = _CONTENT_RANGE_RE.search(header)
    return int(match.group(1)) if match else None


class BatchResult(NamedTuple):
    """Outcome of download_range().

    Attributes:
        completed: Episode numbers downloaded in this run
        skipped: Episode numbers whose file already existed
        failed: Episode number -> reason, for resolve or download failures
        total_bytes: Aggregate planned size of the episodes actually attempted
    """

    completed: list[int]
    skipped: list[int]
    failed: dict[int, str]
    total_bytes: int


class BatchProgress:
    """Aggregate byte counter across the jobs of a batch."""

    def __init__(self, total_bytes: int) -> None:
        self.total_bytes = total_bytes
        self._jobs: dict[int, DownloadJob] = {}
        self._lock = threading.Lock()

    def track(self, number: int, job: DownloadJob) -> None:
        with self._lock:
            self._jobs[number] = job

    @property
    def bytes_received(self) -> int:
        with self._lock:
            return sum(job.bytes_received for job in self._jobs.values())


class _Planned(NamedTuple):
    episode: EpisodeRef
    url: str
    path: Path
    size: int


class DownloadManager:
    """Downloads files using ranged workers or yt-dlp.

    Args:
        session: requests Session shared by all workers
        download: Download settings (workers, retries, estimates...)
        sleep: Sleep function used for retry backoff and polling
        popen: Process factory used to start yt-dlp
    """

    def __init__(
        self,
        session: requests.Session | None = None,
        download: DownloadSettings | None = None,
        sleep: Sleep = time.sleep,
        popen: Callable[..., subprocess.Popen] = subprocess.Popen,
    ) -> None:
        self.session = session or new_session()
        self.settings = download or settings.download
        self.sleep = sleep
        self.popen = popen

    # ------------------------------------------------------------------
    # Path selection
    # ------------------------------------------------------------------

    def needs_delegation(self, url: str) -> bool:
        lowered = url.lower()
        return any(marker in lowered for marker in self.settings.delegated_markers)

    def is_streaming_host(self, url: str) -> bool:
        lowered = url.lower()
        return any(host in lowered for host in self.settings.streaming_hosts) or ".m3u8" in lowered

    def download(
        self,
        url: str,
        destination: Path,
        worker_count: int | None = None,
        *,
        headers: dict[str, str] | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> DownloadJob:
        """Download url to destination.

        Returns:
            The finished job

        Raises:
            DownloadError: Size unknown for a non-streaming host, yt-dlp failed, or disk I/O failed
            PartialDownloadError: A ranged worker failed
            NetworkError: Probe failed
        """
        destination = Path(destination)
        job = DownloadJob(url, destination, worker_count or self.settings.workers)
        job.status = DownloadStatus.RUNNING

        try:
            destination.parent.mkdir(parents=True, exist_ok=True)
            if self.needs_delegation(url):
                self._download_delegated(job, headers, on_progress)
            else:
                size, estimated = self.resolve_size(url, headers)
                job.total_bytes = size
                job.estimated = estimated
                if estimated:
                    job.worker_count = 1
                    self._download_single(job, headers, on_progress)
                else:
                    self._download_ranged(job, headers, on_progress)
        except OSError as e:
            job.status = DownloadStatus.FAILED
            if isinstance(e, requests.RequestException):
                raise NetworkError(f"Download of {url} failed: {e}") from e
            raise DownloadError(f"Cannot write {destination}: {e}") from e
        except Exception:
            job.status = DownloadStatus.FAILED
            raise

        job.finish()
        if on_progress:
            on_progress(job)
        logger.info(f"Downloaded {url} -> {destination} ({job.bytes_received} bytes)")
        return job

    # ------------------------------------------------------------------
    # Size probing
    # ------------------------------------------------------------------

    def probe_size(self, url: str, headers: dict[str, str] | None = None) -> int | None:
        """Content length via HEAD, or via a bytes=0-0 GET when HEAD is refused.

        Returns:
            Size in bytes, or None when the server does not say

        Raises:
            NetworkError: Neither request succeeded
        """
        try:
            resp = fetch(
                self.session,
                url,
                method="HEAD",
                headers=headers,
                allow_redirects=True,
                allow_status=(405, 501),
            )
            if resp.status_code not in (405, 501):
                length = resp.headers.get("Content-Length")
                if length and length.isdigit() and int(length) > 0:
                    return int(length)
        except NetworkError as e:
            logger.debug(f"HEAD {url} failed, trying ranged GET: {e}")

        ranged = dict(headers or {})
        ranged["Range"] = "bytes=0-0"
        resp = fetch(self.session, url, headers=ranged, stream=True)
        try:
            if resp.status_code == 206:
                return content_range_total(resp.headers.get("Content-Range"))
            length = resp.headers.get("Content-Length")
            if length and length.isdigit() and int(length) > 1:
                return int(length)
            return None
        finally:
            resp.close()

    def resolve_size(self, url: str, headers: dict[str, str] | None = None) -> tuple[int, bool]:
        """Size to plan the download with, and whether it is only an estimate.

        Raises:
            DownloadError: No size reported and the host is not a known streaming host
        """
        if ".m3u8" in url.lower():
            return self.streaming_estimate, True

        size = self.probe_size(url, headers)
        if size:
            return size, False

        if self.is_streaming_host(url):
            logger.debug(f"No size for streaming host {url}, using estimate")
            return self.streaming_estimate, True

        raise DownloadError(f"Server did not report a size for {url}")

    @property
    def streaming_estimate(self) -> int:
        return self.settings.streaming_estimate_mb * MIB

    # ------------------------------------------------------------------
    # Ranged path
    # ------------------------------------------------------------------

    def _download_ranged(
        self,
        job: DownloadJob,
        headers: dict[str, str] | None,
        on_progress: ProgressCallback | None,
    ) -> None:
        ranges = split_ranges(job.total_bytes, job.worker_count)
        job.worker_count = len(ranges)
        job.part_files = [
            job.destination.with_name(f"{job.destination.name}.part{i}") for i in range(len(ranges))
        ]

        errors: dict[int, BaseException] = {}
        with ThreadPoolExecutor(max_workers=len(ranges)) as pool:
            futures = {
                pool.submit(self._fetch_range, job, i, start, end, headers, on_progress): i
                for i, (start, end) in enumerate(ranges)
            }
            for future, index in futures.items():
                exc = future.exception()
                if exc is not None:
                    errors[index] = exc

        if errors:
            self._remove_parts(job)
            detail = "; ".join(f"part {i}: {e}" for i, e in sorted(errors.items()))
            raise PartialDownloadError(f"{len(errors)}/{len(ranges)} workers failed for {job.url}: {detail}")

        self._combine(job)

    def _fetch_range(
        self,
        job: DownloadJob,
        index: int,
        start: int,
        end: int,
        headers: dict[str, str] | None,
        on_progress: ProgressCallback | None,
    ) -> None:
        part = job.part_files[index]
        part.unlink(missing_ok=True)
        expected = end - start + 1

        def attempt() -> None:
            written = part.stat().st_size if part.exists() else 0
            if written >= expected:
                return
            ranged = dict(headers or {})
            ranged["Range"] = f"bytes={start + written}-{end}"
            resp = fetch(self.session, job.url, headers=ranged, stream=True)
            with resp:
                if resp.status_code != 206 and not (start + written == 0 and end == job.total_bytes - 1):
                    raise DownloadError(f"Server ignored range request for part {index}")
                self._stream_to(resp, part, "ab", job, on_progress)
            if part.stat().st_size < expected:
                raise IncompleteRangeError(f"Part {index} ended early")

        retry(
            attempt,
            retries=self.settings.max_retries,
            backoff=self.settings.retry_backoff,
            retry_if=lambda e: is_transient(e) or isinstance(e, IncompleteRangeError),
            sleep=self.sleep,
            on_retry=lambda n, e: logger.warning(f"Retrying part {index} of {job.url} ({n}): {e}"),
        )

    def _stream_to(
        self,
        resp: requests.Response,
        path: Path,
        mode: str,
        job: DownloadJob,
        on_progress: ProgressCallback | None,
    ) -> None:
        try:
            with path.open(mode) as f:
                for chunk in resp.iter_content(chunk_size=self.settings.chunk_size):
                    if not chunk:
                        continue
                    f.write(chunk)
                    job.add(len(chunk))
                    if on_progress:
                        on_progress(job)
        except requests.RequestException as e:
            raise NetworkError(f"Stream from {job.url} interrupted: {e}") from e

    def _combine(self, job: DownloadJob) -> None:
        combined = sum(part.stat().st_size for part in job.part_files)
        if combined != job.total_bytes:
            self._remove_parts(job)
            raise PartialDownloadError(
                f"Parts add up to {combined} bytes, expected {job.total_bytes}"
            )

        tmp = job.destination.with_name(job.destination.name + ".joining")
        with tmp.open("wb") as out:
            for part in job.part_files:
                with part.open("rb") as f:
                    shutil.copyfileobj(f, out, self.settings.chunk_size)
        tmp.replace(job.destination)
        self._remove_parts(job)

    @staticmethod
    def _remove_parts(job: DownloadJob) -> None:
        for part in job.part_files:
            part.unlink(missing_ok=True)

    # ------------------------------------------------------------------
    # Single stream (size only estimated)
    # ------------------------------------------------------------------

    def _download_single(
        self,
        job: DownloadJob,
        headers: dict[str, str] | None,
        on_progress: ProgressCallback | None,
    ) -> None:
        part = job.destination.with_name(job.destination.name + ".part0")
        job.part_files = [part]
        part.unlink(missing_ok=True)

        def attempt() -> None:
            # Restart from scratch; without a known size there is no safe resume
            part.unlink(missing_ok=True)
            resp = fetch(self.session, job.url, headers=headers, stream=True)
            with resp:
                self._stream_to(resp, part, "wb", job, on_progress)

        try:
            retry(
                attempt,
                retries=self.settings.max_retries,
                backoff=self.settings.retry_backoff,
                retry_if=is_transient,
                sleep=self.sleep,
            )
        except AniReelError:
            self._remove_parts(job)
            raise

        part.replace(job.destination)

    # ------------------------------------------------------------------
    # Delegated path (yt-dlp)
    # ------------------------------------------------------------------

    def ytdlp_command(self, url: str, destination: Path, headers: dict[str, str] | None = None) -> list[str]:
        cmd = [
            self.settings.ytdlp_binary,
            "--newline",
            "--no-color",
            "--continue",
            "--retries",
            str(self.settings.max_retries),
            "--fragment-retries",
            str(self.settings.max_retries),
            "-f",
            "best",
            "-o",
            str(destination),
        ]
        for name, value in (headers or {}).items():
            cmd += ["--add-header", f"{name}:{value}"]
        cmd.append(url)
        return cmd

    def observed_size(self, destination: Path) -> int:
        """Bytes on disk for a yt-dlp output, counting its temporary files."""
        total = 0
        for path in destination.parent.glob(destination.name + "*"):
            if path.suffix == ".ytdl" or not path.is_file():
                continue
            try:
                total += path.stat().st_size
            except FileNotFoundError:
                continue
        return total

    def _download_delegated(
        self,
        job: DownloadJob,
        headers: dict[str, str] | None,
        on_progress: ProgressCallback | None,
    ) -> None:
        job.total_bytes = self.streaming_estimate
        job.estimated = True
        job.worker_count = 1

        cmd = self.ytdlp_command(job.url, job.destination, headers)
        logger.debug(f"Delegating to yt-dlp: {' '.join(cmd)}")
        try:
            process = self.popen(
                cmd,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                bufsize=1,
            )
        except FileNotFoundError as e:
            raise DownloadError(f"{self.settings.ytdlp_binary} not found in PATH") from e

        done = threading.Event()
        ceiling = max(job.total_bytes - 1, 0)

        def poll_size() -> None:
            while not done.is_set():
                job.advance_to(min(self.observed_size(job.destination), ceiling))
                if on_progress:
                    on_progress(job)
                done.wait(self.settings.poll_interval)

        poller = threading.Thread(target=poll_size, name="ytdlp-size-poll", daemon=True)
        poller.start()

        tail: list[str] = []
        try:
            for line in process.stdout:
                line = line.rstrip()
                if not line:
                    continue
                tail = (tail + [line])[-5:]
                match = _PERCENT_RE.search(line)
                if match and "[download]" in line:
                    pct = min(float(match.group(1)), 100.0)
                    job.advance_to(min(int(job.total_bytes * pct / 100), ceiling))
            returncode = process.wait()
        finally:
            done.set()
            poller.join()

        if returncode != 0:
            raise DownloadError(f"yt-dlp exited with {returncode}: {' | '.join(tail)}")
        if not job.destination.exists():
            raise DownloadError(f"yt-dlp finished but {job.destination} is missing")

    # ------------------------------------------------------------------
    # Batch
    # ------------------------------------------------------------------

    def plan_range(
        self,
        episodes: list[EpisodeRef],
        resolve_url: Callable[[EpisodeRef], str],
    ) -> tuple[list[_Planned], list[int], dict[int, str]]:
        """Dry pass: skip existing files, resolve the rest and size them."""
        planned: list[_Planned] = []
        skipped: list[int] = []
        failed: dict[int, str] = {}

        for episode in episodes:
            path = episode_path(episode, self.settings)
            if path.exists() and path.stat().st_size > 0:
                skipped.append(episode.number)
                continue
            try:
                url = resolve_url(episode)
                if self.needs_delegation(url):
                    size = self.streaming_estimate
                else:
                    size, _ = self.resolve_size(url)
            except AniReelError as e:
                logger.warning(f"Skipping episode {episode.number}: {e}")
                failed[episode.number] = str(e)
                continue
            planned.append(_Planned(episode, url, path, size))

        return planned, skipped, failed

    def download_range(
        self,
        episodes: list[EpisodeRef],
        start: int,
        end: int,
        resolve_url: Callable[[EpisodeRef], str],
        *,
        on_progress: Callable[[BatchProgress], None] | None = None,
        on_complete: Callable[[EpisodeRef, Path], None] | None = None,
    ) -> BatchResult:
        """Download every episode numbered start..end (inclusive).

        A failing episode is recorded and skipped; the batch carries on.
        At most settings.max_concurrent episodes download at once.
        """
        selected = [ep for ep in episodes if ep.number is not None and start <= ep.number <= end]
        planned, skipped, failed = self.plan_range(selected, resolve_url)

        total = sum(p.size for p in planned)
        progress = BatchProgress(total)
        completed: list[int] = []
        gate = threading.BoundedSemaphore(self.settings.max_concurrent)
        lock = threading.Lock()

        def run(item: _Planned) -> None:
            number = item.episode.number

            def report(job: DownloadJob) -> None:
                progress.track(number, job)
                if on_progress:
                    on_progress(progress)

            with gate:
                try:
                    self.download(item.url, item.path, on_progress=report)
                except Exception as e:
                    logger.error(f"Episode {number} failed: {e}")
                    with lock:
                        failed[number] = str(e)
                    return
            with lock:
                completed.append(number)
            if on_complete:
                on_complete(item.episode, item.path)

        threads = [
            threading.Thread(target=run, args=(item,), name=f"episode-{item.episode.number}")
            for item in planned
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        return BatchResult(sorted(completed), sorted(skipped), dict(sorted(failed.items())), total)
