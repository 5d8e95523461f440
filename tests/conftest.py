"""
Shared test fixtures and configuration for the ani-reel test suite.

This module provides:
- Sample episode fixtures (page URL, opaque ID, short series)
- Response builders and a fake range-capable HTTP server
- Fake mpv process and IPC client for playback tests
- Temporary directories
"""

import json
import re

import pytest
import requests
from requests.structures import CaseInsensitiveDict

from models.config import DownloadSettings, PlayerSettings
from models.models import EpisodeRef
from utils.exceptions import PlayerProcessError


# ========== Sample Data Fixtures ==========


@pytest.fixture
def sample_episode():
    """Episode addressed by page URL."""
    return EpisodeRef(
        series="Dandadan",
        number=1,
        url="https://aggregator.example/watch/dandadan/1",
        mal_id=57334,
    )


@pytest.fixture
def sample_id_episode():
    """Episode addressed by opaque catalog ID."""
    return EpisodeRef(series="Dandadan", number=3, source_id="ReooPAxPMsHM4KPMY", source="allanime")


@pytest.fixture
def sample_episodes():
    """Three consecutive page-URL episodes."""
    return [
        EpisodeRef(series="Short Anime", number=n, url=f"https://aggregator.example/short/{n}")
        for n in range(1, 4)
    ]


# ========== HTTP Fixtures ==========


def make_response(
    status: int = 200,
    body: bytes | str | dict | list = b"",
    headers: dict | None = None,
    url: str = "https://example.com/",
) -> requests.Response:
    """Build a real requests.Response with an in-memory body."""
    if isinstance(body, (dict, list)):
        body = json.dumps(body)
    if isinstance(body, str):
        body = body.encode("utf-8")

    resp = requests.Response()
    resp.status_code = status
    resp._content = body
    resp._content_consumed = True
    resp.headers = CaseInsensitiveDict(headers or {})
    resp.url = url
    resp.encoding = "utf-8"
    return resp


class RangeServer:
    """In-memory file server honoring HEAD and Range requests.

    Args:
        data: File contents served for every URL
        head_length: Whether HEAD reports Content-Length
        fail_once: Range start offsets whose first request raises a connection reset
        truncate_once: Range start offsets whose first response stops halfway
    """

    def __init__(
        self,
        data: bytes,
        head_length: bool = True,
        fail_once: set[int] | None = None,
        truncate_once: set[int] | None = None,
    ) -> None:
        self.data = data
        self.head_length = head_length
        self.fail_once = set(fail_once or ())
        self.truncate_once = set(truncate_once or ())
        self.calls: list[tuple[str, str | None]] = []

    def request(self, method, url, timeout=None, headers=None, stream=False, **kwargs):
        range_header = (headers or {}).get("Range")
        self.calls.append((method, range_header))

        if method == "HEAD":
            if not self.head_length:
                return make_response(200, b"", {}, url)
            return make_response(200, b"", {"Content-Length": str(len(self.data))}, url)

        if range_header is None:
            return make_response(200, self.data, {"Content-Length": str(len(self.data))}, url)

        start, end = (int(x) for x in re.match(r"bytes=(\d+)-(\d+)", range_header).groups())
        if start in self.fail_once:
            self.fail_once.discard(start)
            raise requests.ConnectionError("Connection reset by peer")

        body = self.data[start : end + 1]
        if start in self.truncate_once:
            self.truncate_once.discard(start)
            body = body[: len(body) // 2]
        headers_out = {
            "Content-Range": f"bytes {start}-{end}/{len(self.data)}",
            "Content-Length": str(end - start + 1),
        }
        return make_response(206, body, headers_out, url)

    @property
    def range_requests(self) -> list[str]:
        return [r for m, r in self.calls if m == "GET" and r is not None]


@pytest.fixture
def download_settings(tmp_path):
    """Download settings rooted in a temporary directory."""
    return DownloadSettings(
        downloads_dir=tmp_path / "downloads",
        workers=4,
        max_retries=2,
        retry_backoff=0,
        chunk_size=1024,
        streaming_estimate_mb=1,
        poll_interval=0.01,
    )


# ========== Player Fixtures ==========


class FakeProcess:
    """Stand-in for the mpv subprocess."""

    def __init__(self, args=None, **kwargs) -> None:
        self.args = args
        self.returncode = None
        self.terminated = False
        self.killed = False

    def poll(self):
        return self.returncode

    def wait(self, timeout=None):
        if self.returncode is None:
            self.returncode = 0
        return self.returncode

    def terminate(self):
        self.terminated = True
        self.returncode = -15

    def kill(self):
        self.killed = True
        self.returncode = -9

    def exit(self, code: int = 0) -> None:
        """Simulate mpv closing on its own."""
        self.returncode = code


class FakeIpc:
    """Stand-in for MpvIpcClient backed by a property dict.

    Setting "time-pos" through a seek moves the reported position.
    """

    def __init__(self, path: str, properties: dict | None = None, process: FakeProcess | None = None):
        self.path = path
        self.properties = {"time-pos": 0.1, "duration": 1420.0, "pause": False}
        self.properties.update(properties or {})
        self.process = process
        self.commands: list[tuple] = []
        self._connected = False

    @property
    def connected(self) -> bool:
        return self._connected

    def connect(self, wait=5.0, interval=0.1, alive=None, sleep=None, clock=None):
        if alive is not None and not alive():
            raise PlayerProcessError("mpv exited before its IPC socket was ready")
        self._connected = True

    def command(self, *args) -> dict:
        if not self._connected:
            raise PlayerProcessError("mpv IPC channel is not connected")
        self.commands.append(args)
        name = args[0]
        if name == "get_property":
            value = self.properties.get(args[1])
            if value is None:
                return {"error": "property unavailable", "request_id": len(self.commands)}
            return {"data": value, "error": "success"}
        if name == "set_property":
            self.properties[args[1]] = args[2]
        elif name == "seek":
            self.properties["time-pos"] = float(args[1])
        elif name == "quit" and self.process is not None:
            self.process.exit(0)
        return {"data": None, "error": "success"}

    def close(self) -> None:
        self._connected = False

    def sent(self, name: str) -> list[tuple]:
        return [c for c in self.commands if c[0] == name]


class FakeMpv:
    """Factory pair (popen, ipc_factory) sharing the last spawned process."""

    def __init__(self, properties: dict | None = None) -> None:
        self.properties = properties or {}
        self.process: FakeProcess | None = None
        self.ipc: FakeIpc | None = None
        self.spawned: list[list[str]] = []

    def popen(self, args, **kwargs) -> FakeProcess:
        self.spawned.append(list(args))
        self.process = FakeProcess(args)
        return self.process

    def ipc_factory(self, path: str) -> FakeIpc:
        self.ipc = FakeIpc(path, self.properties, self.process)
        return self.ipc


@pytest.fixture
def fake_mpv():
    return FakeMpv()


@pytest.fixture
def player_settings():
    """Player settings with short timeouts, no extra args and an idle tracker."""
    return PlayerSettings(
        extra_args=[],
        first_frame_attempts=3,
        first_frame_interval=0.01,
        seek_retries=3,
        quit_timeout=0.1,
        tracker_fast_interval=60,
        tracker_slow_interval=60,
    )


@pytest.fixture
def no_sleep():
    """Sleep replacement that records requested delays."""
    delays: list[float] = []

    def sleep(seconds: float) -> None:
        delays.append(seconds)

    sleep.delays = delays
    return sleep


# ========== File I/O Fixtures ==========


@pytest.fixture
def temp_cache_dir(tmp_path):
    """Temporary cache directory for testing."""
    path = tmp_path / "cache"
    path.mkdir()
    return path


@pytest.fixture
def response():
    """Builder for in-memory requests.Response objects."""
    return make_response


@pytest.fixture
def range_server():
    """Factory for RangeServer instances."""
    return RangeServer
