"""mpv JSON IPC channel.

mpv is started with --input-ipc-server=<path> and answers newline-delimited
JSON on that socket (a named pipe on Windows):

    -> {"command": ["get_property", "time-pos"], "request_id": 7}
    <- {"event": "playback-restart"}
    <- {"data": 42.1, "error": "success", "request_id": 7}

Events are interleaved with replies, so a reply is matched by request_id
and everything else is skipped. One lock serializes request/reply pairs
so the tracker thread and the caller never read each other's replies.
"""

import json
import platform
import socket
import tempfile
import threading
import time
import uuid
from collections.abc import Callable
from pathlib import Path

from utils.exceptions import PlayerProcessError
from utils.logging import get_logger
from utils.polling import Deadline, Sleep

logger = get_logger(__name__)

IS_WINDOWS = platform.system() == "Windows"


def create_ipc_socket_path() -> str:
    r"""Generate a unique platform-specific IPC socket path.

    Returns:
        - Linux/macOS: /tmp/ani-reel-mpv-{uuid}.sock
        - Windows: \\.\pipe\ani-reel-mpv-{uuid}
    """
    unique_id = uuid.uuid4().hex[:8]
    if IS_WINDOWS:
        return f"\\\\.\\pipe\\ani-reel-mpv-{unique_id}"
    return str(Path(tempfile.gettempdir()) / f"ani-reel-mpv-{unique_id}.sock")


def cleanup_ipc_socket(path: str | None) -> None:
    """Remove a socket file left behind by mpv. Pipes vanish on their own."""
    if not path or IS_WINDOWS:
        return
    Path(path).unlink(missing_ok=True)


class _UnixTransport:
    def __init__(self, path: str, timeout: float) -> None:
        self.sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        self.sock.settimeout(timeout)
        try:
            self.sock.connect(path)
        except OSError:
            self.sock.close()
            raise

    def send(self, data: bytes) -> None:
        self.sock.sendall(data)

    def recv(self) -> bytes:
        return self.sock.recv(4096)

    def close(self) -> None:
        self.sock.close()


class _PipeTransport:
    def __init__(self, path: str, timeout: float) -> None:
        self.pipe = open(path, "r+b", buffering=0)  # noqa: SIM115

    def send(self, data: bytes) -> None:
        self.pipe.write(data)

    def recv(self) -> bytes:
        return self.pipe.readline()

    def close(self) -> None:
        self.pipe.close()


class MpvIpcClient:
    """Request/reply client for one mpv process.

    Args:
        path: Socket or pipe path given to mpv
        timeout: Seconds to wait for a reply
    """

    def __init__(self, path: str, timeout: float = 2.0) -> None:
        self.path = path
        self.timeout = timeout
        self._transport = None
        self._buffer = b""
        self._next_id = 0
        self._lock = threading.Lock()

    @property
    def connected(self) -> bool:
        return self._transport is not None

    def connect(
        self,
        wait: float = 5.0,
        interval: float = 0.1,
        alive: Callable[[], bool] | None = None,
        sleep: Sleep | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Connect, retrying until mpv creates the socket.

        Raises:
            PlayerProcessError: Socket never became available or mpv exited first
        """
        sleep = sleep or time.sleep
        deadline = Deadline(wait, clock)
        transport_cls = _PipeTransport if IS_WINDOWS else _UnixTransport
        last_error: OSError | None = None

        while True:
            if alive is not None and not alive():
                raise PlayerProcessError("mpv exited before its IPC socket was ready")
            try:
                self._transport = transport_cls(self.path, self.timeout)
                logger.debug(f"Connected to mpv IPC at {self.path}")
                return
            except OSError as e:
                last_error = e
            if deadline.expired:
                raise PlayerProcessError(f"mpv IPC socket {self.path} not available: {last_error}")
            sleep(interval)

    def command(self, *args) -> dict:
        """Send one command and return mpv's reply object.

        Raises:
            PlayerProcessError: Not connected, connection lost, or no reply in time
        """
        with self._lock:
            if self._transport is None:
                raise PlayerProcessError("mpv IPC channel is not connected")

            self._next_id += 1
            request_id = self._next_id
            message = json.dumps({"command": list(args), "request_id": request_id}) + "\n"
            try:
                self._transport.send(message.encode("utf-8"))
                return self._read_reply(request_id)
            except (socket.timeout, TimeoutError) as e:
                raise PlayerProcessError(f"mpv did not answer {args[0]!r} in time") from e
            except OSError as e:
                self._drop()
                raise PlayerProcessError(f"mpv IPC connection lost: {e}") from e

    def _read_reply(self, request_id: int) -> dict:
        while True:
            while b"\n" in self._buffer:
                line, self._buffer = self._buffer.split(b"\n", 1)
                if not line.strip():
                    continue
                try:
                    msg = json.loads(line)
                except ValueError:
                    logger.debug(f"Skipping malformed IPC line: {line[:80]!r}")
                    continue
                if msg.get("request_id") == request_id:
                    return msg

            chunk = self._transport.recv()
            if not chunk:
                self._drop()
                raise PlayerProcessError("mpv closed the IPC connection")
            self._buffer += chunk

    def _drop(self) -> None:
        if self._transport is not None:
            try:
                self._transport.close()
            except OSError as e:
                logger.debug(f"Ignoring error closing IPC transport: {e}")
            self._transport = None
        self._buffer = b""

    def close(self) -> None:
        with self._lock:
            self._drop()
