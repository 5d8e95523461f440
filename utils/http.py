"""Shared HTTP helpers built on requests.

Every adapter and the download manager go through these helpers so that
timeouts, identity headers and error translation stay consistent:
- new_session(): Session preloaded with the configured User-Agent
- fetch(): GET/HEAD with timeout, translating failures to NetworkError/NotFound
- is_transient(): Whether an exception is worth retrying
"""

import requests

from models.config import HttpSettings, settings
from utils.exceptions import NetworkError, NotFound
from utils.logging import get_logger

logger = get_logger(__name__)

_TRANSIENT = (
    requests.Timeout,
    requests.ConnectionError,
    requests.exceptions.ChunkedEncodingError,
    ConnectionError,
    TimeoutError,
)


def new_session(http: HttpSettings | None = None) -> requests.Session:
    """Create a requests Session with the configured User-Agent."""
    http = http or settings.http
    session = requests.Session()
    session.headers.update({"User-Agent": http.user_agent})
    return session


def fetch(
    session: requests.Session,
    url: str,
    *,
    method: str = "GET",
    timeout: float | None = None,
    allow_status: tuple[int, ...] = (),
    **kwargs,
) -> requests.Response:
    """Send a request and translate transport failures.

    Args:
        session: Session to send through
        url: Target URL
        method: HTTP method (GET or HEAD)
        timeout: Override for the configured timeout
        allow_status: Non-2xx statuses returned to the caller instead of raised
        **kwargs: Passed through to requests (headers, params, stream...)

    Returns:
        The response, with a 2xx status or one listed in allow_status

    Raises:
        NotFound: Server answered 404 or 410
        NetworkError: Timeout, connection failure or any other non-success status
    """
    timeout = timeout if timeout is not None else settings.http.timeout
    try:
        resp = session.request(method, url, timeout=timeout, **kwargs)
    except requests.RequestException as e:
        logger.debug(f"{method} {url} raised {type(e).__name__}")
        raise NetworkError(f"{method} {url} failed: {e}") from e

    if resp.ok or resp.status_code in allow_status:
        return resp

    resp.close()
    if resp.status_code in (404, 410):
        raise NotFound(f"{url} returned {resp.status_code}")
    raise NetworkError(f"{method} {url} returned HTTP {resp.status_code}")


def is_transient(exc: BaseException) -> bool:
    """Tell whether a failure is a timeout or a reset/refused connection."""
    seen = exc
    while seen is not None:
        if isinstance(seen, _TRANSIENT):
            return True
        seen = seen.__cause__
    text = str(exc).lower()
    return any(marker in text for marker in ("timed out", "timeout", "connection reset", "connection refused"))
