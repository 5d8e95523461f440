"""Stream resolution for plain episode pages.

Aggregator pages hide the player in one of a handful of ways: a <video>
tag, a div carrying a data-* attribute, an iframe, or only a URL buried in
inline script. Some point at a JSON endpoint that lists every quality.
PageSource walks those cases in priority order.
"""

import re
from urllib.parse import urljoin

import requests
from selectolax.parser import HTMLParser

from models.config import SourceSettings, settings
from models.models import SourceKind, StreamDescriptor, StreamVariant, kind_for_url
from utils.exceptions import NotFound, ParseError
from utils.http import fetch, new_session
from utils.logging import get_logger

logger = get_logger(__name__)

PLAYER_SELECTORS = [
    "video",
    "video source",
    "div[data-video-src]",
    "div[data-src]",
    "div[data-url]",
    "div[data-video]",
    "div[data-player]",
    "iframe[src*='video']",
    "iframe[src*='player']",
]

PLAYER_ATTRIBUTES = ["data-video-src", "data-src", "data-url", "data-video", "data-player", "src"]

BLOGGER_RE = re.compile(r"https://www\.blogger\.com/video\.g\?token=[A-Za-z0-9_-]+")
MEDIA_RE = re.compile(r"https?://[^\s<>\"']+?\.(?:mp4|m3u8)(?:\?[^\s<>\"']*)?")


def find_player_reference(html: str, base_url: str = "") -> str | None:
    """Locate the player URL inside an episode page.

    Args:
        html: Page body
        base_url: Page URL, used to absolutize relative references

    Returns:
        Absolute URL of the player/stream, or None when nothing matches
    """
    tree = HTMLParser(html)
    for selector in PLAYER_SELECTORS:
        for node in tree.css(selector):
            for attr in PLAYER_ATTRIBUTES:
                value = node.attributes.get(attr)
                if not value or not value.strip():
                    continue
                candidate = urljoin(base_url, value.strip())
                # blob: and data: sources are only playable inside the page
                if is_http_url(candidate):
                    return candidate
                logger.debug(f"Skipping unplayable player reference {candidate[:60]}")

    return scan_for_media_url(html)


def is_http_url(url: str) -> bool:
    return url.startswith(("http://", "https://"))


def scan_for_media_url(text: str) -> str | None:
    """Find a Blogger embed or a direct .mp4/.m3u8 URL in raw text."""
    text = text.replace("\\/", "/")
    match = BLOGGER_RE.search(text) or MEDIA_RE.search(text)
    return match.group(0) if match else None


class PageSource:
    """Resolve http(s) episode pages to stream descriptors.

    Read-only and safe to retry.
    """

    name = "page"

    def __init__(
        self,
        session: requests.Session | None = None,
        sources: SourceSettings | None = None,
    ) -> None:
        self.session = session or new_session()
        self.sources = sources or settings.sources

    def can_handle(self, locator: str) -> bool:
        return locator.startswith(("http://", "https://"))

    def is_quality_endpoint(self, url: str) -> bool:
        """Check if a URL lists quality variants as JSON."""
        return any(pattern in url for pattern in self.sources.quality_endpoint_patterns)

    def resolve(self, url: str) -> StreamDescriptor:
        """Resolve an episode page URL.

        Raises:
            NotFound: Page has no recognizable player
            NetworkError: Page or endpoint could not be fetched
            ParseError: Quality endpoint returned an unexpected JSON shape
        """
        if self.is_quality_endpoint(url):
            return self.fetch_variants(url)

        resp = fetch(self.session, url)
        reference = find_player_reference(resp.text, base_url=url)
        if not reference:
            raise NotFound(f"No player found on {url}")

        logger.debug(f"Player reference on {url}: {reference}")
        if self.is_quality_endpoint(reference):
            return self.fetch_variants(reference)
        return StreamDescriptor.single(reference)

    def fetch_variants(self, endpoint: str) -> StreamDescriptor:
        """Fetch a quality endpoint and build a multi-variant descriptor.

        Expected body: {"data": [{"src": "...", "label": "720p"}, ...]}.
        A non-JSON body is scanned for a media URL instead.
        """
        resp = fetch(self.session, endpoint)
        try:
            payload = resp.json()
        except ValueError:
            fallback = scan_for_media_url(resp.text)
            if fallback:
                return StreamDescriptor.single(fallback)
            raise NotFound(f"Quality endpoint {endpoint} returned no media")

        items = payload.get("data") if isinstance(payload, dict) else None
        if not isinstance(items, list):
            raise ParseError(f"Unexpected quality payload from {endpoint}")

        variants = []
        for item in items:
            if not isinstance(item, dict) or not item.get("src"):
                continue
            src = urljoin(endpoint, str(item["src"]).replace("\\/", "/"))
            if not is_http_url(src):
                continue
            variants.append(StreamVariant(label=str(item.get("label") or ""), url=src))

        if not variants:
            raise NotFound(f"Quality endpoint {endpoint} listed no variants")

        kinds = {kind_for_url(v.url) for v in variants}
        kind = SourceKind.PLAYLIST if SourceKind.PLAYLIST in kinds else SourceKind.DIRECT
        return StreamDescriptor(variants=variants, kind=kind)
