"""Stream resolution for identifier-keyed sources.

Some catalogs address shows by a short opaque ID instead of a page URL.
An episode is looked up through a GraphQL endpoint that answers with a
list of source URLs, most of them obfuscated (see scrapers.decoder). Each
decoded source URL in turn answers with a JSON list of playable links.

Two strategies run in order, the first success wins:
- enhanced: parse the GraphQL JSON, fetch every source concurrently, rank by host
- plain: regex-scrape the raw response, fetch sources one by one
"""

import json
import re
from concurrent.futures import ThreadPoolExecutor

import requests

from models.config import SourceSettings, settings
from models.models import SourceKind, StreamDescriptor, StreamVariant, kind_for_url
from scrapers.decoder import decode, looks_encoded
from utils.exceptions import AniReelError, NetworkError, NotFound, ParseError, UnsupportedSource
from utils.http import fetch, new_session
from utils.logging import get_logger

logger = get_logger(__name__)

EPISODE_QUERY = (
    "query ($showId: String!, $translationType: VaildTranslationTypeEnumType!, "
    "$episodeString: String!) { episode( showId: $showId translationType: $translationType "
    "episodeString: $episodeString ) { episodeString sourceUrls }}"
)

SOURCE_URL_RE = re.compile(r'"sourceUrl":"--([^"]*)"')
LINK_RE = re.compile(r'"link":"([^"]*)".*?"resolutionStr":"([^"]*)"')
HLS_LINK_RE = re.compile(r'"hls":true.*?"link":"([^"]*)"')


def is_likely_opaque_id(value: str) -> bool:
    """Check whether a locator looks like an opaque catalog ID.

    Opaque IDs are short, contain at least one letter, and are neither
    URLs nor plain episode numbers.
    """
    if not value or "http" in value:
        return False
    if value.isdigit():
        return False
    if not 6 <= len(value) < 30:
        return False
    return any(ch.isalpha() for ch in value) and value.replace("-", "").replace("_", "").isalnum()


def parse_links(body: str) -> list[StreamVariant]:
    """Extract playable links from a source response.

    Accepts the JSON form {"links": [{"link", "resolutionStr", "hls"}]} and
    falls back to regex extraction for malformed bodies.
    """
    variants: list[StreamVariant] = []
    try:
        payload = json.loads(body)
    except ValueError:
        payload = None

    if isinstance(payload, dict) and isinstance(payload.get("links"), list):
        for item in payload["links"]:
            if not isinstance(item, dict) or not item.get("link"):
                continue
            label = item.get("resolutionStr") or ("hls" if item.get("hls") else "")
            link = str(item["link"]).replace("\\", "")
            if link.startswith(("http://", "https://")):
                variants.append(StreamVariant(label=str(label), url=link))
        return variants

    for link, label in LINK_RE.findall(body):
        link = link.replace("\\", "")
        if link.startswith(("http://", "https://")):
            variants.append(StreamVariant(label=label, url=link))
    for link in HLS_LINK_RE.findall(body):
        link = link.replace("\\", "")
        if link.startswith(("http://", "https://")):
            variants.append(StreamVariant(label="hls", url=link))
    return variants


class IdSource:
    """Resolve opaque show IDs plus an episode number to stream descriptors."""

    name = "allanime"

    def __init__(
        self,
        session: requests.Session | None = None,
        sources: SourceSettings | None = None,
        max_workers: int = 4,
    ) -> None:
        self.session = session or new_session()
        self.sources = sources or settings.sources
        self.max_workers = max_workers

    @property
    def headers(self) -> dict[str, str]:
        return {"Referer": self.sources.referer}

    def can_handle(self, locator: str) -> bool:
        return is_likely_opaque_id(locator)

    def resolve(self, source_id: str, episode: int | None = None) -> StreamDescriptor:
        """Resolve one episode of an identifier-keyed show.

        Raises:
            UnsupportedSource: No episode number was supplied
            NotFound: Neither strategy produced a playable link
            NetworkError: The catalog API could not be reached
        """
        if episode is None:
            raise UnsupportedSource(f"Opaque ID {source_id} needs an episode number")

        last_error: AniReelError | None = None
        for strategy in (self.resolve_enhanced, self.resolve_plain):
            try:
                return strategy(source_id, episode)
            except (NetworkError, ParseError, NotFound) as e:
                logger.debug(f"{strategy.__name__} failed for {source_id} ep {episode}: {e}")
                last_error = e

        raise last_error or NotFound(f"No stream for {source_id} episode {episode}")

    def query_episode(self, source_id: str, episode: int) -> str:
        """Run the GraphQL episode query and return the raw body."""
        variables = {
            "showId": source_id,
            "translationType": self.sources.translation_type,
            "episodeString": str(episode),
        }
        resp = fetch(
            self.session,
            self.sources.api_url,
            params={"variables": json.dumps(variables), "query": EPISODE_QUERY},
            headers=self.headers,
        )
        return resp.text

    def normalize_source_url(self, raw: str) -> str:
        """Decode an obfuscated source URL and make it absolute."""
        url = decode(raw[2:]) if looks_encoded(raw) else raw
        if "/clock" in url and "/clock.json" not in url:
            url = url.replace("/clock", "/clock.json")
        if url.startswith("/"):
            url = self.sources.base_url.rstrip("/") + url
        return url

    def extract_source_urls(self, body: str) -> list[str]:
        """Read source URLs from the GraphQL JSON response.

        Raises:
            ParseError: Body is not JSON or lacks data.episode.sourceUrls
        """
        try:
            payload = json.loads(body)
            entries = payload["data"]["episode"]["sourceUrls"]
        except (ValueError, KeyError, TypeError) as e:
            raise ParseError(f"Unexpected episode payload: {e}") from e

        urls = []
        for entry in entries or []:
            raw = entry.get("sourceUrl") if isinstance(entry, dict) else None
            if raw:
                urls.append(self.normalize_source_url(raw))
        return urls

    def scrape_source_urls(self, body: str) -> list[str]:
        """Regex fallback for responses that are not valid JSON."""
        return [self.normalize_source_url("--" + raw) for raw in SOURCE_URL_RE.findall(body)]

    def fetch_links(self, source_url: str) -> list[StreamVariant]:
        """Fetch one source URL and parse its playable links."""
        resp = fetch(self.session, source_url, headers=self.headers)
        return parse_links(resp.text)

    def priority(self, url: str) -> int:
        """Rank a link by its host, higher is better, 0 for unranked hosts."""
        hosts = self.sources.link_priorities
        for i, host in enumerate(hosts):
            if host in url:
                return len(hosts) - i
        return 0

    def _descriptor(self, variants: list[StreamVariant]) -> StreamDescriptor:
        ranked = sorted(variants, key=lambda v: self.priority(v.url), reverse=True)
        kinds = {kind_for_url(v.url) for v in ranked}
        kind = SourceKind.PLAYLIST if kinds == {SourceKind.PLAYLIST} else kind_for_url(ranked[0].url)
        return StreamDescriptor(variants=ranked, kind=kind, headers=self.headers)

    def resolve_enhanced(self, source_id: str, episode: int) -> StreamDescriptor:
        """Structured lookup with concurrent source fetching."""
        source_urls = [
            u for u in self.extract_source_urls(self.query_episode(source_id, episode))
            if u.startswith(("http://", "https://"))
        ]
        if not source_urls:
            raise NotFound(f"No source URLs for {source_id} episode {episode}")

        def safe_fetch(url: str) -> list[StreamVariant]:
            try:
                return self.fetch_links(url)
            except (NetworkError, NotFound) as e:
                logger.debug(f"Source {url} failed: {e}")
                return []

        with ThreadPoolExecutor(max_workers=min(self.max_workers, len(source_urls))) as pool:
            results = list(pool.map(safe_fetch, source_urls))

        variants = [v for links in results for v in links]
        if not variants:
            raise NotFound(f"No playable links for {source_id} episode {episode}")
        return self._descriptor(variants)

    def resolve_plain(self, source_id: str, episode: int) -> StreamDescriptor:
        """Regex lookup, fetching sources sequentially until one yields links."""
        body = self.query_episode(source_id, episode)
        for source_url in self.scrape_source_urls(body):
            if not source_url.startswith(("http://", "https://")):
                continue
            try:
                variants = self.fetch_links(source_url)
            except (NetworkError, NotFound) as e:
                logger.debug(f"Source {source_url} failed: {e}")
                continue
            if variants:
                return self._descriptor(variants)
        raise NotFound(f"No playable links for {source_id} episode {episode}")
