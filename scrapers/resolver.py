"""Source adapter: turn any episode locator into a StreamDescriptor.

Sources implement SourceProtocol and are tried in registration order;
the first one whose can_handle() accepts the locator resolves it.
"""

from typing import Protocol

import requests

from models.config import SourceSettings, settings
from models.models import EpisodeRef, StreamDescriptor
from scrapers.id_source import IdSource
from scrapers.page_source import PageSource
from utils.exceptions import UnsupportedSource
from utils.http import new_session
from utils.logging import get_logger

logger = get_logger(__name__)


class SourceProtocol(Protocol):
    """Protocol for stream sources.

    Uses structural typing (duck typing) - no inheritance required.
    """

    name: str  # Source family (e.g., "allanime")

    def can_handle(self, locator: str) -> bool:
        """Whether this source understands the locator."""
        ...

    def resolve(self, locator: str, episode: int | None = None) -> StreamDescriptor:
        """Resolve the locator to a descriptor.

        Raises:
            NotFound, NetworkError, ParseError, UnsupportedSource
        """
        ...


class _PageAdapter:
    """PageSource adapted to the two-argument resolve signature."""

    def __init__(self, source: PageSource) -> None:
        self.source = source
        self.name = source.name

    def can_handle(self, locator: str) -> bool:
        return self.source.can_handle(locator)

    def resolve(self, locator: str, episode: int | None = None) -> StreamDescriptor:
        return self.source.resolve(locator)


class StreamResolver:
    """Dispatch locators to the registered sources."""

    def __init__(self, sources: list[SourceProtocol] | None = None) -> None:
        self.sources: list[SourceProtocol] = list(sources or [])

    @classmethod
    def default(
        cls,
        session: requests.Session | None = None,
        source_settings: SourceSettings | None = None,
    ) -> "StreamResolver":
        """Resolver with the built-in page and opaque-ID sources."""
        session = session or new_session()
        source_settings = source_settings or settings.sources
        return cls(
            [
                _PageAdapter(PageSource(session, source_settings)),
                IdSource(session, source_settings),
            ]
        )

    def register(self, source: SourceProtocol) -> None:
        self.sources.append(source)

    def source_for(self, locator: str) -> SourceProtocol:
        for source in self.sources:
            if source.can_handle(locator):
                return source
        raise UnsupportedSource(f"No source understands {locator!r}")

    def resolve(self, locator: str, episode: int | None = None) -> StreamDescriptor:
        """Resolve a page URL or opaque ID.

        Args:
            locator: http(s) page URL or opaque catalog ID
            episode: Episode number, required for opaque IDs

        Raises:
            UnsupportedSource: Nothing handles the locator
            NotFound, NetworkError, ParseError: From the chosen source
        """
        source = self.source_for(locator)
        logger.debug(f"Resolving {locator} (episode {episode}) with {source.name}")
        return source.resolve(locator, episode)

    def resolve_episode(self, episode: EpisodeRef) -> StreamDescriptor:
        return self.resolve(episode.locator, episode.number)
