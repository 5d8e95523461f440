"""Stream sources.

- decoder: Hex-pair substitution decoder for obfuscated source URLs
- page_source: Episode pages (player tags, embeds, quality JSON endpoints)
- id_source: Opaque catalog IDs resolved through a GraphQL API
- resolver: Dispatch from locator to source
"""

from scrapers.decoder import decode
from scrapers.resolver import SourceProtocol, StreamResolver

__all__ = ["decode", "SourceProtocol", "StreamResolver"]
