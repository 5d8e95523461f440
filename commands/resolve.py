"""Resolve command handler: print the stream variants for an episode."""

from rich.table import Table

from commands.session import build_episodes
from scrapers.resolver import StreamResolver
from services.quality_service import QualitySelector
from ui.components import console, loading
from utils.exceptions import AniReelError
from utils.http import new_session


def resolve(args) -> int:
    """Handle `ani-reel resolve`. Returns the process exit code."""
    episode = build_episodes(args, args.episode or 1)[0]
    resolver = StreamResolver.default(new_session())
    try:
        with loading(f"Resolving {episode.display_name}..."):
            descriptor = resolver.resolve_episode(episode)
    except AniReelError as e:
        console.print(f"[error]✗ {e}[/error]")
        return 1

    chosen = QualitySelector().select(descriptor, args.quality)
    table = Table(title=f"{episode.display_name} ({descriptor.kind.value})")
    table.add_column("Quality", style="menu.title")
    table.add_column("URL", style="menu.text", overflow="fold")
    for variant in descriptor.variants:
        marker = " ►" if variant.url == chosen else ""
        table.add_row(variant.label + marker, variant.url)
    console.print(table)
    return 0
