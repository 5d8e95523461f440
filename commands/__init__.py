"""Command handlers for the ani-reel CLI.

Each module handles one subcommand:
- watch.py: Resolve, pick quality and play with mpv
- download.py: Download one episode or a range
- resolve.py: Print the stream variants for an episode
- session.py: Shared wiring from CLI arguments to an Orchestrator
"""

from commands.download import download
from commands.resolve import resolve
from commands.watch import watch

__all__ = ["download", "resolve", "watch"]
