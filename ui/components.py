"""Reusable UI components: menus, prompts, spinners and progress bars.

- menu_navigate() - InquirerPy select/fuzzy menu returning None on cancel
- confirm() - Yes/no prompt (used for resume)
- quality_prompt() / action_prompt() / episode_prompt() - Adapters for the orchestrator
- loading() - Rich spinner for blocking lookups
- download_progress() - Rich progress bar fed by download callbacks
"""

import sys
from collections.abc import Iterator
from contextlib import contextmanager

from InquirerPy import inquirer
from rich.console import Console
from rich.live import Live
from rich.progress import (
    BarColumn,
    DownloadColumn,
    Progress,
    TextColumn,
    TimeRemainingColumn,
    TransferSpeedColumn,
)
from rich.spinner import Spinner
from rich.theme import Theme

from models.models import EpisodeRef
from services.download_service import BatchProgress, DownloadJob
from services.orchestrator import PlaybackAction

# Catppuccin Mocha Theme
CATPPUCCIN_MOCHA = Theme(
    {
        "menu.title": "bold #cba6f7",
        "menu.text": "#cdd6f4",
        "menu.muted": "#6c7086",
        "info": "#89dceb",
        "success": "#a6e3a1",
        "warning": "#f9e2af",
        "error": "#f38ba8",
    }
)

console = Console(theme=CATPPUCCIN_MOCHA)

BACK = "← Back"


def interactive() -> bool:
    """Prompts only make sense on a terminal."""
    return sys.stdin.isatty() and sys.stdout.isatty()


def menu_navigate(opts: list[str], msg: str = "", enable_search: bool = False) -> str | None:
    """Display an interactive menu.

    Args:
        opts: Menu options
        msg: Title message
        enable_search: Fuzzy search instead of a plain list (for long lists)

    Returns:
        Selected option, or None when the user goes back or presses Q
    """
    choices = [*opts, BACK]
    keybindings = {"skip": [{"key": "q"}, {"key": "Q"}]}

    if enable_search:
        prompt = inquirer.fuzzy(
            message=msg or "Menu",
            choices=choices,
            qmark="",
            amark="►",
            pointer="►",
            instruction="(Type to search, Q to go back)",
            mandatory=False,
            keybindings=keybindings,
            max_height="70%",
            raise_keyboard_interrupt=False,
        )
    else:
        prompt = inquirer.select(
            message=msg or "Menu",
            choices=choices,
            qmark="",
            amark="►",
            pointer="►",
            instruction="(Use arrow keys, Q to go back)",
            mandatory=False,
            keybindings=keybindings,
            raise_keyboard_interrupt=False,
        )

    answer = prompt.execute()
    if answer is None or answer == BACK:
        return None
    return answer


def confirm(message: str, default: bool = True) -> bool:
    """Yes/no question; non-interactive sessions take the default."""
    if not interactive():
        return default
    answer = inquirer.confirm(message=message, default=default, qmark="").execute()
    return bool(answer)


def quality_prompt(choices: list[str], message: str) -> str | None:
    if not interactive():
        return None
    return menu_navigate(choices, msg=message)


def action_prompt(episode: EpisodeRef, actions: list[PlaybackAction]) -> PlaybackAction | None:
    """Menu shown in the terminal while mpv plays."""
    labels = [action.value for action in actions]
    answer = menu_navigate(labels, msg=f"Now playing: {episode.display_name}")
    if answer is None:
        return PlaybackAction.QUIT
    return PlaybackAction(answer)


def episode_prompt(episodes: list[EpisodeRef]) -> EpisodeRef | None:
    labels = [ep.display_name for ep in episodes]
    answer = menu_navigate(labels, msg="Choose an episode", enable_search=len(labels) > 15)
    if answer is None:
        return None
    return episodes[labels.index(answer)]


@contextmanager
def loading(msg: str = "Loading...") -> Iterator[None]:
    """Context manager for displaying a spinner during blocking operations.

    Usage:
        with loading("Resolving stream..."):
            descriptor = resolver.resolve(url)
    """
    with Live(
        Spinner("dots", text=msg),
        console=console,
        refresh_per_second=12.5,
        transient=True,
    ):
        yield


def _progress_bar() -> Progress:
    return Progress(
        TextColumn("[info]{task.description}"),
        BarColumn(),
        DownloadColumn(),
        TransferSpeedColumn(),
        TimeRemainingColumn(),
        console=console,
    )


@contextmanager
def download_progress(description: str) -> Iterator:
    """Progress bar for a single DownloadJob.

    Yields a callback to pass as on_progress.
    """
    with _progress_bar() as progress:
        task = progress.add_task(description, total=None)

        def update(job: DownloadJob) -> None:
            progress.update(task, total=job.total_bytes or None, completed=job.bytes_received)

        yield update


@contextmanager
def batch_progress(description: str) -> Iterator:
    """Progress bar for a batch; yields a callback taking BatchProgress."""
    with _progress_bar() as progress:
        task = progress.add_task(description, total=None)

        def update(batch: BatchProgress) -> None:
            progress.update(task, total=batch.total_bytes or None, completed=batch.bytes_received)

        yield update
