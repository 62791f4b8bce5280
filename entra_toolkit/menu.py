"""
Numbered-menu loop shared by both tools.

Handlers take the GraphSession and return an Outcome. The loop is strictly
synchronous: render, read one line, dispatch, show the outcome, wait for Enter.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable

from rich.console import Console
from rich.table import Table

from .errorlog import log_error

console = Console()

EXIT_KEY = "0"


class Status(Enum):
    SUCCESS = "success"
    FAILED = "failed"
    CANCELLED = "cancelled"
    NOT_SUPPORTED = "not_supported"


@dataclass
class Outcome:
    status: Status
    message: str = ""
    # Set when the action invalidates the menu it ran from, e.g. a deleted app
    close_menu: bool = False

    @classmethod
    def ok(cls, message: str = "") -> Outcome:
        return cls(Status.SUCCESS, message)

    @classmethod
    def failed(cls, message: str) -> Outcome:
        return cls(Status.FAILED, message)

    @classmethod
    def cancelled(cls, message: str = "Cancelled.") -> Outcome:
        return cls(Status.CANCELLED, message)

    @classmethod
    def not_supported(cls, feature: str) -> Outcome:
        return cls(Status.NOT_SUPPORTED, f"{feature} is not yet supported.")


Handler = Callable[[Any], Outcome]


@dataclass
class MenuItem:
    key: str
    label: str
    handler: Handler


_STATUS_STYLES = {
    Status.SUCCESS: "green",
    Status.FAILED: "red",
    Status.CANCELLED: "yellow",
    Status.NOT_SUPPORTED: "magenta",
}


def ask(prompt: str) -> str:
    """Read one line of input, stripped of surrounding whitespace."""
    return console.input(f"[bold cyan]{prompt}[/bold cyan] ").strip()


def confirm(prompt: str) -> bool:
    """Yes/no question; anything but y/yes counts as no."""
    return ask(f"{prompt} [y/N]").lower() in ("y", "yes")


def pause() -> None:
    console.input("\n[dim]Press Enter to continue...[/dim]")


def render_menu(title: str, items: list[MenuItem], exit_label: str = "Exit") -> None:
    table = Table(title=title, show_header=False, title_style="bold cyan", box=None, padding=(0, 2))
    table.add_column("Key", style="bold cyan", justify="right")
    table.add_column("Action")
    for item in items:
        table.add_row(item.key, item.label)
    table.add_row(EXIT_KEY, f"[dim]{exit_label}[/dim]")
    console.print(table)


def dispatch(choice: str, items: list[MenuItem], session: Any) -> Outcome | None:
    """
    Run the handler whose key equals choice exactly.

    Returns None for unrecognized input. A handler that raises is reported,
    logged and turned into a FAILED outcome.
    """
    for item in items:
        if item.key == choice:
            try:
                return item.handler(session)
            except Exception as exc:  # noqa: BLE001  keep the menu alive
                log_error(f"Unhandled error in '{item.label}'", exc)
                return Outcome.failed(f"{item.label} failed: {exc}")
    return None


def show_outcome(outcome: Outcome) -> None:
    if outcome.message:
        style = _STATUS_STYLES[outcome.status]
        console.print(f"\n[{style}]{outcome.message}[/{style}]")


def run_menu(
    title: str,
    items: list[MenuItem],
    session: Any,
    exit_label: str = "Exit",
    header: Callable[[], None] | None = None,
) -> None:
    """Loop until the exit key is chosen."""
    while True:
        console.clear()
        if header:
            header()
        render_menu(title, items, exit_label)
        choice = ask("\nSelect an option:")
        if choice == EXIT_KEY:
            return
        outcome = dispatch(choice, items, session)
        if outcome is None:
            console.print(f"[red]Invalid choice: {choice!r}[/red]")
        else:
            show_outcome(outcome)
        pause()
        if outcome is not None and outcome.close_menu:
            return
