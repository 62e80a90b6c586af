"""Console helpers shared by the CLI commands."""

import time
from collections.abc import Iterator
from contextlib import contextmanager

from rich.console import Console
from rich.progress import Progress, SpinnerColumn, TextColumn

console = Console(legacy_windows=False)


def format_duration(seconds: float) -> str:
    """Render a duration as `850ms` or `2.31s`."""
    if seconds < 1:
        return f"{int(seconds * 1000)}ms"
    return f"{seconds:.2f}s"


@contextmanager
def progress_spinner(description: str, success_message: str) -> Iterator[None]:
    """Show a transient spinner while the block runs.

    `success_message` is printed with the elapsed time only if the block
    finishes without raising.
    """
    started = time.perf_counter()
    with Progress(
        SpinnerColumn(finished_text=""),
        TextColumn("{task.description}"),
        console=console,
        transient=True,
    ) as progress:
        progress.add_task(description, total=None)
        yield
    console.print(f"{success_message} ({format_duration(time.perf_counter() - started)})")
