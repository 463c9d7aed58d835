import threading
from typing import Protocol, Sequence

from rich.console import Console
from rich.markup import escape
from rich.progress import BarColumn, MofNCompleteColumn, Progress, SpinnerColumn, TextColumn, TimeElapsedColumn

from punparse.config import get_logger

logger = get_logger(__name__)

console = Console()


class ProgressReporter(Protocol):
    """Receives one report per finished file (or group of posts)."""

    def report(self, item_name: str, errors: Sequence[str]) -> None:
        ...


class ConsoleProgress:
    """Progress bar plus error listing on the console.

    Workers report concurrently; reports are serialized so error lines of
    one file are printed together.
    """

    def __init__(self, total: int):
        self.goal = total
        self.done = 0
        self.error_count = 0
        self._lock = threading.Lock()
        self.progress = Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            MofNCompleteColumn(),
            TextColumn("[progress.percentage]{task.percentage:>3.0f}%"),
            TimeElapsedColumn(),
            console=console,
        )
        self.task = self.progress.add_task("Migrating", total=total)

    def __enter__(self):
        self.progress.start()
        return self

    def __exit__(self, *args):
        self.progress.stop()

    def report(self, item_name: str, errors: Sequence[str]) -> None:
        with self._lock:
            self.done += 1
            if errors:
                self.error_count += len(errors)
                for error in errors:
                    self.progress.console.print(f"[red]{escape(error)}[/red]", highlight=False)
                self.progress.console.print(
                    f"{len(errors)} errors occurred when processing "
                    f"{self.done}/{self.goal}: {escape(item_name)}",
                    highlight=False,
                )
            self.progress.update(self.task, advance=1, description=f"Migrating {escape(item_name)}")


class LoggingProgress:
    """Reporter for runs without a console: errors go to the log."""

    def report(self, item_name: str, errors: Sequence[str]) -> None:
        for error in errors:
            logger.error(f"{item_name}: {error}")
