from __future__ import annotations

from typing import Any, Optional, Sequence

from rich.console import Console
from rich.progress import BarColumn, MofNCompleteColumn, Progress, TextColumn, TimeElapsedColumn
from rich.table import Table

from ..models import AggregateReport


class RunProgress:
    """
    Namespace progress bar. Every method is a no-op when disabled so the
    pipeline can call it unconditionally.
    """

    def __init__(self, *, enabled: bool, console: Optional[Console] = None) -> None:
        self._enabled = bool(enabled)
        self._console = console or Console()
        self._progress: Optional[Progress] = None
        self._task: Optional[Any] = None
        self._skipped = 0
        self._started = False
        if self._enabled:
            self._progress = Progress(
                TextColumn("{task.description}"),
                BarColumn(),
                MofNCompleteColumn(),
                TextColumn("{task.fields[skipped]}", justify="left"),
                TimeElapsedColumn(),
                console=self._console,
                transient=True,
            )

    def __enter__(self) -> RunProgress:
        if self._enabled and self._progress and not self._started:
            self._progress.start()
            self._started = True
        return self

    def __exit__(self, exc_type: Any, exc: Any, exc_tb: Any) -> None:
        if self._enabled and self._progress and self._started:
            self._progress.stop()
            self._started = False

    def start_namespaces(self, total: int) -> None:
        if not self._enabled or not self._progress:
            return
        self._task = self._progress.add_task("Namespaces", total=total, skipped="")

    def advance(self, namespace: str, *, skipped: bool = False) -> None:
        if not self._enabled or not self._progress or self._task is None:
            return
        if skipped:
            self._skipped += 1
        label = f"skipped={self._skipped}" if self._skipped else ""
        self._progress.update(self._task, advance=1, description=f"Namespaces ({namespace})", skipped=label)


def render_report_summary_table(
    *,
    enabled: bool,
    status: str,
    reports: Sequence[AggregateReport],
    namespaces: int,
    output: str,
    console: Optional[Console] = None,
) -> None:
    if not enabled:
        return
    table = Table(title="Report Summary", show_header=True, header_style="bold")
    table.add_column("Report", style="cyan")
    table.add_column("Customers", style="white", justify="right")
    table.add_column("Clusters", style="white", justify="right")
    table.add_column("Skipped", style="white", justify="right")
    for report in reports:
        clusters = sum(r.count for r in report.results.values())
        table.add_row(report.definition.sheet, str(report.total), str(clusters), str(len(report.skipped)))
    table.caption = f"Status: {status} | Namespaces scanned: {namespaces} | Output: {output}"
    (console or Console()).print(table)
