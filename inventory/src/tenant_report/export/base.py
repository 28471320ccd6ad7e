from __future__ import annotations

from typing import Protocol, runtime_checkable

from ..models import AggregateReport


@runtime_checkable
class ReportSink(Protocol):
    """
    Output contract for a finished AggregateReport.
    Implementations must not mutate the report and raise SinkError on failure.
    """

    name: str

    def emit(self, report: AggregateReport) -> None:
        ...
