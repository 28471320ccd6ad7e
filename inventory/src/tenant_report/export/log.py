from __future__ import annotations

import logging
from typing import Optional

from ..logging import get_logger
from ..models import AggregateReport, NamespaceResult

LOG = get_logger(__name__)

MAX_RECORDS_PER_LINE = 10


def _summarize(result: NamespaceResult, fields: tuple[str, ...]) -> str:
    if not fields or not result.records:
        return ""
    shown = [rec.summary(fields) for rec in result.records[:MAX_RECORDS_PER_LINE]]
    tail = len(result.records) - len(shown)
    text = "; ".join(shown)
    if tail > 0:
        text = f"{text}; (+{tail} more)"
    return f" [{text}]"


def log_total(report: AggregateReport, logger: Optional[logging.Logger] = None) -> None:
    """Log the qualifying-namespace total for one report."""
    definition = report.definition
    (logger or LOG).info(
        "Total %d customers have added clusters %s",
        report.total,
        definition.label,
        extra={"report": definition.sheet, "filter": definition.filter.value},
    )


class LogSink:
    """
    Writes one summary line for the report, then one line per namespace.
    """

    name = "log"

    def __init__(self, logger: Optional[logging.Logger] = None) -> None:
        self._log = logger or LOG

    def emit(self, report: AggregateReport) -> None:
        definition = report.definition
        log_total(report, self._log)
        for result in report.sorted_results():
            self._log.info(
                "Namespace %s has %d clusters%s",
                result.namespace,
                result.count,
                _summarize(result, definition.detail_fields),
                extra={"report": definition.sheet},
            )
        if report.skipped:
            self._log.info(
                "%d namespaces skipped: %s",
                len(report.skipped),
                ", ".join(s.namespace for s in report.skipped),
                extra={"report": definition.sheet},
            )
