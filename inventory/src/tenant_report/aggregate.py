from __future__ import annotations

from typing import Dict, List

from .models import AggregateReport, NamespaceResult, ReportDefinition, SkippedNamespace


class Aggregator:
    """
    Folds per-namespace query results into one AggregateReport.

    Only namespaces with a positive (already discounted) count are kept. The
    aggregator is fed from a single thread; the report is only observable
    through report(), once the caller has finished feeding it.
    """

    def __init__(self, definition: ReportDefinition) -> None:
        self.definition = definition
        self._results: Dict[str, NamespaceResult] = {}
        self._skipped: List[SkippedNamespace] = []

    def add(self, result: NamespaceResult) -> bool:
        """Insert result when it qualifies. Returns True if it was kept."""
        if result.count <= 0:
            return False
        if result.namespace in self._results:
            raise ValueError(f"Namespace already aggregated: {result.namespace}")
        self._results[result.namespace] = result
        return True

    def skip(self, namespace: str, reason: str) -> None:
        self._skipped.append(SkippedNamespace(namespace=namespace, reason=reason))

    def report(self) -> AggregateReport:
        return AggregateReport(
            definition=self.definition,
            results=self._results,
            skipped=tuple(self._skipped),
        )
