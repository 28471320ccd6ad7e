from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, List, Optional, Sequence, Tuple

import pymongo

from .aggregate import Aggregator
from .config import RunConfig
from .export.base import ReportSink
from .k8s.secrets import resolve_credentials
from .logging import get_logger
from .models import AggregateReport, NamespaceResult
from .store.connect import ClientFactory, tenant_store
from .store.query import run_attachment_query
from .util.concurrency import map_ordered
from .util.errors import NamespaceError, describe_error
from .util.rich_progress import RunProgress

LOG = get_logger(__name__)


@dataclass(frozen=True)
class NamespaceOutcome:
    namespace: str
    results: Tuple[NamespaceResult, ...] = ()
    error: Optional[str] = None

    @property
    def skipped(self) -> bool:
        return self.error is not None


def collect_namespace(
    core: Any,
    namespace: str,
    cfg: RunConfig,
    *,
    client_factory: Optional[ClientFactory] = None,
) -> NamespaceOutcome:
    """
    Credentials -> connection -> one query per configured report, for a single namespace.

    Every failure stays inside the namespace: it is logged and returned as a
    skipped outcome so the caller can continue with the next namespace. All
    database work shares one deadline of cfg.namespace_timeout seconds.
    """
    try:
        creds = resolve_credentials(core, namespace, cfg, timeout=cfg.namespace_timeout)
        with pymongo.timeout(cfg.namespace_timeout):
            with tenant_store(cfg, namespace, creds, client_factory=client_factory) as client:
                results = tuple(
                    run_attachment_query(
                        client,
                        cfg.database,
                        cfg.collection,
                        definition,
                        sentinel=cfg.sentinel_cluster,
                        namespace=namespace,
                    )
                    for definition in cfg.reports
                )
    except NamespaceError as e:
        LOG.warning(
            "Skipping namespace: %s",
            e.reason,
            extra={"step": "namespace", "phase": "skipped", "namespace": namespace, "error": e.reason},
        )
        return NamespaceOutcome(namespace=namespace, error=e.reason)
    except Exception as e:
        reason = describe_error(e)
        LOG.warning(
            "Skipping namespace after unexpected error: %s",
            reason,
            exc_info=LOG.isEnabledFor(logging.DEBUG),
            extra={"step": "namespace", "phase": "skipped", "namespace": namespace, "error": reason},
        )
        return NamespaceOutcome(namespace=namespace, error=reason)
    return NamespaceOutcome(namespace=namespace, results=results)


def build_reports(
    core: Any,
    namespaces: Sequence[str],
    cfg: RunConfig,
    *,
    client_factory: Optional[ClientFactory] = None,
    progress: Optional[RunProgress] = None,
) -> Tuple[AggregateReport, ...]:
    """
    Run every namespace through collect_namespace in enumeration order and
    fold the outcomes into one report per configured definition.

    With cfg.workers > 1 namespaces are collected in a thread pool; outcomes
    are still folded here, on the calling thread, one at a time.
    """
    aggregators = [Aggregator(definition) for definition in cfg.reports]
    if progress is not None:
        progress.start_namespaces(len(namespaces))

    def _collect(namespace: str) -> NamespaceOutcome:
        return collect_namespace(core, namespace, cfg, client_factory=client_factory)

    for outcome in map_ordered(_collect, namespaces, cfg.workers):
        if outcome.skipped:
            for agg in aggregators:
                agg.skip(outcome.namespace, outcome.error or "")
        else:
            for agg, result in zip(aggregators, outcome.results):
                agg.add(result)
        if progress is not None:
            progress.advance(outcome.namespace, skipped=outcome.skipped)

    return tuple(agg.report() for agg in aggregators)


def emit_reports(reports: Sequence[AggregateReport], sinks: Sequence[ReportSink]) -> List[str]:
    """
    Hand every report to every sink. A failing sink is logged and the
    remaining sinks and reports are still attempted. Returns failure messages.
    """
    failures: List[str] = []
    for sink in sinks:
        for report in reports:
            try:
                sink.emit(report)
            except Exception as e:
                message = f"{sink.name}:{report.definition.sheet}: {describe_error(e)}"
                LOG.error(
                    "Writing report failed: %s",
                    describe_error(e),
                    extra={"step": "emit", "phase": "error", "sink": sink.name, "report": report.definition.sheet},
                )
                failures.append(message)
    return failures
