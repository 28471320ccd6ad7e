from __future__ import annotations

import logging
import sys
from time import perf_counter
from typing import Any, Dict, Optional

from .config import RunConfig, dump_config, load_run_config
from .export import build_sinks
from .export.log import log_total
from .k8s.auth import ClusterContext, core_v1, resolve_cluster
from .k8s.namespaces import list_tenant_namespaces
from .logging import LogConfig, get_logger, setup_logging
from .pipeline import build_reports, emit_reports
from .util.errors import ClusterAuthError, ConfigError, ExitCode, as_exit_code
from .util.rich_progress import RunProgress, render_report_summary_table

LOG = get_logger(__name__)


class _StepTimers:
    def __init__(self) -> None:
        self._starts: Dict[str, float] = {}

    def start(self, key: str) -> None:
        self._starts[key] = perf_counter()

    def finish(self, key: str) -> Optional[int]:
        started = self._starts.pop(key, None)
        if started is None:
            return None
        return int((perf_counter() - started) * 1000)


def _log_event(
    logger: Any,
    level: int,
    message: str,
    *,
    step: str,
    phase: str,
    timers: Optional[_StepTimers] = None,
    timer_key: Optional[str] = None,
    **extra: Any,
) -> None:
    key = timer_key or step
    duration_ms = None
    if timers is not None:
        if phase == "start":
            timers.start(key)
        elif phase in {"complete", "error", "warning", "skipped"}:
            duration_ms = timers.finish(key)
    payload: Dict[str, Any] = {"step": step, "phase": phase, "event": f"{step}.{phase}"}
    if duration_ms is not None:
        payload["duration_ms"] = duration_ms
    payload.update(extra)
    logger.log(level, message, extra=payload)


def _resolve_cluster(cfg: RunConfig) -> ClusterContext:
    return resolve_cluster(cfg.kube_auth, cfg.kube_context)


def _progress_enabled(cfg: RunConfig) -> bool:
    if cfg.progress is not None:
        return cfg.progress
    isatty = getattr(sys.stdout, "isatty", None)
    return bool(isatty and isatty())


def cmd_run(cfg: RunConfig) -> int:
    timers = _StepTimers()
    _log_event(
        LOG,
        logging.INFO,
        "Starting report run",
        step="run",
        phase="start",
        timers=timers,
        config=dump_config(cfg),
    )

    _log_event(LOG, logging.INFO, "Resolving cluster credentials", step="auth", phase="start", timers=timers)
    ctx = _resolve_cluster(cfg)
    core = core_v1(ctx)
    _log_event(
        LOG,
        logging.INFO,
        "Cluster credentials resolved",
        step="auth",
        phase="complete",
        timers=timers,
        method=ctx.method,
    )

    _log_event(LOG, logging.INFO, "Listing tenant namespaces", step="namespaces", phase="start", timers=timers)
    namespaces = list_tenant_namespaces(core, cfg.label_selector)
    _log_event(
        LOG,
        logging.INFO,
        "Tenant namespaces listed",
        step="namespaces",
        phase="complete",
        timers=timers,
        label_selector=cfg.label_selector,
        count=len(namespaces),
    )

    progress_enabled = _progress_enabled(cfg)
    _log_event(
        LOG,
        logging.INFO,
        "Collecting cluster objects",
        step="collect",
        phase="start",
        timers=timers,
        namespaces=len(namespaces),
        reports=[r.sheet for r in cfg.reports],
        workers=cfg.workers,
    )
    with RunProgress(enabled=progress_enabled) as progress:
        reports = build_reports(core, namespaces, cfg, progress=progress)
    skipped = len(reports[0].skipped) if reports else 0
    _log_event(
        LOG,
        logging.INFO,
        "Collection complete",
        step="collect",
        phase="complete",
        timers=timers,
        namespaces=len(namespaces),
        skipped=skipped,
    )

    # Totals always reach the log; the log sink writes its own.
    if "log" not in cfg.sinks:
        for report in reports:
            log_total(report, LOG)

    _log_event(LOG, logging.INFO, "Writing reports", step="emit", phase="start", timers=timers, sinks=list(cfg.sinks))
    failures = emit_reports(reports, build_sinks(cfg.sinks, cfg))
    status = "FAILED_OUTPUT" if failures else "OK"
    _log_event(
        LOG,
        logging.WARNING if failures else logging.INFO,
        "Writing reports finished with errors" if failures else "Reports written",
        step="emit",
        phase="error" if failures else "complete",
        timers=timers,
        failures=failures,
    )

    render_report_summary_table(
        enabled=progress_enabled,
        status=status,
        reports=reports,
        namespaces=len(namespaces),
        output=str(cfg.output) if "xlsx" in cfg.sinks else "-",
    )
    _log_event(
        LOG,
        logging.INFO,
        "Report run finished",
        step="run",
        phase="complete",
        timers=timers,
        status=status,
        totals={r.definition.sheet: r.total for r in reports},
    )
    return int(ExitCode.RUNTIME_ERROR) if failures else int(ExitCode.OK)


def cmd_list_namespaces(cfg: RunConfig) -> int:
    ctx = _resolve_cluster(cfg)
    for name in list_tenant_namespaces(core_v1(ctx), cfg.label_selector):
        print(name)
    return 0


def main() -> None:
    try:
        command, cfg = load_run_config()
        setup_logging(LogConfig(level=cfg.log_level, json_logs=cfg.json_logs))

        if command == "run":
            code = cmd_run(cfg)
        elif command == "list-namespaces":
            code = cmd_list_namespaces(cfg)
        else:
            raise ConfigError(f"Unknown command: {command}")

        sys.exit(code)
    except SystemExit:
        raise
    except BrokenPipeError:
        # Common when users pipe list-namespaces to `head` or similar tools.
        sys.exit(0)
    except Exception as e:
        setup_logging(LogConfig())  # no-op when already configured
        extra_fields = {"error": str(e)}
        if isinstance(e, ClusterAuthError):
            extra_fields["hint"] = "run inside the cluster or pass --kube-auth kubeconfig"
        LOG.error("Execution failed", extra=extra_fields)
        sys.exit(as_exit_code(e))


if __name__ == "__main__":
    main()
