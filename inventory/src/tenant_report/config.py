from __future__ import annotations

import argparse
import json
import os
import warnings
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml

from .export import is_sink_registered, registered_sink_names
from .models import DEFAULT_REPORTS, FilterKind, ReportDefinition

# --------
# Defaults
# --------
DEFAULT_LABEL_SELECTOR = "tenant"
DEFAULT_DATABASE = "px-backup"
DEFAULT_COLLECTION = "clusterobjects"
DEFAULT_SECRET_NAME = "pxc-backup-mongodb"
DEFAULT_SERVICE_NAME = "pxc-backup-mongodb-headless"
DEFAULT_PORT = 27017
DEFAULT_SENTINEL_CLUSTER = "testdrive-cluster"
DEFAULT_OUTPUT = "cluster.xlsx"
DEFAULT_NAMESPACE_TIMEOUT = 60.0
DEFAULT_WORKERS = 1

DEFAULT_USERNAME_KEY = "mongodb-username"
DEFAULT_PASSWORD_KEY = "mongodb-password"
DEFAULT_ROOT_USERNAME = "root"
DEFAULT_ROOT_PASSWORD_KEY = "mongodb-root-password"

CONNECTION_FORMS = {"direct", "seedlist"}
CREDENTIAL_MODES = {"scoped", "root"}
KUBE_AUTH_METHODS = {"auto", "incluster", "kubeconfig"}
DEFAULT_SINKS = ("log", "xlsx")

ALLOWED_CONFIG_KEYS = {
    "label_selector",
    "database",
    "collection",
    "secret_name",
    "service_name",
    "port",
    "connection",
    "credentials",
    "username_key",
    "password_key",
    "root_username",
    "root_password_key",
    "sentinel_cluster",
    "reports",
    "sinks",
    "output",
    "namespace_timeout",
    "workers",
    "kube_auth",
    "kube_context",
    "progress",
    "json_logs",
    "log_level",
}
BOOL_CONFIG_KEYS = {"progress", "json_logs"}
INT_CONFIG_KEYS = {"port", "workers"}
FLOAT_CONFIG_KEYS = {"namespace_timeout"}
PATH_CONFIG_KEYS = {"output"}
STR_CONFIG_KEYS = {
    "label_selector",
    "database",
    "collection",
    "secret_name",
    "service_name",
    "connection",
    "credentials",
    "username_key",
    "password_key",
    "root_username",
    "root_password_key",
    "sentinel_cluster",
    "kube_auth",
    "kube_context",
    "log_level",
}
CHOICE_CONFIG_KEYS = {
    "connection": CONNECTION_FORMS,
    "credentials": CREDENTIAL_MODES,
    "kube_auth": KUBE_AUTH_METHODS,
}


@dataclass(frozen=True)
class RunConfig:
    # Tenancy
    label_selector: str = DEFAULT_LABEL_SELECTOR

    # Tenant database
    database: str = DEFAULT_DATABASE
    collection: str = DEFAULT_COLLECTION
    secret_name: str = DEFAULT_SECRET_NAME
    service_name: str = DEFAULT_SERVICE_NAME
    port: int = DEFAULT_PORT
    connection: str = "direct"  # direct|seedlist
    credentials: str = "scoped"  # scoped|root
    username_key: str = DEFAULT_USERNAME_KEY
    password_key: str = DEFAULT_PASSWORD_KEY
    root_username: str = DEFAULT_ROOT_USERNAME
    root_password_key: str = DEFAULT_ROOT_PASSWORD_KEY

    # Queries and output
    sentinel_cluster: str = DEFAULT_SENTINEL_CLUSTER
    reports: Tuple[ReportDefinition, ...] = DEFAULT_REPORTS
    sinks: Tuple[str, ...] = DEFAULT_SINKS
    output: Path = Path(DEFAULT_OUTPUT)

    # Execution
    namespace_timeout: float = DEFAULT_NAMESPACE_TIMEOUT
    workers: int = DEFAULT_WORKERS

    # Kubernetes auth
    kube_auth: str = "auto"  # auto|incluster|kubeconfig
    kube_context: Optional[str] = None

    # Output/logging
    progress: Optional[bool] = None  # None means "when stdout is a TTY"
    json_logs: bool = False
    log_level: str = "INFO"

    # Internal/derived
    started_at: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat(timespec="seconds")
    )


def _parse_config_file(path: Path) -> Dict[str, Any]:
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")
    text = path.read_text(encoding="utf-8")
    try:
        if path.suffix.lower() in {".yaml", ".yml"}:
            data = yaml.safe_load(text) or {}
        elif path.suffix.lower() == ".json":
            data = json.loads(text)
        else:
            # Try YAML first then JSON
            try:
                data = yaml.safe_load(text) or {}
            except yaml.YAMLError:
                data = json.loads(text)
    except (yaml.YAMLError, ValueError) as e:
        raise ValueError(f"Failed to parse config file {path}: {e}") from e
    if not isinstance(data, dict):
        raise ValueError("Top-level config must be an object")
    return data


def _env_str(name: str) -> Optional[str]:
    raw = os.getenv(name)
    if raw is None:
        return None
    raw = raw.strip()
    if not raw:
        return None
    return raw


def _env_bool(name: str) -> Optional[bool]:
    raw = os.getenv(name)
    if raw is None:
        return None
    raw = raw.strip().lower()
    if not raw:
        return None
    return raw in {"1", "true", "yes", "on"}


def _env_int(name: str) -> Optional[int]:
    raw = os.getenv(name)
    if raw is None:
        return None
    try:
        return int(raw)
    except ValueError:
        return None


def _env_float(name: str) -> Optional[float]:
    raw = os.getenv(name)
    if raw is None:
        return None
    try:
        return float(raw)
    except ValueError:
        return None


def _coerce_bool(key: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        raw = value.strip().lower()
        if raw in {"1", "true", "yes", "on"}:
            return True
        if raw in {"0", "false", "no", "off"}:
            return False
    raise ValueError(f"Config field '{key}' must be a boolean")


def _coerce_int(key: str, value: Any) -> int:
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip():
        try:
            return int(value)
        except ValueError:
            pass
    raise ValueError(f"Config field '{key}' must be an integer")


def _coerce_float(key: str, value: Any) -> float:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return float(value)
    if isinstance(value, str) and value.strip():
        try:
            return float(value)
        except ValueError:
            pass
    raise ValueError(f"Config field '{key}' must be a number")


def _split_csv(value: str) -> List[str]:
    return [part.strip() for part in value.split(",") if part.strip()]


def parse_sinks(value: Any) -> Tuple[str, ...]:
    if isinstance(value, str):
        names = _split_csv(value)
    elif isinstance(value, (list, tuple)) and all(isinstance(v, str) for v in value):
        names = [v.strip() for v in value if v.strip()]
    else:
        raise ValueError("Config field 'sinks' must be a list of strings or comma-separated string")
    out: List[str] = []
    for name in names:
        lowered = name.lower()
        if not is_sink_registered(lowered):
            raise ValueError(f"Unknown sink '{name}' (expected one of: {', '.join(registered_sink_names())})")
        if lowered not in out:
            out.append(lowered)
    if not out:
        raise ValueError("At least one sink must be configured")
    return tuple(out)


def _report_from_item(item: Any) -> ReportDefinition:
    if isinstance(item, str):
        # "filter" or "filter=sheet"
        kind_raw, _, sheet = item.partition("=")
        return ReportDefinition.for_filter(FilterKind.parse(kind_raw), sheet=sheet.strip() or None)
    if isinstance(item, dict):
        if "filter" not in item:
            raise ValueError("Each entry in 'reports' must define a 'filter'")
        sheet = item.get("sheet")
        label = item.get("label")
        if sheet is not None and not isinstance(sheet, str):
            raise ValueError("Report 'sheet' must be a string")
        if label is not None and not isinstance(label, str):
            raise ValueError("Report 'label' must be a string")
        return ReportDefinition.for_filter(FilterKind.parse(item["filter"]), sheet=sheet, label=label)
    raise ValueError("Entries in 'reports' must be filter names or objects")


def parse_reports(value: Any) -> Tuple[ReportDefinition, ...]:
    """
    Build report definitions from a comma-separated string ("teleport-attached=pvtIP,all")
    or a list of names/objects ({"filter": ..., "sheet": ..., "label": ...}).
    """
    if isinstance(value, str):
        items: List[Any] = _split_csv(value)
    elif isinstance(value, (list, tuple)):
        items = list(value)
    else:
        raise ValueError("Config field 'reports' must be a list or comma-separated string")
    reports = tuple(_report_from_item(item) for item in items)
    if not reports:
        raise ValueError("At least one report must be configured")
    seen: set[str] = set()
    for rep in reports:
        if rep.sheet in seen:
            raise ValueError(f"Duplicate report sheet name: {rep.sheet}")
        seen.add(rep.sheet)
    return reports


def _normalize_config_file(data: Dict[str, Any]) -> Dict[str, Any]:
    unknown = sorted(set(data.keys()) - ALLOWED_CONFIG_KEYS)
    if unknown:
        warnings.warn(f"Unknown config keys ignored: {', '.join(unknown)}")
    normalized: Dict[str, Any] = {}
    for key, value in data.items():
        if key not in ALLOWED_CONFIG_KEYS:
            continue
        if value is None:
            normalized[key] = None
            continue
        if key == "reports":
            normalized[key] = parse_reports(value)
        elif key == "sinks":
            normalized[key] = parse_sinks(value)
        elif key in BOOL_CONFIG_KEYS:
            normalized[key] = _coerce_bool(key, value)
        elif key in INT_CONFIG_KEYS:
            normalized[key] = _coerce_int(key, value)
        elif key in FLOAT_CONFIG_KEYS:
            normalized[key] = _coerce_float(key, value)
        elif key in PATH_CONFIG_KEYS:
            if isinstance(value, (str, Path)):
                normalized[key] = value
            else:
                raise ValueError(f"Config field '{key}' must be a string path")
        elif key in STR_CONFIG_KEYS:
            if isinstance(value, str):
                normalized[key] = value
            else:
                raise ValueError(f"Config field '{key}' must be a string")
        else:
            normalized[key] = value
    _check_choices(normalized)
    return _compact_dict(normalized)


def _check_choices(data: Dict[str, Any]) -> None:
    for key, choices in CHOICE_CONFIG_KEYS.items():
        value = data.get(key)
        if value is None:
            continue
        value = str(value).lower()
        if value not in choices:
            raise ValueError(f"Config field '{key}' must be one of: {', '.join(sorted(choices))}")
        data[key] = value


def _compact_dict(data: Dict[str, Any]) -> Dict[str, Any]:
    """
    Drop keys with None values so they don't override lower-precedence config.
    """
    return {k: v for k, v in data.items() if v is not None}


def _merge_dicts(a: Dict[str, Any], b: Dict[str, Any]) -> Dict[str, Any]:
    """
    Shallow merge: values in b override a.
    """
    merged = dict(a)
    merged.update(b)
    return merged


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tenant-report",
        description="Report clusters attached to each tenant's backup database",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    # common flags builder
    def add_common(p: argparse.ArgumentParser) -> None:
        p.add_argument("--config", type=Path, help="Optional YAML/JSON config file")
        p.add_argument(
            "--json-logs",
            action=argparse.BooleanOptionalAction,
            default=None,
            help="Enable JSON logs",
        )
        p.add_argument("--log-level", default=None, help="Log level (INFO, DEBUG, ...)")
        p.add_argument(
            "--kube-auth",
            default=None,
            choices=sorted(KUBE_AUTH_METHODS),
            help="Kubernetes credentials (default: auto = in-cluster, then kubeconfig)",
        )
        p.add_argument("--kube-context", default=None, help="kubeconfig context (kubeconfig auth)")
        p.add_argument(
            "--label-selector",
            default=None,
            help=f'Namespace label selector (default: "{DEFAULT_LABEL_SELECTOR}")',
        )

    # run
    p_run = subparsers.add_parser("run", help="Build the cluster attachment report")
    add_common(p_run)
    p_run.add_argument(
        "--reports",
        default=None,
        help="Comma-separated filters, optionally FILTER=SHEET "
        f"(filters: {', '.join(k.value for k in FilterKind)})",
    )
    p_run.add_argument("--sinks", default=None, help="Comma-separated output sinks: log, xlsx")
    p_run.add_argument("--output", type=Path, default=None, help=f"Spreadsheet path (default {DEFAULT_OUTPUT})")
    p_run.add_argument("--database", default=None, help=f"Tenant database (default {DEFAULT_DATABASE})")
    p_run.add_argument("--collection", default=None, help=f"Collection (default {DEFAULT_COLLECTION})")
    p_run.add_argument("--secret-name", default=None, help=f"Credentials secret (default {DEFAULT_SECRET_NAME})")
    p_run.add_argument("--service-name", default=None, help=f"Database service (default {DEFAULT_SERVICE_NAME})")
    p_run.add_argument("--port", type=int, default=None, help=f"Database port (default {DEFAULT_PORT})")
    p_run.add_argument("--connection", default=None, choices=sorted(CONNECTION_FORMS), help="Connection string form")
    p_run.add_argument("--credentials", default=None, choices=sorted(CREDENTIAL_MODES), help="Credential keys to use")
    p_run.add_argument(
        "--namespace-timeout",
        type=float,
        default=None,
        help=f"Seconds allowed per namespace (default {DEFAULT_NAMESPACE_TIMEOUT:g})",
    )
    p_run.add_argument(
        "--workers", type=int, default=None, help=f"Namespaces processed in parallel (default {DEFAULT_WORKERS})"
    )
    p_run.add_argument(
        "--progress",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Show progress bar and summary table (default: when attached to a terminal)",
    )

    # list-namespaces
    p_ln = subparsers.add_parser("list-namespaces", help="List tenant namespaces")
    add_common(p_ln)
    return parser


def load_run_config(
    args: Optional[argparse.Namespace] = None,
    argv: Optional[list[str]] = None,
    subcommand: Optional[str] = None,
) -> Tuple[str, RunConfig]:
    """
    Build RunConfig by merging defaults, optional config file, env vars, and CLI args.
    Precedence (low -> high): defaults < config file < env < CLI.

    Returns:
      (command, RunConfig) where command is the subcommand selected: run|list-namespaces
    """
    parser = build_parser()
    ns = args if args is not None else parser.parse_args(argv)
    command = ns.command if subcommand is None else subcommand

    # defaults
    base: Dict[str, Any] = {
        "label_selector": DEFAULT_LABEL_SELECTOR,
        "database": DEFAULT_DATABASE,
        "collection": DEFAULT_COLLECTION,
        "secret_name": DEFAULT_SECRET_NAME,
        "service_name": DEFAULT_SERVICE_NAME,
        "port": DEFAULT_PORT,
        "connection": "direct",
        "credentials": "scoped",
        "username_key": DEFAULT_USERNAME_KEY,
        "password_key": DEFAULT_PASSWORD_KEY,
        "root_username": DEFAULT_ROOT_USERNAME,
        "root_password_key": DEFAULT_ROOT_PASSWORD_KEY,
        "sentinel_cluster": DEFAULT_SENTINEL_CLUSTER,
        "reports": DEFAULT_REPORTS,
        "sinks": DEFAULT_SINKS,
        "output": DEFAULT_OUTPUT,
        "namespace_timeout": DEFAULT_NAMESPACE_TIMEOUT,
        "workers": DEFAULT_WORKERS,
        "kube_auth": "auto",
        "kube_context": None,
        "progress": None,
        "json_logs": False,
        "log_level": "INFO",
    }

    # config file
    file_cfg: Dict[str, Any] = {}
    if getattr(ns, "config", None):
        file_cfg = _normalize_config_file(_parse_config_file(Path(ns.config)))

    # env
    env_cfg: Dict[str, Any] = _compact_dict(
        {
            "label_selector": _env_str("TENANT_REPORT_LABEL_SELECTOR"),
            "database": _env_str("TENANT_REPORT_DATABASE"),
            "collection": _env_str("TENANT_REPORT_COLLECTION"),
            "secret_name": _env_str("TENANT_REPORT_SECRET_NAME"),
            "service_name": _env_str("TENANT_REPORT_SERVICE_NAME"),
            "port": _env_int("TENANT_REPORT_PORT"),
            "connection": _env_str("TENANT_REPORT_CONNECTION"),
            "credentials": _env_str("TENANT_REPORT_CREDENTIALS"),
            "sentinel_cluster": _env_str("TENANT_REPORT_SENTINEL_CLUSTER"),
            "reports": _env_str("TENANT_REPORT_REPORTS"),
            "sinks": _env_str("TENANT_REPORT_SINKS"),
            "output": _env_str("TENANT_REPORT_OUTPUT"),
            "namespace_timeout": _env_float("TENANT_REPORT_NAMESPACE_TIMEOUT"),
            "workers": _env_int("TENANT_REPORT_WORKERS"),
            "kube_auth": _env_str("TENANT_REPORT_KUBE_AUTH"),
            "kube_context": _env_str("TENANT_REPORT_KUBE_CONTEXT"),
            "progress": _env_bool("TENANT_REPORT_PROGRESS"),
            "json_logs": _env_bool("TENANT_REPORT_JSON_LOGS"),
            "log_level": _env_str("TENANT_REPORT_LOG_LEVEL"),
        }
    )
    _check_choices(env_cfg)

    # CLI
    cli_cfg: Dict[str, Any] = _compact_dict(
        {
            "label_selector": getattr(ns, "label_selector", None),
            "database": getattr(ns, "database", None),
            "collection": getattr(ns, "collection", None),
            "secret_name": getattr(ns, "secret_name", None),
            "service_name": getattr(ns, "service_name", None),
            "port": getattr(ns, "port", None),
            "connection": getattr(ns, "connection", None),
            "credentials": getattr(ns, "credentials", None),
            "reports": getattr(ns, "reports", None),
            "sinks": getattr(ns, "sinks", None),
            "output": getattr(ns, "output", None),
            "namespace_timeout": getattr(ns, "namespace_timeout", None),
            "workers": getattr(ns, "workers", None),
            "kube_auth": getattr(ns, "kube_auth", None),
            "kube_context": getattr(ns, "kube_context", None),
            "progress": getattr(ns, "progress", None),
            "json_logs": getattr(ns, "json_logs", None),
            "log_level": getattr(ns, "log_level", None),
        }
    )

    merged = _merge_dicts(base, _merge_dicts(file_cfg, _merge_dicts(env_cfg, cli_cfg)))

    # Normalize/construct types
    reports = merged["reports"]
    if not isinstance(reports, tuple) or not all(isinstance(r, ReportDefinition) for r in reports):
        reports = parse_reports(reports)
    sinks = merged["sinks"]
    if isinstance(sinks, str):
        sinks = parse_sinks(sinks)

    workers = int(merged["workers"])
    if workers < 1:
        raise ValueError("workers must be at least 1")
    namespace_timeout = float(merged["namespace_timeout"])
    if namespace_timeout <= 0:
        raise ValueError("namespace_timeout must be positive")
    kube_context = merged.get("kube_context")
    progress = merged.get("progress")

    cfg = RunConfig(
        label_selector=str(merged["label_selector"]),
        database=str(merged["database"]),
        collection=str(merged["collection"]),
        secret_name=str(merged["secret_name"]),
        service_name=str(merged["service_name"]),
        port=int(merged["port"]),
        connection=str(merged["connection"]),
        credentials=str(merged["credentials"]),
        username_key=str(merged["username_key"]),
        password_key=str(merged["password_key"]),
        root_username=str(merged["root_username"]),
        root_password_key=str(merged["root_password_key"]),
        sentinel_cluster=str(merged["sentinel_cluster"]),
        reports=reports,
        sinks=tuple(sinks),
        output=Path(merged["output"]),
        namespace_timeout=namespace_timeout,
        workers=workers,
        kube_auth=str(merged["kube_auth"] or "auto"),
        kube_context=str(kube_context) if kube_context else None,
        progress=bool(progress) if progress is not None else None,
        json_logs=bool(merged["json_logs"]),
        log_level=(merged.get("log_level") or "INFO").upper(),
    )
    return command, cfg


def dump_config(cfg: RunConfig) -> Dict[str, Any]:
    return {
        "label_selector": cfg.label_selector,
        "database": cfg.database,
        "collection": cfg.collection,
        "secret_name": cfg.secret_name,
        "service_name": cfg.service_name,
        "port": cfg.port,
        "connection": cfg.connection,
        "credentials": cfg.credentials,
        "sentinel_cluster": cfg.sentinel_cluster,
        "reports": [
            {"filter": r.filter.value, "sheet": r.sheet, "label": r.label} for r in cfg.reports
        ],
        "sinks": list(cfg.sinks),
        "output": str(cfg.output),
        "namespace_timeout": cfg.namespace_timeout,
        "workers": cfg.workers,
        "kube_auth": cfg.kube_auth,
        "kube_context": cfg.kube_context,
        "started_at": cfg.started_at,
    }
