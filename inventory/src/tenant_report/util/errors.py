from __future__ import annotations

from enum import IntEnum

from bson.errors import BSONError
from kubernetes.client.exceptions import OpenApiException
from pymongo.errors import PyMongoError

from .redact import redact_text


class ExitCode(IntEnum):
    OK = 0
    CONFIG_ERROR = 2
    AUTH_ERROR = 3
    CLUSTER_ERROR = 4
    RUNTIME_ERROR = 5


class ReportError(Exception):
    """Base error for the report pipeline."""


class ConfigError(ReportError):
    """Raised for configuration or argument issues."""


class ClusterAuthError(ReportError):
    """Raised when Kubernetes credentials cannot be resolved."""


class ClusterAPIError(ReportError):
    """Raised when a Kubernetes API call fails in a way the run cannot survive."""


class NamespaceError(ReportError):
    """
    Base for failures scoped to a single tenant namespace.
    The pipeline catches these at the namespace boundary and skips the namespace.
    """

    def __init__(self, namespace: str, message: str) -> None:
        super().__init__(f"{message} (namespace {namespace})")
        self.namespace = namespace
        self.reason = message


class CredentialError(NamespaceError):
    """Raised when the namespace's database credentials cannot be read."""


class StoreConnectionError(NamespaceError):
    """Raised when the tenant database cannot be reached or fails its liveness check."""


class QueryError(NamespaceError):
    """Raised when a query or document decode fails for a namespace."""


class SinkError(ReportError):
    """Raised when writing a report to an output sink fails."""


def as_exit_code(exc: BaseException) -> int:
    if isinstance(exc, (ConfigError, ValueError)):
        return int(ExitCode.CONFIG_ERROR)
    if isinstance(exc, ClusterAuthError):
        return int(ExitCode.AUTH_ERROR)
    if isinstance(exc, ClusterAPIError):
        return int(ExitCode.CLUSTER_ERROR)
    if isinstance(exc, (SinkError, ReportError)):
        return int(ExitCode.RUNTIME_ERROR)
    return 1


_K8S_ERROR_TYPES: tuple[type[BaseException], ...] = (OpenApiException,)
_MONGO_ERROR_TYPES: tuple[type[BaseException], ...] = (PyMongoError, BSONError)


def is_k8s_error(exc: BaseException) -> bool:
    """
    Return True if the exception looks like a Kubernetes client error.
    """
    if isinstance(exc, _K8S_ERROR_TYPES):
        return True
    return exc.__class__.__module__.startswith(("kubernetes.", "urllib3."))


def map_k8s_error(exc: BaseException, context: str) -> ClusterAPIError | None:
    """
    Wrap Kubernetes client errors with ClusterAPIError for consistent exit codes.
    """
    if not is_k8s_error(exc):
        return None
    return ClusterAPIError(f"{context}: {_k8s_error_text(exc)}")


def _k8s_error_text(exc: BaseException) -> str:
    # ApiException renders headers and body; status/reason is enough for a log line.
    status = getattr(exc, "status", None)
    if status is not None:
        return f"({status}) {getattr(exc, 'reason', None)}"
    return _first_line(exc)


def is_mongo_error(exc: BaseException) -> bool:
    """
    Return True if the exception was raised by the MongoDB driver or BSON codec.
    """
    if isinstance(exc, _MONGO_ERROR_TYPES):
        return True
    return exc.__class__.__module__.startswith(("pymongo.", "bson."))


def map_mongo_error(
    exc: BaseException,
    namespace: str,
    context: str,
    error_cls: type[NamespaceError] = QueryError,
) -> NamespaceError | None:
    """
    Wrap MongoDB driver errors with a namespace-scoped error so the pipeline can skip the namespace.
    """
    if not is_mongo_error(exc):
        return None
    return error_cls(namespace, f"{context}: {describe_error(exc)}")


def describe_error(exc: BaseException) -> str:
    """Short, single-line description used in namespace skip logs."""
    if is_k8s_error(exc):
        return _k8s_error_text(exc)
    return _first_line(exc)


def _first_line(exc: BaseException) -> str:
    text = str(exc).strip() or exc.__class__.__name__
    return redact_text(text.splitlines()[0])
