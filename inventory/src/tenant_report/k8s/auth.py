from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

from kubernetes import client as k8s_client
from kubernetes import config as k8s_config
from kubernetes.config.config_exception import ConfigException

from ..logging import get_logger
from ..util.errors import ClusterAuthError

LOG = get_logger(__name__)


@dataclass(frozen=True)
class ClusterContext:
    """
    Resolved Kubernetes credentials. api_client is shared by every API object
    built for the run; method records which loader succeeded.
    """

    method: str  # incluster|kubeconfig (resolved final)
    api_client: Any
    kube_context: Optional[str] = None


def _from_incluster() -> ClusterContext:
    configuration = k8s_client.Configuration()
    try:
        k8s_config.load_incluster_config(client_configuration=configuration)
    except ConfigException as e:
        raise ClusterAuthError(f"Failed to load in-cluster config: {e}") from e
    return ClusterContext(method="incluster", api_client=k8s_client.ApiClient(configuration))


def _from_kubeconfig(kube_context: Optional[str]) -> ClusterContext:
    try:
        api_client = k8s_config.new_client_from_config(context=kube_context)
    except (ConfigException, OSError) as e:
        raise ClusterAuthError(f"Failed to load kubeconfig: {e}") from e
    return ClusterContext(method="kubeconfig", api_client=api_client, kube_context=kube_context)


def resolve_cluster(method: str, kube_context: Optional[str] = None) -> ClusterContext:
    """
    Resolve Kubernetes credentials according to requested method.
    - auto: in-cluster service account -> kubeconfig
    - incluster: service account token mounted in the pod
    - kubeconfig: ~/.kube/config or $KUBECONFIG, optionally a named context
    """
    method = (method or "auto").lower()
    if method == "incluster":
        return _from_incluster()
    if method == "kubeconfig":
        return _from_kubeconfig(kube_context)
    if method != "auto":
        raise ClusterAuthError(f"Unsupported Kubernetes auth method: {method}")

    try:
        return _from_incluster()
    except ClusterAuthError as e:
        LOG.debug("In-cluster config unavailable, falling back to kubeconfig", extra={"error": str(e)})
    try:
        return _from_kubeconfig(kube_context)
    except ClusterAuthError as e:
        raise ClusterAuthError(
            "Failed to resolve Kubernetes credentials in 'auto' mode. Tried in-cluster, then kubeconfig.\n"
            f"Last error: {e}"
        ) from e


def core_v1(ctx: ClusterContext) -> Any:
    return k8s_client.CoreV1Api(ctx.api_client)
