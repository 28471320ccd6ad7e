from __future__ import annotations

from typing import Any, List

from ..util.errors import map_k8s_error
from ..util.pagination import iter_k8s_list


def list_tenant_namespaces(core: Any, label_selector: str) -> List[str]:
    """
    Return names of namespaces matching label_selector, in the order the API
    server lists them. Follows continue tokens so large clusters are fully
    enumerated.

    Any API failure is fatal to the run and surfaces as ClusterAPIError.
    """
    try:
        names = [
            ns.metadata.name
            for ns in iter_k8s_list(core.list_namespace, label_selector=label_selector)
            if getattr(ns, "metadata", None) is not None and ns.metadata.name
        ]
    except Exception as e:
        mapped = map_k8s_error(e, f"Kubernetes API error while listing namespaces ({label_selector})")
        if mapped:
            raise mapped from e
        raise
    # A namespace can only appear once per listing; guard against overlapping pages.
    return list(dict.fromkeys(names))
