from __future__ import annotations

from typing import Any, Callable, Generator, Optional, Sequence, Tuple, TypeVar

T = TypeVar("T")

DEFAULT_PAGE_LIMIT = 500


def paginate(
    fetch: Callable[[Optional[str]], Tuple[Sequence[T], Optional[str]]]
) -> Generator[T, None, None]:
    """
    Generic paginator yielding items from a fetch(continue_token) function.
    The fetch function must return (items, next_token). If next_token is falsy,
    pagination stops.
    """
    token: Optional[str] = None
    while True:
        items, next_token = fetch(token)
        for it in items:
            yield it
        if not next_token:
            break
        token = next_token


def iter_k8s_list(
    list_fn: Callable[..., Any],
    *,
    limit: int = DEFAULT_PAGE_LIMIT,
    **kwargs: Any,
) -> Generator[Any, None, None]:
    """
    Walk a Kubernetes list call (e.g. CoreV1Api.list_namespace) page by page
    using the server's continue token.
    """

    def _fetch(token: Optional[str]) -> Tuple[Sequence[Any], Optional[str]]:
        resp = list_fn(limit=limit, _continue=token, **kwargs)
        metadata = getattr(resp, "metadata", None)
        return list(getattr(resp, "items", None) or []), getattr(metadata, "_continue", None)

    return paginate(_fetch)
