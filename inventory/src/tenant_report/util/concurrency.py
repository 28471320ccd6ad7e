from __future__ import annotations

from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from typing import Callable, Dict, Iterable, Iterator, Sequence, TypeVar

T = TypeVar("T")
R = TypeVar("R")


def map_ordered(
    func: Callable[[T], R],
    items: Sequence[T] | Iterable[T],
    max_workers: int,
) -> Iterator[R]:
    """
    Yield func(item) for each item, preserving input order.

    With max_workers <= 1 items are processed one at a time in the calling
    thread. Otherwise a thread pool keeps at most max_workers calls in flight
    and results are released in input order as they become available, so the
    consumer always runs on the calling thread. Exceptions from workers are
    propagated.
    """
    if max_workers <= 1:
        for item in items:
            yield func(item)
        return

    iterator = iter(items)
    inflight: Dict[Future[R], int] = {}
    pending: Dict[int, R] = {}
    next_index = 0
    submitted = 0

    with ThreadPoolExecutor(max_workers=max_workers) as executor:

        def _submit_next() -> bool:
            nonlocal submitted
            try:
                item = next(iterator)
            except StopIteration:
                return False
            inflight[executor.submit(func, item)] = submitted
            submitted += 1
            return True

        for _ in range(max_workers):
            if not _submit_next():
                break

        while inflight:
            done, _ = wait(inflight.keys(), return_when=FIRST_COMPLETED)
            for fut in done:
                idx = inflight.pop(fut)
                try:
                    pending[idx] = fut.result()
                except BaseException:
                    for pending_fut in inflight:
                        pending_fut.cancel()
                    raise
            for _ in range(len(done)):
                if not _submit_next():
                    break
            while next_index in pending:
                yield pending.pop(next_index)
                next_index += 1
