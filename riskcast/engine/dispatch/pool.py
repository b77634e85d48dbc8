"""
Bounded fan-out with per-item error capture.

User-level and job-level work runs on a fixed-size thread pool so downstream
stores never see unbounded concurrency. One item raising never cancels the
others: its exception is captured in its ``PoolResult``.
"""

from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from typing import Callable, Generic, Optional, Sequence, TypeVar

import structlog

logger = structlog.get_logger(__name__)

T = TypeVar("T")
R = TypeVar("R")


@dataclass
class PoolResult(Generic[T, R]):
    item: T
    value: Optional[R] = None
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def map_bounded(
    fn: Callable[[T], R],
    items: Sequence[T],
    max_workers: int,
) -> list[PoolResult[T, R]]:
    """
    Apply ``fn`` to every item with at most ``max_workers`` running at once.

    Args:
        fn: Work for one item
        items: Inputs, processed in no particular order
        max_workers: Concurrency limit

    Returns:
        One result per item, in input order
    """
    if not items:
        return []

    workers = max(1, min(max_workers, len(items)))
    results: list[Optional[PoolResult[T, R]]] = [None] * len(items)

    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="riskcast") as pool:
        futures = {pool.submit(fn, item): index for index, item in enumerate(items)}
        for future in as_completed(futures):
            index = futures[future]
            try:
                results[index] = PoolResult(item=items[index], value=future.result())
            except Exception as e:
                logger.error("pool_item_failed", item=repr(items[index]), error=str(e), exc_info=True)
                results[index] = PoolResult(item=items[index], error=e)

    return [r for r in results if r is not None]
