"""Deterministic, order-stable scatter/gather for per-condition and per-group work."""

from __future__ import annotations

from collections.abc import Callable, Iterable
from concurrent.futures import Executor
from typing import TypeVar

from joblib import Parallel, delayed

T = TypeVar("T")
R = TypeVar("R")


def _call_indexed(func: Callable[[T], R], indexed: tuple[int, T]) -> tuple[int, R]:
    idx, item = indexed
    return idx, func(item)


def parallel_map(
    func: Callable[[T], R],
    items: Iterable[T],
    *,
    executor: Executor | None = None,
    n_jobs: int = 1,
    backend: str = "loky",
) -> list[R]:
    """Apply `func` to items; output order always matches input order.

    A caller-supplied `executor` takes precedence. Otherwise `n_jobs > 1`
    dispatches through joblib, and anything else runs serially. `func` must
    be a pure function of its item so every path yields identical results.
    """
    seq = list(items)
    if not seq:
        return []
    if executor is not None:
        return list(executor.map(func, seq))

    jobs = max(1, int(n_jobs))
    if jobs == 1 or len(seq) == 1:
        return [func(item) for item in seq]

    rows = Parallel(n_jobs=jobs, backend=str(backend))(
        delayed(_call_indexed)(func, pair) for pair in enumerate(seq)
    )
    rows.sort(key=lambda x: x[0])
    return [row for _, row in rows]
