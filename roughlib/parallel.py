"""
roughlib.parallel - Fan-out / fan-in over a short-lived process pool.

Shared read-only state (the training frame, or the scoring population and
fitted model) is installed once per worker by the pool initializer, so
tasks only carry small payloads such as grid indices or identifier chunks.
Each call creates its own pool and tears it down before returning; pools
are never reused between the training and scoring regions.
"""

from __future__ import annotations

import logging
import os
from concurrent.futures import ProcessPoolExecutor, as_completed
from typing import Any, Callable, Iterable, Iterator, List, Optional, Sequence, Tuple, TypeVar

log = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")

# Per-process shared state, set by the pool initializer (or directly when sequential)
_SHARED: dict = {}


def default_workers() -> int:
    """
    Number of workers to use: all cores but one, at least one.

    The ``ROUGHLIB_WORKERS`` environment variable overrides the default.
    """
    env = os.environ.get("ROUGHLIB_WORKERS")
    if env:
        try:
            return max(1, int(env))
        except ValueError:
            log.warning("Ignoring non-integer ROUGHLIB_WORKERS=%r", env)
    return max(1, (os.cpu_count() or 2) - 1)


def install_shared(state: dict) -> None:
    """Replace this process's shared state (pool initializer)."""
    _SHARED.clear()
    _SHARED.update(state)


def shared(name: str) -> Any:
    """Fetch one item of the shared state installed for this process."""
    try:
        return _SHARED[name]
    except KeyError:
        raise RuntimeError(f"Shared worker state {name!r} has not been installed") from None


def chunked(items: Sequence[T], size: int) -> List[List[T]]:
    """Split *items* into consecutive lists of at most *size* elements."""
    if size < 1:
        raise ValueError(f"Chunk size must be >= 1, got {size}")
    return [list(items[i : i + size]) for i in range(0, len(items), size)]


def run_tasks(
    func: Callable[[T], R],
    tasks: Iterable[T],
    shared_state: Optional[dict] = None,
    parallel: bool = True,
    workers: Optional[int] = None,
) -> Iterator[Tuple[T, R]]:
    """
    Apply *func* to every task, yielding ``(task, result)`` as each completes.

    Parameters
    ----------
    func : callable
        Module-level function (must be picklable for process workers).
    tasks : iterable
        Independent task payloads.
    shared_state : dict, optional
        Read-only state made available to *func* through :func:`shared`.
    parallel : bool
        If False, or when only one worker/task is available, run in-process.
    workers : int, optional
        Pool size (default :func:`default_workers`).

    Yields
    ------
    tuple
        ``(task, result)`` in completion order, not submission order.
    """
    tasks = list(tasks)
    workers = workers or default_workers()
    state = shared_state or {}

    if not parallel or workers == 1 or len(tasks) <= 1:
        previous = dict(_SHARED)
        install_shared(state)
        try:
            for task in tasks:
                yield task, func(task)
        finally:
            install_shared(previous)
        return

    n_workers = min(workers, len(tasks))
    log.info("Starting pool with %d workers for %d tasks", n_workers, len(tasks))
    with ProcessPoolExecutor(
        max_workers=n_workers, initializer=install_shared, initargs=(state,)
    ) as executor:
        future_to_task = {executor.submit(func, task): task for task in tasks}
        for future in as_completed(future_to_task):
            yield future_to_task[future], future.result()
    log.debug("Pool shut down")
