"""
Deadline-bounded polling shared by the commit and execution pollers.

Each lane is polled by its own unit of work. A unit only returns its own
result; the caller merges results after the fact, so there is no pending map
written from several threads.
"""

import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Callable, Dict, Hashable, Optional, TypeVar

T = TypeVar("T")


class Deadline:
    def __init__(self, timeout: float):
        self.timeout = timeout
        self._expires_at = time.monotonic() + timeout

    def remaining(self) -> float:
        return max(0.0, self._expires_at - time.monotonic())

    @property
    def expired(self) -> bool:
        return time.monotonic() >= self._expires_at


def poll_until(
    check: Callable[[], T],
    done: Callable[[T], bool],
    deadline: Deadline,
    poll_interval: float,
    stop: threading.Event,
) -> T:
    """Call ``check`` every ``poll_interval`` seconds until ``done`` accepts its result.

    Gives up when the deadline passes or ``stop`` is set, returning the last
    result either way. ``check`` always runs at least once.
    """
    result = check()
    while not done(result) and not stop.is_set() and not deadline.expired:
        stop.wait(min(poll_interval, deadline.remaining()))
        result = check()
    return result


def run_concurrently(
    work: Dict[Hashable, Callable[[threading.Event], T]],
    max_workers: Optional[int] = None,
) -> Dict[Hashable, T]:
    """Run one unit of work per key and gather the results.

    Units receive a shared stop event. The first unit to raise sets it, the
    remaining units wind down at their next poll, and the error is re-raised.
    """
    if not work:
        return {}

    stop = threading.Event()
    results = {}
    with ThreadPoolExecutor(max_workers=max_workers or len(work)) as pool:
        futures = {pool.submit(fn, stop): key for key, fn in work.items()}
        try:
            for future in as_completed(futures):
                results[futures[future]] = future.result()
        except BaseException:
            stop.set()
            raise
    return results
