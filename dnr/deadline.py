from __future__ import annotations

import time
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from dataclasses import dataclass
from typing import Any, Callable, TypeVar

from .errors import Indeterminate

T = TypeVar("T")


@dataclass(frozen=True)
class Deadline:
    """Absolute point in time (monotonic clock) after which runtime calls are abandoned."""

    expires_at: float

    @classmethod
    def after(cls, seconds: float | None) -> Deadline | None:
        if seconds is None or seconds <= 0:
            return None
        return cls(time.monotonic() + float(seconds))

    def remaining(self) -> float:
        return max(0.0, self.expires_at - time.monotonic())

    @property
    def expired(self) -> bool:
        return self.remaining() <= 0


def call_with_deadline(deadline: Deadline | None, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
    """Run fn under the deadline.

    On expiry the call is left running in its worker thread and Indeterminate
    is raised: the runtime may or may not have applied it.
    """
    if deadline is None:
        return fn(*args, **kwargs)
    if deadline.expired:
        raise Indeterminate(f"deadline expired before {getattr(fn, '__name__', 'call')} started")
    pool = ThreadPoolExecutor(max_workers=1)
    try:
        future = pool.submit(fn, *args, **kwargs)
        try:
            return future.result(timeout=deadline.remaining())
        except FutureTimeout:
            raise Indeterminate(f"deadline expired during {getattr(fn, '__name__', 'call')}") from None
    finally:
        pool.shutdown(wait=False)
