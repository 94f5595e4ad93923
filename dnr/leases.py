from __future__ import annotations

import secrets
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from threading import Lock
from typing import Iterable, Iterator

from .errors import ConflictInProgress


def utc_now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


@dataclass(frozen=True)
class Lease:
    token: str
    keys: tuple[str, ...]
    acquired_at: str = field(default_factory=utc_now)


class LeaseTable:
    """Per-network leases: key -> token, held until released.

    Keys are independent, so applies on different networks never contend.
    """

    def __init__(self) -> None:
        self.lock = Lock()
        self._held: dict[str, Lease] = {}

    def acquire(self, keys: Iterable[str]) -> Lease:
        """Take every key or none of them; raises ConflictInProgress on contention."""
        wanted = tuple(sorted({k for k in keys if k}))
        with self.lock:
            busy = [k for k in wanted if k in self._held]
            if busy:
                raise ConflictInProgress(f"an apply is already in progress for network '{busy[0]}'")
            lease = Lease(token=secrets.token_hex(8), keys=wanted)
            for k in wanted:
                self._held[k] = lease
            return lease

    def release(self, lease: Lease) -> None:
        with self.lock:
            for k in lease.keys:
                if self._held.get(k) is lease:
                    del self._held[k]

    def is_held(self, key: str) -> bool:
        with self.lock:
            return key in self._held

    def held(self) -> list[Lease]:
        with self.lock:
            return list({id(v): v for v in self._held.values()}.values())

    @contextmanager
    def hold(self, keys: Iterable[str]) -> Iterator[Lease]:
        lease = self.acquire(keys)
        try:
            yield lease
        finally:
            self.release(lease)
