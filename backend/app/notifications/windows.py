"""
windows.py — Clock and locking primitives shared by the regulation engines.

Both engines keep an arena of per-key state (suppression keys by signature,
digest by signature + channel).
Access to one key is serialised through a lock stripe chosen by the key's
hash, so unrelated signatures never contend on the same lock and no lock
is held across an await.
"""

from __future__ import annotations

import threading
from datetime import datetime, timedelta, timezone
from typing import Hashable, List, Protocol


class Clock(Protocol):
    """Source of the current UTC time."""

    def now(self) -> datetime:
        ...


class SystemClock:
    """Wall clock, always timezone-aware UTC."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


def minutes(value: int) -> timedelta:
    return timedelta(minutes=value)


class StripedLocks:
    """
    Fixed pool of locks indexed by key hash.

    Holding a stripe is only ever done around synchronous arena mutation
    (check-and-insert, append, detach), never across an await.
    """

    def __init__(self, stripes: int = 64):
        if stripes < 1:
            raise ValueError("stripes must be >= 1")
        self._locks: List[threading.Lock] = [threading.Lock() for _ in range(stripes)]

    def __len__(self) -> int:
        return len(self._locks)

    def for_key(self, key: Hashable) -> threading.Lock:
        return self._locks[hash(key) % len(self._locks)]
