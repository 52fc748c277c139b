"""
In-process stand-in for the ledger execution environment.

The registries assume atomic, totally ordered state transitions. ``Ledger``
provides that with a single lock around every check-then-write sequence.
The lock is re-entrant within one task so that a mutation which calls into
another component (registry -> propagator -> clinical store) stays inside
the outer transaction.
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import AsyncIterator, Callable, Optional

_ACTIVE_LEDGER: ContextVar[Optional["Ledger"]] = ContextVar("medvault_active_ledger", default=None)


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


class Ledger:
    """Serialises mutations and supplies the operation timestamp."""

    def __init__(self, clock: Optional[Callable[[], datetime]] = None) -> None:
        self._lock = asyncio.Lock()
        self._clock = clock or _utcnow
        self.transaction_count = 0

    def now(self) -> datetime:
        return self._clock()

    @property
    def in_transaction(self) -> bool:
        return _ACTIVE_LEDGER.get() is self

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        """Run the enclosed block as one atomic, serialised operation."""
        if self.in_transaction:
            yield
            return

        async with self._lock:
            token = _ACTIVE_LEDGER.set(self)
            try:
                self.transaction_count += 1
                yield
            finally:
                _ACTIVE_LEDGER.reset(token)
