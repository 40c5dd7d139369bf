"""
Operation lock registry.

Tracks which pieces are currently owned by a user-initiated operation in this
process. Background maintenance (stale-sale reaping, auto-fixing, orphan
cleanup) consults the registry and leaves locked pieces alone.

The registry is advisory and process-local: it does not stop other processes
or browser tabs from writing, and it is empty after a restart.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterator, Set

logger = logging.getLogger(__name__)


class OperationLockRegistry:
    def __init__(self) -> None:
        self._locked: Set[str] = set()

    def lock(self, piece_id: str) -> None:
        self._locked.add(piece_id)
        logger.debug("Locked piece %s for operation", piece_id)

    def unlock(self, piece_id: str) -> None:
        """Release a piece. Unlocking a piece that is not locked is a no-op."""
        self._locked.discard(piece_id)
        logger.debug("Unlocked piece %s", piece_id)

    def is_locked(self, piece_id: str) -> bool:
        return piece_id in self._locked

    @contextmanager
    def hold(self, piece_id: str) -> Iterator[None]:
        """
        Lock `piece_id` for the duration of a `with` block.

        Example:
            with ctx.locks.hold(piece_id):
                await create_sale_and_reserve(piece_id)
        """

        self.lock(piece_id)
        try:
            yield
        finally:
            self.unlock(piece_id)

    def __len__(self) -> int:
        return len(self._locked)


__all__ = ["OperationLockRegistry"]
