"""
Maintenance context.

Bundles everything the consistency services need: the three repositories, the
operation lock registry, the event channel, the settings and a UTC clock.
One context is created at process start and passed to every service call.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable

from config import Settings
from domain.time import require_utc_timestamp, utc_now
from repositories.audit_log_repository import AuditLogRepository
from repositories.client import create_supabase_client
from repositories.piece_repository import PieceRepository
from repositories.sale_repository import SaleRepository
from services.events import EventChannel
from services.operation_locks import OperationLockRegistry


@dataclass(slots=True)
class MaintenanceContext:
    pieces: PieceRepository
    sales: SaleRepository
    audit_log: AuditLogRepository
    settings: Settings = field(default_factory=Settings)
    locks: OperationLockRegistry = field(default_factory=OperationLockRegistry)
    events: EventChannel = field(default_factory=EventChannel)
    clock: Callable[[], datetime] = utc_now

    def now(self) -> datetime:
        now = self.clock()
        require_utc_timestamp("now", now)
        return now


async def build_context(settings: Settings) -> MaintenanceContext:
    """Create the Supabase client and wire the repositories around it."""

    client = await create_supabase_client(settings)
    return MaintenanceContext(
        pieces=PieceRepository(client),
        sales=SaleRepository(client),
        audit_log=AuditLogRepository(client),
        settings=settings,
    )


__all__ = ["MaintenanceContext", "build_context"]
