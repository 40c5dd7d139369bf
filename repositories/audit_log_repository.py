"""
Audit log repository (persistence).

Append-only writes to the audit_logs table. Entries are never updated or
deleted from here.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from domain.sale import SaleRecord, SaleStatus
from domain.time import to_iso_utc
from repositories.client import execute_query

# Supabase table name for audit entries.
# Keep this aligned with your database schema.
_AUDIT_LOGS_TABLE: str = "audit_logs"

SALE_CANCELLED_ACTION: str = "sale_cancelled"


class AuditLogRepository:
    def __init__(self, client: Any):
        self._client = client

    async def log_sale_cancellation(
        self,
        sale: SaleRecord,
        *,
        reason: str,
        logged_at: datetime,
        user_id: Optional[str] = None,
    ) -> None:
        """
        Record that `sale` was cancelled.

        `sale` is the snapshot taken before cancellation; it is stored as
        old_values so the amounts and client remain auditable.
        """

        payload: dict[str, Any] = {
            "action": SALE_CANCELLED_ACTION,
            "entity_type": "sale",
            "entity_id": sale.sale_id,
            "user_id": user_id,
            "old_values": sale.snapshot(),
            "new_values": {"status": SaleStatus.CANCELLED.value},
            "notes": reason,
            "created_at": to_iso_utc(logged_at, name="logged_at"),
        }
        await execute_query(
            self._client.table(_AUDIT_LOGS_TABLE).insert(payload),
            action="append audit log entry",
        )


__all__ = ["AuditLogRepository", "SALE_CANCELLED_ACTION"]
