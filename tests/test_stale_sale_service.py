"""
Tests for `services/stale_sale_service.py`.

Covers:
- Staleness boundary: exactly at the cutoff is kept, one microsecond older is cancelled.
- Cancelled sales get an audit entry with the pre-cancellation snapshot.
- The affected piece is auto-fixed afterwards.
- Locked pieces are never touched.
- One failing cancellation does not stop the others; a failing read aborts.
- Global sweep: three stale sales on three pieces -> 3 cancelled / 3 affected / 3 fixed.
- Orphaned reservation cleanup honours locks and the grace period.
"""

from __future__ import annotations

import asyncio
from datetime import timedelta

import pytest

from conftest import NOW
from domain.errors import StoreUnavailableError
from domain.piece import PieceStatus
from domain.sale import SaleStatus
from services.events import EventType
from services.stale_sale_service import (
    STALE_SALE_REASON,
    cancel_stale_pending_sales,
    release_orphaned_reservations,
    sweep_stale_pending_sales,
)

HOUR = timedelta(hours=1)
CUTOFF = NOW - HOUR


@pytest.mark.asyncio
async def test_sale_at_exact_cutoff_is_kept_and_older_one_is_cancelled(ctx, db) -> None:
    db.add_piece("p1", PieceStatus.RESERVED, updated_at=CUTOFF)
    db.add_sale("at-cutoff", "p1", SaleStatus.PENDING, CUTOFF)
    db.add_sale("just-older", "p1", SaleStatus.PENDING, CUTOFF - timedelta(microseconds=1))

    result = await cancel_stale_pending_sales(ctx, "p1", max_age=HOUR)

    assert result.cutoff == CUTOFF
    assert result.cancelled_sale_ids == ["just-older"]
    assert db.sale_status("at-cutoff") is SaleStatus.PENDING
    assert db.sale_status("just-older") is SaleStatus.CANCELLED
    # one pending sale remains, so the piece stays Reserved
    assert db.status_of("p1") is PieceStatus.RESERVED
    assert result.fixed_piece_ids == []


@pytest.mark.asyncio
async def test_young_pending_sale_is_never_cancelled(ctx, db) -> None:
    db.add_piece("p1", PieceStatus.RESERVED, updated_at=NOW - timedelta(minutes=2))
    db.add_sale("s1", "p1", SaleStatus.PENDING, NOW - timedelta(minutes=2))

    result = await cancel_stale_pending_sales(ctx, "p1")

    assert result.cancelled == 0
    assert db.sale_status("s1") is SaleStatus.PENDING
    assert db.audit_entries == []


@pytest.mark.asyncio
async def test_stale_sale_is_cancelled_audited_and_piece_released(ctx, db) -> None:
    db.add_piece("p1", PieceStatus.RESERVED, updated_at=NOW - timedelta(minutes=90))
    db.add_sale("s1", "p1", SaleStatus.PENDING, NOW - timedelta(minutes=90), client_id="c-7")

    result = await cancel_stale_pending_sales(ctx, "p1")

    assert result.cancelled_sale_ids == ["s1"]
    assert result.affected_piece_ids == ["p1"]
    assert result.fixed_piece_ids == ["p1"]
    assert result.audit_entries == 1
    assert db.status_of("p1") is PieceStatus.AVAILABLE

    entry = db.audit_entries[0]
    assert entry["entity_id"] == "s1"
    assert entry["notes"] == STALE_SALE_REASON
    assert entry["old_values"]["status"] == "pending"
    assert entry["old_values"]["client_id"] == "c-7"
    assert entry["old_values"]["land_piece_id"] == "p1"
    assert entry["old_values"]["sale_price"] == "150000.00"


@pytest.mark.asyncio
async def test_default_max_age_comes_from_settings(ctx, db) -> None:
    db.add_piece("p1", PieceStatus.RESERVED, updated_at=NOW - timedelta(minutes=61))
    db.add_sale("s1", "p1", SaleStatus.PENDING, NOW - timedelta(minutes=61))

    result = await cancel_stale_pending_sales(ctx, "p1")

    assert result.cutoff == NOW - ctx.settings.stale_sale_max_age
    assert result.cancelled == 1


@pytest.mark.asyncio
async def test_non_positive_max_age_is_rejected(ctx) -> None:
    with pytest.raises(ValueError):
        await cancel_stale_pending_sales(ctx, "p1", max_age=timedelta(0))


@pytest.mark.asyncio
async def test_locked_piece_sales_are_not_reaped(ctx, db) -> None:
    db.add_piece("p1", PieceStatus.RESERVED, updated_at=NOW - timedelta(hours=3))
    db.add_sale("s1", "p1", SaleStatus.PENDING, NOW - timedelta(hours=3))
    ctx.locks.lock("p1")

    result = await cancel_stale_pending_sales(ctx, "p1")
    sweep = await sweep_stale_pending_sales(ctx)

    assert result.skipped_locked_sale_ids == ["s1"]
    assert sweep.skipped_locked_sale_ids == ["s1"]
    assert db.sale_writes == []
    assert db.piece_writes == []
    assert db.audit_entries == []

    ctx.locks.unlock("p1")
    result = await cancel_stale_pending_sales(ctx, "p1")
    assert result.cancelled_sale_ids == ["s1"]
    assert db.status_of("p1") is PieceStatus.AVAILABLE


@pytest.mark.asyncio
async def test_failed_cancellation_does_not_block_the_rest(ctx, db) -> None:
    for i in range(3):
        db.add_piece(f"p{i}", PieceStatus.RESERVED, updated_at=NOW - timedelta(hours=2))
        db.add_sale(f"s{i}", f"p{i}", SaleStatus.PENDING, NOW - timedelta(hours=2, minutes=i))
    db.fail_sale_ids.add("s1")

    result = await sweep_stale_pending_sales(ctx)

    assert result.failed_sale_ids == ["s1"]
    assert sorted(result.cancelled_sale_ids) == ["s0", "s2"]
    assert db.sale_status("s1") is SaleStatus.PENDING
    assert db.status_of("p1") is PieceStatus.RESERVED
    assert db.status_of("p0") is PieceStatus.AVAILABLE
    assert db.status_of("p2") is PieceStatus.AVAILABLE


@pytest.mark.asyncio
async def test_failed_audit_append_is_recorded_and_cancellation_stands(ctx, db) -> None:
    db.add_piece("p1", PieceStatus.RESERVED, updated_at=NOW - timedelta(hours=2))
    db.add_sale("s1", "p1", SaleStatus.PENDING, NOW - timedelta(hours=2))
    db.fail_operations.add("log_sale_cancellation")

    result = await cancel_stale_pending_sales(ctx, "p1")

    assert result.cancelled_sale_ids == ["s1"]
    assert result.audit_failed_sale_ids == ["s1"]
    assert result.audit_entries == 0
    assert db.status_of("p1") is PieceStatus.AVAILABLE


@pytest.mark.asyncio
async def test_failed_read_aborts_the_sweep(ctx, db) -> None:
    db.add_piece("p1", PieceStatus.RESERVED, updated_at=NOW - timedelta(hours=2))
    db.add_sale("s1", "p1", SaleStatus.PENDING, NOW - timedelta(hours=2))
    db.fail_operations.add("list_pending_sales")

    with pytest.raises(StoreUnavailableError):
        await sweep_stale_pending_sales(ctx)

    with pytest.raises(StoreUnavailableError):
        await cancel_stale_pending_sales(ctx, "p1")

    assert db.sale_writes == []
    assert db.piece_writes == []


@pytest.mark.asyncio
async def test_global_sweep_cancels_and_fixes_three_pieces(ctx, db) -> None:
    for i in range(3):
        db.add_piece(f"p{i}", PieceStatus.RESERVED, updated_at=NOW - timedelta(minutes=90))
        db.add_sale(f"s{i}", f"p{i}", SaleStatus.PENDING, NOW - timedelta(minutes=90 + i), client_id=f"c{i}")
    db.add_piece("fresh", PieceStatus.RESERVED, updated_at=NOW - timedelta(minutes=10))
    db.add_sale("young", "fresh", SaleStatus.PENDING, NOW - timedelta(minutes=10))
    events = []
    ctx.events.subscribe(events.append)

    result = await sweep_stale_pending_sales(ctx, max_age=HOUR)

    assert (result.cancelled, result.affected, result.fixed) == (3, 3, 3)
    assert result.audit_entries == 3
    assert sorted(result.cancelled_sale_ids) == ["s0", "s1", "s2"]
    for i in range(3):
        assert db.status_of(f"p{i}") is PieceStatus.AVAILABLE
        assert db.sale_status(f"s{i}") is SaleStatus.CANCELLED
    assert db.sale_status("young") is SaleStatus.PENDING
    assert db.status_of("fresh") is PieceStatus.RESERVED

    snapshots = {e["entity_id"]: e["old_values"] for e in db.audit_entries}
    assert set(snapshots) == {"s0", "s1", "s2"}
    assert all(s["status"] == "pending" for s in snapshots.values())
    assert snapshots["s2"]["client_id"] == "c2"
    assert snapshots["s2"]["deposit_amount"] == "5000.00"

    kinds = [e.event_type for e in events]
    assert kinds.count(EventType.SALE_CANCELLED) == 3
    assert kinds.count(EventType.PIECE_STATUS_FIXED) == 3


@pytest.mark.asyncio
async def test_global_sweep_with_nothing_stale_reads_once(ctx, db) -> None:
    db.add_piece("p1", PieceStatus.RESERVED, updated_at=NOW)
    db.add_sale("s1", "p1", SaleStatus.PENDING, NOW - timedelta(minutes=5))

    result = await sweep_stale_pending_sales(ctx)

    assert result.cancelled == 0
    assert db.calls == ["list_pending_sales"]


@pytest.mark.asyncio
async def test_global_sweep_leaves_pieces_in_grace_period_for_later(ctx, db) -> None:
    """The sale is stale but the piece was touched a minute ago: cancel, don't fix."""

    db.add_piece("p1", PieceStatus.RESERVED, updated_at=NOW - timedelta(minutes=1))
    db.add_sale("s1", "p1", SaleStatus.PENDING, NOW - timedelta(hours=2))

    result = await sweep_stale_pending_sales(ctx)

    assert result.cancelled_sale_ids == ["s1"]
    assert result.skipped_grace_piece_ids == ["p1"]
    assert result.fixed == 0
    assert db.status_of("p1") is PieceStatus.RESERVED


@pytest.mark.asyncio
async def test_two_concurrent_sweeps_cancel_each_sale_once(ctx, db) -> None:
    for i in range(2):
        db.add_piece(f"p{i}", PieceStatus.RESERVED, updated_at=NOW - timedelta(hours=2))
        db.add_sale(f"s{i}", f"p{i}", SaleStatus.PENDING, NOW - timedelta(hours=2))

    first, second = await asyncio.gather(sweep_stale_pending_sales(ctx), sweep_stale_pending_sales(ctx))

    assert first.cancelled + second.cancelled == 2
    assert first.audit_entries + second.audit_entries == 2
    assert len(db.sale_writes) == 2
    assert len(db.successful_piece_writes) == 2


@pytest.mark.asyncio
async def test_orphan_cleanup_releases_only_eligible_pieces(ctx, db) -> None:
    old = NOW - timedelta(hours=1)
    db.add_piece("orphan", PieceStatus.RESERVED, updated_at=old)
    db.add_piece("backed", PieceStatus.RESERVED, updated_at=old)
    db.add_sale("s1", "backed", SaleStatus.PENDING, old)
    db.add_piece("recent", PieceStatus.RESERVED, updated_at=NOW - timedelta(minutes=2))
    db.add_piece("locked", PieceStatus.RESERVED, updated_at=old)
    db.add_piece("no-timestamp", PieceStatus.RESERVED)
    db.add_piece("free", PieceStatus.AVAILABLE, updated_at=old)
    ctx.locks.lock("locked")

    result = await release_orphaned_reservations(ctx)

    assert result.checked == 5
    assert sorted(result.released_piece_ids) == ["no-timestamp", "orphan"]
    assert result.skipped_grace_piece_ids == ["recent"]
    assert result.skipped_locked_piece_ids == ["locked"]
    assert db.status_of("backed") is PieceStatus.RESERVED
    assert db.status_of("recent") is PieceStatus.RESERVED
    assert db.status_of("locked") is PieceStatus.RESERVED


@pytest.mark.asyncio
async def test_orphan_cleanup_isolates_per_piece_failures(ctx, db) -> None:
    db.add_piece("p1", PieceStatus.RESERVED, updated_at=NOW - timedelta(hours=1))
    db.fail_operations.add("get_pending_sale_for_piece")

    result = await release_orphaned_reservations(ctx)

    assert result.failed_piece_ids == ["p1"]
    assert db.status_of("p1") is PieceStatus.RESERVED


@pytest.mark.asyncio
async def test_orphan_cleanup_listing_failure_raises(ctx, db) -> None:
    db.fail_operations.add("list_pieces_by_status")

    with pytest.raises(StoreUnavailableError):
        await release_orphaned_reservations(ctx)
