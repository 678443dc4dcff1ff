"""
Trade history persistence.

Two stores implement the same interface: an in-memory one for tests
and dry runs, and a JSON-lines file that survives restarts. The file is
an append-only log of full record snapshots; on load the last line per
trade id wins.
"""

import asyncio
import logging
from collections.abc import Mapping
from dataclasses import fields, replace
from decimal import Decimal
from pathlib import Path
from typing import Any

import aiofiles
import orjson

from crossarb.core.types import TradeHistoryPage, TradeHistoryQuery, TradeRecord, TradeStatus


logger = logging.getLogger(__name__)


_RECORD_FIELDS = frozenset(f.name for f in fields(TradeRecord))
_IMMUTABLE_FIELDS = frozenset({"trade_id", "user_id", "created_at_ms"})


class TradeNotFoundError(KeyError):
    """Update or lookup of an unknown trade id."""


class InMemoryTradeHistoryStore:
    """
    Dict-backed trade history.

    Records are kept in insertion order; history reads sort newest first.
    """

    def __init__(self) -> None:
        self._records: dict[str, TradeRecord] = {}
        self._lock = asyncio.Lock()

    async def save_trade_record(self, record: TradeRecord) -> None:
        """
        Persist a new record.

        The record becomes visible only once it is persisted, so a failed
        write can be retried with the same id.

        Raises:
            ValueError: If a record with the same id already exists.
        """
        async with self._lock:
            if record.trade_id in self._records:
                raise ValueError(f"Trade {record.trade_id} already recorded")
            saved = replace(record)
            await self._persist(saved)
            self._records[record.trade_id] = saved

    async def update_trade_record(self, trade_id: str, changes: Mapping[str, Any]) -> TradeRecord:
        """
        Apply a partial update.

        Args:
            trade_id: Record to update.
            changes: Field name to new value.

        Returns:
            The updated record.

        Raises:
            TradeNotFoundError: If the id is unknown.
            ValueError: On unknown or immutable fields, or when the record
                is already terminal.
        """
        unknown = set(changes) - _RECORD_FIELDS
        if unknown:
            raise ValueError(f"Unknown trade record fields: {sorted(unknown)}")
        frozen = set(changes) & _IMMUTABLE_FIELDS
        if frozen:
            raise ValueError(f"Immutable trade record fields: {sorted(frozen)}")

        async with self._lock:
            current = self._records.get(trade_id)
            if current is None:
                raise TradeNotFoundError(trade_id)
            if current.is_terminal:
                raise ValueError(f"Trade {trade_id} is already {current.status.value}")

            updated = replace(current, **changes)
            await self._persist(updated)
            self._records[trade_id] = updated
            return replace(updated)

    async def _persist(self, record: TradeRecord) -> None:
        """Hook for durable stores; called under the lock."""

    async def get_trade_record(self, trade_id: str) -> TradeRecord | None:
        """Fetch one record by id."""
        async with self._lock:
            record = self._records.get(trade_id)
            return replace(record) if record else None

    async def get_trade_history(self, query: TradeHistoryQuery | None = None) -> TradeHistoryPage:
        """
        Filtered, paginated history, newest first.

        Args:
            query: Filters and paging; defaults to the first 50 records.

        Returns:
            TradeHistoryPage with the total match count.
        """
        query = query or TradeHistoryQuery()
        limit = max(query.limit, 0)
        offset = max(query.offset, 0)

        async with self._lock:
            matched = [r for r in self._records.values() if _matches(r, query)]

        matched.sort(key=lambda r: r.created_at_ms, reverse=True)
        page = [replace(r) for r in matched[offset : offset + limit]]
        return TradeHistoryPage(records=page, total=len(matched), limit=limit, offset=offset)

    async def get_trade_stats(self, user_id: str | None = None) -> dict[str, Any]:
        """
        Aggregate outcome statistics.

        Args:
            user_id: Restrict to one user, or None for all.

        Returns:
            Dict with counts, success rate and profit totals.
        """
        async with self._lock:
            records = [
                r for r in self._records.values() if user_id is None or r.user_id == user_id
            ]

        completed = [r for r in records if r.status == TradeStatus.COMPLETED]
        failed = [r for r in records if r.status == TradeStatus.FAILED]
        finished = len(completed) + len(failed)
        total_profit = sum((r.actual_profit or Decimal("0") for r in completed), Decimal("0"))

        return {
            "total_trades": len(records),
            "completed_trades": len(completed),
            "failed_trades": len(failed),
            "pending_trades": len(records) - finished,
            "partial_failures": sum(1 for r in failed if r.partial_failure),
            "success_rate": (
                Decimal(len(completed)) * 100 / Decimal(finished) if finished else Decimal("0")
            ),
            "total_profit": total_profit,
            "average_profit": total_profit / len(completed) if completed else Decimal("0"),
        }

    def __len__(self) -> int:
        return len(self._records)


class JsonlTradeHistoryStore(InMemoryTradeHistoryStore):
    """
    Trade history backed by a JSON-lines file.

    Every save and update appends the full record, so a crash between
    the pending write and the terminal update still leaves the pending
    record on disk.
    """

    def __init__(self, path: Path) -> None:
        """
        Initialize store.

        Args:
            path: JSON-lines file; created on first write.
        """
        super().__init__()
        self._path = Path(path)

    @property
    def path(self) -> Path:
        """Backing file."""
        return self._path

    async def load(self) -> int:
        """
        Read existing records from disk.

        Malformed lines are skipped with a warning.

        Returns:
            Number of distinct trades loaded.
        """
        if not self._path.exists():
            return 0

        loaded: dict[str, TradeRecord] = {}
        async with aiofiles.open(self._path, "rb") as f:
            line_no = 0
            async for line in f:
                line_no += 1
                if not line.strip():
                    continue
                try:
                    record = TradeRecord.from_dict(orjson.loads(line))
                except (orjson.JSONDecodeError, KeyError, TypeError, ValueError) as e:
                    logger.warning(f"Skipping malformed trade line {line_no} in {self._path}: {e}")
                    continue
                loaded[record.trade_id] = record

        async with self._lock:
            self._records = loaded
        logger.info(f"Loaded {len(loaded)} trades from {self._path}")
        return len(loaded)

    async def _persist(self, record: TradeRecord) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        line = orjson.dumps(record.to_dict(), default=str, option=orjson.OPT_APPEND_NEWLINE)
        async with aiofiles.open(self._path, "ab") as f:
            await f.write(line)


def _matches(record: TradeRecord, query: TradeHistoryQuery) -> bool:
    if query.user_id is not None and record.user_id != query.user_id:
        return False
    if query.status is not None and record.status != query.status:
        return False
    if query.symbol is not None and record.symbol != query.symbol:
        return False
    return True
