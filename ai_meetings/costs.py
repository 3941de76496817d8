"""Cost accounting over the write-once cost ledger. Decimal arithmetic throughout."""

import logging
import threading
from collections.abc import Iterable
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal

from ai_meetings.models import CostLedgerEntry

logger = logging.getLogger(__name__)

# Ledger precision matches a decimal(10, 6) column
COST_QUANTUM = Decimal("0.000001")
_ZERO = Decimal("0")


def compute_cost(tokens_used: int, rate_per_1k: Decimal | str | int) -> Decimal:
    """costUsd = tokensUsed * rate / 1000, rounded half-up to micro-dollars."""
    if tokens_used < 0:
        raise ValueError(f"tokens_used must be >= 0, got {tokens_used}")
    rate = rate_per_1k if isinstance(rate_per_1k, Decimal) else Decimal(str(rate_per_1k))
    return (Decimal(tokens_used) * rate / 1000).quantize(COST_QUANTUM, rounding=ROUND_HALF_UP)


class CostAccountant:
    """Aggregations over ledger entries. The ledger is the only state.

    Entries are write-once per step id: recording the same step twice keeps
    the first entry and returns False.
    """

    compute_cost = staticmethod(compute_cost)

    def __init__(self, entries: Iterable[CostLedgerEntry] = ()) -> None:
        self._lock = threading.Lock()
        self._ledger: dict[str, CostLedgerEntry] = {}
        for entry in entries:
            self.record(entry)

    def record(self, entry: CostLedgerEntry) -> bool:
        with self._lock:
            if entry.step_id in self._ledger:
                logger.debug("Ledger entry for step %s already recorded, ignoring", entry.step_id)
                return False
            self._ledger[entry.step_id] = entry
            return True

    def entries(self, run_id: str | None = None) -> list[CostLedgerEntry]:
        with self._lock:
            snapshot = list(self._ledger.values())
        if run_id is None:
            return snapshot
        return [e for e in snapshot if e.run_id == run_id]

    def get_total(self, run_id: str) -> Decimal:
        return sum((e.cost_usd for e in self.entries(run_id)), _ZERO)

    def get_daily(self, now: datetime | None = None) -> Decimal:
        day = (now or datetime.now(timezone.utc)).astimezone(timezone.utc).date()
        return sum(
            (e.cost_usd for e in self.entries() if e.created_at.astimezone(timezone.utc).date() == day),
            _ZERO,
        )

    def get_monthly(self, now: datetime | None = None) -> Decimal:
        ref = (now or datetime.now(timezone.utc)).astimezone(timezone.utc)
        total = _ZERO
        for e in self.entries():
            created = e.created_at.astimezone(timezone.utc)
            if (created.year, created.month) == (ref.year, ref.month):
                total += e.cost_usd
        return total

    def get_by_provider(self, run_id: str | None = None) -> dict[str, Decimal]:
        totals: dict[str, Decimal] = {}
        for e in self.entries(run_id):
            totals[e.provider_id] = totals.get(e.provider_id, _ZERO) + e.cost_usd
        return totals
