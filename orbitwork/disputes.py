"""Recovery of dispute settlement amounts from DisputeResolved events.

A Resolved milestone's live record names the winner but not the fund
split. The split only exists in the ``DisputeResolved`` event log, and
RPC endpoints limit how far back a single log query may reach, so the
lookup degrades through a list of query strategies:

1. recent window, filtered by (escrowId, milestoneIndex), then by
   escrowId alone with client-side filtering on the milestone index;
2. full range ``[0, head]`` (only when step 1 hit a range limit);
3. fixed-size chunks over ``[0, head]``, skipping chunks that fail.

The newest matching event wins. Any failure yields ``None``.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any

from .ledger.client import LedgerClient
from .reader import INDEX_FIRST, read_field, to_int, to_text
from .types import DisputeResolutionRecord

_LOG = logging.getLogger(__name__)

EVENT_NAME = "DisputeResolved"
RECENT_WINDOW = 500_000
CHUNK_SIZE = 100_000
TOKEN_UNIT = Decimal(10) ** 18

# DisputeResolved(escrowId, milestoneIndex, arbiter, beneficiaryAmount, refundAmount, resolvedAt)
_EVENT_FIELDS = ("escrowId", "milestoneIndex", "arbiter", "beneficiaryAmount", "refundAmount", "resolvedAt")

_RANGE_LIMIT_MARKERS = ("too large", "limit", "query returned more")


def is_range_limit_error(exc: BaseException) -> bool:
    """True when an RPC error means the block range was too wide."""
    while exc is not None:
        message = str(exc).lower()
        if any(marker in message for marker in _RANGE_LIMIT_MARKERS):
            return True
        exc = exc.__cause__
    return False


def _always(exc: BaseException) -> bool:
    return True


@dataclass(frozen=True)
class QueryStrategy:
    """One way of running a range query.

    ``falls_back_on`` decides whether an error raised by ``run`` lets the
    next strategy try; any other error ends the chain.
    """

    name: str
    run: Callable[[], Awaitable[list[Any]]]
    falls_back_on: Callable[[BaseException], bool] = _always


async def first_successful(strategies: Sequence[QueryStrategy]) -> list[Any] | None:
    """Run strategies in order and return the first result that doesn't raise.

    Returns None when the chain is exhausted or aborted.
    """
    for strategy in strategies:
        try:
            return await strategy.run()
        except Exception as e:
            if not strategy.falls_back_on(e):
                _LOG.debug("range query %s failed, giving up: %s", strategy.name, e)
                return None
            _LOG.debug("range query %s failed, degrading: %s", strategy.name, e)
    return None


def chunk_ranges(start: int, end: int, size: int = CHUNK_SIZE) -> list[tuple[int, int]]:
    """Split the inclusive range [start, end] into windows of *size* blocks."""
    if size <= 0:
        raise ValueError("chunk size must be positive")
    return [(lo, min(lo + size - 1, end)) for lo in range(start, end + 1, size)]


def _event_args(event: Any) -> Any:
    return read_field(event, "args", None, event)


def _event_field(event: Any, name: str) -> Any:
    return read_field(_event_args(event), name, _EVENT_FIELDS.index(name), None, INDEX_FIRST)


def _to_display_units(raw: Any) -> float | None:
    amount = to_int(raw, None)
    if amount is None:
        return None
    try:
        value = float(Decimal(amount) / TOKEN_UNIT)
    except (InvalidOperation, OverflowError):
        return None
    if math.isnan(value) or value < 0:
        return None
    return value


def _latest(events: Sequence[Any]) -> Any:
    """Highest-block event; ties keep the later position in the list."""
    return max(
        enumerate(events),
        key=lambda pair: (to_int(read_field(pair[1], "blockNumber"), -1), to_int(read_field(pair[1], "logIndex"), -1), pair[0]),
    )[1]


def parse_resolution(event: Any, escrow_id: int, milestone_index: int) -> DisputeResolutionRecord | None:
    """Extract the fund split, trying positional, named, then accessor reads."""
    beneficiary_raw = _event_field(event, "beneficiaryAmount")
    refund_raw = _event_field(event, "refundAmount")
    if beneficiary_raw is None or refund_raw is None:
        return None
    beneficiary = _to_display_units(beneficiary_raw)
    refund = _to_display_units(refund_raw)
    if beneficiary is None or refund is None:
        return None
    arbiter = _event_field(event, "arbiter")
    resolved_at = _event_field(event, "resolvedAt")
    block = read_field(event, "blockNumber")
    return DisputeResolutionRecord(
        escrow_id=escrow_id,
        milestone_index=milestone_index,
        arbiter=to_text(arbiter) if arbiter is not None else None,
        beneficiary_amount=beneficiary,
        refund_amount=refund,
        block_number=to_int(block) if block is not None else None,
        resolved_at=to_int(resolved_at) if resolved_at is not None else None,
    )


class DisputeSettlementResolver:
    """Looks up the fund split of resolved milestones on demand."""

    def __init__(
        self,
        ledger: LedgerClient | None,
        recent_window: int = RECENT_WINDOW,
        chunk_size: int = CHUNK_SIZE,
    ):
        self._ledger = ledger
        self.recent_window = recent_window
        self.chunk_size = chunk_size
        self._cache: dict[tuple[int, int], DisputeResolutionRecord] = {}

    async def resolve(self, escrow_id: int, milestone_index: int) -> DisputeResolutionRecord | None:
        """Return the settlement for a resolved milestone, or None if unknown.

        Never raises.
        """
        key = (int(escrow_id), int(milestone_index))
        if key in self._cache:
            return self._cache[key]
        try:
            record = await self._resolve(*key)
        except Exception as e:
            _LOG.warning("settlement lookup for escrow %s milestone %s failed: %s", escrow_id, milestone_index, e)
            return None
        if record is not None:
            self._cache[key] = record
        return record

    async def _resolve(self, escrow_id: int, milestone_index: int) -> DisputeResolutionRecord | None:
        if self._ledger is None:
            return None
        try:
            head = int(await self._ledger.block_number())
        except Exception as e:
            _LOG.info("ledger unreachable, settlement for escrow %s unknown: %s", escrow_id, e)
            return None

        events = await first_successful(self._strategies(escrow_id, milestone_index, head))
        if not events:
            return None
        return parse_resolution(_latest(events), escrow_id, milestone_index)

    def _strategies(self, escrow_id: int, milestone_index: int, head: int) -> list[QueryStrategy]:
        exact = {"escrowId": escrow_id, "milestoneIndex": milestone_index}
        start = max(0, head - self.recent_window)

        async def recent() -> list[Any]:
            events = await self._ledger.query_events(EVENT_NAME, exact, start, head)
            if events:
                return list(events)
            try:
                by_escrow = await self._ledger.query_events(EVENT_NAME, {"escrowId": escrow_id}, start, head)
            except Exception as e:
                _LOG.debug("escrow-only %s query failed: %s", EVENT_NAME, e)
                return []
            return [
                ev for ev in by_escrow
                if to_int(_event_field(ev, "milestoneIndex"), -1) == milestone_index
            ]

        async def full_range() -> list[Any]:
            return list(await self._ledger.query_events(EVENT_NAME, exact, 0, head))

        async def chunked() -> list[Any]:
            found: list[Any] = []
            for lo, hi in chunk_ranges(0, head, self.chunk_size):
                try:
                    found.extend(await self._ledger.query_events(EVENT_NAME, exact, lo, hi))
                except Exception as e:
                    _LOG.debug("skipping blocks [%s, %s]: %s", lo, hi, e)
            return found

        return [
            QueryStrategy("recent", recent, is_range_limit_error),
            QueryStrategy("full-range", full_range),
            QueryStrategy("chunked", chunked),
        ]
