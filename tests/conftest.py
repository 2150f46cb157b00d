"""Shared fixtures: an in-memory ledger implementing the LedgerClient protocol."""

from __future__ import annotations

import asyncio
from typing import Any

import pytest

from orbitwork.ledger.exceptions import ConfirmationTimeout, LedgerError

VIEWER = "0x1111111111111111111111111111111111111111"
FREELANCER = "0x2222222222222222222222222222222222222222"
OTHER = "0x3333333333333333333333333333333333333333"
TOKEN = "0x4444444444444444444444444444444444444444"
ZERO = "0x0000000000000000000000000000000000000000"

ONE = 10**18


def summary_tuple(
    depositor: str = VIEWER,
    beneficiary: str = FREELANCER,
    status: int = 1,
    total: int = 3 * ONE,
    paid: int = 0,
    milestone_count: int = 2,
    created_at: int = 1_700_000_000,
    deadline: int = 1_700_086_400,
    is_open_job: bool = False,
    title: str = "Landing page",
    description: str = "Marketing site",
    arbiters: tuple[str, ...] = (OTHER,),
) -> tuple:
    """Positional getEscrowSummary result, in contract order."""
    return (
        depositor,
        beneficiary,
        list(arbiters),
        status,
        total,
        paid,
        total - paid,
        TOKEN,
        deadline,
        True,
        created_at,
        milestone_count,
        is_open_job,
        title,
        description,
    )


def milestone_tuple(
    description: str = "Design",
    amount: int = ONE,
    status: int = 0,
    submitted_at: int = 0,
    approved_at: int = 0,
    disputed_by: str = ZERO,
    reason: str = "",
) -> tuple:
    """Positional milestones(escrowId, index) result."""
    return (description, amount, status, submitted_at, approved_at, 0, disputed_by, reason)


def dispute_event(
    escrow_id: int,
    milestone_index: int,
    beneficiary_amount: int,
    refund_amount: int,
    block: int,
    log_index: int = 0,
    arbiter: str = OTHER,
) -> dict[str, Any]:
    return {
        "event": "DisputeResolved",
        "blockNumber": block,
        "logIndex": log_index,
        "args": {
            "escrowId": escrow_id,
            "milestoneIndex": milestone_index,
            "arbiter": arbiter,
            "beneficiaryAmount": beneficiary_amount,
            "refundAmount": refund_amount,
            "resolvedAt": 1_700_100_000,
        },
    }


class FakeLedger:
    """In-memory LedgerClient.

    ``responses`` maps ``(method, *args)`` (or just ``method``) to a value or
    an exception instance to raise. Event queries spanning more than
    ``max_span`` blocks fail with a range-limit error.
    """

    def __init__(self, head: int = 1_000, max_span: int | None = None, address: str = VIEWER):
        self.responses: dict[Any, Any] = {}
        self.events: list[dict[str, Any]] = []
        self.head = head
        self.max_span = max_span
        self.address = address
        self.unreachable = False
        self.failing_event_filters: list[dict[str, Any]] = []

        self.calls: list[tuple] = []
        self.event_queries: list[tuple[str, dict[str, Any], int, int]] = []
        self.sent: list[tuple] = []
        self.receipt_status = 1
        self.timeout = False
        self.send_error: Exception | None = None
        self.reason = "execution reverted: not allowed"
        # When set, every call, send and receipt wait suspends once.
        self.yielding = False
        self.in_flight = 0
        self.peak_in_flight = 0

    async def _yield(self) -> None:
        if self.yielding:
            await asyncio.sleep(0)

    def set(self, key: Any, value: Any) -> None:
        self.responses[key] = value

    async def call(self, method: str, *args: Any) -> Any:
        self.calls.append((method, *args))
        self.in_flight += 1
        self.peak_in_flight = max(self.peak_in_flight, self.in_flight)
        try:
            await self._yield()
        finally:
            self.in_flight -= 1
        key = (method, *args)
        if key in self.responses:
            value = self.responses[key]
        elif method in self.responses:
            value = self.responses[method]
        else:
            raise LedgerError(f"{method}{args} not stubbed")
        if isinstance(value, Exception):
            raise value
        return value

    async def block_number(self) -> int:
        if self.unreachable:
            raise LedgerError("connection refused")
        return self.head

    async def query_events(
        self,
        event_name: str,
        argument_filters: dict[str, Any],
        from_block: int,
        to_block: int,
    ) -> list[Any]:
        self.event_queries.append((event_name, dict(argument_filters), from_block, to_block))
        if self.max_span is not None and to_block - from_block + 1 > self.max_span:
            raise LedgerError("eth_getLogs: block range too large")
        if argument_filters in self.failing_event_filters:
            raise LedgerError("internal error")
        return [
            ev
            for ev in self.events
            if ev["event"] == event_name
            and from_block <= ev["blockNumber"] <= to_block
            and all(ev["args"].get(k) == v for k, v in argument_filters.items())
        ]

    async def send(self, method: str, value: int = 0, *args: Any) -> str:
        await self._yield()
        if self.send_error is not None:
            raise self.send_error
        self.sent.append((method, *args))
        return "0x" + f"{len(self.sent):064x}"

    async def wait_receipt(self, tx_hash: str) -> dict[str, Any]:
        await self._yield()
        if self.timeout:
            raise ConfirmationTimeout("Transaction confirmation timeout after 60 seconds", tx_hash=tx_hash)
        receipt = {"transactionHash": tx_hash}
        if self.receipt_status is not None:
            receipt["status"] = self.receipt_status
        return receipt

    async def revert_reason(self, tx_hash: str) -> str:
        return self.reason


@pytest.fixture
def ledger() -> FakeLedger:
    return FakeLedger()
