"""Escrow view builder.

Turns raw ledger reads into canonical :class:`~orbitwork.types.Escrow`
objects. Every refresh rebuilds the view from scratch; nothing from a
previous refresh is reused.

Reads are best-effort: a milestone that cannot be fetched becomes a
placeholder, and an escrow that cannot be read or decoded is skipped.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Sequence
from dataclasses import replace
from typing import Any

from .classifier import base_status, classify_escrow
from .disputes import DisputeSettlementResolver
from .ledger.client import LedgerClient
from .milestones import decode_milestone, placeholder_record
from .reader import read_field, same_address, to_bool, to_int, to_text
from .types import ESCROW_SUMMARY_FIELDS, ZERO_ADDRESS, Escrow, Milestone, MilestoneStatus

_LOG = logging.getLogger(__name__)

DEFAULT_CONCURRENCY = 20


def _summary_field(summary: Any, name: str, default: Any = None) -> Any:
    return read_field(summary, name, ESCROW_SUMMARY_FIELDS.index(name), default)


def _arbiters(summary: Any) -> tuple[str, ...]:
    arbiters = _summary_field(summary, "arbiters", ())
    if isinstance(arbiters, (str, bytes)):
        arbiters = (arbiters,)
    return tuple(to_text(a) for a in arbiters)


def build_escrow(
    escrow_id: int,
    summary: Any,
    milestone_records: Sequence[Any],
    viewer: str | None = None,
) -> Escrow:
    """Pure projection of one escrow's raw reads into the canonical model."""
    payer = to_text(_summary_field(summary, "depositor"), ZERO_ADDRESS)
    beneficiary = to_text(_summary_field(summary, "beneficiary"), ZERO_ADDRESS)
    paid = to_int(_summary_field(summary, "paidAmount"))
    created_at = to_int(_summary_field(summary, "createdAt"))
    deadline = to_int(_summary_field(summary, "deadline"))
    milestones = tuple(
        decode_milestone(record, index, paid) for index, record in enumerate(milestone_records)
    )
    base = base_status(to_int(_summary_field(summary, "status")))

    return Escrow(
        id=int(escrow_id),
        payer=payer,
        beneficiary=beneficiary,
        token=to_text(_summary_field(summary, "token"), ZERO_ADDRESS),
        total_amount=to_int(_summary_field(summary, "totalAmount")),
        released_amount=paid,
        status=base,
        display_status=classify_escrow(milestones, base),
        created_at=created_at,
        duration_seconds=deadline - created_at,
        milestones=milestones,
        project_title=to_text(_summary_field(summary, "projectTitle")),
        project_description=to_text(_summary_field(summary, "projectDescription")),
        is_open_job=to_bool(_summary_field(summary, "isOpenJob", False)),
        is_client=same_address(payer, viewer),
        is_freelancer=same_address(beneficiary, viewer),
        arbiters=_arbiters(summary),
    )


class EscrowViewBuilder:
    """Reads escrows from the ledger and assembles the canonical view.

    Args:
        ledger: Ledger client used for all reads.
        viewer: Address of the caller; drives the role flags and, unless
            ``include_all`` is passed, which escrows are listed.
        settlements: Optional resolver used to attach fund splits to
            Resolved milestones.
        concurrency: Maximum number of ledger reads in flight.
    """

    def __init__(
        self,
        ledger: LedgerClient,
        viewer: str | None = None,
        settlements: DisputeSettlementResolver | None = None,
        concurrency: int = DEFAULT_CONCURRENCY,
    ):
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self._ledger = ledger
        self.viewer = viewer
        self._settlements = settlements
        self.concurrency = concurrency
        self._slots = asyncio.Semaphore(concurrency)

    async def _call(self, method: str, *args: Any) -> Any:
        async with self._slots:
            return await self._ledger.call(method, *args)

    async def escrow_count(self) -> int:
        """Number of escrows created so far (ids start at 1)."""
        return max(0, to_int(await self._call("nextEscrowId")) - 1)

    async def fetch_milestone_records(self, escrow_id: int, count: int) -> list[Any]:
        async def one(index: int) -> Any:
            try:
                return await self._call("milestones", escrow_id, index)
            except Exception as e:
                _LOG.debug("milestone %s of escrow %s unavailable: %s", index, escrow_id, e)
                return placeholder_record(index)

        return list(await asyncio.gather(*(one(i) for i in range(count))))

    async def fetch_escrow(self, escrow_id: int, summary: Any = None) -> Escrow | None:
        """Read and build one escrow; None when it cannot be read or decoded."""
        try:
            if summary is None:
                summary = await self._call("getEscrowSummary", escrow_id)
            count = to_int(_summary_field(summary, "milestoneCount"))
            records = await self.fetch_milestone_records(escrow_id, count)
            escrow = build_escrow(escrow_id, summary, records, self.viewer)
        except Exception as e:
            _LOG.warning("skipping escrow %s: %s", escrow_id, e)
            return None
        if self._settlements is not None:
            escrow = await self.attach_settlements(escrow)
        return escrow

    async def attach_settlements(self, escrow: Escrow) -> Escrow:
        """Fill in fund splits for Resolved milestones where they can be found."""
        if self._settlements is None:
            return escrow
        milestones: list[Milestone] = list(escrow.milestones)
        changed = False
        for index, milestone in enumerate(milestones):
            if milestone.status is not MilestoneStatus.RESOLVED:
                continue
            record = await self._settlements.resolve(escrow.id, index)
            if record is None:
                _LOG.debug("settlement for escrow %s milestone %s unknown", escrow.id, index)
                continue
            milestones[index] = milestone.with_settlement(record)
            changed = True
        if not changed:
            return escrow
        return replace(escrow, milestones=tuple(milestones))

    def _involves_viewer(self, summary: Any) -> bool:
        return same_address(to_text(_summary_field(summary, "depositor")), self.viewer) or same_address(
            to_text(_summary_field(summary, "beneficiary")), self.viewer
        )

    async def _summary(self, escrow_id: int) -> Any:
        try:
            return await self._call("getEscrowSummary", escrow_id)
        except Exception as e:
            _LOG.warning("skipping escrow %s: summary unavailable: %s", escrow_id, e)
            return None

    async def fetch_escrows(self, include_all: bool = False) -> list[Escrow]:
        """Build the canonical escrow list.

        Escrows are read in windows of ``concurrency`` ids. Without a viewer,
        or with ``include_all``, every escrow is listed; otherwise only those
        where the viewer is payer or beneficiary.
        """
        count = await self.escrow_count()
        escrows: list[Escrow] = []
        for start in range(1, count + 1, self.concurrency):
            ids = range(start, min(start + self.concurrency, count + 1))
            summaries = await asyncio.gather(*(self._summary(i) for i in ids))
            wanted = [
                (i, s)
                for i, s in zip(ids, summaries)
                if s is not None and (include_all or self.viewer is None or self._involves_viewer(s))
            ]
            built = await asyncio.gather(*(self.fetch_escrow(i, s) for i, s in wanted))
            escrows.extend(e for e in built if e is not None)
        return escrows

    async def _readable_summaries(self) -> AsyncIterator[tuple[int, Any]]:
        """Yield (id, summary) for every readable escrow, in windows of ``concurrency``."""
        count = await self.escrow_count()
        for start in range(1, count + 1, self.concurrency):
            ids = range(start, min(start + self.concurrency, count + 1))
            summaries = await asyncio.gather(*(self._summary(i) for i in ids))
            for escrow_id, summary in zip(ids, summaries):
                if summary is not None:
                    yield escrow_id, summary

    async def _any_summary(self, field: str) -> bool:
        if not self.viewer:
            return False
        async for _, summary in self._readable_summaries():
            if same_address(to_text(_summary_field(summary, field)), self.viewer):
                return True
        return False

    async def is_freelancer(self) -> bool:
        """True when the viewer is the beneficiary of any escrow."""
        return await self._any_summary("beneficiary")

    async def is_job_creator(self) -> bool:
        """True when the viewer created (deposited into) any escrow."""
        return await self._any_summary("depositor")

    async def is_arbiter(self) -> bool:
        """True when the viewer is an authorized arbiter.

        Asks the contract's ``authorizedArbiters`` registry. When that read
        fails, falls back to the arbiter lists of the escrow summaries.
        """
        if not self.viewer:
            return False
        try:
            return to_bool(await self._call("authorizedArbiters", self.viewer))
        except Exception as e:
            _LOG.debug("arbiter registry unavailable, scanning escrows: %s", e)
        async for _, summary in self._readable_summaries():
            if any(same_address(a, self.viewer) for a in _arbiters(summary)):
                return True
        return False

    async def has_pending_approvals(self) -> bool:
        """True when the viewer has an open job with at least one application."""
        if not self.viewer:
            return False
        async for escrow_id, summary in self._readable_summaries():
            if not same_address(to_text(_summary_field(summary, "depositor")), self.viewer):
                continue
            if not same_address(to_text(_summary_field(summary, "beneficiary")), ZERO_ADDRESS):
                continue
            try:
                applications = to_int(await self._call("getApplicationCount", escrow_id))
            except Exception as e:
                _LOG.debug("application count for escrow %s unavailable: %s", escrow_id, e)
                continue
            if applications > 0:
                return True
        return False
