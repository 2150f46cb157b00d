"""Milestone write operations.

Writes are not idempotent on the ledger, so every operation is checked
locally first (sequencing, milestone state, duplicate submission) and only
then sent. Confirmation polls for the receipt; a timeout leaves the outcome
unknown and is reported as such, never as a failure.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from .errors import DuplicateSubmissionError
from .ledger.client import LedgerClient
from .ledger.exceptions import ConfirmationTimeout, LedgerRevert
from .notifications import StateTransition, TransitionKind, TransitionPublisher
from .reader import read_field, to_int
from .sequencing import (
    can_approve,
    can_reject,
    can_resubmit,
    ensure_status,
    ensure_submittable,
    next_submittable_index,
)
from .types import MILESTONE_FIELDS, Escrow, Milestone, MilestoneStatus

_LOG = logging.getLogger(__name__)

MilestoneKey = tuple[int, int]


def milestone_key(escrow_id: int, index: int) -> MilestoneKey:
    return (int(escrow_id), int(index))


def _require_text(value: str, what: str) -> str:
    if not value or not value.strip():
        raise ValueError(f"{what} is required")
    return value


class MilestoneActions:
    """Write side of the engine, bound to one ledger client.

    Keeps the optimistic "already submitted" / "already approved" flags for
    milestones whose writes were sent but whose effect has not been seen in
    a refresh yet. Call :meth:`reconcile` with each refreshed view.
    """

    def __init__(self, ledger: LedgerClient, publisher: TransitionPublisher | None = None):
        self.ledger = ledger
        self.publisher = publisher or TransitionPublisher()
        self._submitted: set[MilestoneKey] = set()
        self._approved: set[MilestoneKey] = set()

    # -- optimistic flags ----------------------------------------------------

    def is_submitted(self, escrow_id: int, index: int) -> bool:
        return milestone_key(escrow_id, index) in self._submitted

    def is_approved(self, escrow_id: int, index: int) -> bool:
        return milestone_key(escrow_id, index) in self._approved

    def _local_indices(self, flags: set[MilestoneKey], escrow_id: int) -> set[int]:
        return {i for e, i in flags if e == escrow_id}

    def next_submittable_index(self, escrow: Escrow) -> int | None:
        return next_submittable_index(
            escrow.milestones,
            self._local_indices(self._submitted, escrow.id),
            self._local_indices(self._approved, escrow.id),
        )

    def reconcile(self, escrows: Iterable[Escrow]) -> None:
        """Drop optimistic flags for milestones covered by a confirmed refresh."""
        for escrow in escrows:
            for index in range(len(escrow.milestones)):
                key = milestone_key(escrow.id, index)
                self._submitted.discard(key)
                self._approved.discard(key)

    # -- confirmation --------------------------------------------------------

    async def _send_and_confirm(self, method: str, *args) -> str:
        tx_hash = await self.ledger.send(method, 0, *args)
        receipt = await self.ledger.wait_receipt(tx_hash)
        raw_status = receipt.get("status")
        if raw_status is None:
            _LOG.warning("%s tx=%s receipt has no status; outcome unknown", method, tx_hash)
            raise ConfirmationTimeout(
                f"{method} receipt carries no status; the outcome is unknown, refresh to reconcile",
                tx_hash=tx_hash,
            )
        status = to_int(raw_status)
        _LOG.info("%s tx=%s status=%s", method, tx_hash, status)
        if status == 0:
            reason = await self.ledger.revert_reason(tx_hash)
            raise LedgerRevert(f"{method} reverted: {reason}", tx_hash=tx_hash, reason=reason)
        return tx_hash

    async def _flagged_send(self, flags: set[MilestoneKey], key: MilestoneKey, method: str, *args) -> str:
        """Send with *key* already held in *flags*.

        The flag survives a ConfirmationTimeout and is dropped on any other
        failure.
        """
        try:
            return await self._send_and_confirm(method, *args)
        except ConfirmationTimeout:
            raise
        except Exception:
            flags.discard(key)
            raise

    def _notify(
        self,
        kind: TransitionKind,
        escrow: Escrow,
        index: int | None = None,
        reason: str | None = None,
    ) -> None:
        self.publisher.publish(
            StateTransition(
                kind=kind,
                escrow_id=escrow.id,
                milestone_index=index,
                project_title=escrow.project_title or f"Project #{escrow.id}",
                payer=escrow.payer,
                beneficiary=escrow.beneficiary,
                actor=getattr(self.ledger, "address", None),
                reason=reason,
            )
        )

    @staticmethod
    def _milestone(escrow: Escrow, index: int) -> Milestone:
        if index < 0 or index >= len(escrow.milestones):
            raise ValueError(f"escrow {escrow.id} has no milestone {index + 1}")
        return escrow.milestones[index]

    # -- operations ----------------------------------------------------------

    async def start_work(self, escrow: Escrow) -> str:
        tx_hash = await self._send_and_confirm("startWork", escrow.id)
        self._notify(TransitionKind.WORK_STARTED, escrow)
        return tx_hash

    async def _bulk_status(self, escrow_id: int, index: int) -> int:
        """Status code from the bulk getMilestones read; 0 when unavailable."""
        try:
            records = await self.ledger.call("getMilestones", escrow_id)
            record = records[index]
        except Exception as e:
            _LOG.debug("bulk milestone read for escrow %s failed: %s", escrow_id, e)
            return 0
        return to_int(read_field(record, "status", MILESTONE_FIELDS.index("status")), 0)

    async def submit_milestone(self, escrow: Escrow, index: int, description: str) -> str:
        """Submit milestone *index* of *escrow*.

        Raises:
            DuplicateSubmissionError: Already submitted or approved.
            SequencingError: Another milestone is due first; nothing is sent.
            LedgerRevert: The transaction reverted.
            ConfirmationTimeout: Outcome unknown; the local flag is kept.
        """
        self._milestone(escrow, index)
        _require_text(description, "description")
        key = milestone_key(escrow.id, index)
        if key in self._submitted:
            raise DuplicateSubmissionError(
                "This milestone has already been submitted and cannot be submitted again"
            )
        if key in self._approved:
            raise DuplicateSubmissionError(
                "This milestone has already been approved and cannot be resubmitted"
            )
        ensure_submittable(
            escrow.milestones,
            index,
            self._local_indices(self._submitted, escrow.id),
            self._local_indices(self._approved, escrow.id),
        )
        # Held before the first await so a concurrent call sees it.
        self._submitted.add(key)
        bulk = await self._bulk_status(escrow.id, index)
        if bulk > 0:
            self._submitted.discard(key)
            state = "approved" if bulk == 2 else "submitted"
            raise DuplicateSubmissionError(
                f"This milestone has already been {state} and cannot be submitted again"
            )
        tx_hash = await self._flagged_send(
            self._submitted, key, "submitMilestone", escrow.id, index, description
        )
        self._notify(TransitionKind.SUBMITTED, escrow, index)
        return tx_hash

    async def approve_milestone(self, escrow: Escrow, index: int) -> str:
        milestone = self._milestone(escrow, index)
        ensure_status(milestone, index, "approve", can_approve(milestone))
        key = milestone_key(escrow.id, index)
        if key in self._approved:
            raise DuplicateSubmissionError("This milestone has already been approved")
        self._approved.add(key)
        tx_hash = await self._flagged_send(self._approved, key, "approveMilestone", escrow.id, index)
        self._notify(TransitionKind.APPROVED, escrow, index)
        return tx_hash

    async def reject_milestone(self, escrow: Escrow, index: int, reason: str) -> str:
        milestone = self._milestone(escrow, index)
        ensure_status(milestone, index, "reject", can_reject(milestone))
        _require_text(reason, "reason")
        tx_hash = await self._send_and_confirm("rejectMilestone", escrow.id, index, reason)
        self._notify(TransitionKind.REJECTED, escrow, index, reason)
        return tx_hash

    async def resubmit_milestone(self, escrow: Escrow, index: int, description: str) -> str:
        milestone = self._milestone(escrow, index)
        ensure_status(milestone, index, "resubmit", can_resubmit(milestone))
        _require_text(description, "description")
        tx_hash = await self._send_and_confirm("resubmitMilestone", escrow.id, index, description)
        self._notify(TransitionKind.SUBMITTED, escrow, index)
        return tx_hash

    async def dispute_milestone(self, escrow: Escrow, index: int, reason: str) -> str:
        milestone = self._milestone(escrow, index)
        ensure_status(
            milestone,
            index,
            "dispute",
            milestone.status not in (MilestoneStatus.RESOLVED, MilestoneStatus.DISPUTED),
        )
        _require_text(reason, "reason")
        tx_hash = await self._send_and_confirm("disputeMilestone", escrow.id, index, reason)
        self._notify(TransitionKind.DISPUTED, escrow, index, reason)
        return tx_hash

