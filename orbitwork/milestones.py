"""Milestone status derivation.

The ledger's raw status code is not trusted on its own: some deployments
only persist timestamps, and some only persist the payment for the first
milestone. :func:`resolve_status` applies a fixed priority list and
:func:`decode_milestone` turns a raw record of either shape into a
canonical :class:`~orbitwork.types.Milestone`.

Raw status codes::

    0 NotStarted   1 Submitted   2 Approved
    3 Disputed     4 Resolved    5 Rejected
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from .reader import read_field, to_int, to_text
from .types import MILESTONE_FIELDS, PLACEHOLDER_SENTINEL, Milestone, MilestoneStatus, Resolution

_LOG = logging.getLogger(__name__)

RESOLVED_CODE = 4
DISPUTED_CODE = 3

_STATUS_BY_CODE = {
    1: MilestoneStatus.SUBMITTED,
    2: MilestoneStatus.APPROVED,
    3: MilestoneStatus.DISPUTED,
    5: MilestoneStatus.REJECTED,
}


def placeholder_record(index: int) -> dict[str, Any]:
    """Stand-in for a milestone slot whose record could not be fetched."""
    return {
        "description": f"Milestone {index + 1} - To be defined",
        "amount": 0,
        "status": 0,
        "submittedAt": 0,
        "approvedAt": 0,
    }


def is_placeholder(description: str) -> bool:
    return PLACEHOLDER_SENTINEL in description.lower()


@dataclass(frozen=True)
class RawMilestone:
    """Milestone fields after shape normalization, before interpretation."""

    description: str
    amount: int
    status_code: int
    submitted_at: int
    approved_at: int
    disputed_by: str
    reason: str
    rejection_reason: str

    @property
    def is_placeholder(self) -> bool:
        return is_placeholder(self.description)


def _field(record: Any, name: str, default: Any = None) -> Any:
    return read_field(record, name, MILESTONE_FIELDS.index(name), default)


def normalize_milestone(record: Any, index: int) -> RawMilestone:
    """Read a named or positional milestone record.

    Never raises: a record that cannot be read at all becomes an empty
    Pending milestone named after its position.
    """
    try:
        reason = to_text(_field(record, "disputeReason", ""))
        return RawMilestone(
            description=to_text(_field(record, "description"), f"Milestone {index + 1}"),
            amount=to_int(_field(record, "amount"), 0),
            status_code=to_int(_field(record, "status"), 0),
            submitted_at=to_int(_field(record, "submittedAt"), 0),
            approved_at=to_int(_field(record, "approvedAt"), 0),
            disputed_by=to_text(_field(record, "disputedBy", "")),
            reason=reason,
            rejection_reason=to_text(read_field(record, "rejectionReason", None, reason)),
        )
    except Exception:
        _LOG.debug("undecodable milestone record at index %s: %r", index, record, exc_info=True)
        return RawMilestone(
            description=f"Milestone {index + 1}",
            amount=0,
            status_code=0,
            submitted_at=0,
            approved_at=0,
            disputed_by="",
            reason="",
            rejection_reason="",
        )


def resolve_status(
    status_code: int,
    submitted_at: int,
    approved_at: int,
    placeholder: bool,
    paid_amount: int,
    index: int,
) -> MilestoneStatus:
    """Derive the canonical status. First matching rule wins.

    1. Resolved (4) is absolute.
    2. Placeholders are Pending.
    3. First milestone of an escrow with paid funds is Approved, unless
       the ledger reports it Disputed or Resolved.
    4. Codes 1, 2, 3, 5 map directly.
    5. Code 0 falls back to timestamps.
    """
    if status_code == RESOLVED_CODE:
        return MilestoneStatus.RESOLVED
    if placeholder:
        return MilestoneStatus.PENDING
    if index == 0 and paid_amount > 0 and status_code not in (DISPUTED_CODE, RESOLVED_CODE):
        return MilestoneStatus.APPROVED
    if status_code in _STATUS_BY_CODE:
        return _STATUS_BY_CODE[status_code]
    if approved_at > 0:
        return MilestoneStatus.APPROVED
    if submitted_at > 0:
        return MilestoneStatus.SUBMITTED
    return MilestoneStatus.PENDING


def resolve_milestone(raw: RawMilestone, index: int, paid_amount: int) -> Milestone:
    """Build the canonical milestone; the payload follows the status."""
    status = resolve_status(
        raw.status_code,
        raw.submitted_at,
        raw.approved_at,
        raw.is_placeholder,
        paid_amount,
        index,
    )
    resolution = None
    if status is MilestoneStatus.RESOLVED:
        resolution = Resolution(winner=raw.disputed_by, reason=raw.reason)
    disputed = status is MilestoneStatus.DISPUTED
    return Milestone(
        description=raw.description,
        amount=raw.amount,
        status=status,
        submitted_at=raw.submitted_at or None,
        approved_at=raw.approved_at or None,
        disputed_by=raw.disputed_by if disputed else None,
        dispute_reason=raw.reason if disputed else None,
        resolution=resolution,
        rejection_reason=raw.rejection_reason if status is MilestoneStatus.REJECTED else None,
    )


def decode_milestone(record: Any, index: int, paid_amount: int = 0) -> Milestone:
    return resolve_milestone(normalize_milestone(record, index), index, paid_amount)
