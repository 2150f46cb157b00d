"""Escrow-level display status from milestone statuses."""

from __future__ import annotations

from collections.abc import Iterable, Sequence

from .types import DisplayStatus, EscrowStatus, Milestone, MilestoneStatus

# Raw escrow code 4 maps to Active. It looks like a cancelled state on the
# ledger, but the observed client behaviour shows it as Active.
_ESCROW_STATUS_BY_CODE = {
    0: EscrowStatus.PENDING,
    1: EscrowStatus.ACTIVE,
    2: EscrowStatus.COMPLETED,
    3: EscrowStatus.DISPUTED,
    4: EscrowStatus.ACTIVE,
}

_DISPLAY_BY_BASE = {
    EscrowStatus.PENDING: DisplayStatus.PENDING,
    EscrowStatus.ACTIVE: DisplayStatus.ACTIVE,
    EscrowStatus.COMPLETED: DisplayStatus.COMPLETED,
    EscrowStatus.DISPUTED: DisplayStatus.DISPUTED,
}


def base_status(status_code: int) -> EscrowStatus:
    return _ESCROW_STATUS_BY_CODE.get(status_code, EscrowStatus.PENDING)


def _any(milestones: Iterable[Milestone], *statuses: MilestoneStatus) -> bool:
    return any(m.status in statuses for m in milestones)


def has_all_disputes_resolved(milestones: Sequence[Milestone]) -> bool:
    return not _any(milestones, MilestoneStatus.DISPUTED) and _any(milestones, MilestoneStatus.RESOLVED)


def classify_escrow(milestones: Sequence[Milestone], base: EscrowStatus) -> DisplayStatus:
    if _any(milestones, MilestoneStatus.RESOLVED):
        return DisplayStatus.DISPUTE_RESOLVED
    if _any(milestones, MilestoneStatus.DISPUTED, MilestoneStatus.REJECTED):
        return DisplayStatus.TERMINATED
    return _DISPLAY_BY_BASE[base]
