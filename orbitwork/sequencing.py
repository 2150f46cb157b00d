"""Sequencing gate: milestones are submitted and approved strictly in order.

At most one milestone is submittable at a time. The gate also honours the
caller's optimistic flags (milestones submitted or approved locally whose
effect has not shown up in a refresh yet).
"""

from __future__ import annotations

from collections.abc import Collection, Sequence

from .errors import MilestoneStateError, SequencingError
from .types import Milestone, MilestoneStatus


def _approved(milestones: Sequence[Milestone], i: int, approved: Collection[int]) -> bool:
    return milestones[i].status is MilestoneStatus.APPROVED or i in approved


def _submitted(milestones: Sequence[Milestone], i: int, submitted: Collection[int]) -> bool:
    return milestones[i].status is MilestoneStatus.SUBMITTED or i in submitted


def next_submittable_index(
    milestones: Sequence[Milestone],
    submitted: Collection[int] = (),
    approved: Collection[int] = (),
) -> int | None:
    """Return the index of the single submittable milestone, or None.

    Milestone *i* is submittable when it is Pending (and not flagged
    locally), its predecessor is Approved, and nothing before it is
    Submitted without being Approved.
    """
    for i, milestone in enumerate(milestones):
        if milestone.status is not MilestoneStatus.PENDING:
            continue
        if i in submitted or i in approved:
            continue
        if i == 0:
            return 0
        if not _approved(milestones, i - 1, approved):
            continue
        if any(
            _submitted(milestones, j, submitted) and not _approved(milestones, j, approved)
            for j in range(i)
        ):
            continue
        return i
    return None


def can_submit(
    milestones: Sequence[Milestone],
    index: int,
    submitted: Collection[int] = (),
    approved: Collection[int] = (),
) -> bool:
    return next_submittable_index(milestones, submitted, approved) == index


def ensure_submittable(
    milestones: Sequence[Milestone],
    index: int,
    submitted: Collection[int] = (),
    approved: Collection[int] = (),
) -> None:
    """Raise SequencingError unless *index* is the submittable milestone."""
    expected = next_submittable_index(milestones, submitted, approved)
    if expected != index:
        raise SequencingError(index, expected)


def can_approve(milestone: Milestone) -> bool:
    return milestone.status is MilestoneStatus.SUBMITTED


def can_reject(milestone: Milestone) -> bool:
    return milestone.status is MilestoneStatus.SUBMITTED


def can_resubmit(milestone: Milestone) -> bool:
    return milestone.status is MilestoneStatus.REJECTED


def ensure_status(milestone: Milestone, index: int, action: str, allowed: bool) -> None:
    if not allowed:
        raise MilestoneStateError(
            f"cannot {action} milestone {index + 1}: it is {milestone.status.value}"
        )
