"""Canonical escrow and milestone types.

Raw ledger records are decoded into these objects on every refresh. They
are immutable: a refresh builds new ones instead of patching old ones.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field, replace
from typing import Any

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"
PLACEHOLDER_SENTINEL = "to be defined"

# Position of each field in the getEscrowSummary tuple. Order is fixed by
# the contract ABI; reordering breaks decoding silently.
ESCROW_SUMMARY_FIELDS = (
    "depositor",
    "beneficiary",
    "arbiters",
    "status",
    "totalAmount",
    "paidAmount",
    "remaining",
    "token",
    "deadline",
    "workStarted",
    "createdAt",
    "milestoneCount",
    "isOpenJob",
    "projectTitle",
    "projectDescription",
)

# Position of each field in the milestones(escrowId, index) tuple.
MILESTONE_FIELDS = (
    "description",
    "amount",
    "status",
    "submittedAt",
    "approvedAt",
    "disputedAt",
    "disputedBy",
    "disputeReason",
)


class MilestoneStatus(enum.StrEnum):
    PENDING = "pending"
    SUBMITTED = "submitted"
    APPROVED = "approved"
    DISPUTED = "disputed"
    RESOLVED = "resolved"
    REJECTED = "rejected"


class EscrowStatus(enum.StrEnum):
    PENDING = "pending"
    ACTIVE = "active"
    COMPLETED = "completed"
    DISPUTED = "disputed"


class DisplayStatus(enum.StrEnum):
    """Escrow-level status shown to users, after milestone aggregation."""

    PENDING = "Pending"
    ACTIVE = "Active"
    COMPLETED = "Completed"
    DISPUTED = "Disputed"
    TERMINATED = "Terminated"
    DISPUTE_RESOLVED = "Dispute Resolved"


@dataclass(frozen=True)
class Resolution:
    """Arbiter verdict carried by a Resolved milestone."""

    winner: str
    reason: str


@dataclass(frozen=True)
class Milestone:
    description: str
    amount: int
    status: MilestoneStatus
    submitted_at: int | None = None
    approved_at: int | None = None
    disputed_by: str | None = None
    dispute_reason: str | None = None
    resolution: Resolution | None = None
    rejection_reason: str | None = None
    freelancer_amount: float | None = None
    client_amount: float | None = None

    def __post_init__(self):
        if (self.status is MilestoneStatus.RESOLVED) != (self.resolution is not None):
            raise ValueError("a resolution is carried by, and only by, resolved milestones")

    @property
    def winner(self) -> str | None:
        return self.resolution.winner if self.resolution else None

    @property
    def resolution_reason(self) -> str | None:
        return self.resolution.reason if self.resolution else None

    @property
    def is_placeholder(self) -> bool:
        return PLACEHOLDER_SENTINEL in self.description.lower()

    def with_settlement(self, record: DisputeResolutionRecord) -> Milestone:
        """Attach the recovered fund split without touching the status."""
        if self.status is not MilestoneStatus.RESOLVED:
            raise ValueError("only resolved milestones carry a settlement")
        return replace(
            self,
            freelancer_amount=record.freelancer_amount,
            client_amount=record.client_amount,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "description": self.description,
            "amount": str(self.amount),
            "status": self.status.value,
            "submittedAt": self.submitted_at,
            "approvedAt": self.approved_at,
            "disputedBy": self.disputed_by,
            "disputeReason": self.dispute_reason,
            "winner": self.winner,
            "resolutionReason": self.resolution_reason,
            "rejectionReason": self.rejection_reason,
            "freelancerAmount": self.freelancer_amount,
            "clientAmount": self.client_amount,
        }


@dataclass(frozen=True)
class Escrow:
    id: int
    payer: str
    beneficiary: str
    token: str
    total_amount: int
    released_amount: int
    status: EscrowStatus
    display_status: DisplayStatus
    created_at: int
    duration_seconds: int
    milestones: tuple[Milestone, ...] = ()
    project_title: str = ""
    project_description: str = ""
    is_open_job: bool = False
    is_client: bool = False
    is_freelancer: bool = False
    arbiters: tuple[str, ...] = field(default=())

    @property
    def milestone_count(self) -> int:
        return len(self.milestones)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": str(self.id),
            "payer": self.payer,
            "beneficiary": self.beneficiary,
            "token": self.token,
            "totalAmount": str(self.total_amount),
            "releasedAmount": str(self.released_amount),
            "status": self.status.value,
            "displayStatus": self.display_status.value,
            "createdAt": self.created_at,
            "duration": self.duration_seconds,
            "milestones": [m.to_dict() for m in self.milestones],
            "projectTitle": self.project_title,
            "projectDescription": self.project_description,
            "isOpenJob": self.is_open_job,
            "isClient": self.is_client,
            "isFreelancer": self.is_freelancer,
            "arbiters": list(self.arbiters),
        }


@dataclass(frozen=True)
class DisputeResolutionRecord:
    """Fund split recovered from a DisputeResolved event.

    Amounts are in display units (smallest unit / 10**18).
    """

    escrow_id: int
    milestone_index: int
    arbiter: str | None
    beneficiary_amount: float
    refund_amount: float
    block_number: int | None = None
    resolved_at: int | None = None

    @property
    def freelancer_amount(self) -> float:
        return self.beneficiary_amount

    @property
    def client_amount(self) -> float:
        return self.refund_amount
