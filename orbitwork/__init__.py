"""OrbitWork escrow reconciliation engine."""

from .actions import MilestoneActions
from .classifier import base_status, classify_escrow, has_all_disputes_resolved
from .disputes import DisputeSettlementResolver
from .errors import (
    OrbitWorkError,
    SequencingError,
    DuplicateSubmissionError,
    MilestoneStateError,
    CanonicalizationError,
)
from .ledger import ConfirmationTimeout, LedgerError, LedgerRevert, Web3LedgerClient
from .milestones import decode_milestone, resolve_status
from .notifications import StateTransition, TransitionKind, TransitionPublisher
from .sequencing import can_submit, next_submittable_index
from .types import (
    DisplayStatus,
    DisputeResolutionRecord,
    Escrow,
    EscrowStatus,
    Milestone,
    MilestoneStatus,
    Resolution,
)
from .views import EscrowViewBuilder, build_escrow

__all__ = [
    "MilestoneActions",
    "base_status",
    "classify_escrow",
    "has_all_disputes_resolved",
    "DisputeSettlementResolver",
    "OrbitWorkError",
    "SequencingError",
    "DuplicateSubmissionError",
    "MilestoneStateError",
    "CanonicalizationError",
    "ConfirmationTimeout",
    "LedgerError",
    "LedgerRevert",
    "Web3LedgerClient",
    "decode_milestone",
    "resolve_status",
    "StateTransition",
    "TransitionKind",
    "TransitionPublisher",
    "can_submit",
    "next_submittable_index",
    "DisplayStatus",
    "DisputeResolutionRecord",
    "Escrow",
    "EscrowStatus",
    "Milestone",
    "MilestoneStatus",
    "Resolution",
    "EscrowViewBuilder",
    "build_escrow",
]
