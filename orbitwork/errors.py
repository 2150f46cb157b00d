"""Error categories for the OrbitWork escrow reconciliation engine."""


class OrbitWorkError(Exception):
    """Base exception for all OrbitWork errors."""


class SequencingError(OrbitWorkError):
    """A milestone was targeted out of index order.

    Raised locally, before any ledger call is issued.
    """

    def __init__(self, requested: int, expected: int | None):
        self.requested = requested
        self.expected = expected
        if expected is None:
            message = (
                "No milestone available for submission. All milestones are "
                "either completed or awaiting approval."
            )
        else:
            message = (
                f"Wrong milestone sequence: you can only submit milestone "
                f"{expected + 1} at this time (requested {requested + 1})."
            )
        super().__init__(message)


class DuplicateSubmissionError(OrbitWorkError):
    """The milestone was already submitted or approved."""


class MilestoneStateError(OrbitWorkError):
    """The milestone is not in a state that allows the requested action."""


class CanonicalizationError(OrbitWorkError):
    """JSON canonicalization failed."""
