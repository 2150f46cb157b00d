from ..errors import OrbitWorkError


class LedgerError(OrbitWorkError):
    """Ledger transport or RPC failure."""


class LedgerRevert(LedgerError):
    """A transaction was mined but reverted."""

    def __init__(self, message: str, tx_hash: str | None = None, reason: str | None = None):
        super().__init__(message)
        self.tx_hash = tx_hash
        self.reason = reason


class LedgerMisconfiguration(LedgerError):
    """The client is missing configuration needed for the operation."""


class ConfirmationTimeout(LedgerError):
    """Raised when transaction confirmation times out.

    This doesn't mean the transaction failed - it may still be pending or
    already confirmed. Refresh the view to learn the actual outcome.
    """

    def __init__(self, message: str, tx_hash: str | None = None):
        super().__init__(message)
        self.tx_hash = tx_hash
