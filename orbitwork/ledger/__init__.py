"""Ledger boundary for the OrbitWork escrow contract.

Install with:  pip install -e .
"""

from .client import LedgerClient, Web3LedgerClient, explorer_url, normalize_tx_hash
from .exceptions import ConfirmationTimeout, LedgerError, LedgerMisconfiguration, LedgerRevert

__all__ = [
    "ConfirmationTimeout",
    "LedgerClient",
    "LedgerError",
    "LedgerMisconfiguration",
    "LedgerRevert",
    "Web3LedgerClient",
    "explorer_url",
    "normalize_tx_hash",
]
