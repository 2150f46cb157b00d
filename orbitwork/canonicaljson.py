"""Canonical serialization of escrow views.

Escrow lists are encoded with the RFC 8785 JSON Canonicalization Scheme
(via the ``jcs`` library) so two refreshes over the same ledger state
compare byte-for-byte.
"""

from collections.abc import Iterable

import jcs as _jcs

from .errors import CanonicalizationError
from .types import Escrow


def canonical_escrows(escrows: Iterable[Escrow]) -> bytes:
    """Encode *escrows* as a canonical JSON array of their ``to_dict()`` forms.

    Raises:
        CanonicalizationError: If an escrow does not serialize to JSON.
    """
    try:
        return _jcs.canonicalize([escrow.to_dict() for escrow in escrows])
    except Exception as e:
        raise CanonicalizationError(f"Canonicalization failed: {e}") from e
