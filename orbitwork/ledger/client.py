"""Ledger client for the OrbitWork escrow contract.

The reconciliation engine only talks to the ledger through the
:class:`LedgerClient` protocol. :class:`Web3LedgerClient` implements it
with web3.py's ``AsyncWeb3``.

Environment variables (all overridable via constructor args):
    ORBITWORK_RPC_URL         – comma-separated JSON-RPC endpoints
                                (default https://sepolia.unichain.org)
    ORBITWORK_ESCROW_ADDRESS  – deployed escrow contract address
    ORBITWORK_PRIVATE_KEY     – hex-encoded private key (optional; without
                                it the client is read-only)
    ORBITWORK_CHAIN_ID        – chain id (default 1301, Unichain Sepolia)
    ORBITWORK_TX_TIMEOUT      – receipt wait timeout in seconds (default 60)
    ORBITWORK_TX_POLL         – receipt poll interval in seconds (default 2)
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any, Protocol

from eth_account import Account
from hexbytes import HexBytes
from web3 import AsyncHTTPProvider, AsyncWeb3
from web3.exceptions import ContractLogicError, TimeExhausted

from .exceptions import ConfirmationTimeout, LedgerError, LedgerMisconfiguration

_LOG = logging.getLogger(__name__)

_ABI_PATH = Path(__file__).parent / "abi" / "OrbitWorkEscrow.json"

DEFAULT_RPC_URL = "https://sepolia.unichain.org"
DEFAULT_ESCROW_ADDRESS = "0x2aA6Dbc1Ac1AD4eE06b84fcc107DE18329BbcdfE"
DEFAULT_CHAIN_ID = 1301

# Gas limits used when estimation fails.
_MILESTONE_METHODS = frozenset(
    {"submitMilestone", "approveMilestone", "rejectMilestone", "disputeMilestone", "resubmitMilestone"}
)
_MILESTONE_GAS = 0x30000
_DEFAULT_GAS = 0x80000

_EXPLORERS = {
    1: "https://etherscan.io",
    11155111: "https://sepolia.etherscan.io",
    130: "https://uniscan.xyz",
    1301: "https://sepolia.uniscan.xyz",
    10: "https://optimistic.etherscan.io",
    42161: "https://arbiscan.io",
    # Local/dev chains - no explorer
    31337: None,
    1337: None,
}


def _load_abi(path: Path = _ABI_PATH) -> list[dict[str, Any]]:
    with open(path) as f:
        raw = json.load(f)

    # Accept either a plain ABI list or a build artifact with an `abi` field.
    if isinstance(raw, list):
        abi = raw
    elif isinstance(raw, dict) and isinstance(raw.get("abi"), list):
        abi = raw["abi"]
    else:
        raise ValueError(f"Unsupported ABI JSON shape in {path}")

    # Hand-written ABI snippets omit `anonymous` on event entries.
    normalized: list[dict[str, Any]] = []
    for item in abi:
        if isinstance(item, dict) and item.get("type") == "event" and "anonymous" not in item:
            item = {**item, "anonymous": False}
        normalized.append(item)
    return normalized


def normalize_tx_hash(tx_hash: bytes | str) -> HexBytes:
    """Normalize bytes/hex-string tx hash into HexBytes."""
    if isinstance(tx_hash, (bytes, bytearray)):
        return HexBytes(tx_hash)
    if isinstance(tx_hash, str):
        s = tx_hash.strip()
        if not s.startswith("0x"):
            s = "0x" + s
        return HexBytes(s)
    raise TypeError(f"unsupported tx_hash type: {type(tx_hash)!r}")


def tx_hex(tx_hash: bytes | str) -> str:
    h = normalize_tx_hash(tx_hash).hex()
    return h if h.startswith("0x") else f"0x{h}"


def explorer_url(chain_id: int, tx_hash: str) -> str:
    """Explorer link for a transaction, or a plain note for dev chains."""
    if not tx_hash.startswith("0x"):
        tx_hash = f"0x{tx_hash}"
    base_url = _EXPLORERS.get(chain_id)
    if base_url:
        return f"{base_url}/tx/{tx_hash}"
    return f"No explorer available for chain {chain_id}. Transaction: {tx_hash}"


class LedgerClient(Protocol):
    """Async surface of the escrow contract consumed by the engine."""

    async def call(self, method: str, *args: Any) -> Any: ...

    async def send(self, method: str, value: int = 0, *args: Any) -> str: ...

    async def query_events(
        self,
        event_name: str,
        argument_filters: dict[str, Any],
        from_block: int,
        to_block: int,
    ) -> list[Any]: ...

    async def block_number(self) -> int: ...

    async def wait_receipt(self, tx_hash: str) -> dict[str, Any]: ...

    async def revert_reason(self, tx_hash: str) -> str: ...


class Web3LedgerClient:
    """LedgerClient backed by one or more JSON-RPC endpoints."""

    def __init__(
        self,
        rpc_urls: list[str] | str | None = None,
        contract_address: str | None = None,
        private_key: str | None = None,
        chain_id: int | None = None,
        timeout: int | None = None,
        poll_latency: int | None = None,
    ):
        if rpc_urls is None:
            rpc_urls = os.environ.get("ORBITWORK_RPC_URL", DEFAULT_RPC_URL)
        if isinstance(rpc_urls, str):
            rpc_urls = [u.strip() for u in rpc_urls.split(",") if u.strip()]
        if not rpc_urls:
            raise LedgerMisconfiguration("at least one RPC URL is required")
        self.rpc_urls = list(rpc_urls)
        self.contract_address = AsyncWeb3.to_checksum_address(
            contract_address or os.environ.get("ORBITWORK_ESCROW_ADDRESS", DEFAULT_ESCROW_ADDRESS)
        )
        self.chain_id = chain_id or int(os.environ.get("ORBITWORK_CHAIN_ID", str(DEFAULT_CHAIN_ID)))
        self.timeout = timeout or int(os.environ.get("ORBITWORK_TX_TIMEOUT", "60"))
        self.poll_latency = poll_latency or int(os.environ.get("ORBITWORK_TX_POLL", "2"))

        pk = private_key or os.environ.get("ORBITWORK_PRIVATE_KEY")
        self.account = Account.from_key(pk) if pk else None
        self.address = self.account.address if self.account else None

        abi = _load_abi()
        self._providers = [AsyncWeb3(AsyncHTTPProvider(url)) for url in self.rpc_urls]
        self._contracts = [w3.eth.contract(address=self.contract_address, abi=abi) for w3 in self._providers]

    @classmethod
    def from_env(cls) -> "Web3LedgerClient":
        """Build client from environment variables."""
        return cls()

    @property
    def w3(self) -> AsyncWeb3:
        """Primary provider; writes and receipts go through it."""
        return self._providers[0]

    @property
    def contract(self):
        return self._contracts[0]

    # -- reads ---------------------------------------------------------------

    async def _with_fallback(self, label: str, fn):
        last_error: Exception | None = None
        for url, w3, contract in zip(self.rpc_urls, self._providers, self._contracts):
            try:
                return await fn(w3, contract)
            except Exception as e:
                _LOG.warning("%s failed via %s: %s", label, url, e)
                last_error = e
        raise LedgerError(f"{label} failed on all RPC endpoints: {last_error}") from last_error

    async def call(self, method: str, *args: Any) -> Any:
        return await self._with_fallback(
            method, lambda w3, c: getattr(c.functions, method)(*args).call()
        )

    async def block_number(self) -> int:
        return await self._with_fallback("eth_blockNumber", lambda w3, c: w3.eth.block_number)

    async def query_events(
        self,
        event_name: str,
        argument_filters: dict[str, Any],
        from_block: int,
        to_block: int,
    ) -> list[Any]:
        """Historical logs for *event_name*; the range-limit message is kept in the LedgerError."""
        async def fetch(w3, contract):
            event = getattr(contract.events, event_name)()
            return list(
                await event.get_logs(
                    argument_filters=argument_filters,
                    from_block=from_block,
                    to_block=to_block,
                )
            )

        return await self._with_fallback(f"{event_name} [{from_block}, {to_block}]", fetch)

    # -- writes --------------------------------------------------------------

    async def _gas_limit(self, fn, method: str, value: int) -> int:
        try:
            estimated = await fn.estimate_gas({"from": self.address, "value": value})
            return int(estimated * 1.1)
        except Exception as e:
            _LOG.debug("gas estimation for %s failed: %s", method, e)
            return _MILESTONE_GAS if method in _MILESTONE_METHODS else _DEFAULT_GAS

    async def send(self, method: str, value: int = 0, *args: Any) -> str:
        """Build, sign and send a contract call.  Returns 0x-prefixed tx hash."""
        if self.account is None:
            raise LedgerMisconfiguration("no private key configured; client is read-only")
        fn = getattr(self.contract.functions, method)(*args)
        try:
            tx = await fn.build_transaction(
                {
                    "from": self.address,
                    "value": value,
                    "nonce": await self.w3.eth.get_transaction_count(self.address),
                    "gas": await self._gas_limit(fn, method, value),
                    "gasPrice": await self.w3.eth.gas_price,
                    "chainId": self.chain_id,
                }
            )
            signed = self.account.sign_transaction(tx)
            tx_hash = await self.w3.eth.send_raw_transaction(signed.raw_transaction)
        except ContractLogicError as e:
            raise LedgerError(f"{method} rejected: {e.message or e}") from e
        except Exception as e:
            raise LedgerError(f"{method} could not be sent: {e}") from e
        return tx_hex(tx_hash)

    async def wait_receipt(self, tx_hash: bytes | str) -> dict[str, Any]:
        """Poll until the tx is mined and return the receipt.

        Raises:
            ConfirmationTimeout: If the tx is not confirmed within timeout.
                This doesn't mean the transaction failed.
        """
        h = normalize_tx_hash(tx_hash)
        try:
            receipt = await self.w3.eth.wait_for_transaction_receipt(
                h, timeout=self.timeout, poll_latency=self.poll_latency
            )
        except TimeExhausted:
            tx = tx_hex(h)
            raise ConfirmationTimeout(
                f"Transaction confirmation timeout after {self.timeout} seconds. "
                f"This doesn't mean the transaction failed; it may still succeed. "
                f"Check status: {explorer_url(self.chain_id, tx)}",
                tx_hash=tx,
            ) from None
        return dict(receipt)

    async def revert_reason(self, tx_hash: bytes | str) -> str:
        """Best-effort revert reason by replaying the tx as an eth_call."""
        h = normalize_tx_hash(tx_hash)
        try:
            tx = await self.w3.eth.get_transaction(h)
            call = {
                "from": tx.get("from"),
                "to": tx.get("to"),
                "data": tx.get("input"),
                "value": tx.get("value", 0),
            }
            block_num = tx.get("blockNumber")
            block_id = block_num - 1 if isinstance(block_num, int) and block_num > 0 else "latest"
            await self.w3.eth.call(call, block_identifier=block_id)
        except ContractLogicError as e:
            return str(e.message or e)
        except Exception as e:
            return f"unknown ({e})"
        return "unknown (no revert data)"
