# migrator/ledger/web3_ledger.py

import json
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from web3 import Web3
from web3.exceptions import ContractLogicError, TimeExhausted, TransactionNotFound, Web3Exception

from ..core.errors import ConfigError, PermanentLedgerError, TransientLedgerError
from ..core.logging import LoggingMixin
from ..types import Batch, LedgerConfig, LedgerReceipt
from .interfaces import LedgerClient


DEFAULT_RECEIPT_TIMEOUT = 120

TRANSIENT_RPC_MARKERS = (
    "nonce too low",
    "replacement transaction underpriced",
    "already known",
    "transaction underpriced",
    "timeout",
    "timed out",
    "rate limit",
    "too many requests",
    "header not found",
    "connection",
)


def encode_owner_items(batch: Batch) -> List[Any]:
    """[(to, [(itemId, quantity), ...]), ...] as taken by batchMintItems-style calls."""
    return [
        (Web3.to_checksum_address(owner), [(int(e.asset_id), e.quantity) for e in entries])
        for owner, entries in batch.entries_by_owner().items()
    ]


def encode_owner_tokens(batch: Batch) -> List[Any]:
    """[(owner, [tokenId, ...]), ...] for non-fungible mints."""
    encoded = []
    for owner, entries in batch.entries_by_owner().items():
        token_ids = []
        for entry in entries:
            if entry.quantity != 1:
                raise ValueError(f"Token {entry.asset_id} for {owner} has quantity {entry.quantity}, expected 1")
            token_ids.append(int(entry.asset_id))
        encoded.append((Web3.to_checksum_address(owner), token_ids))
    return encoded


CALL_SHAPES = {
    "owner_items": encode_owner_items,
    "owner_tokens": encode_owner_tokens,
}


def is_transient_message(message: str) -> bool:
    message = message.lower()
    return any(marker in message for marker in TRANSIENT_RPC_MARKERS)


class Web3Ledger(LedgerClient, LoggingMixin):
    """
    Applies each batch as one contract transaction through web3.

    The contract function receives the batch encoded by the configured call
    shape. Transactions are signed locally when a private key is configured,
    otherwise sent from ``from_address`` on a node that manages the account.

    Nonces are set explicitly. When a retry names the transaction of an
    earlier attempt, that transaction is resolved first: a mined one is
    returned as is, a pending one is waited on, and only a dropped one is
    replaced, reusing its nonce.
    """

    def __init__(self, w3: Web3, contract_address: str, abi: List[Dict[str, Any]], function_name: str,
                 call_shape: str = "owner_items", private_key: Optional[str] = None,
                 from_address: Optional[str] = None, gas_limit: Optional[int] = None):
        if call_shape not in CALL_SHAPES:
            raise ConfigError(f"Unknown call shape '{call_shape}', expected one of {sorted(CALL_SHAPES)}")

        self.w3 = w3
        self.contract = w3.eth.contract(address=Web3.to_checksum_address(contract_address), abi=abi)
        self.function_name = function_name
        self.encode = CALL_SHAPES[call_shape]
        self.gas_limit = gas_limit
        self._nonces: Dict[str, int] = {}

        self.account = w3.eth.account.from_key(private_key) if private_key else None
        if self.account is not None:
            self.sender = self.account.address
        elif from_address:
            self.sender = Web3.to_checksum_address(from_address)
        else:
            raise ConfigError("Web3Ledger needs either a private key or a from address")

    @classmethod
    def from_config(cls, config: LedgerConfig) -> 'Web3Ledger':
        missing = [name for name in ("rpc_url", "contract_address", "abi_path", "function_name")
                   if not getattr(config, name)]
        if missing:
            raise ConfigError(f"Ledger configuration incomplete, missing: {', '.join(missing)}")

        w3 = Web3(Web3.HTTPProvider(config.rpc_url))
        if not w3.is_connected():
            raise ConnectionError(f"Failed to connect to RPC endpoint {config.rpc_url}")

        return cls(
            w3=w3,
            contract_address=config.contract_address,
            abi=load_abi(config.abi_path),
            function_name=config.function_name,
            call_shape=config.call_shape,
            private_key=config.private_key,
            from_address=config.from_address,
            gas_limit=config.gas_limit,
        )

    def _build_call(self, batch: Batch):
        try:
            args = self.encode(batch)
            return getattr(self.contract.functions, self.function_name)(args)
        except (ValueError, TypeError, Web3Exception) as e:
            raise PermanentLedgerError(f"Batch {batch.index} cannot be encoded: {e}") from e

    def _send(self, call, nonce: int) -> str:
        tx_params: Dict[str, Any] = {"from": self.sender, "nonce": nonce}
        if self.gas_limit:
            tx_params["gas"] = self.gas_limit

        if self.account is None:
            tx_hash = Web3.to_hex(call.transact(tx_params))
            self._nonces[tx_hash] = nonce
            return tx_hash

        tx = call.build_transaction(tx_params)
        signed = self.account.sign_transaction(tx)
        raw = getattr(signed, "raw_transaction", None) or getattr(signed, "rawTransaction")

        # the hash is known before sending, so a lost response still leaves a handle to look up
        tx_hash = Web3.to_hex(signed.hash)
        self._nonces[tx_hash] = nonce
        try:
            self.w3.eth.send_raw_transaction(raw)
        except OSError as e:
            raise TransientLedgerError(f"Connection error sending {tx_hash}: {e}", tx_hash) from e
        except (Web3Exception, ValueError) as e:
            if "already known" not in str(e).lower():
                raise
            self.log_info("Transaction already in the pool", tx_hash=tx_hash, nonce=nonce)
        return tx_hash

    def _receipt(self, tx_hash: str, receipt) -> LedgerReceipt:
        if receipt.get("status", 1) == 0:
            raise PermanentLedgerError(f"Transaction {tx_hash} reverted", tx_hash)
        return LedgerReceipt(
            tx_hash=tx_hash,
            block_number=receipt.get("blockNumber"),
            gas_used=receipt.get("gasUsed"),
        )

    def resolve(self, tx_hash: str, timeout: Optional[float] = None) -> Optional[LedgerReceipt]:
        """
        Find out what became of an earlier transaction.

        Returns the receipt if it was mined, or None if the node no longer
        knows it (dropped). A transaction still in the pool is waited on; if
        it stays pending past ``timeout`` TransientLedgerError is raised.
        A reverted transaction raises PermanentLedgerError.
        """
        try:
            try:
                receipt = self.w3.eth.get_transaction_receipt(tx_hash)
            except TransactionNotFound:
                receipt = None

            if receipt is None:
                try:
                    self.w3.eth.get_transaction(tx_hash)
                except TransactionNotFound:
                    return None
                receipt = self.w3.eth.wait_for_transaction_receipt(tx_hash, timeout=timeout or DEFAULT_RECEIPT_TIMEOUT)
        except TimeExhausted as e:
            raise TransientLedgerError(f"Transaction {tx_hash} still pending: {e}", tx_hash) from e
        except OSError as e:
            raise TransientLedgerError(f"Connection error looking up {tx_hash}: {e}", tx_hash) from e

        return self._receipt(tx_hash, receipt)

    def _replacement_nonce(self, previous_tx: str) -> int:
        """Nonce of a dropped transaction, so its replacement supersedes it if it ever resurfaces."""
        nonce = self._nonces.get(previous_tx)
        if nonce is None or nonce < self.w3.eth.get_transaction_count(self.sender, "latest"):
            return self.w3.eth.get_transaction_count(self.sender, "pending")
        return nonce

    def apply_batch(self, batch: Batch, timeout: Optional[float] = None,
                    previous_tx: Optional[str] = None) -> LedgerReceipt:
        timeout = timeout or DEFAULT_RECEIPT_TIMEOUT
        nonce: Optional[int] = None

        if previous_tx:
            receipt = self.resolve(previous_tx, timeout)
            if receipt is not None:
                self.log_info("Earlier transaction confirmed, not resubmitting",
                              batch_index=batch.index, tx_hash=previous_tx)
                return receipt
            nonce = self._replacement_nonce(previous_tx)
            self.log_warning("Earlier transaction dropped, resubmitting",
                             batch_index=batch.index, tx_hash=previous_tx, nonce=nonce)

        call = self._build_call(batch)
        tx_hash: Optional[str] = None

        try:
            if nonce is None:
                nonce = self.w3.eth.get_transaction_count(self.sender, "pending")
            tx_hash = self._send(call, nonce)
            self.log_info("Transaction sent", batch_index=batch.index, tx_hash=tx_hash, nonce=nonce)
            receipt = self.w3.eth.wait_for_transaction_receipt(tx_hash, timeout=timeout)
        except ContractLogicError as e:
            raise PermanentLedgerError(f"Contract rejected batch {batch.index}: {e}", tx_hash) from e
        except TimeExhausted as e:
            raise TransientLedgerError(f"Timed out waiting for {tx_hash}: {e}", tx_hash) from e
        except OSError as e:
            raise TransientLedgerError(f"Connection error: {e}", tx_hash or previous_tx) from e
        except (Web3Exception, ValueError) as e:
            # RPC errors surface as ValueError or Web3RPCError depending on the web3 version.
            # "nonce too low" after a resubmission may mean the earlier transaction landed after all.
            if is_transient_message(str(e)):
                raise TransientLedgerError(f"RPC error: {e}", tx_hash or previous_tx) from e
            raise PermanentLedgerError(f"RPC rejected batch {batch.index}: {e}", tx_hash) from e

        return self._receipt(tx_hash, receipt)

    def describe(self) -> str:
        return f"web3:{self.contract.address}.{self.function_name}"


def load_abi(path: Union[str, Path]) -> List[Dict[str, Any]]:
    """Load an ABI from a plain ABI array or a compiler artifact with an "abi" key."""
    path = Path(path)
    if not path.is_file():
        raise ConfigError(f"ABI file not found: {path}")
    with open(path, "r") as f:
        data = json.load(f)
    if isinstance(data, dict) and "abi" in data:
        data = data["abi"]
    if not isinstance(data, list):
        raise ConfigError(f"ABI file {path} does not contain an ABI array")
    return data
