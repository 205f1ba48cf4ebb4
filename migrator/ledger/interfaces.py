# migrator/ledger/interfaces.py

"""
Interfaces for the external ledger a migration writes to.

The engine needs exactly one capability from the ledger: apply a batch of
(owner, asset, quantity) entries as one write operation and report a
definitive outcome. Authentication, encoding and settlement stay behind
this interface.
"""

from abc import ABC, abstractmethod
from typing import Optional

from ..core.errors import TransientLedgerError
from ..types import Batch, LedgerReceipt


class LedgerClient(ABC):
    """Interface for ledgers that accept batched migration writes."""

    @abstractmethod
    def apply_batch(self, batch: Batch, timeout: Optional[float] = None,
                    previous_tx: Optional[str] = None) -> LedgerReceipt:
        """
        Submit one write operation for ``batch`` and block until it is final.

        Args:
            batch: Entries to apply
            timeout: Seconds to wait for a terminal state
            previous_tx: Handle of an earlier submission of the same batch whose
                outcome is unknown. It must be resolved before anything new is
                sent; if it landed, its receipt is returned instead.

        Returns:
            Receipt of the confirmed operation

        Raises:
            TransientLedgerError: timeout, connectivity or congestion failure. Carries
                ``tx_hash`` when a submission may still be pending.
            PermanentLedgerError: the ledger rejected the batch content
        """
        pass

    def resolve(self, tx_hash: str, timeout: Optional[float] = None) -> Optional[LedgerReceipt]:
        """
        Final state of an earlier submission: its receipt, or None if it was dropped.

        Raises TransientLedgerError while the outcome is still unknown. Ledgers that
        report ``tx_hash`` on transient errors must override this; the default never
        assumes a submission was dropped.
        """
        raise TransientLedgerError(f"{self.describe()} cannot look up submission {tx_hash}", tx_hash)

    def describe(self) -> str:
        return self.__class__.__name__
