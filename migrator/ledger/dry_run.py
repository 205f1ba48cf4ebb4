# migrator/ledger/dry_run.py

from typing import List, Optional

from ..core.logging import LoggingMixin
from ..types import Batch, LedgerReceipt
from .interfaces import LedgerClient


class DryRunLedger(LedgerClient, LoggingMixin):
    """
    Ledger that records batches instead of sending them.

    Used to rehearse a migration end to end against real snapshots and a
    real progress file before pointing it at a chain.
    """

    def __init__(self):
        self.applied: List[Batch] = []

    def apply_batch(self, batch: Batch, timeout: Optional[float] = None,
                    previous_tx: Optional[str] = None) -> LedgerReceipt:
        self.applied.append(batch)
        self.log_debug("Dry run batch recorded", batch_index=batch.index, batch_size=batch.size)
        return LedgerReceipt(tx_hash=None)

    def describe(self) -> str:
        return "dry-run"
