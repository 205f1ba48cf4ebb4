# migrator/pipeline/executor.py

import time
from typing import Optional

from ..core.errors import PermanentLedgerError, TransientLedgerError
from ..core.logging import LoggingMixin
from ..ledger.interfaces import LedgerClient
from ..types import Batch, BatchOutcome, OutcomeStatus


class BatchExecutor(LoggingMixin):
    """
    Submits one batch as one ledger write and classifies the result.

    Each call to ``execute`` makes exactly one ``apply_batch`` call. Repeating
    a batch is the controller's decision, never the executor's.
    """

    def __init__(self, ledger: LedgerClient, timeout: Optional[float] = None,
                 unknown_errors_transient: bool = True):
        self.ledger = ledger
        self.timeout = timeout
        self.unknown_errors_transient = unknown_errors_transient

    def execute(self, batch: Batch, previous_tx: Optional[str] = None) -> BatchOutcome:
        started = time.monotonic()
        try:
            receipt = self.ledger.apply_batch(batch, timeout=self.timeout, previous_tx=previous_tx)
        except TransientLedgerError as e:
            return self._failure(OutcomeStatus.TRANSIENT_FAILURE, e, started, e.tx_hash or previous_tx)
        except PermanentLedgerError as e:
            return self._failure(OutcomeStatus.PERMANENT_FAILURE, e, started, e.tx_hash)
        except Exception as e:
            # with an earlier submission unresolved the failure cannot be final
            status = (OutcomeStatus.TRANSIENT_FAILURE if self.unknown_errors_transient or previous_tx
                      else OutcomeStatus.PERMANENT_FAILURE)
            self.log_warning("Unclassified ledger error",
                             batch_index=batch.index,
                             error=f"{type(e).__name__}: {e}",
                             outcome=status.value)
            return self._failure(status, e, started, previous_tx)

        return BatchOutcome(
            status=OutcomeStatus.SUCCESS,
            tx_hash=receipt.tx_hash,
            elapsed=time.monotonic() - started,
        )

    def settle(self, tx_hash: str) -> Optional[BatchOutcome]:
        """Resolve an earlier submission. None means it was dropped and applied nothing."""
        started = time.monotonic()
        try:
            receipt = self.ledger.resolve(tx_hash, timeout=self.timeout)
        except PermanentLedgerError as e:
            return self._failure(OutcomeStatus.PERMANENT_FAILURE, e, started, tx_hash)
        except Exception as e:
            return self._failure(OutcomeStatus.TRANSIENT_FAILURE, e, started, tx_hash)

        if receipt is None:
            return None
        return BatchOutcome(
            status=OutcomeStatus.SUCCESS,
            tx_hash=receipt.tx_hash or tx_hash,
            elapsed=time.monotonic() - started,
        )

    @staticmethod
    def _failure(status: OutcomeStatus, error: Exception, started: float,
                 tx_hash: Optional[str]) -> BatchOutcome:
        return BatchOutcome(
            status=status,
            error=f"{type(error).__name__}: {error}",
            tx_hash=tx_hash,
            elapsed=time.monotonic() - started,
        )
