# migrator/types/outcome.py

from enum import Enum
from typing import Optional

from msgspec import Struct


class OutcomeStatus(str, Enum):
    SUCCESS = "success"
    TRANSIENT_FAILURE = "transient_failure"
    PERMANENT_FAILURE = "permanent_failure"


class BatchState(str, Enum):
    PENDING = "pending"
    EXECUTING = "executing"
    SUCCEEDED = "succeeded"
    RETRY_PENDING = "retry_pending"
    SPLIT_PENDING = "split_pending"
    PERMANENTLY_FAILED = "permanently_failed"


class BatchOutcome(Struct):
    status: OutcomeStatus
    error: Optional[str] = None
    tx_hash: Optional[str] = None
    elapsed: float = 0.0

    @property
    def succeeded(self) -> bool:
        return self.status == OutcomeStatus.SUCCESS

    @property
    def is_transient(self) -> bool:
        return self.status == OutcomeStatus.TRANSIENT_FAILURE

    @property
    def is_permanent(self) -> bool:
        return self.status == OutcomeStatus.PERMANENT_FAILURE


class LedgerReceipt(Struct):
    tx_hash: Optional[str] = None
    block_number: Optional[int] = None
    gas_used: Optional[int] = None
