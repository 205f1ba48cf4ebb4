# migrator/pipeline/controller.py

import time
from collections import deque
from typing import Callable, Deque, List, Optional, Tuple

from msgspec import Struct

from ..core.errors import UnconfirmedSubmissionError
from ..core.logging import LoggingMixin
from ..progress.schema import now_ms
from ..progress.store import ProgressStore
from ..types import (
    Batch,
    BatchAttemptDetail,
    BatchOutcome,
    BatchState,
    EntrySet,
    FailedBatchRecord,
    PendingSubmission,
    ProgressRecord,
)
from .executor import BatchExecutor


BatchCallback = Callable[[Batch, BatchState, BatchOutcome], None]


class RunSummary(Struct):
    batches: int = 0
    attempts: int = 0
    succeeded: int = 0
    splits: int = 0
    permanently_failed: int = 0
    applied_quantity: int = 0


def split_batch(batch: Batch, first_index: int) -> Tuple[Batch, Batch]:
    """
    Bisect a batch of two or more entries.

    Several owners split by owner count so every owner's entries stay
    together; a single owner's entries split by entry count.
    """
    if batch.size < 2:
        raise ValueError(f"Batch {batch.index} has {batch.size} entries and cannot be split")

    grouped = batch.entries_by_owner()
    if len(grouped) > 1:
        owners = list(grouped)
        mid = len(owners) // 2
        left = [e for owner in owners[:mid] for e in grouped[owner]]
        right = [e for owner in owners[mid:] for e in grouped[owner]]
    else:
        mid = batch.size // 2
        left, right = batch.entries[:mid], batch.entries[mid:]

    depth = batch.depth + 1
    return (
        Batch(index=first_index, entries=list(left), parent_index=batch.index, depth=depth),
        Batch(index=first_index + 1, entries=list(right), parent_index=batch.index, depth=depth),
    )


class RetrySplitController(LoggingMixin):
    """
    Drives batches through retry and split until the queue is empty.

    Per batch: PENDING -> EXECUTING -> SUCCEEDED, or RETRY_PENDING back to
    EXECUTING while retries remain. A batch that exhausts its attempts is
    bisected (SPLIT_PENDING) and both halves go to the head of the queue;
    a single entry that exhausts its attempts is PERMANENTLY_FAILED and the
    run moves on. Permanent ledger rejections skip the remaining retries.

    A retry after a transient failure that left a submitted transaction hands
    that transaction to the ledger so it is resolved before anything is
    resent. If the attempts run out while it is still unconfirmed, the batch
    is neither split nor failed: the submission is kept in the record and
    the run stops with UnconfirmedSubmissionError.

    The progress record is saved after every attempt and every terminal
    transition, before the next batch starts. Save failures propagate.
    """

    def __init__(self, executor: BatchExecutor, store: ProgressStore, record: ProgressRecord,
                 entry_set: EntrySet, max_retries: int = 3, retry_delay: float = 2.0,
                 sleep: Callable[[float], None] = time.sleep, on_batch: Optional[BatchCallback] = None):
        self.executor = executor
        self.store = store
        self.record = record
        self.entry_set = entry_set
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.sleep = sleep
        self.on_batch = on_batch

    def run(self, batches: List[Batch]) -> RunSummary:
        summary = RunSummary()
        queue: Deque[Batch] = deque(batches)
        next_index = max((b.index for b in batches), default=-1) + 1

        while queue:
            batch = queue.popleft()
            summary.batches += 1

            state, outcome, attempts = self._execute_with_retries(batch)
            summary.attempts += attempts

            if state == BatchState.SUCCEEDED:
                summary.succeeded += 1
                summary.applied_quantity += self._mark_succeeded(batch)
            elif outcome.is_transient and outcome.tx_hash:
                self.log_error(f"Batch {batch.index} still unconfirmed after {attempts} attempts, stopping",
                               batch_index=batch.index,
                               tx_hash=outcome.tx_hash)
                raise UnconfirmedSubmissionError(batch.index, outcome.tx_hash)
            elif batch.size > 1:
                state = BatchState.SPLIT_PENDING
                left, right = split_batch(batch, next_index)
                next_index += 2
                queue.appendleft(right)
                queue.appendleft(left)
                summary.splits += 1
                self._record_failure(batch, outcome, attempts, permanent=False)
                self.log_warning(f"Batch {batch.index} failed after {attempts} attempts, split into "
                                 f"{left.index} ({left.size}) and {right.index} ({right.size})",
                                 batch_index=batch.index,
                                 batch_size=batch.size,
                                 error=outcome.error)
            else:
                state = BatchState.PERMANENTLY_FAILED
                summary.permanently_failed += 1
                self._mark_permanently_failed(batch, outcome, attempts)

            self.store.save(self.record)
            if self.on_batch is not None:
                self.on_batch(batch, state, outcome)

        return summary

    def _execute_with_retries(self, batch: Batch) -> Tuple[BatchState, BatchOutcome, int]:
        max_attempts = self.max_retries + 1
        outcome: Optional[BatchOutcome] = None
        previous_tx: Optional[str] = None

        for attempt in range(1, max_attempts + 1):
            self.log_info(f"Executing batch {batch.index} ({batch.size} entries, {len(batch.owners())} owners)",
                          batch_index=batch.index,
                          batch_size=batch.size,
                          attempt=attempt)

            outcome = self.executor.execute(batch, previous_tx=previous_tx)
            self.record.batch_details.append(BatchAttemptDetail(
                batch_index=batch.index,
                entries=list(batch.entries),
                success=outcome.succeeded,
                attempt_timestamp=now_ms(),
                attempt=attempt,
                outcome=outcome.status.value,
                error=outcome.error,
                tx_hash=outcome.tx_hash,
            ))
            self._track_submission(batch, outcome)
            self.store.save(self.record)

            if outcome.succeeded:
                self.log_info(f"Batch {batch.index} succeeded",
                              batch_index=batch.index,
                              attempt=attempt,
                              tx_hash=outcome.tx_hash,
                              elapsed=round(outcome.elapsed, 3))
                return BatchState.SUCCEEDED, outcome, attempt

            self.log_warning(f"Batch {batch.index} attempt {attempt}/{max_attempts} failed",
                             batch_index=batch.index,
                             attempt=attempt,
                             outcome=outcome.status.value,
                             error=outcome.error)

            if outcome.is_permanent:
                return BatchState.PERMANENTLY_FAILED, outcome, attempt

            previous_tx = outcome.tx_hash

            if attempt < max_attempts:
                self.log_debug("Retry pending", batch_index=batch.index, attempt=attempt)
                self.sleep(self.retry_delay)

        return BatchState.RETRY_PENDING, outcome, max_attempts

    def _track_submission(self, batch: Batch, outcome: BatchOutcome) -> None:
        pending = [p for p in self.record.pending_submissions if p.batch_index != batch.index]
        if outcome.is_transient and outcome.tx_hash:
            pending.append(PendingSubmission(
                batch_index=batch.index,
                tx_hash=outcome.tx_hash,
                entries=list(batch.entries),
                submitted_at=now_ms(),
            ))
        self.record.pending_submissions = pending

    def _mark_succeeded(self, batch: Batch) -> int:
        applied = 0
        for entry in batch.entries:
            cap = self.entry_set.requested(entry.owner, entry.asset_id) or None
            applied += self.record.add_applied(entry, cap=cap)
        return applied

    def _record_failure(self, batch: Batch, outcome: BatchOutcome, attempts: int, permanent: bool) -> None:
        self.record.failed_batches.append(FailedBatchRecord(
            batch_index=batch.index,
            entries=list(batch.entries),
            error=outcome.error,
            timestamp=now_ms(),
            retry_count=attempts - 1,
            permanent=permanent,
        ))

    def _mark_permanently_failed(self, batch: Batch, outcome: BatchOutcome, attempts: int) -> None:
        entry = batch.entries[0]
        self.record.add_permanent_failure(entry)
        self._record_failure(batch, outcome, attempts, permanent=True)
        self.log_error(f"Entry permanently failed: {entry.owner} asset {entry.asset_id} x{entry.quantity}",
                       batch_index=batch.index,
                       owner=entry.owner,
                       asset_ids=[entry.asset_id],
                       error=outcome.error)
