# migrator/pipeline/migration_pipeline.py

import time
from typing import Callable, List, Optional

from msgspec import Struct

from ..core.errors import SnapshotError, UnconfirmedSubmissionError
from ..core.logging import LoggingMixin
from ..ledger import LedgerClient, create_ledger
from ..planner.planner import BatchPlanner, outstanding_entries
from ..progress.schema import now_ms
from ..progress.store import ProgressStore
from ..reporting.reporter import ProgressMetrics, ProgressReporter, compute_metrics
from ..source.snapshot import load_snapshots
from ..source.sql import DEFAULT_BALANCE_QUERY, load_sql_snapshot
from ..types import Batch, BatchOutcome, BatchState, EntrySet, MigrationConfig, ProgressRecord
from .controller import RetrySplitController, RunSummary
from .executor import BatchExecutor


class MigrationResult(Struct):
    job: str
    planned_batches: int
    summary: RunSummary
    metrics: ProgressMetrics


def next_batch_index(record: ProgressRecord) -> int:
    """First batch index not used by any earlier attempt or failure in the record."""
    indices = [d.batch_index for d in record.batch_details]
    indices.extend(f.batch_index for f in record.failed_batches)
    return max(indices, default=-1) + 1


class MigrationPipeline(LoggingMixin):
    """
    Runs one migration job from entry source to an empty work queue.

    A run holds the job's lock for its whole duration, loads the entry
    source, loads or upgrades the progress record, settles submissions an
    earlier run left unconfirmed, plans the outstanding work and hands the
    batches to the retry/split controller. Restarting a stopped run picks up
    from the last saved record.
    """

    def __init__(
        self,
        config: MigrationConfig,
        ledger: Optional[LedgerClient] = None,
        store: Optional[ProgressStore] = None,
        planner: Optional[BatchPlanner] = None,
        executor: Optional[BatchExecutor] = None,
        sleep: Callable[[float], None] = time.sleep,
        echo=print,
        ledger_factory: Optional[Callable[[], LedgerClient]] = None,
        executor_factory: Optional[Callable[[], BatchExecutor]] = None,
    ):
        self.config = config
        self._ledger = ledger
        self._ledger_factory = ledger_factory
        self._executor = executor
        self._executor_factory = executor_factory
        self.store = store or ProgressStore(config.progress_path, config.job, config.resolved_lock_path)
        self.planner = planner or BatchPlanner(
            config.capacity_bound,
            policy=config.packing_policy,
            capacity_unit=config.capacity_unit,
        )
        self.sleep = sleep
        self.echo = echo

        self.log_info("MigrationPipeline initialized",
                      job=config.job,
                      path=str(config.progress_path))

    @property
    def ledger(self) -> LedgerClient:
        """Built on first use; planning and reporting never connect to the ledger."""
        if self._ledger is None:
            self._ledger = self._ledger_factory() if self._ledger_factory else create_ledger(self.config.ledger)
        return self._ledger

    @property
    def executor(self) -> BatchExecutor:
        if self._executor is None:
            if self._executor_factory is not None:
                self._executor = self._executor_factory()
            else:
                self._executor = BatchExecutor(
                    self.ledger,
                    timeout=self.config.operation_timeout,
                    unknown_errors_transient=self.config.unknown_errors_transient,
                )
        return self._executor

    def load_entries(self) -> EntrySet:
        """
        Load the job's entry source: snapshot files, the SQL source, or both merged.

        Raises:
            SnapshotError: if no source is configured or any source is unusable
        """
        if not self.config.snapshot_paths and not self.config.sql_url:
            raise SnapshotError(f"No entry source configured for job '{self.config.job}'")

        entries = EntrySet()
        if self.config.snapshot_paths:
            entries.merge(load_snapshots(self.config.snapshot_paths, self.config.default_owner))
        if self.config.sql_url:
            entries.merge(load_sql_snapshot(self.config.sql_url, self.config.sql_query or DEFAULT_BALANCE_QUERY))
        return entries

    def plan_only(self) -> List[Batch]:
        """Plan the outstanding work against the saved record without applying or saving anything."""
        entry_set = self.load_entries()
        record = self.store.read(entry_set.as_mapping()) or self.store.new_record()
        return self.planner.plan(entry_set, record, start_index=next_batch_index(record))

    def status(self) -> Optional[ProgressMetrics]:
        """Metrics for the saved record, or None when the job has never run. Does not take the lock."""
        entry_set = None
        try:
            entry_set = self.load_entries()
        except SnapshotError as e:
            self.log_warning("Entry source unavailable, outstanding work not computed",
                             job=self.config.job,
                             error=str(e))

        record = self.store.read(entry_set.as_mapping() if entry_set is not None else None)
        if record is None:
            return None
        return compute_metrics(record, entry_set)

    def reset_failed(self) -> int:
        """
        Clear permanently failed entries so the next run plans them again.

        Returns the number of entries cleared.
        """
        self.store.acquire()
        try:
            record = self.store.read()
            if record is None:
                return 0
            cleared = len(record.permanently_failed_entries)
            record.permanently_failed = {}
            record.completed = False
            record.completed_at = None
            self.store.save(record)
            self.log_info(f"Cleared {cleared} permanently failed entries",
                          job=self.config.job,
                          entries=cleared)
            return cleared
        finally:
            self.store.release()

    def settle_pending(self, record: ProgressRecord, entry_set: EntrySet) -> int:
        """
        Resolve submissions an earlier run left unconfirmed, before any new work is planned.

        Confirmed ones are credited to the record; dropped or reverted ones
        leave their entries outstanding. Returns the number settled.

        Raises:
            UnconfirmedSubmissionError: a submission is still pending
        """
        settled = 0
        for pending in list(record.pending_submissions):
            outcome = self.executor.settle(pending.tx_hash)

            if outcome is not None and outcome.is_transient:
                raise UnconfirmedSubmissionError(pending.batch_index, pending.tx_hash)

            if outcome is None:
                self.log_warning("Unconfirmed transaction was dropped, entries stay outstanding",
                                 batch_index=pending.batch_index,
                                 tx_hash=pending.tx_hash)
            elif outcome.succeeded:
                for entry in pending.entries:
                    record.add_applied(entry, cap=entry_set.requested(entry.owner, entry.asset_id) or None)
                self.log_info("Unconfirmed transaction was mined, entries credited",
                              batch_index=pending.batch_index,
                              tx_hash=pending.tx_hash,
                              entries=len(pending.entries))
            else:
                self.log_warning("Unconfirmed transaction reverted, entries stay outstanding",
                                 batch_index=pending.batch_index,
                                 tx_hash=pending.tx_hash,
                                 error=outcome.error)

            record.pending_submissions = [p for p in record.pending_submissions if p is not pending]
            self.store.save(record)
            settled += 1
        return settled

    def run(self) -> MigrationResult:
        """
        Apply every outstanding entry, resuming from the saved record.

        Raises:
            LockHeldError: another run of this job holds the lock
            SnapshotError, ProgressCorruptError: the inputs cannot be loaded
            UnconfirmedSubmissionError: a submitted batch has no final state yet
            ProgressPersistenceError: a progress save failed; nothing further is applied
        """
        self.store.acquire()
        try:
            entry_set = self.load_entries()
            record = self.store.load(entry_set.as_mapping())
            record.runs += 1
            self.store.save(record)
            self.settle_pending(record, entry_set)

            reporter = ProgressReporter(entry_set, echo=self.echo)
            batches = self.planner.plan(entry_set, record, start_index=next_batch_index(record))

            self.log_info(f"Starting run {record.runs}: {len(batches)} batches planned via {self.ledger.describe()}",
                          job=self.config.job,
                          entries=sum(b.size for b in batches),
                          processed=record.processed_entry_count)

            def on_batch(batch: Batch, state: BatchState, outcome: BatchOutcome) -> None:
                reporter.report(record)

            controller = RetrySplitController(
                self.executor,
                self.store,
                record,
                entry_set,
                max_retries=self.config.max_retries,
                retry_delay=self.config.retry_delay,
                sleep=self.sleep,
                on_batch=on_batch,
            )
            summary = controller.run(batches)

            if not outstanding_entries(entry_set, record):
                if not record.completed:
                    record.completed = True
                    record.completed_at = now_ms()
            else:
                record.completed = False
            self.store.save(record)

            metrics = reporter.print_summary(record)
            self.log_info("Run finished",
                          job=self.config.job,
                          processed=metrics.processed_entries,
                          outstanding=metrics.outstanding_entries,
                          failed_batches=metrics.failed_batches)

            return MigrationResult(
                job=self.config.job,
                planned_batches=len(batches),
                summary=summary,
                metrics=metrics,
            )
        finally:
            self.store.release()
