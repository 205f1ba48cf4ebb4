# migrator/reporting/reporter.py

import time
from typing import Optional
import logging

from msgspec import Struct

from ..core.logging import MigratorLogger, log_with_context
from ..planner.planner import outstanding_entries
from ..types import EntrySet, ProgressRecord


class ProgressMetrics(Struct):
    job: str
    processed_entries: int
    processed_quantity: int
    outstanding_entries: Optional[int]
    outstanding_quantity: Optional[int]
    permanently_failed_entries: int
    failed_batches: int
    attempts: int
    successful_batches: int
    success_rate: float
    elapsed_seconds: float
    average_batch_seconds: float
    completed: bool
    pending_submissions: int = 0


def compute_metrics(record: ProgressRecord, entry_set: Optional[EntrySet] = None,
                    now: Optional[float] = None) -> ProgressMetrics:
    """
    Aggregate metrics from a progress record. Does not modify the record.

    Without an entry set the outstanding work is unknown and reported as None.
    """
    now = time.time() if now is None else now

    outstanding = outstanding_entries(entry_set, record) if entry_set is not None else None
    successes = sum(1 for detail in record.batch_details if detail.success)
    attempts = len(record.batch_details)
    elapsed = max(0.0, now - record.start_time / 1000)

    return ProgressMetrics(
        job=record.job,
        processed_entries=record.processed_entry_count,
        processed_quantity=record.processed_quantity,
        outstanding_entries=len(outstanding) if outstanding is not None else None,
        outstanding_quantity=sum(entry.quantity for entry in outstanding) if outstanding is not None else None,
        permanently_failed_entries=len(record.permanently_failed_entries),
        failed_batches=len(record.failed_batches),
        attempts=attempts,
        successful_batches=successes,
        success_rate=(successes / attempts * 100) if attempts else 0.0,
        elapsed_seconds=elapsed,
        average_batch_seconds=elapsed / successes if successes else 0.0,
        completed=record.completed,
        pending_submissions=len(record.pending_submissions),
    )


def format_outstanding(metrics: ProgressMetrics) -> str:
    if metrics.outstanding_entries is None:
        return "unknown (entry source unavailable)"
    return f"{metrics.outstanding_entries:,} (quantity {metrics.outstanding_quantity:,})"


class ProgressReporter:
    """Prints aggregate metrics derived from the progress record."""

    def __init__(self, entry_set: Optional[EntrySet] = None, echo=print):
        self.entry_set = entry_set
        self.echo = echo
        self.logger = MigratorLogger.get_logger('reporting.reporter')

    def report(self, record: ProgressRecord) -> ProgressMetrics:
        metrics = compute_metrics(record, self.entry_set)
        log_with_context(
            self.logger, logging.INFO,
            f"Progress: {metrics.processed_entries} processed, {metrics.outstanding_entries} outstanding, "
            f"{metrics.failed_batches} failed batches, {metrics.elapsed_seconds / 60:.2f} min elapsed",
            job=metrics.job,
            processed=metrics.processed_entries,
            outstanding=metrics.outstanding_entries,
            failed_batches=metrics.failed_batches,
        )
        return metrics

    def print_summary(self, record: ProgressRecord, title: str = "Migration Analytics") -> ProgressMetrics:
        metrics = compute_metrics(record, self.entry_set)
        self.echo(f"\n=== {title} ({metrics.job}) ===")
        self.echo(f"   ✅ Processed entries: {metrics.processed_entries:,} (quantity {metrics.processed_quantity:,})")
        self.echo(f"   ⏳ Outstanding entries: {format_outstanding(metrics)}")
        self.echo(f"   ❌ Failed batches: {metrics.failed_batches:,}")
        self.echo(f"   🚫 Permanently failed entries: {metrics.permanently_failed_entries:,}")
        self.echo(f"   📈 Success rate: {metrics.success_rate:.1f}% of {metrics.attempts:,} attempts")
        self.echo(f"   ⏱️  Elapsed: {metrics.elapsed_seconds / 60:.2f} minutes")
        self.echo(f"   ⏱️  Average per batch: {metrics.average_batch_seconds:.2f} seconds")
        if metrics.completed:
            self.echo(f"   🎉 Completed")
        self.echo("=" * (len(title) + len(metrics.job) + 11))
        return metrics
