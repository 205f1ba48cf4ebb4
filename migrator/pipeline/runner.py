# migrator/pipeline/runner.py

"""
Operator-facing runner for migration jobs.

Wraps MigrationPipeline with console output for the CLI:
    runner = MigrationRunner("wearables", dry_run=True)
    runner.run()
"""

from pathlib import Path
from typing import Optional, Union
import logging

from .. import create_migrator
from ..core.logging import MigratorLogger, log_with_context
from ..types import MigrationConfig
from ..reporting.reporter import format_outstanding
from .migration_pipeline import MigrationPipeline, MigrationResult


class MigrationRunner:
    """Console runner for one migration job"""

    def __init__(self, job_name: Optional[str] = None, config_path: Optional[Union[str, Path]] = None,
                 env_vars: Optional[dict] = None, echo=print, **overrides):
        self.container = create_migrator(job_name, env_vars=env_vars, config_path=config_path, **overrides)
        self.config: MigrationConfig = self.container.config
        self.pipeline = self.container.get(MigrationPipeline)
        self.pipeline.echo = echo
        self.echo = echo

        self.logger = MigratorLogger.get_logger('pipeline.runner')
        log_with_context(self.logger, logging.INFO, "MigrationRunner initialized", job=self.config.job)

    def _print_header(self, action: str, show_ledger: bool = False) -> None:
        self.echo(f"{action} job: {self.config.job}")
        self.echo(f"📁 Progress file: {self.config.progress_path}")
        for path in self.config.snapshot_paths:
            self.echo(f"📄 Snapshot: {path}")
        if self.config.sql_url:
            self.echo(f"🗄️  SQL source configured")
        if show_ledger:
            self.echo(f"🔗 Ledger: {self.pipeline.ledger.describe()}")
        self.echo(f"📦 Capacity: {self.config.capacity_bound} {self.config.capacity_unit} "
                  f"({self.config.packing_policy})")

    def run(self) -> MigrationResult:
        self._print_header("🚀 Running", show_ledger=True)
        self.echo(f"🔁 Retries: {self.config.max_retries} (delay {self.config.retry_delay}s)")

        result = self.pipeline.run()
        summary = result.summary

        self.echo(f"\n✅ Run Results:")
        self.echo(f"   📦 Batches planned: {result.planned_batches:,}")
        self.echo(f"   🎯 Batches executed: {summary.batches:,}")
        self.echo(f"   ✅ Succeeded: {summary.succeeded:,}")
        self.echo(f"   🔁 Attempts: {summary.attempts:,}")
        self.echo(f"   ✂️  Splits: {summary.splits:,}")
        self.echo(f"   🚫 Permanently failed: {summary.permanently_failed:,}")
        self.echo(f"   ➕ Quantity applied: {summary.applied_quantity:,}")

        if result.metrics.completed:
            self.echo(f"\n🎉 All entries processed")
        elif result.metrics.outstanding_entries:
            self.echo(f"\n⏳ {result.metrics.outstanding_entries:,} entries still outstanding")
        return result

    def plan(self, show_batches: bool = False) -> int:
        self._print_header("🗂️  Planning")
        batches = self.pipeline.plan_only()

        entries = sum(b.size for b in batches)
        quantity = sum(b.total_quantity() for b in batches)
        self.echo(f"\n📊 Plan:")
        self.echo(f"   📦 Batches: {len(batches):,}")
        self.echo(f"   📝 Entries: {entries:,}")
        self.echo(f"   ➕ Quantity: {quantity:,}")
        if show_batches:
            for batch in batches:
                self.echo(f"   • {batch.describe()}")
        return len(batches)

    def status(self) -> bool:
        metrics = self.pipeline.status()
        if metrics is None:
            self.echo(f"📭 No progress recorded for job {self.config.job}")
            return False

        self.echo(f"📊 Status for job {metrics.job}")
        self.echo(f"   ✅ Processed entries: {metrics.processed_entries:,} (quantity {metrics.processed_quantity:,})")
        self.echo(f"   ⏳ Outstanding entries: {format_outstanding(metrics)}")
        self.echo(f"   ❌ Failed batches: {metrics.failed_batches:,}")
        self.echo(f"   🚫 Permanently failed entries: {metrics.permanently_failed_entries:,}")
        if metrics.pending_submissions:
            self.echo(f"   ⚠️  Unconfirmed submissions: {metrics.pending_submissions:,}")
        self.echo(f"   📈 Success rate: {metrics.success_rate:.1f}% of {metrics.attempts:,} attempts")
        self.echo(f"   {'🎉 Completed' if metrics.completed else '🔄 In progress'}")
        return True

    def failed(self, limit: Optional[int] = None) -> int:
        record = self.pipeline.store.read()
        if record is None:
            self.echo(f"📭 No progress recorded for job {self.config.job}")
            return 0

        entries = record.permanently_failed_entries
        self.echo(f"🚫 Permanently failed entries: {len(entries):,}")
        for entry in entries[:limit]:
            self.echo(f"   {entry.owner}  asset {entry.asset_id}  x{entry.quantity}")

        failed_batches = record.failed_batches
        self.echo(f"\n❌ Failed batches: {len(failed_batches):,}")
        for failure in failed_batches[-limit if limit else None:]:
            kind = "permanent" if failure.permanent else "split"
            self.echo(f"   #{failure.batch_index} ({len(failure.entries)} entries, {kind}, "
                      f"{failure.retry_count} retries): {failure.error}")
        return len(entries)

    def reset_failed(self) -> int:
        cleared = self.pipeline.reset_failed()
        self.echo(f"♻️  Cleared {cleared:,} permanently failed entries for job {self.config.job}")
        return cleared
