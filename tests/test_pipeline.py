# tests/test_pipeline.py

import pytest

from migrator.core.errors import LockHeldError, SnapshotError, TransientLedgerError, UnconfirmedSubmissionError
from migrator.ledger import DryRunLedger
from migrator.pipeline import MigrationPipeline, next_batch_index
from migrator.progress import ProgressStore
from migrator.types import LedgerReceipt, MigrationConfig

from conftest import OWNER_A, OWNER_B, OWNER_C, OWNER_D, ScriptedLedger, reject_keys


SNAPSHOT = {
    OWNER_A: [{"itemId": "1", "balance": 5}, {"itemId": "2", "balance": 3}],
    OWNER_B: [{"itemId": "3", "balance": 1}],
}

REQUESTED = {(OWNER_A, "1"): 5, (OWNER_A, "2"): 3, (OWNER_B, "3"): 1}


@pytest.fixture
def make_pipeline(write_snapshot, progress_path, no_sleep):
    snapshot = write_snapshot(SNAPSHOT)

    def make(ledger, **settings):
        config = MigrationConfig(
            job="wearables",
            progress_path=progress_path,
            snapshot_paths=settings.pop("snapshot_paths", [snapshot]),
            **settings,
        )
        return MigrationPipeline(config, ledger, sleep=no_sleep, echo=lambda *args: None)

    return make


@pytest.mark.parametrize("unit", ["entries", "quantity"])
def test_all_success_run_covers_every_entry(make_pipeline, progress_path, unit):
    ledger = ScriptedLedger()

    result = make_pipeline(ledger, capacity_bound=2, capacity_unit=unit).run()

    record = ProgressStore(progress_path, "wearables").read()
    assert ledger.applied_quantities() == REQUESTED
    assert record.processed == {OWNER_A: {"1": 5, "2": 3}, OWNER_B: {"3": 1}}
    assert record.completed
    assert record.completed_at is not None
    assert result.metrics.failed_batches == 0
    assert result.metrics.outstanding_entries == 0
    assert not progress_path.with_name(progress_path.name + ".lock").exists()


def test_rerun_after_completion_applies_nothing(make_pipeline):
    make_pipeline(ScriptedLedger()).run()
    ledger = ScriptedLedger()

    result = make_pipeline(ledger).run()

    assert ledger.calls == []
    assert result.planned_batches == 0
    assert result.metrics.completed


def test_resume_after_crash_applies_each_entry_once(make_pipeline, progress_path):
    def crash_on_third_call(batch, call_number):
        if call_number == 3:
            raise KeyboardInterrupt

    first = ScriptedLedger(crash_on_third_call)
    with pytest.raises(KeyboardInterrupt):
        make_pipeline(first, capacity_bound=2, capacity_unit="quantity").run()

    assert not progress_path.with_name(progress_path.name + ".lock").exists()
    interrupted = ProgressStore(progress_path, "wearables").read()
    assert not interrupted.completed

    second = ScriptedLedger()
    make_pipeline(second, capacity_bound=2, capacity_unit="quantity").run()

    combined = dict(first.applied_quantities())
    for key, quantity in second.applied_quantities().items():
        combined[key] = combined.get(key, 0) + quantity
    assert combined == REQUESTED

    record = ProgressStore(progress_path, "wearables").read()
    assert record.runs == 2
    assert record.completed
    # batch indices continue across runs
    second_run_indices = {b.index for b in second.calls}
    first_run_indices = {b.index for b in first.applied}
    assert not second_run_indices & first_run_indices


def test_permanently_failed_entry_is_not_retried_on_resume(write_snapshot, make_pipeline, progress_path):
    snapshot = write_snapshot({OWNER_A: ["1"], OWNER_B: ["2"], OWNER_C: ["3"], OWNER_D: ["4"]})
    ledger = ScriptedLedger(reject_keys((OWNER_D, "4"), transient=True))

    make_pipeline(ledger, snapshot_paths=[snapshot], capacity_bound=4, max_retries=3).run()

    record = ProgressStore(progress_path, "wearables").read()
    assert record.processed_entry_count == 3
    assert [e.key for e in record.permanently_failed_entries] == [(OWNER_D, "4")]

    resumed = ScriptedLedger()
    result = make_pipeline(resumed, snapshot_paths=[snapshot], capacity_bound=4).run()

    assert resumed.calls == []
    assert result.metrics.permanently_failed_entries == 1


def test_reset_failed_requeues_entries(write_snapshot, make_pipeline):
    snapshot = write_snapshot({OWNER_A: ["1"], OWNER_B: ["2"]})
    make_pipeline(ScriptedLedger(reject_keys((OWNER_B, "2"))), snapshot_paths=[snapshot]).run()

    assert make_pipeline(ScriptedLedger(), snapshot_paths=[snapshot]).reset_failed() == 1

    ledger = ScriptedLedger()
    make_pipeline(ledger, snapshot_paths=[snapshot]).run()
    assert ledger.applied_quantities() == {(OWNER_B, "2"): 1}


def test_lock_held_aborts_before_any_work(make_pipeline, progress_path):
    progress_path.parent.mkdir(parents=True)
    lock_path = progress_path.with_name(progress_path.name + ".lock")
    lock_path.touch()
    ledger = ScriptedLedger()

    with pytest.raises(LockHeldError):
        make_pipeline(ledger).run()

    assert ledger.calls == []
    assert lock_path.exists()
    assert not progress_path.exists()


def test_missing_snapshot_aborts_without_touching_progress(make_pipeline, tmp_path, progress_path):
    with pytest.raises(SnapshotError):
        make_pipeline(ScriptedLedger(), snapshot_paths=[tmp_path / "missing.json"]).run()

    assert not progress_path.exists()
    assert not progress_path.with_name(progress_path.name + ".lock").exists()


def test_plan_only_and_status_do_not_write(make_pipeline, progress_path):
    pipeline = make_pipeline(DryRunLedger(), capacity_bound=2)

    batches = pipeline.plan_only()

    assert sum(b.size for b in batches) == 3
    assert pipeline.status() is None
    assert not progress_path.exists()


def test_status_after_run(make_pipeline):
    make_pipeline(DryRunLedger()).run()

    metrics = make_pipeline(DryRunLedger()).status()

    assert metrics.processed_quantity == 9
    assert metrics.outstanding_entries == 0
    assert metrics.completed


def test_next_batch_index_counts_failures_and_attempts(make_pipeline, progress_path):
    make_pipeline(ScriptedLedger(reject_keys((OWNER_B, "3"))), capacity_bound=10).run()

    record = ProgressStore(progress_path, "wearables").read()

    # batch 0 split into 1 and 2
    assert next_batch_index(record) == 3


def stall_with_pending_transaction(make_pipeline):
    def still_pending(batch, call_number):
        raise TransientLedgerError("no receipt", tx_hash="0xabc")

    with pytest.raises(UnconfirmedSubmissionError):
        make_pipeline(ScriptedLedger(still_pending), capacity_bound=10, max_retries=1).run()


def test_mined_submission_is_credited_on_the_next_run(make_pipeline, progress_path):
    stall_with_pending_transaction(make_pipeline)
    assert not progress_path.with_name(progress_path.name + ".lock").exists()

    ledger = ScriptedLedger(resolutions={"0xabc": LedgerReceipt(tx_hash="0xabc", block_number=9)})
    result = make_pipeline(ledger, capacity_bound=10).run()

    assert ledger.resolved == ["0xabc"]
    assert ledger.calls == []
    assert result.metrics.completed
    record = ProgressStore(progress_path, "wearables").read()
    assert record.processed == {OWNER_A: {"1": 5, "2": 3}, OWNER_B: {"3": 1}}
    assert record.pending_submissions == []


def test_still_pending_submission_blocks_new_work(make_pipeline, progress_path):
    stall_with_pending_transaction(make_pipeline)

    ledger = ScriptedLedger()
    with pytest.raises(UnconfirmedSubmissionError):
        make_pipeline(ledger, capacity_bound=10).run()

    assert ledger.calls == []
    record = ProgressStore(progress_path, "wearables").read()
    assert [p.tx_hash for p in record.pending_submissions] == ["0xabc"]


def test_dropped_submission_is_planned_again(make_pipeline, progress_path):
    stall_with_pending_transaction(make_pipeline)

    ledger = ScriptedLedger(resolutions={"0xabc": None})
    make_pipeline(ledger, capacity_bound=10).run()

    assert ledger.applied_quantities() == REQUESTED
    assert ProgressStore(progress_path, "wearables").read().pending_submissions == []


def test_plan_and_status_do_not_build_the_ledger(write_snapshot, progress_path):
    built = []
    config = MigrationConfig(job="wearables", progress_path=progress_path,
                             snapshot_paths=[write_snapshot(SNAPSHOT)])
    pipeline = MigrationPipeline(config, ledger_factory=lambda: built.append(1) or DryRunLedger(),
                                 echo=lambda *args: None)

    assert pipeline.plan_only()
    assert pipeline.status() is None
    assert pipeline.reset_failed() == 0
    assert built == []

    pipeline.run()
    assert built == [1]


def test_status_without_entry_source_leaves_outstanding_unknown(make_pipeline, tmp_path):
    make_pipeline(DryRunLedger()).run()

    metrics = make_pipeline(DryRunLedger(), snapshot_paths=[tmp_path / "gone.json"]).status()

    assert metrics.processed_quantity == 9
    assert metrics.outstanding_entries is None
    assert metrics.outstanding_quantity is None
