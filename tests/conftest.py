# tests/conftest.py
"""
pytest fixtures for the migrator test suite
"""

from pathlib import Path
from typing import Callable, Dict, List, Optional, Union

import msgspec
import pytest

from migrator.core.errors import PermanentLedgerError, TransientLedgerError
from migrator.core.logging import MigratorLogger
from migrator.ledger.interfaces import LedgerClient
from migrator.types import Batch, LedgerReceipt


# digit-only addresses are already in checksum form
OWNER_A = "0x" + "1" * 40
OWNER_B = "0x" + "2" * 40
OWNER_C = "0x" + "3" * 40
OWNER_D = "0x" + "4" * 40


class ScriptedLedger(LedgerClient):
    """
    Ledger fake driven by a script.

    ``script(batch, call_number)`` may raise to fail the call; returning
    normally applies the batch. Applied batches are kept in ``applied``.
    ``resolutions`` maps a tx hash to what ``resolve`` reports for it: a
    receipt, None for dropped, or an exception to raise.
    """

    def __init__(self, script: Optional[Callable[[Batch, int], None]] = None,
                 resolutions: Optional[Dict[str, Union[LedgerReceipt, Exception, None]]] = None):
        self.script = script
        self.resolutions = dict(resolutions or {})
        self.calls: List[Batch] = []
        self.applied: List[Batch] = []
        self.previous: List[Optional[str]] = []
        self.resolved: List[str] = []

    def apply_batch(self, batch: Batch, timeout: Optional[float] = None,
                    previous_tx: Optional[str] = None) -> LedgerReceipt:
        self.calls.append(batch)
        self.previous.append(previous_tx)
        if self.script is not None:
            self.script(batch, len(self.calls))
        self.applied.append(batch)
        return LedgerReceipt(tx_hash=f"0x{len(self.calls):064x}")

    def resolve(self, tx_hash: str, timeout: Optional[float] = None) -> Optional[LedgerReceipt]:
        self.resolved.append(tx_hash)
        if tx_hash not in self.resolutions:
            return super().resolve(tx_hash, timeout)
        result = self.resolutions[tx_hash]
        if isinstance(result, Exception):
            raise result
        return result

    def describe(self) -> str:
        return "scripted"

    def applied_quantities(self):
        totals = {}
        for batch in self.applied:
            for entry in batch.entries:
                totals[entry.key] = totals.get(entry.key, 0) + entry.quantity
        return totals


def reject_keys(*keys, transient: bool = False):
    """Script that fails any batch containing one of ``keys``."""
    rejected = set(keys)

    def script(batch: Batch, call_number: int) -> None:
        hits = [e for e in batch.entries if e.key in rejected]
        if hits:
            error = TransientLedgerError if transient else PermanentLedgerError
            raise error(f"rejected {hits[0].owner}:{hits[0].asset_id}")

    return script


@pytest.fixture(autouse=True)
def reset_logging():
    MigratorLogger.reset()
    yield
    MigratorLogger.reset()


@pytest.fixture
def no_sleep():
    """Sleep replacement that records requested delays"""
    delays: List[float] = []

    def sleep(seconds: float) -> None:
        delays.append(seconds)

    sleep.delays = delays  # type: ignore[attr-defined]
    return sleep


@pytest.fixture
def write_snapshot(tmp_path):
    """Write a snapshot document to a JSON file under tmp_path"""
    counter = {"n": 0}

    def write(data, name: Optional[str] = None) -> Path:
        counter["n"] += 1
        path = tmp_path / (name or f"snapshot-{counter['n']}.json")
        path.write_bytes(msgspec.json.encode(data))
        return path

    return write


@pytest.fixture
def progress_path(tmp_path) -> Path:
    return tmp_path / "processed" / "job-progress.json"


@pytest.fixture
def quiet_env() -> dict:
    """Environment for create_migrator that keeps logs off disk"""
    return {"MIGRATOR_LOG_FILE": "false", "MIGRATOR_LOG_CONSOLE": "false"}
