# migrator/types/progress.py

from typing import Dict, List, Optional

from msgspec import Struct, field

from .entry import Entry
from .new import OwnerKey, AssetId, TimestampMs


PROGRESS_SCHEMA_VERSION = 2


class BatchAttemptDetail(Struct):
    batch_index: int
    entries: List[Entry]
    success: bool
    attempt_timestamp: TimestampMs
    attempt: int = 1
    outcome: str = "success"
    error: Optional[str] = None
    tx_hash: Optional[str] = None


class FailedBatchRecord(Struct):
    batch_index: int
    entries: List[Entry]
    error: Optional[str]
    timestamp: TimestampMs
    retry_count: int
    permanent: bool = False


class PendingSubmission(Struct):
    batch_index: int
    tx_hash: str
    entries: List[Entry]
    submitted_at: TimestampMs


class ProgressRecord(Struct):
    job: str
    start_time: TimestampMs
    last_update_time: TimestampMs
    version: int = PROGRESS_SCHEMA_VERSION
    processed: Dict[OwnerKey, Dict[AssetId, int]] = field(default_factory=dict)
    permanently_failed: Dict[OwnerKey, Dict[AssetId, int]] = field(default_factory=dict)
    failed_batches: List[FailedBatchRecord] = field(default_factory=list)
    batch_details: List[BatchAttemptDetail] = field(default_factory=list)
    pending_submissions: List[PendingSubmission] = field(default_factory=list)
    unresolved_legacy_ids: List[str] = field(default_factory=list)
    runs: int = 0
    completed: bool = False
    completed_at: Optional[TimestampMs] = None

    def applied(self, owner: OwnerKey, asset_id: AssetId) -> int:
        return self.processed.get(owner, {}).get(asset_id, 0)

    def failed_quantity(self, owner: OwnerKey, asset_id: AssetId) -> int:
        return self.permanently_failed.get(owner, {}).get(asset_id, 0)

    def add_applied(self, entry: Entry, cap: Optional[int] = None) -> int:
        """Add an applied quantity, capped at ``cap``. Returns the amount actually recorded."""
        assets = self.processed.setdefault(entry.owner, {})
        current = assets.get(entry.asset_id, 0)
        target = current + entry.quantity
        if cap is not None:
            target = min(target, cap)
        assets[entry.asset_id] = max(current, target)
        return assets[entry.asset_id] - current

    def add_permanent_failure(self, entry: Entry) -> None:
        assets = self.permanently_failed.setdefault(entry.owner, {})
        assets[entry.asset_id] = assets.get(entry.asset_id, 0) + entry.quantity

    @property
    def processed_entry_count(self) -> int:
        return sum(len(assets) for assets in self.processed.values())

    @property
    def processed_quantity(self) -> int:
        return sum(sum(assets.values()) for assets in self.processed.values())

    @property
    def permanently_failed_entries(self) -> List[Entry]:
        return [
            Entry(owner=owner, asset_id=asset_id, quantity=quantity)
            for owner, assets in self.permanently_failed.items()
            for asset_id, quantity in assets.items()
        ]
