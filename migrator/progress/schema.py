# migrator/progress/schema.py

"""
Versioned progress-file upgrades.

Earlier migration jobs each wrote their own progress layout:

    version 0a  {"totalProcessed", "lastBatchIndex", "failedBatches",
                 "processedAddresses": {owner: {"tokenIds"|"itemIds": [...], "timestamp"}}}
    version 0b  {"lastProcessedBatchIndexInLastRun", "failedBatchIndexesInLastRun",
                 "processedOwnerItems": {owner: [itemId, ...]}, "batchDetails": [...]}
    version 1   {"processedEntryIds": [...], "failedBatchDetails": [...],
                 "completed", "completedAt"}
    version 2   current ProgressRecord

Every completion recorded by an older layout survives the upgrade. Older
layouts only recorded that an asset was done, so the upgrade credits the
full requested quantity when the entry source knows it.
"""

import time
from typing import Any, Callable, Dict, List, Optional
import logging

import msgspec

from ..core.errors import ProgressCorruptError
from ..core.logging import MigratorLogger, log_with_context
from ..types import (
    PROGRESS_SCHEMA_VERSION,
    AssetId,
    FailedBatchRecord,
    OwnerKey,
    ProgressRecord,
    TimestampMs,
)
from ..source.snapshot import normalize_owner


RequestedLookup = Dict[OwnerKey, Dict[AssetId, int]]

logger = MigratorLogger.get_logger('progress.schema')


def now_ms() -> TimestampMs:
    return TimestampMs(int(time.time() * 1000))


def detect_version(raw: Dict[str, Any]) -> str:
    if "version" in raw and "processed" in raw:
        return str(raw["version"])
    if "processedEntryIds" in raw:
        return "1"
    if "processedOwnerItems" in raw:
        return "0b"
    if "processedAddresses" in raw or "totalProcessed" in raw or "lastBatchIndex" in raw:
        return "0a"
    raise ProgressCorruptError(f"Unrecognized progress file layout (keys: {sorted(raw)[:8]})")


def _credit(record: ProgressRecord, owner: str, asset_id: Any, requested: Optional[RequestedLookup]) -> None:
    owner_key = normalize_owner(owner)
    asset = AssetId(str(asset_id))
    quantity = 1
    if requested is not None:
        quantity = requested.get(owner_key, {}).get(asset, 0) or 1
    record.processed.setdefault(owner_key, {})[asset] = max(record.applied(owner_key, asset), quantity)


def _empty(job: str, raw: Dict[str, Any]) -> ProgressRecord:
    start = raw.get("startTime") or now_ms()
    return ProgressRecord(job=job, start_time=TimestampMs(int(start)), last_update_time=now_ms())


def _upgrade_0a(raw: Dict[str, Any], job: str, requested: Optional[RequestedLookup]) -> ProgressRecord:
    record = _empty(job, raw)
    for owner, info in (raw.get("processedAddresses") or {}).items():
        if not isinstance(info, dict):
            continue
        for asset_id in info.get("tokenIds") or info.get("itemIds") or []:
            _credit(record, owner, asset_id, requested)
    for index in raw.get("failedBatches") or []:
        record.failed_batches.append(FailedBatchRecord(
            batch_index=int(index), entries=[], error="recorded by legacy progress file",
            timestamp=record.start_time, retry_count=0,
        ))
    return record


def _upgrade_0b(raw: Dict[str, Any], job: str, requested: Optional[RequestedLookup]) -> ProgressRecord:
    record = _empty(job, raw)
    for owner, asset_ids in (raw.get("processedOwnerItems") or {}).items():
        for asset_id in asset_ids or []:
            _credit(record, owner, asset_id, requested)
    for index in raw.get("failedBatchIndexesInLastRun") or []:
        record.failed_batches.append(FailedBatchRecord(
            batch_index=int(index), entries=[], error="recorded by legacy progress file",
            timestamp=record.start_time, retry_count=0,
        ))
    return record


def _upgrade_1(raw: Dict[str, Any], job: str, requested: Optional[RequestedLookup]) -> ProgressRecord:
    record = _empty(job, raw)
    record.completed = bool(raw.get("completed", False))
    completed_at = raw.get("completedAt")
    record.completed_at = TimestampMs(int(completed_at)) if completed_at else None

    for entry_id in raw.get("processedEntryIds") or []:
        entry_id = str(entry_id)
        owner, sep, asset_id = entry_id.rpartition(":")
        if sep and owner:
            _credit(record, owner, asset_id, requested)
        else:
            record.unresolved_legacy_ids.append(entry_id)

    for detail in raw.get("failedBatchDetails") or []:
        if not isinstance(detail, dict) or detail.get("success"):
            continue
        record.failed_batches.append(FailedBatchRecord(
            batch_index=int(detail.get("batchIndex", -1)),
            entries=[],
            error=detail.get("error"),
            timestamp=TimestampMs(int(detail.get("attemptTimestamp") or record.start_time)),
            retry_count=0,
        ))
    return record


def _decode_current(raw: Dict[str, Any], job: str, requested: Optional[RequestedLookup]) -> ProgressRecord:
    try:
        return msgspec.convert(raw, type=ProgressRecord)
    except msgspec.ValidationError as e:
        raise ProgressCorruptError(f"Invalid progress record: {e}") from e


UPGRADERS: Dict[str, Callable[[Dict[str, Any], str, Optional[RequestedLookup]], ProgressRecord]] = {
    "0a": _upgrade_0a,
    "0b": _upgrade_0b,
    "1": _upgrade_1,
    str(PROGRESS_SCHEMA_VERSION): _decode_current,
}


def resolve_legacy_ids(record: ProgressRecord, requested: Optional[RequestedLookup]) -> int:
    """
    Attach bare asset ids from flat legacy lists to the owners that hold them.

    Ids no owner in ``requested`` holds stay in ``unresolved_legacy_ids``.
    Returns the number of ids resolved.
    """
    if not record.unresolved_legacy_ids or requested is None:
        return 0

    holders: Dict[str, List[OwnerKey]] = {}
    for owner, assets in requested.items():
        for asset_id in assets:
            holders.setdefault(asset_id, []).append(owner)

    still_unresolved: List[str] = []
    resolved = 0
    for asset_id in record.unresolved_legacy_ids:
        owners = holders.get(asset_id)
        if not owners:
            still_unresolved.append(asset_id)
            continue
        for owner in owners:
            quantity = requested[owner][AssetId(asset_id)]
            record.processed.setdefault(owner, {})[AssetId(asset_id)] = max(
                record.applied(owner, AssetId(asset_id)), quantity)
        resolved += 1

    record.unresolved_legacy_ids = still_unresolved
    return resolved


def upgrade_record(raw: Any, job: str, requested: Optional[RequestedLookup] = None) -> ProgressRecord:
    if not isinstance(raw, dict):
        raise ProgressCorruptError(f"Progress file must hold a JSON object, got {type(raw).__name__}")

    version = detect_version(raw)
    upgrader = UPGRADERS.get(version)
    if upgrader is None:
        raise ProgressCorruptError(f"Unsupported progress schema version {version}")

    record = upgrader(raw, job, requested)
    if version != str(PROGRESS_SCHEMA_VERSION):
        log_with_context(logger, logging.WARNING, "Legacy progress layout upgraded",
                         job=job,
                         from_version=version,
                         processed=record.processed_entry_count,
                         unresolved=len(record.unresolved_legacy_ids))

    resolved = resolve_legacy_ids(record, requested)
    if resolved:
        log_with_context(logger, logging.INFO, "Resolved legacy asset ids", job=job, resolved=resolved)

    record.version = PROGRESS_SCHEMA_VERSION
    return record
