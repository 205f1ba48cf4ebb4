# migrator/source/snapshot.py

"""
Snapshot loading for migration jobs.

A snapshot describes who owns what at the snapshot block. Several shapes
were produced by the export tooling over time; all of them normalize into
one EntrySet:

    {owner: [{"tokenId": "12", "balance": 3}, ...]}     balances
    {owner: ["12", "13"]}                                identity assets
    [{"safeAddress": owner, "tokenIds": [...]}, ...]     owner records
    [{"tokenId": "12", "balance": 3}, ...]               single destination
"""

from pathlib import Path
from typing import Any, Iterable, List, Optional, Union
import logging

import msgspec
from eth_utils import is_hex_address, to_checksum_address

from ..core.errors import SnapshotError
from ..core.logging import MigratorLogger, log_with_context
from ..types import EntrySet, OwnerKey, AssetId


ASSET_ID_KEYS = ("assetId", "tokenId", "itemId", "asset_id", "token_id", "item_id")
QUANTITY_KEYS = ("balance", "quantity", "amount")
OWNER_KEYS = ("owner", "safeAddress", "address", "to")
OWNER_TOKEN_KEYS = ("tokenIds", "assetIds")
OWNER_BALANCE_KEYS = ("tokens", "items", "balances")

logger = MigratorLogger.get_logger('source.snapshot')


def normalize_owner(owner: Any, path: Optional[str] = None) -> OwnerKey:
    if not isinstance(owner, str) or not owner.strip():
        raise SnapshotError(f"Invalid owner key {owner!r}", path)
    owner = owner.strip()
    if is_hex_address(owner):
        return OwnerKey(to_checksum_address(owner))
    return OwnerKey(owner)


def normalize_asset_id(value: Any, path: Optional[str] = None, owner: Optional[str] = None) -> AssetId:
    if isinstance(value, bool):
        raise SnapshotError(f"Invalid asset id {value!r} for owner {owner}", path)
    if isinstance(value, int):
        if value < 0:
            raise SnapshotError(f"Negative asset id {value} for owner {owner}", path)
        return AssetId(str(value))
    if isinstance(value, str) and value.strip():
        return AssetId(value.strip())
    raise SnapshotError(f"Invalid asset id {value!r} for owner {owner}", path)


def normalize_quantity(value: Any, path: Optional[str] = None, owner: Optional[str] = None,
                       asset_id: Optional[str] = None) -> int:
    if isinstance(value, bool):
        raise SnapshotError(f"Invalid quantity {value!r} for {owner}/{asset_id}", path)
    if isinstance(value, str) and value.strip().isdigit():
        value = int(value.strip())
    if not isinstance(value, int):
        raise SnapshotError(f"Invalid quantity {value!r} for {owner}/{asset_id}", path)
    if value <= 0:
        raise SnapshotError(f"Quantity must be positive, got {value} for {owner}/{asset_id}", path)
    return value


def _first_key(item: dict, keys: Iterable[str]) -> Optional[str]:
    for key in keys:
        if key in item:
            return key
    return None


def _add_holding(entries: EntrySet, owner: OwnerKey, item: Any, path: str) -> None:
    if isinstance(item, dict):
        id_key = _first_key(item, ASSET_ID_KEYS)
        if id_key is None:
            raise SnapshotError(f"Balance without asset id for owner {owner}: {item!r}", path)
        asset_id = normalize_asset_id(item[id_key], path, owner)
        qty_key = _first_key(item, QUANTITY_KEYS)
        quantity = 1 if qty_key is None else normalize_quantity(item[qty_key], path, owner, asset_id)
        entries.add(owner, asset_id, quantity)
    else:
        entries.add(owner, normalize_asset_id(item, path, owner), 1)


def _parse_owner_map(data: dict, path: str) -> EntrySet:
    entries = EntrySet()
    for raw_owner, holdings in data.items():
        owner = normalize_owner(raw_owner, path)
        if not isinstance(holdings, list):
            raise SnapshotError(f"Holdings for owner {owner} must be a list, got {type(holdings).__name__}", path)
        for item in holdings:
            _add_holding(entries, owner, item, path)
    return entries


def _parse_record_list(data: list, path: str, default_owner: Optional[str]) -> EntrySet:
    entries = EntrySet()
    default = normalize_owner(default_owner, path) if default_owner else None

    for record in data:
        if not isinstance(record, dict):
            raise SnapshotError(f"Expected an object in snapshot list, got {type(record).__name__}", path)

        owner_key = _first_key(record, OWNER_KEYS)
        if owner_key is not None:
            owner = normalize_owner(record[owner_key], path)
            tokens_key = _first_key(record, OWNER_TOKEN_KEYS)
            balances_key = _first_key(record, OWNER_BALANCE_KEYS)
            holdings = record.get(tokens_key) if tokens_key else record.get(balances_key) if balances_key else None
            if not isinstance(holdings, list):
                raise SnapshotError(f"Owner record for {owner} has no holdings list", path)
            for item in holdings:
                _add_holding(entries, owner, item, path)
            continue

        if default is None:
            raise SnapshotError("List snapshot entries without an owner require a default owner", path)
        _add_holding(entries, default, record, path)

    return entries


def parse_snapshot(data: Any, path: str = "<memory>", default_owner: Optional[str] = None) -> EntrySet:
    if isinstance(data, dict):
        return _parse_owner_map(data, path)
    if isinstance(data, list):
        return _parse_record_list(data, path, default_owner)
    raise SnapshotError(f"Snapshot must be a JSON object or array, got {type(data).__name__}", path)


def load_snapshot(path: Union[str, Path], default_owner: Optional[str] = None) -> EntrySet:
    path = Path(path)
    if not path.is_file():
        raise SnapshotError("Snapshot file not found", str(path))

    try:
        data = msgspec.json.decode(path.read_bytes())
    except msgspec.DecodeError as e:
        raise SnapshotError(f"Malformed JSON: {e}", str(path)) from e

    entries = parse_snapshot(data, str(path), default_owner)

    log_with_context(logger, logging.DEBUG, "Snapshot loaded",
                     path=str(path),
                     owners=entries.owner_count,
                     entries=entries.total_entries)
    return entries


def load_snapshots(paths: List[Union[str, Path]], default_owner: Optional[str] = None) -> EntrySet:
    """
    Load and merge one or more snapshots. Duplicate (owner, asset) pairs are summed.

    Raises:
        SnapshotError: if no snapshot is given or any of them is missing or malformed
    """
    if not paths:
        raise SnapshotError("No snapshot files configured")

    merged = EntrySet()
    for path in paths:
        merged.merge(load_snapshot(path, default_owner))

    log_with_context(logger, logging.INFO, "Entry source loaded",
                     snapshot_count=len(paths),
                     owners=merged.owner_count,
                     entries=merged.total_entries,
                     quantity=merged.total_quantity)
    return merged
