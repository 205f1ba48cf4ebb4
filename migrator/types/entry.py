# migrator/types/entry.py

from typing import Dict, Iterator, List, Optional, Tuple

import msgspec
from msgspec import Struct

from .new import OwnerKey, AssetId


class Entry(Struct, frozen=True):
    owner: OwnerKey
    asset_id: AssetId
    quantity: int = 1

    @property
    def key(self) -> Tuple[OwnerKey, AssetId]:
        return (self.owner, self.asset_id)

    def with_quantity(self, quantity: int) -> 'Entry':
        return msgspec.structs.replace(self, quantity=quantity)


class Batch(Struct):
    index: int
    entries: List[Entry]
    parent_index: Optional[int] = None
    depth: int = 0

    @property
    def size(self) -> int:
        return len(self.entries)

    def owners(self) -> List[OwnerKey]:
        seen: Dict[OwnerKey, None] = {}
        for entry in self.entries:
            seen.setdefault(entry.owner, None)
        return list(seen)

    def entries_by_owner(self) -> Dict[OwnerKey, List[Entry]]:
        grouped: Dict[OwnerKey, List[Entry]] = {}
        for entry in self.entries:
            grouped.setdefault(entry.owner, []).append(entry)
        return grouped

    def units(self, capacity_unit: str = "entries") -> int:
        if capacity_unit == "quantity":
            return sum(entry.quantity for entry in self.entries)
        return len(self.entries)

    def total_quantity(self) -> int:
        return sum(entry.quantity for entry in self.entries)

    def describe(self) -> str:
        parts = []
        for owner, entries in self.entries_by_owner().items():
            items = ", ".join(f"{e.asset_id}x{e.quantity}" for e in entries)
            parts.append(f"{owner}: [{items}]")
        return "; ".join(parts)


class EntrySet:
    """
    Normalized owner -> asset -> requested quantity mapping.

    Owners and assets keep the order they were first seen in the snapshots,
    so planning over the same inputs always produces the same batches.
    """

    def __init__(self):
        self._owners: Dict[OwnerKey, Dict[AssetId, int]] = {}

    def add(self, owner: OwnerKey, asset_id: AssetId, quantity: int) -> None:
        assets = self._owners.setdefault(owner, {})
        assets[asset_id] = assets.get(asset_id, 0) + quantity

    def merge(self, other: 'EntrySet') -> 'EntrySet':
        for entry in other.entries():
            self.add(entry.owner, entry.asset_id, entry.quantity)
        return self

    def requested(self, owner: OwnerKey, asset_id: AssetId) -> int:
        return self._owners.get(owner, {}).get(asset_id, 0)

    def owners(self) -> List[OwnerKey]:
        return list(self._owners)

    def assets_for(self, owner: OwnerKey) -> Dict[AssetId, int]:
        return dict(self._owners.get(owner, {}))

    def entries(self) -> Iterator[Entry]:
        for owner, assets in self._owners.items():
            for asset_id, quantity in assets.items():
                yield Entry(owner=owner, asset_id=asset_id, quantity=quantity)

    def as_mapping(self) -> Dict[OwnerKey, Dict[AssetId, int]]:
        return {owner: dict(assets) for owner, assets in self._owners.items()}

    def owners_holding(self, asset_id: AssetId) -> List[OwnerKey]:
        return [owner for owner, assets in self._owners.items() if asset_id in assets]

    @property
    def owner_count(self) -> int:
        return len(self._owners)

    @property
    def total_entries(self) -> int:
        return sum(len(assets) for assets in self._owners.values())

    @property
    def total_quantity(self) -> int:
        return sum(sum(assets.values()) for assets in self._owners.values())

    def __contains__(self, key: Tuple[OwnerKey, AssetId]) -> bool:
        owner, asset_id = key
        return asset_id in self._owners.get(owner, {})

    def __len__(self) -> int:
        return self.total_entries

    def __repr__(self) -> str:
        return f"EntrySet(owners={self.owner_count}, entries={self.total_entries}, quantity={self.total_quantity})"
