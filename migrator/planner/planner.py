# migrator/planner/planner.py

from collections import deque
from typing import Deque, Dict, List, Optional, Tuple

from ..core.errors import ConfigError
from ..core.logging import LoggingMixin
from ..types import Batch, Entry, EntrySet, OwnerKey, ProgressRecord


PACKING_POLICIES = ("round_robin", "owner_count")
CAPACITY_UNITS = ("entries", "quantity")


def outstanding_entries(entry_set: EntrySet, record: Optional[ProgressRecord]) -> List[Entry]:
    """
    Entries still to apply: requested minus applied minus permanently failed, per (owner, asset).
    """
    remaining: List[Entry] = []
    for entry in entry_set.entries():
        done = 0
        if record is not None:
            done = record.applied(entry.owner, entry.asset_id) + record.failed_quantity(entry.owner, entry.asset_id)
        left = entry.quantity - done
        if left > 0:
            remaining.append(entry.with_quantity(left))
    return remaining


def group_by_owner(entries: List[Entry]) -> Dict[OwnerKey, List[Entry]]:
    grouped: Dict[OwnerKey, List[Entry]] = {}
    for entry in entries:
        grouped.setdefault(entry.owner, []).append(entry)
    return grouped


class BatchPlanner(LoggingMixin):
    """
    Partitions outstanding entries into capacity-bounded batches.

    Two packing policies are supported:

    owner_count
        At most ``capacity_bound`` owners per batch; every owner's full
        remaining list goes into one batch.
    round_robin
        At most ``capacity_bound`` units per batch. Owners take turns: each
        turn takes as much of the head owner's remaining entries as fits,
        and an owner with leftovers goes to the back of the line. A single
        large owner is therefore spread over consecutive batches without
        holding the others back.

    With ``capacity_unit="quantity"`` an entry weighs its quantity and an
    entry larger than the free space is cut into partial entries for the
    same asset.
    """

    def __init__(self, capacity_bound: int, policy: str = "round_robin", capacity_unit: str = "entries"):
        if capacity_bound < 1:
            raise ConfigError(f"capacity_bound must be at least 1, got {capacity_bound}")
        if policy not in PACKING_POLICIES:
            raise ConfigError(f"Unknown packing policy '{policy}', expected one of {PACKING_POLICIES}")
        if capacity_unit not in CAPACITY_UNITS:
            raise ConfigError(f"Unknown capacity unit '{capacity_unit}', expected one of {CAPACITY_UNITS}")
        if policy == "owner_count" and capacity_unit != "entries":
            raise ConfigError("owner_count packing bounds owners and cannot weigh by quantity")

        self.capacity_bound = capacity_bound
        self.policy = policy
        self.capacity_unit = capacity_unit

    def plan(self, entry_set: EntrySet, record: Optional[ProgressRecord] = None, start_index: int = 0) -> List[Batch]:
        remaining = outstanding_entries(entry_set, record)
        if not remaining:
            self.log_info("Nothing outstanding, no batches planned")
            return []

        if self.policy == "owner_count":
            groups = self._pack_by_owner_count(remaining)
        else:
            groups = self._pack_round_robin(remaining)

        batches = [Batch(index=start_index + i, entries=entries) for i, entries in enumerate(groups)]

        self.log_info("Batches planned",
                      policy=self.policy,
                      capacity_bound=self.capacity_bound,
                      entries=len(remaining),
                      owners=len({e.owner for e in remaining}),
                      batches=len(batches))
        return batches

    def _pack_by_owner_count(self, remaining: List[Entry]) -> List[List[Entry]]:
        owners = list(group_by_owner(remaining).items())
        groups: List[List[Entry]] = []
        for start in range(0, len(owners), self.capacity_bound):
            chunk = owners[start:start + self.capacity_bound]
            groups.append([entry for _, entries in chunk for entry in entries])
        return groups

    def _weight(self, entry: Entry) -> int:
        return entry.quantity if self.capacity_unit == "quantity" else 1

    def _pack_round_robin(self, remaining: List[Entry]) -> List[List[Entry]]:
        queue: Deque[Tuple[OwnerKey, Deque[Entry]]] = deque(
            (owner, deque(entries)) for owner, entries in group_by_owner(remaining).items()
        )
        groups: List[List[Entry]] = []
        current: List[Entry] = []
        used = 0

        while queue:
            owner, pending = queue.popleft()

            while pending and used < self.capacity_bound:
                entry = pending.popleft()
                free = self.capacity_bound - used
                weight = self._weight(entry)
                if weight > free:
                    # quantity mode only: take what fits, keep the rest at the owner's head
                    current.append(entry.with_quantity(free))
                    pending.appendleft(entry.with_quantity(entry.quantity - free))
                    used += free
                else:
                    current.append(entry)
                    used += weight

            if pending:
                queue.append((owner, pending))

            if used >= self.capacity_bound:
                groups.append(current)
                current = []
                used = 0

        if current:
            groups.append(current)
        return groups
