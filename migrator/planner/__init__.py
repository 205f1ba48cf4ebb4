# migrator/planner/__init__.py

from .planner import BatchPlanner, outstanding_entries, group_by_owner, PACKING_POLICIES, CAPACITY_UNITS
