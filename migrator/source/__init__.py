# migrator/source/__init__.py

from .snapshot import load_snapshot, load_snapshots, parse_snapshot, normalize_owner
from .sql import load_sql_snapshot
