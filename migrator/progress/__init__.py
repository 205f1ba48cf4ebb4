# migrator/progress/__init__.py

from .lock import SingletonLock
from .schema import upgrade_record, resolve_legacy_ids, now_ms
from .store import ProgressStore, atomic_write_bytes
from .steps import StepLedger
