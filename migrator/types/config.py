# migrator/types/config.py

from typing import List, Optional, Literal
from pathlib import Path

from msgspec import Struct, field


PackingPolicy = Literal["round_robin", "owner_count"]
CapacityUnit = Literal["entries", "quantity"]
CallShape = Literal["owner_items", "owner_tokens"]


class LedgerConfig(Struct):
    rpc_url: Optional[str] = None
    contract_address: Optional[str] = None
    abi_path: Optional[Path] = None
    function_name: Optional[str] = None
    call_shape: CallShape = "owner_items"
    private_key: Optional[str] = None
    from_address: Optional[str] = None
    gas_limit: Optional[int] = None
    dry_run: bool = False


class LoggingConfig(Struct):
    log_dir: Optional[Path] = None
    log_level: str = "INFO"
    console_enabled: bool = True
    file_enabled: bool = True
    structured_format: bool = False


class MigrationConfig(Struct):
    job: str
    progress_path: Path
    snapshot_paths: List[Path] = field(default_factory=list)
    lock_path: Optional[Path] = None
    capacity_bound: int = 300
    capacity_unit: CapacityUnit = "entries"
    packing_policy: PackingPolicy = "round_robin"
    max_retries: int = 3
    retry_delay: float = 2.0
    operation_timeout: float = 120.0
    unknown_errors_transient: bool = True
    default_owner: Optional[str] = None
    sql_url: Optional[str] = None
    sql_query: Optional[str] = None
    ledger: LedgerConfig = field(default_factory=LedgerConfig)

    @property
    def resolved_lock_path(self) -> Path:
        if self.lock_path is not None:
            return self.lock_path
        return self.progress_path.with_name(self.progress_path.name + ".lock")
