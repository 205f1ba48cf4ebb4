# migrator/core/config.py

import os
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Union

import msgspec
import yaml

from ..types import LedgerConfig, LoggingConfig, MigrationConfig
from .errors import ConfigError
from .logging import MigratorLogger, log_with_context, INFO, DEBUG


ENV_PREFIX = "MIGRATOR_"
DEFAULT_CONFIG_FILE = "migrations.yaml"
DEFAULT_PROGRESS_DIR = "processed"

# environment variable suffix -> (section, key, type)
ENV_FIELDS = {
    "CAPACITY_BOUND": (None, "capacity_bound", int),
    "CAPACITY_UNIT": (None, "capacity_unit", str),
    "PACKING_POLICY": (None, "packing_policy", str),
    "MAX_RETRIES": (None, "max_retries", int),
    "RETRY_DELAY": (None, "retry_delay", float),
    "OPERATION_TIMEOUT": (None, "operation_timeout", float),
    "UNKNOWN_ERRORS_TRANSIENT": (None, "unknown_errors_transient", bool),
    "DEFAULT_OWNER": (None, "default_owner", str),
    "SQL_URL": (None, "sql_url", str),
    "SQL_QUERY": (None, "sql_query", str),
    "RPC_URL": ("ledger", "rpc_url", str),
    "CONTRACT_ADDRESS": ("ledger", "contract_address", str),
    "ABI_PATH": ("ledger", "abi_path", str),
    "FUNCTION_NAME": ("ledger", "function_name", str),
    "CALL_SHAPE": ("ledger", "call_shape", str),
    "PRIVATE_KEY": ("ledger", "private_key", str),
    "FROM_ADDRESS": ("ledger", "from_address", str),
    "GAS_LIMIT": ("ledger", "gas_limit", int),
    "DRY_RUN": ("ledger", "dry_run", bool),
}

PATH_FIELDS = ("progress_path", "lock_path")


def _parse_bool(value: Union[str, bool]) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("1", "true", "yes", "on")


def _coerce(name: str, value: Any, kind: type) -> Any:
    try:
        if kind is bool:
            return _parse_bool(value)
        return kind(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Invalid value for {name}: {value!r}") from e


def load_config_file(path: Union[str, Path]) -> Dict[str, Any]:
    path = Path(path)
    if not path.is_file():
        raise ConfigError(f"Config file not found: {path}")

    with open(path, "r") as f:
        if path.suffix.lower() in (".yaml", ".yml"):
            try:
                data = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                raise ConfigError(f"Failed to parse config file {path}: {e}") from e
        elif path.suffix.lower() == ".json":
            try:
                data = msgspec.json.decode(f.read())
            except msgspec.DecodeError as e:
                raise ConfigError(f"Failed to parse config file {path}: {e}") from e
        else:
            raise ConfigError(f"Unsupported config file type: {path.suffix}")

    if not isinstance(data, dict):
        raise ConfigError(f"Config file {path} must contain a mapping")
    return data


def _job_section(file_data: Dict[str, Any], job: str) -> Dict[str, Any]:
    merged: Dict[str, Any] = {}
    defaults = file_data.get("defaults") or {}
    jobs = file_data.get("jobs") or {}

    merged.update({k: v for k, v in defaults.items() if k != "ledger"})
    merged["ledger"] = dict(defaults.get("ledger") or {})

    if job in jobs:
        job_data = jobs[job] or {}
        merged.update({k: v for k, v in job_data.items() if k != "ledger"})
        merged["ledger"].update(job_data.get("ledger") or {})
    elif jobs:
        raise ConfigError(f"Job '{job}' not found in config file. Known jobs: {', '.join(sorted(jobs))}")

    return merged


def _env_section(env: Mapping[str, str]) -> Dict[str, Any]:
    values: Dict[str, Any] = {"ledger": {}}
    for suffix, (section, key, kind) in ENV_FIELDS.items():
        name = ENV_PREFIX + suffix
        if name in env and env[name] != "":
            target = values["ledger"] if section == "ledger" else values
            target[key] = _coerce(name, env[name], kind)

    snapshots = env.get(ENV_PREFIX + "SNAPSHOTS")
    if snapshots:
        values["snapshots"] = [s.strip() for s in snapshots.split(",") if s.strip()]
    if env.get(ENV_PREFIX + "PROGRESS_DIR"):
        values["progress_dir"] = env[ENV_PREFIX + "PROGRESS_DIR"]
    return values


def _merge(base: Dict[str, Any], layer: Dict[str, Any]) -> Dict[str, Any]:
    ledger = dict(base.get("ledger") or {})
    ledger.update({k: v for k, v in (layer.get("ledger") or {}).items() if v is not None})
    base.update({k: v for k, v in layer.items() if k != "ledger" and v is not None})
    base["ledger"] = ledger
    return base


def build_migration_config(job: str, values: Dict[str, Any], base_dir: Path) -> MigrationConfig:
    def resolve(p: Union[str, Path]) -> Path:
        p = Path(p)
        return p if p.is_absolute() else base_dir / p

    values = dict(values)
    progress_dir = resolve(values.pop("progress_dir", DEFAULT_PROGRESS_DIR))
    progress_file = values.pop("progress_file", None) or f"{job}-progress.json"
    progress_path = resolve(progress_file) if Path(progress_file).parent != Path(".") else progress_dir / progress_file

    snapshots = values.pop("snapshots", None)
    snapshot_paths = values.pop("snapshot_paths", None)
    snapshots = snapshots or snapshot_paths or []
    if isinstance(snapshots, str):
        snapshots = [snapshots]

    ledger_values = dict(values.pop("ledger", None) or {})
    if ledger_values.get("abi_path"):
        ledger_values["abi_path"] = resolve(ledger_values["abi_path"])

    lock_path = values.pop("lock_path", None)

    try:
        ledger = LedgerConfig(**ledger_values)
        config = MigrationConfig(
            job=job,
            progress_path=progress_path,
            snapshot_paths=[resolve(s) for s in snapshots],
            lock_path=resolve(lock_path) if lock_path else None,
            ledger=ledger,
            **values,
        )
    except TypeError as e:
        raise ConfigError(f"Invalid configuration for job '{job}': {e}") from e

    if config.capacity_bound < 1:
        raise ConfigError(f"capacity_bound must be at least 1, got {config.capacity_bound}")
    if config.max_retries < 0:
        raise ConfigError(f"max_retries cannot be negative, got {config.max_retries}")
    if config.retry_delay < 0:
        raise ConfigError(f"retry_delay cannot be negative, got {config.retry_delay}")

    return config


def load_migration_config(
    job: str,
    config_path: Optional[Union[str, Path]] = None,
    env_vars: Optional[Mapping[str, str]] = None,
    **overrides,
) -> MigrationConfig:
    """
    Resolve a job's configuration.

    Precedence, lowest first: built-in defaults, the job file's ``defaults``
    section, the job's own section, ``MIGRATOR_*`` environment variables,
    explicit overrides. Relative paths resolve against the job file's directory,
    or the working directory when no job file is used.
    """
    logger = MigratorLogger.get_logger('core.config')

    if env_vars is None:
        from dotenv import load_dotenv
        load_dotenv()
        env_vars = os.environ

    if config_path is None and env_vars.get(ENV_PREFIX + "CONFIG"):
        config_path = env_vars[ENV_PREFIX + "CONFIG"]
    if config_path is None and Path(DEFAULT_CONFIG_FILE).is_file():
        config_path = DEFAULT_CONFIG_FILE

    values: Dict[str, Any] = {"ledger": {}}
    base_dir = Path.cwd()
    if config_path is not None:
        base_dir = Path(config_path).absolute().parent
        values = _merge(values, _job_section(load_config_file(config_path), job))
        log_with_context(logger, DEBUG, "Job file loaded", job=job, path=str(config_path))

    values = _merge(values, _env_section(env_vars))

    ledger_overrides = overrides.pop("ledger", None) or {}
    values = _merge(values, {**overrides, "ledger": ledger_overrides})

    config = build_migration_config(job, values, base_dir)

    log_with_context(logger, INFO, "Migration configuration loaded",
                     job=job,
                     path=str(config.progress_path),
                     capacity_bound=config.capacity_bound,
                     packing_policy=config.packing_policy,
                     snapshot_count=len(config.snapshot_paths))
    return config


def load_logging_config(env_vars: Optional[Mapping[str, str]] = None) -> LoggingConfig:
    env = env_vars if env_vars is not None else os.environ
    log_dir = env.get(ENV_PREFIX + "LOG_DIR")
    return LoggingConfig(
        log_dir=Path(log_dir) if log_dir else Path.cwd() / "logs",
        log_level=env.get(ENV_PREFIX + "LOG_LEVEL", "INFO"),
        console_enabled=_parse_bool(env.get(ENV_PREFIX + "LOG_CONSOLE", "true")),
        file_enabled=_parse_bool(env.get(ENV_PREFIX + "LOG_FILE", "true")),
        structured_format=_parse_bool(env.get(ENV_PREFIX + "LOG_STRUCTURED", "false")),
    )
