# migrator/__init__.py

import logging
import os
import time
from pathlib import Path
from typing import Optional, Union

from dotenv import load_dotenv

from .core.container import MigratorContainer
from .core.config import load_logging_config, load_migration_config
from .core.errors import ConfigError
from .core.logging import MigratorLogger, log_with_context
from .ledger import LedgerClient, create_ledger
from .planner.planner import BatchPlanner
from .progress.store import ProgressStore
from .pipeline.executor import BatchExecutor
from .pipeline.migration_pipeline import MigrationPipeline
from .types import MigrationConfig


def create_migrator(job_name: str = None, env_vars: dict = None, config_path: Optional[Union[str, Path]] = None,
                    **overrides) -> MigratorContainer:
    """
    Build a container with every service one migration job needs.

    ``overrides`` take precedence over the environment and the job file, e.g.
    ``create_migrator("wearables", dry_run=True, capacity_bound=50)``. Ledger
    fields may be passed flat; they are routed into the ledger section.
    """
    if env_vars is None:
        load_dotenv()
    env = env_vars if env_vars is not None else os.environ
    _configure_logging_early(env)

    logger = MigratorLogger.get_logger('core.init')

    if not job_name:
        job_name = env.get("MIGRATOR_JOB")
        if not job_name:
            logger.error("No job name provided and MIGRATOR_JOB not set")
            raise ConfigError("Must provide job_name or set MIGRATOR_JOB environment variable")

    log_with_context(logger, logging.INFO, "Loading configuration for job", job=job_name)

    config = load_migration_config(job_name, config_path, env_vars, **_split_overrides(overrides))

    container = MigratorContainer(config)
    _register_services(container)

    log_with_context(logger, logging.INFO, "Migrator created successfully",
                     job=config.job,
                     ledger="dry-run" if config.ledger.dry_run else config.ledger.rpc_url)
    return container


LEDGER_FIELDS = frozenset(
    ("rpc_url", "contract_address", "abi_path", "function_name", "call_shape",
     "private_key", "from_address", "gas_limit", "dry_run")
)


def _split_overrides(overrides: dict) -> dict:
    values = {k: v for k, v in overrides.items() if k not in LEDGER_FIELDS and v is not None}
    ledger = dict(values.pop("ledger", None) or {})
    ledger.update({k: v for k, v in overrides.items() if k in LEDGER_FIELDS and v is not None})
    values["ledger"] = ledger
    return values


def _configure_logging_early(env: dict):
    logging_config = load_logging_config(env)
    MigratorLogger.configure(
        log_dir=logging_config.log_dir,
        log_level=logging_config.log_level,
        console_enabled=logging_config.console_enabled,
        file_enabled=logging_config.file_enabled,
        structured_format=logging_config.structured_format,
    )


def _register_services(container: MigratorContainer):
    logger = MigratorLogger.get_logger('core.services')
    logger.debug("Registering services in container")

    container.register_instance(MigrationConfig, container.config)
    container.register_factory(ProgressStore, _create_progress_store)
    container.register_factory(LedgerClient, _create_ledger)
    container.register_factory(BatchPlanner, _create_planner)
    container.register_factory(BatchExecutor, _create_executor)
    container.register_factory(MigrationPipeline, _create_pipeline)

    logger.debug("Service registration completed")


def _create_progress_store(container: MigratorContainer) -> ProgressStore:
    config = container.config
    return ProgressStore(config.progress_path, config.job, config.resolved_lock_path)


def _create_ledger(container: MigratorContainer) -> LedgerClient:
    return create_ledger(container.config.ledger)


def _create_planner(container: MigratorContainer) -> BatchPlanner:
    config = container.config
    return BatchPlanner(config.capacity_bound, policy=config.packing_policy, capacity_unit=config.capacity_unit)


def _create_executor(container: MigratorContainer) -> BatchExecutor:
    config = container.config
    return BatchExecutor(
        container.get(LedgerClient),
        timeout=config.operation_timeout,
        unknown_errors_transient=config.unknown_errors_transient,
    )


def _create_pipeline(container: MigratorContainer) -> MigrationPipeline:
    # the ledger is built on first use, by run()
    return MigrationPipeline(
        container.config,
        store=container.get(ProgressStore),
        planner=container.get(BatchPlanner),
        sleep=time.sleep,
        ledger_factory=lambda: container.get(LedgerClient),
        executor_factory=lambda: container.get(BatchExecutor),
    )


__all__ = ['create_migrator', 'MigratorContainer']
