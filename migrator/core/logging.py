# migrator/core/logging.py
"""
Centralized logging system for the migrator.

Provides:
- MigratorLogger: Global logging configuration
- LoggingMixin: Consistent logging behavior for classes
- Utility functions: Context logging helpers
"""

import logging
import sys
from pathlib import Path
from typing import Optional
from datetime import datetime

from logging import DEBUG, INFO, WARNING, ERROR, CRITICAL


CONTEXT_ATTRS = (
    'job', 'batch_index', 'batch_size', 'attempt', 'outcome', 'owner',
    'asset_ids', 'tx_hash', 'error', 'path', 'elapsed', 'owners', 'entries',
    'quantity', 'processed', 'outstanding', 'failed_batches',
)


class MigratorFormatter(logging.Formatter):
    def __init__(self, include_context: bool = False):
        self.include_context = include_context
        super().__init__()
    
    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.fromtimestamp(record.created).strftime('%Y-%m-%d %H:%M:%S.%f')[:-3]
        base_msg = f"{timestamp} - {record.name} - {record.levelname} - {record.getMessage()}"
        
        if record.exc_info:
            base_msg = f"{base_msg}\n{self.formatException(record.exc_info)}"
        
        if not self.include_context:
            return base_msg
        
        context_parts = []
        for attr in CONTEXT_ATTRS:
            if hasattr(record, attr):
                context_parts.append(f"{attr}={getattr(record, attr)}")
        
        if context_parts:
            return f"{base_msg} | {' '.join(context_parts)}"
        
        return base_msg


class MigratorLogger:
    """Global logging configuration and management"""
    
    _configured = False
    _defaulted = False
    _log_dir: Optional[Path] = None
    _log_level = logging.INFO
    _console_enabled = True
    _file_enabled = True
    
    @classmethod
    def configure(cls, 
                  log_dir: Optional[Path] = None,
                  log_level: str = "INFO",
                  console_enabled: bool = True,
                  file_enabled: bool = True,
                  structured_format: bool = True) -> None:
        
        # an explicit configure replaces the defaults installed by get_logger
        if cls._configured and not cls._defaulted:
            return
            
        cls._log_dir = log_dir
        cls._log_level = getattr(logging, log_level.upper())
        cls._console_enabled = console_enabled
        cls._file_enabled = file_enabled
        
        if file_enabled and log_dir:
            log_dir.mkdir(parents=True, exist_ok=True)
        
        root_logger = logging.getLogger('migrator')
        root_logger.setLevel(cls._log_level)
        
        root_logger.handlers.clear()
        
        if console_enabled:
            console_handler = logging.StreamHandler(sys.stdout)
            console_handler.setLevel(cls._log_level)
            console_handler.setFormatter(MigratorFormatter(include_context=structured_format))
            root_logger.addHandler(console_handler)
        
        if file_enabled and log_dir:
            file_handler = logging.FileHandler(log_dir / 'migrator.log')
            file_handler.setLevel(cls._log_level)
            file_formatter = MigratorFormatter(include_context=True)
            file_handler.setFormatter(file_formatter)
            root_logger.addHandler(file_handler)
            
            error_handler = logging.FileHandler(log_dir / 'migrator_errors.log')
            error_handler.setLevel(logging.ERROR)
            error_handler.setFormatter(file_formatter)
            root_logger.addHandler(error_handler)
        
        cls._configured = True
        cls._defaulted = False
    
    @classmethod
    def reset(cls) -> None:
        root_logger = logging.getLogger('migrator')
        for handler in list(root_logger.handlers):
            handler.close()
            root_logger.removeHandler(handler)
        cls._configured = False
        cls._defaulted = False
    
    @classmethod
    def get_logger(cls, name: str) -> logging.Logger:
        if not cls._configured:
            cls.configure(file_enabled=False)
            cls._defaulted = True
        
        if not name.startswith('migrator'):
            name = f'migrator.{name}'
        
        return logging.getLogger(name)


def get_class_logger(cls_instance) -> logging.Logger:
    module = cls_instance.__class__.__module__
    class_name = cls_instance.__class__.__name__
    
    if module.startswith('migrator.'):
        module = module[len('migrator.'):]
    
    return MigratorLogger.get_logger(f"{module}.{class_name}")


def log_with_context(logger: logging.Logger, level: int, message: str, **context) -> None:
    if logger.isEnabledFor(level):
        record = logger.makeRecord(
            logger.name, level, "", 0, message, (), None
        )
        for key, value in context.items():
            setattr(record, key, value)
        logger.handle(record)


class LoggingMixin:
    """
    Mixin to add consistent logging behavior to any class.
    
    Creates a class-specific logger on first use and exposes
    level helpers that accept structured context keywords.
    """
    
    @property
    def logger(self) -> logging.Logger:
        if not hasattr(self, '_logger'):
            self._logger = get_class_logger(self)
        return self._logger
    
    def log_debug(self, message: str, **context) -> None:
        log_with_context(self.logger, logging.DEBUG, message, **context)
    
    def log_info(self, message: str, **context) -> None:
        log_with_context(self.logger, logging.INFO, message, **context)
    
    def log_warning(self, message: str, **context) -> None:
        log_with_context(self.logger, logging.WARNING, message, **context)
    
    def log_error(self, message: str, **context) -> None:
        log_with_context(self.logger, logging.ERROR, message, **context)


__all__ = [
    'MigratorLogger', 'MigratorFormatter', 'LoggingMixin',
    'get_class_logger', 'log_with_context',
    'DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL',
]
