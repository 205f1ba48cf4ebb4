# migrator/core/errors.py

from typing import Optional


class MigratorError(Exception):
    """Base class for all migrator errors"""


class InputError(MigratorError):
    """Unrecoverable input problem. The run aborts before touching progress."""


class ConfigError(InputError):
    pass


class SnapshotError(InputError):
    def __init__(self, message: str, path: Optional[str] = None):
        self.path = path
        if path:
            message = f"{path}: {message}"
        super().__init__(message)


class LockHeldError(InputError):
    def __init__(self, lock_path: str):
        self.lock_path = lock_path
        super().__init__(
            f"Lock file {lock_path} exists. Another migration may be running; "
            f"remove the file manually once you are sure it is stale."
        )


class ProgressCorruptError(InputError):
    pass


class StepAlreadyDoneError(InputError):
    def __init__(self, step: str):
        self.step = step
        super().__init__(f"Step '{step}' has already been completed")


class ProgressPersistenceError(MigratorError):
    """Progress could not be written. Continuing would risk losing completed work."""


class LedgerError(MigratorError):
    def __init__(self, message: str, tx_hash: Optional[str] = None):
        self.tx_hash = tx_hash
        super().__init__(message)


class TransientLedgerError(LedgerError):
    """Timeout, connection or congestion failure; the same batch may succeed later."""


class PermanentLedgerError(LedgerError):
    """The ledger rejected the batch content."""


class UnconfirmedSubmissionError(MigratorError):
    """A submitted batch has no known final state. Nothing more is sent until it settles."""

    def __init__(self, batch_index: int, tx_hash: str):
        self.batch_index = batch_index
        self.tx_hash = tx_hash
        super().__init__(
            f"Batch {batch_index} transaction {tx_hash} is still unconfirmed; "
            f"rerun once it is mined or dropped"
        )
