# migrator/progress/steps.py

from pathlib import Path
from typing import Dict, Union
import logging

import msgspec

from ..core.errors import ProgressCorruptError, ProgressPersistenceError, StepAlreadyDoneError
from ..core.logging import MigratorLogger, log_with_context
from .store import atomic_write_bytes


class StepLedger:
    """
    One-shot flags for migration steps that are not batched.

    Steps such as minting a whole collection to a single diamond or setting
    post-deployment variables must run exactly once per deployment.
    """

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        self.logger = MigratorLogger.get_logger('progress.steps')

    def _read(self) -> Dict[str, bool]:
        if not self.path.is_file():
            return {}
        try:
            return msgspec.json.decode(self.path.read_bytes(), type=Dict[str, bool])
        except (msgspec.DecodeError, msgspec.ValidationError) as e:
            raise ProgressCorruptError(f"{self.path}: invalid step ledger: {e}") from e

    def steps(self) -> Dict[str, bool]:
        return self._read()

    def is_done(self, step: str) -> bool:
        return self._read().get(step, False)

    def ensure_not_done(self, step: str) -> None:
        if self.is_done(step):
            raise StepAlreadyDoneError(step)

    def mark_done(self, step: str, value: bool = True) -> None:
        flags = self._read()
        flags[step] = value
        self.path.parent.mkdir(parents=True, exist_ok=True)
        try:
            atomic_write_bytes(self.path, msgspec.json.format(msgspec.json.encode(flags), indent=2))
        except OSError as e:
            raise ProgressPersistenceError(f"Could not save step ledger {self.path}: {e}") from e

        log_with_context(self.logger, logging.INFO, "Step flag updated", step=step, value=value)
