# migrator/progress/lock.py

import atexit
import os
import signal
from pathlib import Path
from typing import Optional, Union
import logging

from ..core.errors import LockHeldError
from ..core.logging import MigratorLogger, log_with_context


def _terminate(signum, frame):
    raise SystemExit(128 + signum)


class SingletonLock:
    """
    Zero-byte lock file created with exclusive-create semantics.

    Held for the lifetime of one migration run and released through an
    atexit hook. A lock left behind by a killed process is not cleared
    automatically; the operator removes it after checking nothing is running.
    """

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        self._held = False
        self._atexit_registered = False
        self.logger = MigratorLogger.get_logger('progress.lock')

    @property
    def held(self) -> bool:
        return self._held

    def acquire(self) -> None:
        if self._held:
            return

        self.path.parent.mkdir(parents=True, exist_ok=True)
        try:
            fd = os.open(str(self.path), os.O_CREAT | os.O_EXCL | os.O_WRONLY)
        except FileExistsError:
            log_with_context(self.logger, logging.ERROR, "Lock already held",
                             path=str(self.path))
            raise LockHeldError(str(self.path))
        os.close(fd)

        self._held = True
        if not self._atexit_registered:
            atexit.register(self.release)
            self._atexit_registered = True
        self._install_sigterm_handler()

        log_with_context(self.logger, logging.DEBUG, "Lock acquired", path=str(self.path))

    def release(self) -> None:
        if not self._held:
            return
        try:
            self.path.unlink()
        except FileNotFoundError:
            log_with_context(self.logger, logging.WARNING, "Lock file vanished before release",
                             path=str(self.path))
        self._held = False
        log_with_context(self.logger, logging.DEBUG, "Lock released", path=str(self.path))

    @staticmethod
    def _install_sigterm_handler() -> None:
        # SIGTERM skips atexit unless it is turned into SystemExit
        try:
            if signal.getsignal(signal.SIGTERM) == signal.SIG_DFL:
                signal.signal(signal.SIGTERM, _terminate)
        except ValueError:
            # not on the main thread
            pass

    def __enter__(self) -> 'SingletonLock':
        self.acquire()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.release()

    @staticmethod
    def is_locked(path: Union[str, Path]) -> bool:
        return Path(path).exists()
