"""Best-effort unmount, close and removal of a volume.

Every step runs regardless of earlier failures; failures are collected in a
TeardownResult instead of being raised.
"""

from __future__ import annotations

import logging
import os
import shutil
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, Tuple

from . import constants, crypto_engine, logging_utils, secret_provider
from .config import VolumeDescriptor
from .errors import TeardownError

logger = logging.getLogger(__name__)


@dataclass
class TeardownResult:
    attempted: List[str] = field(default_factory=list)
    errors: List[Tuple[str, Exception]] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors

    @property
    def failed_steps(self) -> List[str]:
        return [step for step, _ in self.errors]


def unmount(mount_point: Path) -> None:
    try:
        crypto_engine.unmount(mount_point)
        return
    except crypto_engine.CryptoError as exc:
        logger.warning("normal unmount of %s failed: %s; retrying with lazy unmount", mount_point, exc)
    try:
        crypto_engine.unmount(mount_point, lazy=True)
    except crypto_engine.CryptoError as exc:
        raise TeardownError(f"failed to unmount {mount_point}: {exc}") from exc


def close(mapper_name: str) -> bool:
    """Close the mapping. Returns False when there was nothing to close."""
    if not crypto_engine.mapping_active(mapper_name):
        logger.info("mapping %s is not active, nothing to close", mapper_name)
        return False
    try:
        crypto_engine.close_mapper(mapper_name)
    except crypto_engine.CryptoError as exc:
        raise TeardownError(f"failed to close {mapper_name}: {exc}") from exc
    return True


def _remove_mount_dir(mount_point: Path) -> None:
    if os.path.ismount(mount_point):
        raise TeardownError(f"refusing to remove {mount_point}: still mounted")
    try:
        shutil.rmtree(mount_point)
    except FileNotFoundError:
        pass
    except OSError as exc:
        raise TeardownError(f"failed to remove mount directory {mount_point}: {exc}") from exc


def _remove_backing_file(volume_path: Path) -> None:
    try:
        Path(volume_path).unlink()
    except FileNotFoundError:
        pass
    except OSError as exc:
        raise TeardownError(f"failed to remove volume file {volume_path}: {exc}") from exc


def _erase_escrow() -> None:
    if not secret_provider.erase():
        raise TeardownError(f"failed to remove secret from TPM at {constants.DEFAULT_NV_INDEX}")


class TeardownCoordinator:
    def __init__(self, descriptor: VolumeDescriptor):
        self.descriptor = descriptor

    def _run_steps(self, steps: List[Tuple[str, Callable[[], object]]]) -> TeardownResult:
        result = TeardownResult()
        for step, action in steps:
            result.attempted.append(step)
            try:
                action()
            except Exception as exc:
                logger.error("teardown step %s failed: %s", step, exc)
                result.errors.append((step, exc))
        logging_utils.log_structured(
            logger,
            f"teardown of {self.descriptor.mapper_name} finished",
            {
                constants.LOG_KEY_EVENT: constants.EVENT_TEARDOWN,
                constants.LOG_KEY_MAPPER: self.descriptor.mapper_name,
                constants.LOG_KEY_STEP: ",".join(result.attempted),
                constants.LOG_KEY_RESULT: "ok" if result.ok else "partial",
            },
            level=logging.INFO if result.ok else logging.WARNING,
        )
        return result

    def unmount_and_close(self) -> TeardownResult:
        return self._run_steps([
            ("unmount", lambda: unmount(self.descriptor.mount_point)),
            ("close", lambda: close(self.descriptor.mapper_name)),
        ])

    def remove(self) -> TeardownResult:
        steps = [
            ("unmount", lambda: unmount(self.descriptor.mount_point)),
            ("close", lambda: close(self.descriptor.mapper_name)),
            ("remove-mount-dir", lambda: _remove_mount_dir(self.descriptor.mount_point)),
            ("remove-volume-file", lambda: _remove_backing_file(self.descriptor.volume_path)),
        ]
        if self.descriptor.use_tpm:
            steps.append(("erase-escrow", _erase_escrow))
        return self._run_steps(steps)


class ShutdownLatch:
    """Fire a teardown callback at most once, however many signals arrive."""

    def __init__(self, action: Callable[[], object]):
        self._action = action
        self._lock = threading.Lock()
        self._fired = False
        self.done = threading.Event()
        self.result = None

    @property
    def fired(self) -> bool:
        return self._fired

    def fire(self) -> bool:
        with self._lock:
            if self._fired:
                return False
            self._fired = True
        try:
            self.result = self._action()
        finally:
            self.done.set()
        return True
