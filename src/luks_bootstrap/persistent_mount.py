"""Boot-time /etc/crypttab and /etc/fstab entries for a provisioned volume."""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path
from typing import Optional

from . import constants, crypto_engine, logging_utils
from .config import VolumeDescriptor
from .errors import ConfigurationError, MountStateError, ProvisioningError
from .session import MountRecord, read_mount_record

logger = logging.getLogger(__name__)


def is_mounted(descriptor: VolumeDescriptor) -> bool:
    if not crypto_engine.mapping_active(descriptor.mapper_name):
        return False
    try:
        mountpoints = crypto_engine.mountpoints_of(descriptor.mapper_path)
    except crypto_engine.CryptoError as exc:
        raise MountStateError(f"failed to query mount state of {descriptor.mapper_path}: {exc}") from exc
    return str(descriptor.mount_point) in mountpoints


def crypttab_entry(
    descriptor: VolumeDescriptor,
    keyfile: Optional[Path] = None,
    keyscript: str = constants.DEFAULT_KEYSCRIPT_PATH,
) -> str:
    if descriptor.use_tpm:
        return (
            f"{descriptor.mapper_name} {descriptor.volume_path} none "
            f"luks,keyscript={keyscript} {constants.DEFAULT_NV_INDEX}:{descriptor.secret_length}\n"
        )
    if not keyfile:
        raise ConfigurationError("a keyfile path is required for file-mode volumes")
    return f"{descriptor.mapper_name} {descriptor.volume_path} {keyfile} luks\n"


def fstab_entry(record: MountRecord) -> str:
    return (
        f"UUID={record.uuid} {record.mount_point} {constants.FILESYSTEM_TYPE} "
        f"defaults,nofail,{record.unlock_dependency} 0 2\n"
    )


def append_line(path: Path, line: str) -> None:
    path = Path(path)
    existing = path.read_text(encoding="utf-8") if path.exists() else ""
    with path.open("a", encoding="utf-8") as f:
        if existing and not existing.endswith("\n"):
            f.write("\n")
        f.write(line)


def _replace_contents(path: Path, text: str) -> None:
    mode = path.stat().st_mode & 0o7777
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", dir=str(path.parent))
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(text)
            f.flush()
            os.fsync(f.fileno())
        os.chmod(tmp_name, mode)
        os.replace(tmp_name, path)
    except BaseException:
        try:
            os.unlink(tmp_name)
        except FileNotFoundError:
            pass
        raise


def remove_entries(path: Path, field: int, value: str) -> int:
    """Drop table entries whose whitespace-separated ``field`` equals ``value``.

    Blank lines and comments are kept. The file is replaced atomically and
    keeps its permissions.
    """
    path = Path(path)
    if not path.exists():
        return 0
    kept = []
    removed = 0
    for line in path.read_text(encoding="utf-8").splitlines(keepends=True):
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            kept.append(line)
            continue
        parts = stripped.split()
        if len(parts) > field and parts[field] == value:
            removed += 1
            continue
        kept.append(line)
    if removed:
        _replace_contents(path, "".join(kept))
    return removed


class PersistentMountRegistrar:
    def __init__(
        self,
        fstab_path: Path = Path(constants.DEFAULT_FSTAB_PATH),
        crypttab_path: Path = Path(constants.DEFAULT_CRYPTTAB_PATH),
        keyscript_path: str = constants.DEFAULT_KEYSCRIPT_PATH,
    ):
        self.fstab_path = Path(fstab_path)
        self.crypttab_path = Path(crypttab_path)
        self.keyscript_path = keyscript_path

    def add(self, descriptor: VolumeDescriptor, keyfile: Optional[Path] = None) -> MountRecord:
        if not is_mounted(descriptor):
            raise MountStateError(f"volume {descriptor.mapper_name} is not mounted at {descriptor.mount_point}")

        # Build both lines before touching either file.
        unlock_line = crypttab_entry(descriptor, keyfile, self.keyscript_path)
        record = read_mount_record(descriptor)
        mount_line = fstab_entry(record)

        crypttab_before = (
            self.crypttab_path.read_text(encoding="utf-8") if self.crypttab_path.exists() else None
        )
        try:
            append_line(self.crypttab_path, unlock_line)
        except OSError as exc:
            raise ProvisioningError(str(exc), step="persistent-mount") from exc
        try:
            append_line(self.fstab_path, mount_line)
        except OSError as exc:
            self._restore_crypttab(crypttab_before)
            raise ProvisioningError(str(exc), step="persistent-mount") from exc

        logging_utils.log_structured(
            logger,
            f"added persistent mount for {descriptor.mapper_name}",
            {
                constants.LOG_KEY_EVENT: constants.EVENT_PERSIST,
                constants.LOG_KEY_MAPPER: descriptor.mapper_name,
                constants.LOG_KEY_MOUNTPOINT: record.mount_point,
                constants.LOG_KEY_RESULT: "added",
            },
        )
        return record

    def remove(self, descriptor: VolumeDescriptor) -> None:
        if is_mounted(descriptor):
            raise MountStateError(f"volume {descriptor.mapper_name} is mounted, please unmount first")
        try:
            removed_fstab = remove_entries(
                self.fstab_path, constants.FSTAB_MOUNTPOINT_FIELD, str(descriptor.mount_point)
            )
            removed_crypttab = remove_entries(
                self.crypttab_path, constants.CRYPTTAB_NAME_FIELD, descriptor.mapper_name
            )
        except OSError as exc:
            raise ProvisioningError(str(exc), step="persistent-mount") from exc
        logging_utils.log_structured(
            logger,
            f"removed persistent mount for {descriptor.mapper_name}",
            {
                constants.LOG_KEY_EVENT: constants.EVENT_PERSIST,
                constants.LOG_KEY_MAPPER: descriptor.mapper_name,
                constants.LOG_KEY_RESULT: f"removed fstab={removed_fstab} crypttab={removed_crypttab}",
            },
        )

    def _restore_crypttab(self, previous: Optional[str]) -> None:
        try:
            if previous is None:
                self.crypttab_path.unlink(missing_ok=True)
            else:
                _replace_contents(self.crypttab_path, previous)
        except OSError as exc:
            logger.error("failed to roll back %s: %s", self.crypttab_path, exc)
