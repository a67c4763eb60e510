from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from . import constants, crypto_engine, logging_utils, secret_provider
from .config import VolumeDescriptor
from .errors import ConfigurationError, ProvisioningError
from .secret_provider import SecretHandle

logger = logging.getLogger(__name__)


class SessionState(Enum):
    CLOSED = "closed"
    OPENED = "opened"
    MOUNTED = "mounted"


@dataclass(frozen=True)
class MountRecord:
    uuid: str
    mount_point: str
    mapper_name: str

    @property
    def unlock_dependency(self) -> str:
        return f"x-systemd.requires=cryptsetup@{self.mapper_name}.service"


def read_mount_record(descriptor: VolumeDescriptor) -> MountRecord:
    """Build a MountRecord from the UUID of the live mapped filesystem."""
    try:
        uuid = crypto_engine.filesystem_uuid(descriptor.mapper_path)
    except crypto_engine.CryptoError as exc:
        raise ProvisioningError(str(exc), step="uuid") from exc
    logger.debug("filesystem UUID for %s: %s", descriptor.mapper_path, uuid)
    return MountRecord(uuid=uuid, mount_point=str(descriptor.mount_point), mapper_name=descriptor.mapper_name)


class VolumeSession:
    """Open, format and mount one container. Cleanup belongs to teardown."""

    def __init__(self, descriptor: VolumeDescriptor):
        self.descriptor = descriptor
        self.state = SessionState.CLOSED

    def _log(self, message: str, event: str) -> None:
        logging_utils.log_structured(
            logger,
            message,
            {
                constants.LOG_KEY_EVENT: event,
                constants.LOG_KEY_MAPPER: self.descriptor.mapper_name,
                constants.LOG_KEY_MOUNTPOINT: str(self.descriptor.mount_point),
                constants.LOG_KEY_STATE: self.state.value,
            },
        )

    def _require(self, state: SessionState, action: str) -> None:
        if self.state is not state:
            raise ProvisioningError(
                f"cannot {action} while session is {self.state.value} (needs {state.value})",
                step=action,
            )

    def open(self, secret: Optional[SecretHandle] = None) -> SecretHandle:
        self._require(SessionState.CLOSED, "open")
        name = self.descriptor.mapper_name

        if crypto_engine.mapping_active(name):
            logger.info("mapping %s already exists, closing it first", name)
            try:
                crypto_engine.close_mapper(name)
            except crypto_engine.CryptoError as exc:
                raise ProvisioningError(f"failed to close existing mapping: {exc}", step="open") from exc

        if self.descriptor.use_tpm:
            secret = secret_provider.retrieve(self.descriptor.secret_length)
        elif secret is None:
            raise ProvisioningError("a keyfile secret is required to open a file-mode volume", step="open")

        try:
            crypto_engine.unlock_luks(self.descriptor.volume_path, name, secret.value)
        except crypto_engine.CryptoError as exc:
            raise ProvisioningError(str(exc), step="open") from exc

        self.state = SessionState.OPENED
        self._log(f"opened {self.descriptor.volume_path} as {name}", constants.EVENT_OPEN)
        return secret

    def format(self) -> None:
        self._require(SessionState.OPENED, "format")
        try:
            crypto_engine.create_filesystem(self.descriptor.mapper_path)
        except crypto_engine.CryptoError as exc:
            raise ProvisioningError(str(exc), step="format") from exc
        logger.info("formatted %s as %s", self.descriptor.mapper_path, constants.FILESYSTEM_TYPE)

    def mount(self) -> MountRecord:
        self._require(SessionState.OPENED, "mount")
        descriptor = self.descriptor
        if not descriptor.user or not descriptor.group:
            raise ConfigurationError("user and group must be specified")

        try:
            crypto_engine.mount_device(descriptor.mapper_path, descriptor.mount_point)
        except (crypto_engine.CryptoError, OSError) as exc:
            raise ProvisioningError(str(exc), step="mount") from exc

        try:
            crypto_engine.change_owner(descriptor.mount_point, descriptor.user, descriptor.group)
        except crypto_engine.CryptoError as exc:
            raise ProvisioningError(str(exc), step="chown") from exc

        self.state = SessionState.MOUNTED
        record = read_mount_record(descriptor)
        self._log(f"mounted {descriptor.mapper_path} at {descriptor.mount_point}", constants.EVENT_MOUNT)
        return record
