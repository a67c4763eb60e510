"""Secret generation, TPM escrow and keyfile handling."""

from __future__ import annotations

import logging
import os
import secrets
import tempfile
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from . import constants, logging_utils, tpm
from .errors import (
    EscrowError,
    HardwareUnavailableError,
    InvalidLengthError,
    RetrievalError,
)

logger = logging.getLogger(__name__)


class SecretSource(Enum):
    HARDWARE = constants.SOURCE_HARDWARE
    SOFTWARE = constants.SOURCE_SOFTWARE
    ESCROW = constants.SOURCE_ESCROW
    KEYFILE = constants.SOURCE_KEYFILE


def validate_length(length: int) -> int:
    if not isinstance(length, int) or isinstance(length, bool):
        raise InvalidLengthError(f"secret length must be an integer, got {length!r}")
    if length < constants.MIN_SECRET_LENGTH or length > constants.MAX_SECRET_LENGTH:
        raise InvalidLengthError(
            f"secret length ({length} bytes) must be between "
            f"{constants.MIN_SECRET_LENGTH} and {constants.MAX_SECRET_LENGTH} bytes"
        )
    return length


@dataclass(frozen=True)
class SecretHandle:
    """In-memory secret bytes tagged with where they came from."""

    value: bytes = field(repr=False)
    source: SecretSource

    def __post_init__(self):
        validate_length(len(self.value))

    def __len__(self) -> int:
        return len(self.value)

    def __repr__(self) -> str:
        return f"SecretHandle(length={len(self.value)}, source={self.source.value})"

    __str__ = __repr__


def require_hardware() -> None:
    if not tpm.tpm_available():
        raise HardwareUnavailableError(
            f"TPM 2.0 not available ({constants.TPM_DEVICE} missing), reconfigure to use a keyfile"
        )


def generate(length: int) -> SecretHandle:
    validate_length(length)
    if tpm.tpm_available():
        try:
            handle = SecretHandle(tpm.get_random(length), SecretSource.HARDWARE)
        except tpm.TpmError as exc:
            logger.warning("TPM random source failed, falling back to software generator: %s", exc)
        else:
            _log_generated(handle)
            return handle
    handle = SecretHandle(secrets.token_bytes(length), SecretSource.SOFTWARE)
    _log_generated(handle)
    return handle


def _log_generated(handle: SecretHandle) -> None:
    logging_utils.log_structured(
        logger,
        f"generated {len(handle)}-byte secret",
        {
            constants.LOG_KEY_EVENT: constants.EVENT_GENERATE,
            constants.LOG_KEY_SOURCE: handle.source.value,
        },
    )


def escrow(secret: SecretHandle, nv_index: str = constants.DEFAULT_NV_INDEX) -> None:
    try:
        tpm.nv_undefine(nv_index)
    except tpm.TpmError as exc:
        logger.debug("no existing NV entry removed at %s: %s", nv_index, exc)
    try:
        tpm.nv_define(nv_index, len(secret))
        tpm.nv_write(nv_index, secret.value)
    except tpm.TpmError as exc:
        raise EscrowError(f"failed to store secret in TPM at {nv_index}: {exc}") from exc
    logging_utils.log_structured(
        logger,
        f"escrowed secret at NV index {nv_index}",
        {constants.LOG_KEY_EVENT: constants.EVENT_ESCROW, constants.LOG_KEY_RESULT: "ok"},
    )


def retrieve(length: int, nv_index: str = constants.DEFAULT_NV_INDEX) -> SecretHandle:
    validate_length(length)
    try:
        data = tpm.nv_read(nv_index, length)
    except tpm.TpmError as exc:
        raise RetrievalError(f"failed to read secret from TPM at {nv_index}: {exc}") from exc
    if len(data) != length:
        raise RetrievalError(f"TPM returned {len(data)} bytes from {nv_index}, expected {length}")
    return SecretHandle(data, SecretSource.ESCROW)


def erase(nv_index: str = constants.DEFAULT_NV_INDEX) -> bool:
    try:
        tpm.nv_undefine(nv_index)
    except tpm.TpmError as exc:
        logger.warning("failed to remove secret from TPM at %s: %s", nv_index, exc)
        return False
    logger.info("removed secret from TPM at %s", nv_index)
    return True


def write_keyfile(path: Path, secret: SecretHandle) -> Path:
    path = Path(path)
    path.parent.mkdir(mode=0o700, parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", dir=str(path.parent))
    try:
        os.fchmod(fd, 0o600)
        with os.fdopen(fd, "wb") as stream:
            stream.write(secret.value)
            stream.flush()
            os.fsync(stream.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        try:
            os.unlink(tmp_name)
        except FileNotFoundError:
            pass
        raise
    logger.info("wrote keyfile %s", path)
    return path


def read_keyfile(path: Path) -> SecretHandle:
    data = Path(path).read_bytes()
    return SecretHandle(data, SecretSource.KEYFILE)
