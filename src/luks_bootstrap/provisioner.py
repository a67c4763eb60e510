"""Create the sparse backing file and turn it into a LUKS container."""

from __future__ import annotations

import logging
import os
from pathlib import Path

from . import constants, crypto_engine, logging_utils, secret_provider
from .config import VolumeDescriptor
from .errors import ProvisioningError, SizeOutOfRangeError
from .secret_provider import SecretHandle

logger = logging.getLogger(__name__)


def validate_size(size_mb: int, max_size_mb: int = constants.MAX_SIZE_MB) -> int:
    if not isinstance(size_mb, int) or isinstance(size_mb, bool):
        raise SizeOutOfRangeError(f"size must be an integer number of MB, got {size_mb!r}")
    if size_mb < constants.MIN_SIZE_MB or size_mb > max_size_mb:
        raise SizeOutOfRangeError(
            f"size must be between {constants.MIN_SIZE_MB}MB and {max_size_mb}MB, got {size_mb}MB"
        )
    return size_mb


def create_sparse_file(path: Path, size_mb: int) -> None:
    path = Path(path)
    try:
        path.parent.mkdir(mode=0o700, parents=True, exist_ok=True)
        fd = os.open(path, os.O_RDWR | os.O_CREAT | os.O_TRUNC, 0o600)
        try:
            os.ftruncate(fd, size_mb * constants.MIB)
        finally:
            os.close(fd)
    except OSError as exc:
        raise ProvisioningError(f"failed to create sparse file {path}: {exc}", step="sparse-file") from exc


def create(
    descriptor: VolumeDescriptor,
    secret: SecretHandle,
    max_size_mb: int = constants.MAX_SIZE_MB,
) -> None:
    """Create and format the container described by ``descriptor``.

    When the descriptor asks for hardware escrow the secret is stored in the
    TPM before formatting, so a failed format still leaves it retrievable.
    """
    validate_size(descriptor.size_mb, max_size_mb)

    create_sparse_file(descriptor.volume_path, descriptor.size_mb)

    if descriptor.use_tpm:
        secret_provider.escrow(secret)

    try:
        crypto_engine.luks_format(descriptor.volume_path, secret.value)
    except crypto_engine.CryptoError as exc:
        raise ProvisioningError(str(exc), step="luks-format") from exc

    logging_utils.log_structured(
        logger,
        f"created LUKS container {descriptor.volume_path}",
        {
            constants.LOG_KEY_EVENT: constants.EVENT_PROVISION,
            constants.LOG_KEY_VOLUME: str(descriptor.volume_path),
            constants.LOG_KEY_RESULT: "ok",
        },
    )
