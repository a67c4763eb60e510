"""Thin wrappers around the tpm2-tools command line agent."""

from __future__ import annotations

import binascii
import os
from typing import List, Optional

from . import constants
from .process import CommandError, run_command


class TpmError(Exception):
    pass


def _run(cmd: List[str], secret: Optional[bytes] = None):
    try:
        return run_command(cmd, secret=secret)
    except CommandError as exc:
        raise TpmError(str(exc)) from exc


def tpm_available(device: str = constants.TPM_DEVICE) -> bool:
    return os.path.exists(device)


def get_random(size: int) -> bytes:
    out = _run(["tpm2_getrandom", str(size), "--hex"]).stdout.decode().strip()
    try:
        data = binascii.unhexlify(out)
    except (binascii.Error, ValueError) as exc:
        raise TpmError(f"tpm2_getrandom returned malformed output: {exc}") from exc
    if len(data) != size:
        raise TpmError(f"tpm2_getrandom returned {len(data)} bytes, expected {size}")
    return data


def nv_define(nv_index: str, size: int) -> None:
    _run([
        "tpm2_nvdefine",
        nv_index,
        f"--size={size}",
        f"--attributes={constants.NV_ATTRIBUTES}",
    ])


def nv_write(nv_index: str, data: bytes) -> None:
    _run(["tpm2_nvwrite", nv_index, "--input=-"], secret=data)


def nv_read(nv_index: str, size: int) -> bytes:
    return _run(["tpm2_nvread", nv_index, f"--size={size}"]).stdout


def nv_undefine(nv_index: str) -> None:
    _run(["tpm2_nvundefine", nv_index])
