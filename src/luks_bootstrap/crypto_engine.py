from __future__ import annotations

import os
from pathlib import Path
from typing import List, Optional, Union

import pyudev

from . import constants
from .process import CommandError, run_command

PathLike = Union[str, Path]


class CryptoError(Exception):
    pass


def _run(cmd: List[str], secret: Optional[bytes] = None):
    try:
        return run_command(cmd, secret=secret)
    except CommandError as exc:
        raise CryptoError(str(exc)) from exc


def mapper_path(mapper_name: str) -> str:
    return f"{constants.MAPPER_DIR}/{mapper_name}"


def mapping_active(mapper_name: str) -> bool:
    """Return True when udev knows a device-mapper node with this name."""
    try:
        device = pyudev.Devices.from_device_file(pyudev.Context(), mapper_path(mapper_name))
    except (pyudev.DeviceNotFoundError, OSError, ValueError):
        return False
    return device.properties.get("DM_NAME", mapper_name) == mapper_name


def luks_format(volume_path: PathLike, secret: bytes) -> None:
    # --key-file - reads the whole pipe verbatim, so binary secrets survive intact.
    _run(
        [
            "cryptsetup",
            "luksFormat",
            "--batch-mode",
            "--type",
            constants.LUKS_TYPE,
            "--cipher",
            constants.LUKS_CIPHER,
            "--key-file",
            "-",
            str(volume_path),
        ],
        secret=secret,
    )


def unlock_luks(volume_path: PathLike, mapper_name: str, secret: bytes) -> str:
    cmd = ["cryptsetup", "open", "--type", "luks", "--key-file", "-", str(volume_path), mapper_name]
    _run(cmd, secret=secret)
    return mapper_path(mapper_name)


def close_mapper(mapper_name: str) -> None:
    _run(["cryptsetup", "close", mapper_name])


def create_filesystem(devnode: str, fs_type: str = constants.FILESYSTEM_TYPE) -> None:
    if fs_type != constants.FILESYSTEM_TYPE:
        raise CryptoError(f"Unsupported filesystem: {fs_type}")
    _run(["mkfs.ext4", "-q", "-F", devnode])


def mount_device(devnode: str, mountpoint: PathLike) -> None:
    os.makedirs(mountpoint, mode=0o755, exist_ok=True)
    _run(["mount", devnode, str(mountpoint)])


def change_owner(path: PathLike, user: str, group: str) -> None:
    _run(["chown", f"{user}:{group}", str(path)])


def unmount(mountpoint: PathLike, lazy: bool = False) -> None:
    cmd = ["umount"]
    if lazy:
        cmd.append("-l")
    cmd.append(str(mountpoint))
    _run(cmd)


def filesystem_uuid(devnode: str) -> str:
    # -p probes the device directly instead of trusting the blkid cache.
    out = _run(["blkid", "-p", "-s", "UUID", "-o", "value", devnode]).stdout.decode().strip()
    if not out:
        raise CryptoError(f"no UUID found for device: {devnode}")
    return out


def mountpoints_of(devnode: str) -> List[str]:
    out = _run(["lsblk", "-o", "MOUNTPOINT", "--noheadings", devnode]).stdout.decode()
    return [line.strip() for line in out.splitlines() if line.strip()]
