"""Pytest configuration and shared fixtures."""

from __future__ import annotations

import os
import shutil
import tempfile
from pathlib import Path
from typing import Generator

import pytest

from luks_bootstrap.config import VolumeDescriptor


def pytest_configure(config):
    config.addinivalue_line("markers", "integration: requires root, cryptsetup and a kernel with dm-crypt")


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def mock_config_file(temp_dir: Path) -> Path:
    """Create a test configuration file."""
    config_content = f"""
max_size_mb = 32
fstab_path = "{temp_dir}/fstab"
crypttab_path = "{temp_dir}/crypttab"
keyscript_path = "/usr/local/bin/tpm-luks-keyscript.sh"
remove_on_shutdown = true

[volume]
volume_path = "{temp_dir}/luks/volume.img"
mapper_name = "bootstrap-test"
mount_point = "{temp_dir}/mnt/bootstrap"
size_mb = 10
secret_length = 20
use_tpm = false
user = "nobody"
group = "nogroup"
"""
    config_path = temp_dir / "config.toml"
    config_path.write_text(config_content)
    return config_path


@pytest.fixture
def mock_bootstrap_file(temp_dir: Path) -> Path:
    path = temp_dir / "bootstrap.toml"
    path.write_text('[bootstrap]\ntoken_id = "tok-123"\nversion = "1.0"\n')
    return path


@pytest.fixture
def file_descriptor(temp_dir: Path) -> VolumeDescriptor:
    """Keyfile-mode volume rooted in the temp directory."""
    return VolumeDescriptor(
        volume_path=temp_dir / "luks" / "volume.img",
        mapper_name="bootstrap-test",
        mount_point=temp_dir / "mnt" / "bootstrap",
        size_mb=10,
        secret_length=20,
    )


@pytest.fixture
def tpm_descriptor(temp_dir: Path) -> VolumeDescriptor:
    """TPM-escrowed volume rooted in the temp directory."""
    return VolumeDescriptor(
        volume_path=temp_dir / "luks" / "volume.img",
        mapper_name="bootstrap-tpm",
        mount_point=temp_dir / "mnt" / "tpm",
        size_mb=10,
        secret_length=20,
        use_tpm=True,
    )


def is_root() -> bool:
    """Check if running as root."""
    return os.geteuid() == 0


def has_command(cmd: str) -> bool:
    """Check if a command is available."""
    return shutil.which(cmd) is not None


@pytest.fixture
def require_root():
    """Skip test if not running as root."""
    if not is_root():
        pytest.skip("This test requires root privileges")


@pytest.fixture
def require_cryptsetup():
    """Skip test if cryptsetup is not available."""
    if not has_command("cryptsetup"):
        pytest.skip("This test requires cryptsetup")


@pytest.fixture
def require_mkfs_ext4():
    if not has_command("mkfs.ext4"):
        pytest.skip("This test requires mkfs.ext4")
