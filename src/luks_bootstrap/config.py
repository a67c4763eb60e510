from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

from . import constants
from .errors import ConfigurationError

DEFAULT_CONFIG_PATH = Path("/etc/luks-bootstrap/config.toml")
BOOTSTRAP_ENV_VAR = "LUKS_BOOTSTRAP_TOKEN"

_REQUIRED_VOLUME_KEYS = ("volume_path", "mapper_name", "mount_point", "size_mb", "secret_length")


@dataclass(frozen=True)
class VolumeDescriptor:
    volume_path: Path
    mapper_name: str
    mount_point: Path
    size_mb: int
    secret_length: int
    use_tpm: bool = False
    user: str = "root"
    group: str = "root"

    def __post_init__(self):
        # Frozen: normalise through object.__setattr__.
        object.__setattr__(self, "volume_path", Path(self.volume_path))
        object.__setattr__(self, "mount_point", Path(self.mount_point))
        object.__setattr__(self, "user", self.user or "root")
        object.__setattr__(self, "group", self.group or "root")

    @property
    def mapper_path(self) -> str:
        return f"{constants.MAPPER_DIR}/{self.mapper_name}"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "VolumeDescriptor":
        missing = [key for key in _REQUIRED_VOLUME_KEYS if not data.get(key)]
        if missing:
            raise ConfigurationError(f"volume.{missing[0]} is required")
        for key in ("size_mb", "secret_length"):
            if not isinstance(data[key], int) or isinstance(data[key], bool):
                raise ConfigurationError(f"volume.{key} must be an integer")
        return cls(
            volume_path=Path(data["volume_path"]),
            mapper_name=str(data["mapper_name"]),
            mount_point=Path(data["mount_point"]),
            size_mb=data["size_mb"],
            secret_length=data["secret_length"],
            use_tpm=bool(data.get("use_tpm", False)),
            user=str(data.get("user") or ""),
            group=str(data.get("group") or ""),
        )


@dataclass(frozen=True)
class BootstrapCredential:
    token_id: str
    version: str

    def validate(self) -> "BootstrapCredential":
        if not self.token_id:
            raise ConfigurationError("bootstrap.token_id is required")
        if not self.version:
            raise ConfigurationError("bootstrap.version is required")
        return self

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BootstrapCredential":
        section = data.get("bootstrap", {})
        if not isinstance(section, dict):
            raise ConfigurationError("bootstrap section must be a table")
        return cls(
            token_id=str(section.get("token_id") or ""),
            version=str(section.get("version") or ""),
        ).validate()

    @classmethod
    def load(cls, path: Optional[Path] = None) -> "BootstrapCredential":
        """Load from the environment variable when set, else from ``path``."""
        inline = os.environ.get(BOOTSTRAP_ENV_VAR)
        if inline:
            try:
                return cls.from_dict(tomllib.loads(inline))
            except tomllib.TOMLDecodeError as exc:
                raise ConfigurationError(f"invalid bootstrap credential in ${BOOTSTRAP_ENV_VAR}: {exc}") from exc
        if not path:
            raise ConfigurationError("a bootstrap credential file is required")
        return cls.from_dict(_read_toml(Path(path)))


@dataclass(frozen=True)
class Config:
    volume: VolumeDescriptor
    max_size_mb: int = constants.MAX_SIZE_MB
    fstab_path: Path = field(default_factory=lambda: Path(constants.DEFAULT_FSTAB_PATH))
    crypttab_path: Path = field(default_factory=lambda: Path(constants.DEFAULT_CRYPTTAB_PATH))
    keyscript_path: str = constants.DEFAULT_KEYSCRIPT_PATH
    remove_on_shutdown: bool = False

    @classmethod
    def load(cls, path: Optional[Path] = None) -> "Config":
        cfg_path = Path(path) if path else DEFAULT_CONFIG_PATH
        parsed = _read_toml(cfg_path)
        volume = parsed.get("volume")
        if not isinstance(volume, dict):
            raise ConfigurationError(f"{cfg_path}: missing [volume] table")
        max_size_mb = parsed.get("max_size_mb", constants.MAX_SIZE_MB)
        if not isinstance(max_size_mb, int) or max_size_mb < constants.MIN_SIZE_MB:
            raise ConfigurationError(f"max_size_mb must be an integer >= {constants.MIN_SIZE_MB}")
        return cls(
            volume=VolumeDescriptor.from_dict(volume),
            max_size_mb=max_size_mb,
            fstab_path=Path(parsed.get("fstab_path", constants.DEFAULT_FSTAB_PATH)),
            crypttab_path=Path(parsed.get("crypttab_path", constants.DEFAULT_CRYPTTAB_PATH)),
            keyscript_path=parsed.get("keyscript_path", constants.DEFAULT_KEYSCRIPT_PATH),
            remove_on_shutdown=bool(parsed.get("remove_on_shutdown", False)),
        )


def _read_toml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        raise ConfigurationError(f"configuration file not found: {path}")
    try:
        with path.open("rb") as f:
            return tomllib.load(f)
    except tomllib.TOMLDecodeError as exc:
        raise ConfigurationError(f"failed to parse {path}: {exc}") from exc
