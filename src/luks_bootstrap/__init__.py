"""luks_bootstrap package exports for test/import convenience."""

from . import (
    config,
    constants,
    crypto_engine,
    daemon,
    errors,
    logging_utils,
    persistent_mount,
    process,
    provisioner,
    secret_provider,
    session,
    teardown,
    tpm,
)

__all__ = [
    "config",
    "constants",
    "crypto_engine",
    "daemon",
    "errors",
    "logging_utils",
    "persistent_mount",
    "process",
    "provisioner",
    "secret_provider",
    "session",
    "teardown",
    "tpm",
]

__version__ = "1.0.0"
