"""Exception hierarchy for volume provisioning and teardown."""

from __future__ import annotations

from typing import Optional


class LuksBootstrapError(Exception):
    pass


class ConfigurationError(LuksBootstrapError):
    """A required setting is missing or invalid. Raised before any side effect."""


class SizeOutOfRangeError(LuksBootstrapError):
    pass


class InvalidLengthError(LuksBootstrapError):
    pass


class HardwareUnavailableError(LuksBootstrapError):
    pass


class ProvisioningError(LuksBootstrapError):
    """A lifecycle step failed; on-disk artifacts may be left for the operator."""

    def __init__(self, message: str, step: Optional[str] = None):
        super().__init__(f"{step}: {message}" if step else message)
        self.step = step


class EscrowError(ProvisioningError):
    def __init__(self, message: str):
        super().__init__(message, step="escrow")


class RetrievalError(ProvisioningError):
    def __init__(self, message: str):
        super().__init__(message, step="retrieve")


class TeardownError(LuksBootstrapError):
    pass


class MountStateError(LuksBootstrapError):
    pass
