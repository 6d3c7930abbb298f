# contractreg/errors.py
"""
Error taxonomy for the contract registry.

Every rejection is a deterministic policy violation raised synchronously to
the caller. Nothing here is retried internally; the caller decides whether
to retry (e.g. after obtaining authorization) or give up.
"""

from typing import Dict, Type


class RegistryError(Exception):
    """Base class for registry rejections."""

    kind = "RegistryError"
    http_status = 500

    def __init__(self, message: str = ""):
        super().__init__(message or self.kind)
        self.message = message or self.kind

    def to_dict(self) -> Dict[str, str]:
        return {"error": self.message, "kind": self.kind}


class Unauthorized(RegistryError):
    """Caller is neither the owner nor an authorized updater."""
    kind = "Unauthorized"
    http_status = 403


class NotFound(RegistryError):
    """Lookup on an absent or removed name."""
    kind = "NotFound"
    http_status = 404


class InvalidInput(RegistryError):
    """Empty or oversized name, malformed or zero address, or no contract code."""
    kind = "InvalidInput"
    http_status = 400


class CapacityExceeded(RegistryError):
    """Registering a new name would exceed the configured maximum."""
    kind = "CapacityExceeded"
    http_status = 409


class EmergencyActive(RegistryError):
    """Normal mutation attempted while emergency mode is on."""
    kind = "EmergencyActive"
    http_status = 423


class NotInEmergency(RegistryError):
    """Emergency-only path called while emergency mode is off."""
    kind = "NotInEmergency"
    http_status = 409


class CheckerUnavailable(RegistryError):
    """The contract existence checker could not answer."""
    kind = "CheckerUnavailable"
    http_status = 503


class ConfigError(ValueError):
    """Invalid registry configuration."""


ERROR_KINDS: Dict[str, Type[RegistryError]] = {
    cls.kind: cls
    for cls in (
        RegistryError,
        Unauthorized,
        NotFound,
        InvalidInput,
        CapacityExceeded,
        EmergencyActive,
        NotInEmergency,
        CheckerUnavailable,
    )
}


def error_from_dict(data: Dict[str, str]) -> RegistryError:
    """Rebuild a registry error from its wire form."""
    cls = ERROR_KINDS.get(data.get("kind", ""), RegistryError)
    return cls(data.get("error", ""))


class StoreError(Exception):
    """Persisted registry state could not be read or written."""
