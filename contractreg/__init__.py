# contractreg - Auditable contract registry
#
# A name -> contract address directory for multi-contract systems. Every
# address change is versioned and recorded; mutation is gated by an owner
# and a set of authorized updaters, with an owner-only emergency path.
#
# Core concepts:
# - Registry: The directory, guarded by a single lock
# - RegistryEntry: One name with its address, version and history
# - ContractExistenceChecker: Confirms an address holds deployed code
# - RegistryStore: Optional JSON persistence of the whole state
# - RegistryServer / RegistryClient: JSON over HTTP

from .errors import (
    RegistryError,
    Unauthorized,
    NotFound,
    InvalidInput,
    CapacityExceeded,
    EmergencyActive,
    NotInEmergency,
    CheckerUnavailable,
    ConfigError,
    StoreError,
)
from .address import ZERO_ADDRESS, normalize_address, validate_name
from .checker import ContractExistenceChecker, StaticCodeChecker, RpcCodeChecker
from .registry import Registry, RegistryEntry, HistoryRecord, RegistryEvent
from .store import RegistryStore
from .identity import Identity
from .config import RegistryConfig, CheckerConfig

__all__ = [
    # Core
    "Registry",
    "RegistryEntry",
    "HistoryRecord",
    "RegistryEvent",
    "RegistryStore",
    "ContractExistenceChecker",
    "StaticCodeChecker",
    "RpcCodeChecker",
    "Identity",
    "RegistryConfig",
    "CheckerConfig",
    "ZERO_ADDRESS",
    "normalize_address",
    "validate_name",
    # Errors
    "RegistryError",
    "Unauthorized",
    "NotFound",
    "InvalidInput",
    "CapacityExceeded",
    "EmergencyActive",
    "NotInEmergency",
    "CheckerUnavailable",
    "ConfigError",
    "StoreError",
]

__version__ = "0.1.0"
