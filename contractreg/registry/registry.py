# contractreg/registry/registry.py
"""
Contract registry.

Maps logical service names to deployed contract addresses, with:
- A version counter per name, bumped on every address change
- An append-only history per name (kept after removal)
- An owner plus a set of authorized updaters gating all mutation
- An owner-only emergency mode that blocks normal updates and enables
  a break-glass update path
"""

import logging
import threading
import time
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

from ..address import normalize_address, validate_name
from ..checker import ContractExistenceChecker
from ..errors import (
    CapacityExceeded,
    EmergencyActive,
    InvalidInput,
    NotFound,
    NotInEmergency,
    Unauthorized,
)
from ..store import RegistryStore

logger = logging.getLogger(__name__)

DEFAULT_MAX_CONTRACTS = 100

REASON_INITIAL = "Initial registration"
REASON_UPDATED = "Contract updated"
REASON_REREGISTERED = "Re-registered"
REASON_EMERGENCY = "Emergency update"


@dataclass(frozen=True)
class HistoryRecord:
    """One address change of a registry entry."""
    address: str
    version: int
    timestamp: float
    reason: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "address": self.address,
            "version": self.version,
            "timestamp": self.timestamp,
            "reason": self.reason,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "HistoryRecord":
        return cls(
            address=data["address"],
            version=data["version"],
            timestamp=data["timestamp"],
            reason=data.get("reason", ""),
        )


@dataclass
class RegistryEntry:
    """
    A named record in the registry.

    Attributes:
        name: Unique name (at most 32 bytes of UTF-8)
        address: Current live address, None once removed
        version: Number of address changes so far
        history: Every address change, oldest first
        created_at: Time of first registration
        updated_at: Time of the latest address change
        removed_at: Time of removal, None while live
    """
    name: str
    address: Optional[str] = None
    version: int = 0
    history: List[HistoryRecord] = field(default_factory=list)
    created_at: float = 0.0
    updated_at: float = 0.0
    removed_at: Optional[float] = None

    @property
    def is_live(self) -> bool:
        return self.address is not None

    def copy(self) -> "RegistryEntry":
        # HistoryRecord is frozen, a shallow list copy is enough
        return replace(self, history=list(self.history))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "address": self.address,
            "version": self.version,
            "history": [record.to_dict() for record in self.history],
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "removed_at": self.removed_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RegistryEntry":
        return cls(
            name=data["name"],
            address=data.get("address"),
            version=data.get("version", 0),
            history=[HistoryRecord.from_dict(r) for r in data.get("history", [])],
            created_at=data.get("created_at", 0.0),
            updated_at=data.get("updated_at", 0.0),
            removed_at=data.get("removed_at"),
        )


@dataclass(frozen=True)
class RegistryEvent:
    """Notification of a committed registry mutation."""
    event_type: str
    timestamp: float
    data: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"event_type": self.event_type, "timestamp": self.timestamp, **self.data}


class Registry:
    """
    Name -> contract address directory.

    All state is guarded by one lock. Every mutating call either commits in
    full (memory and, when a store is attached, disk) or raises and leaves
    the registry untouched.

    Usage:
        checker = StaticCodeChecker(["0xaaaa..."])
        registry = Registry(owner="0x1111...", checker=checker)
        registry.set_contract("0x1111...", "UserService", "0xaaaa...")
        registry.get_contract("UserService")
    """

    def __init__(
        self,
        owner: str,
        checker: ContractExistenceChecker,
        max_contracts: int = DEFAULT_MAX_CONTRACTS,
        store: Optional[RegistryStore] = None,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize the registry.

        Args:
            owner: Owner address, used only when the store holds no state yet
            checker: Confirms an address holds deployed code
            max_contracts: Maximum number of live names
            store: Optional persistence; existing state is loaded from it
            clock: Timestamp source for history records
        """
        if max_contracts < 1:
            raise InvalidInput("max_contracts must be at least 1")
        self.checker = checker
        self.max_contracts = max_contracts
        self.store = store
        self._clock = clock
        self._lock = threading.RLock()
        self._subscribers: List[Callable[[RegistryEvent], None]] = []

        self._owner = normalize_address(owner)
        self._authorized: Set[str] = set()
        self._emergency = False
        self._entries: Dict[str, RegistryEntry] = {}
        self._names: List[str] = []
        self._name_index: Dict[str, int] = {}

        if store is not None:
            state = store.load()
            if state is not None:
                self._load_state(state)
                if self._owner != normalize_address(owner):
                    logger.warning(
                        f"Stored owner {self._owner} differs from configured owner; using stored owner"
                    )
                logger.info(f"Loaded registry state from {store.path}: {len(self._names)} live contracts")

    # -- state (de)serialization --

    def _state_dict(self) -> Dict[str, Any]:
        return {
            "owner": self._owner,
            "authorized": sorted(self._authorized),
            "emergency_mode": self._emergency,
            "names": list(self._names),
            "entries": {name: entry.to_dict() for name, entry in self._entries.items()},
        }

    def _load_state(self, state: Dict[str, Any]):
        self._owner = state["owner"]
        self._authorized = set(state.get("authorized", []))
        self._emergency = bool(state.get("emergency_mode", False))
        self._entries = {
            name: RegistryEntry.from_dict(data)
            for name, data in state.get("entries", {}).items()
        }
        self._names = list(state.get("names", []))
        self._name_index = {name: i for i, name in enumerate(self._names)}

    def _snapshot(self) -> Optional[Dict[str, Any]]:
        return self._state_dict() if self.store is not None else None

    def _commit(self, snapshot: Optional[Dict[str, Any]]):
        """Persist the current state, rolling memory back if the write fails."""
        if self.store is None:
            return
        try:
            self.store.save(self._state_dict())
        except Exception:
            logger.exception("Failed to persist registry state, rolling back")
            self._load_state(snapshot)
            raise

    # -- events --

    def subscribe(self, callback: Callable[[RegistryEvent], None]) -> None:
        """Register a callback invoked after every committed mutation."""
        with self._lock:
            self._subscribers.append(callback)

    def unsubscribe(self, callback: Callable[[RegistryEvent], None]) -> None:
        with self._lock:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

    def _event(self, event_type: str, **data) -> RegistryEvent:
        return RegistryEvent(event_type=event_type, timestamp=self._clock(), data=data)

    def _emit(self, event: RegistryEvent):
        with self._lock:
            subscribers = list(self._subscribers)
        for callback in subscribers:
            try:
                callback(event)
            except Exception:
                logger.exception(f"Subscriber failed handling {event.event_type}")

    # -- checks --

    @staticmethod
    def _caller(caller: str) -> Optional[str]:
        try:
            return normalize_address(caller)
        except InvalidInput:
            return None

    def _require_owner(self, caller: str) -> str:
        caller = self._caller(caller)
        if caller is None or caller != self._owner:
            logger.debug(f"Rejected owner-only call from {caller}")
            raise Unauthorized("Caller is not the owner")
        return caller

    def _require_authorized(self, caller: str) -> str:
        caller = self._caller(caller)
        if caller is None or not self._is_authorized(caller):
            logger.debug(f"Rejected update from unauthorized caller {caller}")
            raise Unauthorized("Caller is not authorized to update the registry")
        return caller

    def _is_authorized(self, address: str) -> bool:
        return address == self._owner or address in self._authorized

    def _require_code(self, address: str):
        if not self.checker.has_code(address):
            raise InvalidInput(f"No contract code at {address}")

    # -- enumerable name list --

    def _add_name(self, name: str):
        self._name_index[name] = len(self._names)
        self._names.append(name)

    def _remove_name(self, name: str):
        # Swap with last and pop; order of names is not preserved
        index = self._name_index.pop(name)
        last = self._names.pop()
        if last != name:
            self._names[index] = last
            self._name_index[last] = index

    def _apply_update(self, name: str, address: str, emergency: bool) -> Tuple[int, RegistryEvent]:
        now = self._clock()
        entry = self._entries.get(name)
        if entry is None:
            entry = RegistryEntry(name=name, created_at=now)
            self._entries[name] = entry
            reason, event_type = REASON_INITIAL, "ContractRegistered"
        elif not entry.is_live:
            reason, event_type = REASON_REREGISTERED, "ContractRegistered"
        else:
            reason, event_type = REASON_UPDATED, "ContractUpdated"
        if emergency:
            reason, event_type = REASON_EMERGENCY, "EmergencyUpdate"

        previous = entry.address
        if not entry.is_live:
            self._add_name(name)
        entry.version += 1
        entry.address = address
        entry.updated_at = now
        entry.removed_at = None
        entry.history.append(HistoryRecord(address, entry.version, now, reason))

        event = self._event(
            event_type,
            name=name,
            address=address,
            previous_address=previous,
            version=entry.version,
        )
        return entry.version, event

    # -- mutation --

    def _check_set(self, caller: str, name: str, address: str) -> Tuple[str, str, str]:
        caller = self._require_authorized(caller)
        if self._emergency:
            raise EmergencyActive("Registry is in emergency mode")
        return caller, validate_name(name), normalize_address(address)

    def _check_emergency(self, caller: str, name: str, address: str) -> Tuple[str, str, str]:
        caller = self._require_owner(caller)
        if not self._emergency:
            raise NotInEmergency("Registry is not in emergency mode")
        return caller, validate_name(name), normalize_address(address)

    def set_contract(self, caller: str, name: str, address: str) -> int:
        """
        Register or update the address for a name.

        The existence checker may hit the network, so it runs outside the
        lock; the policy checks are repeated under the lock before commit.

        Args:
            caller: Address making the call
            name: Registry name (non-empty, at most 32 bytes)
            address: Contract address; must hold deployed code

        Returns:
            The new version number

        Raises:
            Unauthorized: caller is neither owner nor authorized updater
            EmergencyActive: emergency mode is on
            InvalidInput: bad name, bad address, or no code at address
            CapacityExceeded: a new name would exceed max_contracts
        """
        with self._lock:
            self._check_set(caller, name, address)
        self._require_code(normalize_address(address))

        with self._lock:
            caller, name, address = self._check_set(caller, name, address)
            entry = self._entries.get(name)
            if (entry is None or not entry.is_live) and len(self._names) >= self.max_contracts:
                raise CapacityExceeded(f"Registry is full ({self.max_contracts} contracts)")

            snapshot = self._snapshot()
            version, event = self._apply_update(name, address, emergency=False)
            self._commit(snapshot)

        logger.info(f"{caller} set {name} -> {address} (v{version})")
        self._emit(event)
        return version

    def remove_contract(self, caller: str, name: str) -> None:
        """
        Remove a name from live lookup. Its history is kept.

        Raises:
            Unauthorized: caller is neither owner nor authorized updater
            EmergencyActive: emergency mode is on
            NotFound: no live entry for name
        """
        with self._lock:
            caller = self._require_authorized(caller)
            if self._emergency:
                raise EmergencyActive("Registry is in emergency mode")
            entry = self._entries.get(name)
            if entry is None or not entry.is_live:
                raise NotFound(f"Contract not registered: {name}")

            snapshot = self._snapshot()
            previous = entry.address
            entry.address = None
            entry.removed_at = self._clock()
            self._remove_name(name)
            self._commit(snapshot)
            event = self._event(
                "ContractRemoved", name=name, previous_address=previous, version=entry.version
            )

        logger.info(f"{caller} removed {name} (was {previous})")
        self._emit(event)

    def emergency_update_contract(self, caller: str, name: str, address: str) -> int:
        """
        Owner-only update while emergency mode is on.

        Bypasses the authorized set and the capacity limit but still
        validates input, bumps the version and records history.

        Raises:
            Unauthorized: caller is not the owner
            NotInEmergency: emergency mode is off
            InvalidInput: bad name, bad address, or no code at address
        """
        with self._lock:
            self._check_emergency(caller, name, address)
        self._require_code(normalize_address(address))

        with self._lock:
            caller, name, address = self._check_emergency(caller, name, address)
            snapshot = self._snapshot()
            version, event = self._apply_update(name, address, emergency=True)
            self._commit(snapshot)

        logger.warning(f"Emergency update by {caller}: {name} -> {address} (v{version})")
        self._emit(event)
        return version

    def set_authorized_updater(self, caller: str, address: str, authorized: bool) -> None:
        """Owner-only: grant or revoke update rights for an address."""
        with self._lock:
            self._require_owner(caller)
            address = normalize_address(address)
            snapshot = self._snapshot()
            if authorized:
                self._authorized.add(address)
            else:
                self._authorized.discard(address)
            self._commit(snapshot)
            event = self._event("UpdaterAuthorized", address=address, authorized=bool(authorized))

        logger.info(f"Updater {address} authorized={bool(authorized)}")
        self._emit(event)

    def set_emergency_mode(self, caller: str, active: bool) -> None:
        """Owner-only: switch emergency mode on or off."""
        with self._lock:
            self._require_owner(caller)
            snapshot = self._snapshot()
            self._emergency = bool(active)
            self._commit(snapshot)
            event = self._event("EmergencyModeChanged", active=self._emergency)

        logger.warning(f"Emergency mode {'enabled' if active else 'disabled'}")
        self._emit(event)

    def transfer_ownership(self, caller: str, new_owner: str) -> None:
        """Owner-only: hand the registry to a new owner."""
        with self._lock:
            previous = self._require_owner(caller)
            new_owner = normalize_address(new_owner)
            snapshot = self._snapshot()
            self._owner = new_owner
            self._commit(snapshot)
            event = self._event("OwnershipTransferred", previous_owner=previous, new_owner=new_owner)

        logger.info(f"Ownership transferred from {previous} to {new_owner}")
        self._emit(event)

    # -- reads --

    @property
    def owner(self) -> str:
        with self._lock:
            return self._owner

    @property
    def emergency_mode(self) -> bool:
        with self._lock:
            return self._emergency

    def get_contract(self, name: str) -> str:
        """
        Resolve a name to its live address.

        Raises:
            NotFound: no live entry for name
        """
        with self._lock:
            entry = self._entries.get(name)
            if entry is None or not entry.is_live:
                raise NotFound(f"Contract not registered: {name}")
            return entry.address

    def is_registered(self, name: str) -> bool:
        with self._lock:
            entry = self._entries.get(name)
            return entry is not None and entry.is_live

    def get_entry(self, name: str) -> Optional[RegistryEntry]:
        """Get a copy of an entry, including removed ones."""
        with self._lock:
            entry = self._entries.get(name)
            return entry.copy() if entry else None

    def get_contract_history(
        self, name: str, offset: int = 0, limit: Optional[int] = None
    ) -> List[HistoryRecord]:
        """
        Page through the history of a name, oldest first.

        Never raises for out-of-range input: unknown names and offsets past
        the end give an empty list, and limit is clamped to what remains.
        """
        with self._lock:
            entry = self._entries.get(name)
            if entry is None:
                return []
            history = entry.history
            offset = max(0, offset)
            if offset >= len(history):
                return []
            end = len(history) if limit is None else min(len(history), offset + max(0, limit))
            return history[offset:end]

    def is_authorized(self, address: str) -> bool:
        address = self._caller(address)
        with self._lock:
            return address is not None and self._is_authorized(address)

    def authorized_updaters(self) -> List[str]:
        """Explicitly authorized addresses (the owner is implicit)."""
        with self._lock:
            return sorted(self._authorized)

    def list_contracts(self) -> List[str]:
        """Live names. No ordering guarantee."""
        with self._lock:
            return list(self._names)

    def get_contract_count(self) -> int:
        with self._lock:
            return len(self._names)

    def get_all_contracts(self) -> Dict[str, str]:
        with self._lock:
            return {name: self._entries[name].address for name in self._names}

    def __contains__(self, name: str) -> bool:
        return self.is_registered(name)

    def __len__(self) -> int:
        return self.get_contract_count()
