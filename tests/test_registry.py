# tests/test_registry.py
"""Tests for the contract registry."""

import threading

import pytest

from contractreg import (
    CapacityExceeded,
    EmergencyActive,
    InvalidInput,
    NotFound,
    NotInEmergency,
    Registry,
    StaticCodeChecker,
    Unauthorized,
)

OWNER = "0x" + "11" * 20
UPDATER = "0x" + "22" * 20
STRANGER = "0x" + "33" * 20
ADDR_A = "0x" + "aa" * 20
ADDR_B = "0x" + "bb" * 20
ADDR_C = "0x" + "cc" * 20
NO_CODE = "0x" + "dd" * 20


class FakeClock:
    """Deterministic timestamps: 1000.0, 1001.0, ..."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        value = self.now
        self.now += 1.0
        return value


@pytest.fixture
def checker():
    return StaticCodeChecker([ADDR_A, ADDR_B, ADDR_C])


@pytest.fixture
def registry(checker):
    return Registry(owner=OWNER, checker=checker, clock=FakeClock())


@pytest.fixture
def events(registry):
    received = []
    registry.subscribe(received.append)
    return received


class BlockingChecker:
    """Checker that holds every lookup until released, like a slow node."""

    def __init__(self, deployed):
        self.deployed = set(deployed)
        self.entered = threading.Event()
        self.release = threading.Event()

    def has_code(self, address: str) -> bool:
        self.entered.set()
        self.release.wait(10)
        return address in self.deployed


def _run(target, *args):
    """Run target in a thread, collecting its result or exception."""
    outcome = {}

    def call():
        try:
            outcome["result"] = target(*args)
        except Exception as e:
            outcome["error"] = e

    thread = threading.Thread(target=call, daemon=True)
    thread.start()
    return thread, outcome


def _state(registry: Registry):
    """Everything observable about a registry."""
    return (
        registry.owner,
        registry.emergency_mode,
        registry.authorized_updaters(),
        sorted(registry.list_contracts()),
        registry.get_all_contracts(),
        {name: registry.get_contract_history(name) for name in ("UserService", "Other")},
    )


class TestSetContract:
    """Test registration and updates."""

    def test_register_then_get(self, registry):
        """A registered address resolves immediately."""
        version = registry.set_contract(OWNER, "UserService", ADDR_A)

        assert version == 1
        assert registry.get_contract("UserService") == ADDR_A
        assert registry.is_registered("UserService")

    def test_address_is_normalized(self, registry):
        """Mixed-case input resolves to the lowercase form."""
        registry.set_contract(OWNER, "UserService", ADDR_A.upper().replace("0X", "0x"))
        assert registry.get_contract("UserService") == ADDR_A

    def test_version_increments_by_one(self, registry):
        """Every update bumps the version and the history by exactly one."""
        for expected, address in enumerate([ADDR_A, ADDR_B, ADDR_C, ADDR_A], start=1):
            assert registry.set_contract(OWNER, "UserService", address) == expected
            entry = registry.get_entry("UserService")
            assert entry.version == expected
            assert len(entry.history) == expected

    def test_history_reasons(self, registry):
        """History records carry the reason for each change."""
        registry.set_contract(OWNER, "UserService", ADDR_A)
        registry.set_contract(OWNER, "UserService", ADDR_B)

        history = registry.get_contract_history("UserService")
        assert [r.reason for r in history] == ["Initial registration", "Contract updated"]
        assert [r.address for r in history] == [ADDR_A, ADDR_B]
        assert [r.version for r in history] == [1, 2]
        assert history[0].timestamp < history[1].timestamp

    def test_authorized_updater_can_set(self, registry):
        """Explicitly authorized addresses may register."""
        registry.set_authorized_updater(OWNER, UPDATER, True)
        assert registry.set_contract(UPDATER, "UserService", ADDR_A) == 1

    def test_unauthorized_rejected(self, registry):
        """Strangers cannot register."""
        with pytest.raises(Unauthorized):
            registry.set_contract(STRANGER, "UserService", ADDR_A)
        assert not registry.is_registered("UserService")

    def test_malformed_caller_rejected(self, registry):
        """A garbage caller is unauthorized, not invalid input."""
        with pytest.raises(Unauthorized):
            registry.set_contract("not-an-address", "UserService", ADDR_A)

    def test_revoked_updater_rejected(self, registry):
        """Revoking authorization takes effect immediately."""
        registry.set_authorized_updater(OWNER, UPDATER, True)
        registry.set_authorized_updater(OWNER, UPDATER, False)
        with pytest.raises(Unauthorized):
            registry.set_contract(UPDATER, "UserService", ADDR_A)

    @pytest.mark.parametrize("name", ["", "x" * 33, "é" * 17, "\ud800", "User\udcffService"])
    def test_invalid_names(self, registry, name):
        """Empty, oversized and unencodable names are rejected."""
        with pytest.raises(InvalidInput):
            registry.set_contract(OWNER, name, ADDR_A)

    def test_name_of_exactly_32_bytes(self, registry):
        """32 bytes is the limit, inclusive."""
        assert registry.set_contract(OWNER, "x" * 32, ADDR_A) == 1

    @pytest.mark.parametrize("address", [
        "", "0x1234", "aa" * 20, "0x" + "zz" * 20, "0x" + "00" * 20,
        ADDR_A + "\n", " " + ADDR_A,
    ])
    def test_invalid_addresses(self, registry, address):
        """Malformed and zero addresses are rejected."""
        with pytest.raises(InvalidInput):
            registry.set_contract(OWNER, "UserService", address)

    def test_address_without_code_rejected(self, registry):
        """Only addresses with deployed code are accepted."""
        with pytest.raises(InvalidInput, match="No contract code"):
            registry.set_contract(OWNER, "UserService", NO_CODE)

    def test_capacity_exceeded(self, checker):
        """A new name past max_contracts is rejected."""
        registry = Registry(owner=OWNER, checker=checker, max_contracts=2)
        registry.set_contract(OWNER, "One", ADDR_A)
        registry.set_contract(OWNER, "Two", ADDR_B)

        with pytest.raises(CapacityExceeded):
            registry.set_contract(OWNER, "Three", ADDR_C)
        assert registry.get_contract_count() == 2

    def test_update_at_capacity_allowed(self, checker):
        """Updating an existing name does not count against capacity."""
        registry = Registry(owner=OWNER, checker=checker, max_contracts=1)
        registry.set_contract(OWNER, "One", ADDR_A)
        assert registry.set_contract(OWNER, "One", ADDR_B) == 2

    def test_removal_frees_capacity(self, checker):
        """Removed names no longer count toward the limit."""
        registry = Registry(owner=OWNER, checker=checker, max_contracts=1)
        registry.set_contract(OWNER, "One", ADDR_A)
        registry.remove_contract(OWNER, "One")
        assert registry.set_contract(OWNER, "Two", ADDR_B) == 1

    def test_invalid_max_contracts(self, checker):
        with pytest.raises(InvalidInput):
            Registry(owner=OWNER, checker=checker, max_contracts=0)


class TestLookup:
    """Test read operations."""

    def test_get_missing(self, registry):
        with pytest.raises(NotFound):
            registry.get_contract("Missing")

    def test_is_registered_idempotent(self, registry):
        """Repeated reads without mutation agree."""
        assert registry.is_registered("UserService") == registry.is_registered("UserService")
        registry.set_contract(OWNER, "UserService", ADDR_A)
        assert registry.is_registered("UserService") == registry.is_registered("UserService")

    def test_enumeration(self, registry):
        registry.set_contract(OWNER, "One", ADDR_A)
        registry.set_contract(OWNER, "Two", ADDR_B)

        assert sorted(registry.list_contracts()) == ["One", "Two"]
        assert registry.get_contract_count() == 2
        assert len(registry) == 2
        assert "One" in registry
        assert registry.get_all_contracts() == {"One": ADDR_A, "Two": ADDR_B}

    def test_get_entry_is_a_copy(self, registry):
        """Mutating a returned entry does not touch the registry."""
        registry.set_contract(OWNER, "UserService", ADDR_A)
        entry = registry.get_entry("UserService")
        entry.history.clear()
        entry.address = ADDR_B

        assert registry.get_contract("UserService") == ADDR_A
        assert len(registry.get_contract_history("UserService")) == 1

    def test_get_entry_missing(self, registry):
        assert registry.get_entry("Missing") is None


class TestHistoryPagination:
    """Test get_contract_history clamping."""

    @pytest.fixture
    def populated(self, registry):
        for address in [ADDR_A, ADDR_B, ADDR_C, ADDR_A, ADDR_B]:
            registry.set_contract(OWNER, "UserService", address)
        return registry

    def test_full_history(self, populated):
        assert [r.version for r in populated.get_contract_history("UserService")] == [1, 2, 3, 4, 5]

    def test_page(self, populated):
        page = populated.get_contract_history("UserService", offset=1, limit=2)
        assert [r.version for r in page] == [2, 3]

    def test_limit_clamped(self, populated):
        page = populated.get_contract_history("UserService", offset=3, limit=100)
        assert [r.version for r in page] == [4, 5]

    def test_offset_past_end(self, populated):
        assert populated.get_contract_history("UserService", offset=5, limit=10) == []
        assert populated.get_contract_history("UserService", offset=50) == []

    def test_negative_inputs(self, populated):
        assert [r.version for r in populated.get_contract_history("UserService", offset=-3, limit=1)] == [1]
        assert populated.get_contract_history("UserService", offset=0, limit=-1) == []
        assert populated.get_contract_history("UserService", offset=0, limit=0) == []

    def test_unknown_name(self, registry):
        assert registry.get_contract_history("Missing", 0, 10) == []


class TestRemoveContract:
    """Test removal."""

    def test_remove_then_get_fails(self, registry):
        registry.set_contract(OWNER, "UserService", ADDR_A)
        registry.remove_contract(OWNER, "UserService")

        with pytest.raises(NotFound):
            registry.get_contract("UserService")
        assert not registry.is_registered("UserService")
        assert registry.get_contract_count() == 0

    def test_remove_keeps_history(self, registry):
        registry.set_contract(OWNER, "UserService", ADDR_A)
        registry.set_contract(OWNER, "UserService", ADDR_B)
        registry.remove_contract(OWNER, "UserService")

        entry = registry.get_entry("UserService")
        assert entry.address is None
        assert entry.removed_at is not None
        assert entry.version == 2
        assert len(registry.get_contract_history("UserService")) == 2

    def test_remove_missing(self, registry):
        with pytest.raises(NotFound):
            registry.remove_contract(OWNER, "Missing")

    def test_remove_twice(self, registry):
        registry.set_contract(OWNER, "UserService", ADDR_A)
        registry.remove_contract(OWNER, "UserService")
        with pytest.raises(NotFound):
            registry.remove_contract(OWNER, "UserService")

    def test_remove_unauthorized(self, registry):
        registry.set_contract(OWNER, "UserService", ADDR_A)
        with pytest.raises(Unauthorized):
            registry.remove_contract(STRANGER, "UserService")
        assert registry.is_registered("UserService")

    def test_swap_and_pop_keeps_other_names(self, registry):
        """Removing from the middle leaves the remaining names resolvable."""
        for name, address in [("One", ADDR_A), ("Two", ADDR_B), ("Three", ADDR_C)]:
            registry.set_contract(OWNER, name, address)

        registry.remove_contract(OWNER, "One")

        assert sorted(registry.list_contracts()) == ["Three", "Two"]
        assert registry.get_contract("Two") == ADDR_B
        assert registry.get_contract("Three") == ADDR_C

        registry.remove_contract(OWNER, "Three")
        registry.remove_contract(OWNER, "Two")
        assert registry.list_contracts() == []

    def test_re_register_after_remove(self, registry):
        registry.set_contract(OWNER, "UserService", ADDR_A)
        registry.remove_contract(OWNER, "UserService")
        assert registry.set_contract(OWNER, "UserService", ADDR_B) == 2
        assert registry.get_contract_history("UserService")[-1].reason == "Re-registered"
        assert registry.list_contracts() == ["UserService"]


class TestScenarios:
    """End-to-end scenarios."""

    def test_user_service_lifecycle(self, registry):
        """Register, update, remove, re-register with a continuous audit trail."""
        assert registry.set_contract(OWNER, "UserService", ADDR_A) == 1

        assert registry.set_contract(OWNER, "UserService", ADDR_B) == 2
        assert len(registry.get_contract_history("UserService")) == 2

        registry.remove_contract(OWNER, "UserService")
        assert not registry.is_registered("UserService")
        with pytest.raises(NotFound):
            registry.get_contract("UserService")
        assert len(registry.get_contract_history("UserService")) == 2

        assert registry.set_contract(OWNER, "UserService", ADDR_C) == 3
        assert len(registry.get_contract_history("UserService")) == 3
        assert registry.get_contract("UserService") == ADDR_C

    def test_unauthorized_attempt_leaves_history_unchanged(self, registry):
        registry.set_contract(OWNER, "UserService", ADDR_A)
        before = registry.get_contract_history("UserService")

        with pytest.raises(Unauthorized):
            registry.set_contract(STRANGER, "UserService", ADDR_B)

        assert registry.get_contract_history("UserService") == before
        assert registry.get_contract("UserService") == ADDR_A

    def test_unauthorized_sequence_changes_nothing(self, registry):
        """No mix of calls from a stranger alters any state."""
        registry.set_contract(OWNER, "UserService", ADDR_A)
        registry.set_authorized_updater(OWNER, UPDATER, True)
        before = _state(registry)

        attempts = [
            lambda: registry.set_contract(STRANGER, "UserService", ADDR_B),
            lambda: registry.set_contract(STRANGER, "Other", ADDR_C),
            lambda: registry.remove_contract(STRANGER, "UserService"),
            lambda: registry.set_emergency_mode(STRANGER, True),
            lambda: registry.set_authorized_updater(STRANGER, STRANGER, True),
            lambda: registry.emergency_update_contract(STRANGER, "UserService", ADDR_C),
            lambda: registry.transfer_ownership(STRANGER, STRANGER),
        ]
        for attempt in attempts:
            with pytest.raises(Unauthorized):
                attempt()

        assert _state(registry) == before


class TestAuthorization:
    """Test owner and updater management."""

    def test_owner_implicitly_authorized(self, registry):
        assert registry.is_authorized(OWNER)
        assert OWNER not in registry.authorized_updaters()

    def test_updater_cannot_manage_updaters(self, registry):
        registry.set_authorized_updater(OWNER, UPDATER, True)
        with pytest.raises(Unauthorized):
            registry.set_authorized_updater(UPDATER, STRANGER, True)

    def test_updater_cannot_toggle_emergency(self, registry):
        registry.set_authorized_updater(OWNER, UPDATER, True)
        with pytest.raises(Unauthorized):
            registry.set_emergency_mode(UPDATER, True)

    def test_authorize_zero_address_rejected(self, registry):
        with pytest.raises(InvalidInput):
            registry.set_authorized_updater(OWNER, "0x" + "00" * 20, True)

    def test_is_authorized_garbage(self, registry):
        assert not registry.is_authorized("garbage")

    def test_transfer_ownership(self, registry):
        registry.transfer_ownership(OWNER, UPDATER)

        assert registry.owner == UPDATER
        with pytest.raises(Unauthorized):
            registry.set_contract(OWNER, "UserService", ADDR_A)
        assert registry.set_contract(UPDATER, "UserService", ADDR_A) == 1

    def test_transfer_to_zero_rejected(self, registry):
        with pytest.raises(InvalidInput):
            registry.transfer_ownership(OWNER, "0x" + "00" * 20)
        assert registry.owner == OWNER

    def test_transfer_to_address_with_trailing_newline_rejected(self, registry):
        with pytest.raises(InvalidInput):
            registry.transfer_ownership(OWNER, UPDATER + "\n")
        assert registry.owner == OWNER

    def test_caller_with_trailing_newline_is_not_owner(self, registry):
        with pytest.raises(Unauthorized):
            registry.set_emergency_mode(OWNER + "\n", True)
        assert not registry.emergency_mode

    def test_authorize_address_with_trailing_newline_rejected(self, registry):
        with pytest.raises(InvalidInput):
            registry.set_authorized_updater(OWNER, UPDATER + "\n", True)
        assert registry.authorized_updaters() == []


class TestEmergencyMode:
    """Test the break-glass path."""

    def test_set_contract_blocked(self, registry):
        registry.set_authorized_updater(OWNER, UPDATER, True)
        registry.set_emergency_mode(OWNER, True)

        for caller in (OWNER, UPDATER):
            with pytest.raises(EmergencyActive):
                registry.set_contract(caller, "UserService", ADDR_A)

    def test_remove_blocked(self, registry):
        registry.set_contract(OWNER, "UserService", ADDR_A)
        registry.set_emergency_mode(OWNER, True)
        with pytest.raises(EmergencyActive):
            registry.remove_contract(OWNER, "UserService")

    def test_emergency_update(self, registry):
        registry.set_contract(OWNER, "UserService", ADDR_A)
        registry.set_emergency_mode(OWNER, True)

        version = registry.emergency_update_contract(OWNER, "UserService", ADDR_B)

        assert version == 2
        assert registry.get_contract("UserService") == ADDR_B
        history = registry.get_contract_history("UserService")
        assert len(history) == 2
        assert history[-1].reason == "Emergency update"

    def test_emergency_update_requires_mode(self, registry):
        with pytest.raises(NotInEmergency):
            registry.emergency_update_contract(OWNER, "UserService", ADDR_A)

    def test_emergency_update_owner_only(self, registry):
        registry.set_authorized_updater(OWNER, UPDATER, True)
        registry.set_emergency_mode(OWNER, True)
        with pytest.raises(Unauthorized):
            registry.emergency_update_contract(UPDATER, "UserService", ADDR_A)

    def test_emergency_update_bypasses_capacity(self, checker):
        registry = Registry(owner=OWNER, checker=checker, max_contracts=1)
        registry.set_contract(OWNER, "One", ADDR_A)
        registry.set_emergency_mode(OWNER, True)

        assert registry.emergency_update_contract(OWNER, "Two", ADDR_B) == 1
        assert registry.get_contract_count() == 2

    def test_emergency_update_still_validates(self, registry):
        registry.set_emergency_mode(OWNER, True)
        with pytest.raises(InvalidInput):
            registry.emergency_update_contract(OWNER, "UserService", NO_CODE)
        with pytest.raises(InvalidInput):
            registry.emergency_update_contract(OWNER, "", ADDR_A)

    def test_leaving_emergency_restores_normal_path(self, registry):
        registry.set_emergency_mode(OWNER, True)
        registry.set_emergency_mode(OWNER, False)
        assert not registry.emergency_mode
        assert registry.set_contract(OWNER, "UserService", ADDR_A) == 1


class TestEvents:
    """Test mutation notifications."""

    def test_event_sequence(self, registry, events):
        registry.set_contract(OWNER, "UserService", ADDR_A)
        registry.set_contract(OWNER, "UserService", ADDR_B)
        registry.remove_contract(OWNER, "UserService")
        registry.set_emergency_mode(OWNER, True)
        registry.emergency_update_contract(OWNER, "UserService", ADDR_C)

        assert [e.event_type for e in events] == [
            "ContractRegistered",
            "ContractUpdated",
            "ContractRemoved",
            "EmergencyModeChanged",
            "EmergencyUpdate",
        ]
        assert events[1].data["previous_address"] == ADDR_A
        assert events[1].data["version"] == 2
        assert events[4].to_dict()["address"] == ADDR_C

    def test_rejected_call_emits_nothing(self, registry, events):
        with pytest.raises(Unauthorized):
            registry.set_contract(STRANGER, "UserService", ADDR_A)
        assert events == []

    def test_failing_subscriber_does_not_roll_back(self, registry):
        def broken(event):
            raise RuntimeError("subscriber bug")

        registry.subscribe(broken)
        assert registry.set_contract(OWNER, "UserService", ADDR_A) == 1
        assert registry.get_contract("UserService") == ADDR_A

    def test_unsubscribe(self, registry, events):
        registry.unsubscribe(events.append)
        registry.set_contract(OWNER, "UserService", ADDR_A)
        assert events == []


class TestConcurrency:
    """Test that concurrent updates never lose versions."""

    def test_concurrent_updates_keep_history_consistent(self, checker):
        registry = Registry(owner=OWNER, checker=checker)
        registry.set_authorized_updater(OWNER, UPDATER, True)
        per_thread = 50
        versions = []
        lock = threading.Lock()

        def worker(caller, address):
            for _ in range(per_thread):
                version = registry.set_contract(caller, "UserService", address)
                with lock:
                    versions.append(version)

        threads = [
            threading.Thread(target=worker, args=(OWNER, ADDR_A)),
            threading.Thread(target=worker, args=(UPDATER, ADDR_B)),
            threading.Thread(target=worker, args=(OWNER, ADDR_C)),
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        total = per_thread * len(threads)
        entry = registry.get_entry("UserService")
        assert sorted(versions) == list(range(1, total + 1))
        assert entry.version == total
        assert [r.version for r in entry.history] == list(range(1, total + 1))

    def test_reads_not_blocked_by_slow_checker(self):
        checker = BlockingChecker([ADDR_A])
        registry = Registry(owner=OWNER, checker=checker)

        writer, written = _run(registry.set_contract, OWNER, "UserService", ADDR_A)
        assert checker.entered.wait(5)

        reader, read = _run(registry.get_contract_count)
        reader.join(5)
        assert not reader.is_alive()
        assert read == {"result": 0}

        checker.release.set()
        writer.join(5)
        assert written == {"result": 1}
        assert registry.get_contract("UserService") == ADDR_A

    def test_revoked_during_check_commits_nothing(self):
        checker = BlockingChecker([ADDR_A])
        registry = Registry(owner=OWNER, checker=checker)
        registry.set_authorized_updater(OWNER, UPDATER, True)

        writer, written = _run(registry.set_contract, UPDATER, "UserService", ADDR_A)
        assert checker.entered.wait(5)

        revoker, _ = _run(registry.set_authorized_updater, OWNER, UPDATER, False)
        revoker.join(5)
        assert not revoker.is_alive()

        checker.release.set()
        writer.join(5)
        assert isinstance(written.get("error"), Unauthorized)
        assert not registry.is_registered("UserService")
        assert registry.get_contract_history("UserService") == []

    def test_emergency_update_not_blocking_reads(self):
        checker = BlockingChecker([ADDR_A])
        registry = Registry(owner=OWNER, checker=checker)
        registry.set_emergency_mode(OWNER, True)

        writer, written = _run(registry.emergency_update_contract, OWNER, "UserService", ADDR_A)
        assert checker.entered.wait(5)

        reader, read = _run(registry.is_registered, "UserService")
        reader.join(5)
        assert read == {"result": False}

        checker.release.set()
        writer.join(5)
        assert written == {"result": 1}
