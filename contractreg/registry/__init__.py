# contractreg/registry/__init__.py
"""
Contract registry.

An auditable directory from service names to deployed contract addresses.
Every address change bumps the entry's version and is appended to its
history; removal only takes the name out of live lookup.

Example:
    registry = Registry(owner=owner, checker=StaticCodeChecker([addr]))
    registry.set_contract(owner, "UserService", addr)  # -> 1
    registry.get_contract("UserService")               # -> addr
"""

from .registry import Registry, RegistryEntry, HistoryRecord, RegistryEvent

__all__ = ["Registry", "RegistryEntry", "HistoryRecord", "RegistryEvent"]
