# contractreg/config.py
"""
Registry service configuration.

Loaded from YAML:

    owner: "0x1111111111111111111111111111111111111111"
    max_contracts: 100
    state_file: /var/lib/contractreg/state.json
    host: 127.0.0.1
    port: 8080
    require_signatures: true
    signature_skew: 300
    checker:
      type: rpc            # rpc | static
      rpc_url: http://localhost:7777
      timeout: 10
      known: []            # addresses for the static checker
"""

from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from .address import normalize_address
from .checker import RpcCodeChecker, StaticCodeChecker
from .errors import ConfigError, InvalidInput
from .registry import Registry
from .registry.registry import DEFAULT_MAX_CONTRACTS
from .store import RegistryStore

CHECKER_TYPES = ("static", "rpc")


@dataclass
class CheckerConfig:
    """How to confirm that an address holds deployed code."""
    type: str = "static"
    rpc_url: Optional[str] = None
    timeout: float = 10
    known: List[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CheckerConfig":
        _reject_unknown(cls, data, "checker")
        config = cls(
            type=data.get("type", "static"),
            rpc_url=data.get("rpc_url"),
            timeout=data.get("timeout", 10),
            known=list(data.get("known") or []),
        )
        if config.type not in CHECKER_TYPES:
            raise ConfigError(f"Unknown checker type: {config.type!r} (expected one of {CHECKER_TYPES})")
        if config.type == "rpc" and not config.rpc_url:
            raise ConfigError("checker.rpc_url is required for the rpc checker")
        return config

    def build(self):
        if self.type == "rpc":
            return RpcCodeChecker(self.rpc_url, timeout=self.timeout)
        try:
            return StaticCodeChecker(self.known)
        except InvalidInput as e:
            raise ConfigError(f"Invalid address in checker.known: {e}")


@dataclass
class RegistryConfig:
    """Settings for a hosted registry."""
    owner: str
    max_contracts: int = DEFAULT_MAX_CONTRACTS
    state_file: Optional[str] = None
    host: str = "127.0.0.1"
    port: int = 8080
    require_signatures: bool = True
    signature_skew: float = 300
    checker: CheckerConfig = field(default_factory=CheckerConfig)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RegistryConfig":
        if not isinstance(data, dict):
            raise ConfigError("Configuration must be a mapping")
        _reject_unknown(cls, data, "config")
        if not data.get("owner"):
            raise ConfigError("owner is required")
        try:
            owner = normalize_address(data["owner"])
        except InvalidInput as e:
            raise ConfigError(f"Invalid owner: {e}")

        max_contracts = data.get("max_contracts", DEFAULT_MAX_CONTRACTS)
        if not isinstance(max_contracts, int) or max_contracts < 1:
            raise ConfigError(f"max_contracts must be a positive integer, got {max_contracts!r}")

        return cls(
            owner=owner,
            max_contracts=max_contracts,
            state_file=data.get("state_file"),
            host=data.get("host", "127.0.0.1"),
            port=int(data.get("port", 8080)),
            require_signatures=bool(data.get("require_signatures", True)),
            signature_skew=data.get("signature_skew", 300),
            checker=CheckerConfig.from_dict(data.get("checker") or {}),
        )

    @classmethod
    def from_yaml(cls, yaml_content: str) -> "RegistryConfig":
        try:
            data = yaml.safe_load(yaml_content)
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML: {e}")
        return cls.from_dict(data or {})

    @classmethod
    def from_file(cls, path: Path | str) -> "RegistryConfig":
        """Load configuration from a YAML file."""
        with open(path, "r") as f:
            return cls.from_yaml(f.read())

    def build_registry(self) -> Registry:
        """Construct the registry these settings describe."""
        store = RegistryStore(self.state_file) if self.state_file else None
        return Registry(
            owner=self.owner,
            checker=self.checker.build(),
            max_contracts=self.max_contracts,
            store=store,
        )


def _reject_unknown(cls, data: Dict[str, Any], section: str):
    known = {f.name for f in fields(cls)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ConfigError(f"Unknown {section} keys: {', '.join(unknown)}")
