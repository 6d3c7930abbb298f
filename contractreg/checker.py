# contractreg/checker.py
"""
Contract existence checks.

The registry only accepts addresses that hold deployed code. It asks an
injected checker instead of trusting caller-supplied identifiers:

    checker = RpcCodeChecker("https://rpc.testnet.taraxa.io")
    registry = Registry(owner=owner, checker=checker)
"""

import itertools
import json
import logging
import threading
from typing import Iterable, Optional, Protocol, Set
from urllib.request import urlopen, Request
from urllib.error import HTTPError, URLError

from .address import normalize_address
from .errors import CheckerUnavailable

logger = logging.getLogger(__name__)


class ContractExistenceChecker(Protocol):
    """Anything that can tell whether an address holds contract code."""

    def has_code(self, address: str) -> bool:
        ...


class StaticCodeChecker:
    """
    Checker backed by an in-memory set of deployed addresses.

    Useful for tests and for hosting a registry without a node connection.
    """

    def __init__(self, deployed: Optional[Iterable[str]] = None):
        self._deployed: Set[str] = set()
        self._lock = threading.Lock()
        for address in deployed or []:
            self.deploy(address)

    def deploy(self, address: str) -> str:
        """Mark an address as holding code. Returns the normalized address."""
        address = normalize_address(address)
        with self._lock:
            self._deployed.add(address)
        return address

    def destroy(self, address: str) -> None:
        """Forget an address (e.g. after selfdestruct)."""
        with self._lock:
            self._deployed.discard(address.lower())

    def has_code(self, address: str) -> bool:
        with self._lock:
            return address.lower() in self._deployed

    def __len__(self) -> int:
        return len(self._deployed)


class RpcCodeChecker:
    """
    Checker that asks a node via JSON-RPC ``eth_getCode``.

    Taraxa nodes expose the Ethereum JSON-RPC dialect, so an address holds
    a contract iff the returned code is longer than the empty ``"0x"``.

    Args:
        rpc_url: Node endpoint (e.g. "http://localhost:7777")
        timeout: Request timeout in seconds
        block: Block tag to query against
    """

    def __init__(self, rpc_url: str, timeout: float = 10, block: str = "latest"):
        self.rpc_url = rpc_url
        self.timeout = timeout
        self.block = block
        self._ids = itertools.count(1)

    def _call(self, method: str, params: list):
        payload = {
            "jsonrpc": "2.0",
            "id": next(self._ids),
            "method": method,
            "params": params,
        }
        req = Request(
            self.rpc_url,
            data=json.dumps(payload).encode(),
            headers={"Content-Type": "application/json"},
            method="POST",
        )
        try:
            with urlopen(req, timeout=self.timeout) as response:
                data = json.loads(response.read().decode())
        except HTTPError as e:
            raise CheckerUnavailable(f"RPC HTTP {e.code} from {self.rpc_url}")
        except (URLError, OSError) as e:
            raise CheckerUnavailable(f"Failed to reach RPC node {self.rpc_url}: {e}")
        except json.JSONDecodeError as e:
            raise CheckerUnavailable(f"Invalid RPC response: {e}")

        if not isinstance(data, dict):
            raise CheckerUnavailable(f"Invalid RPC response: {data!r}")
        if data.get("error"):
            error = data["error"]
            message = error.get("message") if isinstance(error, dict) else error
            raise CheckerUnavailable(f"RPC error from {method}: {message}")
        return data.get("result")

    def get_code(self, address: str) -> str:
        """Return the hex-encoded code at an address."""
        result = self._call("eth_getCode", [address, self.block])
        if not isinstance(result, str):
            raise CheckerUnavailable(f"Unexpected eth_getCode result: {result!r}")
        return result

    def has_code(self, address: str) -> bool:
        code = self.get_code(address)
        logger.debug(f"eth_getCode {address}: {len(code)} chars")
        return code not in ("", "0x", "0x0")
