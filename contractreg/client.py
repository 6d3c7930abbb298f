# contractreg/client.py
"""
Client SDK for the contract registry server.

Usage:
    identity = Identity.load("~/.contractreg/deployer.json")
    client = RegistryClient("http://localhost:8080", identity=identity)

    version = client.set_contract("UserService", "0xaaaa...")
    address = client.get_contract("UserService")

Server-side rejections are re-raised as the matching RegistryError
subclass (Unauthorized, NotFound, ...).
"""

import json
from dataclasses import dataclass
from typing import Dict, List, Optional
from urllib.parse import quote, urlencode
from urllib.request import urlopen, Request
from urllib.error import HTTPError, URLError

from .errors import RegistryError, error_from_dict
from .identity import Identity
from .registry import HistoryRecord
from .server import CALLER_HEADER


@dataclass
class RegistryStatus:
    """Registry status from server."""
    owner: str
    emergency_mode: bool = False
    contract_count: int = 0
    max_contracts: int = 0
    authorized_updaters: Optional[List[str]] = None


class RegistryClient:
    """
    Client for the contract registry server.

    Args:
        base_url: Server URL (e.g., "http://localhost:8080")
        identity: Signs mutating requests (servers requiring signatures)
        caller: Caller address sent as X-Caller (servers without signatures)
        timeout: Request timeout in seconds
    """

    def __init__(
        self,
        base_url: str = "http://localhost:8080",
        identity: Optional[Identity] = None,
        caller: Optional[str] = None,
        timeout: float = 30,
    ):
        self.base_url = base_url.rstrip("/")
        self.identity = identity
        self.caller = caller
        self.timeout = timeout

    def _request(self, method: str, path: str, data: dict = None, signed: bool = False) -> dict:
        """Make HTTP request to server."""
        url = f"{self.base_url}{path}"

        body = json.dumps(data).encode() if data is not None else b""
        headers = {"Content-Type": "application/json"} if data is not None else {}
        if signed:
            if self.identity is not None:
                headers.update(self.identity.sign_request(method, path, body))
            elif self.caller is not None:
                headers[CALLER_HEADER] = self.caller

        req = Request(url, data=body or None, headers=headers, method=method)

        try:
            with urlopen(req, timeout=self.timeout) as response:
                return json.loads(response.read().decode())
        except HTTPError as e:
            error_body = e.read().decode()
            try:
                error_data = json.loads(error_body)
            except json.JSONDecodeError:
                raise RegistryError(f"HTTP {e.code}: {error_body}")
            raise error_from_dict(error_data)
        except URLError as e:
            raise ConnectionError(f"Failed to connect to server: {e}")

    @staticmethod
    def _name_path(name: str) -> str:
        return f"/contracts/{quote(name, safe='')}"

    def health(self) -> bool:
        """Check if server is healthy."""
        try:
            result = self._request("GET", "/health")
            return result.get("status") == "ok"
        except (RegistryError, ConnectionError):
            return False

    def status(self) -> RegistryStatus:
        data = self._request("GET", "/status")
        return RegistryStatus(
            owner=data["owner"],
            emergency_mode=data.get("emergency_mode", False),
            contract_count=data.get("contract_count", 0),
            max_contracts=data.get("max_contracts", 0),
            authorized_updaters=data.get("authorized_updaters", []),
        )

    def get_contract(self, name: str) -> str:
        return self._request("GET", self._name_path(name))["address"]

    def get_version(self, name: str) -> int:
        return self._request("GET", self._name_path(name))["version"]

    def is_registered(self, name: str) -> bool:
        return self._request("GET", self._name_path(name) + "/registered")["registered"]

    def get_contract_history(
        self, name: str, offset: int = 0, limit: Optional[int] = None
    ) -> List[HistoryRecord]:
        params = {"offset": offset}
        if limit is not None:
            params["limit"] = limit
        data = self._request("GET", f"{self._name_path(name)}/history?{urlencode(params)}")
        return [HistoryRecord.from_dict(r) for r in data["history"]]

    def list_contracts(self) -> List[str]:
        return self._request("GET", "/contracts")["names"]

    def get_all_contracts(self) -> Dict[str, str]:
        return self._request("GET", "/contracts")["contracts"]

    def set_contract(self, name: str, address: str) -> int:
        """
        Register or update a contract.

        Returns:
            The new version number
        """
        data = self._request("PUT", self._name_path(name), {"address": address}, signed=True)
        return data["version"]

    def remove_contract(self, name: str) -> None:
        self._request("DELETE", self._name_path(name), signed=True)

    def emergency_update_contract(self, name: str, address: str) -> int:
        data = self._request(
            "POST", f"/emergency/contracts/{quote(name, safe='')}", {"address": address}, signed=True
        )
        return data["version"]

    def set_emergency_mode(self, active: bool) -> None:
        self._request("PUT", "/emergency", {"active": active}, signed=True)

    def set_authorized_updater(self, address: str, authorized: bool) -> None:
        self._request("PUT", f"/updaters/{address}", {"authorized": authorized}, signed=True)

    def transfer_ownership(self, new_owner: str) -> None:
        self._request("POST", "/ownership", {"new_owner": new_owner}, signed=True)


__all__ = ["RegistryClient", "RegistryStatus"]
