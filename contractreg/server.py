# contractreg/server.py
"""
HTTP server for the contract registry.

Provides a JSON REST API over a Registry.

Endpoints:
    GET    /health                          - Liveness check
    GET    /status                          - Owner, emergency flag, counts
    GET    /contracts                       - Live names and addresses
    GET    /contracts/:name                 - Resolve a name
    GET    /contracts/:name/registered      - Is the name live
    GET    /contracts/:name/history         - Paged history (?offset=&limit=)
    PUT    /contracts/:name                 - Register/update {address}
    DELETE /contracts/:name                 - Remove from live lookup
    POST   /emergency/contracts/:name       - Emergency update {address}
    PUT    /emergency                       - Toggle emergency mode {active}
    PUT    /updaters/:address               - Grant/revoke {authorized}
    POST   /ownership                       - Transfer ownership {new_owner}
"""

import json
import logging
import threading
from http.server import ThreadingHTTPServer, BaseHTTPRequestHandler
from typing import Any, Dict, Optional
from urllib.parse import parse_qs, unquote, urlparse

from .errors import InvalidInput, NotFound, RegistryError, Unauthorized
from .identity import DEFAULT_SKEW_SECONDS, ReplayGuard, verify_request
from .registry import Registry

logger = logging.getLogger(__name__)

CALLER_HEADER = "X-Caller"


class RegistryServer:
    """
    HTTP server for a contract registry.

    Usage:
        server = RegistryServer(registry, port=8080)
        server.start()  # Blocking

    Args:
        registry: The registry to serve
        host: Interface to bind
        port: Port to bind (0 picks a free port)
        require_signatures: Authenticate callers by request signature;
            when False the caller is read from the X-Caller header
        signature_skew: Accepted signature clock difference in seconds
    """

    def __init__(
        self,
        registry: Registry,
        host: str = "127.0.0.1",
        port: int = 8080,
        require_signatures: bool = True,
        signature_skew: float = DEFAULT_SKEW_SECONDS,
    ):
        self.registry = registry
        self.host = host
        self.port = port
        self.require_signatures = require_signatures
        self.signature_skew = signature_skew
        self._replay_guard = ReplayGuard(signature_skew)
        self._httpd: Optional[ThreadingHTTPServer] = None

    def resolve_caller(self, method: str, path: str, body: bytes, headers) -> str:
        """Work out who is making a mutating request."""
        if self.require_signatures:
            return verify_request(
                method, path, body, headers,
                max_skew=self.signature_skew,
                replay_guard=self._replay_guard,
            )
        caller = headers.get(CALLER_HEADER)
        if not caller:
            raise Unauthorized(f"Missing {CALLER_HEADER} header")
        return caller

    def _create_handler(server_instance):
        """Create request handler with access to server instance."""

        class RequestHandler(BaseHTTPRequestHandler):
            server_ref = server_instance

            def log_message(self, format, *args):
                logger.debug(format % args)

            def _send_json(self, data: Any, status: int = 200):
                body = json.dumps(data).encode()
                self.send_response(status)
                self.send_header("Content-Type", "application/json")
                self.send_header("Content-Length", str(len(body)))
                self.end_headers()
                self.wfile.write(body)

            def _send_error(self, message: str, status: int = 400, kind: str = "BadRequest"):
                self._send_json({"error": message, "kind": kind}, status)

            def _read_body(self) -> bytes:
                content_length = int(self.headers.get("Content-Length", 0))
                return self.rfile.read(content_length) if content_length else b""

            def _json_body(self, raw: bytes) -> Dict[str, Any]:
                if not raw:
                    return {}
                data = json.loads(raw.decode())
                if not isinstance(data, dict):
                    raise InvalidInput("Request body must be a JSON object")
                return data

            def _segments(self):
                parsed = urlparse(self.path)
                parts = [unquote(p) for p in parsed.path.split("/") if p]
                return parts, parse_qs(parsed.query)

            def _dispatch(self, handler):
                try:
                    handler()
                except RegistryError as e:
                    logger.debug(f"{self.command} {self.path} rejected: {e.kind}: {e.message}")
                    self._send_json(e.to_dict(), e.http_status)
                except json.JSONDecodeError as e:
                    self._send_error(f"Invalid JSON: {e}")
                except ValueError as e:
                    self._send_error(str(e))
                except Exception as e:
                    logger.exception(f"{self.command} {self.path} failed")
                    self._send_error(str(e), 500, "InternalError")

            def _mutation(self):
                """Read the body and authenticate the caller."""
                raw = self._read_body()
                caller = self.server_ref.resolve_caller(self.command, self.path, raw, self.headers)
                return caller, self._json_body(raw)

            def do_GET(self):
                self._dispatch(self._handle_get)

            def do_PUT(self):
                self._dispatch(self._handle_put)

            def do_POST(self):
                self._dispatch(self._handle_post)

            def do_DELETE(self):
                self._dispatch(self._handle_delete)

            def _handle_get(self):
                registry = self.server_ref.registry
                parts, query = self._segments()

                if parts == ["health"]:
                    self._send_json({"status": "ok"})

                elif parts == ["status"]:
                    self._send_json({
                        "owner": registry.owner,
                        "emergency_mode": registry.emergency_mode,
                        "contract_count": registry.get_contract_count(),
                        "max_contracts": registry.max_contracts,
                        "authorized_updaters": registry.authorized_updaters(),
                    })

                elif parts == ["contracts"]:
                    self._send_json({
                        "names": registry.list_contracts(),
                        "contracts": registry.get_all_contracts(),
                    })

                elif len(parts) == 2 and parts[0] == "contracts":
                    name = parts[1]
                    # One snapshot so address and version come from the same commit
                    entry = registry.get_entry(name)
                    if entry is None or not entry.is_live:
                        raise NotFound(f"Contract not registered: {name}")
                    self._send_json({
                        "name": name,
                        "address": entry.address,
                        "version": entry.version,
                    })

                elif len(parts) == 3 and parts[0] == "contracts" and parts[2] == "registered":
                    self._send_json({"name": parts[1], "registered": registry.is_registered(parts[1])})

                elif len(parts) == 3 and parts[0] == "contracts" and parts[2] == "history":
                    offset = int(query.get("offset", ["0"])[0])
                    limit = query.get("limit", [None])[0]
                    records = registry.get_contract_history(
                        parts[1], offset, int(limit) if limit is not None else None
                    )
                    self._send_json({
                        "name": parts[1],
                        "history": [r.to_dict() for r in records],
                    })

                else:
                    self._send_error("Not found", 404, "NotFound")

            def _handle_put(self):
                registry = self.server_ref.registry
                parts, _ = self._segments()

                if len(parts) == 2 and parts[0] == "contracts":
                    caller, data = self._mutation()
                    version = registry.set_contract(caller, parts[1], data.get("address", ""))
                    self._send_json({"name": parts[1], "version": version})

                elif parts == ["emergency"]:
                    caller, data = self._mutation()
                    registry.set_emergency_mode(caller, bool(data.get("active")))
                    self._send_json({"emergency_mode": registry.emergency_mode})

                elif len(parts) == 2 and parts[0] == "updaters":
                    caller, data = self._mutation()
                    authorized = bool(data.get("authorized", True))
                    registry.set_authorized_updater(caller, parts[1], authorized)
                    self._send_json({"address": parts[1].lower(), "authorized": authorized})

                else:
                    self._send_error("Not found", 404, "NotFound")

            def _handle_post(self):
                registry = self.server_ref.registry
                parts, _ = self._segments()

                if len(parts) == 3 and parts[:2] == ["emergency", "contracts"]:
                    caller, data = self._mutation()
                    version = registry.emergency_update_contract(
                        caller, parts[2], data.get("address", "")
                    )
                    self._send_json({"name": parts[2], "version": version})

                elif parts == ["ownership"]:
                    caller, data = self._mutation()
                    registry.transfer_ownership(caller, data.get("new_owner", ""))
                    self._send_json({"owner": registry.owner})

                else:
                    self._send_error("Not found", 404, "NotFound")

            def _handle_delete(self):
                registry = self.server_ref.registry
                parts, _ = self._segments()

                if len(parts) == 2 and parts[0] == "contracts":
                    caller, _ = self._mutation()
                    registry.remove_contract(caller, parts[1])
                    self._send_json({"name": parts[1], "removed": True})
                else:
                    self._send_error("Not found", 404, "NotFound")

        return RequestHandler

    def bind(self) -> ThreadingHTTPServer:
        """Bind the listening socket. Updates self.port when it was 0."""
        if self._httpd is None:
            handler = self._create_handler()
            self._httpd = ThreadingHTTPServer((self.host, self.port), handler)
            self.port = self._httpd.server_address[1]
        return self._httpd

    @property
    def url(self) -> str:
        return f"http://{self.host}:{self.port}"

    def start(self):
        """Start the HTTP server (blocking)."""
        httpd = self.bind()
        logger.info(f"Registry server starting on {self.host}:{self.port}")
        print(f"Registry server running on {self.url}")
        try:
            httpd.serve_forever()
        except KeyboardInterrupt:
            print("\nShutting down...")
        finally:
            httpd.server_close()

    def start_background(self) -> threading.Thread:
        """Start the server in a background thread."""
        httpd = self.bind()
        thread = threading.Thread(target=httpd.serve_forever)
        thread.daemon = True
        thread.start()
        return thread

    def stop(self):
        """Stop a server started with start_background()."""
        if self._httpd is not None:
            self._httpd.shutdown()
            self._httpd.server_close()
            self._httpd = None
