#!/usr/bin/env python3
"""
Contract Registry CLI

Host a registry and talk to one:
  contractreg serve --config registry.yaml
  contractreg keygen deployer -o deployer.json
  contractreg set UserService 0xaaaa... --identity deployer.json
  contractreg get UserService
  contractreg history UserService --offset 0 --limit 10

Client commands reach the server given by --server (default
http://127.0.0.1:8080). Mutating commands authenticate with --identity
(signed requests) or --caller (servers running without signatures).
"""

import argparse
import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path

from .errors import ConfigError, RegistryError, StoreError

DEFAULT_SERVER = "http://127.0.0.1:8080"


def _client(args):
    from .client import RegistryClient
    from .identity import Identity

    identity = Identity.load(args.identity) if getattr(args, "identity", None) else None
    return RegistryClient(args.server, identity=identity, caller=getattr(args, "caller", None))


def _parse_bool(value: str) -> bool:
    value = value.lower()
    if value in ("on", "true", "yes", "1"):
        return True
    if value in ("off", "false", "no", "0"):
        return False
    raise argparse.ArgumentTypeError(f"Expected on/off, got {value!r}")


def cmd_serve(args):
    """Run the registry HTTP server."""
    from .config import RegistryConfig
    from .server import RegistryServer

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    config = RegistryConfig.from_file(Path(args.config))
    if args.host:
        config.host = args.host
    if args.port is not None:
        config.port = args.port
    if args.no_signatures:
        config.require_signatures = False

    registry = config.build_registry()
    print(f"Owner: {registry.owner}")
    print(f"Contracts: {registry.get_contract_count()}/{registry.max_contracts}")
    if not config.require_signatures:
        print("WARNING: request signatures disabled, callers are trusted from X-Caller")

    server = RegistryServer(
        registry,
        host=config.host,
        port=config.port,
        require_signatures=config.require_signatures,
        signature_skew=config.signature_skew,
    )
    server.start()


def cmd_keygen(args):
    """Generate a caller identity."""
    from .identity import Identity

    identity = Identity.generate(args.name)
    output_path = Path(args.output) if args.output else Path(f"{args.name}.json")
    if output_path.exists() and not args.force:
        print(f"Error: {output_path} exists (use --force to overwrite)")
        sys.exit(1)
    identity.save(output_path)
    print(f"Identity: {identity.name}")
    print(f"Address: {identity.address}")
    print(f"Saved to: {output_path}")


def cmd_status(args):
    status = _client(args).status()
    print(f"Owner: {status.owner}")
    print(f"Emergency mode: {'ON' if status.emergency_mode else 'off'}")
    print(f"Contracts: {status.contract_count}/{status.max_contracts}")
    for address in status.authorized_updaters or []:
        print(f"  updater {address}")


def cmd_list(args):
    contracts = _client(args).get_all_contracts()
    if args.json:
        print(json.dumps(contracts, indent=2))
        return
    for name in sorted(contracts):
        print(f"{name}: {contracts[name]}")
    print(f"\n{len(contracts)} contracts")


def cmd_get(args):
    print(_client(args).get_contract(args.name))


def cmd_registered(args):
    registered = _client(args).is_registered(args.name)
    print("yes" if registered else "no")
    if not registered:
        sys.exit(1)


def cmd_history(args):
    records = _client(args).get_contract_history(args.name, args.offset, args.limit)
    if args.json:
        print(json.dumps([r.to_dict() for r in records], indent=2))
        return
    for record in records:
        when = datetime.fromtimestamp(record.timestamp, tz=timezone.utc).strftime("%Y-%m-%d %H:%M:%S")
        print(f"v{record.version}  {when}  {record.address}  {record.reason}")


def cmd_set(args):
    version = _client(args).set_contract(args.name, args.address)
    print(f"{args.name} -> {args.address} (v{version})")


def cmd_remove(args):
    _client(args).remove_contract(args.name)
    print(f"Removed {args.name}")


def cmd_authorize(args):
    authorized = not args.revoke
    _client(args).set_authorized_updater(args.address, authorized)
    print(f"{args.address}: {'authorized' if authorized else 'revoked'}")


def cmd_emergency(args):
    _client(args).set_emergency_mode(args.state)
    print(f"Emergency mode {'ON' if args.state else 'off'}")


def cmd_emergency_update(args):
    version = _client(args).emergency_update_contract(args.name, args.address)
    print(f"[EMERGENCY] {args.name} -> {args.address} (v{version})")


def cmd_transfer_ownership(args):
    _client(args).transfer_ownership(args.new_owner)
    print(f"Owner is now {args.new_owner}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="contractreg",
        description="Contract Registry - named, versioned contract addresses",
    )
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # serve command
    serve_parser = subparsers.add_parser("serve", help="Run the registry server")
    serve_parser.add_argument("-c", "--config", required=True, help="Config YAML file")
    serve_parser.add_argument("--host", help="Host to bind to (overrides config)")
    serve_parser.add_argument("--port", type=int, help="Port to bind to (overrides config)")
    serve_parser.add_argument("--no-signatures", action="store_true",
                              help="Trust the X-Caller header instead of signatures")
    serve_parser.add_argument("--verbose", "-v", action="store_true", help="Verbose logging")
    serve_parser.set_defaults(func=cmd_serve)

    # keygen command
    keygen_parser = subparsers.add_parser("keygen", help="Generate a caller identity")
    keygen_parser.add_argument("name", help="Identity label")
    keygen_parser.add_argument("-o", "--output", help="Output file (default: <name>.json)")
    keygen_parser.add_argument("--force", action="store_true", help="Overwrite existing file")
    keygen_parser.set_defaults(func=cmd_keygen)

    def client_parser(name, func, help, mutating=False):
        sub = subparsers.add_parser(name, help=help)
        sub.add_argument("--server", default=DEFAULT_SERVER, help="Registry server URL")
        if mutating:
            auth = sub.add_mutually_exclusive_group(required=True)
            auth.add_argument("--identity", help="Identity JSON file for signed requests")
            auth.add_argument("--caller", help="Caller address (servers without signatures)")
        sub.set_defaults(func=func)
        return sub

    client_parser("status", cmd_status, "Show registry status")

    list_parser = client_parser("list", cmd_list, "List live contracts")
    list_parser.add_argument("--json", action="store_true", help="Print JSON")

    get_parser = client_parser("get", cmd_get, "Resolve a name")
    get_parser.add_argument("name")

    registered_parser = client_parser("registered", cmd_registered, "Check whether a name is live")
    registered_parser.add_argument("name")

    history_parser = client_parser("history", cmd_history, "Show a name's history")
    history_parser.add_argument("name")
    history_parser.add_argument("--offset", type=int, default=0)
    history_parser.add_argument("--limit", type=int, default=None)
    history_parser.add_argument("--json", action="store_true", help="Print JSON")

    set_parser = client_parser("set", cmd_set, "Register or update a contract", mutating=True)
    set_parser.add_argument("name")
    set_parser.add_argument("address")

    remove_parser = client_parser("remove", cmd_remove, "Remove a contract", mutating=True)
    remove_parser.add_argument("name")

    authorize_parser = client_parser("authorize", cmd_authorize, "Grant or revoke updater rights",
                                     mutating=True)
    authorize_parser.add_argument("address")
    authorize_parser.add_argument("--revoke", action="store_true", help="Revoke instead of grant")

    emergency_parser = client_parser("emergency", cmd_emergency, "Toggle emergency mode",
                                     mutating=True)
    emergency_parser.add_argument("state", type=_parse_bool, help="on or off")

    emergency_update_parser = client_parser("emergency-update", cmd_emergency_update,
                                            "Owner-only update during emergency mode",
                                            mutating=True)
    emergency_update_parser.add_argument("name")
    emergency_update_parser.add_argument("address")

    transfer_parser = client_parser("transfer-ownership", cmd_transfer_ownership,
                                    "Hand the registry to a new owner", mutating=True)
    transfer_parser.add_argument("new_owner")

    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    if not getattr(args, "func", None):
        parser.print_help()
        sys.exit(1)

    try:
        args.func(args)
    except RegistryError as e:
        print(f"Error [{e.kind}]: {e.message}", file=sys.stderr)
        sys.exit(2)
    except (ConfigError, StoreError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(2)
    except ConnectionError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(3)


if __name__ == "__main__":
    main()
