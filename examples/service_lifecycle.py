#!/usr/bin/env python3
"""
Walk a service through its registry lifecycle in-process.

Registers UserService, upgrades it, removes it and re-registers it,
then prints the audit trail. No server or node connection needed.
"""

import sys
from pathlib import Path

# Add contractreg to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from contractreg import Registry, StaticCodeChecker, Unauthorized

OWNER = "0x1111111111111111111111111111111111111111"
STRANGER = "0x3333333333333333333333333333333333333333"
V1 = "0xaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaa"
V2 = "0xbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbb"
V3 = "0xcccccccccccccccccccccccccccccccccccccccc"


def main():
    checker = StaticCodeChecker([V1, V2, V3])
    registry = Registry(owner=OWNER, checker=checker)
    registry.subscribe(lambda event: print(f"  event: {event.event_type} {event.data}"))

    print("Register v1")
    registry.set_contract(OWNER, "UserService", V1)

    print("Upgrade to v2")
    registry.set_contract(OWNER, "UserService", V2)

    print("Stranger tries to hijack")
    try:
        registry.set_contract(STRANGER, "UserService", V3)
    except Unauthorized as e:
        print(f"  rejected: {e.kind}")

    print("Remove")
    registry.remove_contract(OWNER, "UserService")
    print(f"  registered: {registry.is_registered('UserService')}")

    print("Re-register")
    registry.set_contract(OWNER, "UserService", V3)

    print()
    print("History:")
    for record in registry.get_contract_history("UserService"):
        print(f"  v{record.version} {record.address} {record.reason}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
