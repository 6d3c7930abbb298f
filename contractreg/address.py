# contractreg/address.py
"""
Name and address validation.

Addresses are 20-byte account identifiers written as 0x + 40 hex digits.
They are normalized to lowercase so that lookups and authorization checks
compare equal regardless of the checksum casing the caller used.
"""

import re

from .errors import InvalidInput

ZERO_ADDRESS = "0x" + "0" * 40
MAX_NAME_BYTES = 32

_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")


def normalize_address(address: str) -> str:
    """
    Validate and normalize an address.

    Raises:
        InvalidInput: if the address is malformed or the zero address
    """
    if not isinstance(address, str) or not _ADDRESS_RE.fullmatch(address):
        raise InvalidInput(f"Malformed address: {address!r}")
    address = address.lower()
    if address == ZERO_ADDRESS:
        raise InvalidInput("Zero address is not allowed")
    return address


def is_valid_address(address: str) -> bool:
    try:
        normalize_address(address)
    except InvalidInput:
        return False
    return True


def validate_name(name: str) -> str:
    """
    Validate a registry name: non-empty and at most 32 bytes of UTF-8.

    Raises:
        InvalidInput: if the name is empty, oversized or not a string
    """
    if not isinstance(name, str) or not name:
        raise InvalidInput("Name must be a non-empty string")
    try:
        encoded = name.encode("utf-8")
    except UnicodeEncodeError:
        raise InvalidInput(f"Name is not valid UTF-8: {name!r}")
    if len(encoded) > MAX_NAME_BYTES:
        raise InvalidInput(f"Name exceeds {MAX_NAME_BYTES} bytes: {name!r}")
    return name
