# contractreg/identity.py
"""
Caller identities and signed requests.

An Identity is an RSA key pair. Its registry address is derived from the
public key (last 20 bytes of SHA3-256 over the DER encoding), so a server
can authenticate the caller of a mutating request without a separate
account database.

Requests are signed with RSA-SHA256 over:

    METHOD \\n PATH \\n CREATED \\n NONCE \\n hex(SHA256(body))

The nonce makes every signature unique, so a server can refuse a
signature it has already accepted.
"""

import base64
import hashlib
import json
import os
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa

from .errors import Unauthorized

HEADER_KEY = "X-Caller-Key"
HEADER_CREATED = "X-Signature-Created"
HEADER_SIGNATURE = "X-Signature"
HEADER_NONCE = "X-Signature-Nonce"

DEFAULT_SKEW_SECONDS = 300


def _generate_keypair() -> tuple[bytes, bytes]:
    """Generate RSA key pair for signing."""
    private_key = rsa.generate_private_key(
        public_exponent=65537,
        key_size=2048,
    )
    private_pem = private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )
    public_pem = private_key.public_key().public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )
    return private_pem, public_pem


def address_from_public_key(public_pem: bytes) -> str:
    """Derive the registry address for a PEM-encoded public key."""
    public_key = serialization.load_pem_public_key(public_pem)
    der = public_key.public_bytes(
        encoding=serialization.Encoding.DER,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )
    return "0x" + hashlib.sha3_256(der).hexdigest()[-40:]


def signing_payload(method: str, path: str, created: str, nonce: str, body: bytes) -> bytes:
    body_hash = hashlib.sha256(body or b"").hexdigest()
    return "\n".join([method.upper(), path, created, nonce, body_hash]).encode()


@dataclass
class Identity:
    """
    A caller identity.

    Attributes:
        name: Local label for the identity
        public_key: PEM-encoded public key
        private_key: PEM-encoded private key (kept secret)
        created_at: Timestamp of creation
    """
    name: str
    public_key: bytes
    private_key: bytes
    created_at: float = field(default_factory=time.time)

    @classmethod
    def generate(cls, name: str) -> "Identity":
        private_pem, public_pem = _generate_keypair()
        return cls(name=name, public_key=public_pem, private_key=private_pem)

    @property
    def address(self) -> str:
        return address_from_public_key(self.public_key)

    def sign_request(self, method: str, path: str, body: bytes = b"") -> Dict[str, str]:
        """Return the headers that authenticate a request."""
        private_key = serialization.load_pem_private_key(self.private_key, password=None)
        created = str(int(time.time()))
        nonce = os.urandom(16).hex()
        signature = private_key.sign(
            signing_payload(method, path, created, nonce, body),
            padding.PKCS1v15(),
            hashes.SHA256(),
        )
        return {
            HEADER_KEY: base64.b64encode(self.public_key).decode(),
            HEADER_CREATED: created,
            HEADER_NONCE: nonce,
            HEADER_SIGNATURE: base64.b64encode(signature).decode(),
        }

    def to_dict(self) -> Dict[str, Any]:
        """Serialize for storage."""
        return {
            "name": self.name,
            "address": self.address,
            "public_key": self.public_key.decode("utf-8"),
            "private_key": self.private_key.decode("utf-8"),
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Identity":
        """Deserialize from storage."""
        return cls(
            name=data["name"],
            public_key=data["public_key"].encode("utf-8"),
            private_key=data["private_key"].encode("utf-8"),
            created_at=data.get("created_at", time.time()),
        )

    def save(self, path: Path | str) -> Path:
        """Write the identity to a JSON file readable only by its owner."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            json.dump(self.to_dict(), f, indent=2)
        os.chmod(path, 0o600)
        return path

    @classmethod
    def load(cls, path: Path | str) -> "Identity":
        with open(path) as f:
            return cls.from_dict(json.load(f))


def verify_request(
    method: str,
    path: str,
    body: bytes,
    headers: Dict[str, str],
    max_skew: float = DEFAULT_SKEW_SECONDS,
    now: Optional[float] = None,
    replay_guard: Optional["ReplayGuard"] = None,
) -> str:
    """
    Authenticate a signed request.

    Args:
        method: HTTP method
        path: Request path including query string
        body: Raw request body
        headers: Request headers (mapping with .get)
        max_skew: Accepted clock difference in seconds
        now: Current time, defaults to time.time()
        replay_guard: Rejects signatures that were already accepted

    Returns:
        The caller address derived from the signing key

    Raises:
        Unauthorized: missing headers, stale timestamp, bad or reused signature
    """
    key_b64 = headers.get(HEADER_KEY)
    created = headers.get(HEADER_CREATED)
    nonce = headers.get(HEADER_NONCE)
    signature_b64 = headers.get(HEADER_SIGNATURE)
    if not key_b64 or not created or not nonce or not signature_b64:
        raise Unauthorized("Request is not signed")

    try:
        created_ts = int(created)
    except ValueError:
        raise Unauthorized(f"Invalid signature timestamp: {created!r}")
    if now is None:
        now = time.time()
    if abs(now - created_ts) > max_skew:
        raise Unauthorized("Signature timestamp outside accepted window")

    try:
        public_pem = base64.b64decode(key_b64)
        public_key = serialization.load_pem_public_key(public_pem)
        public_key.verify(
            base64.b64decode(signature_b64),
            signing_payload(method, path, created, nonce, body),
            padding.PKCS1v15(),
            hashes.SHA256(),
        )
    except (InvalidSignature, ValueError, TypeError):
        raise Unauthorized("Invalid request signature")

    if replay_guard is not None:
        replay_guard.check(signature_b64, created_ts, now)
    return address_from_public_key(public_pem)


class ReplayGuard:
    """
    Remembers accepted signatures so each signed request is used once.

    Entries are forgotten once their timestamp falls outside the skew
    window, since verify_request rejects them on age from then on.
    """

    def __init__(self, max_skew: float = DEFAULT_SKEW_SECONDS):
        self.max_skew = max_skew
        self._seen: Dict[str, int] = {}
        self._lock = threading.Lock()

    def check(self, signature: str, created: int, now: Optional[float] = None) -> None:
        """
        Record a signature.

        Raises:
            Unauthorized: if the signature was seen before
        """
        if now is None:
            now = time.time()
        with self._lock:
            self._prune(now)
            if signature in self._seen:
                raise Unauthorized("Request signature already used")
            self._seen[signature] = created

    def _prune(self, now: float):
        expired = [s for s, created in self._seen.items() if now - created > self.max_skew]
        for signature in expired:
            del self._seen[signature]

    def __len__(self) -> int:
        return len(self._seen)
