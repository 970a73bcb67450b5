"""
Hashing and signing primitives for the constitutional kernel.

- Canonical JSON: deterministic serialization used for proposal hashes and
  the audit chain (sorted keys, no whitespace, floats in shortest round-trip form,
  NaN/Inf rejected).
- Length-prefixed hash encoding so that chain components containing
  delimiter characters can never collide.
- Ed25519 key pairs (via ``cryptography``) for optionally signing audit
  records, and a trusted key store holding public keys only.
"""

from __future__ import annotations

import hashlib
import json
import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey, Ed25519PublicKey

from .errors import CK_E_CANON_NONFINITE, kernel_error


GENESIS_HASH = "0" * 64


def _sha256_hex(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def _safe_hash_encode(components: List[str]) -> bytes:
    """
    Length-prefixed encoding for hash inputs.

    Format: for each component, <8-byte big-endian length><UTF-8 bytes>.
    """
    result = b""
    for component in components:
        encoded = component.encode("utf-8")
        result += len(encoded).to_bytes(8, byteorder="big") + encoded
    return result


def _reject_nonfinite(obj: Any) -> Any:
    """Pass values through unchanged; NaN/Inf have no canonical form.

    Floats are not rounded: json renders the shortest repr that round-trips,
    so two different values never share a hash.
    """
    if isinstance(obj, float):
        if math.isnan(obj) or math.isinf(obj):
            raise kernel_error(CK_E_CANON_NONFINITE, "NaN/Inf values are not allowed in canonical JSON")
        return obj
    if isinstance(obj, dict):
        return {k: _reject_nonfinite(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_reject_nonfinite(v) for v in obj]
    return obj


def canonical_json_dumps(obj: Any) -> str:
    """Deterministic JSON for hashing and audit."""
    return json.dumps(
        _reject_nonfinite(obj),
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        allow_nan=False,
    )


def canonical_hash(obj: Any) -> str:
    return _sha256_hex(canonical_json_dumps(obj).encode("utf-8"))


@dataclass
class Ed25519KeyPair:
    """
    Ed25519 key pair for signing and verification.

    A pair built with :meth:`from_public_key` can only verify.
    """
    key_id: str
    public_key_bytes: bytes
    private_key_bytes: Optional[bytes] = None

    @classmethod
    def generate(cls, key_id: str) -> "Ed25519KeyPair":
        private_key = Ed25519PrivateKey.generate()
        return cls(
            key_id=key_id,
            public_key_bytes=private_key.public_key().public_bytes(
                encoding=serialization.Encoding.Raw,
                format=serialization.PublicFormat.Raw,
            ),
            private_key_bytes=private_key.private_bytes(
                encoding=serialization.Encoding.Raw,
                format=serialization.PrivateFormat.Raw,
                encryption_algorithm=serialization.NoEncryption(),
            ),
        )

    @classmethod
    def from_public_key(cls, key_id: str, public_key_hex: str) -> "Ed25519KeyPair":
        return cls(key_id=key_id, public_key_bytes=bytes.fromhex(public_key_hex))

    @property
    def public_key_hex(self) -> str:
        return self.public_key_bytes.hex()

    def can_sign(self) -> bool:
        return self.private_key_bytes is not None

    def sign(self, message: bytes) -> bytes:
        if not self.can_sign():
            raise ValueError(f"Key {self.key_id} has no private key - cannot sign")
        return Ed25519PrivateKey.from_private_bytes(self.private_key_bytes).sign(message)

    def verify(self, message: bytes, signature: bytes) -> bool:
        try:
            Ed25519PublicKey.from_public_bytes(self.public_key_bytes).verify(signature, message)
            return True
        except (InvalidSignature, ValueError):
            return False


@dataclass
class TrustedKeyStore:
    """Public keys trusted to have signed audit records."""
    keys: Dict[str, Ed25519KeyPair] = field(default_factory=dict)

    def add_public_key(self, key_id: str, public_key_hex: str) -> None:
        self.keys[key_id] = Ed25519KeyPair.from_public_key(key_id, public_key_hex)

    def verify_signature(self, key_id: str, message: bytes, signature: bytes) -> bool:
        kp = self.keys.get(key_id)
        if kp is None:
            return False
        return kp.verify(message, signature)

    @classmethod
    def from_config(cls, config: Dict[str, str]) -> "TrustedKeyStore":
        """Create a store from ``{"key_id": "<public_key_hex>", ...}``."""
        store = cls()
        for key_id, public_key_hex in (config or {}).items():
            store.add_public_key(str(key_id), str(public_key_hex))
        return store


def create_key_pair(key_id: str) -> Ed25519KeyPair:
    return Ed25519KeyPair.generate(key_id)
