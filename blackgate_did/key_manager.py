"""
Key Manager - Key Store for the DID engine

Supports:
- secp256k1: did:ethr compatible keys (Ethereum addresses, compressed public keys)

Private key material never leaves the store: callers hold a KeyRef whose
``private_key_handle`` is an opaque reference into this store.
"""

import re
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Tuple

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec
from eth_account import Account
from eth_utils import keccak, to_checksum_address

from .did_codec import ensure_hex_prefix, strip_hex_prefix
from .errors import InvalidKeyMaterial

_PRIVATE_KEY_RE = re.compile(r"^[a-fA-F0-9]{64}$")
_HEX_RE = re.compile(r"^[a-fA-F0-9]*$")

ADDRESS_LENGTH = 20
COMPRESSED_KEY_LENGTH = 33
UNCOMPRESSED_KEY_LENGTH = 65


class Curve(Enum):
    """Supported key curves"""
    SECP256K1 = "Secp256k1"


@dataclass(frozen=True)
class KeyRef:
    """Reference to a key held by the KeyStore"""
    kid: str
    public_key: bytes  # compressed SEC1 point, derived once at import
    private_key_handle: str
    curve: Curve = Curve.SECP256K1
    kms: str = "local"

    @property
    def public_key_hex(self) -> str:
        return self.public_key.hex()

    def to_dict(self) -> Dict[str, str]:
        """Public view of the key (no private handle)"""
        return {
            "kid": self.kid,
            "type": self.curve.value,
            "kms": self.kms,
            "publicKeyHex": self.public_key_hex,
        }


# ==================== KEY MATERIAL ====================

def parse_private_key(private_key) -> bytes:
    """
    Validate and decode a secp256k1 private key

    Args:
        private_key: 64 hex characters, optional 0x prefix (or 32 raw bytes)

    Returns:
        32 raw private key bytes

    Raises:
        InvalidKeyMaterial: wrong length, non-hex, or not a valid curve scalar
    """
    if isinstance(private_key, (bytes, bytearray)):
        raw = bytes(private_key)
        if len(raw) != 32:
            raise InvalidKeyMaterial("Invalid private key format")
    else:
        if not isinstance(private_key, str):
            raise InvalidKeyMaterial("Invalid private key format")
        sanitized = strip_hex_prefix(private_key.strip())
        if not _PRIVATE_KEY_RE.match(sanitized):
            raise InvalidKeyMaterial("Invalid private key format")
        raw = bytes.fromhex(sanitized)

    # derive once here so out-of-range scalars (0, >= n) are rejected up front
    _load_private_key(raw)
    return raw


def _load_private_key(raw: bytes) -> ec.EllipticCurvePrivateKey:
    try:
        return ec.derive_private_key(int.from_bytes(raw, "big"), ec.SECP256K1())
    except ValueError as e:
        raise InvalidKeyMaterial(f"Invalid private key: {e}") from e


def derive_public_key(raw: bytes, compressed: bool = True) -> bytes:
    """SEC1 encoded public key for a raw private key"""
    public_key = _load_private_key(raw).public_key()
    fmt = (
        serialization.PublicFormat.CompressedPoint
        if compressed
        else serialization.PublicFormat.UncompressedPoint
    )
    return public_key.public_bytes(encoding=serialization.Encoding.X962, format=fmt)


def derive_address(raw: bytes) -> str:
    """Checksummed Ethereum address for a raw private key"""
    return Account.from_key(raw).address


def decode_public_key_or_address(value: str) -> Tuple[str, bytes]:
    """
    Classify a hex value as an address or a public key

    Returns:
        ("address" | "public_key", raw bytes)
    """
    if not isinstance(value, str) or not value:
        raise InvalidKeyMaterial("Public key or address must be a non-empty hex string")
    body = strip_hex_prefix(value)
    if len(body) % 2 or not _HEX_RE.match(body):
        raise InvalidKeyMaterial(f"Public key or address is not hex: {value}")
    raw = bytes.fromhex(body)
    if len(raw) == ADDRESS_LENGTH:
        return "address", raw
    if len(raw) in (COMPRESSED_KEY_LENGTH, UNCOMPRESSED_KEY_LENGTH):
        return "public_key", raw
    raise InvalidKeyMaterial(
        f"Expected a 20-byte address or a 33/65-byte public key, got {len(raw)} bytes"
    )


def public_key_from_bytes(raw: bytes) -> ec.EllipticCurvePublicKey:
    """Load a compressed or uncompressed secp256k1 public key"""
    try:
        return ec.EllipticCurvePublicKey.from_encoded_point(ec.SECP256K1(), raw)
    except ValueError as e:
        raise InvalidKeyMaterial(f"Invalid secp256k1 public key: {e}") from e


def address_from_public_key(public_key: bytes) -> str:
    """Checksummed Ethereum address for a SEC1 encoded public key"""
    uncompressed = public_key_from_bytes(public_key).public_bytes(
        encoding=serialization.Encoding.X962,
        format=serialization.PublicFormat.UncompressedPoint,
    )
    return to_checksum_address(keccak(uncompressed[1:])[-ADDRESS_LENGTH:])


def generate_private_key() -> str:
    """Fresh random private key (hex, 0x prefixed)"""
    account = Account.create()
    return ensure_hex_prefix(account.key.hex())


class KeyStore:
    """
    Holds secp256k1 key material indexed by kid and owning DID

    Features:
    - Import private keys and derive their public key once
    - Look up keys by kid or by DID
    - Hand out signing keys to the signer collaborator
    """

    def __init__(self, kms: str = "local"):
        self.kms = kms
        self._lock = threading.RLock()
        self._private: Dict[str, bytes] = {}  # handle -> raw private key
        self._keys: Dict[str, KeyRef] = {}  # kid -> KeyRef
        self._by_did: Dict[str, List[str]] = {}  # did -> [kid]

    # ==================== IMPORT ====================

    def import_key(self, did: str, private_key) -> KeyRef:
        """
        Import a private key under a DID

        Args:
            did: The DID that controls this key
            private_key: hex private key (0x optional)

        Returns:
            KeyRef for the key (existing one if already imported under this DID)
        """
        raw = parse_private_key(private_key)
        public_key = derive_public_key(raw)
        kid = public_key.hex()
        handle = f"{self.kms}:{kid}"

        with self._lock:
            key_ref = self._keys.get(kid)
            if key_ref is None or not key_ref.private_key_handle:
                key_ref = KeyRef(
                    kid=kid,
                    public_key=public_key,
                    private_key_handle=handle,
                    kms=self.kms,
                )
                self._keys[kid] = key_ref
                self._private[handle] = raw
            self._index(did, kid)
        return key_ref

    def import_public_key(self, did: str, public_key: bytes) -> KeyRef:
        """
        Record a public key under a DID without any private material

        A key already held for the same kid is reused as is.
        """
        public_key = public_key_from_bytes(public_key).public_bytes(
            encoding=serialization.Encoding.X962,
            format=serialization.PublicFormat.CompressedPoint,
        )
        kid = public_key.hex()

        with self._lock:
            key_ref = self._keys.get(kid)
            if key_ref is None:
                key_ref = KeyRef(kid=kid, public_key=public_key, private_key_handle="", kms=self.kms)
                self._keys[kid] = key_ref
            self._index(did, kid)
        return key_ref

    def _index(self, did: str, kid: str):
        kids = self._by_did.setdefault(did, [])
        if kid not in kids:
            kids.append(kid)

    # ==================== LOOKUP ====================

    def get_key(self, kid: str) -> Optional[KeyRef]:
        """Get key by kid (0x prefix tolerated)"""
        if not isinstance(kid, str):
            return None
        return self._keys.get(strip_hex_prefix(kid).lower())

    def keys_for(self, did: str) -> List[KeyRef]:
        return [self._keys[kid] for kid in self._by_did.get(did, [])]

    def list_keys(self) -> List[str]:
        return list(self._keys.keys())

    def can_sign(self, key_ref: KeyRef) -> bool:
        return key_ref.private_key_handle in self._private

    def signing_key(self, key_ref: KeyRef) -> ec.EllipticCurvePrivateKey:
        """Private key object for a KeyRef held by this store"""
        raw = self._private.get(key_ref.private_key_handle)
        if raw is None:
            raise KeyError(f"Private key not available for {key_ref.kid}")
        return _load_private_key(raw)

    def export_private_key_hex(self, key_ref: KeyRef) -> str:
        """Used only to hand the node identity's import record to persistence"""
        raw = self._private.get(key_ref.private_key_handle)
        if raw is None:
            raise KeyError(f"Private key not available for {key_ref.kid}")
        return ensure_hex_prefix(raw.hex())

    def export_public_keys(self) -> Dict[str, Dict]:
        """Export all public keys (no private keys)"""
        return {kid: key_ref.to_dict() for kid, key_ref in self._keys.items()}
