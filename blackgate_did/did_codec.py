"""
DID Codec - the only place DID strings are built or taken apart

DID Format: did:<method>:<network>:<0x-address-or-public-key>

    >>> codec = DIDCodec("ethr", "blackgate")
    >>> codec.to_did("0xAbC")
    'did:ethr:blackgate:0xAbC'
    >>> codec.from_did("did:ethr:blackgate:0xAbC")
    '0xAbC'
"""

from typing import Optional

from .config import settings
from .errors import InvalidDID

DID_SCHEME = "did:"
HEX_PREFIX = "0x"


def ensure_hex_prefix(value: str) -> str:
    """Add a 0x prefix if missing"""
    return value if value.startswith(HEX_PREFIX) else f"{HEX_PREFIX}{value}"


def strip_hex_prefix(value: str) -> str:
    return value[len(HEX_PREFIX):] if value.startswith(HEX_PREFIX) else value


class DIDCodec:
    """
    Bidirectional mapping between DIDs and raw addresses / public keys.

    Both directions round-trip: ``from_did(to_did(a)) == a`` for any 0x-prefixed
    address, and ``to_did(from_did(d)) == d`` for any DID of the form
    ``did:<method>:<network>:0x...``.
    """

    def __init__(self, method: Optional[str] = None, network: Optional[str] = None):
        self.method = method or settings.DID_METHOD
        self.network = network or settings.DID_NETWORK

    @property
    def prefix(self) -> str:
        return f"{DID_SCHEME}{self.method}:{self.network}:"

    @property
    def method_prefix(self) -> str:
        return f"{DID_SCHEME}{self.method}:"

    def to_did(self, value: str) -> str:
        """
        Normalize a holder value into a fully qualified DID

        Args:
            value: Bare address (with or without 0x), or any DID

        Returns:
            The DID unchanged if ``value`` already is one, else did:<method>:<network>:<0x-address>
        """
        if not isinstance(value, str) or not value:
            raise InvalidDID("Invalid holder DID: must be a non-empty string")
        if value.startswith(DID_SCHEME):
            return value
        if not strip_hex_prefix(value):
            raise InvalidDID(f"Invalid holder DID: no address in {value!r}")
        return f"{self.prefix}{ensure_hex_prefix(value)}"

    def from_did(self, did: str) -> str:
        """
        Extract the 0x-prefixed address or public key from a DID

        Accepts did:<method>:<network>:<key> and the short did:<method>:<key> form.
        """
        if not isinstance(did, str) or not did:
            raise InvalidDID("Invalid DID: must be a non-empty string")

        if did.startswith(self.prefix):
            raw = did[len(self.prefix):]
        elif did.startswith(self.method_prefix):
            raw = did[len(self.method_prefix):]
            if ":" in raw:
                # did:<method>:<other-network>:<key>
                raw = raw.rsplit(":", 1)[1]
        elif did.startswith(DID_SCHEME):
            raise InvalidDID(f"Unsupported DID method for {did}, expected {self.method_prefix}")
        else:
            raw = did

        if not raw or raw == HEX_PREFIX:
            raise InvalidDID(f"DID has no key part: {did}")
        return ensure_hex_prefix(raw)

    def is_local_method(self, did: str) -> bool:
        return isinstance(did, str) and did.startswith(self.method_prefix)


default_codec = DIDCodec()


def to_did(value: str) -> str:
    return default_codec.to_did(value)


def from_did(did: str) -> str:
    return default_codec.from_did(did)
