"""
DID Manager - Identity Registry for did:ethr identities

DID Format: did:ethr:<network>:<0x-public-key-or-address>

Reference: https://www.w3.org/TR/did-core/
"""

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from .config import settings
from .did_codec import DIDCodec, default_codec, ensure_hex_prefix, strip_hex_prefix
from .errors import InvalidKeyMaterial
from .key_manager import (
    KeyRef,
    KeyStore,
    address_from_public_key,
    decode_public_key_or_address,
    derive_address,
    derive_public_key,
    generate_private_key,
    parse_private_key,
)
from .persistence import IdentityPersistence, IdentityRecord

logger = logging.getLogger(__name__)

VERIFICATION_KEY_TYPE = "EcdsaSecp256k1VerificationKey2019"


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


@dataclass(frozen=True)
class Identifier:
    """A DID and its keys (public-only for identities signed for elsewhere)"""
    did: str
    keys: Tuple[KeyRef, ...]
    alias: Optional[str] = None
    provider: str = "did:ethr"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "did": self.did,
            "alias": self.alias,
            "provider": self.provider,
            "keys": [key.to_dict() for key in self.keys],
        }


@dataclass
class DIDDocument:
    """
    W3C DID Document

    Reference: https://www.w3.org/TR/did-core/#core-properties
    """
    id: str  # The DID
    controller: Optional[str] = None
    verification_method: List[Dict] = field(default_factory=list)
    authentication: List[str] = field(default_factory=list)
    assertion_method: List[str] = field(default_factory=list)
    service: List[Dict] = field(default_factory=list)

    def __post_init__(self):
        if not self.controller:
            self.controller = self.id

    def to_dict(self) -> Dict[str, Any]:
        """Convert to W3C DID Document JSON format"""
        doc = {
            "@context": [
                "https://www.w3.org/ns/did/v1",
                "https://w3id.org/security/suites/secp256k1-2019/v1",
            ],
            "id": self.id,
            "controller": self.controller,
            "verificationMethod": self.verification_method,
            "authentication": self.authentication,
            "assertionMethod": self.assertion_method,
        }
        if self.service:
            doc["service"] = self.service
        return doc

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DIDDocument":
        """Create DIDDocument from a DID document or a resolution result"""
        if "didDocument" in data:
            data = data["didDocument"] or {}
        return cls(
            id=data["id"],
            controller=data.get("controller"),
            verification_method=data.get("verificationMethod", []),
            authentication=data.get("authentication", []),
            assertion_method=data.get("assertionMethod", []),
            service=data.get("service", []),
        )

    def find_public_key(self, kid: str) -> Optional[bytes]:
        """
        Public key of the verification method matching ``kid``

        Matches on the method id (full or fragment) or on the key hex itself.
        Address-only methods (blockchainAccountId / ethereumAddress) match when
        the kid is a public key hashing to that account.
        """
        if not isinstance(kid, str):
            return None
        wanted = strip_hex_prefix(kid.lower())
        for vm in self.verification_method:
            public_key_hex = vm.get("publicKeyHex")
            if not public_key_hex:
                continue
            vm_id = vm.get("id", "")
            fragment = vm_id.rsplit("#", 1)[-1]
            key_hex = strip_hex_prefix(public_key_hex.lower())
            if kid in (vm_id, fragment) or wanted == key_hex:
                return bytes.fromhex(key_hex)

        try:
            kind, candidate = decode_public_key_or_address(wanted)
            if kind != "public_key":
                return None
            address = address_from_public_key(candidate).lower()
        except InvalidKeyMaterial:
            return None
        for vm in self.verification_method:
            account = vm.get("blockchainAccountId") or vm.get("ethereumAddress") or ""
            # CAIP-10 "eip155:1:0xabc" or legacy "0xabc@eip155:1"
            account_address = account.split("@", 1)[0].rsplit(":", 1)[-1].lower()
            if account_address == address:
                return candidate
        return None


class IdentityRegistry:
    """
    Maps DIDs to their keys, creates and imports identities

    Features:
    - Import an identity from a private key and its public key/address
    - Create a fresh identity
    - One-time node identity setup, persisted and serialized across threads
    - DID documents for locally held identities
    """

    def __init__(
        self,
        key_store: Optional[KeyStore] = None,
        persistence: Optional[IdentityPersistence] = None,
        codec: Optional[DIDCodec] = None,
    ):
        self.key_store = key_store or KeyStore()
        self.persistence = persistence
        self.codec = codec or default_codec
        self._identifiers: Dict[str, Identifier] = {}
        self._node_did: Optional[str] = None
        self._lock = threading.RLock()
        self._setup_lock = threading.Lock()

    # ==================== IMPORT / CREATE ====================

    def import_identity(
        self,
        private_key,
        public_key_or_address: str,
        alias: Optional[str] = None,
    ) -> Identifier:
        """
        Import an identity from existing key material

        Args:
            private_key: secp256k1 private key, 64 hex chars (0x optional)
            public_key_or_address: Address or public key the DID is built from

        Returns:
            Identifier for did:<method>:<network>:<0x-public-key-or-address>

        Raises:
            InvalidKeyMaterial: malformed private key, or it does not control
                the given public key / address
        """
        raw = parse_private_key(private_key)
        self._check_key_matches(raw, public_key_or_address)

        did = self.codec.to_did(ensure_hex_prefix(public_key_or_address))

        with self._lock:
            key_ref = self.key_store.import_key(did, raw)
            existing = self._identifiers.get(did)
            if existing is not None:
                if key_ref in existing.keys:
                    return existing
                # a public-only key for the same kid is replaced in place
                keys = tuple(key_ref if key.kid == key_ref.kid else key for key in existing.keys)
                if key_ref not in keys:
                    keys += (key_ref,)
                identifier = Identifier(
                    did=did,
                    keys=keys,
                    alias=existing.alias,
                    provider=existing.provider,
                )
            else:
                identifier = Identifier(
                    did=did,
                    keys=(key_ref,),
                    alias=alias,
                    provider=f"did:{self.codec.method}:{self.codec.network}",
                )
            self._identifiers[did] = identifier

        logger.info("Imported DID: %s", did)
        return identifier

    def register_public_identity(self, identifier: Identifier) -> Identifier:
        """
        Record the public keys of an identity signed for elsewhere

        The DID then resolves and verifies locally, but cannot sign here
        unless its private key is imported separately.
        """
        with self._lock:
            existing = self._identifiers.get(identifier.did)
            keys = existing.keys if existing is not None else ()
            for key in identifier.keys:
                if all(held.kid != key.kid for held in keys):
                    keys += (self.key_store.import_public_key(identifier.did, key.public_key),)
            registered = Identifier(
                did=identifier.did,
                keys=keys,
                alias=existing.alias if existing is not None else identifier.alias,
                provider=existing.provider if existing is not None else identifier.provider,
            )
            self._identifiers[identifier.did] = registered
        return registered

    def signing_keys(self, identifier: Identifier) -> List[KeyRef]:
        """Keys of ``identifier`` whose private material this registry holds"""
        return [key for key in identifier.keys if self.key_store.can_sign(key)]

    def create_identity(self, alias: Optional[str] = None) -> Identifier:
        """Generate fresh key material and import it under its compressed public key"""
        record = self._new_record(alias or "default")
        return self.import_identity(
            record.private_key_hex, record.public_key_or_address, alias=record.alias
        )

    def _new_record(self, alias: str) -> IdentityRecord:
        private_key = generate_private_key()
        public_key = derive_public_key(parse_private_key(private_key))
        return IdentityRecord(
            private_key_hex=private_key,
            public_key_or_address=ensure_hex_prefix(public_key.hex()),
            alias=alias,
        )

    @staticmethod
    def _check_key_matches(raw: bytes, public_key_or_address: str):
        kind, expected = decode_public_key_or_address(public_key_or_address)
        if kind == "address":
            derived = bytes.fromhex(derive_address(raw)[2:])
        elif len(expected) == 33:
            derived = derive_public_key(raw, compressed=True)
        else:
            derived = derive_public_key(raw, compressed=False)
        if derived != expected:
            raise InvalidKeyMaterial(
                f"Private key does not control {kind.replace('_', ' ')} {public_key_or_address}"
            )

    # ==================== NODE IDENTITY ====================

    def setup_identity(self) -> Identifier:
        """
        Return the node identity, creating and persisting it on first use

        Concurrent callers are serialized; the first successful setup wins and
        every later call returns the same Identifier.
        """
        with self._setup_lock:
            if self._node_did is not None:
                return self._identifiers[self._node_did]

            record = self.persistence.load() if self.persistence else None
            if record is not None:
                identifier = self.import_identity(
                    record.private_key_hex, record.public_key_or_address, alias=record.alias
                )
                logger.info("Using existing DID: %s", identifier.did)
            else:
                logger.warning("No existing credential data found, creating new DID")
                record = self._new_record("default")
                # saved before import so a failed save leaves no identity behind
                if self.persistence is not None:
                    self.persistence.save(record)
                identifier = self.import_identity(
                    record.private_key_hex, record.public_key_or_address, alias=record.alias
                )

            self._node_did = identifier.did
            return identifier

    @property
    def node_identifier(self) -> Optional[Identifier]:
        if self._node_did is None:
            return None
        return self._identifiers.get(self._node_did)

    # ==================== LOOKUP ====================

    def find(self, did: str) -> Optional[Identifier]:
        return self._identifiers.get(did)

    def list_all(self) -> List[Identifier]:
        """List all managed identifiers, node identity first"""
        with self._lock:
            identifiers = list(self._identifiers.values())
        identifiers.sort(key=lambda i: i.did != self._node_did)
        return identifiers

    def find_key(self, kid: str) -> Optional[KeyRef]:
        return self.key_store.get_key(kid)

    def resolve_document(self, did: str) -> Optional[DIDDocument]:
        """
        DID Document for a locally held identity

        Args:
            did: The DID to resolve

        Returns:
            DIDDocument if the DID is held by this registry, None otherwise
        """
        identifier = self.find(did)
        if identifier is None:
            return None

        chain_id = settings.BLOCKCHAIN_CHAIN_ID or 1
        verification_methods = []
        for index, key in enumerate(identifier.keys):
            fragment = "controllerKey" if index == 0 else f"delegate-{index}"
            verification_methods.append({
                "id": f"{did}#{fragment}",
                "type": VERIFICATION_KEY_TYPE,
                "controller": did,
                "publicKeyHex": key.public_key_hex,
                "blockchainAccountId": (
                    f"eip155:{chain_id}:{address_from_public_key(key.public_key)}"
                ),
            })
        method_ids = [vm["id"] for vm in verification_methods]
        return DIDDocument(
            id=did,
            verification_method=verification_methods,
            authentication=method_ids,
            assertion_method=method_ids,
        )

    def get_statistics(self) -> Dict[str, Any]:
        """Get statistics about managed DIDs"""
        return {
            "total": len(self._identifiers),
            "node_did": self._node_did,
            "keys": len(self.key_store.list_keys()),
            "checked_at": _utc_now_iso(),
        }
