"""
DID System Integration Service
===============================

Single entry point over the DID engine, used by the HTTP layer:
- Node identity setup
- Credential issuance
- Presentation creation
- Credential / presentation verification
- DID resolution
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Sequence, Union

from .config import DIDSettings, settings
from .credential_issuer import CredentialIssuer
from .credential_normalizer import normalize_credential
from .credential_verifier import VerificationResult, Verifier
from .did_codec import DIDCodec
from .did_manager import DIDDocument, Identifier, IdentityRegistry
from .errors import (
    DIDSystemError,
    IdentityImportFailed,
    InvalidDID,
    InvalidKeyMaterial,
    MissingCredential,
    MissingPrivateKey,
    PresentationCreationFailed,
    ResolutionFailed,
)
from .jwt_proof import JwtSigner
from .key_manager import KeyStore, parse_private_key
from .persistence import IdentityPersistence, JsonFilePersistence
from .presentation_builder import PresentationBuilder
from .resolver import ChainedDIDResolver, DIDResolver, HttpDIDResolver, LocalDIDResolver
from .timing import format_timestamp

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PresentationInput:
    """Inputs of create_presentation"""
    verifiable_credential: Any
    private_key: Optional[str]
    challenge: Optional[str] = None
    domain: Optional[str] = None
    expiration_hours: Optional[float] = None
    supplemental_proofs: Sequence[Any] = field(default_factory=tuple)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "PresentationInput":
        """Accepts the create-vp request body (``vc``, ``privateKey``, ``smt_proofs``, ...)"""
        proofs = data.get("supplementalProofs")
        if proofs is None:
            proofs = data.get("smt_proofs")
        return cls(
            verifiable_credential=data.get("vc") or data.get("verifiableCredential"),
            private_key=data.get("privateKey"),
            challenge=data.get("challenge"),
            domain=data.get("domain"),
            expiration_hours=data.get("expirationHours"),
            supplemental_proofs=tuple(proofs or ()),
        )


class DIDService:
    """
    Main service class for DID operations

    Provides a unified interface for:
    - Node identity management
    - Credential issuance
    - Presentation creation
    - Verification and resolution
    """

    def __init__(
        self,
        registry: Optional[IdentityRegistry] = None,
        persistence: Optional[IdentityPersistence] = None,
        resolver: Optional[DIDResolver] = None,
        config: Optional[DIDSettings] = None,
    ):
        """
        Initialize DID Service

        Args:
            registry: Identity registry (built from config when omitted)
            persistence: Node identity persistence (defaults to the configured JSON file)
            resolver: DID resolver (local, plus HTTP when RESOLVER_URL is set)
            config: Settings override
        """
        self.config = config or settings
        self.codec = DIDCodec(self.config.DID_METHOD, self.config.DID_NETWORK)

        if registry is None:
            registry = IdentityRegistry(
                key_store=KeyStore(self.config.KMS_NAME),
                persistence=persistence or JsonFilePersistence(self.config.CREDENTIALS_FILE),
                codec=self.codec,
            )
        self.registry = registry

        self.resolver = resolver or self._default_resolver()
        self.signer = JwtSigner(self.registry.key_store)
        self.builder = PresentationBuilder(
            format_version=self.config.PRESENTATION_FORMAT_VERSION,
            default_expiration_hours=self.config.PRESENTATION_EXPIRATION_HOURS,
        )
        self.credential_issuer = CredentialIssuer(self.registry, self.signer, self.codec)
        self.verifier = Verifier(self.registry.key_store, self.resolver)

    def _default_resolver(self) -> DIDResolver:
        local = LocalDIDResolver(self.registry)
        if not self.config.RESOLVER_URL:
            return local
        return ChainedDIDResolver(
            local, HttpDIDResolver(self.config.RESOLVER_URL, timeout=self.config.RESOLVER_TIMEOUT)
        )

    # ==================== IDENTITY ====================

    def setup_identity(self) -> Identifier:
        """Node identity, created and persisted on first call"""
        return self.registry.setup_identity()

    def node_info(self) -> Dict[str, Any]:
        node = self.registry.node_identifier
        return {
            "env": {
                "BLOCKCHAIN_RPC_URL": self.config.BLOCKCHAIN_RPC_URL,
                "BLOCKCHAIN_CHAIN_ID": self.config.BLOCKCHAIN_CHAIN_ID,
                "BLOCKCHAIN_DID_REGISTRY_ADDR": self.config.BLOCKCHAIN_DID_REGISTRY_ADDR,
                "DID_METHOD": self.codec.method,
                "DID_NETWORK": self.codec.network,
            },
            "did": node.did if node else None,
            "statistics": self.get_statistics(),
        }

    def resolve_did(self, did: str) -> DIDDocument:
        """
        Resolve DID to DID Document

        Raises:
            InvalidDID: not a DID or address
            ResolutionFailed: resolver failure, or ``not_found`` for an unknown DID
        """
        did = self.codec.to_did(did)
        document = self.resolver.resolve(did)
        if document is None:
            raise ResolutionFailed(f"DID not found: {did}", did=did, not_found=True)
        return document

    # ==================== CREDENTIALS ====================

    def create_credential(
        self,
        issuer_did: str,
        subject_did: str,
        claims: Optional[Mapping[str, Any]] = None,
        expiration_date: Optional[str] = None,
    ) -> Dict[str, Any]:
        return self.credential_issuer.create_credential(
            issuer_did, subject_did, claims, expiration_date=expiration_date
        )

    def issue_node_credential(
        self, form_data: Mapping[str, Any], network_info: Optional[Any] = None
    ) -> Dict[str, Any]:
        return self.credential_issuer.issue_node_credential(form_data, network_info)

    # ==================== PRESENTATIONS ====================

    def create_presentation(
        self,
        request: Union[PresentationInput, Mapping[str, Any]],
        now: Optional[float] = None,
    ) -> Dict[str, Any]:
        """
        Create a signed Verifiable Presentation for the credential's holder

        Args:
            request: PresentationInput or the create-vp request body
            now: Unix time override for the timing engine

        Returns:
            {"verifiablePresentation": {..., "proof": {...}}, "metadata": {...}}

        Raises:
            PresentationCreationFailed: any failure, with the cause chained and
                its code carried over
        """
        started = time.perf_counter()
        if not isinstance(request, PresentationInput):
            request = PresentationInput.from_dict(request)

        try:
            if not request.verifiable_credential:
                raise MissingCredential("Verifiable credential (vc) is required")
            if not request.private_key:
                raise MissingPrivateKey("Private key is required for VP creation")
            parse_private_key(request.private_key)

            normalized = normalize_credential(request.verifiable_credential)
            # the holder key lives only as long as this request
            holder_registry = IdentityRegistry(
                key_store=KeyStore(self.config.KMS_NAME), codec=self.codec
            )
            identifier = self._import_holder(
                holder_registry, normalized.holder, request.private_key
            )
            built = self.builder.build(
                normalized,
                identifier,
                challenge=request.challenge,
                domain=request.domain,
                expiration_hours=request.expiration_hours,
                supplemental_proofs=request.supplemental_proofs,
                now=now,
            )
            signer = JwtSigner(holder_registry.key_store)
            proof = signer.sign(built.signing_payload(), built.key_ref)
            self.registry.register_public_identity(identifier)
        except DIDSystemError as e:
            elapsed = (time.perf_counter() - started) * 1000
            logger.error("VP creation failed after %.0fms: %s", elapsed, e)
            raise PresentationCreationFailed(f"Failed to create presentation: {e}", cause=e) from e

        presentation = dict(built.presentation)
        presentation["proof"] = proof.to_document_proof()
        elapsed = (time.perf_counter() - started) * 1000
        logger.info("VP creation completed successfully in %.0fms", elapsed)

        return {
            "verifiablePresentation": presentation,
            "metadata": {
                "processing_time_ms": round(elapsed, 3),
                "created_at": format_timestamp(time.time()),
                "version": self.builder.format_version,
                "supplemental_proofs_included": len(request.supplemental_proofs),
                "challenge": built.challenge,
                "warnings": list(built.warnings),
            },
        }

    def _import_holder(
        self, registry: IdentityRegistry, holder: str, private_key: str
    ) -> Identifier:
        """Import the holder's identity into ``registry`` with the supplied private key"""
        try:
            public_key_or_address = self.codec.from_did(self.codec.to_did(holder))
            return registry.import_identity(private_key, public_key_or_address)
        except (InvalidDID, InvalidKeyMaterial) as e:
            raise IdentityImportFailed(f"Failed to import DID {holder}: {e}") from e

    # ==================== VERIFICATION ====================

    def verify_credential(
        self, credential: Any, proof: Any = None, now: Optional[float] = None
    ) -> VerificationResult:
        return self.verifier.verify_credential(credential, proof, now=now)

    def verify_presentation(
        self,
        presentation: Any,
        proof: Any = None,
        challenge: Optional[str] = None,
        domain: Optional[str] = None,
        now: Optional[float] = None,
    ) -> VerificationResult:
        return self.verifier.verify_presentation(
            presentation,
            proof,
            expected_challenge=challenge,
            expected_domain=domain,
            now=now,
        )

    # ==================== STATISTICS ====================

    def get_statistics(self) -> Dict[str, Any]:
        """Get overall DID system statistics"""
        return {
            "dids": self.registry.get_statistics(),
            "credentials": self.credential_issuer.get_statistics(),
        }
