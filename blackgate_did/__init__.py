"""
Blackgate DID Credential Engine
================================

Issues, presents and verifies W3C Verifiable Credentials bound to did:ethr
identities, signed as ES256K JWTs (JwtProof2020)

Components:
- IdentityRegistry: Imports, creates and persists did:ethr identities
- KeyStore: Holds secp256k1 key material
- normalize_credential: Reads credentials of any supported shape
- PresentationBuilder: Assembles presentation payloads
- CredentialIssuer: Issues Verifiable Credentials
- Verifier: Verifies credentials and presentations
- DIDService: Main integration service

Standards:
- W3C DID Core 1.0: https://www.w3.org/TR/did-core/
- W3C Verifiable Credentials: https://www.w3.org/TR/vc-data-model/
"""

from .did_codec import DIDCodec, from_did, to_did
from .did_manager import DIDDocument, Identifier, IdentityRegistry
from .key_manager import Curve, KeyRef, KeyStore
from .persistence import IdentityRecord, JsonFilePersistence, MemoryPersistence
from .credential_normalizer import (
    CredentialShape,
    HolderSource,
    NormalizedCredential,
    normalize_credential,
)
from .timing import Timing, compute_timing
from .jwt_proof import JwtSignatureVerifier, JwtSigner, Proof, ProofFormat
from .presentation_builder import PresentationBuilder, PresentationRequest
from .resolver import ChainedDIDResolver, HttpDIDResolver, LocalDIDResolver
from .credential_issuer import Credential, CredentialIssuer
from .credential_verifier import VerificationReason, VerificationResult, Verifier
from .did_service import DIDService, PresentationInput
from .errors import (
    DIDSystemError,
    HolderNotFound,
    IdentityImportFailed,
    InvalidDID,
    InvalidKeyMaterial,
    InvalidTiming,
    MalformedCredential,
    MissingCredential,
    MissingPrivateKey,
    MissingSigningKey,
    PresentationCreationFailed,
    ResolutionFailed,
    SigningFailed,
    VerificationProcessingError,
)

__version__ = "1.0.0"
__all__ = [
    # Core DID
    "DIDCodec",
    "to_did",
    "from_did",
    "DIDDocument",
    "Identifier",
    "IdentityRegistry",
    "IdentityRecord",
    "JsonFilePersistence",
    "MemoryPersistence",

    # Keys
    "Curve",
    "KeyRef",
    "KeyStore",

    # Credentials & presentations
    "CredentialShape",
    "HolderSource",
    "NormalizedCredential",
    "normalize_credential",
    "Timing",
    "compute_timing",
    "Proof",
    "ProofFormat",
    "JwtSigner",
    "JwtSignatureVerifier",
    "PresentationBuilder",
    "PresentationRequest",
    "Credential",
    "CredentialIssuer",
    "Verifier",
    "VerificationReason",
    "VerificationResult",

    # Resolution
    "LocalDIDResolver",
    "HttpDIDResolver",
    "ChainedDIDResolver",

    # Service
    "DIDService",
    "PresentationInput",

    # Errors
    "DIDSystemError",
    "HolderNotFound",
    "IdentityImportFailed",
    "InvalidDID",
    "InvalidKeyMaterial",
    "InvalidTiming",
    "MalformedCredential",
    "MissingCredential",
    "MissingPrivateKey",
    "MissingSigningKey",
    "PresentationCreationFailed",
    "ResolutionFailed",
    "SigningFailed",
    "VerificationProcessingError",
]
