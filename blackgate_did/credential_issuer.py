"""
Verifiable Credentials Issuer
=============================

Issues JWT-signed Verifiable Credentials from identities held by the registry,
following the W3C Verifiable Credentials Data Model 1.1

Reference: https://www.w3.org/TR/vc-data-model/
"""

import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from .did_codec import DIDCodec, default_codec
from .did_manager import IdentityRegistry
from .errors import InvalidDID, MalformedCredential, MissingSigningKey
from .jwt_proof import JwtSigner, credential_to_jwt_claims
from .timing import format_timestamp, parse_timestamp

logger = logging.getLogger(__name__)

CREDENTIAL_CONTEXT = [
    "https://www.w3.org/2018/credentials/v1",
]
CREDENTIAL_TYPE = ["VerifiableCredential"]


@dataclass(frozen=True)
class Credential:
    """
    W3C Verifiable Credential (unsigned)

    A credential containing claims about a subject, made by an issuer.
    """
    issuer: str  # Issuer's DID
    subject: str  # Subject's DID
    claims: Mapping[str, Any] = field(default_factory=dict)
    issuance_date: str = ""
    expiration_date: Optional[str] = None
    id: str = ""
    type: List[str] = field(default_factory=lambda: list(CREDENTIAL_TYPE))

    def validate(self):
        """Raise MalformedCredential unless the credential invariants hold"""
        if not self.issuer or not self.issuer.startswith("did:"):
            raise MalformedCredential(f"Issuer must be a DID, got {self.issuer!r}")
        if not self.subject or not self.subject.startswith("did:"):
            raise MalformedCredential(f"Subject must be a DID, got {self.subject!r}")
        issued = parse_timestamp(self.issuance_date)
        if issued is None:
            raise MalformedCredential(f"Invalid issuance date: {self.issuance_date!r}")
        if self.expiration_date is not None:
            expires = parse_timestamp(self.expiration_date)
            if expires is None:
                raise MalformedCredential(f"Invalid expiration date: {self.expiration_date!r}")
            if expires < issued:
                raise MalformedCredential("Expiration date is before issuance date")

    def to_dict(self) -> Dict[str, Any]:
        """Convert to W3C VC JSON format"""
        vc = {
            "@context": list(CREDENTIAL_CONTEXT),
            "type": list(self.type),
            "issuer": self.issuer,
            "issuanceDate": self.issuance_date,
            "credentialSubject": {"id": self.subject, **self.claims},
        }
        if self.id:
            vc["id"] = self.id
        if self.expiration_date:
            vc["expirationDate"] = self.expiration_date
        return vc


class CredentialIssuer:
    """
    Issues Verifiable Credentials signed as JWTs

    Features:
    - Issue credentials from any locally held issuer identity
    - Issue credentials from the node identity with form-style claims
    """

    def __init__(
        self,
        registry: IdentityRegistry,
        signer: Optional[JwtSigner] = None,
        codec: Optional[DIDCodec] = None,
    ):
        self.registry = registry
        self.signer = signer or JwtSigner(registry.key_store)
        self.codec = codec or registry.codec or default_codec
        self._issued_count = 0

    # ==================== CREDENTIAL ISSUANCE ====================

    def create_credential(
        self,
        issuer_did: str,
        subject_did: str,
        claims: Optional[Mapping[str, Any]] = None,
        expiration_date: Optional[str] = None,
        now: Optional[float] = None,
    ) -> Dict[str, Any]:
        """
        Issue a Verifiable Credential

        Args:
            issuer_did: DID of the issuer; must be held by the registry
            subject_did: DID (or bare address) of the subject
            claims: Claims about the subject
            expiration_date: Optional ISO 8601 expiry
            now: Unix time override for the issuance date

        Returns:
            The credential dict with a JwtProof2020 proof
        """
        if claims is None:
            claims = {}
        if not isinstance(claims, Mapping):
            raise MalformedCredential("Credential claims must be an object")

        try:
            issuer = self.codec.to_did(issuer_did)
            subject = self.codec.to_did(subject_did)
        except InvalidDID as e:
            raise MalformedCredential(str(e)) from e

        credential = Credential(
            issuer=issuer,
            subject=subject,
            claims={k: v for k, v in claims.items() if k != "id"},
            issuance_date=format_timestamp(time.time() if now is None else now),
            expiration_date=expiration_date,
            id=f"urn:uuid:{uuid.uuid4()}",
        )
        credential.validate()

        identifier = self.registry.find(issuer)
        signing_keys = self.registry.signing_keys(identifier) if identifier else []
        if not signing_keys:
            raise MissingSigningKey(f"No signing key held for issuer {issuer}")

        vc = credential.to_dict()
        proof = self.signer.sign(credential_to_jwt_claims(vc), signing_keys[0])
        vc["proof"] = proof.to_document_proof()

        self._issued_count += 1
        logger.info("Issued credential %s from %s to %s", credential.id, issuer, subject)
        return vc

    def issue_node_credential(
        self,
        form_data: Mapping[str, Any],
        network_info: Optional[Any] = None,
    ) -> Dict[str, Any]:
        """
        Issue a credential from the node identity about itself

        Empty form values (None or "") are dropped; network_info is kept as is.
        """
        node = self.registry.node_identifier
        if node is None:
            raise MissingSigningKey("Node identity is not set up")
        if not isinstance(form_data, Mapping):
            raise MalformedCredential("formData must be an object")

        claims = {k: v for k, v in form_data.items() if v is not None and v != ""}
        if network_info:
            claims["networkInfo"] = network_info
        subject = claims.pop("id", None) or node.did
        return self.create_credential(node.did, subject, claims)

    def get_statistics(self) -> Dict[str, int]:
        return {"total_issued": self._issued_count}
