"""
Verifiable Credentials Verifier
================================

Verifies JWT-signed credentials and presentations

Checks, in order (first failure wins):
1. Signature (key from the Key Store, else the DID Resolver)
2. Holder / issuer binding between the document and the signed claims
3. Document payload against the signed vc / vp claims
4. Challenge (constant-time compare against the signed nonce)
5. Domain (must be among the signed audience)
6. Expiry and not-before against the supplied clock

A verification that completes always returns a VerificationResult; only a proof
that cannot be evaluated at all raises VerificationProcessingError.
"""

import hmac
import json
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Tuple

from .errors import ResolutionFailed, VerificationProcessingError
from .jwt_proof import (
    JwtSignatureVerifier,
    Proof,
    ProofFormat,
    credential_to_jwt_claims,
    decode_jwt_unverified,
    embedded_credential,
    is_compact_jwt,
    presentation_to_jwt_claims,
)
from .key_manager import KeyStore
from .resolver import DIDResolver
from .timing import format_timestamp

logger = logging.getLogger(__name__)

NO_EXPIRATION = "no_expiration"


class VerificationReason(Enum):
    """Why a verification returned verified=False"""
    INVALID_SIGNATURE = "invalid_signature"
    HOLDER_MISMATCH = "holder_mismatch"
    ISSUER_MISMATCH = "issuer_mismatch"
    CHALLENGE_MISMATCH = "challenge_mismatch"
    DOMAIN_MISMATCH = "domain_mismatch"
    EXPIRED = "expired"
    NOT_YET_VALID = "not_yet_valid"
    UNKNOWN_KEY = "unknown_key"
    PAYLOAD_MISMATCH = "payload_mismatch"


@dataclass(frozen=True)
class VerificationResult:
    """Result of credential / presentation verification"""
    verified: bool
    reason: Optional[VerificationReason]
    resolved_issuer: Optional[str]
    checked_at: str
    checks: Dict[str, bool] = field(default_factory=dict)
    warnings: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "verified": self.verified,
            "reason": self.reason.value if self.reason else None,
            "resolvedIssuer": self.resolved_issuer,
            "checkedAt": self.checked_at,
            "checks": dict(self.checks),
            "warnings": list(self.warnings),
        }


def _audience(claims: Mapping[str, Any]) -> Tuple[str, ...]:
    aud = claims.get("aud")
    if isinstance(aud, str):
        return (aud,)
    if isinstance(aud, (list, tuple)):
        return tuple(a for a in aud if isinstance(a, str))
    return ()


def _numeric(claims: Mapping[str, Any], name: str) -> Optional[float]:
    value = claims.get(name)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return value


def _same_json(left: Any, right: Any) -> bool:
    try:
        return json.dumps(left, sort_keys=True) == json.dumps(right, sort_keys=True)
    except (TypeError, ValueError):
        return False


def _claims_match(
    expected: Mapping[str, Any], signed: Mapping[str, Any], ignored: Tuple[str, ...] = ()
) -> bool:
    """Every claim the document maps onto must equal the signed one"""
    return all(
        name in signed and _same_json(value, signed[name])
        for name, value in expected.items()
        if name not in ignored and value is not None
    )


def _credential_matches(document: Mapping[str, Any], signed: Mapping[str, Any]) -> bool:
    expected = credential_to_jwt_claims(document)
    vc, signed_vc = expected["vc"], signed.get("vc")
    subject = vc.get("credentialSubject")
    signed_subject = signed_vc.get("credentialSubject") if isinstance(signed_vc, Mapping) else None
    # JWT issuers may carry the subject id in ``sub`` only
    if (
        isinstance(subject, Mapping)
        and isinstance(signed_subject, Mapping)
        and "id" in subject
        and "id" not in signed_subject
        and subject["id"] == signed.get("sub")
    ):
        vc["credentialSubject"] = {k: v for k, v in subject.items() if k != "id"}
    return _claims_match(expected, signed)


def _presentation_matches(document: Mapping[str, Any], signed: Mapping[str, Any]) -> bool:
    """
    Document members against the signed VP claims

    jti, nonce and aud are not derivable from the document; its verifiers must
    still be among the signed audience. JWT credentials inside the document
    must match their own signed claims.
    """
    credentials = document.get("verifiableCredential", [])
    verifiers = document.get("verifier") or []
    if isinstance(verifiers, str):
        verifiers = [verifiers]
    if not isinstance(credentials, list) or not isinstance(verifiers, list):
        return False

    expected = presentation_to_jwt_claims(dict(document, holder=document.get("holder")))
    if not _claims_match(expected, signed, ignored=("jti", "nonce", "aud")):
        return False
    audience = _audience(signed)
    if not all(verifier in audience for verifier in verifiers):
        return False

    for credential in credentials:
        token = embedded_credential(credential)
        if isinstance(credential, Mapping) and is_compact_jwt(token):
            _, credential_claims = decode_jwt_unverified(token)
            if not _credential_matches(credential, credential_claims):
                return False
    return True


class Verifier:
    """
    Verifies credentials and presentations

    Verification is pure with respect to its inputs and the clock value: the
    same document, proof, expectations and ``now`` always give the same result.
    """

    def __init__(
        self,
        key_store: KeyStore,
        resolver: Optional[DIDResolver] = None,
        signature_verifier: Optional[JwtSignatureVerifier] = None,
    ):
        self.key_store = key_store
        self.resolver = resolver
        self.signature_verifier = signature_verifier or JwtSignatureVerifier()

    # ==================== VERIFICATION ====================

    def verify_presentation(
        self,
        presentation: Any,
        proof: Any = None,
        expected_challenge: Optional[str] = None,
        expected_domain: Optional[str] = None,
        now: Optional[float] = None,
    ) -> VerificationResult:
        """
        Verify a Verifiable Presentation

        Args:
            presentation: Presentation dict (its ``proof`` is used when ``proof``
                is omitted), a create-vp response, or a compact VP-JWT
            proof: Proof, {format, keyRef, signature} or {type: JwtProof2020, jwt}
            expected_challenge: Must equal the signed nonce when given
            expected_domain: Must be among the signed audience when given
            now: Unix time to check validity against

        Returns:
            VerificationResult

        Raises:
            VerificationProcessingError: proof cannot be evaluated
            ResolutionFailed: key lookup needed the resolver and it failed
        """
        document, proof = self._document_and_proof(presentation, proof, "verifiablePresentation")
        _, claims = decode_jwt_unverified(proof.signature)
        checked_at = format_timestamp(time.time() if now is None else now)
        checks: Dict[str, bool] = {}

        issuer = claims.get("iss") if isinstance(claims.get("iss"), str) else None
        failure = self._check_signature(proof, issuer, checks)
        if failure:
            return self._result(failure, issuer, checked_at, checks)

        holder = document.get("holder") if document else None
        checks["holder"] = holder is None or holder == issuer
        if not checks["holder"]:
            return self._result(VerificationReason.HOLDER_MISMATCH, issuer, checked_at, checks)

        if document is not None:
            checks["payload"] = _presentation_matches(document, claims)
            if not checks["payload"]:
                return self._result(
                    VerificationReason.PAYLOAD_MISMATCH, issuer, checked_at, checks
                )

        if expected_challenge is not None:
            nonce = claims.get("nonce")
            checks["challenge"] = isinstance(nonce, str) and hmac.compare_digest(
                nonce.encode(), expected_challenge.encode()
            )
            if not checks["challenge"]:
                return self._result(
                    VerificationReason.CHALLENGE_MISMATCH, issuer, checked_at, checks
                )

        if expected_domain is not None:
            checks["domain"] = expected_domain in _audience(claims)
            if not checks["domain"]:
                return self._result(VerificationReason.DOMAIN_MISMATCH, issuer, checked_at, checks)

        return self._check_validity(claims, issuer, checked_at, checks, now)

    def verify_credential(
        self,
        credential: Any,
        proof: Any = None,
        now: Optional[float] = None,
    ) -> VerificationResult:
        """
        Verify a Verifiable Credential

        Accepts the credential dict (with its ``proof``), a ``{"credential": ...}``
        wrapper or a compact VC-JWT.
        """
        document, proof = self._document_and_proof(credential, proof, "credential")
        _, claims = decode_jwt_unverified(proof.signature)
        checked_at = format_timestamp(time.time() if now is None else now)
        checks: Dict[str, bool] = {}

        issuer = claims.get("iss") if isinstance(claims.get("iss"), str) else None
        failure = self._check_signature(proof, issuer, checks)
        if failure:
            return self._result(failure, issuer, checked_at, checks)

        document_issuer = document.get("issuer") if document else None
        if isinstance(document_issuer, Mapping):
            document_issuer = document_issuer.get("id") or document_issuer.get("did")
        checks["issuer"] = document_issuer is None or document_issuer == issuer
        if not checks["issuer"]:
            return self._result(VerificationReason.ISSUER_MISMATCH, issuer, checked_at, checks)

        if document is not None:
            checks["payload"] = _credential_matches(document, claims)
            if not checks["payload"]:
                return self._result(
                    VerificationReason.PAYLOAD_MISMATCH, issuer, checked_at, checks
                )

        return self._check_validity(claims, issuer, checked_at, checks, now)

    # ==================== HELPERS ====================

    @staticmethod
    def _document_and_proof(
        value: Any, proof: Any, wrapper_key: str
    ) -> Tuple[Optional[Mapping[str, Any]], Proof]:
        """Split the input into the (optional) document and its parsed proof"""
        if isinstance(value, Mapping) and value.get(wrapper_key):
            value = value[wrapper_key]

        if is_compact_jwt(value):
            if proof is None:
                header, _ = decode_jwt_unverified(value)
                proof = Proof(
                    format=ProofFormat.JWT, key_ref=header.get("kid") or "", signature=value
                )
            return None, Proof.from_value(proof)

        if not isinstance(value, Mapping):
            raise VerificationProcessingError("Document must be an object or a compact JWT")
        if proof is None:
            proof = value.get("proof")
        return value, Proof.from_value(proof)

    def _public_key(self, proof: Proof, issuer: Optional[str]) -> Optional[bytes]:
        """
        Public key for the proof's kid

        Local keys are only trusted for the DID they were imported under;
        anything else goes through the resolver.
        """
        key_ref = self.key_store.get_key(proof.key_ref)
        if key_ref is not None and issuer and key_ref in self.key_store.keys_for(issuer):
            return key_ref.public_key

        if self.resolver is None or not issuer:
            return None
        document = self.resolver.resolve(issuer)
        if document is None:
            raise ResolutionFailed(f"DID not found: {issuer}", did=issuer, not_found=True)
        return document.find_public_key(proof.key_ref)

    def _check_signature(
        self, proof: Proof, issuer: Optional[str], checks: Dict[str, bool]
    ) -> Optional[VerificationReason]:
        public_key = self._public_key(proof, issuer)
        if public_key is None:
            checks["key"] = False
            return VerificationReason.UNKNOWN_KEY
        checks["key"] = True
        checks["signature"] = self.signature_verifier.verify_signature(proof, public_key)
        if not checks["signature"]:
            return VerificationReason.INVALID_SIGNATURE
        return None

    def _check_validity(
        self,
        claims: Mapping[str, Any],
        issuer: Optional[str],
        checked_at: str,
        checks: Dict[str, bool],
        now: Optional[float],
    ) -> VerificationResult:
        current = time.time() if now is None else now
        warnings = []

        exp = _numeric(claims, "exp")
        if exp is None:
            warnings.append(NO_EXPIRATION)
        checks["expiration"] = exp is None or exp > current
        if not checks["expiration"]:
            return self._result(VerificationReason.EXPIRED, issuer, checked_at, checks, warnings)

        nbf = _numeric(claims, "nbf")
        checks["not_before"] = nbf is None or nbf <= current
        if not checks["not_before"]:
            return self._result(
                VerificationReason.NOT_YET_VALID, issuer, checked_at, checks, warnings
            )

        return self._result(None, issuer, checked_at, checks, warnings)

    @staticmethod
    def _result(
        reason: Optional[VerificationReason],
        issuer: Optional[str],
        checked_at: str,
        checks: Dict[str, bool],
        warnings=(),
    ) -> VerificationResult:
        if reason is not None:
            logger.info("Verification failed for %s: %s", issuer, reason.value)
        return VerificationResult(
            verified=reason is None,
            reason=reason,
            resolved_issuer=issuer,
            checked_at=checked_at,
            checks=dict(checks),
            warnings=tuple(warnings),
        )
