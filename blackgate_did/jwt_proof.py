"""
JWT proof format (JwtProof2020) for credentials and presentations

- JwtSigner: the signing collaborator, ES256K compact JWS over the claims
- JwtSignatureVerifier: the signature verification collaborator
- Claim mapping between W3C documents and their JWT encoding
"""

import base64
import json
import logging
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Tuple, Union

from jwcrypto import jwk, jwt
from jwcrypto.common import JWException

from .errors import SigningFailed, VerificationProcessingError
from .key_manager import KeyRef, KeyStore, public_key_from_bytes
from .timing import format_timestamp, parse_timestamp

logger = logging.getLogger(__name__)

JWT_ALG = "ES256K"
JWT_PROOF_TYPE = "JwtProof2020"


class ProofFormat(Enum):
    JWT = "jwt"


@dataclass(frozen=True)
class Proof:
    """Signature and metadata attached to a credential or presentation"""
    format: ProofFormat
    key_ref: str  # kid
    signature: str  # compact JWT

    def to_dict(self) -> Dict[str, str]:
        return {"format": self.format.value, "keyRef": self.key_ref, "signature": self.signature}

    def to_document_proof(self) -> Dict[str, str]:
        """The ``proof`` member embedded in a signed document"""
        return {"type": JWT_PROOF_TYPE, "jwt": self.signature}

    @classmethod
    def from_value(cls, value: Union["Proof", Mapping[str, Any], None]) -> "Proof":
        """
        Parse a proof given as a Proof, a {format, keyRef, signature} mapping,
        or a {type: JwtProof2020, jwt} document proof

        Raises:
            VerificationProcessingError: the proof cannot be evaluated at all
        """
        if isinstance(value, Proof):
            proof = value
        elif isinstance(value, Mapping):
            if "format" in value:
                try:
                    proof_format = ProofFormat(value["format"])
                except ValueError:
                    raise VerificationProcessingError(
                        f"Unsupported proof format: {value['format']!r}"
                    ) from None
                proof = cls(
                    format=proof_format,
                    key_ref=value.get("keyRef") or value.get("key_ref") or "",
                    signature=value.get("signature") or "",
                )
            elif value.get("type") == JWT_PROOF_TYPE:
                token = value.get("jwt") or ""
                header, _ = decode_jwt_unverified(token)
                proof = cls(format=ProofFormat.JWT, key_ref=header.get("kid") or "", signature=token)
            else:
                raise VerificationProcessingError(
                    f"Unsupported proof type: {value.get('type')!r}"
                )
        elif value is None:
            raise VerificationProcessingError("Proof is missing")
        else:
            raise VerificationProcessingError("Proof must be an object")

        if not isinstance(proof.key_ref, str) or not proof.key_ref:
            raise VerificationProcessingError("Proof has no key reference")
        if not isinstance(proof.signature, str) or not proof.signature:
            raise VerificationProcessingError("Proof has no signature")
        return proof


# ==================== ENCODING ====================

def _b64url_decode(segment: str) -> bytes:
    return base64.urlsafe_b64decode(segment + "=" * (-len(segment) % 4))


def is_compact_jwt(value: Any) -> bool:
    return isinstance(value, str) and value.count(".") == 2


def decode_jwt_unverified(token: str) -> Tuple[Dict[str, Any], Dict[str, Any]]:
    """
    Split a compact JWT into (header, claims) without checking the signature

    Raises:
        VerificationProcessingError: not a decodable compact JWT
    """
    if not is_compact_jwt(token):
        raise VerificationProcessingError("Invalid JWT format")
    header_b64, payload_b64, _ = token.split(".")
    try:
        header = json.loads(_b64url_decode(header_b64))
        claims = json.loads(_b64url_decode(payload_b64))
    except ValueError as e:
        raise VerificationProcessingError(f"Invalid JWT encoding: {e}") from e
    if not isinstance(header, dict) or not isinstance(claims, dict):
        raise VerificationProcessingError("JWT header and payload must be objects")
    return header, claims


def _epoch(value: Any) -> Optional[int]:
    parsed = parse_timestamp(value)
    return int(parsed.timestamp()) if parsed else None


def embedded_credential(credential: Any) -> Any:
    """JWT credentials travel as their compact JWT inside a presentation"""
    if isinstance(credential, Mapping):
        proof = credential.get("proof")
        if isinstance(proof, Mapping) and proof.get("type") == JWT_PROOF_TYPE and proof.get("jwt"):
            return proof["jwt"]
    return credential


def presentation_to_jwt_claims(
    presentation: Mapping[str, Any],
    challenge: Optional[str] = None,
    domain: Optional[str] = None,
) -> Dict[str, Any]:
    """Map a presentation payload onto VP-JWT claims (iss/aud/nbf/iat/exp/nonce/vp)"""
    vp = {
        key: value
        for key, value in presentation.items()
        if key not in ("holder", "verifier", "iat", "nbf", "expirationDate", "id", "proof")
    }
    vp["verifiableCredential"] = [
        embedded_credential(vc) for vc in presentation.get("verifiableCredential", [])
    ]

    claims: Dict[str, Any] = {
        "vp": vp,
        "iss": presentation["holder"],
        "jti": presentation.get("id") or f"urn:uuid:{uuid.uuid4()}",
    }
    audience = list(presentation.get("verifier") or [])
    if domain and domain not in audience:
        audience.append(domain)
    if audience:
        claims["aud"] = audience
    for name in ("iat", "nbf"):
        if presentation.get(name) is not None:
            claims[name] = presentation[name]
    exp = _epoch(presentation.get("expirationDate"))
    if exp is not None:
        claims["exp"] = exp
    if challenge:
        claims["nonce"] = challenge
    return claims


def credential_to_jwt_claims(credential: Mapping[str, Any]) -> Dict[str, Any]:
    """Map a credential onto VC-JWT claims (iss/sub/nbf/exp/jti/vc)"""
    vc = {
        key: value
        for key, value in credential.items()
        if key not in ("issuer", "issuanceDate", "expirationDate", "id", "proof")
    }
    issuer = credential.get("issuer")
    if isinstance(issuer, Mapping):
        issuer = issuer.get("id") or issuer.get("did")
    claims: Dict[str, Any] = {"vc": vc, "iss": issuer}

    subject = credential.get("credentialSubject")
    if isinstance(subject, Mapping) and isinstance(subject.get("id"), str):
        claims["sub"] = subject["id"]
    if credential.get("id"):
        claims["jti"] = credential["id"]
    nbf = _epoch(credential.get("issuanceDate"))
    if nbf is not None:
        claims["nbf"] = nbf
    exp = _epoch(credential.get("expirationDate"))
    if exp is not None:
        claims["exp"] = exp
    return claims


def jwt_claims_to_credential(claims: Mapping[str, Any]) -> Dict[str, Any]:
    """Inverse of credential_to_jwt_claims for JWT-encoded credentials"""
    vc = claims.get("vc")
    if not isinstance(vc, Mapping):
        raise ValueError("JWT credential has no 'vc' claim")
    credential = dict(vc)

    subject = credential.get("credentialSubject")
    if isinstance(subject, Mapping):
        subject = dict(subject)
        if claims.get("sub") and "id" not in subject:
            subject["id"] = claims["sub"]
        credential["credentialSubject"] = subject
    elif subject is None and claims.get("sub"):
        credential["credentialSubject"] = {"id": claims["sub"]}

    if claims.get("iss") and "issuer" not in credential:
        credential["issuer"] = claims["iss"]
    if claims.get("jti") and "id" not in credential:
        credential["id"] = claims["jti"]
    if isinstance(claims.get("nbf"), (int, float)) and "issuanceDate" not in credential:
        credential["issuanceDate"] = format_timestamp(claims["nbf"])
    if isinstance(claims.get("exp"), (int, float)) and "expirationDate" not in credential:
        credential["expirationDate"] = format_timestamp(claims["exp"])
    return credential


# ==================== SIGNING ====================

class JwtSigner:
    """Signs JWT claims with a key held by the KeyStore"""

    def __init__(self, key_store: KeyStore):
        self.key_store = key_store

    def sign(self, payload: Mapping[str, Any], key_ref: KeyRef) -> Proof:
        """
        Sign ``payload`` as an ES256K compact JWT

        Raises:
            SigningFailed: key not held locally or the JWS library rejected the input
        """
        try:
            key = jwk.JWK.from_pyca(self.key_store.signing_key(key_ref))
            token = jwt.JWT(
                header={"alg": JWT_ALG, "typ": "JWT", "kid": key_ref.kid},
                claims=dict(payload),
                algs=[JWT_ALG],
            )
            token.make_signed_token(key)
            signature = token.serialize()
        except KeyError as e:
            raise SigningFailed(f"Signing key not available: {key_ref.kid}") from e
        except (JWException, TypeError, ValueError) as e:
            raise SigningFailed(f"Failed to sign payload: {e}") from e

        return Proof(format=ProofFormat.JWT, key_ref=key_ref.kid, signature=signature)


class JwtSignatureVerifier:
    """Checks the ES256K signature of a compact JWT against a public key"""

    def verify_signature(self, proof: Proof, public_key: bytes) -> bool:
        """
        Args:
            proof: JWT proof to check
            public_key: SEC1 encoded secp256k1 public key

        Returns:
            True if the signature is valid for that key
        """
        try:
            key = jwk.JWK.from_pyca(public_key_from_bytes(public_key))
            jwt.JWT(
                jwt=proof.signature,
                key=key,
                algs=[JWT_ALG],
                check_claims=False,
                expected_type="JWS",
            )
            return True
        except (JWException, ValueError, TypeError) as e:
            logger.debug("Signature check failed for %s: %s", proof.key_ref, e)
            return False
