"""
Credential Normalizer
=====================

Accepts a credential in any of the shapes clients send and extracts the
canonical (credential, holder, verifier) triple.

Input shapes, first match wins:

    WRAPPED_CREDENTIAL             {"credential": {...}}
    WRAPPED_VERIFIABLE_CREDENTIAL  {"verifiableCredential": {...}}
    JWT                            "eyJ..." (alone or under either wrapper field)
    BARE                           {...}

Holder sources, first match wins:

    SUBJECT_DID     credentialSubject.did (string)
    SUBJECT_ID      credentialSubject.id (string)
    SUBJECT_ARRAY   first credentialSubject[i] with a string did (preferred) or id
    HOLDER_FIELD    holder (string)

Known limitation: SUBJECT_ARRAY only looks at the first identity-bearing subject;
identities of any further subjects are ignored.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Tuple

from .errors import HolderNotFound, MalformedCredential, VerificationProcessingError
from .jwt_proof import decode_jwt_unverified, is_compact_jwt, jwt_claims_to_credential

logger = logging.getLogger(__name__)


class CredentialShape(Enum):
    WRAPPED_CREDENTIAL = "credential"
    WRAPPED_VERIFIABLE_CREDENTIAL = "verifiableCredential"
    JWT = "jwt"
    BARE = "bare"


class HolderSource(Enum):
    SUBJECT_DID = "credentialSubject.did"
    SUBJECT_ID = "credentialSubject.id"
    SUBJECT_ARRAY = "credentialSubject[]"
    HOLDER_FIELD = "holder"


@dataclass(frozen=True)
class NormalizedCredential:
    actual_credential: Dict[str, Any]
    holder: str
    verifier: Optional[str]
    shape: CredentialShape
    holder_source: HolderSource


# ==================== UNWRAP ====================

def unwrap_credential(value: Any) -> Tuple[Dict[str, Any], CredentialShape]:
    """
    Unwrap the credential from its envelope

    Raises:
        MalformedCredential: nothing usable after unwrapping
    """
    if isinstance(value, Mapping) and value.get("credential"):
        inner, shape = value["credential"], CredentialShape.WRAPPED_CREDENTIAL
    elif isinstance(value, Mapping) and value.get("verifiableCredential"):
        inner, shape = value["verifiableCredential"], CredentialShape.WRAPPED_VERIFIABLE_CREDENTIAL
    else:
        inner, shape = value, CredentialShape.BARE

    if not inner:
        raise MalformedCredential("Invalid credential structure: no credential data found")

    if is_compact_jwt(inner):
        try:
            _, claims = decode_jwt_unverified(inner)
            return jwt_claims_to_credential(claims), CredentialShape.JWT
        except (VerificationProcessingError, ValueError) as e:
            raise MalformedCredential(f"Invalid credential structure: {e}") from e

    if not isinstance(inner, Mapping):
        raise MalformedCredential(
            f"Invalid credential structure: expected an object, got {type(inner).__name__}"
        )
    return dict(inner), shape


# ==================== HOLDER / VERIFIER ====================

def _subject_identity(subject: Any) -> Optional[str]:
    if not isinstance(subject, Mapping):
        return None
    for key in ("did", "id"):
        if isinstance(subject.get(key), str) and subject[key]:
            return subject[key]
    return None


def extract_holder(credential: Mapping[str, Any]) -> Tuple[str, HolderSource]:
    """
    Holder DID of a credential, by strategy priority

    Raises:
        HolderNotFound: no strategy matched
    """
    subject = credential.get("credentialSubject")

    if isinstance(subject, Mapping):
        if isinstance(subject.get("did"), str) and subject["did"]:
            return subject["did"], HolderSource.SUBJECT_DID
        if isinstance(subject.get("id"), str) and subject["id"]:
            return subject["id"], HolderSource.SUBJECT_ID
    elif isinstance(subject, (list, tuple)):
        for item in subject:
            identity = _subject_identity(item)
            if identity:
                return identity, HolderSource.SUBJECT_ARRAY

    holder = credential.get("holder")
    if isinstance(holder, str) and holder:
        return holder, HolderSource.HOLDER_FIELD

    raise HolderNotFound("Unable to extract holder DID from credential")


def extract_verifier(credential: Mapping[str, Any]) -> Optional[str]:
    """Issuer of the credential, used as the presentation verifier. May be None."""
    issuer = credential.get("issuer")
    if isinstance(issuer, str):
        return issuer or None
    if isinstance(issuer, Mapping):
        for key in ("id", "did"):
            if key in issuer:
                return issuer[key] if isinstance(issuer[key], str) and issuer[key] else None
    return None


def normalize_credential(value: Any) -> NormalizedCredential:
    """
    Normalize a credential of unknown shape

    Args:
        value: Wrapped, bare or JWT-encoded credential

    Returns:
        NormalizedCredential with the unwrapped credential, holder and verifier
    """
    actual, shape = unwrap_credential(value)
    holder, source = extract_holder(actual)
    verifier = extract_verifier(actual)

    logger.info("Extracted holder: %s (%s), verifier: %s", holder, source.value, verifier)
    return NormalizedCredential(
        actual_credential=actual,
        holder=holder,
        verifier=verifier,
        shape=shape,
        holder_source=source,
    )
