"""
Presentation Builder
====================

Composes a normalized credential, the holder identity, verifier, challenge,
domain and timing into a presentation payload ready for the signer.

The holder is always the DID of the imported Identifier, never the raw holder
string found in the credential, so a presentation is only ever built for a
holder whose private key is available to sign it.
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Sequence, Tuple

from .config import settings
from .credential_normalizer import NormalizedCredential
from .did_manager import Identifier
from .errors import MissingCredential, MissingSigningKey
from .jwt_proof import ProofFormat, presentation_to_jwt_claims
from .key_manager import KeyRef
from .timing import Timing, compute_timing

logger = logging.getLogger(__name__)

PRESENTATION_CONTEXT = [
    "https://www.w3.org/2018/credentials/v1",
    "https://www.w3.org/2018/credentials/examples/v1",
]
PRESENTATION_TYPE = ["VerifiablePresentation"]


def new_challenge() -> str:
    return str(uuid.uuid4())


@dataclass(frozen=True)
class PresentationRequest:
    """A presentation payload plus everything the signer needs"""
    presentation: Dict[str, Any]
    holder: str
    verifiers: Tuple[str, ...]
    challenge: str
    domain: Optional[str]
    key_ref: KeyRef
    timing: Timing
    proof_format: ProofFormat = ProofFormat.JWT
    warnings: Tuple[str, ...] = field(default_factory=tuple)

    def signing_payload(self) -> Dict[str, Any]:
        """JWT claims to hand to the signer"""
        return presentation_to_jwt_claims(self.presentation, self.challenge, self.domain)


class PresentationBuilder:
    def __init__(self, format_version: Optional[str] = None,
                 default_expiration_hours: Optional[float] = None):
        self.format_version = format_version or settings.PRESENTATION_FORMAT_VERSION
        self.default_expiration_hours = (
            default_expiration_hours or settings.PRESENTATION_EXPIRATION_HOURS
        )

    def build(
        self,
        normalized: Optional[NormalizedCredential],
        identifier: Optional[Identifier],
        challenge: Optional[str] = None,
        domain: Optional[str] = None,
        expiration_hours: Optional[float] = None,
        supplemental_proofs: Sequence[Any] = (),
        now: Optional[float] = None,
    ) -> PresentationRequest:
        """
        Assemble the presentation payload

        Args:
            normalized: Output of normalize_credential
            identifier: Imported holder identity; its first key signs
            challenge: Anti-replay token, generated when not supplied
            domain: Optional domain binding
            expiration_hours: Validity window (default from settings)
            supplemental_proofs: Opaque extra proofs carried alongside the credential

        Raises:
            MissingCredential, MissingSigningKey
        """
        if normalized is None or not normalized.actual_credential:
            raise MissingCredential("Verifiable credential is required")
        if identifier is None or not identifier.keys:
            raise MissingSigningKey("Holder identity has no signing key")

        if expiration_hours is None:
            expiration_hours = self.default_expiration_hours
        timing = compute_timing(normalized.actual_credential, expiration_hours, now=now)

        verifiers = (normalized.verifier,) if normalized.verifier else ()
        challenge = challenge or new_challenge()
        supplemental_proofs = list(supplemental_proofs or [])
        created = datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")

        presentation = {
            "@context": list(PRESENTATION_CONTEXT),
            "type": list(PRESENTATION_TYPE),
            "holder": identifier.did,
            "verifier": list(verifiers),
            "verifiableCredential": [normalized.actual_credential],
            "iat": timing.iat,
            "nbf": timing.nbf,
            "expirationDate": timing.expiration_date,
            "supplementalProofs": supplemental_proofs,
            "metadata": {
                "version": self.format_version,
                "created": created,
                "supplementalProofCount": len(supplemental_proofs),
            },
        }

        logger.info(
            "Built presentation for holder %s (verifier=%s, expires=%s)",
            identifier.did, normalized.verifier, timing.expiration_date,
        )
        return PresentationRequest(
            presentation=presentation,
            holder=identifier.did,
            verifiers=verifiers,
            challenge=challenge,
            domain=domain,
            key_ref=identifier.keys[0],
            timing=timing,
            warnings=timing.warnings,
        )
