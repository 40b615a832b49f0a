"""
Error taxonomy for the DID credential engine.

Every error carries a stable ``code`` that the HTTP layer reports back to clients.
"""

from typing import Optional


class DIDSystemError(Exception):
    """Base class for all errors raised by blackgate_did"""
    code = "INTERNAL_ERROR"


class InvalidKeyMaterial(DIDSystemError, ValueError):
    """Private key is not 32 bytes of hex, or the public key/address does not match it"""
    code = "INVALID_PRIVATE_KEY"


class InvalidDID(DIDSystemError, ValueError):
    """Value cannot be decoded as a DID of the configured method"""
    code = "INVALID_HOLDER"


class MalformedCredential(DIDSystemError, ValueError):
    """Credential structure cannot be read"""
    code = "INVALID_CREDENTIAL"


class HolderNotFound(DIDSystemError, ValueError):
    """None of the holder extraction strategies matched"""
    code = "INVALID_HOLDER"


class MissingCredential(DIDSystemError, ValueError):
    code = "MISSING_CREDENTIAL"


class MissingSigningKey(DIDSystemError):
    code = "MISSING_SIGNING_KEY"


class MissingPrivateKey(MissingSigningKey, ValueError):
    """Presentation request came without the holder's private key"""
    code = "MISSING_PRIVATE_KEY"


class InvalidTiming(DIDSystemError, ValueError):
    code = "INVALID_TIMING"


class IdentityImportFailed(DIDSystemError):
    """Wraps key material and DID codec errors raised while importing a holder"""
    code = "DID_IMPORT_FAILED"


class SigningFailed(DIDSystemError):
    code = "SIGNING_FAILED"


class ResolutionFailed(DIDSystemError):
    """DID resolver unreachable, timed out, or the DID is unknown"""
    code = "RESOLUTION_FAILED"

    def __init__(self, message: str, did: Optional[str] = None, not_found: bool = False):
        super().__init__(message)
        self.did = did
        self.not_found = not_found


class VerificationProcessingError(DIDSystemError):
    """
    Proof cannot be evaluated at all (wrong format, no key reference, undecodable JWT).

    Distinct from a verification that completes with ``verified=False``.
    """
    code = "MALFORMED_PROOF"


class PresentationCreationFailed(DIDSystemError):
    """
    Single error surfaced by presentation creation.

    ``code`` is taken from the underlying cause so callers can tell a bad
    credential from a bad private key; the cause is also chained as ``__cause__``.
    """

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.cause = cause
        if isinstance(cause, DIDSystemError):
            self.code = cause.code
            # import failures report the code of the key or DID error they wrap
            if isinstance(cause, IdentityImportFailed) and isinstance(
                cause.__cause__, (InvalidKeyMaterial, InvalidDID)
            ):
                self.code = cause.__cause__.code
        else:
            self.code = DIDSystemError.code
