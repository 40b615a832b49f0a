"""
DID resolution collaborators

- LocalDIDResolver: identities held by the IdentityRegistry
- HttpDIDResolver: universal-resolver compatible HTTP endpoint, bounded by a timeout
- ChainedDIDResolver: first resolver that knows the DID wins
"""

import logging
from typing import Optional, Protocol
from urllib.parse import quote

import httpx

from .did_manager import DIDDocument, IdentityRegistry
from .errors import ResolutionFailed

logger = logging.getLogger(__name__)


class DIDResolver(Protocol):
    def resolve(self, did: str) -> Optional[DIDDocument]: ...


class LocalDIDResolver:
    def __init__(self, registry: IdentityRegistry):
        self.registry = registry

    def resolve(self, did: str) -> Optional[DIDDocument]:
        return self.registry.resolve_document(did)


class HttpDIDResolver:
    """
    Resolves DIDs through ``GET {base_url}/1.0/identifiers/{did}``

    Returns None for a 404, raises ResolutionFailed when the resolver is
    unreachable, times out or answers with anything else.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 5.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    def resolve(self, did: str) -> Optional[DIDDocument]:
        url = f"{self.base_url}/1.0/identifiers/{quote(did, safe=':')}"
        try:
            with httpx.Client(timeout=self.timeout, transport=self._transport) as client:
                response = client.get(url, headers={"Accept": "application/did+ld+json, application/json"})
        except httpx.TimeoutException as e:
            raise ResolutionFailed(f"DID resolution timed out for {did}", did=did) from e
        except httpx.HTTPError as e:
            raise ResolutionFailed(f"DID resolver unreachable: {e}", did=did) from e

        if response.status_code == 404:
            return None
        if response.status_code != 200:
            raise ResolutionFailed(
                f"DID resolver returned HTTP {response.status_code} for {did}", did=did
            )

        try:
            return DIDDocument.from_dict(response.json())
        except (ValueError, KeyError, TypeError) as e:
            raise ResolutionFailed(f"Invalid DID document for {did}: {e}", did=did) from e


class ChainedDIDResolver:
    def __init__(self, *resolvers: DIDResolver):
        self.resolvers = resolvers

    def resolve(self, did: str) -> Optional[DIDDocument]:
        for resolver in self.resolvers:
            document = resolver.resolve(did)
            if document is not None:
                return document
        logger.info("DID not found by any resolver: %s", did)
        return None
