"""
Blackgate DID API
=================

HTTP routes of the fog node over DIDService

    GET  /                     node info
    GET  /setup-fog-node       node identity
    POST /issue-credential     issue a VC from a locally held issuer
    POST /issue-vc             issue a VC from the node identity
    POST /create-vp            create a signed presentation
    POST /verify-credential    verify a VC
    POST /verify-vc            verify a VC ({"credential": [vc]})
    POST /verify-vp            verify a presentation
    GET  /resolve-did/{did}    resolve a DID
    GET  /resolve-did-doc      resolve a DID (?did=)
"""

import logging
import time
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

import uvicorn
from fastapi import Body, FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from blackgate_did import DIDService, __version__
from blackgate_did.config import settings
from blackgate_did.errors import DIDSystemError, ResolutionFailed
from blackgate_did.timing import format_timestamp

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger("BlackgateAPI")

# Codes of errors caused by the request itself
BAD_REQUEST_CODES = {
    "MISSING_CREDENTIAL",
    "MISSING_PRIVATE_KEY",
    "MISSING_SIGNING_KEY",
    "INVALID_CREDENTIAL",
    "INVALID_HOLDER",
    "INVALID_PRIVATE_KEY",
    "INVALID_TIMING",
    "DID_IMPORT_FAILED",
    "MALFORMED_PROOF",
}

did_service: Optional[DIDService] = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    global did_service
    logger.info("Starting Blackgate DID API...")

    if did_service is None:
        did_service = DIDService()
    # a node without an identity cannot serve; let the error abort startup
    identifier = did_service.setup_identity()
    logger.info("Fog node DID: %s", identifier.did)

    yield
    logger.info("Shutting down...")


app = FastAPI(title="Blackgate DID API", version=__version__, lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ============================================================
# REQUEST MODELS
# ============================================================

class IssueCredentialRequest(BaseModel):
    issuerDid: str
    subjectDid: str
    credentialData: Dict[str, Any] = {}
    expirationDate: Optional[str] = None


class IssueVCRequest(BaseModel):
    formData: Dict[str, Any] = {}
    networkInfo: Optional[Any] = None


class CreateVPRequest(BaseModel):
    vc: Optional[Any] = None
    privateKey: Optional[str] = None
    smt_proofs: Optional[List[Any]] = None
    challenge: Optional[str] = None
    domain: Optional[str] = None
    expirationHours: Optional[float] = None


# ============================================================
# ERROR HANDLING
# ============================================================

def status_for(error: DIDSystemError) -> int:
    if isinstance(error, ResolutionFailed):
        return 404 if error.not_found else 502
    return 400 if error.code in BAD_REQUEST_CODES else 500


@app.exception_handler(DIDSystemError)
async def did_system_error_handler(request: Request, error: DIDSystemError):
    status_code = status_for(error)
    if status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, error)
    else:
        logger.warning("%s %s rejected: %s", request.method, request.url.path, error)
    return JSONResponse(
        status_code=status_code,
        content={
            "message": f"Error handling {request.url.path}",
            "error": str(error),
            "code": error.code,
            "timestamp": format_timestamp(time.time()),
        },
    )


def get_service() -> DIDService:
    if did_service is None:
        raise HTTPException(status_code=503, detail="DID Service not available")
    return did_service


# ============================================================
# NODE
# ============================================================

@app.get("/")
async def root():
    """Node info: chain settings and the node DID"""
    return get_service().node_info()


@app.get("/setup-fog-node")
def setup_fog_node():
    identifier = get_service().setup_identity()
    return {"identifier": identifier.to_dict()}


# ============================================================
# CREDENTIALS
# ============================================================

@app.post("/issue-credential")
def issue_credential(body: IssueCredentialRequest):
    credential = get_service().create_credential(
        body.issuerDid,
        body.subjectDid,
        body.credentialData,
        expiration_date=body.expirationDate,
    )
    return {"verifiableCredential": credential}


@app.post("/issue-vc")
def issue_vc(body: IssueVCRequest):
    credential = get_service().issue_node_credential(body.formData, body.networkInfo)
    return {"verifiableCredential": credential}


@app.post("/verify-credential")
def verify_credential(body: Dict[str, Any] = Body(...)):
    credential = body.get("credential")
    if not credential:
        raise HTTPException(status_code=400, detail="credential is required.")
    result = get_service().verify_credential(credential, body.get("proof"))
    return result.to_dict()


@app.post("/verify-vc")
def verify_vc(body: Dict[str, Any] = Body(...)):
    """Verify the first credential of ``{"credential": [vc, ...]}``"""
    credential = body.get("credential")
    if isinstance(credential, list):
        credential = credential[0] if credential else None
    if not credential:
        raise HTTPException(status_code=400, detail="credential is required.")
    result = get_service().verify_credential(credential, body.get("proof"))
    return result.to_dict()


# ============================================================
# PRESENTATIONS
# ============================================================

@app.post("/create-vp")
def create_vp(body: CreateVPRequest):
    """
    Create a Verifiable Presentation for the holder of ``vc``

    The holder's private key is imported for signing and never persisted.
    """
    logger.info(
        "Initiating VP creation (smt_proofs=%d, challenge_provided=%s, domain_provided=%s)",
        len(body.smt_proofs or []), bool(body.challenge), bool(body.domain),
    )
    return get_service().create_presentation(body.model_dump())


@app.post("/verify-vp")
def verify_vp(body: Dict[str, Any] = Body(...)):
    """
    Verify a presentation

    Accepts ``{"presentation": ..., "challenge": ..., "domain": ...}`` or the
    presentation itself, in which case ``nonce`` and the first ``verifier``
    are the expected challenge and domain.
    """
    if "presentation" in body:
        presentation = body["presentation"]
        challenge = body.get("challenge")
        domain = body.get("domain")
    else:
        presentation = body
        challenge = body.get("nonce")
        verifiers = body.get("verifier")
        domain = verifiers[0] if isinstance(verifiers, list) and verifiers else None

    if not presentation:
        raise HTTPException(status_code=400, detail="presentation is required")
    result = get_service().verify_presentation(
        presentation, body.get("proof"), challenge=challenge, domain=domain
    )
    return result.to_dict()


# ============================================================
# DID RESOLUTION
# ============================================================

@app.get("/resolve-did/{did}")
def resolve_did(did: str):
    document = get_service().resolve_did(did)
    return document.to_dict()


@app.get("/resolve-did-doc")
def resolve_did_doc(did: Optional[str] = Query(None)):
    if not did:
        raise HTTPException(status_code=400, detail="DID is required")
    document = get_service().resolve_did(did)
    return {"didDocument": document.to_dict()}


if __name__ == "__main__":
    uvicorn.run(app, host=settings.HOST, port=settings.PORT)
