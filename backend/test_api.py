"""
API Tests
=========

Fog node routes exercised through FastAPI's TestClient
"""

import inspect

import pytest
from eth_account import Account
from fastapi.routing import APIRoute
from fastapi.testclient import TestClient

import backend.api as api
from blackgate_did import DIDService, MemoryPersistence

HOLDER_KEY = "0x" + "11" * 32
HOLDER_ADDRESS = Account.from_key(HOLDER_KEY).address
HOLDER_DID = f"did:ethr:blackgate:{HOLDER_ADDRESS}"


class BrokenPersistence:
    def load(self):
        raise RuntimeError("Identity record is unreadable")

    def save(self, record):
        raise AssertionError("must not save")


class TestAPI:
    """Test the HTTP layer"""

    def setup_method(self):
        api.did_service = DIDService(persistence=MemoryPersistence())
        self.client = TestClient(api.app)
        self.client.__enter__()
        self.node_did = api.did_service.registry.node_identifier.did

    def teardown_method(self):
        self.client.__exit__(None, None, None)
        api.did_service = None

    def issue(self, subject=HOLDER_DID):
        response = self.client.post("/issue-credential", json={
            "issuerDid": self.node_did,
            "subjectDid": subject,
            "credentialData": {"name": "Alice"},
        })
        assert response.status_code == 200
        return response.json()["verifiableCredential"]

    def create_vp(self, **overrides):
        body = {"vc": self.issue(), "privateKey": HOLDER_KEY}
        body.update(overrides)
        return self.client.post("/create-vp", json=body)

    # ==================== NODE ====================

    def test_root(self):
        response = self.client.get("/")
        assert response.status_code == 200
        assert response.json()["did"] == self.node_did
        print(f"✅ Node DID: {self.node_did}")

    def test_setup_fog_node(self):
        first = self.client.get("/setup-fog-node").json()
        second = self.client.get("/setup-fog-node").json()

        assert first["identifier"]["did"] == self.node_did
        assert first == second
        assert "privateKey" not in str(first)

    def test_startup_fails_without_identity(self):
        self.client.__exit__(None, None, None)
        api.did_service = DIDService(persistence=BrokenPersistence())

        with pytest.raises(RuntimeError):
            with TestClient(api.app):
                pass

        api.did_service = DIDService(persistence=MemoryPersistence())
        self.client = TestClient(api.app)
        self.client.__enter__()

    # ==================== CREDENTIALS ====================

    def test_issue_vc(self):
        response = self.client.post("/issue-vc", json={
            "formData": {"name": "Fog", "location": "", "owner": None},
            "networkInfo": {"chainId": 1337},
        })
        assert response.status_code == 200
        vc = response.json()["verifiableCredential"]

        assert vc["issuer"] == self.node_did
        assert vc["credentialSubject"]["name"] == "Fog"
        assert "location" not in vc["credentialSubject"]
        assert vc["credentialSubject"]["networkInfo"] == {"chainId": 1337}
        assert vc["proof"]["type"] == "JwtProof2020"

    def test_issue_and_verify_credential(self):
        vc = self.issue()

        response = self.client.post("/verify-credential", json={"credential": vc})
        assert response.status_code == 200
        assert response.json()["verified"] is True

        response = self.client.post("/verify-vc", json={"credential": [vc]})
        assert response.status_code == 200
        assert response.json()["resolvedIssuer"] == self.node_did
        print("✅ Credential issued and verified")

    def test_issue_credential_unknown_issuer(self):
        response = self.client.post("/issue-credential", json={
            "issuerDid": HOLDER_DID,
            "subjectDid": self.node_did,
            "credentialData": {},
        })
        assert response.status_code == 400
        assert response.json()["code"] == "MISSING_SIGNING_KEY"

    def test_verify_credential_requires_credential(self):
        assert self.client.post("/verify-credential", json={}).status_code == 400
        assert self.client.post("/verify-vc", json={"credential": []}).status_code == 400

    # ==================== PRESENTATIONS ====================

    def test_create_and_verify_presentation(self):
        response = self.create_vp(challenge="c-1", domain="verifier.example", smt_proofs=[{"root": "0x01"}])
        assert response.status_code == 200
        body = response.json()
        vp = body["verifiablePresentation"]

        assert vp["holder"] == HOLDER_DID
        assert body["metadata"]["supplemental_proofs_included"] == 1

        response = self.client.post("/verify-vp", json={
            "presentation": vp, "challenge": "c-1", "domain": "verifier.example",
        })
        assert response.status_code == 200
        assert response.json()["verified"] is True

        response = self.client.post("/verify-vp", json={"presentation": vp, "challenge": "c-2"})
        assert response.json()["reason"] == "challenge_mismatch"

    def test_verify_presentation_body(self):
        vp = self.create_vp().json()["verifiablePresentation"]

        # the first verifier is the expected domain
        response = self.client.post("/verify-vp", json=vp)
        assert response.status_code == 200
        assert response.json()["verified"] is True

    def test_create_vp_errors(self):
        cases = [
            ({"vc": None}, "MISSING_CREDENTIAL"),
            ({"privateKey": None}, "MISSING_PRIVATE_KEY"),
            ({"privateKey": "0x1234"}, "INVALID_PRIVATE_KEY"),
            ({"vc": {"credentialSubject": {"id": "did:example:abc"}}}, "INVALID_HOLDER"),
            ({"vc": {"credentialSubject": {"name": "x"}}}, "INVALID_HOLDER"),
            ({"vc": "not-a-credential"}, "INVALID_CREDENTIAL"),
            ({"expirationHours": -1}, "INVALID_TIMING"),
        ]
        for overrides, code in cases:
            response = self.create_vp(**overrides)
            assert response.status_code == 400, overrides
            assert response.json()["code"] == code

    def test_verify_vp_malformed_proof(self):
        vp = self.create_vp().json()["verifiablePresentation"]
        vp["proof"] = {"type": "Ed25519Signature2020"}

        response = self.client.post("/verify-vp", json={"presentation": vp})
        assert response.status_code == 400
        assert response.json()["code"] == "MALFORMED_PROOF"

    def test_holder_cannot_issue_after_presentation(self):
        assert self.create_vp().status_code == 200

        response = self.client.post("/issue-credential", json={
            "issuerDid": HOLDER_DID,
            "subjectDid": self.node_did,
            "credentialData": {"role": "admin"},
        })
        assert response.status_code == 400
        assert response.json()["code"] == "MISSING_SIGNING_KEY"

    def test_tampered_credential_fails_verification(self):
        vc = self.issue()
        vc["credentialSubject"]["name"] = "Mallory"

        response = self.client.post("/verify-credential", json={"credential": vc})
        assert response.status_code == 200
        assert response.json()["verified"] is False
        assert response.json()["reason"] == "payload_mismatch"

    def test_numeric_key_reference_is_rejected(self):
        vc = self.issue()
        proof = {"format": "jwt", "keyRef": 123, "signature": vc["proof"]["jwt"]}

        response = self.client.post("/verify-credential", json={"credential": vc, "proof": proof})
        assert response.status_code == 400
        assert response.json()["code"] == "MALFORMED_PROOF"

    # ==================== DID RESOLUTION ====================

    def test_resolve_did(self):
        response = self.client.get(f"/resolve-did/{self.node_did}")
        assert response.status_code == 200
        assert response.json()["id"] == self.node_did

        response = self.client.get("/resolve-did-doc", params={"did": self.node_did})
        assert response.status_code == 200
        assert response.json()["didDocument"]["id"] == self.node_did

    def test_resolve_unknown_did(self):
        response = self.client.get("/resolve-did-doc", params={"did": HOLDER_DID})
        assert response.status_code == 404
        assert response.json()["code"] == "RESOLUTION_FAILED"

        assert self.client.get("/resolve-did-doc").status_code == 400

    def test_service_routes_run_in_threadpool(self):
        # the service blocks on remote DID resolution
        for route in api.app.routes:
            if isinstance(route, APIRoute) and route.path != "/":
                assert not inspect.iscoroutinefunction(route.endpoint), route.path
