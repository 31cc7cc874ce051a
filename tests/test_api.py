"""
FastAPI endpoint tests for the Deed Shield API.

Uses httpx + FastAPI TestClient — no real server needed, no LLM calls. The
engine is built over the synthetic registry with in-memory verifiers.
"""

from __future__ import annotations

import base64

import api
import pytest
from api import app
from fastapi.testclient import TestClient

from deed_shield.engine import DeedShieldEngine
from deed_shield.lifecycle import LocalLedgerAnchorProvider, PortableAnchorManager
from deed_shield.mocks import MockCountyVerifier, MockStateNotaryVerifier
from deed_shield.synthetic import generate_bundle

client = TestClient(app)


@pytest.fixture(autouse=True)
def engine(synthetic) -> DeedShieldEngine:
    """Fresh engine per test (bypasses lifespan)."""
    api._engine = DeedShieldEngine(
        synthetic.registry,
        county=MockCountyVerifier(),
        notary=MockStateNotaryVerifier(),
        anchors=PortableAnchorManager(LocalLedgerAnchorProvider()),
    )
    yield api._engine
    api._engine = None


def _issue(bundle) -> dict:
    resp = client.post("/verify", json=bundle.to_wire())
    assert resp.status_code == 200
    return resp.json()


class TestHealthEndpoint:
    def test_health_returns_200(self) -> None:
        resp = client.get("/health")
        assert resp.status_code == 200

    def test_health_response_shape(self) -> None:
        data = client.get("/health").json()
        assert data["status"] == "healthy"
        assert data["version"] == "1.0.0"
        assert data["registry_version"] == "1.0"
        assert data["notaries_loaded"] == 5

    def test_503_before_startup(self) -> None:
        api._engine = None
        assert client.get("/health").status_code == 503


class TestVerifyEndpoint:
    def test_clean_bundle_is_allowed(self, synthetic) -> None:
        data = _issue(generate_bundle(synthetic, "NOTARY-1"))
        assert data["receiptVersion"] == "2.0"
        assert data["decision"] == "ALLOW"
        assert data["reasons"] == []
        assert data["anchor"]["status"] == "PENDING"
        assert data["revocation"]["status"] == "ACTIVE"

    def test_locked_parcel_is_blocked(self, synthetic) -> None:
        data = _issue(generate_bundle(synthetic, "NOTARY-1", parcel_id="LOCKED-999"))
        assert data["decision"] == "BLOCK"
        assert "PROPERTY_LOCKED" in data["reasons"]

    def test_deprecated_fields_on_request(self, synthetic) -> None:
        bundle = generate_bundle(synthetic, "NOTARY-2", transaction_type="quitclaim", policy_profile="STRICT_CA")
        resp = client.post("/verify", params={"include_deprecated": "true"}, json=bundle.to_wire())
        data = resp.json()
        assert data["deprecated"]["riskScore"] >= 95
        assert data["deprecated"]["revoked"] is False

    def test_document_hash_mismatch_is_400(self, synthetic) -> None:
        wire = generate_bundle(synthetic, "NOTARY-1", document=b"%PDF-1.4 deed").to_wire()
        wire["doc"]["pdfBase64"] = base64.b64encode(b"%PDF-1.4 forged").decode()

        resp = client.post("/verify", json=wire)
        assert resp.status_code == 400
        assert resp.json()["error"] == "DOC_HASH_MISMATCH"

    def test_malformed_bundle_is_422(self) -> None:
        assert client.post("/verify", json={"bundleId": "B-1"}).status_code == 422


class TestReceiptEndpoints:
    def test_get_receipt(self, synthetic) -> None:
        issued = _issue(generate_bundle(synthetic, "NOTARY-1"))
        data = client.get(f"/receipts/{issued['receiptId']}").json()

        assert data["receipt"]["receiptHash"] == issued["receiptHash"]
        assert data["anchorStatus"] == "PENDING"
        assert data["revocationStatus"] == "ACTIVE"

    def test_unknown_receipt_is_404(self) -> None:
        resp = client.get("/receipts/does-not-exist")
        assert resp.status_code == 404
        assert resp.json()["error"] == "RECEIPT_NOT_FOUND"

    def test_list_receipts(self, synthetic) -> None:
        _issue(generate_bundle(synthetic, "NOTARY-1"))
        _issue(generate_bundle(synthetic, "NOTARY-2"))
        assert len(client.get("/receipts").json()) == 2
        assert len(client.get("/receipts", params={"limit": 1}).json()) == 1

    def test_verify_receipt(self, synthetic) -> None:
        issued = _issue(generate_bundle(synthetic, "NOTARY-1"))
        data = client.post(f"/receipts/{issued['receiptId']}/verify").json()

        assert data["verified"] is True
        assert data["recomputed_hash"] == data["stored_hash"] == issued["receiptHash"]
        assert data["revoked"] is False

    def test_anchor_is_idempotent(self, synthetic) -> None:
        receipt_id = _issue(generate_bundle(synthetic, "NOTARY-1"))["receiptId"]
        first = client.post(f"/receipts/{receipt_id}/anchor").json()
        second = client.post(f"/receipts/{receipt_id}/anchor").json()

        assert first["newly_anchored"] is True
        assert second["newly_anchored"] is False
        assert second["tx_hash"] == first["tx_hash"]
        assert client.get(f"/receipts/{receipt_id}").json()["anchorStatus"] == "ANCHORED"

    def test_revoke_then_verify(self, synthetic) -> None:
        receipt_id = _issue(generate_bundle(synthetic, "NOTARY-1"))["receiptId"]
        first = client.post(f"/receipts/{receipt_id}/revoke", json={"reason": "Fraud reported"}).json()
        second = client.post(f"/receipts/{receipt_id}/revoke").json()

        assert first["status"] == "REVOKED"
        assert second["status"] == "ALREADY_REVOKED"
        assert second["revoked_at"] == first["revoked_at"]

        integrity = client.post(f"/receipts/{receipt_id}/verify").json()
        assert integrity["verified"] is True
        assert integrity["revoked"] is True
