"""
Deed Shield — FastAPI Server
============================

Thin request-handling layer over the receipt engine.

Endpoints:
    POST /verify                        Verify a bundle and issue a receipt
    GET  /receipts                      List recent receipts
    GET  /receipts/{id}                 Receipt with anchor/revocation status
    POST /receipts/{id}/verify          Re-derive hash and commitment
    POST /receipts/{id}/anchor          Anchor the receipt hash (idempotent)
    POST /receipts/{id}/revoke          Revoke the receipt (idempotent)
    GET  /health                        Health check / readiness probe

Run:
    uvicorn api:app --reload              # Dev (http://localhost:8000)
    uvicorn api:app --host 0.0.0.0        # Production
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, Optional

from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from deed_shield import __version__
from deed_shield.config import Settings
from deed_shield.engine import DeedShieldEngine, to_v2_verify_response
from deed_shield.exceptions import (
    AnchorProviderError,
    BundleInputError,
    DeedShieldError,
    DocumentHashMismatch,
    ReceiptNotFoundError,
    UnknownAnchorChainError,
)
from deed_shield.models import BundleInput

load_dotenv()


# ─── Application Lifespan ────────────────────────────────────────────

_engine: DeedShieldEngine | None = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the engine (registry + collaborators) on startup."""
    global _engine  # noqa: PLW0603
    _engine = DeedShieldEngine.from_settings(Settings.from_env())
    yield
    _engine = None


# ─── FastAPI App ─────────────────────────────────────────────────────

app = FastAPI(
    title="Deed Shield API",
    description=(
        "Tamper-evident verification receipts for deed-recording bundles. "
        "Trust-registry and seal checks, county and property cross-references, "
        "document fraud-risk scoring, revocation and ledger anchoring."
    ),
    version=__version__,
    lifespan=lifespan,
)

_STATUS_CODES: dict[type[DeedShieldError], int] = {
    BundleInputError: 400,
    DocumentHashMismatch: 400,
    ReceiptNotFoundError: 404,
    UnknownAnchorChainError: 409,
    AnchorProviderError: 502,
}


@app.exception_handler(DeedShieldError)
async def deed_shield_error_handler(request: Request, exc: DeedShieldError) -> JSONResponse:
    status_code = next((code for cls, code in _STATUS_CODES.items() if isinstance(exc, cls)), 500)
    return JSONResponse(
        status_code=status_code,
        content={"error": exc.code, "message": str(exc), "details": exc.details},
    )


# ─── Request / Response Schemas ─────────────────────────────────────


class RevokeRequest(BaseModel):
    reason: str = Field(default="User requested via API", min_length=1)
    revoked_by: Optional[str] = None


class IntegrityResponse(BaseModel):
    verified: bool
    recomputed_hash: str
    stored_hash: str
    inputs_commitment: str
    revoked: bool


class AnchorResponse(BaseModel):
    status: str
    tx_hash: str
    chain_id: str
    block_number: Optional[int] = None
    newly_anchored: bool


class RevokeResponse(BaseModel):
    status: str
    revoked_at: str


class HealthResponse(BaseModel):
    status: str
    version: str
    registry_version: str
    notaries_loaded: int


# ─── Helpers ─────────────────────────────────────────────────────────


def _get_engine() -> DeedShieldEngine:
    if _engine is None:
        raise HTTPException(status_code=503, detail="Engine not initialised")
    return _engine


# ─── Endpoints ───────────────────────────────────────────────────────


@app.post(
    "/verify",
    summary="Verify a deed-recording bundle and issue a receipt",
    tags=["Verification"],
    responses={
        400: {"description": "Malformed document or document hash mismatch"},
        503: {"description": "Engine not yet initialised"},
    },
)
async def verify(bundle: BundleInput, include_deprecated: bool = False) -> dict[str, Any]:
    """Run the full verification and return a receiptVersion 2.0 body.

    - **decision**: ALLOW, FLAG or BLOCK
    - **fraudRisk**: document risk score, band and signals
    - **anchor** / **revocation**: trust-status annotations of the new receipt
    """
    engine = _get_engine()
    issued = await engine.verify_and_issue(bundle)
    status = await engine.receipt_status(issued.receipt.receipt_id)
    return to_v2_verify_response(status, include_deprecated=include_deprecated)


@app.get("/receipts", summary="List recent receipts", tags=["Receipts"])
async def list_receipts(limit: int = 50) -> list[dict[str, Any]]:
    engine = _get_engine()
    return [to_v2_verify_response(status) for status in await engine.list_receipts(limit)]


@app.get(
    "/receipts/{receipt_id}",
    summary="Fetch a receipt with its anchor and revocation status",
    tags=["Receipts"],
    responses={404: {"description": "Receipt not found"}},
)
async def get_receipt(receipt_id: str) -> dict[str, Any]:
    status = await _get_engine().receipt_status(receipt_id)
    body = status.to_wire()
    body["revocationStatus"] = status.revocation_status.value
    return body


@app.post(
    "/receipts/{receipt_id}/verify",
    summary="Re-verify a stored receipt's integrity",
    tags=["Receipts"],
    responses={404: {"description": "Receipt not found"}},
)
async def verify_receipt(receipt_id: str) -> IntegrityResponse:
    """Revoked receipts still verify; ``revoked`` reports trust status separately."""
    engine = _get_engine()
    integrity = await engine.verify_receipt(receipt_id)
    status = await engine.receipt_status(receipt_id)
    return IntegrityResponse(
        verified=integrity.valid,
        recomputed_hash=integrity.recomputed_hash,
        stored_hash=integrity.stored_hash,
        inputs_commitment=integrity.recomputed_commitment,
        revoked=status.revocation is not None,
    )


@app.post(
    "/receipts/{receipt_id}/anchor",
    summary="Anchor a receipt hash to the active ledger",
    tags=["Receipts"],
    responses={
        404: {"description": "Receipt not found"},
        502: {"description": "Anchor provider failed"},
    },
)
async def anchor_receipt(receipt_id: str) -> AnchorResponse:
    outcome = await _get_engine().anchor(receipt_id)
    return AnchorResponse(
        status="ANCHORED",
        tx_hash=outcome.proof.tx_hash,
        chain_id=outcome.proof.chain_id,
        block_number=outcome.proof.block_number,
        newly_anchored=outcome.newly_anchored,
    )


@app.post(
    "/receipts/{receipt_id}/revoke",
    summary="Revoke a receipt",
    tags=["Receipts"],
    responses={404: {"description": "Receipt not found"}},
)
async def revoke_receipt(receipt_id: str, body: Optional[RevokeRequest] = None) -> RevokeResponse:
    body = body or RevokeRequest()
    outcome = await _get_engine().revoke(receipt_id, body.reason, body.revoked_by)
    return RevokeResponse(
        status="REVOKED" if outcome.newly_revoked else "ALREADY_REVOKED",
        revoked_at=outcome.record.revoked_at,
    )


@app.get(
    "/health",
    summary="Health check",
    tags=["System"],
    responses={503: {"description": "Engine not yet initialised"}},
)
def health_check() -> HealthResponse:
    engine = _get_engine()
    return HealthResponse(
        status="healthy",
        version=__version__,
        registry_version=engine.registry.version,
        notaries_loaded=len(engine.registry.notaries),
    )
