"""
Receipt construction and integrity verification.

    inputsCommitment = keccak256(canonicalize(bundleInput))
    receiptHash      = keccak256(canonicalize(receipt without receiptHash))

A receipt is never rewritten after issuance. Anchoring and revocation are
stored beside it, so the hash stays valid forever and a revoked receipt can
still be verified.
"""

from __future__ import annotations

import uuid
from typing import Any, Optional

from .hashing import canonical_digest
from .models import (
    BundleInput,
    DocumentRisk,
    Receipt,
    ReceiptIntegrity,
    VerificationResult,
    ZKPAttestation,
    utc_now_iso,
)

RECEIPT_VERSION = "1.0"
DEFAULT_VERIFIER_ID = "deed-shield"


def compute_inputs_commitment(bundle: BundleInput | dict[str, Any]) -> str:
    return canonical_digest(bundle)


def receipt_body(receipt: Receipt) -> dict[str, Any]:
    """The hashed portion of a receipt: every wire field except receiptHash."""
    body = receipt.to_wire()
    body.pop("receiptHash", None)
    return body


def compute_receipt_hash(body: Receipt | dict[str, Any]) -> str:
    if isinstance(body, Receipt):
        body = receipt_body(body)
    return canonical_digest(body)


def build_receipt(
    bundle: BundleInput,
    verification: VerificationResult,
    verifier_id: str = DEFAULT_VERIFIER_ID,
    fraud_risk: Optional[DocumentRisk] = None,
    zkp_attestation: Optional[ZKPAttestation] = None,
) -> Receipt:
    """Assemble a receipt for a completed verification. The hash is computed last."""
    fields: dict[str, Any] = {
        "receipt_version": RECEIPT_VERSION,
        "receipt_id": str(uuid.uuid4()),
        "created_at": utc_now_iso(),
        "policy_profile": bundle.policy.profile,
        "inputs_commitment": compute_inputs_commitment(bundle),
        "checks": verification.checks,
        "decision": verification.decision,
        "reasons": verification.reasons,
        "risk_score": verification.risk_score,
        "verifier_id": verifier_id,
        "fraud_risk": fraud_risk,
        "zkp_attestation": zkp_attestation,
    }
    unsigned = Receipt(**fields, receipt_hash="")
    return unsigned.model_copy(update={"receipt_hash": compute_receipt_hash(unsigned)})


def verify_receipt_integrity(
    stored: Receipt, original_input: BundleInput | dict[str, Any]
) -> ReceiptIntegrity:
    """Re-derive commitment and hash from stored data and compare with the persisted values.

    The recomputed commitment is substituted into the body before hashing, so
    altered raw input is caught even if the stored commitment field was left
    untouched.
    """
    recomputed_commitment = compute_inputs_commitment(original_input)
    body = receipt_body(stored)
    body["inputsCommitment"] = recomputed_commitment
    recomputed_hash = compute_receipt_hash(body)

    return ReceiptIntegrity(
        valid=(
            recomputed_hash == stored.receipt_hash
            and recomputed_commitment == stored.inputs_commitment
        ),
        recomputed_hash=recomputed_hash,
        recomputed_commitment=recomputed_commitment,
        stored_hash=stored.receipt_hash,
        stored_commitment=stored.inputs_commitment,
    )
