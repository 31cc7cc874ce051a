"""
Receipt issuance engine — orchestrates one verification end to end.

Pipeline:
  1. Integrity gate     — attached document bytes must hash to doc.docHash
  2. Verification       — trust chain, policy heuristics, external verifiers ┐ concurrent
  3. Fraud risk         — document forensics/layout/pattern signals          ┘
  4. Compliance         — recording-standards audit of the document (optional)
  5. Attestation        — compliance commitment, conformance = decision is ALLOW
  6. Receipt            — built, hashed and handed to the ReceiptStore

The engine holds no per-request state: every call builds its own
VerificationContext over the shared read-only registry snapshot.
"""

from __future__ import annotations

import asyncio
import logging
import math
from dataclasses import dataclass
from typing import Any, Optional

from .attestation import DeterministicComplianceCommitment
from .compliance import ComplianceValidator, OpenAIComplianceValidator
from .config import Settings
from .crosscheck import AttomPropertyVerifier, HttpAttomClient
from .exceptions import DocumentHashMismatch
from .hashing import keccak256_bytes
from .lifecycle import (
    AnchorOutcome,
    InMemoryReceiptStore,
    LocalLedgerAnchorProvider,
    PortableAnchorManager,
    ReceiptLifecycle,
    ReceiptStore,
    RevocationOutcome,
)
from .mocks import MockCountyVerifier
from .models import (
    BundleInput,
    CheckResult,
    CheckStatus,
    ComplianceStatus,
    ComplianceVerdict,
    Decision,
    DocumentRisk,
    Receipt,
    ReceiptIntegrity,
    ReceiptStatus,
    RiskBand,
    TrustRegistry,
    VerificationResult,
)
from .pipeline import ReasonCode, VerificationContext, extend_result, verify_bundle
from .receipt import build_receipt, compute_inputs_commitment
from .registry import load_registry
from .risk import RiskContext, RiskEngine
from .synthetic import create_synthetic_registry
from .transport import attempt_timeout
from .verifiers import (
    CountyVerifier,
    HttpNotaryVerifier,
    HttpPropertyVerifier,
    NotaryVerifier,
    PropertyVerifier,
)

logger = logging.getLogger(__name__)

COMPLIANCE_CHECK_ID = "compliance-validator"
V2_RECEIPT_VERSION = "2.0"
DEFAULT_ANCHOR_BACKEND = "EVM_LOCAL"


@dataclass(frozen=True)
class IssuedReceipt:
    verification: VerificationResult
    receipt: Receipt


class DeedShieldEngine:
    """Verifies bundles, issues receipts and manages their trust status."""

    def __init__(
        self,
        registry: TrustRegistry,
        *,
        county: Optional[CountyVerifier] = None,
        notary: Optional[NotaryVerifier] = None,
        property: Optional[PropertyVerifier] = None,
        compliance: Optional[ComplianceValidator] = None,
        risk_engine: Optional[RiskEngine] = None,
        attestor: Optional[DeterministicComplianceCommitment] = None,
        store: Optional[ReceiptStore] = None,
        anchors: Optional[PortableAnchorManager] = None,
        verifier_id: str = "deed-shield",
        call_timeout: float = 5.0,
        deadline: Optional[float] = None,
    ):
        self.registry = registry
        self.county = county
        self.notary = notary
        self.property = property
        self.compliance = compliance
        self.risk_engine = risk_engine or RiskEngine()
        self.attestor = attestor or DeterministicComplianceCommitment()
        self.lifecycle = ReceiptLifecycle(
            store=store or InMemoryReceiptStore(),
            anchors=anchors,
            default_revoker=verifier_id,
        )
        self.verifier_id = verifier_id
        self.call_timeout = call_timeout
        self.deadline = deadline

    @classmethod
    def from_settings(cls, settings: Settings, store: Optional[ReceiptStore] = None) -> DeedShieldEngine:
        """Wire the production collaborators named by ``settings``.

        Without a registry path the engine runs on a synthetic registry.
        Owner lookups go to ATTOM when its key is set, otherwise to the
        property API, otherwise are skipped.
        """
        if settings.registry_path:
            registry = load_registry(settings.registry_path)
        else:
            logger.warning("No DEED_SHIELD_REGISTRY_PATH set; using a synthetic trust registry")
            registry = create_synthetic_registry().registry

        http_timeout = attempt_timeout(settings.call_timeout)

        property_verifier: Optional[PropertyVerifier] = None
        if settings.attom_api_key:
            property_verifier = AttomPropertyVerifier(
                HttpAttomClient(settings.attom_api_key, base_url=settings.attom_base_url, timeout=http_timeout),
                threshold=settings.owner_match_threshold,
            )
        elif settings.property_api_key:
            property_verifier = HttpPropertyVerifier(
                settings.property_api_key, timeout=http_timeout, threshold=settings.owner_match_threshold
            )

        return cls(
            registry,
            county=MockCountyVerifier(),
            notary=HttpNotaryVerifier(settings.notary_api_key, timeout=http_timeout),
            property=property_verifier,
            compliance=OpenAIComplianceValidator(api_key=settings.openai_api_key or ""),
            attestor=DeterministicComplianceCommitment(settings.proof_secret),
            store=store,
            anchors=PortableAnchorManager(LocalLedgerAnchorProvider()),
            verifier_id=settings.verifier_id,
            call_timeout=settings.call_timeout,
            deadline=settings.verification_deadline,
        )

    # ─── Issuance ────────────────────────────────────────────────────

    async def verify_and_issue(self, bundle: BundleInput) -> IssuedReceipt:
        """Run the full issuance flow for one bundle.

        Raises:
            BundleInputError: malformed base64 document or timestamp.
            DocumentHashMismatch: attached bytes do not hash to doc.docHash.
        """
        document = bundle.doc.raw_document_bytes
        if document is not None:
            calculated = keccak256_bytes(document)
            if calculated != bundle.doc.doc_hash.lower():
                raise DocumentHashMismatch(
                    f"Document hash mismatch. Calculated: {calculated}, Provided: {bundle.doc.doc_hash}",
                    details={"calculated": calculated, "provided": bundle.doc.doc_hash},
                )

        context = VerificationContext(
            registry=self.registry,
            county=self.county,
            notary=self.notary,
            property=self.property,
            call_timeout=self.call_timeout,
            deadline=self.deadline,
        )
        risk_context = RiskContext(
            policy_profile=bundle.policy.profile,
            notary_state=bundle.ron.commission_state,
        )

        verification, fraud_risk = await asyncio.gather(
            verify_bundle(bundle, context),
            self._analyze_document(document, risk_context),
        )

        if document is not None and self.compliance is not None:
            verification = await self._apply_compliance(verification, document)

        inputs_commitment = compute_inputs_commitment(bundle)
        attestation = self.attestor.generate(
            bundle.policy.profile,
            verification.decision == Decision.ALLOW,
            inputs_commitment,
        )
        receipt = build_receipt(
            bundle,
            verification,
            verifier_id=self.verifier_id,
            fraud_risk=fraud_risk,
            zkp_attestation=attestation,
        )
        await self.lifecycle.record(receipt, bundle)

        logger.info(
            "Issued receipt %s for bundle %s: %s (risk %d)",
            receipt.receipt_id,
            bundle.bundle_id,
            receipt.decision.value,
            receipt.risk_score,
        )
        return IssuedReceipt(verification=verification, receipt=receipt)

    async def _analyze_document(self, document: bytes | None, context: RiskContext) -> DocumentRisk | None:
        if document is None:
            return None
        return await asyncio.to_thread(self.risk_engine.analyze_document, document, context)

    async def _apply_compliance(self, verification: VerificationResult, document: bytes) -> VerificationResult:
        try:
            verdict = await self.compliance.validate_document(document)
        except Exception as exc:
            logger.error("Compliance validator failed: %s", exc)
            return extend_result(
                verification,
                CheckResult(
                    check_id=COMPLIANCE_CHECK_ID,
                    status=CheckStatus.WARN,
                    details="Compliance validator unavailable",
                ),
                ReasonCode.VERIFIER_ERROR,
            )
        return apply_compliance_verdict(verification, verdict)

    # ─── Lifecycle ───────────────────────────────────────────────────

    async def verify_receipt(self, receipt_id: str) -> ReceiptIntegrity:
        return await self.lifecycle.verify(receipt_id)

    async def receipt_status(self, receipt_id: str) -> ReceiptStatus:
        return await self.lifecycle.status(receipt_id)

    async def list_receipts(self, limit: int = 50) -> list[ReceiptStatus]:
        return [stored.status() for stored in await self.lifecycle.store.list_receipts(limit)]

    async def anchor(self, receipt_id: str) -> AnchorOutcome:
        return await self.lifecycle.anchor(receipt_id)

    async def revoke(self, receipt_id: str, reason: str, revoked_by: str | None = None) -> RevocationOutcome:
        return await self.lifecycle.revoke(receipt_id, reason, revoked_by)


# ─── Compliance Mapping ──────────────────────────────────────────────

_COMPLIANCE_CHECKS: dict[ComplianceStatus, tuple[CheckStatus, ReasonCode | None]] = {
    ComplianceStatus.PASS: (CheckStatus.PASS, None),
    ComplianceStatus.FLAGGED: (CheckStatus.WARN, ReasonCode.COMPLIANCE_FLAGGED),
    ComplianceStatus.FAIL: (CheckStatus.FAIL, ReasonCode.COMPLIANCE_FAILED),
}


def apply_compliance_verdict(verification: VerificationResult, verdict: ComplianceVerdict) -> VerificationResult:
    """Append the compliance check and re-derive the decision."""
    status, reason = _COMPLIANCE_CHECKS[verdict.status]
    check = CheckResult(
        check_id=COMPLIANCE_CHECK_ID,
        status=status,
        details="; ".join(verdict.details) or None,
    )
    return extend_result(verification, check, reason)


# ─── Versioned Response Shaping ──────────────────────────────────────


def _clamp01(value: float) -> float:
    if math.isnan(value):
        return 0.0
    return min(1.0, max(0.0, value))


def _fallback_band(score: float) -> RiskBand:
    if score >= 0.66:
        return RiskBand.HIGH
    if score >= 0.33:
        return RiskBand.MEDIUM
    return RiskBand.LOW


def to_v2_verify_response(status: ReceiptStatus, include_deprecated: bool = False) -> dict[str, Any]:
    """Shape a receipt and its annotations as a receiptVersion 2.0 response body."""
    receipt = status.receipt
    risk = receipt.fraud_risk
    score = _clamp01(risk.score if risk else 0.0)
    band = risk.band if risk else _fallback_band(score)

    anchor: dict[str, Any] = {
        "status": status.anchor_status.value,
        "backend": DEFAULT_ANCHOR_BACKEND,
    }
    if status.anchor is not None:
        anchor["txHash"] = status.anchor.tx_hash
        anchor["chainId"] = status.anchor.chain_id
        if status.anchor.timestamp:
            anchor["anchoredAt"] = status.anchor.timestamp

    body: dict[str, Any] = {
        "receiptVersion": V2_RECEIPT_VERSION,
        "decision": receipt.decision.value,
        "reasons": list(receipt.reasons),
        "receiptId": receipt.receipt_id,
        "receiptHash": receipt.receipt_hash,
        "anchor": anchor,
        "fraudRisk": {
            "score": score,
            "band": band.value,
            "signals": [s.to_wire() for s in risk.signals] if risk else [],
        },
        "revocation": {"status": status.revocation_status.value},
    }
    if receipt.zkp_attestation is not None:
        body["zkpAttestation"] = receipt.zkp_attestation.to_wire()

    if include_deprecated:
        body["deprecated"] = {
            "riskScore": receipt.risk_score,
            "revoked": status.revocation is not None,
        }
    return body
