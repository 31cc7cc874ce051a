"""
Pydantic models for the receipt engine — strict typing at every boundary.

Attributes are snake_case in Python; the camelCase aliases are the wire and
hashing names. Receipts are hashed over their aliased form, so renaming an
alias changes every receipt hash and breaks verification of receipts that
were already issued.
"""

from __future__ import annotations

import base64
import binascii
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .exceptions import BundleInputError


def utc_now_iso() -> str:
    """Current UTC time as an ISO-8601 string with millisecond precision and a Z suffix."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_iso(value: str) -> datetime:
    """Parse an ISO-8601 timestamp, accepting a trailing Z. Naive values are taken as UTC."""
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class WireModel(BaseModel):
    """Immutable model with camelCase aliases."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    def to_wire(self) -> dict[str, Any]:
        """JSON-ready dict under the wire names. Absent optionals are omitted, never null."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


# ─── Status Enumerations ────────────────────────────────────────────


class CheckStatus(str, Enum):
    PASS = "PASS"
    FAIL = "FAIL"
    WARN = "WARN"


class Decision(str, Enum):
    ALLOW = "ALLOW"
    FLAG = "FLAG"
    BLOCK = "BLOCK"


class RiskBand(str, Enum):
    """Risk band of a document, also used as the severity of a single signal."""

    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


class ProviderStatus(str, Enum):
    ACTIVE = "ACTIVE"
    SUSPENDED = "SUSPENDED"


class NotaryStatus(str, Enum):
    ACTIVE = "ACTIVE"
    SUSPENDED = "SUSPENDED"
    REVOKED = "REVOKED"


class CountyStatus(str, Enum):
    CLEAN = "CLEAN"
    FLAGGED = "FLAGGED"
    LOCKED = "LOCKED"


class ExternalNotaryStatus(str, Enum):
    """Status reported by a state notary registry (UNKNOWN = could not confirm)."""

    ACTIVE = "ACTIVE"
    SUSPENDED = "SUSPENDED"
    REVOKED = "REVOKED"
    UNKNOWN = "UNKNOWN"


class ComplianceStatus(str, Enum):
    PASS = "PASS"
    FAIL = "FAIL"
    FLAGGED = "FLAGGED"


class AnchorStatus(str, Enum):
    PENDING = "PENDING"
    ANCHORED = "ANCHORED"


class RevocationStatus(str, Enum):
    ACTIVE = "ACTIVE"
    REVOKED = "REVOKED"


# ─── Trust Registry ─────────────────────────────────────────────────


class RonProvider(WireModel):
    id: str
    name: str
    status: ProviderStatus


class Notary(WireModel):
    id: str
    name: str
    commission_state: str
    status: NotaryStatus
    public_key: str  # checksummed signer address
    valid_from: datetime
    valid_to: datetime


class TrustRegistry(WireModel):
    """Versioned catalog of RON providers and notaries. A read-only snapshot per verification."""

    version: str
    issued_at: str
    issuer: str
    signing_key_id: str
    ron_providers: list[RonProvider] = Field(default_factory=list)
    notaries: list[Notary] = Field(default_factory=list)


# ─── Bundle Input ───────────────────────────────────────────────────


class RonInput(WireModel):
    provider: str
    notary_id: str
    commission_state: str
    seal_payload: str  # "v1:<signature>"
    seal_scheme: Optional[str] = None


class DocInput(WireModel):
    doc_hash: str
    pdf_base64: Optional[str] = None  # raw document bytes, base64 on the wire

    @property
    def raw_document_bytes(self) -> bytes | None:
        """Decoded document bytes, or None when no document was attached."""
        if self.pdf_base64 is None:
            return None
        try:
            return base64.b64decode(self.pdf_base64, validate=True)
        except (binascii.Error, ValueError):
            raise BundleInputError("doc.pdfBase64 is not valid base64")


class PropertyInput(WireModel):
    parcel_id: str
    county: str
    state: str


class OcrData(WireModel):
    notary_name: Optional[str] = None
    notary_commission_id: Optional[str] = None
    property_address: Optional[str] = None
    grantor_name: Optional[str] = None


class PolicyInput(WireModel):
    profile: str


class BundleInput(WireModel):
    """One deed-recording transaction submitted for verification. Never mutated."""

    bundle_id: str
    transaction_type: str
    ron: RonInput
    doc: DocInput
    property: PropertyInput
    ocr_data: Optional[OcrData] = None
    policy: PolicyInput
    timestamp: Optional[str] = None


# ─── Verification Output ────────────────────────────────────────────


class CheckResult(WireModel):
    check_id: str
    status: CheckStatus
    details: Optional[str] = None


class VerificationResult(WireModel):
    decision: Decision
    reasons: list[str] = Field(default_factory=list)
    risk_score: int = 0
    checks: list[CheckResult] = Field(default_factory=list)


class RiskSignal(WireModel):
    id: str
    description: str
    severity: RiskBand


class DocumentRisk(WireModel):
    score: float  # 0.0 to 1.0, 1.0 = maximum risk
    band: RiskBand
    signals: list[RiskSignal] = Field(default_factory=list)


class CompliancePublicInputs(WireModel):
    """Public half of an attestation. Never carries notary, county or owner identifiers."""

    policy_hash: str
    timestamp: str
    inputs_commitment: str
    conformance: bool


class ZKPAttestation(WireModel):
    proof_id: str
    scheme: str
    public_inputs: CompliancePublicInputs
    proof: str


class Receipt(WireModel):
    """The immutable, hash-addressed verification artifact.

    Field order is fixed: receiptVersion, receiptId, createdAt, policyProfile,
    inputsCommitment, checks, decision, reasons, riskScore, verifierId,
    fraudRisk, zkpAttestation, receiptHash.
    """

    receipt_version: str
    receipt_id: str
    created_at: str
    policy_profile: str
    inputs_commitment: str
    checks: list[CheckResult]
    decision: Decision
    reasons: list[str]
    risk_score: int
    verifier_id: str
    fraud_risk: Optional[DocumentRisk] = None
    zkp_attestation: Optional[ZKPAttestation] = None
    receipt_hash: str


class ReceiptIntegrity(WireModel):
    valid: bool
    recomputed_hash: str
    recomputed_commitment: str
    stored_hash: str
    stored_commitment: str


# ─── Lifecycle Annotations ──────────────────────────────────────────


class RevocationRecord(WireModel):
    receipt_id: str
    reason: str
    revoked_by: str
    revoked_at: str


class AnchorProof(WireModel):
    chain_id: str
    tx_hash: str
    block_number: Optional[int] = None
    timestamp: Optional[str] = None


class ReceiptStatus(WireModel):
    """A receipt joined with its out-of-band anchor and revocation annotations."""

    receipt: Receipt
    anchor_status: AnchorStatus = AnchorStatus.PENDING
    anchor: Optional[AnchorProof] = None
    revocation: Optional[RevocationRecord] = None

    @property
    def revocation_status(self) -> RevocationStatus:
        return RevocationStatus.REVOKED if self.revocation else RevocationStatus.ACTIVE


# ─── Collaborator Responses ─────────────────────────────────────────


class CountyCheckResult(WireModel):
    status: CountyStatus
    details: Optional[str] = None


class NotaryCheckResult(WireModel):
    status: ExternalNotaryStatus
    details: Optional[str] = None


class OwnerMatchResult(WireModel):
    match: bool
    score: int  # 0-100 similarity
    record_owner: Optional[str] = None


class ComplianceVerdict(WireModel):
    status: ComplianceStatus
    details: list[str] = Field(default_factory=list)
