"""
Bundle verification pipeline — a single deterministic reduction per request.

Flow:
  ┌──────────────┐
  │ BundleInput  │
  └──────┬───────┘
         │
  ┌──────▼───────┐
  │   Registry   │   (1) RON provider  (2) notary authority
  └──────┬───────┘
  ┌──────▼───────┐
  │     Seal     │   (3) signer recovered from docHash signature
  └──────┬───────┘
  ┌──────▼───────┐
  │    Policy    │   (4) quitclaim  (5) out-of-state  (6) rapid transfer
  └──────┬───────┘
  ┌──────▼───────┐
  │  External    │   (7) county  (8) state notary registry  (9) record owner
  │  verifiers   │       dispatched concurrently, joined in this order
  └──────┬───────┘
  ┌──────▼───────┐
  │   Decision   │   any FAIL → BLOCK (score ≥ 90), ≥60 BLOCK, ≥30 FLAG
  └──────────────┘

Design principles:
  - Every check appends exactly one CheckResult, or none when its
    preconditions are absent.
  - Reasons are a closed enumeration accumulated into an ordered set; each
    reason maps to a fixed point penalty.
  - External verifiers are only ever reached through the capability
    protocols in ``verifiers.py``. A timeout, exception or deadline expiry
    becomes a WARN check with VERIFIER_ERROR and never a PASS.
  - Given fixed verifier responses the decision is a pure function of the
    bundle and the registry snapshot.
"""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

from .exceptions import BundleInputError
from .models import (
    BundleInput,
    CheckResult,
    CheckStatus,
    CountyCheckResult,
    CountyStatus,
    Decision,
    ExternalNotaryStatus,
    NotaryCheckResult,
    NotaryStatus,
    OwnerMatchResult,
    ProviderStatus,
    TrustRegistry,
    VerificationResult,
    parse_iso,
)
from .registry import find_notary, find_ron_provider
from .seal import verify_seal
from .verifiers import CountyVerifier, NotaryVerifier, PropertyVerifier

logger = logging.getLogger(__name__)


# ─── Reason Codes & Penalties ────────────────────────────────────────


class ReasonCode(str, Enum):
    PROVIDER_INACTIVE = "PROVIDER_INACTIVE"
    NOTARY_UNKNOWN = "NOTARY_UNKNOWN"
    NOTARY_INACTIVE = "NOTARY_INACTIVE"
    SEAL_INVALID = "SEAL_INVALID"
    QUITCLAIM_STRICT = "QUITCLAIM_STRICT"
    OUT_OF_STATE_NOTARY = "OUT_OF_STATE_NOTARY"
    RAPID_TRANSFER_PATTERN = "RAPID_TRANSFER_PATTERN"
    PROPERTY_LOCKED = "PROPERTY_LOCKED"
    PROPERTY_FLAGGED = "PROPERTY_FLAGGED"
    NOTARY_REVOKED_EXTERNAL = "NOTARY_REVOKED_EXTERNAL"
    NOTARY_SUSPENDED_EXTERNAL = "NOTARY_SUSPENDED_EXTERNAL"
    OWNER_MISMATCH = "OWNER_MISMATCH"
    VERIFIER_ERROR = "VERIFIER_ERROR"
    COMPLIANCE_FAILED = "COMPLIANCE_FAILED"
    COMPLIANCE_FLAGGED = "COMPLIANCE_FLAGGED"


PENALTY_POINTS: dict[ReasonCode, int] = {
    ReasonCode.PROVIDER_INACTIVE: 40,
    ReasonCode.NOTARY_UNKNOWN: 80,
    ReasonCode.NOTARY_INACTIVE: 80,
    ReasonCode.SEAL_INVALID: 80,
    ReasonCode.QUITCLAIM_STRICT: 35,
    ReasonCode.OUT_OF_STATE_NOTARY: 25,
    ReasonCode.RAPID_TRANSFER_PATTERN: 20,
    ReasonCode.PROPERTY_LOCKED: 100,
    ReasonCode.PROPERTY_FLAGGED: 50,
    ReasonCode.NOTARY_REVOKED_EXTERNAL: 100,
    ReasonCode.NOTARY_SUSPENDED_EXTERNAL: 100,
    ReasonCode.OWNER_MISMATCH: 80,
    ReasonCode.VERIFIER_ERROR: 0,
    ReasonCode.COMPLIANCE_FAILED: 0,
    ReasonCode.COMPLIANCE_FLAGGED: 0,
}

# Out-of-state penalty under a strict policy profile
OUT_OF_STATE_STRICT_POINTS = 60

BLOCK_THRESHOLD = 60
FLAG_THRESHOLD = 30
FAIL_SCORE_FLOOR = 90

RAPID_TRANSFER_BUNDLE_MARKER = "RAPID"
RAPID_TRANSFER_HASH_SUFFIX = "ff00ff"

DEFAULT_CALL_TIMEOUT_SECONDS = 5.0


# ─── Policy Profile ──────────────────────────────────────────────────


_PROFILE_STATE = re.compile(r"_([A-Z]{2})$")


@dataclass(frozen=True)
class PolicyProfile:
    """Structured view of a profile string such as ``STRICT_CA`` or ``STANDARD_NY``.

    The trailing two-letter code is the jurisdiction the profile implies;
    any profile containing ``STRICT`` is strict. The code must follow an
    underscore: a bare ``STRICT`` or ``STANDARD`` names no state (not
    ``CT`` or ``RD``) and falls back to the notary's commission state.
    """

    name: str
    state: Optional[str]
    strict: bool

    @classmethod
    def parse(cls, profile: str) -> PolicyProfile:
        match = _PROFILE_STATE.search(profile)
        return cls(name=profile, state=match.group(1) if match else None, strict="STRICT" in profile)

    def implied_state(self, fallback: str) -> str:
        return self.state or fallback

    def penalty(self, reason: ReasonCode) -> int:
        if reason is ReasonCode.OUT_OF_STATE_NOTARY and self.strict:
            return OUT_OF_STATE_STRICT_POINTS
        return PENALTY_POINTS[reason]


# ─── Verification Context ────────────────────────────────────────────


@dataclass
class VerificationContext:
    """Everything one verification needs, passed explicitly.

    ``registry`` is a read-only snapshot. ``call_timeout`` bounds each
    external call; ``deadline`` bounds all in-flight external calls together
    (None = no overall deadline).
    """

    registry: TrustRegistry
    county: Optional[CountyVerifier] = None
    notary: Optional[NotaryVerifier] = None
    property: Optional[PropertyVerifier] = None
    call_timeout: float = DEFAULT_CALL_TIMEOUT_SECONDS
    deadline: Optional[float] = None


# ─── Accumulator ─────────────────────────────────────────────────────


@dataclass
class _Accumulator:
    policy: PolicyProfile
    checks: list[CheckResult] = field(default_factory=list)
    reasons: dict[ReasonCode, None] = field(default_factory=dict)
    risk_score: int = 0

    def record(
        self,
        check_id: str,
        status: CheckStatus,
        details: str | None = None,
        reason: ReasonCode | None = None,
    ) -> None:
        self.checks.append(CheckResult(check_id=check_id, status=status, details=details))
        if reason is not None:
            self.reasons.setdefault(reason, None)
            self.risk_score += self.policy.penalty(reason)

    def result(self) -> VerificationResult:
        decision, score = derive_decision(self.checks, self.risk_score)
        return VerificationResult(
            decision=decision,
            reasons=[r.value for r in self.reasons],
            risk_score=score,
            checks=list(self.checks),
        )


def derive_decision(checks: list[CheckResult], risk_score: int) -> tuple[Decision, int]:
    """Three-tier threshold with FAIL override. Returns (decision, final risk score)."""
    if any(c.status == CheckStatus.FAIL for c in checks):
        return Decision.BLOCK, max(risk_score, FAIL_SCORE_FLOOR)
    if risk_score >= BLOCK_THRESHOLD:
        return Decision.BLOCK, risk_score
    if risk_score >= FLAG_THRESHOLD:
        return Decision.FLAG, risk_score
    return Decision.ALLOW, risk_score


def extend_result(
    result: VerificationResult,
    check: CheckResult,
    reason: ReasonCode | None = None,
    points: int = 0,
) -> VerificationResult:
    """Append a post-pipeline check and re-derive the decision with the same rule."""
    checks = [*result.checks, check]
    reasons = list(result.reasons)
    if reason is not None and reason.value not in reasons:
        reasons.append(reason.value)
    decision, score = derive_decision(checks, result.risk_score + points)
    return VerificationResult(decision=decision, reasons=reasons, risk_score=score, checks=checks)


# ─── Pipeline ────────────────────────────────────────────────────────


async def verify_bundle(bundle: BundleInput, context: VerificationContext) -> VerificationResult:
    """Run the fixed check sequence over ``bundle`` and derive a decision.

    Raises:
        BundleInputError: ``bundle.timestamp`` is not an ISO-8601 timestamp.
    """
    policy = PolicyProfile.parse(bundle.policy.profile)
    acc = _Accumulator(policy=policy)
    at = _verification_time(bundle)
    registry = context.registry

    logger.info("Verifying bundle %s under policy %s", bundle.bundle_id, policy.name)

    # ── (1) RON provider ────────────────────────────────────────────
    provider = find_ron_provider(registry, bundle.ron.provider)
    if provider is None or provider.status != ProviderStatus.ACTIVE:
        acc.record("ron-provider", CheckStatus.FAIL, "Provider inactive or missing", ReasonCode.PROVIDER_INACTIVE)
    else:
        acc.record("ron-provider", CheckStatus.PASS)

    # ── (2) Notary authority ────────────────────────────────────────
    notary = find_notary(registry, bundle.ron.notary_id)
    if notary is None:
        acc.record("notary-authority", CheckStatus.FAIL, "Notary not found", ReasonCode.NOTARY_UNKNOWN)
    elif (
        notary.status != NotaryStatus.ACTIVE
        or at < _as_utc(notary.valid_from)
        or at > _as_utc(notary.valid_to)
    ):
        acc.record("notary-authority", CheckStatus.FAIL, "Notary not active", ReasonCode.NOTARY_INACTIVE)
    else:
        acc.record("notary-authority", CheckStatus.PASS)

    # ── (3) Seal (needs a registry key to compare against) ──────────
    if notary is not None:
        verdict = verify_seal(bundle.doc.doc_hash, bundle.ron.seal_payload, notary)
        if verdict.valid:
            acc.record("seal-crypto", CheckStatus.PASS)
        else:
            acc.record("seal-crypto", CheckStatus.FAIL, verdict.detail, ReasonCode.SEAL_INVALID)

    # ── (4)-(6) Policy heuristics ───────────────────────────────────
    if bundle.transaction_type.lower() == "quitclaim":
        acc.record("policy-quitclaim", CheckStatus.WARN, "Quitclaim transfer", ReasonCode.QUITCLAIM_STRICT)

    if bundle.ron.commission_state != policy.implied_state(bundle.ron.commission_state):
        acc.record(
            "policy-out-of-state",
            CheckStatus.WARN,
            f"Notary commissioned in {bundle.ron.commission_state}, policy expects {policy.state}",
            ReasonCode.OUT_OF_STATE_NOTARY,
        )

    if (
        RAPID_TRANSFER_BUNDLE_MARKER in bundle.bundle_id
        or bundle.doc.doc_hash.endswith(RAPID_TRANSFER_HASH_SUFFIX)
    ):
        acc.record(
            "policy-rapid-transfer",
            CheckStatus.WARN,
            "Rapid transfer pattern",
            ReasonCode.RAPID_TRANSFER_PATTERN,
        )

    # ── (7)-(9) External verifiers ──────────────────────────────────
    outcomes = await _run_external_checks(bundle, context)

    if "county" in outcomes:
        _record_county(acc, outcomes["county"])
    if "notary" in outcomes:
        _record_external_notary(acc, outcomes["notary"])
    if "owner" in outcomes:
        _record_owner(acc, outcomes["owner"])

    result = acc.result()
    logger.info(
        "Bundle %s decision=%s risk=%d reasons=%s",
        bundle.bundle_id,
        result.decision.value,
        result.risk_score,
        ",".join(result.reasons) or "-",
    )
    return result


# ─── External Check Orchestration ────────────────────────────────────


@dataclass
class _Outcome:
    value: Any = None
    error: str | None = None


async def _guarded(name: str, call: Callable[[], Awaitable[Any]], timeout: float) -> _Outcome:
    try:
        return _Outcome(value=await asyncio.wait_for(call(), timeout=timeout))
    except asyncio.TimeoutError:
        logger.warning("External check %s timed out after %.1fs", name, timeout)
        return _Outcome(error="timeout")
    except Exception as exc:  # collaborator faults degrade to "could not confirm"
        logger.error("External check %s failed: %s", name, exc)
        return _Outcome(error=str(exc) or type(exc).__name__)


async def _run_external_checks(bundle: BundleInput, context: VerificationContext) -> dict[str, _Outcome]:
    """Dispatch applicable external checks concurrently and join them.

    Checks still running when ``context.deadline`` expires are cancelled and
    reported as errors.
    """
    calls: dict[str, Callable[[], Awaitable[Any]]] = {}
    ocr = bundle.ocr_data

    if context.county is not None:
        county = context.county
        calls["county"] = lambda: county.verify_parcel(
            bundle.property.parcel_id, bundle.property.county, bundle.property.state
        )

    if ocr is not None:
        if context.notary is not None and ocr.notary_commission_id and ocr.notary_name:
            notary = context.notary
            commission_id, notary_name = ocr.notary_commission_id, ocr.notary_name
            calls["notary"] = lambda: notary.verify_notary(
                bundle.ron.commission_state, commission_id, notary_name
            )
        if context.property is not None and bundle.property.parcel_id and ocr.grantor_name:
            prop = context.property
            grantor = ocr.grantor_name
            calls["owner"] = lambda: prop.verify_owner(bundle.property.parcel_id, grantor)

    if not calls:
        return {}

    tasks = {
        name: asyncio.ensure_future(_guarded(name, call, context.call_timeout))
        for name, call in calls.items()
    }
    _, pending = await asyncio.wait(tasks.values(), timeout=context.deadline)
    if pending:
        logger.warning("Verification deadline reached with %d external check(s) in flight", len(pending))
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)

    return {
        name: _Outcome(error="deadline exceeded") if task in pending else task.result()
        for name, task in tasks.items()
    }


def _record_county(acc: _Accumulator, outcome: _Outcome) -> None:
    if outcome.error is not None:
        acc.record("county-status", CheckStatus.WARN, "Verification service unavailable", ReasonCode.VERIFIER_ERROR)
        return

    result: CountyCheckResult = outcome.value
    if result.status == CountyStatus.LOCKED:
        acc.record("county-status", CheckStatus.FAIL, "Property is LOCKED", ReasonCode.PROPERTY_LOCKED)
    elif result.status == CountyStatus.FLAGGED:
        acc.record(
            "county-status",
            CheckStatus.WARN,
            result.details or "County flagged property",
            ReasonCode.PROPERTY_FLAGGED,
        )
    else:
        acc.record("county-status", CheckStatus.PASS)


def _record_external_notary(acc: _Accumulator, outcome: _Outcome) -> None:
    if outcome.error is not None:
        acc.record("external-notary", CheckStatus.WARN, "State registry unavailable", ReasonCode.VERIFIER_ERROR)
        return

    result: NotaryCheckResult = outcome.value
    if result.status == ExternalNotaryStatus.REVOKED:
        acc.record(
            "external-notary",
            CheckStatus.FAIL,
            "Notary REVOKED in state registry",
            ReasonCode.NOTARY_REVOKED_EXTERNAL,
        )
    elif result.status == ExternalNotaryStatus.SUSPENDED:
        acc.record(
            "external-notary",
            CheckStatus.FAIL,
            "Notary SUSPENDED in state registry",
            ReasonCode.NOTARY_SUSPENDED_EXTERNAL,
        )
    elif result.status == ExternalNotaryStatus.ACTIVE:
        acc.record("external-notary", CheckStatus.PASS, "Confirmed active in state registry")
    else:
        acc.record(
            "external-notary",
            CheckStatus.WARN,
            result.details or "Notary could not be confirmed",
            ReasonCode.VERIFIER_ERROR,
        )


def _record_owner(acc: _Accumulator, outcome: _Outcome) -> None:
    if outcome.error is not None:
        acc.record("owner-match", CheckStatus.WARN, "Property database unavailable", ReasonCode.VERIFIER_ERROR)
        return

    result: OwnerMatchResult = outcome.value
    if not result.match:
        acc.record(
            "owner-match",
            CheckStatus.FAIL,
            f"Grantor mismatch ({result.score}% match with record owner)",
            ReasonCode.OWNER_MISMATCH,
        )
    else:
        acc.record("owner-match", CheckStatus.PASS, "Grantor matches record owner")


# ─── Helpers ─────────────────────────────────────────────────────────


def _verification_time(bundle: BundleInput) -> datetime:
    if bundle.timestamp is None:
        return datetime.now(timezone.utc)
    try:
        return parse_iso(bundle.timestamp)
    except ValueError:
        raise BundleInputError(
            f"timestamp '{bundle.timestamp}' is not an ISO-8601 date-time",
            details={"timestamp": bundle.timestamp},
        )


def _as_utc(value: datetime) -> datetime:
    return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)
