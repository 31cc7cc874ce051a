"""
Bundle verification pipeline tests.

Registry, seal, policy and external-verifier checks are exercised against a
synthetic registry with in-memory verifiers. No network.
"""

from __future__ import annotations

import asyncio

import pytest

from deed_shield.exceptions import BundleInputError
from deed_shield.mocks import MockCountyVerifier, MockPropertyVerifier, MockStateNotaryVerifier
from deed_shield.models import (
    BundleInput,
    CheckResult,
    CheckStatus,
    Decision,
    OcrData,
    VerificationResult,
)
from deed_shield.pipeline import (
    PENALTY_POINTS,
    PolicyProfile,
    ReasonCode,
    VerificationContext,
    derive_decision,
    extend_result,
    verify_bundle,
)
from deed_shield.synthetic import generate_bundle


def _run(bundle: BundleInput, synthetic, **context) -> VerificationResult:
    return asyncio.run(verify_bundle(bundle, VerificationContext(registry=synthetic.registry, **context)))


def _with_ron(bundle: BundleInput, **changes) -> BundleInput:
    return bundle.model_copy(update={"ron": bundle.ron.model_copy(update=changes)})


def _check(result: VerificationResult, check_id: str) -> CheckResult:
    return next(c for c in result.checks if c.check_id == check_id)


class _ExplodingCounty:
    async def verify_parcel(self, parcel_id, county, state):
        raise RuntimeError("county database offline")


# ═══════════════════════════════════════════════════════════════════════
# DECISION RULE
# ═══════════════════════════════════════════════════════════════════════


class TestDecisionRule:
    def test_no_checks_no_score_is_allow(self):
        assert derive_decision([], 0) == (Decision.ALLOW, 0)

    def test_flag_threshold(self):
        assert derive_decision([], 29)[0] == Decision.ALLOW
        assert derive_decision([], 30)[0] == Decision.FLAG
        assert derive_decision([], 59)[0] == Decision.FLAG

    def test_block_threshold(self):
        assert derive_decision([], 60) == (Decision.BLOCK, 60)

    def test_any_fail_blocks_with_score_floor(self):
        fail = CheckResult(check_id="x", status=CheckStatus.FAIL)
        assert derive_decision([fail], 0) == (Decision.BLOCK, 90)
        assert derive_decision([fail], 120) == (Decision.BLOCK, 120)

    def test_warn_alone_does_not_block(self):
        warn = CheckResult(check_id="x", status=CheckStatus.WARN)
        assert derive_decision([warn], 0)[0] == Decision.ALLOW

    def test_extend_result_with_fail_forces_block(self):
        allow = VerificationResult(decision=Decision.ALLOW, reasons=[], risk_score=0, checks=[])
        extended = extend_result(
            allow,
            CheckResult(check_id="compliance-validator", status=CheckStatus.FAIL),
            ReasonCode.COMPLIANCE_FAILED,
        )
        assert extended.decision == Decision.BLOCK
        assert extended.risk_score == 90
        assert extended.reasons == ["COMPLIANCE_FAILED"]
        assert allow.checks == []

    def test_penalty_table_covers_every_reason(self):
        assert set(PENALTY_POINTS) == set(ReasonCode)


class TestPolicyProfile:
    def test_strict_profile(self):
        profile = PolicyProfile.parse("STRICT_CA")
        assert profile.strict is True
        assert profile.state == "CA"

    def test_standard_profile(self):
        profile = PolicyProfile.parse("STANDARD_NY")
        assert profile.strict is False
        assert profile.state == "NY"

    def test_profile_without_state_implies_commission_state(self):
        profile = PolicyProfile.parse("STANDARD")
        assert profile.state is None
        assert profile.implied_state("TX") == "TX"

    def test_bare_strict_profile_names_no_state(self):
        profile = PolicyProfile.parse("STRICT")
        assert profile.strict is True
        assert profile.state is None

    def test_out_of_state_penalty_depends_on_strictness(self):
        assert PolicyProfile.parse("STANDARD_CA").penalty(ReasonCode.OUT_OF_STATE_NOTARY) == 25
        assert PolicyProfile.parse("STRICT_CA").penalty(ReasonCode.OUT_OF_STATE_NOTARY) == 60


# ═══════════════════════════════════════════════════════════════════════
# TRUST CHAIN
# ═══════════════════════════════════════════════════════════════════════


class TestTrustChain:
    def test_clean_bundle_is_allowed(self, synthetic):
        bundle = generate_bundle(synthetic, "NOTARY-1")
        result = _run(bundle, synthetic, county=MockCountyVerifier())

        assert result.decision == Decision.ALLOW
        assert result.risk_score == 0
        assert result.reasons == []
        assert [c.check_id for c in result.checks] == [
            "ron-provider",
            "notary-authority",
            "seal-crypto",
            "county-status",
        ]
        assert all(c.status == CheckStatus.PASS for c in result.checks)

    def test_garbage_seal_blocks(self, synthetic):
        bundle = _with_ron(generate_bundle(synthetic, "NOTARY-1"), seal_payload="v1:0xdeadbeef")
        result = _run(bundle, synthetic)

        assert _check(result, "seal-crypto").status == CheckStatus.FAIL
        assert "SEAL_INVALID" in result.reasons
        assert result.decision == Decision.BLOCK
        assert result.risk_score >= 90

    def test_seal_from_another_notary_blocks(self, synthetic):
        other = generate_bundle(synthetic, "NOTARY-3")
        bundle = _with_ron(generate_bundle(synthetic, "NOTARY-1"), seal_payload=other.ron.seal_payload)
        result = _run(bundle, synthetic)

        seal = _check(result, "seal-crypto")
        assert seal.status == CheckStatus.FAIL
        assert seal.details == "Signature mismatch"

    def test_unsupported_seal_version_blocks(self, synthetic):
        bundle = generate_bundle(synthetic, "NOTARY-1")
        signature = bundle.ron.seal_payload.split(":", 1)[1]
        result = _run(_with_ron(bundle, seal_payload=f"v9:{signature}"), synthetic)
        assert _check(result, "seal-crypto").status == CheckStatus.FAIL

    def test_untagged_seal_is_read_as_v1(self, synthetic):
        bundle = generate_bundle(synthetic, "NOTARY-1")
        signature = bundle.ron.seal_payload.split(":", 1)[1]
        result = _run(_with_ron(bundle, seal_payload=signature), synthetic)
        assert _check(result, "seal-crypto").status == CheckStatus.PASS

    def test_unknown_notary_blocks_and_skips_seal(self, synthetic):
        bundle = _with_ron(generate_bundle(synthetic, "NOTARY-1"), notary_id="NOTARY-404")
        result = _run(bundle, synthetic)

        assert _check(result, "notary-authority").status == CheckStatus.FAIL
        assert "NOTARY_UNKNOWN" in result.reasons
        assert all(c.check_id != "seal-crypto" for c in result.checks)
        assert result.decision == Decision.BLOCK

    def test_suspended_provider_blocks(self, synthetic):
        bundle = _with_ron(generate_bundle(synthetic, "NOTARY-1"), provider="RON-2")
        result = _run(bundle, synthetic)

        assert _check(result, "ron-provider").status == CheckStatus.FAIL
        assert "PROVIDER_INACTIVE" in result.reasons
        assert result.decision == Decision.BLOCK

    def test_missing_provider_blocks(self, synthetic):
        bundle = _with_ron(generate_bundle(synthetic, "NOTARY-1"), provider="RON-404")
        result = _run(bundle, synthetic)
        assert "PROVIDER_INACTIVE" in result.reasons

    def test_notary_outside_validity_window_blocks(self, synthetic):
        bundle = generate_bundle(synthetic, "NOTARY-1").model_copy(update={"timestamp": "2099-01-01T00:00:00Z"})
        result = _run(bundle, synthetic)

        assert _check(result, "notary-authority").details == "Notary not active"
        assert "NOTARY_INACTIVE" in result.reasons

    def test_invalid_timestamp_is_an_input_error(self, synthetic):
        bundle = generate_bundle(synthetic, "NOTARY-1").model_copy(update={"timestamp": "yesterday"})
        with pytest.raises(BundleInputError):
            _run(bundle, synthetic)


# ═══════════════════════════════════════════════════════════════════════
# POLICY HEURISTICS
# ═══════════════════════════════════════════════════════════════════════


class TestPolicyHeuristics:
    def test_quitclaim_out_of_state_under_strict_profile(self, synthetic):
        # NOTARY-2 is commissioned in NY
        bundle = generate_bundle(synthetic, "NOTARY-2", transaction_type="quitclaim", policy_profile="STRICT_CA")
        result = _run(bundle, synthetic)

        assert "QUITCLAIM_STRICT" in result.reasons
        assert "OUT_OF_STATE_NOTARY" in result.reasons
        assert result.risk_score >= 35 + 60
        assert result.decision != Decision.ALLOW

    def test_out_of_state_under_standard_profile_is_a_warning(self, synthetic):
        bundle = generate_bundle(synthetic, "NOTARY-2", policy_profile="STANDARD_CA")
        result = _run(bundle, synthetic)

        check = _check(result, "policy-out-of-state")
        assert check.status == CheckStatus.WARN
        assert check.details == "Notary commissioned in NY, policy expects CA"
        assert result.risk_score == 25
        assert result.decision == Decision.ALLOW

    def test_quitclaim_alone_flags(self, synthetic):
        bundle = generate_bundle(synthetic, "NOTARY-1", transaction_type="Quitclaim")
        result = _run(bundle, synthetic)

        assert _check(result, "policy-quitclaim").status == CheckStatus.WARN
        assert result.risk_score == 35
        assert result.decision == Decision.FLAG

    def test_quitclaim_and_out_of_state_standard_reaches_block(self, synthetic):
        bundle = generate_bundle(synthetic, "NOTARY-2", transaction_type="quitclaim", policy_profile="STANDARD_CA")
        result = _run(bundle, synthetic)
        assert result.risk_score == 60
        assert result.decision == Decision.BLOCK

    def test_rapid_transfer_bundle_id(self, synthetic):
        bundle = generate_bundle(synthetic, "NOTARY-1", bundle_id="RAPID-BUNDLE-7")
        result = _run(bundle, synthetic)

        assert _check(result, "policy-rapid-transfer").status == CheckStatus.WARN
        assert result.reasons == ["RAPID_TRANSFER_PATTERN"]
        assert result.risk_score == 20
        assert result.decision == Decision.ALLOW

    def test_profile_without_state_never_warns_out_of_state(self, synthetic):
        bundle = generate_bundle(synthetic, "NOTARY-2", policy_profile="STANDARD")
        result = _run(bundle, synthetic)
        assert "OUT_OF_STATE_NOTARY" not in result.reasons


# ═══════════════════════════════════════════════════════════════════════
# EXTERNAL VERIFIERS
# ═══════════════════════════════════════════════════════════════════════


class TestCountyStatus:
    def test_locked_parcel_blocks(self, synthetic):
        bundle = generate_bundle(synthetic, "NOTARY-1", parcel_id="LOCKED-999")
        result = _run(bundle, synthetic, county=MockCountyVerifier())

        assert _check(result, "county-status").status == CheckStatus.FAIL
        assert "PROPERTY_LOCKED" in result.reasons
        assert result.decision == Decision.BLOCK
        assert result.risk_score >= 90

    def test_flagged_parcel_flags(self, synthetic):
        bundle = generate_bundle(synthetic, "NOTARY-1", parcel_id="SCAM-101")
        result = _run(bundle, synthetic, county=MockCountyVerifier())

        check = _check(result, "county-status")
        assert check.status == CheckStatus.WARN
        assert check.details == "Parcel associated with known deed fraud ring"
        assert result.risk_score == 50
        assert result.decision == Decision.FLAG

    def test_failing_county_degrades_to_warning(self, synthetic):
        bundle = generate_bundle(synthetic, "NOTARY-1")
        result = _run(bundle, synthetic, county=_ExplodingCounty())

        check = _check(result, "county-status")
        assert check.status == CheckStatus.WARN
        assert "VERIFIER_ERROR" in result.reasons
        assert result.risk_score == 0

    def test_slow_county_times_out_to_warning(self, synthetic):
        bundle = generate_bundle(synthetic, "NOTARY-1")
        result = _run(bundle, synthetic, county=MockCountyVerifier(latency=2.0), call_timeout=0.05)

        assert _check(result, "county-status").status == CheckStatus.WARN
        assert "VERIFIER_ERROR" in result.reasons

    def test_overall_deadline_cancels_in_flight_checks(self, synthetic):
        bundle = generate_bundle(synthetic, "NOTARY-1")
        result = _run(
            bundle,
            synthetic,
            county=MockCountyVerifier(latency=2.0),
            call_timeout=5.0,
            deadline=0.05,
        )
        assert _check(result, "county-status").status == CheckStatus.WARN
        assert result.decision == Decision.ALLOW

    def test_no_county_verifier_means_no_check(self, synthetic):
        result = _run(generate_bundle(synthetic, "NOTARY-1"), synthetic)
        assert all(c.check_id != "county-status" for c in result.checks)


class TestExternalNotary:
    def _bundle(self, synthetic, commission_id: str) -> BundleInput:
        return generate_bundle(
            synthetic,
            "NOTARY-1",
            ocr_data=OcrData(notary_name="Synthetic Notary 1", notary_commission_id=commission_id),
        )

    def test_revoked_in_state_registry_blocks(self, synthetic):
        result = _run(self._bundle(synthetic, "999999"), synthetic, notary=MockStateNotaryVerifier())

        assert _check(result, "external-notary").status == CheckStatus.FAIL
        assert "NOTARY_REVOKED_EXTERNAL" in result.reasons
        assert result.decision == Decision.BLOCK

    def test_suspended_in_state_registry_blocks(self, synthetic):
        result = _run(self._bundle(synthetic, "888888"), synthetic, notary=MockStateNotaryVerifier())
        assert "NOTARY_SUSPENDED_EXTERNAL" in result.reasons

    def test_active_in_state_registry_passes(self, synthetic):
        result = _run(self._bundle(synthetic, "123456"), synthetic, notary=MockStateNotaryVerifier())
        assert _check(result, "external-notary").status == CheckStatus.PASS
        assert result.decision == Decision.ALLOW

    def test_unknown_commission_is_a_warning_not_a_pass(self, synthetic):
        result = _run(self._bundle(synthetic, "000000"), synthetic, notary=MockStateNotaryVerifier())

        assert _check(result, "external-notary").status == CheckStatus.WARN
        assert "VERIFIER_ERROR" in result.reasons

    def test_skipped_without_ocr_commission(self, synthetic):
        verifier = MockStateNotaryVerifier()
        result = _run(generate_bundle(synthetic, "NOTARY-1"), synthetic, notary=verifier)

        assert verifier.calls == 0
        assert all(c.check_id != "external-notary" for c in result.checks)


class TestOwnerMatch:
    def _bundle(self, synthetic, grantor: str) -> BundleInput:
        return generate_bundle(synthetic, "NOTARY-1", ocr_data=OcrData(grantor_name=grantor))

    def test_grantor_mismatch_blocks(self, synthetic):
        result = _run(self._bundle(synthetic, "Alice Scammer"), synthetic, property=MockPropertyVerifier())

        check = _check(result, "owner-match")
        assert check.status == CheckStatus.FAIL
        assert check.details.startswith("Grantor mismatch (")
        assert "OWNER_MISMATCH" in result.reasons
        assert result.decision == Decision.BLOCK

    def test_grantor_matches_record_owner(self, synthetic):
        result = _run(self._bundle(synthetic, "john doe"), synthetic, property=MockPropertyVerifier())
        assert _check(result, "owner-match").status == CheckStatus.PASS

    def test_unknown_parcel_is_a_warning(self, synthetic):
        bundle = generate_bundle(
            synthetic, "NOTARY-1", parcel_id="PARCEL-0", ocr_data=OcrData(grantor_name="John Doe")
        )
        result = _run(bundle, synthetic, property=MockPropertyVerifier())

        assert _check(result, "owner-match").status == CheckStatus.WARN
        assert "VERIFIER_ERROR" in result.reasons


class TestCheckOrdering:
    def test_external_checks_join_in_fixed_order(self, synthetic):
        bundle = generate_bundle(
            synthetic,
            "NOTARY-1",
            ocr_data=OcrData(
                notary_name="Synthetic Notary 1",
                notary_commission_id="123456",
                grantor_name="John Doe",
            ),
        )
        result = _run(
            bundle,
            synthetic,
            # the slowest verifier is dispatched first; order must not follow completion
            county=MockCountyVerifier(latency=0.05),
            notary=MockStateNotaryVerifier(latency=0.02),
            property=MockPropertyVerifier(),
        )
        assert [c.check_id for c in result.checks][-3:] == ["county-status", "external-notary", "owner-match"]
        assert result.decision == Decision.ALLOW
