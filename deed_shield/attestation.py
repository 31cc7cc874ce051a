"""
Deterministic compliance commitment.

Despite the scheme name this is NOT a zero-knowledge proof. It is a keyed
hash binding the policy, the conformance result and the inputs commitment:

    proof = keccak256("<policyHash>:<conformance>:<inputsCommitment>:<secret>")

Anyone holding the secret can recompute it; nobody without the secret can
forge one. ``public_inputs`` deliberately carries only the policy hash,
timestamp, inputs commitment and the boolean result, never notary, county
or owner identifiers. Swapping in a real proof system would require
re-deriving that privacy boundary, not just replacing this module.
"""

from __future__ import annotations

import random
import time

from .hashing import keccak256_utf8
from .models import CompliancePublicInputs, ZKPAttestation, utc_now_iso

SCHEME = "GROTH16-MOCK-v1"
DEFAULT_SECRET = "SECRET_WITNESS_KEY"


def _js_bool(value: bool) -> str:
    return "true" if value else "false"


class DeterministicComplianceCommitment:
    """Issues and checks compliance commitments under one secret."""

    scheme = SCHEME

    def __init__(self, secret: str = DEFAULT_SECRET):
        self._secret = secret

    def _proof(self, policy_hash: str, conformance: bool, inputs_commitment: str) -> str:
        return keccak256_utf8(f"{policy_hash}:{_js_bool(conformance)}:{inputs_commitment}:{self._secret}")

    def generate(self, policy_profile: str, checks_passed: bool, inputs_commitment: str) -> ZKPAttestation:
        policy_hash = keccak256_utf8(policy_profile)
        return ZKPAttestation(
            proof_id=f"ZKP-{int(time.time() * 1000)}-{random.randrange(1000)}",
            scheme=self.scheme,
            public_inputs=CompliancePublicInputs(
                policy_hash=policy_hash,
                timestamp=utc_now_iso(),
                inputs_commitment=inputs_commitment,
                conformance=checks_passed,
            ),
            proof=self._proof(policy_hash, checks_passed, inputs_commitment),
        )

    def verify(self, attestation: ZKPAttestation) -> bool:
        """True only when the proof recomputes AND the attested result is conformant."""
        if attestation.scheme != self.scheme or not attestation.proof:
            return False
        inputs = attestation.public_inputs
        expected = self._proof(inputs.policy_hash, inputs.conformance, inputs.inputs_commitment)
        if attestation.proof != expected:
            return False
        return inputs.conformance is True


def generate_compliance_proof(
    policy_profile: str,
    checks_passed: bool,
    inputs_commitment: str,
    secret: str = DEFAULT_SECRET,
) -> ZKPAttestation:
    return DeterministicComplianceCommitment(secret).generate(policy_profile, checks_passed, inputs_commitment)


def verify_compliance_proof(attestation: ZKPAttestation, secret: str = DEFAULT_SECRET) -> bool:
    return DeterministicComplianceCommitment(secret).verify(attestation)
