#!/usr/bin/env python3
"""
Deed Shield — Entry Point
=========================

Verifies two synthetic bundles (one clean, one suspicious) against a
synthetic trust registry, issues receipts, then anchors, re-verifies and
revokes the first one.

Usage:
    python main.py                          # Offline, in-memory verifiers
    OPENAI_API_KEY=sk-... python main.py    # Same, with LLM compliance audit
"""

from __future__ import annotations

import asyncio
import logging
import sys

from dotenv import load_dotenv

from deed_shield.config import Settings
from deed_shield.engine import DeedShieldEngine, IssuedReceipt
from deed_shield.lifecycle import LocalLedgerAnchorProvider, PortableAnchorManager
from deed_shield.mocks import MockCountyVerifier, MockPropertyVerifier, MockStateNotaryVerifier
from deed_shield.models import CheckStatus, Decision, OcrData
from deed_shield.synthetic import create_synthetic_registry, generate_bundle

load_dotenv()


# ─── ANSI Color Constants ───────────────────────────────────────────

_RED = "\033[91m"
_YELLOW = "\033[93m"
_GREEN = "\033[92m"
_CYAN = "\033[96m"
_DIM = "\033[2m"
_BOLD = "\033[1m"
_RESET = "\033[0m"
_WIDTH = 72

_STATUS_COLORS = {
    CheckStatus.PASS: _GREEN,
    CheckStatus.WARN: _YELLOW,
    CheckStatus.FAIL: _RED,
}

_DECISION_COLORS = {
    Decision.ALLOW: _GREEN,
    Decision.FLAG: _YELLOW,
    Decision.BLOCK: _RED,
}


# ─── Pretty Printer ─────────────────────────────────────────────────


def print_receipt(title: str, issued: IssuedReceipt) -> None:
    receipt = issued.receipt
    color = _DECISION_COLORS[receipt.decision]

    print(f"\n{'=' * _WIDTH}")
    print(f"{_BOLD}{_CYAN}  {title}{_RESET}")
    print(f"{'=' * _WIDTH}")
    print(f"  Receipt:     {receipt.receipt_id}")
    print(f"  Hash:        {_DIM}{receipt.receipt_hash[:18]}...{_RESET}")
    print(f"  Commitment:  {_DIM}{receipt.inputs_commitment[:18]}...{_RESET}")
    print(f"  Policy:      {receipt.policy_profile}")
    print(f"{'─' * _WIDTH}")

    for check in receipt.checks:
        check_color = _STATUS_COLORS[check.status]
        details = f"  {_DIM}{check.details}{_RESET}" if check.details else ""
        print(f"    {check_color}{check.status.value:<4}{_RESET}  {check.check_id}{details}")

    print(f"{'─' * _WIDTH}")
    if receipt.reasons:
        print(f"  Reasons:     {', '.join(receipt.reasons)}")
    print(f"  Risk score:  {receipt.risk_score}")
    print(f"  {color}{_BOLD}DECISION: {receipt.decision.value}{_RESET}")
    print(f"{'=' * _WIDTH}")


# ─── Main ────────────────────────────────────────────────────────────


async def run() -> int:
    settings = Settings.from_env()
    synthetic = create_synthetic_registry()
    engine = DeedShieldEngine(
        synthetic.registry,
        county=MockCountyVerifier(),
        notary=MockStateNotaryVerifier(),
        property=MockPropertyVerifier(threshold=settings.owner_match_threshold),
        anchors=PortableAnchorManager(LocalLedgerAnchorProvider()),
        verifier_id=settings.verifier_id,
        call_timeout=settings.call_timeout,
        deadline=settings.verification_deadline,
    )

    clean = generate_bundle(
        synthetic,
        "NOTARY-1",
        ocr_data=OcrData(notary_name="Synthetic Notary 1", notary_commission_id="123456", grantor_name="John Doe"),
    )
    suspicious = generate_bundle(
        synthetic,
        "NOTARY-2",
        bundle_id="RAPID-DEMO-2",
        parcel_id="SCAM-101",
        transaction_type="quitclaim",
        policy_profile="STRICT_CA",
    )

    first = await engine.verify_and_issue(clean)
    print_receipt("CLEAN BUNDLE", first)
    second = await engine.verify_and_issue(suspicious)
    print_receipt("SUSPICIOUS BUNDLE", second)

    receipt_id = first.receipt.receipt_id
    anchored = await engine.anchor(receipt_id)
    print(f"\n  Anchored on {anchored.proof.chain_id}: {_DIM}{anchored.proof.tx_hash}{_RESET}")
    revoked = await engine.revoke(receipt_id, "Demo revocation")
    print(f"  Revoked at {revoked.record.revoked_at}")
    integrity = await engine.verify_receipt(receipt_id)
    verdict = f"{_GREEN}intact{_RESET}" if integrity.valid else f"{_RED}TAMPERED{_RESET}"
    print(f"  Integrity after revocation: {verdict}\n")

    return 0 if integrity.valid else 1


def main():
    """Run the demo and exit non-zero if integrity verification failed."""
    logging.basicConfig(level=logging.WARNING, format="%(levelname)s %(name)s: %(message)s")
    print("\n  Starting Deed Shield...")
    sys.exit(asyncio.run(run()))


if __name__ == "__main__":
    main()
