"""
Notary seal verification.

A seal is the notary's EIP-191 ``personal_sign`` signature over the document
hash (the hash string itself is the signed message). The payload is
versioned: ``"v1:<0x-signature>"``. A bare signature without a version tag is
read as v1, which is how the earliest bundles were submitted.

Malformed payloads, unknown versions, unrecoverable signatures and signer
mismatches are all the same outcome to the caller: the seal is invalid.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass

from eth_account import Account
from eth_account.messages import encode_defunct
from eth_account.signers.local import LocalAccount
from eth_utils import keccak

from .models import Notary

logger = logging.getLogger(__name__)

SUPPORTED_SEAL_VERSIONS: frozenset[str] = frozenset({"v1"})

_VERSION_PREFIX = re.compile(r"^(v\d+):(.*)$", re.DOTALL)


@dataclass(frozen=True)
class SealVerdict:
    """Outcome of a seal check. ``detail`` is for humans only."""

    valid: bool
    detail: str
    signer: str | None = None


def parse_seal_payload(seal_payload: str) -> tuple[str, str]:
    """Split a payload into (version, signature). Untagged payloads are v1."""
    match = _VERSION_PREFIX.match(seal_payload)
    if match:
        return match.group(1), match.group(2)
    return "v1", seal_payload


def recover_signer(doc_hash: str, signature: str) -> str:
    """Recover the address that signed ``doc_hash``. Raises on malformed signatures."""
    return Account.recover_message(encode_defunct(text=doc_hash), signature=signature)


def verify_seal(doc_hash: str, seal_payload: str, notary: Notary) -> SealVerdict:
    version, signature = parse_seal_payload(seal_payload)
    if version not in SUPPORTED_SEAL_VERSIONS:
        return SealVerdict(False, f"Unsupported seal version '{version}'")

    try:
        signer = recover_signer(doc_hash, signature)
    except Exception as exc:  # any decoding/recovery failure means the seal cannot be trusted
        logger.info("Seal signature for notary %s could not be parsed: %s", notary.id, exc)
        return SealVerdict(False, "Signature parse error")

    if signer.lower() != notary.public_key.lower():
        return SealVerdict(False, "Signature mismatch", signer=signer)
    return SealVerdict(True, "Seal verified", signer=signer)


# ─── Signing Helpers (synthetic data and fixtures) ──────────────────


def derive_notary_account(notary_id: str) -> LocalAccount:
    """Deterministic key for a synthetic notary: keccak256("notary:<id>")."""
    return Account.from_key(keccak(text=f"notary:{notary_id}"))


def sign_doc_hash(account: LocalAccount, doc_hash: str) -> str:
    """Produce a v1 seal payload for ``doc_hash``."""
    signed = account.sign_message(encode_defunct(text=doc_hash))
    return "v1:0x" + bytes(signed.signature).hex()
