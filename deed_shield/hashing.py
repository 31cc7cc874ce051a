"""
Content addressing: one digest for the whole system.

keccak-256 rendered as 0x-prefixed lowercase hex. Receipt hashes, input
commitments, document hashes and attestation proofs all use it, which keeps
them interoperable with receipts issued by the EVM-based tooling.
"""

from __future__ import annotations

from typing import Any

from eth_utils import keccak

from .canonical import canonicalize


def keccak256_utf8(text: str) -> str:
    """Digest of the UTF-8 encoding of ``text``."""
    return "0x" + keccak(text=text).hex()


def keccak256_bytes(data: bytes) -> str:
    """Digest of raw bytes (e.g. an uploaded document)."""
    return "0x" + keccak(primitive=data).hex()


def digest(data: bytes | str) -> str:
    if isinstance(data, str):
        return keccak256_utf8(data)
    return keccak256_bytes(data)


def canonical_digest(value: Any) -> str:
    """digest(canonicalize(value)) — the commitment/receipt-hash primitive."""
    return keccak256_utf8(canonicalize(value))
