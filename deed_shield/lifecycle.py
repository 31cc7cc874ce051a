"""
Receipt trust-status lifecycle: revocation and anchoring.

    revocation:  ACTIVE ──revoke──▶ REVOKED        (terminal, idempotent)
    anchor:      PENDING ──anchor──▶ ANCHORED      (one-way, idempotent)

Both transitions are annotations stored beside the receipt; the receipt
body and its hash are never touched. Repeating a transition returns the
original record instead of raising, and a repeated anchor never reaches the
ledger a second time.

Anchors are portable: every AnchorProof names its chain, and the
PortableAnchorManager keeps retired providers so proofs issued on an old
chain stay verifiable after the active chain changes.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Optional, Protocol, runtime_checkable

from .exceptions import AnchorProviderError, ReceiptNotFoundError, UnknownAnchorChainError
from .hashing import keccak256_utf8
from .models import (
    AnchorProof,
    AnchorStatus,
    BundleInput,
    Receipt,
    ReceiptIntegrity,
    ReceiptStatus,
    RevocationRecord,
    utc_now_iso,
)
from .receipt import verify_receipt_integrity
from .verifiers import AnchorProvider

logger = logging.getLogger(__name__)


# ─── Persistence Capability ──────────────────────────────────────────


@dataclass
class StoredReceipt:
    """A persisted receipt, the raw input it commits to, and its annotations."""

    receipt: Receipt
    raw_input: dict[str, Any]
    anchor_status: AnchorStatus = AnchorStatus.PENDING
    anchor: Optional[AnchorProof] = None
    revocation: Optional[RevocationRecord] = None

    def status(self) -> ReceiptStatus:
        return ReceiptStatus(
            receipt=self.receipt,
            anchor_status=self.anchor_status,
            anchor=self.anchor,
            revocation=self.revocation,
        )


@runtime_checkable
class ReceiptStore(Protocol):
    async def create(self, receipt: Receipt, raw_input: dict[str, Any]) -> StoredReceipt: ...

    async def find_by_id(self, receipt_id: str) -> StoredReceipt | None: ...

    async def update_anchor_status(
        self, receipt_id: str, status: AnchorStatus, proof: AnchorProof
    ) -> StoredReceipt:
        """Store ``proof`` unless the receipt is already anchored; return the stored receipt."""
        ...

    async def append_revocation(self, record: RevocationRecord) -> RevocationRecord:
        """Store ``record`` unless one exists; always return the effective record."""
        ...

    async def list_receipts(self, limit: int = 50) -> list[StoredReceipt]: ...


class InMemoryReceiptStore:
    """Process-local ReceiptStore for tests and single-node demos."""

    def __init__(self) -> None:
        self._records: dict[str, StoredReceipt] = {}
        self._revocations: list[RevocationRecord] = []
        self._lock = asyncio.Lock()

    async def create(self, receipt: Receipt, raw_input: dict[str, Any]) -> StoredReceipt:
        async with self._lock:
            stored = StoredReceipt(receipt=receipt, raw_input=raw_input)
            self._records[receipt.receipt_id] = stored
            return stored

    async def find_by_id(self, receipt_id: str) -> StoredReceipt | None:
        return self._records.get(receipt_id)

    async def update_anchor_status(
        self, receipt_id: str, status: AnchorStatus, proof: AnchorProof
    ) -> StoredReceipt:
        async with self._lock:
            stored = self._require(receipt_id)
            if stored.anchor_status == AnchorStatus.ANCHORED and stored.anchor is not None:
                return stored
            stored.anchor_status = status
            stored.anchor = proof
            return stored

    async def append_revocation(self, record: RevocationRecord) -> RevocationRecord:
        async with self._lock:
            stored = self._require(record.receipt_id)
            if stored.revocation is not None:
                return stored.revocation
            self._revocations.append(record)
            stored.revocation = record
            return record

    def revocations(self) -> list[RevocationRecord]:
        """The append-only revocation log, oldest first."""
        return list(self._revocations)

    async def list_receipts(self, limit: int = 50) -> list[StoredReceipt]:
        records = sorted(self._records.values(), key=lambda r: r.receipt.created_at, reverse=True)
        return records[:limit]

    def _require(self, receipt_id: str) -> StoredReceipt:
        stored = self._records.get(receipt_id)
        if stored is None:
            raise ReceiptNotFoundError(f"Receipt {receipt_id} not found", {"receipt_id": receipt_id})
        return stored


# ─── Anchor Providers ────────────────────────────────────────────────


class LocalLedgerAnchorProvider:
    """An append-only in-process ledger. Each anchor is one block."""

    def __init__(self, chain_id: str = "local-ledger"):
        self.chain_id = chain_id
        self._blocks: dict[str, tuple[int, str]] = {}  # tx hash -> (block number, receipt hash)
        self.anchor_calls = 0

    async def anchor(self, receipt_hash: str) -> AnchorProof:
        self.anchor_calls += 1
        block_number = len(self._blocks) + 1
        tx_hash = keccak256_utf8(f"{self.chain_id}:{block_number}:{receipt_hash}")
        self._blocks[tx_hash] = (block_number, receipt_hash)
        return AnchorProof(
            chain_id=self.chain_id,
            tx_hash=tx_hash,
            block_number=block_number,
            timestamp=utc_now_iso(),
        )

    async def verify_anchor(self, proof: AnchorProof) -> bool:
        if proof.chain_id != self.chain_id:
            return False
        entry = self._blocks.get(proof.tx_hash)
        if entry is None:
            return False
        return proof.block_number is None or proof.block_number == entry[0]

    def anchored_hash(self, tx_hash: str) -> str | None:
        entry = self._blocks.get(tx_hash)
        return entry[1] if entry else None


class PortableAnchorManager:
    """Routes new anchors to the active chain and verifies proofs on any known chain."""

    def __init__(self, initial_provider: AnchorProvider):
        self._active = initial_provider
        self._history: dict[str, AnchorProvider] = {}

    @property
    def active_chain_id(self) -> str:
        return self._active.chain_id

    def switch_anchor_chain(self, new_provider: AnchorProvider) -> None:
        """Make ``new_provider`` active; the previous one is kept for verification only."""
        self._history[self._active.chain_id] = self._active
        self._active = new_provider
        logger.info("Switched anchor chain to %s", new_provider.chain_id)

    async def anchor_receipt(self, receipt_hash: str) -> AnchorProof:
        try:
            return await self._active.anchor(receipt_hash)
        except Exception as exc:
            raise AnchorProviderError(
                f"Anchoring on {self._active.chain_id} failed: {exc}",
                details={"chain_id": self._active.chain_id},
            ) from exc

    async def verify_historical_proof(self, proof: AnchorProof) -> bool:
        if proof.chain_id == self._active.chain_id:
            return await self._active.verify_anchor(proof)
        provider = self._history.get(proof.chain_id)
        if provider is None:
            raise UnknownAnchorChainError(
                f"No provider found for chain {proof.chain_id}", {"chain_id": proof.chain_id}
            )
        return await provider.verify_anchor(proof)


# ─── Lifecycle Service ───────────────────────────────────────────────


@dataclass(frozen=True)
class RevocationOutcome:
    record: RevocationRecord
    newly_revoked: bool


@dataclass(frozen=True)
class AnchorOutcome:
    proof: AnchorProof
    newly_anchored: bool


@dataclass
class ReceiptLifecycle:
    store: ReceiptStore
    anchors: Optional[PortableAnchorManager] = None
    default_revoker: str = field(default="deed-shield")
    _anchor_locks: dict[str, asyncio.Lock] = field(default_factory=dict, init=False, repr=False)

    async def record(self, receipt: Receipt, bundle: BundleInput | dict[str, Any]) -> StoredReceipt:
        raw = bundle.to_wire() if isinstance(bundle, BundleInput) else bundle
        return await self.store.create(receipt, raw)

    async def get(self, receipt_id: str) -> StoredReceipt:
        stored = await self.store.find_by_id(receipt_id)
        if stored is None:
            raise ReceiptNotFoundError(f"Receipt {receipt_id} not found", {"receipt_id": receipt_id})
        return stored

    async def status(self, receipt_id: str) -> ReceiptStatus:
        return (await self.get(receipt_id)).status()

    async def verify(self, receipt_id: str) -> ReceiptIntegrity:
        """Integrity check. Revocation does not affect the outcome."""
        stored = await self.get(receipt_id)
        return verify_receipt_integrity(stored.receipt, stored.raw_input)

    async def revoke(
        self, receipt_id: str, reason: str, revoked_by: str | None = None
    ) -> RevocationOutcome:
        stored = await self.get(receipt_id)
        if stored.revocation is not None:
            return RevocationOutcome(record=stored.revocation, newly_revoked=False)

        candidate = RevocationRecord(
            receipt_id=receipt_id,
            reason=reason,
            revoked_by=revoked_by or self.default_revoker,
            revoked_at=utc_now_iso(),
        )
        effective = await self.store.append_revocation(candidate)
        newly = effective == candidate
        if newly:
            logger.info("Receipt %s revoked by %s", receipt_id, effective.revoked_by)
        return RevocationOutcome(record=effective, newly_revoked=newly)

    async def anchor(self, receipt_id: str) -> AnchorOutcome:
        await self.get(receipt_id)
        lock = self._anchor_locks.setdefault(receipt_id, asyncio.Lock())
        # one ledger write per receipt
        async with lock:
            stored = await self.get(receipt_id)
            if stored.anchor_status == AnchorStatus.ANCHORED and stored.anchor is not None:
                return AnchorOutcome(proof=stored.anchor, newly_anchored=False)
            if self.anchors is None:
                raise AnchorProviderError("No anchor provider configured")

            proof = await self.anchors.anchor_receipt(stored.receipt.receipt_hash)
            stored = await self.store.update_anchor_status(receipt_id, AnchorStatus.ANCHORED, proof)
        if stored.anchor != proof:
            return AnchorOutcome(proof=stored.anchor, newly_anchored=False)
        logger.info("Receipt %s anchored on %s tx=%s", receipt_id, proof.chain_id, proof.tx_hash)
        return AnchorOutcome(proof=proof, newly_anchored=True)

    async def verify_anchor(self, receipt_id: str) -> bool:
        stored = await self.get(receipt_id)
        if stored.anchor is None:
            return False
        if self.anchors is None:
            raise AnchorProviderError("No anchor provider configured")
        return await self.anchors.verify_historical_proof(stored.anchor)
