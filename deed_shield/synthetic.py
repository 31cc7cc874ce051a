"""
Synthetic trust registry and bundle generator.

Notary keys are derived deterministically from their ids, so a registry
rebuilt in another process still verifies seals produced here. Bundle
generation is random; pass a seeded ``random.Random`` for repeatable runs.
"""

from __future__ import annotations

import base64
import random
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from eth_account.signers.local import LocalAccount

from .hashing import keccak256_bytes, keccak256_utf8
from .models import (
    BundleInput,
    DocInput,
    Notary,
    NotaryStatus,
    OcrData,
    PolicyInput,
    PropertyInput,
    ProviderStatus,
    RonInput,
    RonProvider,
    TrustRegistry,
    utc_now_iso,
)
from .seal import derive_notary_account, sign_doc_hash

STATES = ["CA", "NY", "TX", "FL", "WA"]

SEAL_SCHEME = "SIM-ECDSA-v1"
GARBAGE_SEAL = "v1:0xdeadbeef"


@dataclass
class SyntheticRegistry:
    registry: TrustRegistry
    notary_accounts: dict[str, LocalAccount]

    def account_for(self, notary_id: str) -> LocalAccount:
        return self.notary_accounts[notary_id]


def create_synthetic_registry(notary_count: int = 5, now: Optional[datetime] = None) -> SyntheticRegistry:
    """Active notaries NOTARY-1..n cycling through STATES, valid from yesterday for a year."""
    now = now or datetime.now(timezone.utc)
    accounts: dict[str, LocalAccount] = {}
    notaries = []
    for index in range(notary_count):
        notary_id = f"NOTARY-{index + 1}"
        account = derive_notary_account(notary_id)
        accounts[notary_id] = account
        notaries.append(
            Notary(
                id=notary_id,
                name=f"Synthetic Notary {index + 1}",
                commission_state=STATES[index % len(STATES)],
                status=NotaryStatus.ACTIVE,
                public_key=account.address,
                valid_from=now - timedelta(days=1),
                valid_to=now + timedelta(days=365),
            )
        )

    registry = TrustRegistry(
        version="1.0",
        issued_at=utc_now_iso(),
        issuer="Synthetic Trust Registry",
        signing_key_id="registry-key-1",
        ron_providers=[
            RonProvider(id="RON-1", name="Synthetic RON One", status=ProviderStatus.ACTIVE),
            RonProvider(id="RON-2", name="Synthetic RON Two", status=ProviderStatus.SUSPENDED),
        ],
        notaries=notaries,
    )
    return SyntheticRegistry(registry=registry, notary_accounts=accounts)


def generate_bundle(
    synthetic: SyntheticRegistry,
    notary_id: str = "NOTARY-1",
    *,
    bundle_id: Optional[str] = None,
    document: Optional[bytes] = None,
    parcel_id: str = "PARCEL-12345",
    transaction_type: str = "warranty",
    policy_profile: Optional[str] = None,
    ocr_data: Optional[OcrData] = None,
) -> BundleInput:
    """A clean, correctly sealed bundle. With ``document`` the docHash is the document's digest."""
    notary = next(n for n in synthetic.registry.notaries if n.id == notary_id)
    if document is not None:
        doc = DocInput(doc_hash=keccak256_bytes(document), pdf_base64=base64.b64encode(document).decode("ascii"))
    else:
        doc = DocInput(doc_hash=keccak256_utf8(f"doc:{uuid.uuid4()}"))

    return BundleInput(
        bundle_id=bundle_id or f"BUNDLE-{uuid.uuid4().hex[:8].upper()}",
        transaction_type=transaction_type,
        ron=RonInput(
            provider="RON-1",
            notary_id=notary.id,
            commission_state=notary.commission_state,
            seal_payload=sign_doc_hash(synthetic.account_for(notary.id), doc.doc_hash),
            seal_scheme=SEAL_SCHEME,
        ),
        doc=doc,
        property=PropertyInput(parcel_id=parcel_id, county="Demo County", state=notary.commission_state),
        ocr_data=ocr_data,
        policy=PolicyInput(profile=policy_profile or f"STANDARD_{notary.commission_state}"),
        timestamp=utc_now_iso(),
    )


def generate_synthetic_bundles(
    synthetic: SyntheticRegistry,
    count: int,
    fraud_rate: float = 0.2,
    rng: Optional[random.Random] = None,
) -> list[BundleInput]:
    """A mix of clean and fraudulent bundles.

    A fraudulent bundle carries one of: a garbage seal, a commission state
    that differs from the notary's, or a rapid-transfer bundle id; some of
    them also point at a flagged parcel.
    """
    rng = rng or random.Random()
    bundles: list[BundleInput] = []
    for i in range(count):
        notary = rng.choice(synthetic.registry.notaries)
        doc_hash = keccak256_utf8(f"{uuid.UUID(int=rng.getrandbits(128))}-{i}")
        is_fraud = rng.random() < fraud_rate
        prefix = "STANDARD" if rng.random() < 0.5 else "STRICT"
        transaction_type = "quitclaim" if rng.random() < 0.2 else "warranty"

        seal_payload = sign_doc_hash(synthetic.account_for(notary.id), doc_hash)
        commission_state = notary.commission_state
        bundle_id = f"BUNDLE-{i + 1}"
        parcel_id = f"PARCEL-{i}"

        if is_fraud:
            fraud_type = rng.randrange(3)
            if fraud_type == 0:
                seal_payload = GARBAGE_SEAL
            elif fraud_type == 1:
                commission_state = rng.choice([s for s in STATES if s != notary.commission_state])
            else:
                bundle_id = f"RAPID-{bundle_id}"
            if rng.random() < 0.3:
                parcel_id = "SCAM-101"

        bundles.append(
            BundleInput(
                bundle_id=bundle_id,
                transaction_type=transaction_type,
                ron=RonInput(
                    provider="RON-1",
                    notary_id=notary.id,
                    commission_state=commission_state,
                    seal_payload=seal_payload,
                    seal_scheme=SEAL_SCHEME,
                ),
                doc=DocInput(doc_hash=doc_hash),
                property=PropertyInput(parcel_id=parcel_id, county="Demo County", state=notary.commission_state),
                policy=PolicyInput(profile=f"{prefix}_{notary.commission_state}"),
                timestamp=utc_now_iso(),
            )
        )
    return bundles
