"""
External verifier capabilities.

The pipeline depends on these protocols only. Each method may be slow or
fail; the pipeline bounds it with a timeout and turns any failure into a
WARN "could not confirm" check. Implementations here are the HTTP-backed
production adapters; in-memory doubles live in ``mocks.py``.

Owner-name matching
-------------------
A grantor matches the record owner when either name contains the other
(case-insensitive), or when their difflib SequenceMatcher similarity is at
least ``OWNER_MATCH_THRESHOLD`` percent.
"""

from __future__ import annotations

import logging
from difflib import SequenceMatcher
from typing import Protocol, runtime_checkable

import httpx

from .exceptions import CollaboratorUnavailable
from .models import (
    AnchorProof,
    CountyCheckResult,
    ExternalNotaryStatus,
    NotaryCheckResult,
    OwnerMatchResult,
)
from .transport import DEFAULT_TIMEOUT_SECONDS, request_with_retry

logger = logging.getLogger(__name__)

# Minimum similarity (0-100) for a grantor to count as the record owner
OWNER_MATCH_THRESHOLD = 80


# ─── Capability Protocols ────────────────────────────────────────────


@runtime_checkable
class CountyVerifier(Protocol):
    async def verify_parcel(self, parcel_id: str, county: str, state: str) -> CountyCheckResult: ...


@runtime_checkable
class NotaryVerifier(Protocol):
    async def verify_notary(self, state: str, commission_id: str, name: str) -> NotaryCheckResult: ...


@runtime_checkable
class PropertyVerifier(Protocol):
    async def verify_owner(self, parcel_id: str, grantor_name: str) -> OwnerMatchResult: ...


@runtime_checkable
class AnchorProvider(Protocol):
    """A ledger a receipt hash can be published to. ``chain_id`` identifies it forever."""

    chain_id: str

    async def anchor(self, receipt_hash: str) -> AnchorProof: ...

    async def verify_anchor(self, proof: AnchorProof) -> bool: ...


# ─── Fuzzy Owner Matching ────────────────────────────────────────────


def name_similarity(a: str, b: str) -> int:
    """Similarity of two names as a 0-100 integer."""
    s1 = a.strip().lower()
    s2 = b.strip().lower()
    if not s1 and not s2:
        return 100
    return round(SequenceMatcher(None, s1, s2).ratio() * 100)


def match_owner(
    grantor_name: str, record_owner: str, threshold: int = OWNER_MATCH_THRESHOLD
) -> OwnerMatchResult:
    grantor = grantor_name.strip().lower()
    owner = record_owner.strip().lower()
    if not grantor or not owner:
        return OwnerMatchResult(match=False, score=0, record_owner=record_owner)

    if grantor in owner or owner in grantor:
        return OwnerMatchResult(match=True, score=100, record_owner=record_owner)

    score = name_similarity(grantor, owner)
    return OwnerMatchResult(match=score >= threshold, score=score, record_owner=record_owner)


# ─── HTTP Notary Registry ────────────────────────────────────────────


class HttpNotaryVerifier:
    """State notary registry lookup through a commission-check aggregator."""

    def __init__(
        self,
        api_key: str | None,
        base_url: str = "https://api.notary-check.com/v1",
        client: httpx.AsyncClient | None = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        base_delay: float = 0.2,
    ):
        self.api_key = api_key or ""
        self.base_url = base_url.rstrip("/")
        self.client = client
        self.timeout = timeout
        self.base_delay = base_delay
        if not self.api_key:
            logger.warning("No NOTARY_API_KEY configured; external notary checks will report UNKNOWN")

    async def verify_notary(self, state: str, commission_id: str, name: str) -> NotaryCheckResult:
        if not self.api_key:
            return NotaryCheckResult(
                status=ExternalNotaryStatus.UNKNOWN,
                details="Missing server configuration (API key)",
            )

        try:
            response = await request_with_retry(
                self.client,
                "POST",
                f"{self.base_url}/check",
                json={"state": state, "commissionId": commission_id, "name": name},
                headers={"Authorization": f"Bearer {self.api_key}"},
                timeout=self.timeout,
                base_delay=self.base_delay,
            )
        except CollaboratorUnavailable as exc:
            logger.warning("Notary registry unavailable: %s", exc)
            return NotaryCheckResult(
                status=ExternalNotaryStatus.UNKNOWN, details="External registry unavailable"
            )

        if response.status_code != 200:
            logger.warning("Notary registry returned HTTP %d", response.status_code)
            return NotaryCheckResult(
                status=ExternalNotaryStatus.UNKNOWN, details=f"Registry error {response.status_code}"
            )

        data = response.json()
        try:
            status = ExternalNotaryStatus(str(data.get("status", "")).upper())
        except ValueError:
            status = ExternalNotaryStatus.UNKNOWN
        return NotaryCheckResult(
            status=status, details=data.get("details") or f"Verified via {state} registry"
        )


# ─── HTTP Property Owner Lookup ──────────────────────────────────────


class HttpPropertyVerifier:
    """Record-owner lookup by parcel id against a property data API."""

    def __init__(
        self,
        api_key: str | None,
        base_url: str = "https://apis.estated.com/v4/property",
        client: httpx.AsyncClient | None = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        threshold: int = OWNER_MATCH_THRESHOLD,
        base_delay: float = 0.2,
    ):
        self.api_key = api_key or ""
        self.base_url = base_url
        self.client = client
        self.timeout = timeout
        self.threshold = threshold
        self.base_delay = base_delay

    async def verify_owner(self, parcel_id: str, grantor_name: str) -> OwnerMatchResult:
        if not self.api_key:
            raise CollaboratorUnavailable("No PROPERTY_API_KEY configured")

        response = await request_with_retry(
            self.client,
            "GET",
            self.base_url,
            params={"token": self.api_key, "id": parcel_id},
            timeout=self.timeout,
            base_delay=self.base_delay,
        )
        if response.status_code != 200:
            raise CollaboratorUnavailable(
                f"Property lookup failed with HTTP {response.status_code}",
                details={"parcel_id": parcel_id},
            )

        data = response.json()
        record_owner = ((data.get("data") or {}).get("owner") or {}).get("name") or ""
        result = match_owner(grantor_name, record_owner, self.threshold)
        logger.info("Owner match for %s: score=%d match=%s", parcel_id, result.score, result.match)
        return result
