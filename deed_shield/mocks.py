"""
In-memory verifier doubles for demos and tests.

Each one satisfies the same capability protocol as its production
counterpart, so the pipeline cannot tell them apart. ``latency`` simulates
a slow network hop.
"""

from __future__ import annotations

import asyncio
from typing import Optional

from .crosscheck import AttomLookupResult, DeedAddress
from .exceptions import CollaboratorUnavailable
from .models import (
    CountyCheckResult,
    CountyStatus,
    ExternalNotaryStatus,
    NotaryCheckResult,
    OwnerMatchResult,
)
from .verifiers import OWNER_MATCH_THRESHOLD, match_owner

DEFAULT_COUNTY_RECORDS: dict[str, CountyCheckResult] = {
    "SCAM-101": CountyCheckResult(
        status=CountyStatus.FLAGGED, details="Parcel associated with known deed fraud ring"
    ),
    "LOCKED-999": CountyCheckResult(
        status=CountyStatus.LOCKED, details="Administrative lock by County Recorder"
    ),
    "DISPUTE-500": CountyCheckResult(
        status=CountyStatus.FLAGGED, details="Active quiet title action pending"
    ),
}

DEFAULT_COMMISSIONS: dict[str, ExternalNotaryStatus] = {
    "999999": ExternalNotaryStatus.REVOKED,
    "888888": ExternalNotaryStatus.SUSPENDED,
    "123456": ExternalNotaryStatus.ACTIVE,
}

DEFAULT_OWNERS: dict[str, str] = {
    "PARCEL-12345": "John Doe",
}


class MockCountyVerifier:
    def __init__(self, records: Optional[dict[str, CountyCheckResult]] = None, latency: float = 0.0):
        self.records = DEFAULT_COUNTY_RECORDS if records is None else records
        self.latency = latency
        self.calls = 0

    async def verify_parcel(self, parcel_id: str, county: str, state: str) -> CountyCheckResult:
        self.calls += 1
        if self.latency:
            await asyncio.sleep(self.latency)
        return self.records.get(parcel_id) or CountyCheckResult(status=CountyStatus.CLEAN)


class MockStateNotaryVerifier:
    """Commission ids not on file come back UNKNOWN."""

    def __init__(self, commissions: Optional[dict[str, ExternalNotaryStatus]] = None, latency: float = 0.0):
        self.commissions = DEFAULT_COMMISSIONS if commissions is None else commissions
        self.latency = latency
        self.calls = 0

    async def verify_notary(self, state: str, commission_id: str, name: str) -> NotaryCheckResult:
        self.calls += 1
        if self.latency:
            await asyncio.sleep(self.latency)
        status = self.commissions.get(commission_id)
        if status is None:
            return NotaryCheckResult(
                status=ExternalNotaryStatus.UNKNOWN,
                details=f"Commission {commission_id} not found in {state} registry",
            )
        return NotaryCheckResult(status=status, details=f"Verified via {state} registry")


class MockPropertyVerifier:
    def __init__(
        self,
        owners: Optional[dict[str, str]] = None,
        threshold: int = OWNER_MATCH_THRESHOLD,
        latency: float = 0.0,
    ):
        self.owners = DEFAULT_OWNERS if owners is None else owners
        self.threshold = threshold
        self.latency = latency
        self.calls = 0

    async def verify_owner(self, parcel_id: str, grantor_name: str) -> OwnerMatchResult:
        self.calls += 1
        if self.latency:
            await asyncio.sleep(self.latency)
        record_owner = self.owners.get(parcel_id)
        if record_owner is None:
            raise CollaboratorUnavailable(f"No owner record for parcel {parcel_id}")
        return match_owner(grantor_name, record_owner, self.threshold)


class MockAttomClient:
    """Returns canned candidates for parcel and address lookups."""

    def __init__(
        self,
        parcel: Optional[list[AttomLookupResult]] = None,
        address: Optional[list[AttomLookupResult]] = None,
    ):
        self.parcel = parcel or []
        self.address = address or []
        self.parcel_calls: list[str] = []
        self.address_calls: list[DeedAddress] = []

    async def get_by_parcel(self, pin: str) -> list[AttomLookupResult]:
        self.parcel_calls.append(pin)
        return list(self.parcel)

    async def get_by_address(self, address: DeedAddress) -> list[AttomLookupResult]:
        self.address_calls.append(address)
        return list(self.address)
