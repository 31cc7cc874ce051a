"""
Property-record cross-check against ATTOM.

A parsed deed is compared field by field with the best-matching ATTOM
property record. Each comparison adds a ReportCheck and, when it agrees,
a share of the match confidence:

    PIN/APN          exact 0.55, first-6 prefix 0.25
    address          street+zip 0.25, street+city/state 0.20, city/state 0.10
    owner overlap    >= 0.8 → 0.15, >= 0.5 → 0.08   (grantees vs. record owners)
    legal tokens     all lot/block/tract/subdivision tokens present → 0.05

Temporal and notary-expiration sanity checks only ever WARN. The summary is
FAIL if any check failed, else WARN if any warned, else PASS. Owner names are
compared and discarded, never copied into the report.
"""

from __future__ import annotations

import hashlib
import logging
import re
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal, Optional, Protocol, runtime_checkable

import httpx
from pydantic import Field

from .exceptions import CollaboratorUnavailable
from .models import OwnerMatchResult, WireModel, parse_iso
from .transport import DEFAULT_TIMEOUT_SECONDS, request_with_retry
from .verifiers import OWNER_MATCH_THRESHOLD, match_owner

logger = logging.getLogger(__name__)

PIN_EXACT_WEIGHT = 0.55
PIN_PARTIAL_WEIGHT = 0.25
ADDRESS_STREET_ZIP_WEIGHT = 0.25
ADDRESS_STREET_WEIGHT = 0.2
ADDRESS_CITY_STATE_WEIGHT = 0.1
OWNER_HIGH_WEIGHT = 0.15
OWNER_MODERATE_WEIGHT = 0.08
LEGAL_WEIGHT = 0.05

OWNER_HIGH_OVERLAP = 0.8
OWNER_MODERATE_OVERLAP = 0.5
PIN_PREFIX_LENGTH = 6

Endpoint = Literal["parcel", "address"]


# ─── Models ──────────────────────────────────────────────────────────


class Jurisdiction(WireModel):
    state: str
    county: str


class DeedAddress(WireModel):
    line1: str
    city: str
    state: str
    zip: Optional[str] = None


class RecordingInfo(WireModel):
    doc_number: Optional[str] = None
    recording_date: Optional[str] = None


class DeedNotary(WireModel):
    name: Optional[str] = None
    commission_expiration: Optional[str] = None
    state: Optional[str] = None


class DeedParsed(WireModel):
    """Fields extracted from a recorded deed."""

    jurisdiction: Optional[Jurisdiction] = None
    pin: Optional[str] = None
    address: Optional[DeedAddress] = None
    legal_description_text: Optional[str] = None
    grantors: list[str] = Field(default_factory=list)
    grantees: list[str] = Field(default_factory=list)
    execution_date: Optional[str] = None
    recording: RecordingInfo = Field(default_factory=RecordingInfo)
    notary: Optional[DeedNotary] = None


class AttomAddress(WireModel):
    line1: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip: Optional[str] = None


class AttomLot(WireModel):
    lot: Optional[str] = None
    block: Optional[str] = None
    tract: Optional[str] = None
    subdivision: Optional[str] = None


class AttomProperty(WireModel):
    apn: Optional[str] = None
    alt_id: Optional[str] = None
    address: Optional[AttomAddress] = None
    lot: Optional[AttomLot] = None
    owners: list[str] = Field(default_factory=list)  # comparison only, never persisted


class AttomLookupResult(WireModel):
    property: AttomProperty
    endpoint: Endpoint
    request_id: Optional[str] = None


class ReportStatus(str, Enum):
    PASS = "PASS"
    WARN = "WARN"
    FAIL = "FAIL"
    SKIP = "SKIP"


class ReportCheck(WireModel):
    id: str
    status: ReportStatus
    message: str
    deed_value: Optional[str] = None
    attom_value: Optional[str] = None
    evidence: Optional[dict[str, Any]] = None


class ReportEvidence(WireModel):
    attom_request_id: Optional[str] = None
    endpoint_used: Optional[Endpoint] = None
    match_confidence: float
    timestamp: str
    reason: Optional[str] = None
    canonical_hash: str


class CrossCheckReport(WireModel):
    summary: ReportStatus
    checks: list[ReportCheck]
    evidence: ReportEvidence


@runtime_checkable
class AttomClient(Protocol):
    async def get_by_parcel(self, pin: str) -> list[AttomLookupResult]: ...

    async def get_by_address(self, address: DeedAddress) -> list[AttomLookupResult]: ...


# ─── Normalization ───────────────────────────────────────────────────


_NON_ALNUM = re.compile(r"[^A-Za-z0-9]")
_WHITESPACE = re.compile(r"\s+")
_LLC_LONG_FORM = re.compile(r"LIMITED LIABILITY COMPANY|LTD LIABILITY COMPANY")
_COMPANY_SUFFIXES = re.compile(
    r"\b(LLC|L\.L\.C\.|INC|INCORPORATED|CO|COMPANY|LP|L\.P\.|LLP|L\.L\.P\.|TRUST|ET\s*AL)\b",
    re.IGNORECASE,
)
_NAME_PUNCTUATION = re.compile(r"[^A-Z0-9\s]", re.IGNORECASE)


def normalize_pin(pin: str | None) -> str | None:
    """Strip separators and uppercase, so ``12-34-567`` and ``1234567`` compare equal."""
    if not pin:
        return None
    return _NON_ALNUM.sub("", pin).upper()


def _clean(value: str | None) -> str:
    return _WHITESPACE.sub(" ", (value or "").strip().upper())


def normalize_address(line1: str | None, city: str | None, state: str | None, zip_code: str | None) -> dict[str, str]:
    return {
        "line1": _clean(line1),
        "city": _clean(city),
        "state": _clean(state),
        "zip": (zip_code or "").strip()[:5],
    }


def address_similarity(deed_addr: DeedAddress, attom_addr: AttomAddress) -> tuple[float, str]:
    """Return (score, level); level is one of none, city_state, street, street_zip."""
    d = normalize_address(deed_addr.line1, deed_addr.city, deed_addr.state, deed_addr.zip)
    a = normalize_address(attom_addr.line1, attom_addr.city, attom_addr.state, attom_addr.zip)

    street = d["line1"] == a["line1"]
    city_state = d["city"] == a["city"] and d["state"] == a["state"]
    zip_match = bool(d["zip"]) and bool(a["zip"]) and d["zip"] == a["zip"]

    if street and zip_match:
        return 1.0, "street_zip"
    if street and city_state:
        return 0.75, "street"
    if city_state:
        return 0.5, "city_state"
    return 0.0, "none"


def normalize_name(name: str) -> str:
    upper = _LLC_LONG_FORM.sub("LLC", name.upper())
    stripped = _NAME_PUNCTUATION.sub(" ", _COMPANY_SUFFIXES.sub("", upper))
    return _WHITESPACE.sub(" ", stripped.strip())


def token_overlap(a: list[str], b: list[str]) -> float:
    """Jaccard similarity of two token lists."""
    if not a or not b:
        return 0.0
    set_a, set_b = set(a), set(b)
    union = set_a | set_b
    return len(set_a & set_b) / len(union) if union else 0.0


def name_overlap_score(deed_names: list[str], attom_names: list[str]) -> float:
    """Best pairwise token overlap between two lists of party names."""
    norm_deed = [n for n in map(normalize_name, deed_names) if n]
    norm_attom = [n for n in map(normalize_name, attom_names) if n]
    best = 0.0
    for d in norm_deed:
        for a in norm_attom:
            best = max(best, token_overlap(d.split(), a.split()))
    return best


def canonical_deed_hash(deed: DeedParsed) -> str:
    """sha256 over ``pin|legal|docNumber|recordingDate``, hex without prefix."""
    canonical = "|".join(
        [
            normalize_pin(deed.pin) or "",
            (deed.legal_description_text or "").strip(),
            deed.recording.doc_number or "",
            deed.recording.recording_date or "",
        ]
    )
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


# ─── Cross-Check ─────────────────────────────────────────────────────


def pick_best_candidate(deed: DeedParsed, candidates: list[AttomLookupResult]) -> AttomLookupResult | None:
    """Prefer an exact PIN match, then the closest address."""
    if not candidates:
        return None
    target_pin = normalize_pin(deed.pin)

    def rank(candidate: AttomLookupResult) -> tuple[int, float]:
        prop = candidate.property
        cand_pin = normalize_pin(prop.apn or prop.alt_id)
        pin_exact = 1 if target_pin and cand_pin and target_pin == cand_pin else 0
        address_score = 0.0
        if deed.address and prop.address:
            address_score, _ = address_similarity(deed.address, prop.address)
        return pin_exact, address_score

    # stable sort keeps the client's order among equally ranked candidates
    return sorted(candidates, key=rank, reverse=True)[0]


def _parse_date(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        return parse_iso(value)
    except ValueError:
        return None


def _now_iso(now: datetime) -> str:
    return now.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


async def attom_cross_check(
    deed: DeedParsed, client: AttomClient, now: datetime | None = None
) -> CrossCheckReport:
    now = now or datetime.now(timezone.utc)
    canonical_hash = canonical_deed_hash(deed)

    if not deed.pin and not deed.address:
        return CrossCheckReport(
            summary=ReportStatus.SKIP,
            checks=[
                ReportCheck(
                    id="input",
                    status=ReportStatus.SKIP,
                    message="No PIN or address provided; cannot query ATTOM",
                )
            ],
            evidence=ReportEvidence(
                match_confidence=0.0,
                timestamp=_now_iso(now),
                reason="INSUFFICIENT_INPUT",
                canonical_hash=canonical_hash,
            ),
        )

    endpoint: Endpoint | None = None
    results: list[AttomLookupResult] = []
    if deed.pin:
        endpoint = "parcel"
        results = await client.get_by_parcel(deed.pin)
    if not results and deed.address:
        endpoint = "address"
        results = await client.get_by_address(deed.address)

    candidate = pick_best_candidate(deed, results)
    if candidate is None:
        logger.info("ATTOM returned no match for deed %s", canonical_hash[:12])
        return CrossCheckReport(
            summary=ReportStatus.WARN,
            checks=[
                ReportCheck(
                    id="attom-availability",
                    status=ReportStatus.WARN,
                    message="ATTOM did not return a match",
                    deed_value=normalize_pin(deed.pin) or (deed.address.line1 if deed.address else None),
                )
            ],
            evidence=ReportEvidence(
                endpoint_used=endpoint,
                match_confidence=0.0,
                timestamp=_now_iso(now),
                reason="ATTOM_NO_MATCH",
                canonical_hash=canonical_hash,
            ),
        )

    prop = candidate.property
    checks: list[ReportCheck] = []
    confidence = 0.0

    # A) PIN / APN
    if deed.pin and (prop.apn or prop.alt_id):
        deed_pin = normalize_pin(deed.pin)
        attom_pin = normalize_pin(prop.apn or prop.alt_id)
        if deed_pin and attom_pin and deed_pin == attom_pin:
            confidence += PIN_EXACT_WEIGHT
            status, message = ReportStatus.PASS, "PIN/APN matches"
        elif deed_pin and attom_pin and attom_pin.startswith(deed_pin[:PIN_PREFIX_LENGTH]):
            confidence += PIN_PARTIAL_WEIGHT
            status, message = ReportStatus.WARN, "Partial PIN/APN match"
        else:
            status, message = ReportStatus.FAIL, "PIN/APN mismatch"
        checks.append(
            ReportCheck(id="pin-match", status=status, message=message, deed_value=deed_pin, attom_value=attom_pin)
        )
    else:
        checks.append(
            ReportCheck(
                id="pin-match",
                status=ReportStatus.SKIP,
                message="No PIN/APN provided in deed or ATTOM response",
            )
        )

    # B) Address
    if deed.address and prop.address and prop.address.line1:
        _, level = address_similarity(deed.address, prop.address)
        if level == "street_zip":
            confidence += ADDRESS_STREET_ZIP_WEIGHT
            checks.append(ReportCheck(id="address-match", status=ReportStatus.PASS, message="Street + ZIP match"))
        elif level == "street":
            confidence += ADDRESS_STREET_WEIGHT
            checks.append(
                ReportCheck(
                    id="address-match",
                    status=ReportStatus.WARN,
                    message="Street matches; ZIP missing/different",
                )
            )
        elif level == "city_state":
            confidence += ADDRESS_CITY_STATE_WEIGHT
            checks.append(ReportCheck(id="address-match", status=ReportStatus.WARN, message="Only city/state match"))
        else:
            checks.append(ReportCheck(id="address-match", status=ReportStatus.FAIL, message="Address mismatch"))
    else:
        checks.append(
            ReportCheck(id="address-match", status=ReportStatus.SKIP, message="Address not available for comparison")
        )

    # C) Owner overlap
    if prop.owners and deed.grantees:
        overlap = name_overlap_score(deed.grantees, prop.owners)
        if overlap >= OWNER_HIGH_OVERLAP:
            confidence += OWNER_HIGH_WEIGHT
            status, message = ReportStatus.PASS, "Owner overlap high"
        elif overlap >= OWNER_MODERATE_OVERLAP:
            confidence += OWNER_MODERATE_WEIGHT
            status, message = ReportStatus.WARN, "Owner overlap moderate"
        else:
            status, message = ReportStatus.FAIL, "Owner overlap low"
        checks.append(ReportCheck(id="owner-match", status=status, message=message, evidence={"score": overlap}))
    else:
        checks.append(
            ReportCheck(
                id="owner-match",
                status=ReportStatus.SKIP,
                message="Owner data unavailable; skipped for privacy",
            )
        )

    # D) Legal description tokens
    if prop.lot and deed.legal_description_text:
        legal = deed.legal_description_text.upper()
        tokens = [
            str(t).upper()
            for t in (prop.lot.lot, prop.lot.block, prop.lot.tract, prop.lot.subdivision)
            if t
        ]
        missing = [t for t in tokens if t not in legal]
        if tokens and not missing:
            confidence += LEGAL_WEIGHT
            checks.append(
                ReportCheck(
                    id="legal-description",
                    status=ReportStatus.PASS,
                    message="Legal description tokens present",
                )
            )
        elif tokens:
            checks.append(
                ReportCheck(
                    id="legal-description",
                    status=ReportStatus.WARN,
                    message="Some legal tokens not found in deed description",
                    evidence={"missing": missing},
                )
            )
        else:
            checks.append(
                ReportCheck(id="legal-description", status=ReportStatus.SKIP, message="No legal tokens from ATTOM")
            )
    else:
        checks.append(
            ReportCheck(
                id="legal-description",
                status=ReportStatus.SKIP,
                message="Legal description comparison not available",
            )
        )

    # E) Temporal sanity
    executed = _parse_date(deed.execution_date)
    recorded = _parse_date(deed.recording.recording_date)
    if executed and recorded:
        if executed > recorded:
            checks.append(
                ReportCheck(id="temporal", status=ReportStatus.WARN, message="Execution date is after recording date")
            )
        if recorded > now:
            checks.append(
                ReportCheck(id="temporal", status=ReportStatus.WARN, message="Recording date is in the future")
            )

    # F) Notary commission expiration
    expires = _parse_date(deed.notary.commission_expiration) if deed.notary else None
    if expires and executed and expires < executed:
        checks.append(
            ReportCheck(
                id="notary-expiration",
                status=ReportStatus.WARN,
                message="Notary commission expired before execution",
            )
        )

    if any(c.status == ReportStatus.FAIL for c in checks):
        summary = ReportStatus.FAIL
    elif any(c.status == ReportStatus.WARN for c in checks):
        summary = ReportStatus.WARN
    else:
        summary = ReportStatus.PASS

    return CrossCheckReport(
        summary=summary,
        checks=checks,
        evidence=ReportEvidence(
            attom_request_id=candidate.request_id,
            endpoint_used=candidate.endpoint,
            match_confidence=min(1.0, max(0.0, confidence)),
            timestamp=_now_iso(now),
            canonical_hash=canonical_hash,
        ),
    )


# ─── HTTP Client ─────────────────────────────────────────────────────


BASIC_PROFILE_PATH = "/propertyapi/v1.0.0/property/basicprofile"


class HttpAttomClient:
    """ATTOM property API client. Failures and missing credentials yield no candidates."""

    def __init__(
        self,
        api_key: str | None,
        base_url: str = "https://api.gateway.attomdata.com",
        client: httpx.AsyncClient | None = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        parcel_path: str = BASIC_PROFILE_PATH,
        address_path: str = BASIC_PROFILE_PATH,
        base_delay: float = 0.2,
    ):
        self.api_key = api_key or ""
        self.base_url = base_url.rstrip("/")
        self.client = client
        self.timeout = timeout
        self.parcel_path = parcel_path
        self.address_path = address_path
        self.base_delay = base_delay

    async def get_by_parcel(self, pin: str) -> list[AttomLookupResult]:
        return await self._request(self.parcel_path, {"apn": pin}, "parcel")

    async def get_by_address(self, address: DeedAddress) -> list[AttomLookupResult]:
        locality = f"{address.city}, {address.state}"
        if address.zip:
            locality += f" {address.zip}"
        return await self._request(self.address_path, {"address1": address.line1, "address2": locality}, "address")

    async def _request(self, path: str, params: dict[str, str], endpoint: Endpoint) -> list[AttomLookupResult]:
        if not self.api_key:
            return []

        try:
            response = await request_with_retry(
                self.client,
                "GET",
                f"{self.base_url}{path}",
                params=params,
                headers={"apikey": self.api_key, "accept": "application/json"},
                timeout=self.timeout,
                base_delay=self.base_delay,
            )
        except CollaboratorUnavailable as exc:
            logger.warning("No ATTOM result (%s): %s", endpoint, exc.details.get("last_error", exc))
            return []

        if not response.is_success:
            logger.warning("No ATTOM result (%s): ATTOM error %d", endpoint, response.status_code)
            return []

        try:
            payload = response.json()
        except ValueError:
            logger.warning("ATTOM returned a non-JSON body for %s lookup", endpoint)
            return []

        request_id = payload.get("requestId") or payload.get("transactionId")
        properties = payload.get("property") or payload.get("properties") or []
        return [
            AttomLookupResult(property=map_property(p), endpoint=endpoint, request_id=request_id)
            for p in properties
        ]


def map_property(p: dict[str, Any]) -> AttomProperty:
    """Flatten an ATTOM basicprofile property into the fields the cross-check compares."""
    address = p.get("address") or {}
    owner = p.get("owner") or (p.get("assessment") or {}).get("owner") or {}
    owners = [
        o["fullName"]
        for o in (owner.get("owner1"), owner.get("owner2"))
        if isinstance(o, dict) and o.get("fullName")
    ]
    identifier = p.get("identifier") or {}
    lot = p.get("lot") or (p.get("summary") or {}).get("lot") or {}

    def text(value: Any) -> str | None:
        return None if value is None else str(value)

    return AttomProperty(
        apn=text(identifier.get("apn") or identifier.get("attomId") or (p.get("summary") or {}).get("apn") or p.get("apn")),
        alt_id=text(identifier.get("altId")),
        address=AttomAddress(
            line1=address.get("line1") or address.get("oneLine") or address.get("streetLine"),
            city=address.get("city") or address.get("locality") or address.get("countrySecondarySubd"),
            state=address.get("state") or address.get("countrySubd"),
            zip=text(address.get("postalcode") or address.get("postal1") or address.get("zipcode")),
        ),
        lot=AttomLot(
            lot=text(lot.get("lotNum") or lot.get("lot")),
            block=text(lot.get("block")),
            tract=text(lot.get("tract")),
            subdivision=text(lot.get("subdivision") or lot.get("secLot")),
        ),
        owners=owners,
    )


# ─── PropertyVerifier over ATTOM ─────────────────────────────────────


class AttomPropertyVerifier:
    """PropertyVerifier that reads the record owner from ATTOM's parcel lookup."""

    def __init__(self, client: AttomClient, threshold: int = OWNER_MATCH_THRESHOLD):
        self.client = client
        self.threshold = threshold

    async def verify_owner(self, parcel_id: str, grantor_name: str) -> OwnerMatchResult:
        candidate = pick_best_candidate(DeedParsed(pin=parcel_id), await self.client.get_by_parcel(parcel_id))
        if candidate is None or not candidate.property.owners:
            raise CollaboratorUnavailable(
                f"No ATTOM owner record for parcel {parcel_id}", details={"parcel_id": parcel_id}
            )

        results = [match_owner(grantor_name, owner, self.threshold) for owner in candidate.property.owners]
        return max(results, key=lambda r: r.score)
