"""
External verifier adapter tests.

HTTP adapters run against ``httpx.MockTransport``; no request leaves the
process. Retry backoff is set to zero.
"""

from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from deed_shield.crosscheck import DeedAddress, HttpAttomClient, map_property
from deed_shield.exceptions import CollaboratorUnavailable
from deed_shield.mocks import MockCountyVerifier, MockPropertyVerifier, MockStateNotaryVerifier
from deed_shield.models import ExternalNotaryStatus
from deed_shield.transport import BASE_DELAY_SECONDS, MAX_ATTEMPTS, attempt_timeout, request_with_retry
from deed_shield.verifiers import (
    CountyVerifier,
    HttpNotaryVerifier,
    HttpPropertyVerifier,
    NotaryVerifier,
    PropertyVerifier,
    match_owner,
    name_similarity,
)


class _Recorder:
    """MockTransport handler replaying canned responses in order."""

    def __init__(self, *responses: httpx.Response):
        self.responses = list(responses)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if len(self.responses) > 1:
            return self.responses.pop(0)
        return self.responses[0]


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


# ═══════════════════════════════════════════════════════════════════════
# OWNER MATCHING
# ═══════════════════════════════════════════════════════════════════════


class TestOwnerMatching:
    def test_identical_names(self):
        assert name_similarity("John Doe", " john doe ") == 100

    def test_containment_is_a_full_match(self):
        result = match_owner("John Doe", "John Doe Jr.")
        assert result.match is True
        assert result.score == 100

    def test_different_names(self):
        result = match_owner("Alice Scammer", "John Doe")
        assert result.match is False
        assert result.score < 80
        assert result.record_owner == "John Doe"

    def test_threshold_is_configurable(self):
        score = name_similarity("Jon Doe", "Joan Dole")
        assert match_owner("Jon Doe", "Joan Dole", threshold=score).match is True
        assert match_owner("Jon Doe", "Joan Dole", threshold=score + 1).match is False

    def test_blank_names_never_match(self):
        assert match_owner("", "John Doe").match is False
        assert match_owner("John Doe", "  ").match is False


# ═══════════════════════════════════════════════════════════════════════
# MOCKS
# ═══════════════════════════════════════════════════════════════════════


class TestMocksSatisfyProtocols:
    def test_protocols(self):
        assert isinstance(MockCountyVerifier(), CountyVerifier)
        assert isinstance(MockStateNotaryVerifier(), NotaryVerifier)
        assert isinstance(MockPropertyVerifier(), PropertyVerifier)

    def test_unknown_commission(self):
        result = asyncio.run(MockStateNotaryVerifier().verify_notary("CA", "000000", "Anyone"))
        assert result.status == ExternalNotaryStatus.UNKNOWN
        assert result.details == "Commission 000000 not found in CA registry"


# ═══════════════════════════════════════════════════════════════════════
# TRANSPORT
# ═══════════════════════════════════════════════════════════════════════


class TestAttemptTimeout:
    def test_attempts_and_backoff_fit_the_call_budget(self):
        timeout = attempt_timeout(5.0)
        backoff = BASE_DELAY_SECONDS * (1 + 2)
        assert MAX_ATTEMPTS * timeout + backoff == pytest.approx(5.0)

    def test_tiny_budget_keeps_a_floor(self):
        assert attempt_timeout(0.1) == 0.1


class TestRequestWithRetry:
    def test_retries_server_errors(self):
        handler = _Recorder(httpx.Response(503), httpx.Response(200, json={"ok": True}))

        async def call():
            async with _client(handler) as client:
                return await request_with_retry(client, "GET", "https://x.test/a", base_delay=0)

        response = asyncio.run(call())
        assert response.status_code == 200
        assert len(handler.requests) == 2

    def test_client_errors_are_not_retried(self):
        handler = _Recorder(httpx.Response(404))

        async def call():
            async with _client(handler) as client:
                return await request_with_retry(client, "GET", "https://x.test/a", base_delay=0)

        assert asyncio.run(call()).status_code == 404
        assert len(handler.requests) == 1

    def test_gives_up_after_cap(self):
        handler = _Recorder(httpx.Response(500))

        async def call():
            async with _client(handler) as client:
                return await request_with_retry(client, "GET", "https://x.test/a", attempts=3, base_delay=0)

        with pytest.raises(CollaboratorUnavailable) as exc_info:
            asyncio.run(call())
        assert exc_info.value.details == {"last_error": "HTTP 500", "attempts": 3}
        assert len(handler.requests) == 3

    def test_transport_errors_are_retried(self):
        calls = []

        def handler(request):
            calls.append(request)
            raise httpx.ConnectError("refused", request=request)

        async def call():
            async with _client(handler) as client:
                return await request_with_retry(client, "GET", "https://x.test/a", attempts=2, base_delay=0)

        with pytest.raises(CollaboratorUnavailable):
            asyncio.run(call())
        assert len(calls) == 2


# ═══════════════════════════════════════════════════════════════════════
# HTTP ADAPTERS
# ═══════════════════════════════════════════════════════════════════════


class TestHttpNotaryVerifier:
    def test_missing_key_is_unknown(self):
        result = asyncio.run(HttpNotaryVerifier(api_key=None).verify_notary("CA", "1", "N"))
        assert result.status == ExternalNotaryStatus.UNKNOWN
        assert result.details == "Missing server configuration (API key)"

    def test_status_is_read_from_response(self):
        handler = _Recorder(httpx.Response(200, json={"status": "revoked"}))

        async def call():
            async with _client(handler) as client:
                verifier = HttpNotaryVerifier("key", client=client, base_delay=0)
                return await verifier.verify_notary("TX", "999999", "Jane Notary")

        result = asyncio.run(call())
        assert result.status == ExternalNotaryStatus.REVOKED
        assert result.details == "Verified via TX registry"
        request = handler.requests[0]
        assert request.headers["Authorization"] == "Bearer key"
        assert json.loads(request.content) == {"state": "TX", "commissionId": "999999", "name": "Jane Notary"}

    def test_unrecognised_status_is_unknown(self):
        handler = _Recorder(httpx.Response(200, json={"status": "PENDING"}))

        async def call():
            async with _client(handler) as client:
                return await HttpNotaryVerifier("key", client=client).verify_notary("TX", "1", "N")

        assert asyncio.run(call()).status == ExternalNotaryStatus.UNKNOWN

    def test_outage_is_unknown(self):
        handler = _Recorder(httpx.Response(502))

        async def call():
            async with _client(handler) as client:
                return await HttpNotaryVerifier("key", client=client, base_delay=0).verify_notary("TX", "1", "N")

        result = asyncio.run(call())
        assert result.status == ExternalNotaryStatus.UNKNOWN
        assert result.details == "External registry unavailable"


class TestHttpPropertyVerifier:
    def test_missing_key_is_unavailable(self):
        with pytest.raises(CollaboratorUnavailable):
            asyncio.run(HttpPropertyVerifier(api_key="").verify_owner("P-1", "John Doe"))

    def test_owner_match(self):
        handler = _Recorder(httpx.Response(200, json={"data": {"owner": {"name": "JOHN DOE"}}}))

        async def call():
            async with _client(handler) as client:
                return await HttpPropertyVerifier("key", client=client).verify_owner("P-1", "John Doe")

        result = asyncio.run(call())
        assert result.match is True
        assert handler.requests[0].url.params["id"] == "P-1"

    def test_http_error_is_unavailable(self):
        handler = _Recorder(httpx.Response(403))

        async def call():
            async with _client(handler) as client:
                return await HttpPropertyVerifier("key", client=client).verify_owner("P-1", "John Doe")

        with pytest.raises(CollaboratorUnavailable):
            asyncio.run(call())


ATTOM_PAYLOAD = {
    "status": {"code": 0},
    "requestId": "attom-req-9",
    "property": [
        {
            "identifier": {"apn": "12-34-567-890-0000", "attomId": 184713191},
            "address": {"line1": "123 MAIN ST", "locality": "CHICAGO", "countrySubd": "IL", "postal1": "60601"},
            "lot": {"lotNum": "10", "block": "5"},
            "owner": {"owner1": {"fullName": "BUYER LLC"}, "owner2": {}},
        }
    ],
}


class TestHttpAttomClient:
    def test_missing_key_returns_nothing(self):
        assert asyncio.run(HttpAttomClient(api_key=None).get_by_parcel("1")) == []

    def test_parcel_lookup(self):
        handler = _Recorder(httpx.Response(200, json=ATTOM_PAYLOAD))

        async def call():
            async with _client(handler) as client:
                return await HttpAttomClient("attom-key", client=client).get_by_parcel("12-34-567-890-0000")

        results = asyncio.run(call())
        assert len(results) == 1
        assert results[0].endpoint == "parcel"
        assert results[0].request_id == "attom-req-9"
        assert results[0].property.apn == "12-34-567-890-0000"
        request = handler.requests[0]
        assert request.headers["apikey"] == "attom-key"
        assert request.url.params["apn"] == "12-34-567-890-0000"

    def test_address_lookup_params(self):
        handler = _Recorder(httpx.Response(200, json={"property": []}))

        async def call():
            async with _client(handler) as client:
                attom = HttpAttomClient("attom-key", client=client)
                return await attom.get_by_address(DeedAddress(line1="123 Main St", city="Chicago", state="IL", zip="60601"))

        assert asyncio.run(call()) == []
        params = handler.requests[0].url.params
        assert params["address1"] == "123 Main St"
        assert params["address2"] == "Chicago, IL 60601"

    def test_outage_returns_nothing(self):
        handler = _Recorder(httpx.Response(503))

        async def call():
            async with _client(handler) as client:
                return await HttpAttomClient("attom-key", client=client, base_delay=0).get_by_parcel("1")

        assert asyncio.run(call()) == []


class TestMapProperty:
    def test_flattens_basic_profile(self):
        prop = map_property(ATTOM_PAYLOAD["property"][0])

        assert prop.address.city == "CHICAGO"
        assert prop.address.state == "IL"
        assert prop.address.zip == "60601"
        assert prop.lot.lot == "10"
        assert prop.owners == ["BUYER LLC"]

    def test_empty_record(self):
        prop = map_property({})
        assert prop.apn is None
        assert prop.owners == []
