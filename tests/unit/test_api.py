"""
Unit tests for the claimsync HTTP API.

Tests authentication, claim intake, address registration and entry queries.
"""
import httpx
from fastapi.testclient import TestClient

from claimsync.claims import canonical_bytes, claim_from_dict
from claimsync.control_plane import api
from claimsync.control_plane.api import app
from claimsync.control_plane.validator import SignatureValidator
from claimsync.messaging.publisher import Topic


class ApiTestCase:
    """Fresh in-memory stores per test."""

    def setup_method(self):
        api.reset_stores()
        api.initialize_stores()
        self.client = TestClient(app)

    def teardown_method(self):
        api.reset_stores()


class TestAuthentication(ApiTestCase):
    """Test API authentication."""

    def test_healthz_no_auth_required(self):
        response = self.client.get("/healthz")
        assert response.status_code == 200
        assert response.json() == {"status": "ok"}

    def test_metrics_no_auth_required(self):
        response = self.client.get("/metrics")
        assert response.status_code == 200
        assert "claimsync_claims_stored_total" in response.text
        assert "claimsync_entries_stuck" in response.text

    def test_missing_token(self):
        response = self.client.get("/v1/summary")
        assert response.status_code == 401

    def test_invalid_token(self):
        response = self.client.get("/v1/summary", headers={"Authorization": "Bearer wrong-token"})
        assert response.status_code == 401

    def test_valid_token(self, auth_headers):
        response = self.client.get("/v1/summary", headers=auth_headers)
        assert response.status_code == 200


class TestClaimIntake(ApiTestCase):
    """Test POST /v1/claims and GET /v1/claims/{id}."""

    def test_store_claim(self, auth_headers, claim_data):
        response = self.client.post("/v1/claims", json=claim_data(), headers=auth_headers)

        assert response.status_code == 200
        data = response.json()
        assert data['claim_id'] == "claim-0001"

        entry = api.synchronizer.entry_store.get(data['address'])
        assert entry.claim_id == "claim-0001"
        assert len(api.synchronizer.publisher.by_topic(Topic.CLAIM_ADDRESS_KNOWN)) == 1

    def test_reject_non_claim(self, auth_headers):
        response = self.client.post("/v1/claims", json={"hello": "world"}, headers=auth_headers)

        assert response.status_code == 400
        assert response.json()['detail'] == "Request Body must be a Claim."

    def test_reject_unaccepted_type(self, auth_headers, claim_data):
        response = self.client.post("/v1/claims", json=claim_data(type="License"), headers=auth_headers)

        assert response.status_code == 400
        assert "Work" in response.json()['detail']
        assert api.synchronizer.entry_store.count_by_state(20)['resolved'] == 0

    def test_reject_bad_signature(self, auth_headers, claim_data):
        client = httpx.Client(
            base_url="http://validator.local",
            transport=httpx.MockTransport(lambda request: httpx.Response(200, json={'valid': False}))
        )
        api.validator = SignatureValidator(url="http://validator.local", client=client)

        response = self.client.post("/v1/claims", json=claim_data(), headers=auth_headers)

        assert response.status_code == 400
        assert "signature is incorrect" in response.json()['detail']
        assert api.synchronizer.publisher.messages == []

    def test_validator_unavailable(self, auth_headers, claim_data):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        client = httpx.Client(base_url="http://validator.local", transport=httpx.MockTransport(handler))
        api.validator = SignatureValidator(url="http://validator.local", client=client)

        response = self.client.post("/v1/claims", json=claim_data(), headers=auth_headers)

        assert response.status_code == 502

    def test_get_claim(self, auth_headers, claim_data):
        stored = self.client.post("/v1/claims", json=claim_data(), headers=auth_headers).json()

        response = self.client.get("/v1/claims/claim-0001", headers=auth_headers)

        assert response.status_code == 200
        assert response.json()['address'] == stored['address']
        assert response.json()['claim']['publicKey'] == "02f1c1a6d4e8b3"

    def test_stored_claim_keeps_submitted_values(self, auth_headers, claim_data):
        submitted = claim_data(dateCreated="2017-11-13T15:00:00.000Z", archiveUrl="ipfs://archive")
        self.client.post("/v1/claims", json=submitted, headers=auth_headers)

        response = self.client.get("/v1/claims/claim-0001", headers=auth_headers)

        assert response.json()['claim'] == submitted

    def test_get_unknown_claim(self, auth_headers):
        response = self.client.get("/v1/claims/missing", headers=auth_headers)
        assert response.status_code == 404


class TestEntries(ApiTestCase):
    """Test address registration and entry endpoints."""

    def test_register_addresses(self, auth_headers):
        response = self.client.post(
            "/v1/addresses",
            json={"addresses": ["h1", "h2", "h2"]},
            headers=auth_headers
        )

        assert response.status_code == 200
        assert response.json() == {"received": 3, "registered": 2}

    def test_register_rejects_malformed_addresses(self, auth_headers):
        """Addresses are identity keys, so they are never trimmed or dropped."""
        for bad in ([" h1"], ["h1", ""], ["h1\n"]):
            response = self.client.post("/v1/addresses", json={"addresses": bad}, headers=auth_headers)

            assert response.status_code == 422

        assert api.synchronizer.entry_store.get("h1") is None

    def test_get_entry(self, auth_headers):
        self.client.post("/v1/addresses", json={"addresses": ["h1"]}, headers=auth_headers)

        response = self.client.get("/v1/entries/h1", headers=auth_headers)

        assert response.status_code == 200
        assert response.json()['state'] == "pending"
        assert response.json()['entry']['attempt_count'] == 0

    def test_get_unknown_entry(self, auth_headers):
        response = self.client.get("/v1/entries/nope", headers=auth_headers)
        assert response.status_code == 404

    def test_stuck_entries(self, auth_headers):
        api.synchronizer.register_addresses(["h1"])
        entry = api.synchronizer.entry_store.get("h1")
        for i in range(api.config.download_max_attempts + 1):
            api.synchronizer.entry_store.record_attempt(entry, i)

        response = self.client.get("/v1/entries/stuck", headers=auth_headers)

        assert response.status_code == 200
        data = response.json()
        assert data['count'] == 1
        assert data['entries'][0]['address'] == "h1"
        assert self.client.get("/v1/entries/h1", headers=auth_headers).json()['state'] == "stuck"

        summary = self.client.get("/v1/summary", headers=auth_headers).json()
        assert summary['entries'] == {'resolved': 0, 'pending': 0, 'stuck': 1}
        assert summary['scheduler_state'] == "idle"

    def test_resolve_entry(self, auth_headers, claim_data):
        claim = claim_from_dict(claim_data())
        address = api.synchronizer.content_store.put(canonical_bytes(claim))
        api.synchronizer.register_addresses([address])

        response = self.client.post(f"/v1/entries/{address}/resolve", headers=auth_headers)

        assert response.status_code == 200
        assert response.json()['resolved'] is True
        assert response.json()['claim_id'] == "claim-0001"

        again = self.client.post(f"/v1/entries/{address}/resolve", headers=auth_headers)
        assert again.status_code == 409

    def test_resolve_entry_failure_reported(self, auth_headers):
        api.synchronizer.register_addresses(["a" * 64])

        response = self.client.post(f"/v1/entries/{'a' * 64}/resolve", headers=auth_headers)

        assert response.status_code == 200
        assert response.json()['resolved'] is False
        assert response.json()['stage'] == "fetch"

    def test_resolve_unknown_entry(self, auth_headers):
        response = self.client.post("/v1/entries/nope/resolve", headers=auth_headers)
        assert response.status_code == 404
