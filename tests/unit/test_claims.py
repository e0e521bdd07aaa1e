"""
Unit tests for the claim model and canonical serialization.
"""
import json

import pytest

from claimsync.claims import (
    Claim,
    ClaimType,
    InvalidClaim,
    canonical_bytes,
    claim_from_dict,
    is_claim,
    parse_claim,
)


class TestClaimParsing:
    """Test parsing untrusted bytes into claims."""

    def test_parse_valid_claim(self, claim_data):
        """Well-formed JSON should parse into a claim."""
        data = json.dumps(claim_data()).encode('utf-8')

        claim = parse_claim(data)

        assert isinstance(claim, Claim)
        assert claim.id == "claim-0001"
        assert claim.type == ClaimType.WORK
        assert claim.public_key == "02f1c1a6d4e8b3"
        assert claim.attributes['name'] == "The Raven"

    def test_parse_rejects_non_utf8(self):
        """Binary garbage should be rejected."""
        with pytest.raises(InvalidClaim):
            parse_claim(b"\xff\xfe\x00garbage")

    def test_parse_rejects_non_json(self):
        """Text that is not JSON should be rejected."""
        with pytest.raises(InvalidClaim, match="not JSON"):
            parse_claim(b"this is not a claim")

    def test_parse_rejects_json_array(self):
        """A JSON array is not a claim."""
        with pytest.raises(InvalidClaim, match="JSON object"):
            parse_claim(b'[1, 2, 3]')

    def test_parse_rejects_missing_signature(self, claim_data):
        """Claims without a signature are malformed."""
        data = claim_data()
        del data['signature']

        with pytest.raises(InvalidClaim):
            parse_claim(json.dumps(data).encode('utf-8'))

    def test_parse_rejects_unknown_type(self, claim_data):
        """Unknown claim types are malformed."""
        with pytest.raises(InvalidClaim):
            parse_claim(json.dumps(claim_data(type="Spaceship")).encode('utf-8'))

    def test_parse_rejects_empty_id(self, claim_data):
        """An empty id cannot be indexed."""
        with pytest.raises(InvalidClaim):
            parse_claim(json.dumps(claim_data(id="")).encode('utf-8'))

    def test_parse_keeps_additional_fields(self, claim_data):
        """Claims from other producers may carry fields beyond the known ones."""
        claim = parse_claim(json.dumps(claim_data(archiveUrl="ipfs://archive")).encode('utf-8'))

        assert claim.to_dict()['archiveUrl'] == "ipfs://archive"

    def test_parse_rejects_bad_timestamp(self, claim_data):
        with pytest.raises(InvalidClaim):
            parse_claim(json.dumps(claim_data(dateCreated="yesterday")).encode('utf-8'))


class TestIsClaim:
    """Test structural claim checks."""

    def test_valid_claim(self, claim_data):
        assert is_claim(claim_data()) is True

    def test_non_dict(self):
        assert is_claim("claim") is False
        assert is_claim(None) is False

    def test_attributes_must_be_strings(self, claim_data):
        assert is_claim(claim_data(attributes={"year": {"nested": True}})) is False


class TestCanonicalBytes:
    """Test canonical serialization."""

    def test_key_order_does_not_change_bytes(self, claim_data):
        """Same claim with differently ordered input keys serializes identically."""
        data = claim_data()
        reordered = dict(reversed(list(data.items())))

        assert canonical_bytes(claim_from_dict(data)) == canonical_bytes(claim_from_dict(reordered))

    def test_canonical_form_uses_wire_names(self, claim_data):
        """Serialized claims keep the wire field names."""
        decoded = json.loads(canonical_bytes(claim_from_dict(claim_data())))

        assert decoded['publicKey'] == "02f1c1a6d4e8b3"
        assert 'dateCreated' in decoded
        assert 'public_key' not in decoded

    def test_canonical_form_is_compact_and_sorted(self, claim_data):
        text = canonical_bytes(claim_from_dict(claim_data())).decode('utf-8')

        assert ', ' not in text
        assert ': ' not in text
        assert list(json.loads(text).keys()) == sorted(json.loads(text).keys())

    def test_parse_canonical_bytes_yields_same_claim(self, claim_data):
        claim = claim_from_dict(claim_data())

        assert parse_claim(canonical_bytes(claim)) == claim

    def test_signed_fields_survive_canonical_form(self, claim_data):
        """Every signed value is stored exactly as submitted."""
        submitted = claim_data(
            dateCreated="2017-11-13T15:00:00.000Z",
            archiveUrl="ipfs://archive",
            attributes={"name": "Café", "dateSubmitted": "2017-11-13T15:00:00.000Z"}
        )

        stored = canonical_bytes(claim_from_dict(submitted))

        assert b'"dateCreated":"2017-11-13T15:00:00.000Z"' in stored
        assert json.loads(stored) == submitted
        assert canonical_bytes(parse_claim(stored)) == stored

    def test_offset_timestamp_not_rewritten(self, claim_data):
        stored = canonical_bytes(claim_from_dict(claim_data()))

        assert json.loads(stored)['dateCreated'] == "2026-01-28T12:00:00+00:00"
