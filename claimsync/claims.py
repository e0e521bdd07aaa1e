"""
Claim model and canonical serialization.

A claim is an immutable signed record. The sync core only needs its id, but
claims fetched from the content store are untrusted and must parse into a
well-formed claim before they are indexed.
"""
import json
from datetime import datetime
from enum import Enum
from typing import Any, Dict

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, field_validator


_TIMESTAMP = TypeAdapter(datetime)


class InvalidClaim(ValueError):
    """Raised when bytes or a request body do not form a well-formed claim."""
    pass


class ClaimType(str, Enum):
    """Known claim types."""
    WORK = "Work"
    IDENTITY = "Identity"
    LICENSE = "License"
    OFFER = "Offer"


class Claim(BaseModel):
    """
    Signed claim record.

    Field values are kept exactly as submitted, including `dateCreated` and
    any fields beyond the known ones, so the stored bytes still carry what
    the producer signed.
    """
    model_config = ConfigDict(populate_by_name=True, extra="allow", frozen=True)

    id: str = Field(..., min_length=1, description="Content-derived claim identifier")
    type: ClaimType
    public_key: str = Field(..., alias="publicKey", min_length=1)
    signature: str = Field(..., min_length=1)
    date_created: str = Field(..., alias="dateCreated", description="ISO 8601 timestamp, as signed")
    attributes: Dict[str, str] = Field(default_factory=dict)

    @field_validator("date_created")
    @classmethod
    def check_date_created(cls, value: str) -> str:
        try:
            _TIMESTAMP.validate_python(value)
        except ValidationError:
            raise ValueError(f"dateCreated is not an ISO 8601 timestamp: {value!r}")
        return value

    def to_dict(self) -> Dict[str, Any]:
        """JSON-compatible dict using the wire field names."""
        return self.model_dump(mode="json", by_alias=True)


def canonical_bytes(claim: Claim) -> bytes:
    """
    Serialize a claim to its canonical byte form.

    Keys are sorted and separators are compact so the same claim always maps
    to the same content address.
    """
    return json.dumps(claim.to_dict(), sort_keys=True, separators=(',', ':')).encode('utf-8')


def is_claim(value: Any) -> bool:
    """Check whether a decoded value is a well-formed claim."""
    if not isinstance(value, dict):
        return False
    try:
        Claim.model_validate(value)
    except ValidationError:
        return False
    return True


def claim_from_dict(value: Any) -> Claim:
    """
    Build a claim from a decoded JSON value.

    Raises:
        InvalidClaim: If the value is not a well-formed claim
    """
    if not isinstance(value, dict):
        raise InvalidClaim(f"Claim must be a JSON object, got {type(value).__name__}")
    try:
        return Claim.model_validate(value)
    except ValidationError as e:
        raise InvalidClaim(f"Unrecognized claim: {e.error_count()} validation error(s)") from e


def parse_claim(data: bytes) -> Claim:
    """
    Parse raw bytes from the content store into a claim.

    Raises:
        InvalidClaim: If the bytes are not UTF-8 JSON or not a well-formed claim
    """
    try:
        value = json.loads(data.decode('utf-8'))
    except UnicodeDecodeError as e:
        raise InvalidClaim(f"Claim bytes are not UTF-8: {e}") from e
    except json.JSONDecodeError as e:
        raise InvalidClaim(f"Claim bytes are not JSON at line {e.lineno}, col {e.colno}: {e.msg}") from e

    return claim_from_dict(value)
