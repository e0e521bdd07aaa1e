"""
Pytest configuration for unit tests.

Sets up test-wide fixtures and environment configuration.
"""
import os
from typing import Any, Dict

import pytest

# Set environment variables at module import time (before any test modules import the API)
os.environ["CLAIMSYNC_API_TOKEN"] = "test-token-12345"
os.environ["CLAIMSYNC_INDEX_BACKEND"] = "memory"
os.environ["CLAIMSYNC_CONTENT_BACKEND"] = "memory"
os.environ["CLAIMSYNC_PUBLISHER_BACKEND"] = "memory"
os.environ.pop("CLAIMSYNC_VALIDATOR_URL", None)
os.environ.pop("CLAIMSYNC_CONFIG", None)


@pytest.fixture
def auth_headers():
    """Provide authentication headers for API tests."""
    return {"Authorization": "Bearer test-token-12345"}


@pytest.fixture
def claim_data():
    """Build a well-formed claim dict, with optional field overrides."""
    def _build(**overrides) -> Dict[str, Any]:
        data = {
            "id": "claim-0001",
            "type": "Work",
            "publicKey": "02f1c1a6d4e8b3",
            "signature": "3045022100ab",
            "dateCreated": "2026-01-28T12:00:00+00:00",
            "attributes": {
                "name": "The Raven",
                "author": "Edgar Allan Poe"
            }
        }
        data.update(overrides)
        return data

    return _build
