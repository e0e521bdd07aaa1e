"""
Claim signature validation.

Signature cryptography lives in an external validator service. When no
validator URL is configured, signatures are accepted unchecked and a warning
is logged once.
"""
import logging
from typing import Optional

import httpx

from claimsync.claims import Claim


logger = logging.getLogger(__name__)


class SignatureRejected(Exception):
    """Raised when a claim's signature does not verify."""
    pass


class SignatureValidator:
    """Verifies claim signatures against a remote validator."""

    def __init__(self, url: Optional[str] = None, timeout: float = 5.0, client: Optional[httpx.Client] = None):
        self.url = url.rstrip('/') if url else None
        self.timeout = timeout
        self.client = client
        self._warned = False

        if self.url and self.client is None:
            self.client = httpx.Client(base_url=self.url, timeout=timeout)

    @property
    def enabled(self) -> bool:
        return self.url is not None

    def verify(self, claim: Claim) -> None:
        """
        Verify the claim's signature.

        Raises:
            SignatureRejected: If the validator rejects the claim
            httpx.HTTPError: If the validator cannot be reached
        """
        if not self.enabled:
            if not self._warned:
                logger.warning("CLAIMSYNC_VALIDATOR_URL not set. Claim signatures are not verified.")
                self._warned = True
            return

        response = self.client.post("/v1/verify", json=claim.to_dict())

        if response.status_code != 200:
            raise SignatureRejected(f"Validator returned {response.status_code} for claim {claim.id}")

        if response.json().get('valid') is not True:
            raise SignatureRejected(f"Claim's signature is incorrect: {claim.id}")

    def close(self):
        if self.client is not None:
            self.client.close()
