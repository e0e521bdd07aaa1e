"""
claimsync HTTP API.

Thin FastAPI surface over the claim synchronizer: claim intake and lookup,
the address discovery feed, entry inspection and metrics. The polling
scheduler runs inside the app lifespan.

Usage:
    export CLAIMSYNC_API_TOKEN=your-secret-token
    python -m claimsync.control_plane serve
"""
import logging
import os
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

import httpx
from fastapi import Depends, FastAPI, HTTPException
from fastapi.responses import PlainTextResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel, Field, field_validator

from claimsync import metrics
from claimsync.artifacts.store import ContentNotFound
from claimsync.claims import InvalidClaim, claim_from_dict, is_claim, parse_claim
from claimsync.control_plane.config import SyncConfig, get_config
from claimsync.control_plane.controller import ClaimSynchronizer, build_synchronizer
from claimsync.control_plane.scheduler import PollingScheduler, RetryPolicy
from claimsync.control_plane.validator import SignatureRejected, SignatureValidator
from claimsync.index.entries import Entry, is_stuck


logger = logging.getLogger(__name__)


# Pydantic models for API requests/responses

class HealthResponse(BaseModel):
    """Health check response."""
    status: str


class ClaimStoredResponse(BaseModel):
    """Response for a stored claim."""
    claim_id: str
    address: str


class ClaimResponse(BaseModel):
    """A claim with the address it is stored at."""
    address: str
    claim: Dict[str, Any]


class AddressBatchRequest(BaseModel):
    """Batch of newly discovered addresses."""
    addresses: List[str] = Field(..., max_length=10000)

    @field_validator("addresses")
    @classmethod
    def check_addresses(cls, addresses: List[str]) -> List[str]:
        for address in addresses:
            if not address or address != address.strip():
                raise ValueError(f"Malformed content address: {address!r}")
        return addresses


class AddressBatchResponse(BaseModel):
    """Result of registering a batch of addresses."""
    received: int
    registered: int


class EntryResponse(BaseModel):
    """Entry with its derived state."""
    entry: Entry
    state: str


class StuckEntriesResponse(BaseModel):
    """Entries that exhausted their attempts."""
    entries: List[Entry]
    count: int
    max_attempts: int


class ResolveResponse(BaseModel):
    """Result of an operator-triggered resolution attempt."""
    address: str
    resolved: bool
    claim_id: Optional[str] = None
    stage: str
    error: Optional[str] = None


class SummaryResponse(BaseModel):
    """Entry counts by state and scheduler status."""
    entries: Dict[str, int]
    scheduler_state: str
    max_attempts: int


# Global state (initialized on startup)
config: Optional[SyncConfig] = None
synchronizer: Optional[ClaimSynchronizer] = None
scheduler: Optional[PollingScheduler] = None
validator: Optional[SignatureValidator] = None


def reset_stores():
    """Reset global store state (for tests)."""
    global config, synchronizer, scheduler, validator

    if scheduler:
        scheduler.stop()
    if synchronizer:
        synchronizer.close()
    if validator:
        validator.close()

    config = None
    synchronizer = None
    scheduler = None
    validator = None


def initialize_stores(config_path: Optional[str] = None):
    """
    Initialize stores (called on startup or lazily).

    Args:
        config_path: Optional YAML config file (default: CLAIMSYNC_CONFIG env)
    """
    global config, synchronizer, scheduler, validator

    if synchronizer is not None:
        return

    try:
        config = get_config(path=config_path or os.getenv("CLAIMSYNC_CONFIG"), require_token=True)
    except ValueError as e:
        logger.error(f"Configuration error: {e}")
        raise

    synchronizer = build_synchronizer(config)
    scheduler = PollingScheduler(
        synchronizer=synchronizer,
        interval_seconds=config.download_interval_seconds,
        retry_policy=RetryPolicy(
            retry_delay_ms=config.retry_delay_ms,
            max_attempts=config.download_max_attempts
        )
    )
    validator = SignatureValidator(url=config.validator_url)

    logger.info(
        f"claimsync API initialized (index={config.index_backend}, "
        f"content={config.content_backend}, publisher={config.publisher_backend})"
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup/shutdown."""
    # Startup
    initialize_stores()
    scheduler.start()

    yield

    # Shutdown
    scheduler.stop()
    await scheduler.wait_idle()
    reset_stores()


# FastAPI app
app = FastAPI(
    title="claimsync API",
    description="Claim storage and content address reconciliation",
    version="1.0.0",
    lifespan=lifespan
)

security = HTTPBearer(auto_error=False)


def verify_token(credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)) -> str:
    """
    Verify bearer token.

    Raises:
        HTTPException: 401 if token is missing or invalid
    """
    # Lazy initialization for tests
    if not config:
        initialize_stores()

    if credentials is None or credentials.credentials != config.token:
        raise HTTPException(status_code=401, detail="Invalid token")

    return credentials.credentials


def entry_state(entry: Entry) -> str:
    if entry.resolved:
        return "resolved"
    if is_stuck(entry, config.download_max_attempts):
        return "stuck"
    return "pending"


@app.get("/healthz", response_model=HealthResponse)
async def healthz():
    """Health check endpoint."""
    return HealthResponse(status="ok")


@app.get("/metrics", response_class=PlainTextResponse)
def get_metrics():
    """Prometheus metrics endpoint."""
    if synchronizer is not None:
        metrics.entries_stuck.set(synchronizer.entry_store.count_stuck(config.download_max_attempts))
    return metrics.registry.render()


@app.post("/v1/claims", response_model=ClaimStoredResponse)
def post_claim(body: Dict[str, Any], token: str = Depends(verify_token)):
    """
    Store a signed claim.

    The claim must be well-formed, of an accepted type and carry a valid
    signature. Storage failures surface as 5xx to the caller.
    """
    if not is_claim(body):
        raise HTTPException(status_code=400, detail="Request Body must be a Claim.")

    claim = claim_from_dict(body)

    if claim.type.value not in config.accepted_claim_types:
        raise HTTPException(
            status_code=400,
            detail=f"Claim's type must be one of: {', '.join(config.accepted_claim_types)}."
        )

    try:
        validator.verify(claim)
    except SignatureRejected as e:
        raise HTTPException(status_code=400, detail=str(e))
    except httpx.HTTPError as e:
        raise HTTPException(status_code=502, detail=f"Signature validator unavailable: {e}")

    address = synchronizer.create(claim)

    return ClaimStoredResponse(claim_id=claim.id, address=address)


@app.get("/v1/claims/{claim_id}", response_model=ClaimResponse)
def get_claim(claim_id: str, token: str = Depends(verify_token)):
    """Get a resolved claim by id."""
    entry = synchronizer.entry_store.find_by_claim_id(claim_id)
    if entry is None:
        raise HTTPException(status_code=404, detail=f"Claim {claim_id} not found")

    try:
        claim = parse_claim(synchronizer.content_store.get(entry.address))
    except ContentNotFound:
        raise HTTPException(status_code=404, detail=f"Content for claim {claim_id} not found at {entry.address}")
    except InvalidClaim as e:
        raise HTTPException(status_code=500, detail=f"Stored content at {entry.address} is not a claim: {e}")

    return ClaimResponse(address=entry.address, claim=claim.to_dict())


@app.post("/v1/addresses", response_model=AddressBatchResponse)
def post_addresses(request: AddressBatchRequest, token: str = Depends(verify_token)):
    """Register addresses from the discovery feed as unresolved entries."""
    registered = synchronizer.register_addresses(request.addresses)

    return AddressBatchResponse(received=len(request.addresses), registered=registered)


@app.get("/v1/entries/stuck", response_model=StuckEntriesResponse)
def list_stuck_entries(limit: int = 100, token: str = Depends(verify_token)):
    """
    List unresolved entries that exhausted their attempts.

    These entries are never selected by the scheduler again.
    """
    max_attempts = config.download_max_attempts
    entries = synchronizer.entry_store.find_stuck(max_attempts, limit=limit)

    return StuckEntriesResponse(entries=entries, count=len(entries), max_attempts=max_attempts)


@app.get("/v1/entries/{address}", response_model=EntryResponse)
def get_entry(address: str, token: str = Depends(verify_token)):
    """Get the entry for an address."""
    entry = synchronizer.entry_store.get(address)
    if entry is None:
        raise HTTPException(status_code=404, detail=f"Entry {address} not found")

    return EntryResponse(entry=entry, state=entry_state(entry))


@app.post("/v1/entries/{address}/resolve", response_model=ResolveResponse)
def resolve_entry(address: str, token: str = Depends(verify_token)):
    """Run one resolution attempt for an address, regardless of backoff or cap."""
    entry = synchronizer.entry_store.get(address)
    if entry is None:
        raise HTTPException(status_code=404, detail=f"Entry {address} not found")
    if entry.resolved:
        raise HTTPException(status_code=409, detail=f"Entry {address} already resolved to {entry.claim_id}")

    result = synchronizer.resolve_address(address)
    if result is None:
        raise HTTPException(status_code=409, detail=f"Entry {address} is no longer pending")

    summary = result.summary()
    return ResolveResponse(
        address=address,
        resolved=summary['resolved'],
        claim_id=summary['claim_id'],
        stage=summary['stage'],
        error=summary['error']
    )


@app.get("/v1/summary", response_model=SummaryResponse)
def summary(token: str = Depends(verify_token)):
    """Entry counts by state and scheduler status."""
    max_attempts = config.download_max_attempts

    return SummaryResponse(
        entries=synchronizer.entry_store.count_by_state(max_attempts),
        scheduler_state=scheduler.state,
        max_attempts=max_attempts
    )
