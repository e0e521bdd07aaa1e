"""
Claim synchronizer.

Owns both sides of the sync:
- write path: store a claim, index its address as resolved, announce it
- read path: resolve one pending address per call into a claim

The read path is an ordered list of steps over a shared DownloadContext.
A single driver runs the steps, stops early when there is nothing to do,
and short-circuits on the first failure. Failures never leave the driver.
"""
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterable, List, Optional, Tuple

from claimsync import metrics
from claimsync.artifacts.store import ContentStore, FileBackend, IpfsBackend, MemoryBackend, S3Backend
from claimsync.claims import Claim, canonical_bytes, parse_claim
from claimsync.index.entries import Entry, EntryStore, current_time_ms
from claimsync.messaging.publisher import EventPublisher, Topic, build_publisher


logger = logging.getLogger(__name__)

DEFAULT_RETRY_DELAY_MS = 600000
DEFAULT_MAX_ATTEMPTS = 20


@dataclass
class DownloadContext:
    """State accumulated by the read path steps for one entry."""
    now: int
    retry_delay: int
    max_attempts: int
    entry: Optional[Entry] = None
    claim: Optional[Claim] = None
    affected: int = 0
    stage: str = "find"
    error: Optional[str] = None

    @property
    def address(self) -> Optional[str]:
        return self.entry.address if self.entry else None

    @property
    def resolved(self) -> bool:
        return self.error is None and self.claim is not None and self.stage == "announce"

    def summary(self) -> dict:
        return {
            'address': self.address,
            'claim_id': self.claim.id if self.claim else None,
            'stage': self.stage,
            'resolved': self.resolved,
            'error': self.error
        }


Step = Tuple[str, Callable[[DownloadContext], Optional[DownloadContext]]]


class ClaimSynchronizer:
    """
    Write and read paths between the content store and the entry index.

    Responsibilities:
    1. Store submitted claims and index their addresses
    2. Register addresses discovered elsewhere as unresolved entries
    3. Resolve one pending entry per call, with retry bookkeeping
    4. Announce stored and resolved claims
    """

    def __init__(
        self,
        entry_store: EntryStore,
        content_store: ContentStore,
        publisher: EventPublisher
    ):
        """
        Initialize synchronizer.

        Args:
            entry_store: Index of addresses and their resolution state
            content_store: Content-addressed claim storage
            publisher: Publisher for claim announcements
        """
        self.entry_store = entry_store
        self.content_store = content_store
        self.publisher = publisher

    def close(self):
        """Close backend connections."""
        self.entry_store.close()
        self.content_store.close()
        self.publisher.close()

    # Write path

    def create(self, claim: Claim) -> str:
        """
        Store a claim that the caller already validated.

        Any failure propagates; callers retry the whole call.

        Returns:
            Content address of the stored claim
        """
        logger.debug(f"Storing claim {claim.id}")

        address = self.content_store.put(canonical_bytes(claim))
        logger.info(f"Claim {claim.id} stored at {address}")

        self.entry_store.insert_resolved(address, claim.id)
        self.publisher.publish(Topic.CLAIM_ADDRESS_KNOWN, {
            'claimId': claim.id,
            'address': address
        })

        metrics.claims_stored_total.inc()
        return address

    def register_addresses(self, addresses: Iterable[str]) -> int:
        """
        Register addresses from the discovery feed as unresolved entries.

        Returns:
            Number of addresses that were new to the index
        """
        addresses = list(addresses)
        inserted = self.entry_store.register_unresolved(addresses)

        logger.info(f"Registered {inserted} new of {len(addresses)} discovered address(es)")
        metrics.addresses_registered_total.inc(inserted)
        return inserted

    # Read path

    def download_next_hash(
        self,
        retry_delay: int = DEFAULT_RETRY_DELAY_MS,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        now: Optional[int] = None
    ) -> Optional[DownloadContext]:
        """
        Try to resolve exactly one pending entry.

        Args:
            retry_delay: Milliseconds an entry waits after an attempt
            max_attempts: Inclusive attempt cap
            now: Current time in epoch milliseconds (default: wall clock)

        Returns:
            None when no entry is eligible, otherwise the context of the
            attempt (check `resolved` / `error`)
        """
        context = DownloadContext(
            now=current_time_ms() if now is None else now,
            retry_delay=retry_delay,
            max_attempts=max_attempts
        )

        steps: List[Step] = [
            ("find", self._find),
            ("record_attempt", self._record_attempt),
            ("fetch", self._fetch),
            ("resolve", self._resolve),
            ("announce", self._announce),
        ]

        return self._run(steps, context)

    def resolve_address(self, address: str, now: Optional[int] = None) -> Optional[DownloadContext]:
        """
        Run one resolution attempt for a specific address, ignoring eligibility.

        Used by operators to retry entries that exhausted their attempts. The
        attempt is still recorded.

        Returns:
            None if the address is unknown or already resolved
        """
        entry = self.entry_store.get(address)
        if entry is None or entry.resolved:
            return None

        context = DownloadContext(
            now=current_time_ms() if now is None else now,
            retry_delay=0,
            max_attempts=entry.attempt_count,
            entry=entry
        )

        steps: List[Step] = [
            ("record_attempt", self._record_attempt),
            ("fetch", self._fetch),
            ("resolve", self._resolve),
            ("announce", self._announce),
        ]

        return self._run(steps, context)

    def _run(self, steps: List[Step], context: DownloadContext) -> Optional[DownloadContext]:
        for name, step in steps:
            context.stage = name
            try:
                result = step(context)
            except Exception as e:
                context.error = f"{type(e).__name__}: {e}"
                metrics.downloads_failed_total.inc()
                logger.warning(f"Failed to download claim at {context.address} during {name}: {context.error}")
                return context

            if result is None:
                logger.debug("No downloadable entries found")
                return None
            context = result

        metrics.downloads_resolved_total.inc()
        return context

    def _find(self, context: DownloadContext) -> Optional[DownloadContext]:
        entry = self.entry_store.find_next_pending(context.now, context.retry_delay, context.max_attempts)
        if entry is None:
            return None

        context.entry = entry
        return context

    def _record_attempt(self, context: DownloadContext) -> DownloadContext:
        self.entry_store.record_attempt(context.entry, context.now)
        metrics.download_attempts_total.inc()
        logger.debug(f"Recorded attempt for {context.address}")
        return context

    def _fetch(self, context: DownloadContext) -> DownloadContext:
        content = self.content_store.get(context.address)
        context.claim = parse_claim(content)
        return context

    def _resolve(self, context: DownloadContext) -> DownloadContext:
        context.affected = self.entry_store.record_resolution(context.address, context.claim.id)
        return context

    def _announce(self, context: DownloadContext) -> DownloadContext:
        self.publisher.publish(Topic.CLAIM_RESOLVED, {
            'claim': context.claim.to_dict(),
            'address': context.address
        })
        logger.info(f"Resolved {context.address} to claim {context.claim.id}")
        return context


def build_content_store(config) -> ContentStore:
    """Create the content store for the configured backend."""
    if config.content_backend == "memory":
        return ContentStore(backend=MemoryBackend())
    if config.content_backend == "file":
        return ContentStore(backend=FileBackend(storage_root=Path(config.content_dir)))
    if config.content_backend == "s3":
        if not config.content_s3_bucket:
            raise ValueError("CLAIMSYNC_CONTENT_S3_BUCKET required for S3 backend")
        return ContentStore(backend=S3Backend(bucket=config.content_s3_bucket, prefix=config.content_s3_prefix))
    if config.content_backend == "ipfs":
        return ContentStore(backend=IpfsBackend(api_url=config.ipfs_url))
    raise ValueError(f"Unknown content backend: {config.content_backend}")


def build_synchronizer(config) -> ClaimSynchronizer:
    """
    Wire a synchronizer from configuration.

    Args:
        config: SyncConfig

    Returns:
        ClaimSynchronizer with entry index, content store and publisher
    """
    if config.index_backend == "postgres":
        entry_store = EntryStore(backend="postgres", postgres_url=config.postgres_url)
    else:
        entry_store = EntryStore(backend=config.index_backend)

    publisher = build_publisher(
        backend=config.publisher_backend,
        events_dir=str(config.events_dir),
        url=config.publisher_url
    )

    return ClaimSynchronizer(
        entry_store=entry_store,
        content_store=build_content_store(config),
        publisher=publisher
    )
