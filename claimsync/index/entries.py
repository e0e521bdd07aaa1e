"""
Entry index: one record per known content address.

An entry tracks whether the claim behind an address has been resolved and
how many resolution attempts were made. Entries are never deleted.

Supports Postgres and in-memory backends.
"""
import logging
import threading
import time
from contextlib import contextmanager
from typing import Dict, Iterable, List, Optional

from pydantic import BaseModel, Field


logger = logging.getLogger(__name__)

ENTRY_COLUMNS = "address, claim_id, last_attempt_at, last_success_at, attempt_count"


class Entry(BaseModel):
    """Resolution bookkeeping for a single content address."""
    address: str = Field(..., min_length=1)
    claim_id: Optional[str] = Field(None, description="Set once the claim behind the address is resolved")
    last_attempt_at: Optional[int] = Field(None, description="Epoch milliseconds of the last attempt")
    last_success_at: Optional[int] = Field(None, description="Reserved, never written")
    attempt_count: int = 0

    @property
    def resolved(self) -> bool:
        return self.claim_id is not None


def current_time_ms() -> int:
    """Current time in epoch milliseconds."""
    return int(time.time() * 1000)


def retry_delay_elapsed(entry: Entry, now: int, retry_delay: int) -> bool:
    """Never attempted, or last attempt strictly older than now - retry_delay."""
    return entry.last_attempt_at is None or entry.last_attempt_at < now - retry_delay


def never_succeeded(entry: Entry) -> bool:
    return entry.last_success_at is None


def within_attempt_cap(entry: Entry, max_attempts: int) -> bool:
    """Inclusive cap: an entry at exactly max_attempts is still eligible."""
    return entry.attempt_count <= max_attempts


def is_eligible(entry: Entry, now: int, retry_delay: int, max_attempts: int) -> bool:
    """Whether an entry may be selected for a resolution attempt."""
    return (
        entry.claim_id is None
        and retry_delay_elapsed(entry, now, retry_delay)
        and never_succeeded(entry)
        and within_attempt_cap(entry, max_attempts)
    )


def is_stuck(entry: Entry, max_attempts: int) -> bool:
    """Unresolved and permanently excluded from selection."""
    return entry.claim_id is None and not within_attempt_cap(entry, max_attempts)


class EntryStore:
    """
    Index of content addresses and their resolution state.

    Supports Postgres and in-memory backends. Scheduler ticks and API
    handlers call into one store from several threads, so every operation
    runs under the store lock.
    """

    def __init__(self, backend: str = "memory", postgres_url: Optional[str] = None):
        """
        Initialize entry store.

        Args:
            backend: "postgres" or "memory"
            postgres_url: PostgreSQL connection URL (if backend is postgres)
        """
        self.backend = backend
        self.postgres_url = postgres_url
        self._lock = threading.RLock()

        if backend == "memory":
            self.entries: Dict[str, Entry] = {}
        elif backend == "postgres":
            if not postgres_url:
                raise ValueError("postgres_url required for postgres backend")
            import psycopg2
            self.conn = psycopg2.connect(postgres_url)
        else:
            raise ValueError(f"Unknown backend: {backend}")

    @contextmanager
    def _transaction(self):
        """
        Cursor in its own transaction on the shared connection.

        Commits on success. On any error the transaction is rolled back
        before re-raising, so the connection stays usable for the next call.
        """
        with self._lock:
            try:
                with self.conn.cursor() as cur:
                    yield cur
                self.conn.commit()
            except Exception:
                self.conn.rollback()
                raise

    @staticmethod
    def _row_to_entry(row) -> Entry:
        return Entry(
            address=row[0],
            claim_id=row[1],
            last_attempt_at=row[2],
            last_success_at=row[3],
            attempt_count=row[4] or 0
        )

    def register_unresolved(self, addresses: Iterable[str]) -> int:
        """
        Insert an unresolved entry for each address.

        Addresses that are already known are skipped; a partially applied
        batch is not an error.

        Returns:
            Number of entries actually inserted
        """
        unique = list(dict.fromkeys(addresses))

        if self.backend == "memory":
            inserted = 0
            with self._lock:
                for address in unique:
                    if address not in self.entries:
                        self.entries[address] = Entry(address=address)
                        inserted += 1
            return inserted

        inserted = 0
        with self._transaction() as cur:
            for address in unique:
                cur.execute("""
                    INSERT INTO entries (address, claim_id, last_attempt_at, last_success_at, attempt_count)
                    VALUES (%s, NULL, NULL, NULL, 0)
                    ON CONFLICT (address) DO NOTHING
                """, (address,))
                inserted += cur.rowcount
        return inserted

    def find_next_pending(self, now: int, retry_delay: int, max_attempts: int) -> Optional[Entry]:
        """
        Select one entry eligible for a resolution attempt.

        Args:
            now: Current time in epoch milliseconds
            retry_delay: Minimum milliseconds between attempts on one entry
            max_attempts: Inclusive attempt cap

        Returns:
            First eligible entry in natural order, or None
        """
        if self.backend == "memory":
            with self._lock:
                for entry in self.entries.values():
                    if is_eligible(entry, now, retry_delay, max_attempts):
                        return entry.model_copy()
            return None

        with self._transaction() as cur:
            cur.execute(f"""
                SELECT {ENTRY_COLUMNS} FROM entries
                WHERE claim_id IS NULL
                  AND (last_attempt_at IS NULL OR last_attempt_at < %s)
                  AND last_success_at IS NULL
                  AND (attempt_count IS NULL OR attempt_count <= %s)
                ORDER BY seq ASC
                LIMIT 1
            """, (now - retry_delay, max_attempts))
            row = cur.fetchone()
        return self._row_to_entry(row) if row else None

    def record_attempt(self, entry: Entry, now: int) -> None:
        """Stamp the attempt time and increment the attempt counter."""
        if self.backend == "memory":
            with self._lock:
                current = self.entries.get(entry.address)
                if current is not None:
                    self.entries[entry.address] = current.model_copy(update={
                        'last_attempt_at': now,
                        'attempt_count': current.attempt_count + 1
                    })
            if current is None:
                logger.error(f"Attempt recorded for unknown address {entry.address}")
            return

        with self._transaction() as cur:
            cur.execute("""
                UPDATE entries
                SET last_attempt_at = %s, attempt_count = COALESCE(attempt_count, 0) + 1
                WHERE address = %s
            """, (now, entry.address))
            affected = cur.rowcount

        if affected != 1:
            logger.error(f"Attempt update for {entry.address} affected {affected} rows")

    def record_resolution(self, address: str, claim_id: str) -> int:
        """
        Upsert the claim id for an address.

        Creates the entry if it does not exist. A claim id that is already
        set is never replaced.

        Returns:
            Number of affected entries (logged, not raised, when zero)
        """
        affected = self._upsert_claim_id(address, claim_id)

        if affected != 1:
            logger.error(
                f"Error storing claim id / address pair in the index: "
                f"{affected} entries affected for address={address} claim_id={claim_id}"
            )

        return affected

    def insert_resolved(self, address: str, claim_id: str) -> None:
        """Persist an entry that is resolved from the start (write path)."""
        self._upsert_claim_id(address, claim_id)

    def _upsert_claim_id(self, address: str, claim_id: str) -> int:
        if self.backend == "memory":
            with self._lock:
                current = self.entries.get(address)
                if current is None:
                    self.entries[address] = Entry(address=address, claim_id=claim_id)
                elif current.claim_id is None:
                    self.entries[address] = current.model_copy(update={'claim_id': claim_id})
            return 1

        with self._transaction() as cur:
            cur.execute("""
                INSERT INTO entries (address, claim_id, last_attempt_at, last_success_at, attempt_count)
                VALUES (%s, %s, NULL, NULL, 0)
                ON CONFLICT (address) DO UPDATE
                SET claim_id = COALESCE(entries.claim_id, EXCLUDED.claim_id)
            """, (address, claim_id))
            affected = cur.rowcount
        return affected

    def get(self, address: str) -> Optional[Entry]:
        """Get entry by address."""
        if self.backend == "memory":
            with self._lock:
                entry = self.entries.get(address)
            return entry.model_copy() if entry else None

        with self._transaction() as cur:
            cur.execute(f"SELECT {ENTRY_COLUMNS} FROM entries WHERE address = %s", (address,))
            row = cur.fetchone()
        return self._row_to_entry(row) if row else None

    def find_by_claim_id(self, claim_id: str) -> Optional[Entry]:
        """Get the first entry resolved to a claim id."""
        if self.backend == "memory":
            with self._lock:
                for entry in self.entries.values():
                    if entry.claim_id == claim_id:
                        return entry.model_copy()
            return None

        with self._transaction() as cur:
            cur.execute(f"SELECT {ENTRY_COLUMNS} FROM entries WHERE claim_id = %s ORDER BY seq ASC LIMIT 1", (claim_id,))
            row = cur.fetchone()
        return self._row_to_entry(row) if row else None

    def find_stuck(self, max_attempts: int, limit: int = 100) -> List[Entry]:
        """
        List unresolved entries that exhausted their attempts.

        These entries are never selected again and stay unresolved.
        """
        if self.backend == "memory":
            with self._lock:
                stuck = [e.model_copy() for e in self.entries.values() if is_stuck(e, max_attempts)]
            return stuck[:limit]

        with self._transaction() as cur:
            cur.execute(f"""
                SELECT {ENTRY_COLUMNS} FROM entries
                WHERE claim_id IS NULL AND attempt_count > %s
                ORDER BY seq ASC
                LIMIT %s
            """, (max_attempts, limit))
            rows = cur.fetchall()
        return [self._row_to_entry(row) for row in rows]

    def count_stuck(self, max_attempts: int) -> int:
        """Count unresolved entries that exhausted their attempts."""
        return self.count_by_state(max_attempts)['stuck']

    def count_by_state(self, max_attempts: int) -> Dict[str, int]:
        """
        Count entries by resolution state.

        Returns:
            Dict with 'resolved', 'pending' and 'stuck' counts
        """
        if self.backend == "memory":
            counts = {'resolved': 0, 'pending': 0, 'stuck': 0}
            with self._lock:
                for entry in self.entries.values():
                    if entry.resolved:
                        counts['resolved'] += 1
                    elif is_stuck(entry, max_attempts):
                        counts['stuck'] += 1
                    else:
                        counts['pending'] += 1
            return counts

        with self._transaction() as cur:
            cur.execute("""
                SELECT
                    COUNT(*) FILTER (WHERE claim_id IS NOT NULL),
                    COUNT(*) FILTER (WHERE claim_id IS NULL AND COALESCE(attempt_count, 0) <= %s),
                    COUNT(*) FILTER (WHERE claim_id IS NULL AND attempt_count > %s)
                FROM entries
            """, (max_attempts, max_attempts))
            row = cur.fetchone()
        return {'resolved': row[0], 'pending': row[1], 'stuck': row[2]}

    def close(self):
        """Close backend connections."""
        if self.backend == "postgres" and hasattr(self, 'conn'):
            with self._lock:
                self.conn.close()
