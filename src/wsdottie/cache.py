"""SQLite result cache with per-domain flush-date state.

Result reads and writes catch ``aiosqlite.Error`` internally and degrade
gracefully: read failures return ``None`` (treated as cache miss by callers),
write failures are logged and ignored (fetched data is still returned).

The one exception is ``compare_and_set_domain``: the monitor needs to know
whether its update landed, so database errors there are logged and re-raised.

All writes share one asyncio lock. The connection is shared by every
coroutine, and the domain compare-and-set spans two statements that must
commit together.
"""

from __future__ import annotations

import asyncio
from contextlib import suppress
from datetime import UTC, datetime, timedelta

import aiosqlite
import structlog

from wsdottie.models.cache import CacheEntry, DomainCacheState

log = structlog.get_logger()

_CREATE_RESULT_TABLE = """
CREATE TABLE IF NOT EXISTS result_cache (
    key          TEXT PRIMARY KEY,
    endpoint_id  TEXT NOT NULL,
    domain       TEXT,
    payload      TEXT NOT NULL,
    fetched_at   TEXT NOT NULL,
    stale_at     TEXT NOT NULL,
    expires_at   TEXT NOT NULL,
    invalidated  INTEGER NOT NULL DEFAULT 0
)
"""

_CREATE_DOMAIN_TABLE = """
CREATE TABLE IF NOT EXISTS domain_state (
    domain      TEXT PRIMARY KEY,
    changed_at  TEXT,
    updated_at  TEXT NOT NULL
)
"""

_CREATE_RESULT_DOMAIN_INDEX = (
    "CREATE INDEX IF NOT EXISTS idx_result_domain ON result_cache(domain)"
)
_CREATE_RESULT_EXPIRES_INDEX = (
    "CREATE INDEX IF NOT EXISTS idx_result_expires ON result_cache(expires_at)"
)


def _to_text(value: datetime) -> str:
    """Normalise to UTC so stored timestamps compare equal as text."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).isoformat()


class Cache:
    """SQLite-backed result cache implementing CacheProtocol."""

    def __init__(self, db: aiosqlite.Connection) -> None:
        self._db = db
        self._write_lock = asyncio.Lock()

    async def init_db(self) -> None:
        """Create tables and set WAL mode. Called once at startup."""
        await self._db.execute("PRAGMA journal_mode = WAL")
        await self._db.execute(_CREATE_RESULT_TABLE)
        await self._db.execute(_CREATE_DOMAIN_TABLE)
        await self._db.execute(_CREATE_RESULT_DOMAIN_INDEX)
        await self._db.execute(_CREATE_RESULT_EXPIRES_INDEX)
        await self._db.commit()

    # ------------------------------------------------------------------
    # Results
    # ------------------------------------------------------------------

    async def get(self, key: str) -> CacheEntry | None:
        """Read a result. Returns ``None`` on cache miss or read failure."""
        try:
            cursor = await self._db.execute(
                "SELECT key, endpoint_id, domain, payload, fetched_at, stale_at, "
                "expires_at, invalidated FROM result_cache WHERE key = ?",
                (key,),
            )
            row = await cursor.fetchone()
            if row is None:
                return None

            now = datetime.now(UTC)
            stale_at = datetime.fromisoformat(row[5])
            expires_at = datetime.fromisoformat(row[6])
            invalidated = bool(row[7])

            return CacheEntry(
                key=row[0],
                endpoint_id=row[1],
                domain=row[2],
                payload=row[3],
                fetched_at=datetime.fromisoformat(row[4]),
                stale_at=stale_at,
                expires_at=expires_at,
                invalidated=invalidated,
                stale=invalidated or now >= stale_at,
                expired=now >= expires_at,
            )
        except aiosqlite.Error:
            log.warning("cache_read_error", key=key, exc_info=True)
            return None

    async def set(
        self,
        key: str,
        endpoint_id: str,
        payload: str,
        *,
        stale_after: float,
        expire_after: float,
        domain: str | None = None,
        seen_domain_state: DomainCacheState | None = None,
    ) -> None:
        """Write a result and register it with its domain. Non-fatal on failure.

        ``seen_domain_state`` is the domain state read before the value was
        fetched. If the domain's flush date has moved since, the value predates
        the flush and is stored already invalidated.
        """
        now = datetime.now(UTC)
        async with self._write_lock:
            try:
                invalidated = False
                if domain is not None:
                    await self._insert_domain(domain, now)
                    if seen_domain_state is not None:
                        invalidated = await self._domain_moved(domain, seen_domain_state)
                await self._db.execute(
                    "INSERT OR REPLACE INTO result_cache "
                    "(key, endpoint_id, domain, payload, fetched_at, stale_at, expires_at, "
                    "invalidated) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                    (
                        key,
                        endpoint_id,
                        domain,
                        payload,
                        _to_text(now),
                        _to_text(now + timedelta(seconds=stale_after)),
                        _to_text(now + timedelta(seconds=expire_after)),
                        int(invalidated),
                    ),
                )
                await self._db.commit()
            except aiosqlite.Error:
                log.warning("cache_write_error", key=key, exc_info=True)
                with suppress(aiosqlite.Error):
                    await self._db.rollback()
                return

        if invalidated:
            log.info("cache_write_invalidated_by_flush", key=key[:12], domain=domain)

    async def _domain_moved(self, domain: str, seen: DomainCacheState) -> bool:
        cursor = await self._db.execute(
            "SELECT changed_at FROM domain_state WHERE domain = ?", (domain,)
        )
        row = await cursor.fetchone()
        current = datetime.fromisoformat(row[0]) if row and row[0] is not None else None
        return current != seen.changed_at

    async def mark_stale(self, key: str) -> bool:
        """Force the next read of ``key`` to re-fetch. Returns False if absent."""
        try:
            async with self._write_lock:
                cursor = await self._db.execute(
                    "UPDATE result_cache SET invalidated = 1 WHERE key = ?", (key,)
                )
                await self._db.commit()
            return cursor.rowcount > 0
        except aiosqlite.Error:
            log.warning("cache_write_error", key=key, exc_info=True)
            return False

    # ------------------------------------------------------------------
    # Domains
    # ------------------------------------------------------------------

    async def _insert_domain(self, domain: str, now: datetime) -> None:
        await self._db.execute(
            "INSERT OR IGNORE INTO domain_state (domain, changed_at, updated_at) "
            "VALUES (?, NULL, ?)",
            (domain, _to_text(now)),
        )

    async def ensure_domain(self, domain: str) -> None:
        """Create the domain's state row on first use. Non-fatal on failure."""
        try:
            async with self._write_lock:
                await self._insert_domain(domain, datetime.now(UTC))
                await self._db.commit()
        except aiosqlite.Error:
            log.warning("cache_domain_write_error", domain=domain, exc_info=True)

    async def keys_for_domain(self, domain: str) -> frozenset[str]:
        try:
            cursor = await self._db.execute(
                "SELECT key FROM result_cache WHERE domain = ?", (domain,)
            )
            return frozenset(row[0] for row in await cursor.fetchall())
        except aiosqlite.Error:
            log.warning("cache_read_error", domain=domain, exc_info=True)
            return frozenset()

    async def get_domain_state(self, domain: str) -> DomainCacheState | None:
        """Read a domain's flush-date state. ``None`` if never seen or unreadable."""
        try:
            cursor = await self._db.execute(
                "SELECT domain, changed_at, updated_at FROM domain_state WHERE domain = ?",
                (domain,),
            )
            row = await cursor.fetchone()
            if row is None:
                return None
        except aiosqlite.Error:
            log.warning("cache_domain_read_error", domain=domain, exc_info=True)
            return None

        return DomainCacheState(
            domain=row[0],
            changed_at=datetime.fromisoformat(row[1]) if row[1] is not None else None,
            keys=await self.keys_for_domain(domain),
            updated_at=datetime.fromisoformat(row[2]),
        )

    async def compare_and_set_domain(
        self,
        domain: str,
        expected: datetime | None,
        new: datetime,
        *,
        invalidate: bool,
    ) -> int | None:
        """Atomically move a domain's flush date from ``expected`` to ``new``.

        When ``invalidate`` is set, every result in the domain is marked stale
        in the same transaction. Returns the number of invalidated keys, or
        ``None`` if the stored value was no longer ``expected`` (nothing is
        written in that case).
        """
        now = datetime.now(UTC)
        async with self._write_lock:
            try:
                await self._insert_domain(domain, now)
                cursor = await self._db.execute(
                    "UPDATE domain_state SET changed_at = ?, updated_at = ? "
                    "WHERE domain = ? AND changed_at IS ?",
                    (
                        _to_text(new),
                        _to_text(now),
                        domain,
                        _to_text(expected) if expected is not None else None,
                    ),
                )
                if cursor.rowcount == 0:
                    await self._db.rollback()
                    return None

                invalidated = 0
                if invalidate:
                    cursor = await self._db.execute(
                        "UPDATE result_cache SET invalidated = 1 WHERE domain = ?", (domain,)
                    )
                    invalidated = cursor.rowcount
                await self._db.commit()
                return invalidated
            except aiosqlite.Error:
                log.warning("cache_domain_cas_error", domain=domain, exc_info=True)
                await self._db.rollback()
                raise

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    async def cleanup_expired(self, grace_days: int = 7) -> None:
        """Delete results that expired more than ``grace_days`` ago. Non-fatal on failure."""
        try:
            cutoff = _to_text(datetime.now(UTC) - timedelta(days=grace_days))
            async with self._write_lock:
                cursor = await self._db.execute(
                    "DELETE FROM result_cache WHERE expires_at < ?", (cutoff,)
                )
                await self._db.commit()
            log.info("cache_cleanup_complete", deleted=cursor.rowcount)
        except aiosqlite.Error:
            log.warning("cache_cleanup_error", exc_info=True)
