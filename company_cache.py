"""
Company summary cache using SQLite.
Provides an async store keyed by normalized website. Records are never evicted;
freshness is decided by the caller from `last_updated_at`.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Optional, Protocol

import aiosqlite

from errors import CacheQueryError, CacheWriteError
from models import CacheRecord

UPDATABLE_COLUMNS = (
    "summary",
    "independence_flag",
    "insufficient_info_flag",
    "original_company_name",
    "original_country",
    "original_website",
    "normalized_company_name",
    "normalized_country",
)

_SELECT_COLUMNS = """
    id, website, summary, independence_flag, insufficient_info_flag,
    original_company_name, original_country, original_website,
    normalized_company_name, normalized_country, last_updated_at
"""


class CacheStore(Protocol):
    async def find_by_website(self, website: str) -> Optional[CacheRecord]:
        ...

    async def upsert(self, website: str, fields: dict[str, Any]) -> bool:
        ...


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


def _safe_parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse stored timestamps defensively; naive values are taken as UTC."""
    raw = str(value or "").strip()
    if not raw:
        return None
    parsed: Optional[datetime] = None
    try:
        parsed = datetime.fromisoformat(raw)
    except ValueError:
        for fmt in ("%Y-%m-%d %H:%M:%S.%f", "%Y-%m-%d %H:%M:%S"):
            try:
                parsed = datetime.strptime(raw, fmt)
                break
            except ValueError:
                continue
    if parsed is None:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _record_from_row(row: aiosqlite.Row) -> CacheRecord:
    return CacheRecord(
        website=row["website"],
        summary=row["summary"],
        independence_flag=bool(row["independence_flag"]),
        insufficient_info_flag=bool(row["insufficient_info_flag"]),
        last_updated_at=_safe_parse_timestamp(row["last_updated_at"]),
        original_company_name=row["original_company_name"],
        original_country=row["original_country"],
        original_website=row["original_website"],
        normalized_company_name=row["normalized_company_name"],
        normalized_country=row["normalized_country"],
    )


class CompanyCache:
    """aiosqlite-backed CacheStore. One short-lived connection per call."""

    def __init__(self, db_path: str):
        self.db_path = db_path
        self._initialized = False

    async def init_cache(self) -> None:
        """Create the schema (and add columns missing from older cache files)."""
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute("""
                CREATE TABLE IF NOT EXISTS companies (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    website TEXT NOT NULL,
                    summary TEXT,
                    independence_flag BOOLEAN NOT NULL DEFAULT 0,
                    insufficient_info_flag BOOLEAN NOT NULL DEFAULT 0,
                    original_company_name TEXT,
                    original_country TEXT,
                    original_website TEXT,
                    normalized_company_name TEXT,
                    normalized_country TEXT,
                    last_updated_at TIMESTAMP
                )
            """)
            async with db.execute("PRAGMA table_info(companies)") as cursor:
                existing = {str(row[1]).lower() async for row in cursor}
            for column in ("original_company_name", "original_country", "original_website",
                           "normalized_company_name", "normalized_country"):
                if column not in existing:
                    await db.execute(f"ALTER TABLE companies ADD COLUMN {column} TEXT")
            await db.execute("""
                CREATE INDEX IF NOT EXISTS idx_companies_website
                ON companies(website)
            """)
            await db.commit()
        self._initialized = True

    async def _ensure_schema(self) -> None:
        if not self._initialized:
            await self.init_cache()

    async def find_by_website(self, website: str) -> Optional[CacheRecord]:
        """
        Most recent record for an exact normalized website, or None.

        Raises:
            CacheQueryError: the store could not be queried.
        """
        try:
            await self._ensure_schema()
            async with aiosqlite.connect(self.db_path) as db:
                db.row_factory = aiosqlite.Row
                async with db.execute(f"""
                    SELECT {_SELECT_COLUMNS}
                    FROM companies
                    WHERE website = ?
                    ORDER BY last_updated_at DESC, id DESC
                    LIMIT 1
                """, (website,)) as cursor:
                    row = await cursor.fetchone()
        except Exception as exc:
            raise CacheQueryError(f"Cache error checking website: {website}: {exc}") from exc
        if not row:
            return None
        return _record_from_row(row)

    async def upsert(
        self,
        website: str,
        fields: dict[str, Any],
        updated_at: Optional[datetime] = None,
    ) -> bool:
        """
        Merge `fields` into the record for `website`, creating it if missing.
        Only the supplied columns change; `last_updated_at` is always refreshed.

        Returns:
            True when a new record was inserted, False when an existing one was updated.

        Raises:
            CacheWriteError: unknown columns or the store could not be written.
        """
        unknown = sorted(set(fields) - set(UPDATABLE_COLUMNS))
        if unknown:
            raise CacheWriteError(f"Unknown cache fields: {', '.join(unknown)}")
        stamp = (updated_at or _utcnow()).astimezone(timezone.utc).isoformat()
        columns = [column for column in UPDATABLE_COLUMNS if column in fields]
        values = [fields[column] for column in columns]

        try:
            await self._ensure_schema()
            async with aiosqlite.connect(self.db_path) as db:
                async with db.execute("""
                    SELECT id FROM companies
                    WHERE website = ?
                    ORDER BY last_updated_at DESC, id DESC
                    LIMIT 1
                """, (website,)) as cursor:
                    existing = await cursor.fetchone()

                if existing:
                    assignments = ", ".join([f"{column} = ?" for column in columns] + ["last_updated_at = ?"])
                    await db.execute(
                        f"UPDATE companies SET {assignments} WHERE id = ?",
                        (*values, stamp, existing[0]),
                    )
                else:
                    insert_columns = ["website", *columns, "last_updated_at"]
                    placeholders = ",".join("?" * len(insert_columns))
                    await db.execute(
                        f"INSERT INTO companies ({', '.join(insert_columns)}) VALUES ({placeholders})",
                        (website, *values, stamp),
                    )
                await db.commit()
        except Exception as exc:
            raise CacheWriteError(f"Error writing cache for {website}: {exc}") from exc
        return existing is None

    async def get_cache_stats(self, freshness_window: timedelta) -> dict:
        """Get cache statistics for monitoring."""
        await self._ensure_schema()
        cutoff = (_utcnow() - freshness_window).isoformat()
        async with aiosqlite.connect(self.db_path) as db:
            db.row_factory = aiosqlite.Row
            async with db.execute("SELECT COUNT(*) as count FROM companies") as cursor:
                row = await cursor.fetchone()
                total = row["count"]
            async with db.execute(
                "SELECT COUNT(*) as count FROM companies WHERE last_updated_at > ?",
                (cutoff,),
            ) as cursor:
                row = await cursor.fetchone()
                fresh = row["count"]

        return {
            "totalEntries": total,
            "freshEntries": fresh,
            "staleEntries": max(0, total - fresh),
            "freshnessWindowDays": freshness_window.days,
        }

    async def clear_all_cache(self) -> None:
        """Remove every cached company. Useful for manual invalidation."""
        await self._ensure_schema()
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute("DELETE FROM companies")
            await db.commit()
