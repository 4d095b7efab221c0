"""Async SQLite persistence for the usage ledger."""

import aiosqlite

from .config import DB_PATH
from .models import UsageRecord

SCHEMA = """
CREATE TABLE IF NOT EXISTS usage_records (
    id TEXT PRIMARY KEY,
    created_at TIMESTAMP NOT NULL,
    category TEXT NOT NULL,
    provider TEXT NOT NULL DEFAULT '',
    model TEXT NOT NULL DEFAULT '',
    estimated_cost REAL NOT NULL DEFAULT 0,
    displayed INTEGER NOT NULL DEFAULT 1,
    record_json TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS ledger_totals (
    scope TEXT NOT NULL,
    key TEXT NOT NULL,
    count INTEGER NOT NULL DEFAULT 0,
    cost REAL NOT NULL DEFAULT 0,
    PRIMARY KEY (scope, key)
);

CREATE TABLE IF NOT EXISTS ledger_state (
    key TEXT PRIMARY KEY,
    value TEXT
);

CREATE INDEX IF NOT EXISTS idx_displayed_created ON usage_records(displayed, created_at);
"""

_UPSERT_STATE = """INSERT INTO ledger_state (key, value) VALUES (?, ?)
   ON CONFLICT(key) DO UPDATE SET value = excluded.value"""


def encode_record(record: UsageRecord) -> str:
    return record.model_dump_json()


def decode_record(text: str) -> UsageRecord:
    return UsageRecord.model_validate_json(text)


class Database:
    def __init__(self, db_path=None):
        self.db_path = db_path or DB_PATH
        self._db: aiosqlite.Connection | None = None

    async def init(self):
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._db = await aiosqlite.connect(str(self.db_path))
        self._db.row_factory = aiosqlite.Row
        await self._db.executescript(SCHEMA)
        await self._db.commit()

    async def close(self):
        if self._db:
            await self._db.close()
            self._db = None

    def _conn(self) -> aiosqlite.Connection:
        if self._db is None:
            raise RuntimeError("database is not initialized")
        return self._db

    async def persist_record(
        self,
        record: UsageRecord,
        evicted_ids: list[str],
        totals: list[tuple[str, str, int, float]],
        state: dict[str, str | None] | None = None,
    ):
        """Write one record with its display-log evictions, new totals and changed state in one commit."""
        db = self._conn()
        try:
            await db.execute(
                """INSERT INTO usage_records
                   (id, created_at, category, provider, model, estimated_cost, displayed, record_json)
                   VALUES (?, ?, ?, ?, ?, ?, 1, ?)""",
                (
                    record.id,
                    record.timestamp.isoformat(),
                    record.category.value,
                    record.provider,
                    record.model,
                    record.estimated_cost,
                    encode_record(record),
                ),
            )
            if evicted_ids:
                await db.executemany(
                    "UPDATE usage_records SET displayed = 0 WHERE id = ?",
                    [(i,) for i in evicted_ids],
                )
            await db.executemany(
                """INSERT INTO ledger_totals (scope, key, count, cost) VALUES (?, ?, ?, ?)
                   ON CONFLICT(scope, key) DO UPDATE SET count = excluded.count, cost = excluded.cost""",
                totals,
            )
            if state:
                await db.executemany(_UPSERT_STATE, list(state.items()))
            await db.commit()
        except Exception:
            await db.rollback()
            raise

    async def save_state(self, state: dict[str, str | None]):
        db = self._conn()
        await db.executemany(_UPSERT_STATE, list(state.items()))
        await db.commit()

    async def load_state(self) -> dict[str, str | None]:
        cursor = await self._conn().execute("SELECT key, value FROM ledger_state")
        rows = await cursor.fetchall()
        return {r["key"]: r["value"] for r in rows}

    async def load_totals(self) -> list[dict]:
        cursor = await self._conn().execute("SELECT scope, key, count, cost FROM ledger_totals")
        rows = await cursor.fetchall()
        return [dict(r) for r in rows]

    async def load_display(self, limit: int) -> list[UsageRecord]:
        cursor = await self._conn().execute(
            """SELECT record_json FROM usage_records WHERE displayed = 1
               ORDER BY created_at DESC, rowid DESC LIMIT ?""",
            (limit,),
        )
        rows = await cursor.fetchall()
        return [decode_record(r["record_json"]) for r in rows]

    async def get_record(self, record_id: str) -> UsageRecord | None:
        cursor = await self._conn().execute(
            "SELECT record_json FROM usage_records WHERE id = ?", (record_id,)
        )
        row = await cursor.fetchone()
        return decode_record(row["record_json"]) if row else None

    async def count_records(self) -> int:
        cursor = await self._conn().execute("SELECT COUNT(*) AS n FROM usage_records")
        row = await cursor.fetchone()
        return row["n"]

    async def hide_records(self, record_ids: list[str] | None = None):
        """Drop records from the display log. Stored history and totals are kept."""
        db = self._conn()
        if record_ids is None:
            await db.execute("UPDATE usage_records SET displayed = 0")
        else:
            await db.executemany(
                "UPDATE usage_records SET displayed = 0 WHERE id = ?",
                [(i,) for i in record_ids],
            )
        await db.commit()

    async def reset(self, keep_state: tuple[str, ...] = ()):
        """Zero all totals, clear ledger state (except `keep_state`) and the display log."""
        db = self._conn()
        try:
            await db.execute("DELETE FROM ledger_totals")
            placeholders = ",".join("?" for _ in keep_state)
            if keep_state:
                await db.execute(f"DELETE FROM ledger_state WHERE key NOT IN ({placeholders})", keep_state)
            else:
                await db.execute("DELETE FROM ledger_state")
            await db.execute("UPDATE usage_records SET displayed = 0")
            await db.commit()
        except Exception:
            await db.rollback()
            raise
