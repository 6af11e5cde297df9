"""Record store: whole-collection JSON persistence plus id-keyed repositories.

Each logical collection is one JSON array stored under a fixed key. Writes
replace the whole array; there is no per-record upsert at the storage layer.
Repositories read the full collection, index it by id in memory, mutate, and
write the full collection back.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable
from typing import Any, Generic, Protocol, TypeVar

import psycopg
from psycopg.rows import dict_row
from psycopg.types.json import Json
from pydantic import ValidationError

from .models import DoseEvent, Medication, StoredRecord

logger = logging.getLogger(__name__)

MEDICATIONS_KEY = "@medications"
DOSE_HISTORY_KEY = "@dose_history"

RECORD_STORE_DDL = """
CREATE TABLE IF NOT EXISTS record_store (
    key TEXT PRIMARY KEY,
    data JSONB NOT NULL DEFAULT '[]'::jsonb,
    version INTEGER NOT NULL DEFAULT 1,
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
)
"""


class RecordStore(Protocol):
    """Durable key-value store holding one JSON array per collection."""

    async def read_all(self, collection: str) -> list[dict[str, Any]]: ...

    async def write_all(self, collection: str, records: list[dict[str, Any]]) -> None: ...

    async def remove(self, *collections: str) -> None: ...


async def ensure_record_store_schema(conn: psycopg.AsyncConnection[Any]) -> None:
    """Create the record_store table. Safe to call on every startup."""
    await conn.execute(RECORD_STORE_DDL)
    await conn.commit()
    logger.info("Record store schema ensured")


class PostgresRecordStore:
    """Record store backed by a single ``record_store`` table (one row per key)."""

    def __init__(self, database_url: str) -> None:
        self.database_url = database_url

    async def read_all(self, collection: str) -> list[dict[str, Any]]:
        async with await psycopg.AsyncConnection.connect(self.database_url) as conn:
            async with conn.cursor(row_factory=dict_row) as cur:
                await cur.execute(
                    "SELECT data FROM record_store WHERE key = %s",
                    (collection,),
                )
                row = await cur.fetchone()
        if row is None or row["data"] is None:
            return []
        data = row["data"]
        if not isinstance(data, list):
            logger.warning("Collection %s is not a JSON array; treating as empty", collection)
            return []
        return data

    async def write_all(self, collection: str, records: list[dict[str, Any]]) -> None:
        async with await psycopg.AsyncConnection.connect(self.database_url) as conn:
            await conn.execute(
                """
                INSERT INTO record_store (key, data, version, updated_at)
                VALUES (%s, %s, 1, NOW())
                ON CONFLICT (key) DO UPDATE SET
                    data = EXCLUDED.data,
                    version = record_store.version + 1,
                    updated_at = NOW()
                """,
                (collection, Json(records)),
            )
            await conn.commit()

    async def remove(self, *collections: str) -> None:
        async with await psycopg.AsyncConnection.connect(self.database_url) as conn:
            await conn.execute(
                "DELETE FROM record_store WHERE key = ANY(%s)",
                (list(collections),),
            )
            await conn.commit()


class InMemoryRecordStore:
    """Process-local record store.

    Collections are held JSON-encoded, so callers never share mutable state
    with the store and a failed write leaves the previous array intact.
    """

    def __init__(self) -> None:
        self._collections: dict[str, str] = {}

    async def read_all(self, collection: str) -> list[dict[str, Any]]:
        raw = self._collections.get(collection)
        return json.loads(raw) if raw else []

    async def write_all(self, collection: str, records: list[dict[str, Any]]) -> None:
        self._collections[collection] = json.dumps(records)

    async def remove(self, *collections: str) -> None:
        for collection in collections:
            self._collections.pop(collection, None)


RecordT = TypeVar("RecordT", bound=StoredRecord)


class CollectionRepository(Generic[RecordT]):
    """``list_all`` / ``upsert`` / ``delete`` by id over one collection.

    Mutations work on the raw stored dicts. Only the record being touched is
    validated; every other entry, malformed or not, is written back as it was
    read. Store failures propagate; callers decide whether to degrade.
    """

    collection: str
    model: type[RecordT]

    def __init__(self, store: RecordStore) -> None:
        self.store = store

    async def list_all(self) -> list[RecordT]:
        records: list[RecordT] = []
        for raw in await self.store.read_all(self.collection):
            try:
                records.append(self.model.model_validate(raw))
            except ValidationError as exc:
                logger.warning(
                    "Skipping malformed %s record (id=%s): %s",
                    self.model.__name__,
                    _raw_id(raw),
                    exc.errors()[0]["msg"] if exc.errors() else exc,
                )
        return records

    async def index(self) -> dict[str, RecordT]:
        return {record.id: record for record in await self.list_all()}

    async def get(self, record_id: str) -> RecordT | None:
        return (await self.index()).get(record_id)

    async def save_all(self, records: Iterable[RecordT]) -> None:
        """Overwrite the whole collection with exactly ``records``."""
        await self.store.write_all(self.collection, [r.to_record() for r in records])

    async def _replace(self, record: RecordT, *, insert: bool) -> bool:
        """Swap in ``record`` by id. Returns whether an existing entry was replaced."""
        raws = await self.store.read_all(self.collection)
        replaced = False
        kept: list[Any] = []
        for raw in raws:
            if _raw_id(raw) != record.id:
                kept.append(raw)
            elif not replaced:
                kept.append(record.to_record())
                replaced = True
        if not replaced:
            if not insert:
                return False
            kept.append(record.to_record())
        await self.store.write_all(self.collection, kept)
        return replaced

    async def upsert(self, record: RecordT) -> bool:
        """Insert or replace by id. Returns True when the id was new."""
        return not await self._replace(record, insert=True)

    async def update(self, record: RecordT) -> bool:
        """Replace an existing record; unknown ids are left alone."""
        return await self._replace(record, insert=False)

    async def delete(self, record_id: str) -> bool:
        raws = await self.store.read_all(self.collection)
        kept = [raw for raw in raws if _raw_id(raw) != record_id]
        if len(kept) == len(raws):
            return False
        await self.store.write_all(self.collection, kept)
        return True


def _raw_id(raw: Any) -> Any:
    return raw.get("id") if isinstance(raw, dict) else None


class MedicationRepository(CollectionRepository[Medication]):
    collection = MEDICATIONS_KEY
    model = Medication


class DoseHistoryRepository(CollectionRepository[DoseEvent]):
    collection = DOSE_HISTORY_KEY
    model = DoseEvent
