"""SQLite-backed entity store (one table per kind, JSON row bodies)."""
from __future__ import annotations

import asyncio
import json
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Mapping

import structlog
from uuid_utils import uuid7

from catalog_core.errors import DuplicateKeyError, NotFound, StoreError, TransientInfraError
from catalog_core.models import EntityKind

from .base import EntityStore

logger = structlog.get_logger(__name__)

# Columns promoted out of the JSON body so they can be indexed
_INDEXED = ("id", "slug", "status")


class SQLiteEntityStore(EntityStore):
    """SQLite store enforcing one published and one open draft per slug.

    Responsibilities:
    - One table per entity kind, named ``{prefix}{kind table}``
    - Partial unique indexes on slug for ``published`` and ``draft`` rows
    - Blocking sqlite3 calls run on a worker thread
    """

    def __init__(self, db_path: str | Path, *, table_prefix: str = "") -> None:
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.table_prefix = table_prefix
        self._init_schema()

    def table(self, kind: EntityKind) -> str:
        return f"{self.table_prefix}{kind.spec.table}"

    @contextmanager
    def _get_conn(self):
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL;")
        conn.execute("PRAGMA busy_timeout=5000;")
        try:
            yield conn
            conn.commit()
        except sqlite3.IntegrityError as e:
            conn.rollback()
            raise DuplicateKeyError(str(e)) from e
        except sqlite3.OperationalError as e:
            conn.rollback()
            msg = str(e).lower()
            if "locked" in msg or "busy" in msg:
                raise TransientInfraError(f"database temporarily unavailable: {e}") from e
            raise StoreError(str(e)) from e
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _init_schema(self) -> None:
        with self._get_conn() as conn:
            for kind in EntityKind:
                table = self.table(kind)
                conn.executescript(
                    f"""
                    CREATE TABLE IF NOT EXISTS {table} (
                        id TEXT PRIMARY KEY,
                        slug TEXT NOT NULL,
                        status TEXT NOT NULL,
                        body TEXT NOT NULL
                    );
                    CREATE INDEX IF NOT EXISTS idx_{table}_slug ON {table}(slug);
                    CREATE INDEX IF NOT EXISTS idx_{table}_status ON {table}(status);
                    CREATE UNIQUE INDEX IF NOT EXISTS uq_{table}_published_slug
                        ON {table}(slug) WHERE status = 'published';
                    CREATE UNIQUE INDEX IF NOT EXISTS uq_{table}_draft_slug
                        ON {table}(slug) WHERE status = 'draft';
                    """
                )

    @staticmethod
    def _row_to_dict(row: sqlite3.Row) -> dict[str, Any]:
        data = json.loads(row["body"])
        data["id"] = row["id"]
        data["slug"] = row["slug"]
        data["status"] = row["status"]
        return data

    # ------------------------------------------------------------------
    # Blocking implementations
    # ------------------------------------------------------------------

    def _select(
        self,
        kind: EntityKind,
        filters: Mapping[str, Any],
        exclude_id: str | None,
    ) -> list[dict[str, Any]]:
        clauses: list[str] = []
        params: list[Any] = []
        rest: dict[str, Any] = {}
        for key, value in filters.items():
            if key in _INDEXED:
                clauses.append(f"{key} = ?")
                params.append(str(value.value if hasattr(value, "value") else value))
            else:
                rest[key] = value
        if exclude_id is not None:
            clauses.append("id != ?")
            params.append(exclude_id)
        sql = f"SELECT id, slug, status, body FROM {self.table(kind)}"
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        with self._get_conn() as conn:
            rows = [self._row_to_dict(r) for r in conn.execute(sql, params).fetchall()]
        return [r for r in rows if all(r.get(k) == v for k, v in rest.items())]

    def _write(self, conn: sqlite3.Connection, kind: EntityKind, row: Mapping[str, Any], *, new: bool) -> None:
        body = {k: v for k, v in row.items() if k not in _INDEXED}
        params = (row["slug"], row["status"], json.dumps(body, default=str), row["id"])
        if new:
            conn.execute(
                f"INSERT INTO {self.table(kind)} (slug, status, body, id) VALUES (?, ?, ?, ?)",
                params,
            )
        else:
            conn.execute(
                f"UPDATE {self.table(kind)} SET slug = ?, status = ?, body = ? WHERE id = ?",
                params,
            )

    def _insert(self, kind: EntityKind, fields: Mapping[str, Any]) -> dict[str, Any]:
        row = dict(fields)
        row.setdefault("id", str(uuid7()))
        with self._get_conn() as conn:
            self._write(conn, kind, row, new=True)
        logger.debug("store.inserted", table=self.table(kind), id=row["id"])
        return row

    def _update(self, kind: EntityKind, item_id: str, fields: Mapping[str, Any]) -> dict[str, Any]:
        with self._get_conn() as conn:
            current = conn.execute(
                f"SELECT id, slug, status, body FROM {self.table(kind)} WHERE id = ?",
                (item_id,),
            ).fetchone()
            if current is None:
                raise NotFound(f"{kind.spec.label} not found")
            merged = {**self._row_to_dict(current), **dict(fields), "id": item_id}
            self._write(conn, kind, merged, new=False)
        return merged

    def _delete(self, kind: EntityKind, item_id: str) -> None:
        with self._get_conn() as conn:
            cur = conn.execute(f"DELETE FROM {self.table(kind)} WHERE id = ?", (item_id,))
            if cur.rowcount == 0:
                raise NotFound(f"{kind.spec.label} not found")

    # ------------------------------------------------------------------
    # Async interface
    # ------------------------------------------------------------------

    async def select(
        self,
        kind: EntityKind,
        filters: Mapping[str, Any] | None = None,
        *,
        exclude_id: str | None = None,
    ) -> list[dict[str, Any]]:
        return await asyncio.to_thread(self._select, kind, dict(filters or {}), exclude_id)

    async def insert(self, kind: EntityKind, fields: Mapping[str, Any]) -> dict[str, Any]:
        return await asyncio.to_thread(self._insert, kind, fields)

    async def update(self, kind: EntityKind, item_id: str, fields: Mapping[str, Any]) -> dict[str, Any]:
        return await asyncio.to_thread(self._update, kind, item_id, fields)

    async def delete(self, kind: EntityKind, item_id: str) -> None:
        await asyncio.to_thread(self._delete, kind, item_id)
