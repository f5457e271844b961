"""
Storage collaborator contract and its two implementations.

Every call is atomic on its own; nothing is transactional across calls.
Predicates are column -> value mappings. A list, tuple or set value means
"column IN values", None means "column IS NULL".
"""
from __future__ import annotations

from typing import Any, Iterable, Mapping, Optional, Protocol, Sequence

from sqlalchemy import Table, delete, func, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError

from shared.errors import PersistenceError
from shared.models.orm import Base
from shared.utils.database import DatabaseManager
from shared.utils.logging import get_logger

logger = get_logger(__name__)

Row = dict[str, Any]
Predicate = Mapping[str, Any]

_UPSERT_CHUNK = 500


class StorageBackend(Protocol):
    async def upsert_by_key(self, table: str, rows: Sequence[Mapping[str, Any]], conflict_key: Sequence[str]) -> int: ...

    async def select_where(self, table: str, predicate: Optional[Predicate] = None) -> list[Row]: ...

    async def delete_where(self, table: str, predicate: Predicate) -> int: ...


def _is_multi(value: Any) -> bool:
    return isinstance(value, (list, tuple, set, frozenset))


def _row_matches(row: Mapping[str, Any], predicate: Optional[Predicate]) -> bool:
    if not predicate:
        return True
    for column, expected in predicate.items():
        actual = row.get(column)
        if _is_multi(expected):
            if actual not in expected:
                return False
        elif actual != expected:
            return False
    return True


# ── In-process ──────────────────────────────────────────────────────────
class MemoryStorage:
    """Dict-backed storage for tests, dry runs and single-process deployments."""

    def __init__(self) -> None:
        self._tables: dict[str, dict[tuple[Any, ...], Row]] = {}

    async def upsert_by_key(self, table: str, rows: Sequence[Mapping[str, Any]], conflict_key: Sequence[str]) -> int:
        bucket = self._tables.setdefault(table, {})
        for row in rows:
            try:
                key = tuple(row[c] for c in conflict_key)
            except KeyError as exc:
                raise PersistenceError("upsert", table, exc) from exc
            bucket[key] = {**bucket.get(key, {}), **row}
        return len(rows)

    async def select_where(self, table: str, predicate: Optional[Predicate] = None) -> list[Row]:
        return [dict(row) for row in self._tables.get(table, {}).values() if _row_matches(row, predicate)]

    async def delete_where(self, table: str, predicate: Predicate) -> int:
        if not predicate:
            raise ValueError("delete_where requires a non-empty predicate")
        bucket = self._tables.get(table, {})
        doomed = [key for key, row in bucket.items() if _row_matches(row, predicate)]
        for key in doomed:
            del bucket[key]
        return len(doomed)


# ── SQL ─────────────────────────────────────────────────────────────────
class SqlStorage:
    """SQLAlchemy async storage; dialect-aware upsert for PostgreSQL and SQLite."""

    def __init__(self, db: DatabaseManager) -> None:
        self._db = db

    @staticmethod
    def _table(name: str) -> Table:
        try:
            return Base.metadata.tables[name]
        except KeyError as exc:
            raise PersistenceError("lookup", name, exc) from exc

    @staticmethod
    def _where(table: Table, predicate: Optional[Predicate]) -> list[Any]:
        clauses = []
        for column, expected in (predicate or {}).items():
            col = table.c[column]
            if _is_multi(expected):
                clauses.append(col.in_(list(expected)))
            elif expected is None:
                clauses.append(col.is_(None))
            else:
                clauses.append(col == expected)
        return clauses

    def _insert(self, table: Table) -> Any:
        dialect = self._db.dialect
        if dialect == "postgresql":
            return postgresql.insert(table)
        if dialect == "sqlite":
            return sqlite.insert(table)
        raise PersistenceError("upsert", table.name, NotImplementedError(f"dialect {dialect}"))

    async def upsert_by_key(self, table: str, rows: Sequence[Mapping[str, Any]], conflict_key: Sequence[str]) -> int:
        if not rows:
            return 0
        tbl = self._table(table)
        columns = set(rows[0])
        try:
            async with self._db.write_session() as session:
                for chunk in _chunks(rows, _UPSERT_CHUNK):
                    stmt = self._insert(tbl).values([dict(r) for r in chunk])
                    updates: dict[str, Any] = {
                        c.name: stmt.excluded[c.name]
                        for c in tbl.columns
                        if c.name in columns and c.name not in conflict_key
                    }
                    if "updated_at" in tbl.c and "updated_at" not in columns:
                        updates["updated_at"] = func.now()
                    if updates:
                        stmt = stmt.on_conflict_do_update(index_elements=list(conflict_key), set_=updates)
                    else:
                        stmt = stmt.on_conflict_do_nothing(index_elements=list(conflict_key))
                    await session.execute(stmt)
        except SQLAlchemyError as exc:
            logger.error("storage_upsert_failed", table=table, rows=len(rows), error=str(exc))
            raise PersistenceError("upsert", table, exc) from exc
        return len(rows)

    async def select_where(self, table: str, predicate: Optional[Predicate] = None) -> list[Row]:
        tbl = self._table(table)
        try:
            async with self._db.read_session() as session:
                result = await session.execute(select(tbl).where(*self._where(tbl, predicate)))
                return [dict(r) for r in result.mappings().all()]
        except SQLAlchemyError as exc:
            logger.error("storage_select_failed", table=table, error=str(exc))
            raise PersistenceError("select", table, exc) from exc

    async def delete_where(self, table: str, predicate: Predicate) -> int:
        if not predicate:
            raise ValueError("delete_where requires a non-empty predicate")
        tbl = self._table(table)
        try:
            async with self._db.write_session() as session:
                result = await session.execute(delete(tbl).where(*self._where(tbl, predicate)))
                return result.rowcount or 0
        except SQLAlchemyError as exc:
            logger.error("storage_delete_failed", table=table, error=str(exc))
            raise PersistenceError("delete", table, exc) from exc


def _chunks(rows: Sequence[Mapping[str, Any]], size: int) -> Iterable[Sequence[Mapping[str, Any]]]:
    for start in range(0, len(rows), size):
        yield rows[start : start + size]
