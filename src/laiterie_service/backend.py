"""Row-oriented client over the ``products``, ``orders`` and ``sessions`` tables.

Every call runs in its own session and transaction, so independent calls may
be awaited concurrently. SQLAlchemy failures surface as
:class:`~laiterie_service.errors.PersistenceError`.
"""
from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping, Sequence
from typing import Any

from sqlalchemy import Table, delete, insert, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from . import models  # noqa: F401
from .database import Base
from .errors import PersistenceError

logger = logging.getLogger(__name__)

Row = dict[str, Any]


class RowStore:
    """Generic select/insert/update/delete/upsert access keyed by ``id``."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    def _table(self, name: str) -> Table:
        try:
            return Base.metadata.tables[name]
        except KeyError as exc:
            raise PersistenceError(name, "lookup", "unknown table") from exc

    def _fail(self, table: str, operation: str, exc: Exception) -> PersistenceError:
        logger.error("%s on %s failed: %s", operation, table, exc)
        return PersistenceError(table, operation, str(exc))

    async def select_all(self, table: str, **filters: Any) -> list[Row]:
        tbl = self._table(table)
        stmt = select(tbl)
        for column, value in filters.items():
            stmt = stmt.where(tbl.c[column] == value)
        try:
            async with self._session_factory() as session:
                result = await session.execute(stmt)
                return [dict(row) for row in result.mappings().all()]
        except SQLAlchemyError as exc:
            raise self._fail(table, "select", exc) from exc

    async def select_by_id(self, table: str, row_id: str) -> Row | None:
        tbl = self._table(table)
        stmt = select(tbl).where(tbl.c.id == row_id)
        try:
            async with self._session_factory() as session:
                result = await session.execute(stmt)
                row = result.mappings().one_or_none()
        except SQLAlchemyError as exc:
            raise self._fail(table, "select", exc) from exc
        return None if row is None else dict(row)

    async def insert(self, table: str, values: Mapping[str, Any]) -> Row:
        tbl = self._table(table)
        try:
            async with self._session_factory() as session, session.begin():
                await session.execute(insert(tbl).values(**values))
                result = await session.execute(select(tbl).where(tbl.c.id == values["id"]))
                return dict(result.mappings().one())
        except SQLAlchemyError as exc:
            raise self._fail(table, "insert", exc) from exc

    async def insert_many(self, table: str, rows: Sequence[Mapping[str, Any]]) -> None:
        if not rows:
            return
        tbl = self._table(table)
        try:
            async with self._session_factory() as session, session.begin():
                await session.execute(insert(tbl), [dict(row) for row in rows])
        except SQLAlchemyError as exc:
            raise self._fail(table, "insert", exc) from exc

    async def update_by_id(
        self, table: str, row_id: str, values: Mapping[str, Any]
    ) -> Row | None:
        """Apply ``values`` to the row and return it, or ``None`` when absent."""

        tbl = self._table(table)
        try:
            async with self._session_factory() as session, session.begin():
                if values:
                    await session.execute(
                        update(tbl).where(tbl.c.id == row_id).values(**values)
                    )
                result = await session.execute(select(tbl).where(tbl.c.id == row_id))
                row = result.mappings().one_or_none()
        except SQLAlchemyError as exc:
            raise self._fail(table, "update", exc) from exc
        return None if row is None else dict(row)

    async def delete_by_id(self, table: str, row_id: str) -> None:
        tbl = self._table(table)
        try:
            async with self._session_factory() as session, session.begin():
                await session.execute(delete(tbl).where(tbl.c.id == row_id))
        except SQLAlchemyError as exc:
            raise self._fail(table, "delete", exc) from exc

    async def upsert(self, table: str, rows: Iterable[Mapping[str, Any]]) -> None:
        """Insert rows, updating the supplied columns of rows whose ``id`` exists."""

        tbl = self._table(table)
        rows = [dict(row) for row in rows]
        if not rows:
            return
        try:
            async with self._session_factory() as session, session.begin():
                dialect = session.get_bind().dialect.name
                for row in rows:
                    await session.execute(self._upsert_statement(dialect, tbl, row))
        except SQLAlchemyError as exc:
            raise self._fail(table, "upsert", exc) from exc

    @staticmethod
    def _upsert_statement(dialect: str, tbl: Table, row: Row):
        if dialect == "postgresql":
            stmt = postgresql.insert(tbl).values(**row)
        elif dialect == "sqlite":
            stmt = sqlite.insert(tbl).values(**row)
        else:
            raise SQLAlchemyError(f"upsert is not supported on {dialect}")
        changes = {key: value for key, value in row.items() if key != "id"}
        if not changes:
            return stmt.on_conflict_do_nothing(index_elements=["id"])
        return stmt.on_conflict_do_update(index_elements=["id"], set_=changes)


__all__ = ["Row", "RowStore"]
