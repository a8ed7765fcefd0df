from __future__ import annotations

from collections.abc import AsyncIterator, Mapping, Sequence
from typing import Any

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from laiterie_service.api import create_app
from laiterie_service.backend import Row, RowStore
from laiterie_service.config import Settings
from laiterie_service.database import create_tables
from laiterie_service.errors import PersistenceError
from laiterie_service.state import AppState


class FlakyRowStore(RowStore):
    """RowStore that raises PersistenceError for configured calls."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        super().__init__(session_factory)
        self.failures: set[tuple[str, str, str | None]] = set()

    def fail(self, operation: str, table: str, row_id: str | None = None) -> None:
        self.failures.add((operation, table, row_id))

    def heal(self) -> None:
        self.failures.clear()

    def _check(self, operation: str, table: str, row_id: str | None = None) -> None:
        if (operation, table, None) in self.failures or (operation, table, row_id) in self.failures:
            raise PersistenceError(table, operation, "injected failure")

    async def select_all(self, table: str, **filters: Any) -> list[Row]:
        self._check("select", table)
        return await super().select_all(table, **filters)

    async def select_by_id(self, table: str, row_id: str) -> Row | None:
        self._check("select", table, row_id)
        return await super().select_by_id(table, row_id)

    async def insert(self, table: str, values: Mapping[str, Any]) -> Row:
        self._check("insert", table, values.get("id"))
        return await super().insert(table, values)

    async def insert_many(self, table: str, rows: Sequence[Mapping[str, Any]]) -> None:
        self._check("insert", table)
        await super().insert_many(table, rows)

    async def update_by_id(self, table: str, row_id: str, values: Mapping[str, Any]) -> Row | None:
        self._check("update", table, row_id)
        return await super().update_by_id(table, row_id, values)

    async def delete_by_id(self, table: str, row_id: str) -> None:
        self._check("delete", table, row_id)
        await super().delete_by_id(table, row_id)

    async def upsert(self, table: str, rows) -> None:
        self._check("upsert", table)
        await super().upsert(table, rows)


@pytest.fixture()
def settings(tmp_path) -> Settings:
    return Settings(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        environment="test",
        app_name="Test Laiterie Service",
        local_store_path=str(tmp_path / "local.json"),
    )


@pytest.fixture()
async def engine(settings: Settings) -> AsyncIterator[AsyncEngine]:
    engine = create_async_engine(settings.database_url, echo=False)
    await create_tables(engine)
    yield engine
    await engine.dispose()


@pytest.fixture()
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind=engine, expire_on_commit=False)


@pytest.fixture()
def store(session_factory: async_sessionmaker[AsyncSession]) -> FlakyRowStore:
    return FlakyRowStore(session_factory)


@pytest.fixture()
async def state(
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
    store: FlakyRowStore,
) -> AppState:
    state = AppState(settings, session_factory, store=store)
    await state.startup()
    return state


@pytest.fixture()
def app(settings: Settings, state: AppState) -> FastAPI:
    return create_app(settings, state=state)


@pytest.fixture()
async def client(app: FastAPI) -> AsyncIterator[AsyncClient]:
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client