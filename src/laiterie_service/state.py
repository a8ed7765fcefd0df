"""Single coordinator owning the catalog, the ledger and the session.

The service models one device: there is exactly one active session per
process, shared by every HTTP client. Logging in replaces it and logging out
ends it for everyone, so the API is meant to sit behind a single UI instance.
"""
from __future__ import annotations

import logging
from collections.abc import Sequence
from pathlib import Path

from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from . import transfer
from .backend import RowStore
from .catalog import ProductCatalog
from .config import Settings
from .errors import InvalidOrderError, NotFoundError, PermissionDeniedError, SessionRequiredError
from .ledger import OrderLedger
from .local_store import LocalStore
from .schemas import Order, OrderItem, OrderLine, UserSession
from .sessions import SessionManager

logger = logging.getLogger(__name__)


class AppState:
    """Application state exposed to the HTTP layer.

    The in-memory collections are only changed after the backing store
    accepted the write, and each change is mirrored to the local store.
    """

    def __init__(
        self,
        settings: Settings,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        store: RowStore | None = None,
    ) -> None:
        self.settings = settings
        self.store = store or RowStore(session_factory)
        self.local = LocalStore(Path(settings.local_store_path))
        self.catalog = ProductCatalog(
            self.store,
            self.local,
            placeholder_image_url=settings.placeholder_image_url,
            offline_fallback=settings.offline_fallback,
        )
        self.ledger = OrderLedger(
            self.store,
            self.local,
            self.catalog,
            offline_fallback=settings.offline_fallback,
        )
        self.sessions = SessionManager(self.store, self.local, admin_email=settings.admin_email)

    async def startup(self) -> None:
        await self.catalog.load(seed=True)
        await self.ledger.load()
        session = await self.sessions.restore_session()
        logger.info(
            "Loaded %d products and %d orders; session %s",
            len(self.catalog.list_products()),
            len(self.ledger.list_orders()),
            session.email if session else "none",
        )

    # ------------------------------------------------------------------
    # Session
    # ------------------------------------------------------------------
    async def login(self, email: str, store_name: str) -> UserSession:
        session = await self.sessions.login(email, store_name)
        await self.ledger.load()
        return session

    async def logout(self) -> None:
        await self.sessions.logout()
        self.ledger.clear()

    def _require_session(self) -> UserSession:
        session = self.sessions.current
        if session is None:
            raise SessionRequiredError("Log in first.")
        return session

    # ------------------------------------------------------------------
    # Orders
    # ------------------------------------------------------------------
    def _resolve_line(self, line: OrderLine) -> OrderItem:
        product = self.catalog.get_product(line.product_id)
        if product is None or not product.is_visible:
            raise NotFoundError("Product", line.product_id)
        try:
            return OrderItem(product=product, quantity=line.quantity)
        except ValidationError as exc:
            raise InvalidOrderError(
                f"Invalid quantity {line.quantity:g} for product {line.product_id}"
            ) from exc

    async def submit_order(self, lines: Sequence[OrderLine]) -> Order:
        """Place an order for the active store.

        Each line is snapshotted from the current catalog; unknown or hidden
        products raise :class:`NotFoundError`.
        """

        session = self._require_session()
        if session.is_admin:
            raise PermissionDeniedError("Admins cannot submit orders.")
        items = [self._resolve_line(line) for line in lines]
        return await self.ledger.submit_order(session.store_name, session.email, items)

    def visible_orders(self) -> list[Order]:
        """Every order for the administrator, the store's own history otherwise."""

        session = self._require_session()
        if session.is_admin:
            return self.ledger.list_orders()
        return self.ledger.list_orders(user_email=session.email)

    # ------------------------------------------------------------------
    # Import / export
    # ------------------------------------------------------------------
    async def import_products(self, filename: str, data: bytes) -> int:
        return await transfer.import_products(self.catalog, filename, data)

    def export_products(
        self, fmt: transfer.ExportFormat, *, rtl: bool = False
    ) -> tuple[bytes, str]:
        table = transfer.product_table(
            self.catalog.list_products(), printable=fmt == transfer.ExportFormat.PDF
        )
        return transfer.export_table(table, fmt, rtl=rtl)

    def export_orders(
        self, fmt: transfer.ExportFormat, *, rtl: bool = False
    ) -> tuple[bytes, str]:
        table = transfer.order_table(
            self.visible_orders(), printable=fmt == transfer.ExportFormat.PDF
        )
        return transfer.export_table(table, fmt, rtl=rtl)


__all__ = ["AppState"]
