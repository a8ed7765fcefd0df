"""Order ledger: submission, status transitions and the dashboard signal."""
from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import datetime, timezone
from typing import Optional

from .backend import Row, RowStore
from .catalog import ProductCatalog
from .errors import NotFoundError, PartialReconciliationFailure, PersistenceError
from .identifiers import new_identifier
from .local_store import DASHBOARD_VIEWED_KEY, ORDERS_CACHE_KEY, LocalStore
from .reconciliation import ReconciliationResult, reconcile_delivered_order
from .schemas import Order, OrderItem, OrderStatus

logger = logging.getLogger(__name__)

TABLE = "orders"


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _to_row(order: Order) -> Row:
    return {
        "id": order.id,
        "store_name": order.store_name,
        "user_email": order.user_email,
        "items": [item.model_dump(mode="json") for item in order.items],
        "order_date": order.order_date,
        "status": order.status.value,
        "total_amount": order.total_amount,
    }


def _from_row(row: Row) -> Order:
    return Order.model_validate(row)


class OrderLedger:
    def __init__(
        self,
        store: RowStore,
        local: LocalStore,
        catalog: ProductCatalog,
        *,
        offline_fallback: bool = True,
    ) -> None:
        self._store = store
        self._local = local
        self._catalog = catalog
        self._offline_fallback = offline_fallback
        self._orders: dict[str, Order] = {}

    async def load(self) -> list[Order]:
        try:
            rows = await self._store.select_all(TABLE)
        except PersistenceError:
            if not self._offline_fallback:
                raise
            cached = self._local.get(ORDERS_CACHE_KEY) or []
            logger.warning("Backing store unavailable, serving %d cached orders", len(cached))
            self._orders = {o.id: o for o in (Order.model_validate(r) for r in cached)}
            return self.list_orders()
        self._orders = {o.id: o for o in (_from_row(row) for row in rows)}
        self._mirror()
        return self.list_orders()

    def clear(self) -> None:
        self._orders = {}
        self._local.delete(ORDERS_CACHE_KEY)

    def _mirror(self) -> None:
        self._local.set(
            ORDERS_CACHE_KEY, [o.model_dump(mode="json") for o in self._orders.values()]
        )

    def list_orders(self, *, user_email: str | None = None) -> list[Order]:
        """Return orders newest first, optionally only those of ``user_email``."""

        orders = list(self._orders.values())
        if user_email is not None:
            orders = [o for o in orders if o.user_email == user_email]
        orders.sort(key=lambda o: o.order_date, reverse=True)
        return orders

    def get_order(self, order_id: str) -> Order | None:
        return self._orders.get(order_id)

    async def submit_order(
        self, store_name: str, user_email: str, items: Sequence[OrderItem]
    ) -> Order:
        if not items:
            raise ValueError("An order needs at least one item.")
        order = Order(
            id=new_identifier("order"),
            store_name=store_name,
            user_email=user_email,
            items=list(items),
            order_date=_now(),
            status=OrderStatus.PENDING,
        )
        order.total_amount = order.computed_total()
        stored = _from_row(await self._store.insert(TABLE, _to_row(order)))
        self._orders[stored.id] = stored
        self._mirror()
        logger.info("Order %s submitted by %s (%s)", stored.id, store_name, user_email)
        return stored

    async def set_order_status(
        self, order_id: str, status: OrderStatus
    ) -> tuple[Order, ReconciliationResult | None]:
        """Persist ``status`` and reconcile stock on the first move into Delivered.

        A reconciliation failure is logged; the status change stands.
        """

        row = await self._store.select_by_id(TABLE, order_id)
        if row is None:
            logger.error("Cannot set status of unknown order %s", order_id)
            raise NotFoundError("Order", order_id)
        previous = OrderStatus(row["status"])
        row = await self._store.update_by_id(TABLE, order_id, {"status": status.value})
        if row is None:
            raise NotFoundError("Order", order_id)
        order = _from_row(row)
        self._orders[order_id] = order
        self._mirror()
        logger.info("Order %s moved from %s to %s", order_id, previous.value, status.value)

        if status != OrderStatus.DELIVERED or previous == OrderStatus.DELIVERED:
            return order, None
        result = await reconcile_delivered_order(order, self._catalog)
        try:
            result.raise_for_failures()
        except PartialReconciliationFailure as exc:
            logger.error("%s", exc)
        return order, result

    # ------------------------------------------------------------------
    # Dashboard notification
    # ------------------------------------------------------------------
    def last_dashboard_view(self) -> datetime | None:
        return _parse_timestamp(self._local.get(DASHBOARD_VIEWED_KEY))

    def has_new_pending_orders(self) -> bool:
        last_viewed = self.last_dashboard_view()
        return any(
            order.status == OrderStatus.PENDING
            and (last_viewed is None or order.order_date > last_viewed)
            for order in self._orders.values()
        )

    def mark_dashboard_viewed(self) -> datetime:
        viewed_at = _now()
        self._local.set(DASHBOARD_VIEWED_KEY, viewed_at.isoformat())
        return viewed_at


__all__ = ["OrderLedger"]
