"""Stock decrement applied once when an order becomes ``Delivered``."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field

from .catalog import ProductCatalog
from .errors import NotFoundError, PartialReconciliationFailure
from .schemas import Order, ReconciliationSummary

logger = logging.getLogger(__name__)


@dataclass
class ReconciliationResult:
    order_id: str
    updated: dict[str, float] = field(default_factory=dict)
    skipped: list[str] = field(default_factory=list)
    failed: dict[str, Exception] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failed

    def raise_for_failures(self) -> None:
        if self.failed:
            raise PartialReconciliationFailure(self.order_id, self.failed)

    def summary(self) -> ReconciliationSummary:
        return ReconciliationSummary(
            updated=dict(self.updated),
            skipped=list(self.skipped),
            failed=sorted(self.failed),
        )


def _ordered_quantities(order: Order) -> dict[str, float]:
    quantities: dict[str, float] = {}
    for item in order.items:
        quantities[item.product.id] = quantities.get(item.product.id, 0) + item.quantity
    return quantities


async def reconcile_delivered_order(order: Order, catalog: ProductCatalog) -> ReconciliationResult:
    """Decrement stock for every tracked product of ``order``, floored at zero.

    Writes for distinct products are issued concurrently. A failed write is
    logged and recorded; the others are kept.
    """

    result = ReconciliationResult(order_id=order.id)
    targets: list[tuple[str, float]] = []
    for product_id, quantity in _ordered_quantities(order).items():
        product = catalog.get_product(product_id)
        if product is None or product.stock is None:
            logger.warning(
                "Order %s: product %s is missing or untracked, stock left alone",
                order.id,
                product_id,
            )
            result.skipped.append(product_id)
            continue
        targets.append((product_id, max(0, product.stock - quantity)))

    outcomes = await asyncio.gather(
        *(catalog.set_stock(product_id, stock) for product_id, stock in targets),
        return_exceptions=True,
    )
    for (product_id, stock), outcome in zip(targets, outcomes):
        if isinstance(outcome, NotFoundError):
            logger.warning("Order %s: product %s vanished before its stock update", order.id, product_id)
            result.skipped.append(product_id)
        elif isinstance(outcome, Exception):
            logger.error("Order %s: stock update for %s failed: %s", order.id, product_id, outcome)
            result.failed[product_id] = outcome
        elif isinstance(outcome, BaseException):
            raise outcome
        else:
            result.updated[product_id] = stock
    return result


__all__ = ["ReconciliationResult", "reconcile_delivered_order"]
