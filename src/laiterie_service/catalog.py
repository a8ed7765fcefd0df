"""Product catalog backed by the ``products`` table and mirrored locally."""
from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any

from .backend import Row, RowStore
from .errors import NotFoundError, PersistenceError
from .identifiers import new_identifier
from .local_store import PRODUCTS_CACHE_KEY, LocalStore
from .schemas import Product, ProductCreate, ProductPatch, QuantityType

logger = logging.getLogger(__name__)

TABLE = "products"
UNNAMED_PRODUCT = "Unnamed Product"

DEFAULT_PRODUCTS: tuple[Product, ...] = (
    Product(
        id="prod_1",
        name="Premium Coffee Beans",
        description="1kg bag of whole arabica beans.",
        price=25.99,
        image_url="https://picsum.photos/seed/coffeebeans/200/200",
        barcode="1234567890123",
        quantity_type=QuantityType.KG,
        stock=100,
    ),
    Product(
        id="prod_2",
        name="Artisan Tea Selection",
        description="Box of 20 assorted tea bags.",
        price=15.50,
        image_url="https://picsum.photos/seed/teabox/200/200",
        barcode="1234567890124",
        stock=50,
    ),
    Product(
        id="prod_3",
        name="Organic Chocolate Bar",
        description="70% cocoa, fair trade.",
        price=5.00,
        image_url="https://picsum.photos/seed/chocolatebar/200/200",
        barcode="1234567890125",
        stock=200,
    ),
    Product(
        id="prod_4",
        name="Fresh Croissants (Dozen)",
        description="Baked fresh daily.",
        price=12.00,
        image_url="https://picsum.photos/seed/croissants/200/200",
        barcode="1234567890126",
        stock=30,
    ),
    Product(
        id="prod_5",
        name="Gourmet Cheese Platter",
        description="Selection of three fine cheeses.",
        price=30.00,
        image_url="https://picsum.photos/seed/cheeseplatter/200/200",
        barcode="1234567890127",
        stock=20,
    ),
    Product(
        id="prod_6",
        name="Sparkling Water (6-pack)",
        description="Natural mineral water.",
        price=8.75,
        image_url="https://picsum.photos/seed/sparklingwater/200/200",
        barcode="1234567890128",
        stock=150,
    ),
)


def _to_row(product: Product) -> Row:
    return product.model_dump(mode="json")


def _from_row(row: Row) -> Product:
    return Product.model_validate(row)


class ProductCatalog:
    """Authoritative product set with an in-memory copy replaced after each write."""

    def __init__(
        self,
        store: RowStore,
        local: LocalStore,
        *,
        placeholder_image_url: str,
        offline_fallback: bool = True,
    ) -> None:
        self._store = store
        self._local = local
        self._placeholder_image_url = placeholder_image_url
        self._offline_fallback = offline_fallback
        self._products: dict[str, Product] = {}

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------
    async def load(self, *, seed: bool = False) -> list[Product]:
        """Replace the in-memory catalog with the backing store contents.

        With ``seed`` set (startup only) an empty ``products`` table receives
        the default catalog first.
        """

        try:
            rows = await self._store.select_all(TABLE)
            if not rows and seed:
                await self._store.insert_many(TABLE, [_to_row(p) for p in DEFAULT_PRODUCTS])
                logger.info("Seeded empty catalog with %d default products", len(DEFAULT_PRODUCTS))
                rows = await self._store.select_all(TABLE)
        except PersistenceError:
            if not self._offline_fallback:
                raise
            cached = self._local.get(PRODUCTS_CACHE_KEY) or []
            logger.warning("Backing store unavailable, serving %d cached products", len(cached))
            self._products = {p.id: p for p in (Product.model_validate(r) for r in cached)}
            return self.list_products()
        self._products = {p.id: p for p in (_from_row(row) for row in rows)}
        self._mirror()
        return self.list_products()

    async def refresh(self) -> list[Product]:
        return await self.load(seed=False)

    def _mirror(self) -> None:
        self._local.set(
            PRODUCTS_CACHE_KEY, [p.model_dump(mode="json") for p in self._products.values()]
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    def list_products(
        self, *, visible_only: bool = False, search: str | None = None
    ) -> list[Product]:
        """Return the catalog, optionally hiding invisible products.

        ``search`` keeps products whose name or description contains it,
        ignoring case.
        """

        products = list(self._products.values())
        if visible_only:
            products = [p for p in products if p.is_visible]
        needle = (search or "").strip().lower()
        if needle:
            products = [
                p
                for p in products
                if needle in p.name.lower() or needle in (p.description or "").lower()
            ]
        return products

    def get_product(self, product_id: str) -> Product | None:
        return self._products.get(product_id)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------
    async def add_product(self, data: ProductCreate) -> Product:
        product = Product(id=new_identifier("prod"), **data.model_dump())
        stored = _from_row(await self._store.insert(TABLE, _to_row(product)))
        self._products[stored.id] = stored
        self._mirror()
        logger.info("Added product %s (%s)", stored.id, stored.name)
        return stored

    async def update_product(self, product_id: str, patch: ProductPatch) -> Product:
        """Merge the set fields of ``patch`` onto the product.

        Raises :class:`NotFoundError` when no such product exists.
        """

        row = await self._store.update_by_id(TABLE, product_id, patch.changes())
        if row is None:
            self._products.pop(product_id, None)
            raise NotFoundError("Product", product_id)
        stored = _from_row(row)
        self._products[product_id] = stored
        self._mirror()
        return stored

    async def set_stock(self, product_id: str, stock: float) -> Product:
        return await self.update_product(product_id, ProductPatch(stock=stock))

    async def toggle_visibility(self, product_id: str) -> Product:
        current = self._products.get(product_id)
        if current is None:
            raise NotFoundError("Product", product_id)
        return await self.update_product(
            product_id, ProductPatch(is_visible=not current.is_visible)
        )

    async def delete_product(self, product_id: str) -> None:
        """Remove the product; deleting an unknown id is a no-op."""

        await self._store.delete_by_id(TABLE, product_id)
        if self._products.pop(product_id, None) is not None:
            self._mirror()
            logger.info("Deleted product %s", product_id)

    async def bulk_merge_products(self, patches: Sequence[ProductPatch]) -> list[Product]:
        """Upsert ``patches`` keyed by id, then reload the whole catalog.

        A patch whose id matches an existing product is merged onto it; any
        other patch becomes a new product with defaults for unset fields.
        Later patches for the same id win.
        """

        merged: dict[str, Row] = {}
        for patch in patches:
            changes = patch.changes()
            if patch.id and patch.id in merged:
                merged[patch.id].update(changes)
            elif patch.id and patch.id in self._products:
                merged[patch.id] = {**_to_row(self._products[patch.id]), **changes}
            else:
                product_id = patch.id or new_identifier("prod")
                merged[product_id] = self._with_defaults(product_id, changes)
        try:
            await self._store.upsert(TABLE, list(merged.values()))
        finally:
            # Read-after-write keeps local state equal to what actually persisted.
            await self.refresh()
        logger.info("Merged %d product rows into the catalog", len(merged))
        return self.list_products()

    def _with_defaults(self, product_id: str, changes: dict[str, Any]) -> Row:
        row: Row = {
            "id": product_id,
            "name": UNNAMED_PRODUCT,
            "description": None,
            "price": 0,
            "image_url": self._placeholder_image_url,
            "barcode": None,
            "quantity_type": QuantityType.UNIT.value,
            "stock": 0,
            "is_visible": True,
        }
        row.update({key: value for key, value in changes.items() if value is not None})
        if not str(row["name"]).strip():
            row["name"] = UNNAMED_PRODUCT
        if not str(row["image_url"]).strip():
            row["image_url"] = self._placeholder_image_url
        return row


__all__ = ["ProductCatalog", "DEFAULT_PRODUCTS", "UNNAMED_PRODUCT"]
