from __future__ import annotations

import pytest

from laiterie_service.catalog import DEFAULT_PRODUCTS, UNNAMED_PRODUCT, ProductCatalog
from laiterie_service.errors import NotFoundError, PersistenceError
from laiterie_service.local_store import PRODUCTS_CACHE_KEY
from laiterie_service.schemas import ProductCreate, ProductPatch, QuantityType


def _milk(**overrides) -> ProductCreate:
    data = {
        "name": "Whole Milk",
        "description": "1L bottle",
        "price": 1.25,
        "image_url": "https://example.com/milk.png",
        "barcode": "400000000001",
        "stock": 40,
    }
    data.update(overrides)
    return ProductCreate(**data)


async def test_empty_catalog_is_seeded_on_startup(state) -> None:
    products = state.catalog.list_products()
    assert [p.id for p in products] == [p.id for p in DEFAULT_PRODUCTS]
    assert len(products) == 6
    assert all(p.is_visible for p in products)
    assert len(await state.store.select_all("products")) == 6


async def test_refresh_never_reseeds(state) -> None:
    for product in list(state.catalog.list_products()):
        await state.catalog.delete_product(product.id)

    assert await state.catalog.refresh() == []
    assert state.catalog.list_products() == []


async def test_add_product_defaults_visibility(state) -> None:
    created = await state.catalog.add_product(_milk())

    assert created.id.startswith("prod_")
    fetched = state.catalog.get_product(created.id)
    assert fetched == created
    assert fetched.is_visible is True
    assert fetched.name == "Whole Milk"
    assert fetched.quantity_type == QuantityType.UNIT
    stored = await state.store.select_by_id("products", created.id)
    assert stored["price"] == 1.25


async def test_add_product_failure_leaves_catalog_unchanged(state) -> None:
    before = state.catalog.list_products()
    state.store.fail("insert", "products")

    with pytest.raises(PersistenceError):
        await state.catalog.add_product(_milk())

    assert state.catalog.list_products() == before


async def test_update_product_merges_fields(state) -> None:
    updated = await state.catalog.update_product("prod_2", ProductPatch(price=16.0, stock=45))

    assert updated.price == 16.0
    assert updated.stock == 45
    assert updated.name == "Artisan Tea Selection"
    assert updated.description == "Box of 20 assorted tea bags."
    assert state.catalog.get_product("prod_2") == updated


async def test_update_unknown_product_raises(state) -> None:
    with pytest.raises(NotFoundError):
        await state.catalog.update_product("prod_missing", ProductPatch(price=1))


async def test_delete_missing_product_is_noop(state) -> None:
    before = state.catalog.list_products()

    await state.catalog.delete_product("prod_missing")

    assert state.catalog.list_products() == before


async def test_delete_product(state) -> None:
    await state.catalog.delete_product("prod_4")

    assert state.catalog.get_product("prod_4") is None
    assert await state.store.select_by_id("products", "prod_4") is None


async def test_toggle_visibility(state) -> None:
    hidden = await state.catalog.toggle_visibility("prod_3")
    assert hidden.is_visible is False
    assert "prod_3" not in {p.id for p in state.catalog.list_products(visible_only=True)}
    assert "prod_3" in {p.id for p in state.catalog.list_products()}

    shown = await state.catalog.toggle_visibility("prod_3")
    assert shown.is_visible is True


async def test_bulk_merge_updates_and_inserts(state) -> None:
    await state.catalog.bulk_merge_products(
        [
            ProductPatch(id="prod_1", price=27.5),
            ProductPatch(name="Goat Cheese", price=9.5),
            ProductPatch(id="ext_7"),
        ]
    )

    coffee = state.catalog.get_product("prod_1")
    assert coffee.price == 27.5
    assert coffee.name == "Premium Coffee Beans"
    assert coffee.quantity_type == QuantityType.KG

    goat = next(p for p in state.catalog.list_products() if p.name == "Goat Cheese")
    assert goat.id.startswith("prod_")
    assert goat.stock == 0
    assert goat.is_visible is True
    assert goat.quantity_type == QuantityType.UNIT

    external = state.catalog.get_product("ext_7")
    assert external.name == UNNAMED_PRODUCT
    assert external.price == 0
    assert external.image_url == state.settings.placeholder_image_url
    assert len(state.catalog.list_products()) == 8


async def test_bulk_merge_later_rows_win(state) -> None:
    await state.catalog.bulk_merge_products(
        [
            ProductPatch(id="prod_5", stock=5, price=31),
            ProductPatch(id="prod_5", stock=7),
        ]
    )

    cheese = state.catalog.get_product("prod_5")
    assert cheese.stock == 7
    assert cheese.price == 31


async def test_bulk_merge_is_idempotent(state) -> None:
    rows = [
        ProductPatch(id="prod_2", stock=12, is_visible=False),
        ProductPatch(id="ext_1", name="Butter", price=3.2, stock=8),
    ]

    once = await state.catalog.bulk_merge_products(rows)
    twice = await state.catalog.bulk_merge_products(rows)

    assert once == twice


async def test_bulk_merge_reloads_after_failure(state) -> None:
    state.store.fail("upsert", "products")

    with pytest.raises(PersistenceError):
        await state.catalog.bulk_merge_products([ProductPatch(id="prod_1", price=1)])

    assert state.catalog.get_product("prod_1").price == 25.99


async def test_load_falls_back_to_local_cache(state) -> None:
    assert len(state.local.get(PRODUCTS_CACHE_KEY)) == 6
    state.store.fail("select", "products")
    catalog = ProductCatalog(
        state.store,
        state.local,
        placeholder_image_url="https://example.com/placeholder.png",
    )

    products = await catalog.load(seed=True)

    assert [p.id for p in products] == [p.id for p in DEFAULT_PRODUCTS]


async def test_load_without_fallback_propagates(state) -> None:
    state.store.fail("select", "products")
    catalog = ProductCatalog(
        state.store,
        state.local,
        placeholder_image_url="https://example.com/placeholder.png",
        offline_fallback=False,
    )

    with pytest.raises(PersistenceError):
        await catalog.load()


async def test_search_matches_name_or_description(state) -> None:
    assert [p.id for p in state.catalog.list_products(search="cheese")] == ["prod_5"]
    assert [p.id for p in state.catalog.list_products(search="ARABICA")] == ["prod_1"]
    assert len(state.catalog.list_products(search="  ")) == 6

    await state.catalog.toggle_visibility("prod_5")
    assert state.catalog.list_products(visible_only=True, search="cheese") == []
