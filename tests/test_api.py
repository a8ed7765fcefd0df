from __future__ import annotations

from httpx import AsyncClient

ADMIN_EMAIL = "admin@laiterie.com"


async def _login(client: AsyncClient, email: str = ADMIN_EMAIL, store: str = "HQ") -> dict:
    response = await client.post("/session", json={"email": email, "storeName": store})
    assert response.status_code == 200
    return response.json()


async def test_health(client: AsyncClient) -> None:
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok", "environment": "test"}


async def test_session_lifecycle(client: AsyncClient) -> None:
    assert (await client.get("/session")).status_code == 401

    payload = await _login(client)
    assert payload == {"email": ADMIN_EMAIL, "storeName": "HQ", "isAdmin": True}
    assert (await client.get("/session")).json()["isAdmin"] is True

    assert (await client.delete("/session")).status_code == 204
    assert (await client.get("/session")).status_code == 401


async def test_products_listing_uses_camel_case(client: AsyncClient) -> None:
    response = await client.get("/products")
    assert response.status_code == 200
    products = response.json()
    assert len(products) == 6
    assert products[0]["imageUrl"].startswith("https://")
    assert products[0]["quantityType"] == "kg"
    assert products[0]["isVisible"] is True


async def test_product_management_requires_admin(client: AsyncClient) -> None:
    payload = {"name": "Kefir", "imageUrl": "https://example.com/kefir.png", "price": 2.4}
    assert (await client.post("/products", json=payload)).status_code == 401

    await _login(client, "owner@shop.com", "Corner Shop")
    assert (await client.post("/products", json=payload)).status_code == 403
    assert (await client.delete("/products/prod_1")).status_code == 403


async def test_product_crud(client: AsyncClient) -> None:
    await _login(client)

    created = await client.post(
        "/products",
        json={"name": "Kefir", "imageUrl": "https://example.com/kefir.png", "price": 2.4, "stock": 12},
    )
    assert created.status_code == 201
    product = created.json()
    assert product["isVisible"] is True
    product_id = product["id"]

    patched = await client.patch(f"/products/{product_id}", json={"price": 2.6})
    assert patched.status_code == 200
    assert patched.json()["price"] == 2.6
    assert patched.json()["stock"] == 12

    hidden = await client.post(f"/products/{product_id}/visibility")
    assert hidden.json()["isVisible"] is False
    visible_ids = {p["id"] for p in (await client.get("/products", params={"visible_only": True})).json()}
    assert product_id not in visible_ids

    assert (await client.delete(f"/products/{product_id}")).status_code == 204
    assert (await client.get(f"/products/{product_id}")).status_code == 404
    assert (await client.delete(f"/products/{product_id}")).status_code == 204
    assert (await client.patch(f"/products/{product_id}", json={"price": 1})).status_code == 404


async def test_order_flow_with_delivery(client: AsyncClient) -> None:
    await _login(client, "a@b.com", "Acme Dairy")
    submitted = await client.post("/orders", json={"items": [{"productId": "prod_1", "quantity": 2}]})
    assert submitted.status_code == 201
    order = submitted.json()
    assert order["status"] == "Pending"
    assert order["totalAmount"] == 51.98
    assert order["storeName"] == "Acme Dairy"

    assert (await client.put(f"/orders/{order['id']}/status", json={"status": "Delivered"})).status_code == 403
    assert [o["id"] for o in (await client.get("/orders")).json()] == [order["id"]]

    await _login(client)
    notifications = (await client.get("/dashboard/notifications")).json()
    assert notifications["hasNewPendingOrders"] is True

    delivered = await client.put(f"/orders/{order['id']}/status", json={"status": "Delivered"})
    assert delivered.status_code == 200
    body = delivered.json()
    assert body["order"]["status"] == "Delivered"
    assert body["reconciliation"]["updated"] == {"prod_1": 98}
    assert (await client.get("/products/prod_1")).json()["stock"] == 98

    repeated = await client.put(f"/orders/{order['id']}/status", json={"status": "Delivered"})
    assert repeated.json()["reconciliation"] is None
    assert (await client.get("/products/prod_1")).json()["stock"] == 98


async def test_empty_order_is_rejected(client: AsyncClient) -> None:
    await _login(client, "a@b.com", "Acme Dairy")

    assert (await client.post("/orders", json={"items": []})).status_code == 422


async def test_order_prices_come_from_catalog(client: AsyncClient) -> None:
    await _login(client, "a@b.com", "Acme Dairy")
    coffee = (await client.get("/products/prod_1")).json()
    coffee["price"] = 0.01

    response = await client.post(
        "/orders",
        json={"items": [{"productId": "prod_1", "product": coffee, "quantity": 2}]},
    )

    assert response.status_code == 201
    order = response.json()
    assert order["totalAmount"] == 51.98
    assert order["items"][0]["product"]["price"] == 25.99


async def test_order_rejects_unknown_hidden_and_fractional_lines(client: AsyncClient) -> None:
    await _login(client)
    await client.post("/products/prod_3/visibility")
    await _login(client, "a@b.com", "Acme Dairy")

    unknown = await client.post("/orders", json={"items": [{"productId": "does_not_exist", "quantity": 1}]})
    assert unknown.status_code == 422
    hidden = await client.post("/orders", json={"items": [{"productId": "prod_3", "quantity": 1}]})
    assert hidden.status_code == 422
    fractional = await client.post("/orders", json={"items": [{"productId": "prod_2", "quantity": 1.5}]})
    assert fractional.status_code == 422
    assert (await client.get("/orders")).json() == []


async def test_admin_cannot_submit_orders(client: AsyncClient) -> None:
    await _login(client)

    response = await client.post("/orders", json={"items": [{"productId": "prod_1", "quantity": 1}]})

    assert response.status_code == 403
    assert (await client.get("/orders")).json() == []


async def test_store_exports_only_its_own_orders(client: AsyncClient) -> None:
    await _login(client, "a@b.com", "Acme Dairy")
    theirs = (await client.post("/orders", json={"items": [{"productId": "prod_1", "quantity": 1}]})).json()
    await _login(client, "c@d.com", "Corner Shop")
    mine = (await client.post("/orders", json={"items": [{"productId": "prod_2", "quantity": 2}]})).json()

    response = await client.get("/orders/export", params={"format": "csv"})

    assert response.status_code == 200
    assert "orders_export_" in response.headers["content-disposition"]
    assert mine["id"] in response.text
    assert theirs["id"] not in response.text


async def test_product_search(client: AsyncClient) -> None:
    names = [p["name"] for p in (await client.get("/products", params={"q": "COFFEE"})).json()]
    assert names == ["Premium Coffee Beans"]

    by_description = (await client.get("/products", params={"q": "fair trade"})).json()
    assert [p["id"] for p in by_description] == ["prod_3"]
    assert len((await client.get("/products", params={"q": ""})).json()) == 6


async def test_unknown_order_status_change(client: AsyncClient) -> None:
    await _login(client)

    response = await client.put("/orders/order_missing/status", json={"status": "Shipped"})
    assert response.status_code == 404


async def test_dashboard_viewed_resets_flag(client: AsyncClient) -> None:
    await _login(client, "a@b.com", "Acme Dairy")
    await client.post("/orders", json={"items": [{"productId": "prod_2", "quantity": 1}]})
    await client.post("/orders", json={"items": [{"productId": "prod_2", "quantity": 3}]})

    await _login(client)
    assert (await client.get("/dashboard/notifications")).json()["hasNewPendingOrders"] is True
    viewed = await client.post("/dashboard/viewed")
    assert viewed.json()["hasNewPendingOrders"] is False
    assert viewed.json()["lastViewedAt"]
    assert (await client.get("/dashboard/notifications")).json()["hasNewPendingOrders"] is False


async def test_export_products(client: AsyncClient) -> None:
    await _login(client)

    csv_response = await client.get("/products/export", params={"format": "csv"})
    assert csv_response.status_code == 200
    assert csv_response.headers["content-type"].startswith("text/csv")
    assert "products_export_" in csv_response.headers["content-disposition"]
    assert csv_response.text.splitlines()[0].startswith("id,name,description,price")

    pdf_response = await client.get("/products/export", params={"format": "pdf", "rtl": True})
    assert pdf_response.content.startswith(b"%PDF")

    xls_response = await client.get("/orders/export", params={"format": "xls"})
    assert xls_response.headers["content-type"] == "application/vnd.ms-excel"


async def test_import_products(client: AsyncClient) -> None:
    await _login(client)
    content = (
        "id,name,price,stock,isVisible\n"
        "prod_2,,16.5,,\n"
        ",Milk,3.5,10,\n"
    ).encode()

    response = await client.post(
        "/products/import", files={"file": ("products.csv", content, "text/csv")}
    )

    assert response.status_code == 200
    assert response.json() == {"imported": 2, "totalProducts": 7}
    tea = (await client.get("/products/prod_2")).json()
    assert tea["price"] == 16.5
    assert tea["name"] == "Artisan Tea Selection"


async def test_import_rejects_unreadable_file(client: AsyncClient) -> None:
    await _login(client)

    response = await client.post(
        "/products/import", files={"file": ("products.xls", b"garbage", "application/vnd.ms-excel")}
    )

    assert response.status_code == 400


async def test_persistence_failure_maps_to_503(client: AsyncClient, state) -> None:
    await _login(client)
    state.store.fail("insert", "products")

    response = await client.post(
        "/products", json={"name": "Kefir", "imageUrl": "https://example.com/kefir.png"}
    )

    assert response.status_code == 503
    assert "insert on products failed" in response.json()["detail"]
