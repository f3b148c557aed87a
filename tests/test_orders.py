import pytest

ADDRESS = {
    "full_name": "Jamie Doe",
    "address": "12 Elm Street",
    "city": "Springfield",
    "state": "IL",
    "zip_code": "62701",
    "country": "United States",
}


def place(client, method="stripe"):
    return client.post("/api/orders", json={"payment_method": method, "shipping_address": ADDRESS})


def test_order_under_fifty_pays_shipping(client, user, make_product):
    product = make_product(price="20.00")
    client.post("/api/cart", json={"product_id": product["id"], "quantity": 2})
    response = place(client)
    assert response.status_code == 200
    order = response.json()["order"]
    assert order["subtotal"] == "40.00"
    assert order["shipping"] == "5.99"
    assert order["tax"] == "3.20"
    assert order["total_amount"] == "49.19"


def test_order_at_sixty_ships_free(client, user, make_product):
    product = make_product(price="30.00")
    client.post("/api/cart", json={"product_id": product["id"], "quantity": 2})
    order = place(client).json()["order"]
    assert order["shipping"] == "0.00"
    assert order["tax"] == "4.80"
    assert order["total_amount"] == "64.80"


def test_order_is_pending_and_records_payment_and_address(client, user, make_product):
    product = make_product()
    client.post("/api/cart", json={"product_id": product["id"]})
    body = place(client, method="paypal").json()
    order = body["order"]
    assert body["order_id"] == order["id"]
    assert order["status"] == "pending"
    assert order["payment_status"] == "pending"
    assert order["payment_method"] == "paypal"
    assert order["shipping_address"] == ADDRESS
    assert order["user_id"] == user["id"]


def test_checkout_clears_cart(client, user, make_product):
    product = make_product()
    client.post("/api/cart", json={"product_id": product["id"], "quantity": 3})
    place(client)
    assert client.get("/api/cart").json() == []


def test_line_items_snapshot_survives_price_change(client, user, admin, login_as, make_product):
    product = make_product(name="Swaddle", price="12.00")
    login_as(user)
    client.post("/api/cart", json={"product_id": product["id"], "quantity": 2})
    order_id = place(client).json()["order_id"]

    login_as(admin)
    client.put(f"/api/admin/products/{product['id']}", json={"price": "99.00", "name": "Renamed"})

    login_as(user)
    items = client.get(f"/api/orders/{order_id}").json()["items"]
    assert items == [{
        "product_id": product["id"],
        "product_name": "Swaddle",
        "product_price": "12.00",
        "quantity": 2,
        "subtotal": "24.00",
    }]


def test_empty_cart_is_rejected(client, user):
    response = place(client)
    assert response.status_code == 400
    assert response.json() == {"message": "Cart is empty"}


def test_unknown_payment_method_is_rejected(client, user, make_product):
    product = make_product()
    client.post("/api/cart", json={"product_id": product["id"]})
    assert place(client, method="cash").status_code == 400


def test_list_own_orders_newest_first(client, user, login_as, make_user, make_product):
    product = make_product()
    for _ in range(2):
        client.post("/api/cart", json={"product_id": product["id"]})
        place(client)
    orders = client.get("/api/orders").json()
    assert len(orders) == 2
    assert orders[0]["created_at"] >= orders[1]["created_at"]

    login_as(make_user(email="other@example.com"))
    assert client.get("/api/orders").json() == []


def test_other_users_order_is_forbidden(client, user, login_as, make_user, make_product):
    product = make_product()
    client.post("/api/cart", json={"product_id": product["id"]})
    order_id = place(client).json()["order_id"]

    login_as(make_user(email="other@example.com"))
    response = client.get(f"/api/orders/{order_id}")
    assert response.status_code == 403


def test_admin_can_view_any_order(client, user, admin, login_as, make_product):
    product = make_product()
    login_as(user)
    client.post("/api/cart", json={"product_id": product["id"]})
    order_id = place(client).json()["order_id"]

    login_as(admin)
    assert client.get(f"/api/orders/{order_id}").status_code == 200


def test_missing_order_is_404(client, user):
    assert client.get("/api/orders/5f0000000000000000000000").status_code == 404


@pytest.mark.parametrize("method,path", [("get", "/api/orders"), ("post", "/api/orders"), ("get", "/api/orders/abc")])
def test_orders_require_authentication(client, method, path):
    assert client.request(method, path).status_code == 401


def test_largest_order_is_priced_not_rejected(client, user, make_product):
    product = make_product(price="99999999.99")
    client.post("/api/cart", json={"product_id": product["id"], "quantity": 999})
    response = place(client)
    assert response.status_code == 200
    order = response.json()["order"]
    assert order["subtotal"] == "99899999990.01"
    assert order["shipping"] == "0.00"
    assert order["items"][0]["subtotal"] == "99899999990.01"
