from embroidery_store.routers import checkout


def add_to_cart(client, headers, product, option_ids=None):
    option_ids = option_ids or [o["id"] for o in product["options"]]
    res = client.post("/cart", headers=headers, json={"product_id": product["id"], "options": option_ids})
    assert res.status_code == 200, res.text


def fund(client, headers, amount, reference="topup-1"):
    client.post("/wallet/add-funds", headers=headers, json={"amount": amount, "payment_reference": reference})


def test_checkout_empty_cart(client, customer_headers):
    res = client.post("/checkout", headers=customer_headers)
    assert res.status_code == 400
    assert res.json()["error"] == "CART_EMPTY"


def test_checkout_creates_pending_order(client, customer_headers, make_product):
    add_to_cart(client, customer_headers, make_product())
    res = client.post("/checkout", headers=customer_headers, json={"payment_city": "Pune"})
    assert res.status_code == 201
    order = res.json()["data"]
    assert order["order_status"] == "pending"
    assert order["order_number"] == "1"
    assert order["order_total"] == 250.0
    assert {t["code"]: t["value"] for t in order["totals"]} == {"subtotal": 250.0, "total": 250.0}
    assert order["history"][0]["comment"] == "Checkout initiated from cart"
    assert order["payment_first_name"] == "Jane"
    assert order["payment_city"] == "Pune"

    add_to_cart(client, customer_headers, make_product())
    assert client.post("/checkout", headers=customer_headers).json()["data"]["order_number"] == "2"


def test_checkout_rejects_vanished_product(client, db, customer_headers, make_product, super_headers):
    product = make_product()
    add_to_cart(client, customer_headers, product)
    client.delete(f"/admin/products/{product['id']}", headers=super_headers)
    res = client.post("/checkout", headers=customer_headers)
    assert res.status_code == 400
    assert res.json()["error"] == "PRODUCT_UNAVAILABLE"


def test_pay_with_wallet(client, db, customer_headers, make_product):
    product = make_product()
    add_to_cart(client, customer_headers, product)
    fund(client, customer_headers, 300)
    order_id = client.post("/checkout", headers=customer_headers).json()["data"]["id"]

    res = client.post(f"/checkout/{order_id}/pay", headers=customer_headers, json={"payment_method": "wallet"})
    assert res.status_code == 200
    order = res.json()["data"]
    assert order["order_status"] == "paid"
    assert order["payment_method"] == "wallet"
    assert [h["order_status"] for h in order["history"]] == ["pending", "paid"]

    wallet = client.get("/wallet", headers=customer_headers).json()["data"]
    assert wallet["balance"] == 50.0
    assert sorted(t["type"] for t in wallet["transactions"]) == ["CREDIT", "DEBIT"]
    assert client.get("/cart", headers=customer_headers).json()["data"]["item_count"] == 0
    assert db["product"].find_one({"sku": product["sku"]})["sales_count"] == 1

    again = client.post(f"/checkout/{order_id}/pay", headers=customer_headers, json={"payment_method": "wallet"})
    assert again.status_code == 400
    assert again.json()["error"] == "ORDER_NOT_PENDING"


def test_insufficient_balance(client, customer_headers, make_product):
    add_to_cart(client, customer_headers, make_product())
    fund(client, customer_headers, 10)
    order_id = client.post("/checkout", headers=customer_headers).json()["data"]["id"]
    res = client.post(f"/checkout/{order_id}/pay", headers=customer_headers, json={"payment_method": "wallet"})
    assert res.status_code == 400
    assert res.json()["error"] == "INSUFFICIENT_BALANCE"
    assert client.get(f"/checkout/{order_id}", headers=customer_headers).json()["data"]["order_status"] == "pending"


def test_free_order(client, customer_headers, make_product):
    add_to_cart(client, customer_headers, make_product(prices={"DST": 0.0}))
    order_id = client.post("/checkout", headers=customer_headers).json()["data"]["id"]
    res = client.post(f"/checkout/{order_id}/pay", headers=customer_headers, json={"payment_method": "wallet"})
    assert res.status_code == 200
    assert res.json()["data"]["payment_method"] == "free"


def test_free_method_refused_for_paid_order(client, customer_headers, make_product):
    add_to_cart(client, customer_headers, make_product())
    order_id = client.post("/checkout", headers=customer_headers).json()["data"]["id"]
    res = client.post(f"/checkout/{order_id}/pay", headers=customer_headers, json={"payment_method": "free"})
    assert res.status_code == 400
    assert res.json()["error"] == "PAYMENT_REQUIRED"


def test_second_pending_order_for_same_option_cannot_be_paid(client, customer_headers, make_product):
    product = make_product(prices={"DST": 10.0})
    fund(client, customer_headers, 100)
    add_to_cart(client, customer_headers, product)
    first = client.post("/checkout", headers=customer_headers).json()["data"]["id"]
    second = client.post("/checkout", headers=customer_headers).json()["data"]["id"]

    assert client.post(f"/checkout/{first}/pay", headers=customer_headers, json={"payment_method": "wallet"}).status_code == 200
    res = client.post(f"/checkout/{second}/pay", headers=customer_headers, json={"payment_method": "wallet"})
    assert res.status_code == 409
    assert res.json()["duplicates"][0]["product_id"] == product["id"]


def test_other_customers_order_is_forbidden(client, customer_headers, register_customer, make_product):
    add_to_cart(client, customer_headers, make_product())
    order_id = client.post("/checkout", headers=customer_headers).json()["data"]["id"]
    other = register_customer(email="other@example.com")
    assert client.get(f"/checkout/{order_id}", headers=other).status_code == 403
    assert client.get("/checkout/65a000000000000000000000", headers=other).status_code == 404


def test_cancel_pending_only(client, customer_headers, make_product):
    add_to_cart(client, customer_headers, make_product())
    order_id = client.post("/checkout", headers=customer_headers).json()["data"]["id"]
    res = client.post(f"/checkout/{order_id}/cancel", headers=customer_headers)
    assert res.status_code == 200
    assert res.json()["data"]["order_status"] == "cancelled"
    assert client.post(f"/checkout/{order_id}/cancel", headers=customer_headers).status_code == 400


def test_my_orders_and_downloads(client, customer_headers, make_product, buy):
    product = make_product()
    buy(customer_headers, product)

    orders = client.get("/orders", headers=customer_headers).json()
    assert orders["pagination"]["total"] == 1
    assert orders["data"][0]["products"][0]["product_model"] == product["product_model"]

    downloads = client.get("/orders/downloads", headers=customer_headers).json()
    assert downloads["count"] == 2
    assert {d["option_name"] for d in downloads["data"]} == {"DST", "PES"}
    assert all(d["file_path"] for d in downloads["data"])


def test_admin_orders(client, customer_headers, make_product, buy, make_admin):
    buy(customer_headers, make_product())
    headers = make_admin([{"feature": "orders", "read": True, "update": True}])

    listing = client.get("/admin/orders?status=paid", headers=headers).json()
    assert listing["pagination"]["total"] == 1
    order_id = listing["data"][0]["id"]
    assert client.get("/admin/orders?status=pending", headers=headers).json()["pagination"]["total"] == 0

    detail = client.get(f"/admin/orders/{order_id}", headers=headers).json()["data"]
    assert detail["customer"]["email"] == "jane@example.com"

    res = client.patch(f"/admin/orders/{order_id}/status", headers=headers, json={"order_status": "refunded", "comment": "Refund"})
    assert res.status_code == 200
    assert res.json()["data"]["order_status"] == "refunded"
    assert res.json()["data"]["history"][-1]["comment"] == "Refund"


def test_admin_orders_need_permission(client, make_admin):
    headers = make_admin([{"feature": "orders", "read": True}])
    assert client.get("/admin/orders", headers=headers).status_code == 200
    res = client.patch("/admin/orders/65a000000000000000000000/status", headers=headers, json={"order_status": "paid"})
    assert res.status_code == 403


def test_payment_claims_the_order_once(client, db, customer_headers, make_product, monkeypatch):
    add_to_cart(client, customer_headers, make_product(prices={"DST": 40.0}))
    fund(client, customer_headers, 100)
    order_id = client.post("/checkout", headers=customer_headers).json()["data"]["id"]
    stale = checkout.get_own_order(db, order_id, db["order"].find_one({})["customer_id"])
    # another request has already taken the order
    db["order"].update_one({"_id": stale["_id"]}, {"$set": {"order_status": "processing"}})
    monkeypatch.setattr(checkout, "get_own_order", lambda *args: stale)

    res = client.post(f"/checkout/{order_id}/pay", headers=customer_headers, json={"payment_method": "wallet"})
    assert res.status_code == 409
    assert res.json()["error"] == "PAYMENT_IN_PROGRESS"
    assert client.get("/wallet", headers=customer_headers).json()["data"]["balance"] == 100
    assert db["wallet_transaction"].count_documents({"type": "DEBIT"}) == 0


def test_failed_wallet_debit_releases_the_order(client, customer_headers, make_product):
    add_to_cart(client, customer_headers, make_product(prices={"DST": 40.0}))
    fund(client, customer_headers, 10)
    order_id = client.post("/checkout", headers=customer_headers).json()["data"]["id"]
    pay = {"payment_method": "wallet"}
    assert client.post(f"/checkout/{order_id}/pay", headers=customer_headers, json=pay).status_code == 400

    fund(client, customer_headers, 30, reference="topup-2")
    res = client.post(f"/checkout/{order_id}/pay", headers=customer_headers, json=pay)
    assert res.status_code == 200
    assert res.json()["data"]["order_status"] == "paid"
    assert client.get("/wallet", headers=customer_headers).json()["data"]["balance"] == 0


def test_cancel_needs_a_pending_order(client, db, customer_headers, make_product):
    add_to_cart(client, customer_headers, make_product())
    order_id = client.post("/checkout", headers=customer_headers).json()["data"]["id"]
    db["order"].update_one({}, {"$set": {"order_status": "processing"}})
    res = client.post(f"/checkout/{order_id}/cancel", headers=customer_headers)
    assert res.status_code == 400
    assert res.json()["error"] == "ORDER_NOT_PENDING"
    assert db["order"].find_one({})["order_status"] == "processing"
