def option_ids(product, *names):
    by_name = {o["file_path"].rsplit(".", 1)[1].upper(): o["id"] for o in product["options"]}
    return [by_name[n] for n in names]


def test_empty_cart_is_created(client, customer_headers):
    res = client.get("/cart", headers=customer_headers)
    assert res.status_code == 200
    assert res.json()["data"]["items"] == []
    assert res.json()["data"]["item_count"] == 0


def test_add_and_merge_options(client, customer_headers, make_product):
    product = make_product()
    dst, pes = option_ids(product, "DST", "PES")

    res = client.post("/cart", headers=customer_headers, json={"product_id": product["id"], "options": [dst, dst]})
    assert res.status_code == 200
    cart = res.json()["data"]
    assert cart["item_count"] == 1
    assert cart["subtotal"] == 100.0
    assert len(cart["items"][0]["options"]) == 1

    res = client.post("/cart", headers=customer_headers, json={"product_id": product["id"], "options": [pes, dst]})
    cart = res.json()["data"]
    assert res.json()["message"] == "Cart item updated"
    assert cart["item_count"] == 1
    assert [o["name"] for o in cart["items"][0]["options"]] == ["DST", "PES"]
    assert cart["subtotal"] == 250.0
    assert cart["items"][0]["product"]["price"] == 100.0


def test_add_validation(client, customer_headers, make_product):
    product = make_product()
    assert client.post("/cart", headers=customer_headers, json={"product_id": "bad", "options": ["x"]}).status_code == 400
    res = client.post("/cart", headers=customer_headers, json={"product_id": product["id"], "options": []})
    assert res.status_code == 400
    assert res.json()["error"] == "OPTIONS_REQUIRED"
    res = client.post("/cart", headers=customer_headers, json={"product_id": "65a000000000000000000000", "options": ["x"]})
    assert res.status_code == 404
    res = client.post("/cart", headers=customer_headers, json={"product_id": product["id"], "options": ["not-an-option"]})
    assert res.status_code == 400
    assert res.json()["error"] == "INVALID_OPTION"


def test_inactive_product_cannot_be_added(client, customer_headers, make_product):
    product = make_product(status=False)
    res = client.post("/cart", headers=customer_headers, json={"product_id": product["id"], "options": option_ids(product, "DST")})
    assert res.status_code == 400
    assert res.json()["error"] == "PRODUCT_INACTIVE"


def test_purchased_option_rejected(client, customer_headers, make_product, buy):
    product = make_product()
    dst, pes = option_ids(product, "DST", "PES")
    buy(customer_headers, product, [dst])

    res = client.post("/cart", headers=customer_headers, json={"product_id": product["id"], "options": [dst]})
    assert res.status_code == 409
    assert res.json()["error"] == "ALREADY_PURCHASED"
    assert client.post("/cart", headers=customer_headers, json={"product_id": product["id"], "options": [pes]}).status_code == 200


def test_update_only_checks_requested_options(client, customer_headers, make_product, buy):
    product = make_product(prices={"DST": 100.0, "PES": 150.0, "JEF": 80.0})
    dst, pes, jef = option_ids(product, "DST", "PES", "JEF")
    buy(customer_headers, product, [dst])
    client.post("/cart", headers=customer_headers, json={"product_id": product["id"], "options": [pes]})

    res = client.put(f"/cart/{product['id']}", headers=customer_headers, json={"options": [jef]})
    assert res.status_code == 200
    assert res.json()["data"]["subtotal"] == 80.0

    res = client.put(f"/cart/{product['id']}", headers=customer_headers, json={"options": [jef, dst]})
    assert res.status_code == 409


def test_update_missing_item(client, customer_headers, make_product):
    product = make_product()
    res = client.put(f"/cart/{product['id']}", headers=customer_headers, json={"options": option_ids(product, "DST")})
    assert res.status_code == 404


def test_remove_and_clear(client, customer_headers, make_product):
    first, second = make_product(), make_product()
    for product in (first, second):
        client.post("/cart", headers=customer_headers, json={"product_id": product["id"], "options": option_ids(product, "DST")})

    res = client.delete(f"/cart/{first['id']}", headers=customer_headers)
    assert res.status_code == 200
    assert res.json()["data"]["item_count"] == 1
    assert client.delete(f"/cart/{first['id']}", headers=customer_headers).status_code == 404

    assert client.delete("/cart", headers=customer_headers).json()["message"] == "Cart cleared"
    assert client.delete("/cart", headers=customer_headers).json()["message"] == "Cart is already empty"


def test_cart_requires_customer(client, super_headers):
    assert client.get("/cart").status_code == 401
    assert client.get("/cart", headers=super_headers).status_code == 401
