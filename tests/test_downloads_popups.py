import pytest

from embroidery_store import config


@pytest.fixture
def uploads(tmp_path, monkeypatch):
    root = tmp_path / "uploads"
    root.mkdir()
    monkeypatch.setattr(config, "UPLOAD_DIR", str(root))
    return root


def put_file(root, relative, content=b"design-bytes"):
    target = root / relative
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_bytes(content)


def download_url(product, option):
    return f"/downloads/{product['id']}/{option['option_id']}"


def test_download_purchased_file(client, db, customer_headers, make_product, buy, uploads, super_headers):
    product = make_product()
    dst, pes = product["options"]
    put_file(uploads, dst["file_path"], b"DST-DATA")
    buy(customer_headers, product, [dst["id"]])

    res = client.get(download_url(product, dst), headers=customer_headers)
    assert res.status_code == 200
    assert res.content == b"DST-DATA"
    assert "attachment" in res.headers["content-disposition"]
    client.get(download_url(product, dst), headers=customer_headers)

    admin_view = client.get(f"/admin/products/{product['id']}", headers=super_headers).json()
    counts = {o["option_id"]: o["download_count"] for o in admin_view["options"]}
    assert counts == {dst["option_id"]: 2, pes["option_id"]: 0}

    res = client.get(download_url(product, pes), headers=customer_headers)
    assert res.status_code == 403
    assert res.json()["error"] == "NOT_PURCHASED"


def test_download_requires_purchase_and_valid_ids(client, customer_headers, register_customer, make_product, buy, uploads):
    product = make_product(prices={"DST": 10.0})
    option = product["options"][0]
    put_file(uploads, option["file_path"])
    other = register_customer(email="other@example.com")
    buy(other, product)

    assert client.get(download_url(product, option)).status_code == 401
    res = client.get(download_url(product, option), headers=customer_headers)
    assert res.status_code == 403
    assert res.json()["message"] == "You must purchase this product to download files"
    res = client.get(f"/downloads/nope/{option['option_id']}", headers=customer_headers)
    assert res.status_code == 400
    assert res.json()["error"] == "INVALID_ID"


def test_download_of_missing_file(client, db, customer_headers, make_product, buy, uploads):
    product = make_product(prices={"DST": 10.0})
    option = product["options"][0]
    buy(customer_headers, product)

    res = client.get(download_url(product, option), headers=customer_headers)
    assert res.status_code == 404
    assert res.json()["error"] == "FILE_NOT_FOUND"
    assert db["product"].find_one({"sku": product["sku"]})["options"][0]["download_count"] == 0


def test_download_stays_inside_upload_dir(client, db, customer_headers, make_product, buy, uploads):
    (uploads.parent / "secret.txt").write_bytes(b"keep out")
    product = make_product(prices={"DST": 10.0})
    option = product["options"][0]
    buy(customer_headers, product)

    for path in ("../secret.txt", str(uploads.parent / "secret.txt")):
        db["product"].update_one({"sku": product["sku"]}, {"$set": {"options.0.file_path": path}})
        res = client.get(download_url(product, option), headers=customer_headers)
        assert res.status_code == 404
        assert res.json()["error"] == "FILE_NOT_FOUND"


def new_popup(client, headers, **fields):
    body = {"title": "Festive sale", "content": "20% off all designs"}
    body.update(fields)
    res = client.post("/admin/popups", headers=headers, json=body)
    assert res.status_code == 201, res.text
    return res.json()["data"]


def test_activating_a_popup_deactivates_the_others(client, super_headers):
    first = new_popup(client, super_headers, status=True)
    second = new_popup(client, super_headers, title="New arrivals", status=True)
    statuses = {p["id"]: p["status"] for p in client.get("/admin/popups", headers=super_headers).json()["data"]}
    assert statuses == {first["id"]: False, second["id"]: True}

    res = client.patch(f"/admin/popups/{first['id']}/toggle-status", headers=super_headers)
    assert res.json()["message"] == "Popup activated successfully"
    statuses = {p["id"]: p["status"] for p in client.get("/admin/popups", headers=super_headers).json()["data"]}
    assert statuses == {first["id"]: True, second["id"]: False}

    client.patch(f"/admin/popups/{second['id']}", headers=super_headers, json={"status": True})
    assert client.get(f"/admin/popups/{first['id']}", headers=super_headers).json()["data"]["status"] is False


def test_active_popup_for_device(client, super_headers):
    assert client.get("/popups/active").json() == {"success": True, "data": None, "message": "No active popup available"}

    popup = new_popup(client, super_headers, status=True, device_type="mobile",
                      buttons=[{"text": " Shop now ", "action": "/products"}])
    mobile = client.get("/popups/active?device_type=mobile").json()["data"]
    assert mobile["id"] == popup["id"]
    assert mobile["buttons"][0]["text"] == "Shop now"
    assert mobile["buttons"][0]["id"]
    assert client.get("/popups/active?device_type=desktop").json()["data"] is None
    phone = {"User-Agent": "Mozilla/5.0 (iPhone; CPU iPhone OS 17_0) Mobile/15E148"}
    assert client.get("/popups/active", headers=phone).json()["data"]["id"] == popup["id"]

    client.patch(f"/admin/popups/{popup['id']}", headers=super_headers, json={"device_type": "all"})
    assert client.get("/popups/active?device_type=desktop").json()["data"]["title"] == "Festive sale"


def test_popup_image_and_delete(client, super_headers):
    popup = new_popup(client, super_headers, image="popups/sale.png")
    res = client.delete(f"/admin/popups/{popup['id']}/image", headers=super_headers)
    assert res.status_code == 200
    assert res.json()["data"]["image"] is None
    res = client.delete(f"/admin/popups/{popup['id']}/image", headers=super_headers)
    assert res.status_code == 400
    assert res.json()["error"] == "NO_IMAGE"

    assert client.patch(f"/admin/popups/{popup['id']}", headers=super_headers, json={}).json()["error"] == "NO_CHANGES"
    assert client.delete(f"/admin/popups/{popup['id']}", headers=super_headers).status_code == 200
    res = client.get(f"/admin/popups/{popup['id']}", headers=super_headers)
    assert res.status_code == 404
    assert res.json()["error"] == "POPUP_NOT_FOUND"


def test_popup_validation_and_permissions(client, super_headers, make_admin):
    assert client.post("/admin/popups", headers=super_headers, json={"title": "   ", "content": "x"}).status_code == 422
    res = client.post("/admin/popups", headers=super_headers, json={"title": "X", "content": "y", "device_type": "tv"})
    assert res.status_code == 422

    catalog = make_admin([{"feature": "products", "read": True}])
    assert client.get("/admin/popups", headers=catalog).status_code == 403
    popups = make_admin([{"feature": "popups", "read": True}])
    assert client.get("/admin/popups", headers=popups).status_code == 200
