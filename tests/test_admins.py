def support_role(client, headers):
    res = client.post("/roles", headers=headers, json={"name": "Support", "permissions": [{"feature": "orders", "read": True}]})
    return res.json()["data"]["id"]


def new_admin(client, headers, role_id, username="desk1", email="desk1@example.com"):
    return client.post("/admins", headers=headers, json={
        "username": username, "email": email, "password": "password123", "role_id": role_id, "first_name": "Desk",
    })


def test_create_and_list_admins(client, super_headers):
    role_id = support_role(client, super_headers)
    res = new_admin(client, super_headers, role_id)
    assert res.status_code == 201
    data = res.json()["data"]
    assert data["role"]["name"] == "Support"
    assert "password_hash" not in data

    listing = client.get("/admins", headers=super_headers).json()
    assert listing["pagination"]["total"] == 2
    assert {a["username"] for a in listing["data"]} == {"desk1", "superadmin"}


def test_duplicate_admin(client, super_headers):
    role_id = support_role(client, super_headers)
    new_admin(client, super_headers, role_id)
    res = new_admin(client, super_headers, role_id, username="desk2")
    assert res.status_code == 409
    assert res.json()["error"] == "DUPLICATE_ADMIN"


def test_admin_role_must_exist(client, super_headers):
    res = new_admin(client, super_headers, "65a000000000000000000000")
    assert res.status_code == 400
    assert res.json()["error"] == "INVALID_ROLE"


def test_update_admin(client, super_headers):
    role_id = support_role(client, super_headers)
    admin_id = new_admin(client, super_headers, role_id).json()["data"]["id"]
    res = client.put(f"/admins/{admin_id}", headers=super_headers, json={"status": False, "password": "newpassword1"})
    assert res.status_code == 200
    assert res.json()["data"]["status"] is False
    login = client.post("/admin/auth/login", json={"username": "desk1", "password": "newpassword1"})
    assert login.status_code == 403

    assert client.put(f"/admins/{admin_id}", headers=super_headers, json={}).json()["error"] == "NO_CHANGES"


def test_cannot_delete_self(client, db, super_headers):
    me = str(db["admin"].find_one({"username": "superadmin"})["_id"])
    res = client.delete(f"/admins/{me}", headers=super_headers)
    assert res.status_code == 400
    assert res.json()["error"] == "SELF_DELETE_FORBIDDEN"


def test_delete_admin(client, db, super_headers):
    role_id = support_role(client, super_headers)
    admin_id = new_admin(client, super_headers, role_id).json()["data"]["id"]
    assert client.delete(f"/admins/{admin_id}", headers=super_headers).status_code == 200
    assert client.delete(f"/admins/{admin_id}", headers=super_headers).status_code == 404
    assert db["admin"].count_documents({}) == 1


def test_admin_management_is_super_admin_only(client, make_admin):
    headers = make_admin([{"feature": "admins", "create": True, "read": True, "update": True, "delete": True}])
    res = client.get("/admins", headers=headers)
    assert res.status_code == 403
    assert res.json()["error"] == "SUPERADMIN_REQUIRED"


def test_audit_log_listing(client, super_headers):
    role_id = support_role(client, super_headers)
    new_admin(client, super_headers, role_id)
    logs = client.get("/admin/audit-logs", headers=super_headers).json()
    assert logs["pagination"]["total"] == 2
    assert logs["data"][0]["resource"] in {"role", "admin"}
    only_roles = client.get("/admin/audit-logs?resource=role", headers=super_headers).json()
    assert [entry["action"] for entry in only_roles["data"]] == ["create"]


def test_padded_username_is_trimmed_and_blank_rejected(client, super_headers):
    role_id = support_role(client, super_headers)
    res = new_admin(client, super_headers, role_id, username="  ")
    assert res.status_code == 422
    res = new_admin(client, super_headers, role_id, username="  desk9 ")
    assert res.status_code == 201
    assert res.json()["data"]["username"] == "desk9"
