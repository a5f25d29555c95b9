from embroidery_store.permissions import (
    AVAILABLE_FEATURES, Feature, full_permissions, get_all_features, has_super_admin_permissions, is_action_allowed,
    normalize_permissions, permissions_identical, role_allows, validate_permissions,
)


def test_feature_list_hides_banners_and_popups():
    features = [f["feature"] for f in get_all_features()]
    assert "banners" not in features
    assert "popups" not in features
    assert "roles" in features
    dashboard = next(f for f in get_all_features() if f["feature"] == "dashboard")
    assert dashboard["allowedActions"] == ["read"]


def test_is_action_allowed():
    assert is_action_allowed("products", "delete")
    assert not is_action_allowed("analytics", "update")
    assert not is_action_allowed("unknown", "read")


def test_validate_permissions_reports_every_problem():
    valid, errors = validate_permissions([
        {"read": True},
        {"feature": "roles", "read": True},
        {"feature": "roles", "read": True},
        {"feature": "spaceships", "read": True},
        {"feature": "products", "create": "yes"},
        {"feature": "dashboard", "update": True},
    ])
    assert not valid
    assert "Permission missing feature field" in errors
    assert "Duplicate permission for feature: roles" in errors
    assert "Invalid feature: spaceships" in errors
    assert "Permission create must be a boolean for feature products" in errors
    assert any("does not support 'update'" in e for e in errors)


def test_validate_permissions_rejects_non_list():
    assert validate_permissions({"feature": "roles"}) == (False, ["Permissions must be an array"])


def test_normalize_fills_missing_and_strips_disallowed_actions():
    normalized = normalize_permissions([{"feature": "analytics", "read": True, "delete": True}, {"feature": "orders"}])
    assert normalized[0] == {"feature": "analytics", "create": False, "read": True, "update": False, "delete": False}
    assert normalized[1] == {"feature": "orders", "create": False, "read": False, "update": False, "delete": False}


def test_full_permissions_is_super_admin_level():
    assert has_super_admin_permissions(full_permissions())


def test_super_admin_level_ignores_hidden_features():
    perms = [
        {"feature": f.value, "create": True, "read": True, "update": True, "delete": True}
        for f in AVAILABLE_FEATURES
    ]
    assert has_super_admin_permissions(perms)


def test_missing_action_is_not_super_admin_level():
    perms = normalize_permissions(full_permissions())
    for p in perms:
        if p["feature"] == "coupons":
            p["delete"] = False
    assert not has_super_admin_permissions(perms)


def test_permissions_identical_ignores_order_and_unset_actions():
    a = [{"feature": "roles", "read": True}, {"feature": "orders", "read": True, "update": True}]
    b = [{"feature": "orders", "update": True, "read": True, "delete": False}, {"feature": "roles", "read": True}]
    assert permissions_identical(a, b)
    assert not permissions_identical(a, [{"feature": "roles", "read": True}])


def test_role_allows_accepts_feature_enum():
    role = {"permissions": [{"feature": "products", "read": True, "create": False}]}
    assert role_allows(role, Feature.PRODUCTS, "read")
    assert not role_allows(role, Feature.PRODUCTS, "create")
    assert not role_allows(role, Feature.ORDERS, "read")
