"""
Admin role permissions

A role holds one permission entry per feature:
    {"feature": "products", "create": bool, "read": bool, "update": bool, "delete": bool}

Some features only support reading (dashboard, analytics, loginAsUser).
Normalization forces unsupported actions off, so two permission sets can be
compared field by field.
"""

from enum import Enum
from typing import Any, Dict, List, Tuple

ACTIONS = ("create", "read", "update", "delete")

SUPER_ADMIN_ROLE = "SuperAdmin"


class Feature(str, Enum):
    ROLES = "roles"
    ADMINS = "admins"
    PRODUCTS = "products"
    CATEGORIES = "categories"
    CUSTOMERS = "customers"
    ORDERS = "orders"
    BANNERS = "banners"
    POPUPS = "popups"
    COUPONS = "coupons"
    DASHBOARD = "dashboard"
    ANALYTICS = "analytics"
    LOGIN_AS_USER = "loginAsUser"


CRUD = list(ACTIONS)
READ_ONLY = ["read"]

FEATURE_CONFIGS: Dict[Feature, Dict[str, Any]] = {
    Feature.ROLES: {"name": "Role Management", "description": "Manage roles and permissions", "allowed_actions": CRUD},
    Feature.ADMINS: {"name": "Admin Management", "description": "Manage admin users, roles, and permissions (SuperAdmin-only feature)", "allowed_actions": CRUD},
    Feature.PRODUCTS: {"name": "Product Management", "description": "Manage products, options, and catalog", "allowed_actions": CRUD},
    Feature.CATEGORIES: {"name": "Category Management", "description": "Manage product categories and hierarchies", "allowed_actions": CRUD},
    Feature.CUSTOMERS: {"name": "Customer Management", "description": "Manage customer accounts and data", "allowed_actions": CRUD},
    Feature.ORDERS: {"name": "Order Management", "description": "Manage orders, status, and fulfillment", "allowed_actions": CRUD},
    Feature.BANNERS: {"name": "Banner Management", "description": "Manage promotional banners and sliders", "allowed_actions": CRUD},
    Feature.POPUPS: {"name": "Popup Management", "description": "Manage popup notifications and promotions", "allowed_actions": CRUD},
    Feature.COUPONS: {"name": "Coupon Management", "description": "Manage discount coupons and promotions", "allowed_actions": CRUD},
    Feature.DASHBOARD: {"name": "Dashboard Analytics", "description": "View dashboard analytics and reports", "allowed_actions": READ_ONLY},
    Feature.ANALYTICS: {"name": "System Analytics", "description": "View system analytics, logs, and online users", "allowed_actions": READ_ONLY},
    Feature.LOGIN_AS_USER: {"name": "Login as User", "description": "Allow admin to login as a customer", "allowed_actions": READ_ONLY},
}

# Banners and popups are hidden from the role editor
AVAILABLE_FEATURES = [f for f in Feature if f not in (Feature.BANNERS, Feature.POPUPS)]

FEATURE_VALUES = {f.value for f in Feature}


def get_all_features() -> List[Dict[str, Any]]:
    return [
        {
            "feature": f.value,
            "name": FEATURE_CONFIGS[f]["name"],
            "description": FEATURE_CONFIGS[f]["description"],
            "allowedActions": list(FEATURE_CONFIGS[f]["allowed_actions"]),
        }
        for f in AVAILABLE_FEATURES
    ]


def is_action_allowed(feature: str, action: str) -> bool:
    if feature not in FEATURE_VALUES:
        return False
    return action in FEATURE_CONFIGS[Feature(feature)]["allowed_actions"]


def validate_permissions(permissions: Any) -> Tuple[bool, List[str]]:
    errors: List[str] = []
    if not isinstance(permissions, list):
        return False, ["Permissions must be an array"]

    seen = set()
    for permission in permissions:
        if not isinstance(permission, dict) or not permission.get("feature"):
            errors.append("Permission missing feature field")
            continue
        feature = permission["feature"]
        if feature in seen:
            errors.append(f"Duplicate permission for feature: {feature}")
        seen.add(feature)

        if feature not in FEATURE_VALUES:
            errors.append(f"Invalid feature: {feature}")
            continue

        for action in ACTIONS:
            value = permission.get(action)
            if value is not None and not isinstance(value, bool):
                errors.append(f"Permission {action} must be a boolean for feature {feature}")

        for action in ACTIONS:
            if permission.get(action) is True and not is_action_allowed(feature, action):
                allowed = FEATURE_CONFIGS[Feature(feature)]["allowed_actions"]
                errors.append(
                    f"Feature {feature} does not support '{action}' action. "
                    f"Only allowed actions: {', '.join(allowed)}"
                )

    return not errors, errors


def normalize_permissions(permissions: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    normalized = []
    for permission in permissions or []:
        feature = permission.get("feature")
        entry = {"feature": feature}
        for action in ACTIONS:
            entry[action] = permission.get(action) is True
        if feature in FEATURE_VALUES:
            allowed = FEATURE_CONFIGS[Feature(feature)]["allowed_actions"]
            for action in ACTIONS:
                if action not in allowed:
                    entry[action] = False
        normalized.append(entry)
    return normalized


def full_permissions() -> List[Dict[str, Any]]:
    """Every feature with every action it supports."""
    return normalize_permissions([
        {"feature": f.value, **{a: True for a in ACTIONS}} for f in Feature
    ])


def has_super_admin_permissions(permissions: List[Dict[str, Any]]) -> bool:
    """True when every feature offered to the role editor has all of its actions enabled."""
    normalized = {p["feature"]: p for p in normalize_permissions(permissions)}
    for feature in AVAILABLE_FEATURES:
        perm = normalized.get(feature.value)
        if perm is None:
            return False
        for action in FEATURE_CONFIGS[feature]["allowed_actions"]:
            if not perm[action]:
                return False
    return True


def permissions_identical(first: List[Dict[str, Any]], second: List[Dict[str, Any]]) -> bool:
    a = sorted(normalize_permissions(first), key=lambda p: str(p["feature"]))
    b = sorted(normalize_permissions(second), key=lambda p: str(p["feature"]))
    return a == b


def role_allows(role: Dict[str, Any], feature: str, action: str) -> bool:
    for permission in role.get("permissions") or []:
        if permission.get("feature") == feature and permission.get(action) is True:
            return True
    return False
