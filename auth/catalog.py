"""
auth/catalog.py -- The single shared catalog of permission codes and default roles.

Both the server (route requirements, seeding) and the client (capability
gating) name permissions through these constants. Neither side attaches
behavior to an individual code; the engine only does set operations on them.

Codes are flat "module.action" strings. Role names are short identifiers.

Layer rule: pure module -- stdlib only, importable from client/.
"""

from __future__ import annotations

from typing import NamedTuple


class PermissionDef(NamedTuple):
    code: str
    module: str
    name: str
    description: str


# ---------------------------------------------------------------------------
# Permission codes
# ---------------------------------------------------------------------------

DASHBOARD_VIEW = "dashboard.view"

USERS_LIST = "users.list"
USERS_VIEW = "users.view"
USERS_CREATE = "users.create"
USERS_EDIT = "users.edit"
USERS_DELETE = "users.delete"
USERS_LOCK = "users.lock"

ROLES_LIST = "roles.list"
ROLES_VIEW = "roles.view"
ROLES_CREATE = "roles.create"
ROLES_EDIT = "roles.edit"
ROLES_DELETE = "roles.delete"
ROLES_ASSIGN = "roles.assign"
ROLES_REMOVE = "roles.remove"
PERMISSIONS_LIST = "permissions.list"

PRODUCTS_LIST = "products.list"
PRODUCTS_VIEW = "products.view"
PRODUCTS_CREATE = "products.create"
PRODUCTS_EDIT = "products.edit"
PRODUCTS_DELETE = "products.delete"
PRODUCTS_PUBLISH = "products.publish"

CATEGORIES_LIST = "categories.list"
CATEGORIES_CREATE = "categories.create"
CATEGORIES_EDIT = "categories.edit"
CATEGORIES_DELETE = "categories.delete"

BRANDS_LIST = "brands.list"
BRANDS_CREATE = "brands.create"
BRANDS_EDIT = "brands.edit"
BRANDS_DELETE = "brands.delete"

ORDERS_LIST = "orders.list"
ORDERS_VIEW = "orders.view"
ORDERS_CREATE = "orders.create"
ORDERS_EDIT = "orders.edit"
ORDERS_CANCEL = "orders.cancel"
ORDERS_PROCESS = "orders.process"
ORDERS_REFUND = "orders.refund"

INVENTORY_VIEW = "inventory.view"
INVENTORY_ADJUST = "inventory.adjust"
INVENTORY_ALERTS = "inventory.alerts"

REPORTS_SALES = "reports.sales"
REPORTS_USERS = "reports.users"
REPORTS_PRODUCTS = "reports.products"
REPORTS_FINANCIAL = "reports.financial"

CONFIG_GENERAL = "config.general"
CONFIG_PAYMENTS = "config.payments"
CONFIG_SHIPPING = "config.shipping"
CONFIG_SYSTEM = "config.system"


PERMISSIONS: tuple[PermissionDef, ...] = (
    PermissionDef(DASHBOARD_VIEW, "dashboard", "View dashboard", "Open the back-office dashboard"),
    PermissionDef(USERS_LIST, "users", "List users", "See the user list"),
    PermissionDef(USERS_VIEW, "users", "View user", "See a user's details"),
    PermissionDef(USERS_CREATE, "users", "Create user", "Create new users"),
    PermissionDef(USERS_EDIT, "users", "Edit user", "Modify existing users"),
    PermissionDef(USERS_DELETE, "users", "Delete user", "Remove users"),
    PermissionDef(USERS_LOCK, "users", "Lock user", "Lock and unlock users"),
    PermissionDef(ROLES_LIST, "roles", "List roles", "See the role list"),
    PermissionDef(ROLES_VIEW, "roles", "View role", "See a role's details"),
    PermissionDef(ROLES_CREATE, "roles", "Create role", "Create new roles"),
    PermissionDef(ROLES_EDIT, "roles", "Edit role", "Modify roles and their permissions"),
    PermissionDef(ROLES_DELETE, "roles", "Delete role", "Remove roles"),
    PermissionDef(ROLES_ASSIGN, "roles", "Assign roles", "Assign roles to users"),
    PermissionDef(ROLES_REMOVE, "roles", "Remove roles", "Remove roles from users"),
    PermissionDef(PERMISSIONS_LIST, "roles", "List permissions", "See the permission catalog"),
    PermissionDef(PRODUCTS_LIST, "products", "List products", "See the product catalog"),
    PermissionDef(PRODUCTS_VIEW, "products", "View product", "See a product's details"),
    PermissionDef(PRODUCTS_CREATE, "products", "Create product", "Add new products"),
    PermissionDef(PRODUCTS_EDIT, "products", "Edit product", "Modify existing products"),
    PermissionDef(PRODUCTS_DELETE, "products", "Delete product", "Remove products"),
    PermissionDef(PRODUCTS_PUBLISH, "products", "Publish product", "Publish and unpublish products"),
    PermissionDef(CATEGORIES_LIST, "products", "List categories", "See the category list"),
    PermissionDef(CATEGORIES_CREATE, "products", "Create category", "Create new categories"),
    PermissionDef(CATEGORIES_EDIT, "products", "Edit category", "Modify categories"),
    PermissionDef(CATEGORIES_DELETE, "products", "Delete category", "Remove categories"),
    PermissionDef(BRANDS_LIST, "products", "List brands", "See the brand list"),
    PermissionDef(BRANDS_CREATE, "products", "Create brand", "Create new brands"),
    PermissionDef(BRANDS_EDIT, "products", "Edit brand", "Modify brands"),
    PermissionDef(BRANDS_DELETE, "products", "Delete brand", "Remove brands"),
    PermissionDef(ORDERS_LIST, "orders", "List orders", "See the order list"),
    PermissionDef(ORDERS_VIEW, "orders", "View order", "See an order's details"),
    PermissionDef(ORDERS_CREATE, "orders", "Create order", "Place new orders"),
    PermissionDef(ORDERS_EDIT, "orders", "Edit order", "Modify existing orders"),
    PermissionDef(ORDERS_CANCEL, "orders", "Cancel order", "Cancel orders"),
    PermissionDef(ORDERS_PROCESS, "orders", "Process order", "Change order status"),
    PermissionDef(ORDERS_REFUND, "orders", "Refund order", "Issue refunds"),
    PermissionDef(INVENTORY_VIEW, "inventory", "View inventory", "See stock levels"),
    PermissionDef(INVENTORY_ADJUST, "inventory", "Adjust inventory", "Change stock quantities"),
    PermissionDef(INVENTORY_ALERTS, "inventory", "Inventory alerts", "See low-stock alerts"),
    PermissionDef(REPORTS_SALES, "reports", "Sales reports", "See sales reports"),
    PermissionDef(REPORTS_USERS, "reports", "User reports", "See user reports"),
    PermissionDef(REPORTS_PRODUCTS, "reports", "Product reports", "See product reports"),
    PermissionDef(REPORTS_FINANCIAL, "reports", "Financial reports", "See financial reports"),
    PermissionDef(CONFIG_GENERAL, "config", "General settings", "Access general settings"),
    PermissionDef(CONFIG_PAYMENTS, "config", "Payment settings", "Configure payment methods"),
    PermissionDef(CONFIG_SHIPPING, "config", "Shipping settings", "Configure shipping methods"),
    PermissionDef(CONFIG_SYSTEM, "config", "System settings", "Access system settings"),
)

ALL_PERMISSION_CODES: frozenset[str] = frozenset(p.code for p in PERMISSIONS)


# ---------------------------------------------------------------------------
# Default roles
# ---------------------------------------------------------------------------

ROLE_SUPERADMIN = "superadmin"
ROLE_ADMIN = "admin"
ROLE_SELLER = "seller"
ROLE_CUSTOMER = "customer"

DEFAULT_ROLES: dict[str, tuple[str, frozenset[str]]] = {
    ROLE_SUPERADMIN: ("Full system access", ALL_PERMISSION_CODES),
    ROLE_ADMIN: (
        "Back-office administrator",
        ALL_PERMISSION_CODES - {CONFIG_SYSTEM, ROLES_DELETE, USERS_DELETE},
    ),
    ROLE_SELLER: (
        "Manages products and orders",
        frozenset(
            {
                DASHBOARD_VIEW,
                PRODUCTS_LIST,
                PRODUCTS_VIEW,
                PRODUCTS_CREATE,
                PRODUCTS_EDIT,
                CATEGORIES_LIST,
                BRANDS_LIST,
                ORDERS_LIST,
                ORDERS_VIEW,
                ORDERS_PROCESS,
                INVENTORY_VIEW,
                INVENTORY_ALERTS,
                REPORTS_SALES,
            }
        ),
    ),
    ROLE_CUSTOMER: ("Storefront customer", frozenset({ORDERS_CREATE, ORDERS_VIEW})),
}


def module_of(code: str) -> str:
    """Return the module tag of a permission code ("products.edit" -> "products")."""
    return code.split(".", 1)[0]
