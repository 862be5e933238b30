"""
tests/test_roles_routes.py -- Integration tests for role and user-role administration.

Covers:
  - Catalog listing grouped by module
  - Role creation with catalog validation, duplicate names, permission replacement
  - Deactivating a role through PATCH removes grants on the next fresh check
  - assign / remove user roles, has-permission / has-role probes
  - ANY vs ALL gates: a caller holding only users.view may read one user's
    roles but not the full user-role listing
  - Callers without the permission get 403, anonymous callers 401
"""

from __future__ import annotations

from fastapi.testclient import TestClient

from auth.catalog import ROLE_CUSTOMER, ROLE_SELLER, USERS_VIEW
from auth.models import Role


def _h(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


class TestRoles:
    def test_list_roles(self, app_client: TestClient, admin_token: str) -> None:
        resp = app_client.get("/api/v1/roles", headers=_h(admin_token))
        assert resp.status_code == 200
        names = [r["name"] for r in resp.json()]
        assert names == sorted(names)
        assert {"superadmin", "admin", "seller", "customer"} <= set(names)

    def test_permission_catalog_grouped_by_module(self, app_client: TestClient, admin_token: str) -> None:
        resp = app_client.get("/api/v1/roles/permissions", headers=_h(admin_token))
        assert resp.status_code == 200
        modules = {m["module"]: [p["code"] for p in m["permissions"]] for m in resp.json()}
        assert "orders.refund" in modules["orders"]
        assert "categories.delete" in modules["products"]

    def test_create_role_and_replace_permissions(self, app_client: TestClient, admin_token: str) -> None:
        resp = app_client.post(
            "/api/v1/roles",
            json={"name": "support", "description": "Customer support", "permissions": ["orders.view", "orders.list"]},
            headers=_h(admin_token),
        )
        assert resp.status_code == 201, resp.text
        role_id = resp.json()["id"]

        perms = app_client.get(f"/api/v1/roles/{role_id}/permissions", headers=_h(admin_token))
        assert perms.json() == ["orders.list", "orders.view"]

        replaced = app_client.put(
            f"/api/v1/roles/{role_id}/permissions", json={"permissions": ["orders.refund"]}, headers=_h(admin_token)
        )
        assert replaced.status_code == 200
        assert replaced.json() == ["orders.refund"]

    def test_create_role_rejects_unknown_permission(self, app_client: TestClient, admin_token: str) -> None:
        resp = app_client.post(
            "/api/v1/roles", json={"name": "weird", "permissions": ["orders.teleport"]}, headers=_h(admin_token)
        )
        assert resp.status_code == 422
        assert resp.json()["error"]["detail"]["fields"]["permissions"]

    def test_duplicate_role_name_conflicts(self, app_client: TestClient, admin_token: str) -> None:
        resp = app_client.post("/api/v1/roles", json={"name": "seller"}, headers=_h(admin_token))
        assert resp.status_code == 409

    def test_unknown_role_404(self, app_client: TestClient, admin_token: str) -> None:
        assert app_client.get("/api/v1/roles/9999/permissions", headers=_h(admin_token)).status_code == 404
        assert app_client.patch("/api/v1/roles/9999", json={"is_active": False}, headers=_h(admin_token)).status_code == 404

    def test_deactivate_role_via_patch(self, app_client: TestClient, admin_token: str, make_user, login, store) -> None:
        make_user("seller@techgadgets.test", roles=(ROLE_SELLER,))
        seller_token = login("seller@techgadgets.test")["access_token"]
        seller_role = store.get_role_by_name(ROLE_SELLER)

        resp = app_client.patch(f"/api/v1/roles/{seller_role.id}", json={"is_active": False}, headers=_h(admin_token))
        assert resp.status_code == 200
        assert resp.json()["is_active"] is False

        me = app_client.get("/api/v1/auth/me", headers=_h(seller_token)).json()
        assert me["roles"] == []


class TestUserRoles:
    def test_assign_and_remove(self, app_client: TestClient, admin_token: str, make_user, store) -> None:
        uid = make_user("buyer@techgadgets.test", roles=(ROLE_CUSTOMER,))
        seller = store.get_role_by_name(ROLE_SELLER)

        resp = app_client.post(
            "/api/v1/user-roles/assign", json={"user_id": uid, "role_ids": [seller.id]}, headers=_h(admin_token)
        )
        assert resp.status_code == 200, resp.text
        assert resp.json()["roles"] == [ROLE_CUSTOMER, ROLE_SELLER]

        check = app_client.get(f"/api/v1/user-roles/{uid}/has-permission/products.edit", headers=_h(admin_token))
        assert check.json() == {"user_id": uid, "subject": "products.edit", "granted": True}

        removed = app_client.post(
            "/api/v1/user-roles/remove", json={"user_id": uid, "role_id": seller.id}, headers=_h(admin_token)
        )
        assert removed.status_code == 200
        again = app_client.post(
            "/api/v1/user-roles/remove", json={"user_id": uid, "role_id": seller.id}, headers=_h(admin_token)
        )
        assert again.status_code == 404

        role_check = app_client.get(f"/api/v1/user-roles/{uid}/has-role/{ROLE_SELLER}", headers=_h(admin_token))
        assert role_check.json()["granted"] is False

    def test_assign_unknown_role_or_user(self, app_client: TestClient, admin_token: str, make_user) -> None:
        uid = make_user("buyer@techgadgets.test")
        resp = app_client.post(
            "/api/v1/user-roles/assign", json={"user_id": uid, "role_ids": [9999]}, headers=_h(admin_token)
        )
        assert resp.status_code == 404
        resp = app_client.post(
            "/api/v1/user-roles/assign", json={"user_id": 9999, "role_ids": [1]}, headers=_h(admin_token)
        )
        assert resp.status_code == 404

    def test_any_versus_all_gates(self, app_client: TestClient, make_user, login, store) -> None:
        viewer_role = store.create_role(Role(name="viewer"))
        store.set_role_permissions(viewer_role, [USERS_VIEW])
        viewer_id = make_user("viewer@techgadgets.test")
        store.assign_roles(viewer_id, [viewer_role])
        token = login("viewer@techgadgets.test")["access_token"]

        # ANY of users.view, roles.view
        one = app_client.get(f"/api/v1/user-roles/{viewer_id}", headers=_h(token))
        assert one.status_code == 200
        assert one.json()["roles"] == ["viewer"]
        # ALL of users.list, roles.view
        listing = app_client.get("/api/v1/user-roles", headers=_h(token))
        assert listing.status_code == 403

    def test_customer_cannot_administer_roles(self, app_client: TestClient, make_user, login, store) -> None:
        make_user("buyer@techgadgets.test", roles=(ROLE_CUSTOMER,))
        token = login("buyer@techgadgets.test")["access_token"]
        assert app_client.get("/api/v1/roles", headers=_h(token)).status_code == 403
        resp = app_client.post(
            "/api/v1/user-roles/assign",
            json={"user_id": 1, "role_ids": [store.get_role_by_name("superadmin").id]},
            headers=_h(token),
        )
        assert resp.status_code == 403
        assert resp.json()["error"] == {"code": "forbidden", "message": "Access denied.", "detail": None}

    def test_anonymous_is_401(self, app_client: TestClient) -> None:
        assert app_client.get("/api/v1/roles").status_code == 401
        assert app_client.get("/api/v1/user-roles").status_code == 401
