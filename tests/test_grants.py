"""
tests/test_grants.py -- Unit tests for set-based requirement evaluation (auth/grants.py).

Covers:
  - has_any / has_all over permissions and roles, including empty sets
  - Requirement satisfaction under ANY and ALL
  - Requirements naming both permissions and roles need both parts
"""

from __future__ import annotations

import pytest

from auth.grants import Grants, MatchMode, Requirement

GRANTS = Grants.of(roles=["admin"], permissions=["products.edit", "products.view"])
EMPTY = Grants()


class TestPermissionPredicates:
    @pytest.mark.parametrize(
        ("codes", "expected"),
        [
            ({"products.edit", "orders.refund"}, True),
            ({"orders.refund", "orders.view"}, False),
            (set(), False),
        ],
    )
    def test_has_any_permission(self, codes, expected) -> None:
        assert GRANTS.has_any_permission(codes) is expected

    @pytest.mark.parametrize(
        ("codes", "expected"),
        [
            ({"products.edit", "products.view"}, True),
            ({"products.edit"}, True),
            ({"products.edit", "orders.refund"}, False),
            (set(), False),
        ],
    )
    def test_has_all_permissions(self, codes, expected) -> None:
        assert GRANTS.has_all_permissions(codes) is expected

    def test_empty_effective_set_is_false_for_both(self) -> None:
        assert EMPTY.has_any_permission({"a", "b"}) is False
        assert EMPTY.has_all_permissions({"a", "b"}) is False

    def test_single_permission_and_role(self) -> None:
        assert GRANTS.has_permission("products.view")
        assert not GRANTS.has_permission("products")
        assert GRANTS.has_role("admin")
        assert not GRANTS.has_role("Admin")

    def test_role_predicates(self) -> None:
        grants = Grants.of(roles=["admin", "seller"])
        assert grants.has_any_role(["seller", "customer"])
        assert grants.has_all_roles(["seller", "admin"])
        assert not grants.has_all_roles(["seller", "customer"])
        assert not EMPTY.has_all_roles(["seller"])


class TestRequirement:
    def test_all_mode_scenario(self) -> None:
        allowed = Requirement.of(["products.edit", "products.view"], mode=MatchMode.ALL)
        denied = Requirement.of(["products.edit", "orders.refund"], mode=MatchMode.ALL)
        assert GRANTS.satisfies(allowed)
        assert not GRANTS.satisfies(denied)

    def test_any_mode(self) -> None:
        assert GRANTS.satisfies(Requirement.of(["products.edit", "orders.refund"], mode="any"))
        assert not GRANTS.satisfies(Requirement.of(["orders.refund"]))

    def test_empty_requirement_passes_any_identity(self) -> None:
        req = Requirement.of()
        assert req.is_empty
        assert GRANTS.satisfies(req)
        assert EMPTY.satisfies(req)

    def test_both_parts_must_pass(self) -> None:
        req = Requirement.of(["products.edit"], roles=["seller"])
        assert not GRANTS.satisfies(req)
        assert Grants.of(roles=["seller"], permissions=["products.edit"]).satisfies(req)

    def test_roles_only_requirement(self) -> None:
        assert GRANTS.satisfies(Requirement.of(roles=["admin", "superadmin"]))
        assert not GRANTS.satisfies(Requirement.of(roles=["admin", "superadmin"], mode=MatchMode.ALL))

    def test_unknown_mode_rejected(self) -> None:
        with pytest.raises(ValueError):
            Requirement.of(["products.edit"], mode="most")
