"""
api/routes/v1/roles.py -- Role, permission and user-role administration routes.

Routes (in registration order to avoid FastAPI path capture conflicts):
  GET    /roles                                          -- list roles
  POST   /roles                                          -- create role with permissions
  GET    /roles/permissions                              -- catalog grouped by module
  PATCH  /roles/{role_id}                                -- edit description / activate
  GET    /roles/{role_id}/permissions                    -- permission codes of a role
  PUT    /roles/{role_id}/permissions                    -- replace permission codes
  GET    /user-roles                                     -- every user with active roles
  POST   /user-roles/assign                              -- grant roles to a user
  POST   /user-roles/remove                              -- revoke one role from a user
  GET    /user-roles/{user_id}                           -- one user's active roles
  GET    /user-roles/{user_id}/has-permission/{code}     -- live permission check
  GET    /user-roles/{user_id}/has-role/{name}           -- live role check

Every route declares its requirement through auth.dependencies.requires();
handlers never inspect grants themselves. Role-graph writes are marked
fresh or high-sensitivity so a caller whose own grants were just revoked
cannot keep using a still-valid access token to make them.
"""

from itertools import groupby

from fastapi import APIRouter, Request
from sqlalchemy.exc import IntegrityError

from api.models import (
    AssignRolesRequest,
    CheckResponse,
    MessageResponse,
    PermissionInfo,
    PermissionModule,
    RemoveRoleRequest,
    RoleCreate,
    RolePatch,
    RolePermissionsUpdate,
    RoleResponse,
    UserRolesResponse,
)
from auth import catalog
from auth.dependencies import requires
from auth.errors import Conflict, NotFound, ValidationError
from auth.grants import MatchMode
from auth.models import Principal, Role, User
from auth.permissions import PermissionResolver
from auth.store import AuthStore

router = APIRouter()


def _store(request: Request) -> AuthStore:
    return request.app.state.auth_store


def _role_response(role: Role) -> RoleResponse:
    return RoleResponse(
        id=role.id,
        name=role.name,
        description=role.description,
        is_active=role.is_active,
        created_at=role.created_at,
    )


def _user_roles_response(store: AuthStore, user: User) -> UserRolesResponse:
    return UserRolesResponse(
        user_id=user.id,
        email=user.email,
        display_name=user.display_name,
        is_active=user.is_active,
        roles=[edge.role_name for edge in store.get_user_roles(user.id)],
    )


def _require_role(store: AuthStore, role_id: int) -> Role:
    role = store.get_role(role_id)
    if role is None:
        raise NotFound("Role not found.")
    return role


def _require_user(store: AuthStore, user_id: int) -> User:
    user = store.get_by_id(user_id)
    if user is None:
        raise NotFound("User not found.")
    return user


def _check_codes(store: AuthStore, codes: list[str]) -> set[str]:
    """Reject codes outside the catalog. The catalog is never extended at runtime."""
    known = store.permission_codes()
    unknown = sorted(set(codes) - known)
    if unknown:
        raise ValidationError(
            "Unknown permission codes.",
            fields={"permissions": [f"Unknown permission: {code}" for code in unknown]},
        )
    return set(codes)


# ---------------------------------------------------------------------------
# Roles
# ---------------------------------------------------------------------------


@router.get("/roles", response_model=list[RoleResponse])
def list_roles(request: Request, principal: Principal = requires(catalog.ROLES_LIST)) -> list[RoleResponse]:
    return [_role_response(r) for r in _store(request).list_roles()]


@router.post("/roles", response_model=RoleResponse, status_code=201)
def create_role(
    request: Request,
    body: RoleCreate,
    principal: Principal = requires(catalog.ROLES_CREATE, fresh=True),
) -> RoleResponse:
    """Create a role and attach its initial permission set. 409 on a taken name."""
    store = _store(request)
    codes = _check_codes(store, body.permissions)
    if store.get_role_by_name(body.name) is not None:
        raise Conflict("Role name already exists.")
    try:
        role_id = store.create_role(Role(name=body.name, description=body.description))
    except IntegrityError as exc:
        raise Conflict("Role name already exists.") from exc
    store.set_role_permissions(role_id, codes)
    return _role_response(store.get_role(role_id))


@router.get("/roles/permissions", response_model=list[PermissionModule])
def list_permissions(
    request: Request, principal: Principal = requires(catalog.PERMISSIONS_LIST)
) -> list[PermissionModule]:
    """Return the permission catalog grouped by module tag."""
    perms = sorted(_store(request).list_permissions(), key=lambda p: (p.module, p.code))
    return [
        PermissionModule(
            module=module,
            permissions=[PermissionInfo(code=p.code, name=p.name, description=p.description) for p in group],
        )
        for module, group in groupby(perms, key=lambda p: p.module)
    ]


@router.patch("/roles/{role_id}", response_model=RoleResponse)
def update_role(
    request: Request,
    role_id: int,
    body: RolePatch,
    principal: Principal = requires(catalog.ROLES_EDIT, fresh=True),
) -> RoleResponse:
    """Edit a role. Deactivating it removes its grants from every holder at once."""
    store = _store(request)
    _require_role(store, role_id)
    fields = body.model_dump(exclude_none=True)
    if fields:
        store.update_role(role_id, **fields)
    return _role_response(store.get_role(role_id))


@router.get("/roles/{role_id}/permissions", response_model=list[str])
def get_role_permissions(
    request: Request, role_id: int, principal: Principal = requires(catalog.ROLES_VIEW)
) -> list[str]:
    store = _store(request)
    _require_role(store, role_id)
    return store.get_role_permissions(role_id)


@router.put("/roles/{role_id}/permissions", response_model=list[str])
def set_role_permissions(
    request: Request,
    role_id: int,
    body: RolePermissionsUpdate,
    principal: Principal = requires(catalog.ROLES_EDIT, fresh=True),
) -> list[str]:
    """Replace the role's permission set with exactly the given codes."""
    store = _store(request)
    _require_role(store, role_id)
    store.set_role_permissions(role_id, _check_codes(store, body.permissions))
    return store.get_role_permissions(role_id)


# ---------------------------------------------------------------------------
# User -> role edges
# ---------------------------------------------------------------------------


@router.get("/user-roles", response_model=list[UserRolesResponse])
def list_user_roles(
    request: Request,
    principal: Principal = requires(catalog.USERS_LIST, catalog.ROLES_VIEW, mode=MatchMode.ALL),
) -> list[UserRolesResponse]:
    store = _store(request)
    return [_user_roles_response(store, u) for u in store.list_users()]


@router.post("/user-roles/assign", response_model=UserRolesResponse)
def assign_roles(
    request: Request,
    body: AssignRolesRequest,
    principal: Principal = requires(catalog.ROLES_ASSIGN, sensitivity=3),
) -> UserRolesResponse:
    """Grant roles to a user. Already-held roles are left as they are."""
    store = _store(request)
    user = _require_user(store, body.user_id)
    for role_id in set(body.role_ids):
        _require_role(store, role_id)
    store.assign_roles(user.id, body.role_ids)
    return _user_roles_response(store, user)


@router.post("/user-roles/remove", response_model=MessageResponse)
def remove_role(
    request: Request,
    body: RemoveRoleRequest,
    principal: Principal = requires(catalog.ROLES_REMOVE, sensitivity=3),
) -> MessageResponse:
    store = _store(request)
    _require_user(store, body.user_id)
    _require_role(store, body.role_id)
    if not store.remove_role(body.user_id, body.role_id):
        raise NotFound("User does not hold this role.")
    return MessageResponse(message="Role removed.")


@router.get("/user-roles/{user_id}", response_model=UserRolesResponse)
def get_user_roles(
    request: Request,
    user_id: int,
    principal: Principal = requires(catalog.USERS_VIEW, catalog.ROLES_VIEW),
) -> UserRolesResponse:
    store = _store(request)
    return _user_roles_response(store, _require_user(store, user_id))


@router.get("/user-roles/{user_id}/has-permission/{code}", response_model=CheckResponse)
def user_has_permission(
    request: Request, user_id: int, code: str, principal: Principal = requires(catalog.USERS_VIEW)
) -> CheckResponse:
    store = _store(request)
    _require_user(store, user_id)
    granted = PermissionResolver(store).has_permission(user_id, code)
    return CheckResponse(user_id=user_id, subject=code, granted=granted)


@router.get("/user-roles/{user_id}/has-role/{name}", response_model=CheckResponse)
def user_has_role(
    request: Request, user_id: int, name: str, principal: Principal = requires(catalog.USERS_VIEW)
) -> CheckResponse:
    store = _store(request)
    _require_user(store, user_id)
    granted = PermissionResolver(store).has_role(user_id, name)
    return CheckResponse(user_id=user_id, subject=name, granted=granted)
