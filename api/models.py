"""
API request and response models for the TechGadgets back-office REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Separation of concerns: auth/ models = domain truth; api/ models = API contract.
"""

from datetime import datetime
from typing import Annotated, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

# Deliberately loose: one "@", something on each side, a dot in the domain.
EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"
ROLE_NAME_PATTERN = r"^[a-z][a-z0-9_-]{1,49}$"
PERMISSION_CODE_PATTERN = r"^[a-z][a-z0-9_]*\.[a-z][a-z0-9_.]*$"

_Email = Annotated[str, Field(pattern=EMAIL_PATTERN, max_length=255)]
# Secrets are never trimmed: every endpoint hashes or compares them as typed.
_Password = Annotated[str, Field(min_length=8, max_length=128)]
_PermissionCode = Annotated[str, Field(pattern=PERMISSION_CODE_PATTERN, max_length=100)]


def _normalize_email(value: str) -> str:
    return str(value).strip().lower()


# ---------------------------------------------------------------------------
# Auth -- requests
# ---------------------------------------------------------------------------


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/auth/login."""

    email: _Email
    # Only non-empty: a short wrong password still counts as a failed attempt.
    password: str = Field(min_length=1, max_length=128)

    @field_validator("email", mode="before")
    @classmethod
    def normalize_email(cls, value: str) -> str:
        return _normalize_email(value)


class RegisterRequest(BaseModel):
    """Request body for POST /api/v1/auth/register."""

    email: _Email
    password: _Password
    confirm_password: str = Field(max_length=128)
    first_name: str = Field(min_length=1, max_length=100)
    last_name: str = Field(min_length=1, max_length=100)
    phone: Optional[str] = Field(default=None, max_length=30)

    @field_validator("email", mode="before")
    @classmethod
    def normalize_email(cls, value: str) -> str:
        return _normalize_email(value)

    @field_validator("first_name", "last_name", "phone", mode="before")
    @classmethod
    def strip_profile_text(cls, value):
        return value.strip() if isinstance(value, str) else value

    @model_validator(mode="after")
    def passwords_match(self) -> "RegisterRequest":
        if self.password != self.confirm_password:
            raise ValueError("Password confirmation does not match.")
        return self


class SetupRequest(RegisterRequest):
    """Request body for POST /api/v1/auth/setup (first-run superadmin)."""


class RefreshRequest(BaseModel):
    """Request body for POST /api/v1/auth/refresh and /auth/logout."""

    refresh_token: str = Field(min_length=1, max_length=256)


class ChangePasswordRequest(BaseModel):
    """Request body for POST /api/v1/auth/change-password."""

    current_password: str = Field(min_length=1, max_length=128)
    new_password: _Password
    confirm_password: str = Field(max_length=128)

    @model_validator(mode="after")
    def passwords_match(self) -> "ChangePasswordRequest":
        if self.new_password != self.confirm_password:
            raise ValueError("Password confirmation does not match.")
        return self


# ---------------------------------------------------------------------------
# Auth -- responses
# ---------------------------------------------------------------------------


class UserInfo(BaseModel):
    """Resolved profile returned with every successful authentication."""

    model_config = ConfigDict(frozen=True)

    id: int
    email: str
    display_name: str
    roles: list[str]
    permissions: list[str]


class AuthResponse(BaseModel):
    """Success envelope for login, register, setup and refresh."""

    model_config = ConfigDict(frozen=True)

    success: bool = True
    message: str
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_at: datetime
    expires_in: int
    user: UserInfo


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


# ---------------------------------------------------------------------------
# Roles and permissions
# ---------------------------------------------------------------------------


class RoleResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    description: str
    is_active: bool
    created_at: Optional[datetime] = None


class RoleCreate(BaseModel):
    """Request body for POST /api/v1/roles."""

    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(pattern=ROLE_NAME_PATTERN)
    description: str = Field(default="", max_length=500)
    permissions: list[_PermissionCode] = Field(default_factory=list, max_length=200)


class RolePatch(BaseModel):
    """Request body for PATCH /api/v1/roles/{id}."""

    description: Optional[str] = Field(default=None, max_length=500)
    is_active: Optional[bool] = None


class RolePermissionsUpdate(BaseModel):
    """Request body for PUT /api/v1/roles/{id}/permissions."""

    permissions: list[_PermissionCode] = Field(max_length=200)


class PermissionInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    code: str
    name: str
    description: str


class PermissionModule(BaseModel):
    """Catalog entries grouped by module tag."""

    model_config = ConfigDict(frozen=True)

    module: str
    permissions: list[PermissionInfo]


class UserRolesResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    user_id: int
    email: str
    display_name: str
    is_active: bool
    roles: list[str]


class AssignRolesRequest(BaseModel):
    """Request body for POST /api/v1/user-roles/assign."""

    user_id: int = Field(gt=0)
    role_ids: list[int] = Field(min_length=1, max_length=20)


class RemoveRoleRequest(BaseModel):
    """Request body for POST /api/v1/user-roles/remove."""

    user_id: int = Field(gt=0)
    role_id: int = Field(gt=0)


class CheckResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    user_id: int
    subject: str
    granted: bool


# ---------------------------------------------------------------------------
# Errors and health
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[dict | str | list] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)
