"""
auth/accounts.py -- Registration, password change and first-run setup.

These are the write paths on the credential store that sit next to login:
registration creates an active, unverified user holding the configured
default role; changing a password revokes every refresh token of the user;
first-run setup creates the initial superadmin and is refused once any user
exists.

A wrong current password on change is a ValidationError on
"current_password" (422). 401 stays reserved for a bad access token.

Layer rule: no imports from api/ or client/.
"""

from __future__ import annotations

import logging

from sqlalchemy.exc import IntegrityError

from auth.audit import AuthAuditLog, AuthEventKind
from auth.catalog import ROLE_SUPERADMIN
from auth.errors import Conflict, NotFound, ValidationError
from auth.models import User
from auth.sessions import TokenManager
from auth.store import AuthStore
from auth.tokens import hash_password, verify_password
from core.config import get_settings

logger = logging.getLogger("techgadgets.auth")


class AccountService:
    def __init__(self, store: AuthStore, tokens: TokenManager, audit: AuthAuditLog | None = None) -> None:
        self.store = store
        self.tokens = tokens
        self.audit = audit or AuthAuditLog()

    def register(
        self,
        email: str,
        password: str,
        first_name: str,
        last_name: str,
        phone: str | None = None,
        role_name: str | None = None,
        ip: str | None = None,
    ) -> User:
        """Create a user with the default role. Duplicate email -> ValidationError on "email"."""
        email = email.strip().lower()
        if self.store.get_by_email(email) is not None:
            raise ValidationError("Registration failed.", fields={"email": ["This email is already registered."]})
        user = User(
            email=email,
            first_name=first_name.strip(),
            last_name=last_name.strip(),
            phone=phone,
            hashed_password=hash_password(password),
        )
        try:
            user_id = self.store.create_user(user)
        except IntegrityError as exc:
            raise ValidationError(
                "Registration failed.", fields={"email": ["This email is already registered."]}
            ) from exc

        role = self.store.get_role_by_name(role_name or get_settings().default_role)
        if role is not None:
            self.store.assign_roles(user_id, [role.id])
        else:
            logger.warning("Default role %r missing; user %s registered without roles", role_name, user_id)

        self.audit.emit(AuthEventKind.REGISTERED, email=email, user_id=user_id, ip=ip)
        return self.store.get_by_id(user_id)

    def create_initial_admin(self, email: str, password: str, first_name: str, last_name: str) -> User:
        """Create the first superadmin. Conflict once any user exists.

        has_users() is re-checked here rather than trusting a cached flag, and
        an IntegrityError from a concurrent setup is reported the same way.
        """
        if self.store.has_users():
            raise Conflict("Setup already complete.")
        try:
            user = self.register(email, password, first_name, last_name, role_name=ROLE_SUPERADMIN)
        except ValidationError as exc:
            raise Conflict("Setup already complete.") from exc
        self.store.update_user(user.id, email_verified=True)
        logger.info("Initial superadmin %s created", user.id)
        return self.store.get_by_id(user.id)

    def change_password(self, user_id: int, current: str, new: str, ip: str | None = None) -> int:
        """Replace the password after verifying the current one.

        Returns the number of refresh tokens revoked; every client of the
        user must log in again.
        """
        user = self.store.get_by_id(user_id)
        if user is None:
            raise NotFound("User not found.")
        if user.hashed_password is None or not verify_password(current, user.hashed_password):
            raise ValidationError(
                "Current password is incorrect.", fields={"current_password": ["Current password is incorrect."]}
            )
        if current == new:
            raise ValidationError("Password unchanged.", fields={"new_password": ["Must differ from the current password."]})
        self.store.update_user(user_id, hashed_password=hash_password(new))
        self.audit.emit(AuthEventKind.PASSWORD_CHANGED, email=user.email, user_id=user_id, ip=ip)
        return self.tokens.revoke_all(user_id, ip=ip, reason="password_changed")
