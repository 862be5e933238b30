"""
auth/seed.py -- Idempotent seeding of the permission catalog and default roles.

Runs at application startup. Existing rows are left alone: a role that an
administrator has edited keeps its edited permission set, and only roles that
do not yet exist receive the defaults from auth/catalog.py.
"""

from __future__ import annotations

import logging

from sqlalchemy.exc import IntegrityError

from auth.catalog import DEFAULT_ROLES, PERMISSIONS
from auth.models import Role
from auth.store import AuthStore

logger = logging.getLogger("techgadgets.auth")


def seed_catalog(store: AuthStore) -> None:
    inserted = store.ensure_permissions(PERMISSIONS)
    if inserted:
        logger.info("Seeded %d permissions", inserted)

    for name, (description, codes) in DEFAULT_ROLES.items():
        if store.get_role_by_name(name) is not None:
            continue
        try:
            role_id = store.create_role(Role(name=name, description=description))
        except IntegrityError:
            # Another worker seeded it between the check and the insert.
            continue
        store.set_role_permissions(role_id, codes)
        logger.info("Seeded role %s with %d permissions", name, len(codes))
