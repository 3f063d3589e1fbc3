"""Idempotent seeding of the permission catalog and system roles.

None of these helpers commit; the caller owns the transaction (see
`scripts/seed_authz.py` and `create_app` with ADMIN_AUTO_BOOTSTRAP).

Preset permission edges are written when a system role is first created.
On later runs only permissions that are new to the catalog in that run are
granted to the presets that include them; edges an admin removed through
RoleAdmin stay removed.
"""
from __future__ import annotations
import logging
from typing import Dict, Iterable, List
from sqlalchemy import select
from admin_trust.models.authz import Permission, Role, RolePermission
from admin_trust.constants.permissions import PERMISSION_CATALOG, SYSTEM_ROLES, ROLE_PRESETS, ALL_PERMISSION_KEYS

logger = logging.getLogger(__name__)


def ensure_permissions(session) -> List[str]:
    """Upsert the catalog; returns the keys created in this run."""
    existing = {p.id: p for p in session.execute(select(Permission)).scalars().all()}
    created: List[str] = []
    for spec in PERMISSION_CATALOG:
        perm = existing.get(spec.id)
        if perm is None:
            session.add(Permission(id=spec.id, key=spec.key, description=spec.description, category=spec.category))
            created.append(spec.key)
        elif perm.description != spec.description or perm.category != spec.category:
            perm.description = spec.description
            perm.category = spec.category
    session.flush()
    return created


def _preset_keys(role_id: str) -> set:
    raw_keys = ROLE_PRESETS.get(role_id, [])
    return set(ALL_PERMISSION_KEYS) if '*' in raw_keys else set(raw_keys)


def ensure_system_roles(session, new_permission_keys: Iterable[str] = ()) -> int:
    existing_roles = {r.id: r for r in session.execute(select(Role)).scalars().all()}
    created_roles = set()
    for role_id, (name, description) in SYSTEM_ROLES.items():
        role = existing_roles.get(role_id)
        if role is None:
            role = Role(id=role_id, name=name, description=description, is_system=True)
            session.add(role)
            existing_roles[role_id] = role
            created_roles.add(role_id)
        elif not role.is_system:
            role.is_system = True
    session.flush()

    new_keys = set(new_permission_keys)
    perms_by_key = {p.key: p for p in session.execute(select(Permission)).scalars()}
    for role_id in SYSTEM_ROLES:
        desired = _preset_keys(role_id)
        if role_id not in created_roles:
            desired &= new_keys
        if not desired:
            continue
        current = {
            rp.permission_id for rp in session.execute(
                select(RolePermission).where(RolePermission.role_id == role_id)
            ).scalars()
        }
        for key in sorted(desired):
            perm = perms_by_key.get(key)
            if perm is None:
                logger.warning('Missing permission referenced by role %s: %s', role_id, key)
                continue
            if perm.id not in current:
                session.add(RolePermission(role_id=role_id, permission_id=perm.id))
    session.flush()
    return len(created_roles)


def seed_catalog(session) -> Dict[str, int]:
    new_keys = ensure_permissions(session)
    created_r = ensure_system_roles(session, new_keys)
    return {'permissions_created': len(new_keys), 'roles_created': created_r}


def build_role_permission_map(session) -> Dict[str, List[str]]:
    mapping: Dict[str, List[str]] = {}
    for role in session.execute(select(Role).order_by(Role.id)).scalars().all():
        mapping[role.name] = sorted({rp.permission.key for rp in role.permissions})
    return mapping
