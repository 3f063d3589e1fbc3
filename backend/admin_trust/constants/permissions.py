"""Central enum-like definitions to avoid typos in permission/role strings.
Permission keys are part of the external contract: never rename a key silently,
add a new one and retire the old one through a migration instead.
"""
from __future__ import annotations
from dataclasses import dataclass
from typing import Dict, FrozenSet, List, Optional, Tuple


class Permissions:
    # Monitoring
    STATS_READ = 'admin.stats.read'
    ACTIVITY_READ = 'admin.activity.read'
    AUDIT_READ = 'admin.audit.read'

    # User management
    USERS_READ = 'admin.users.read'
    USERS_WRITE_ROLE = 'admin.users.write.role'
    USERS_WRITE_BAN = 'admin.users.write.ban'
    USERS_WRITE_EMAIL = 'admin.users.write.email'
    USERS_WRITE_PASSWORD = 'admin.users.write.password'
    USERS_WRITE_ACCOUNTS = 'admin.users.write.accounts'
    USERS_WRITE_SESSIONS = 'admin.users.write.sessions'

    # System
    SYSTEM_BOOTSTRAP = 'admin.system.bootstrap'
    SYSTEM_SETTINGS = 'admin.system.settings'
    SYSTEM_MAINTENANCE = 'admin.system.maintenance'


CATEGORY_PERMISSIONS: Dict[str, List[Tuple[str, str]]] = {
    'monitoring': [
        (Permissions.STATS_READ, 'View platform statistics'),
        (Permissions.ACTIVITY_READ, 'View live activity'),
        (Permissions.AUDIT_READ, 'View and verify the audit log'),
    ],
    'users': [
        (Permissions.USERS_READ, 'View users and their roles'),
        (Permissions.USERS_WRITE_ROLE, 'Change user roles'),
        (Permissions.USERS_WRITE_BAN, 'Ban and unban users'),
        (Permissions.USERS_WRITE_EMAIL, 'Change user email addresses'),
        (Permissions.USERS_WRITE_PASSWORD, 'Reset user passwords'),
        (Permissions.USERS_WRITE_ACCOUNTS, 'Manage linked accounts'),
        (Permissions.USERS_WRITE_SESSIONS, 'Revoke user sessions'),
    ],
    'system': [
        (Permissions.SYSTEM_BOOTSTRAP, 'Run the admin bootstrap'),
        (Permissions.SYSTEM_SETTINGS, 'Manage roles and system settings'),
        (Permissions.SYSTEM_MAINTENANCE, 'Run maintenance tasks'),
    ],
}


@dataclass(frozen=True)
class PermissionSpec:
    id: str
    key: str
    description: str
    category: str


def permission_id_for(key: str) -> str:
    """`admin.users.write.ban` -> `perm_users_write_ban`."""
    name = key[len('admin.'):] if key.startswith('admin.') else key
    return 'perm_' + name.replace('.', '_')


def build_permission_catalog() -> List[PermissionSpec]:
    catalog: List[PermissionSpec] = []
    for category, entries in CATEGORY_PERMISSIONS.items():
        for key, description in entries:
            catalog.append(PermissionSpec(permission_id_for(key), key, description, category))
    return catalog

PERMISSION_CATALOG = build_permission_catalog()
ALL_PERMISSION_KEYS: FrozenSet[str] = frozenset(p.key for p in PERMISSION_CATALOG)

# role id -> (name, description)
SYSTEM_ROLES: Dict[str, Tuple[str, str]] = {
    'role_superadmin': ('superadmin', 'Unrestricted administrative access'),
    'role_admin': ('admin', 'Day-to-day administration'),
    'role_moderator': ('moderator', 'User moderation'),
    'role_readonly': ('readonly', 'Read-only monitoring'),
}

_ADMIN_KEYS = [
    Permissions.STATS_READ,
    Permissions.ACTIVITY_READ,
    Permissions.AUDIT_READ,
    Permissions.USERS_READ,
    Permissions.USERS_WRITE_BAN,
    Permissions.USERS_WRITE_SESSIONS,
]
_MODERATOR_KEYS = [
    Permissions.STATS_READ,
    Permissions.ACTIVITY_READ,
    Permissions.USERS_READ,
    Permissions.USERS_WRITE_BAN,
]

# System role id -> permission keys granted at bootstrap ('*' = whole catalog)
ROLE_PRESETS: Dict[str, List[str]] = {
    'role_superadmin': ['*'],
    'role_admin': list(_ADMIN_KEYS),
    'role_moderator': list(_MODERATOR_KEYS),
    'role_readonly': [
        Permissions.STATS_READ,
        Permissions.ACTIVITY_READ,
        Permissions.AUDIT_READ,
        Permissions.USERS_READ,
    ],
}

# Legacy single-role field on the user record -> implied permission keys
LEGACY_ROLE_PERMISSIONS: Dict[str, FrozenSet[str]] = {
    'superadmin': ALL_PERMISSION_KEYS,
    'admin': frozenset(_ADMIN_KEYS),
    'moderator': frozenset(_MODERATOR_KEYS),
}


def legacy_role_permissions(role: Optional[str]) -> FrozenSet[str]:
    if not role:
        return frozenset()
    return LEGACY_ROLE_PERMISSIONS.get(role.strip().lower(), frozenset())
