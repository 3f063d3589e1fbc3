from __future__ import annotations
import logging
from dataclasses import dataclass
from typing import Callable, FrozenSet, Iterable, Optional, Set
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from admin_trust.models.authz import User, UserRole, RolePermission, Permission
from admin_trust.constants.permissions import legacy_role_permissions
from admin_trust.services.permission_cache import PermissionCache

logger = logging.getLogger(__name__)

LegacyRoleLookup = Callable[[str], Optional[str]]


@dataclass(frozen=True)
class PermissionCheck:
    granted: bool
    missing: Optional[str] = None

    def to_dict(self):
        if self.granted:
            return {'granted': True}
        return {'granted': False, 'missing': self.missing}


class PermissionResolver:
    """Effective permission lookup: explicit role edges unioned with the legacy role field.

    `session_factory` is any zero-arg callable returning a Session usable as a
    context manager (a `sessionmaker` or the app's `scoped_session`).
    `legacy_role_lookup(user_id)` returns the user's single-role field; when
    omitted, `users.role` is read from the same store.
    """

    def __init__(self, session_factory, cache: PermissionCache, legacy_role_lookup: Optional[LegacyRoleLookup] = None):
        self._session_factory = session_factory
        self.cache = cache
        self._legacy_role_lookup = legacy_role_lookup

    def get_user_permissions(self, user_id: str) -> FrozenSet[str]:
        cached = self.cache.get(user_id)
        if cached is not None:
            return cached
        perm_keys: Set[str] = set()
        with self._session_factory() as session:
            stmt = (
                select(Permission.key)
                .join(RolePermission, RolePermission.permission_id == Permission.id)
                .join(UserRole, UserRole.role_id == RolePermission.role_id)
                .where(UserRole.user_id == user_id)
            )
            perm_keys.update(session.execute(stmt).scalars())
            if self._legacy_role_lookup is not None:
                legacy_role = self._legacy_role_lookup(user_id)
            else:
                legacy_role = session.execute(select(User.role).where(User.id == user_id)).scalar_one_or_none()
        perm_keys.update(legacy_role_permissions(legacy_role))
        permissions = frozenset(perm_keys)
        self.cache.set(user_id, permissions)
        return permissions

    def _permissions_or_empty(self, user_id: str) -> FrozenSet[str]:
        # Authorization checks fail closed when the store is unavailable.
        try:
            return self.get_user_permissions(user_id)
        except SQLAlchemyError:
            logger.exception('Permission lookup failed for user %s', user_id)
            return frozenset()

    def has_permission(self, user_id: str, key: str) -> bool:
        return key in self._permissions_or_empty(user_id)

    def has_any_permission(self, user_id: str, keys: Iterable[str]) -> bool:
        perms = self._permissions_or_empty(user_id)
        return any(k in perms for k in keys)

    def has_all_permissions(self, user_id: str, keys: Iterable[str]) -> bool:
        perms = self._permissions_or_empty(user_id)
        return all(k in perms for k in keys)

    def require_permission(self, user_id: str, key: str) -> PermissionCheck:
        if self.has_permission(user_id, key):
            return PermissionCheck(granted=True)
        return PermissionCheck(granted=False, missing=key)

    def invalidate_permission_cache(self, user_id: str) -> None:
        self.cache.invalidate(user_id)

    def invalidate_all_permission_caches(self) -> None:
        """Drop every cached user. Used after role-graph changes whose affected users are unknown."""
        self.cache.clear()
