from __future__ import annotations
import logging
from typing import Any, Dict, List, Optional
from sqlalchemy import select, delete
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from admin_trust.models.authz import Role, Permission, RolePermission, UserRole
from admin_trust.services.policy import PermissionResolver

logger = logging.getLogger(__name__)


class RoleAdmin:
    """Reads and mutations of roles, permissions and their assignment edges.

    Mutations return a success flag rather than raising; storage faults are
    logged and rolled back. Each mutation invalidates the resolver cache:
    per user for user-role edges, wholesale for anything that changes what a
    role grants.
    """

    def __init__(self, session_factory, resolver: PermissionResolver):
        self._session_factory = session_factory
        self.resolver = resolver

    # --- Reads ---
    def get_role(self, role_id: str) -> Optional[Role]:
        with self._session_factory() as session:
            return session.get(Role, role_id)

    def get_all_roles(self) -> List[Role]:
        with self._session_factory() as session:
            return list(session.execute(select(Role).order_by(Role.is_system.desc(), Role.name)).scalars())

    def get_all_permissions(self) -> List[Permission]:
        with self._session_factory() as session:
            return list(session.execute(select(Permission).order_by(Permission.category, Permission.key)).scalars())

    def get_role_permissions(self, role_id: str) -> List[Permission]:
        with self._session_factory() as session:
            stmt = (
                select(Permission)
                .join(RolePermission, RolePermission.permission_id == Permission.id)
                .where(RolePermission.role_id == role_id)
                .order_by(Permission.category, Permission.key)
            )
            return list(session.execute(stmt).scalars())

    def get_user_roles(self, user_id: str) -> List[Role]:
        with self._session_factory() as session:
            stmt = (
                select(Role)
                .join(UserRole, UserRole.role_id == Role.id)
                .where(UserRole.user_id == user_id)
                .order_by(Role.name)
            )
            return list(session.execute(stmt).scalars())

    def get_user_permission_summary(self, user_id: str) -> Dict[str, Any]:
        roles = self.get_user_roles(user_id)
        permissions = self.resolver.get_user_permissions(user_id)
        return {'roles': roles, 'permissions': sorted(permissions)}

    # --- User <-> role edges ---
    def assign_role_to_user(self, user_id: str, role_id: str) -> bool:
        with self._session_factory() as session:
            try:
                if session.get(Role, role_id) is None:
                    logger.warning('Cannot assign unknown role %s to user %s', role_id, user_id)
                    return False
                exists = session.execute(
                    select(UserRole.id).where(UserRole.user_id == user_id, UserRole.role_id == role_id)
                ).scalar_one_or_none()
                if exists is None:
                    session.add(UserRole(user_id=user_id, role_id=role_id))
                    session.commit()
            except IntegrityError:
                # concurrent insert of the same edge
                session.rollback()
            except SQLAlchemyError:
                session.rollback()
                logger.exception('Failed to assign role %s to user %s', role_id, user_id)
                return False
        self.resolver.invalidate_permission_cache(user_id)
        return True

    def remove_role_from_user(self, user_id: str, role_id: str) -> bool:
        with self._session_factory() as session:
            try:
                session.execute(delete(UserRole).where(UserRole.user_id == user_id, UserRole.role_id == role_id))
                session.commit()
            except SQLAlchemyError:
                session.rollback()
                logger.exception('Failed to remove role %s from user %s', role_id, user_id)
                return False
        self.resolver.invalidate_permission_cache(user_id)
        return True

    # --- Roles ---
    def create_role(self, role_id: str, name: str, description: Optional[str] = None) -> Optional[Role]:
        if not role_id or not name:
            return None
        with self._session_factory() as session:
            role = Role(id=role_id, name=name, description=description or None, is_system=False)
            session.add(role)
            try:
                session.commit()
                session.refresh(role)
            except IntegrityError:
                session.rollback()
                logger.info('Role %s / %s already exists', role_id, name)
                return None
            except SQLAlchemyError:
                session.rollback()
                logger.exception('Failed to create role %s', role_id)
                return None
            return role

    def delete_role(self, role_id: str) -> bool:
        """Delete a custom role and its edges. System roles are never deleted (reported as False)."""
        deleted = 0
        with self._session_factory() as session:
            try:
                result = session.execute(delete(Role).where(Role.id == role_id, Role.is_system.is_(False)))
                deleted = result.rowcount or 0
                if deleted:
                    session.execute(delete(RolePermission).where(RolePermission.role_id == role_id))
                    session.execute(delete(UserRole).where(UserRole.role_id == role_id))
                session.commit()
            except SQLAlchemyError:
                session.rollback()
                logger.exception('Failed to delete role %s', role_id)
                deleted = 0
        self.resolver.invalidate_all_permission_caches()
        return deleted > 0

    # --- Role <-> permission edges ---
    def assign_permission_to_role(self, role_id: str, permission_id: str) -> bool:
        with self._session_factory() as session:
            try:
                if session.get(Role, role_id) is None or session.get(Permission, permission_id) is None:
                    logger.warning('Cannot assign permission %s to role %s: unknown id', permission_id, role_id)
                    return False
                exists = session.execute(
                    select(RolePermission.id).where(
                        RolePermission.role_id == role_id, RolePermission.permission_id == permission_id
                    )
                ).scalar_one_or_none()
                if exists is None:
                    session.add(RolePermission(role_id=role_id, permission_id=permission_id))
                    session.commit()
            except IntegrityError:
                session.rollback()
            except SQLAlchemyError:
                session.rollback()
                logger.exception('Failed to assign permission %s to role %s', permission_id, role_id)
                return False
        self.resolver.invalidate_all_permission_caches()
        return True

    def remove_permission_from_role(self, role_id: str, permission_id: str) -> bool:
        with self._session_factory() as session:
            try:
                session.execute(
                    delete(RolePermission).where(
                        RolePermission.role_id == role_id, RolePermission.permission_id == permission_id
                    )
                )
                session.commit()
            except SQLAlchemyError:
                session.rollback()
                logger.exception('Failed to remove permission %s from role %s', permission_id, role_id)
                return False
        self.resolver.invalidate_all_permission_caches()
        return True
