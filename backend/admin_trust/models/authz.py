from __future__ import annotations
from sqlalchemy.orm import declarative_base, relationship, Mapped, mapped_column
from sqlalchemy import String, Integer, Boolean, ForeignKey, UniqueConstraint, DateTime, text
from typing import Optional, Dict, Any

Base = declarative_base()

# --- Core Models ---
class Permission(Base):
    __tablename__ = 'admin_permissions'
    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    key: Mapped[str] = mapped_column(String(128), unique=True, nullable=False, index=True)
    description: Mapped[Optional[str]] = mapped_column(String(255))
    category: Mapped[str] = mapped_column(String(32), nullable=False, index=True)

    def to_dict(self) -> Dict[str, Any]:
        return {'id': self.id, 'key': self.key, 'description': self.description, 'category': self.category}

class Role(Base):
    __tablename__ = 'admin_roles'
    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(String(255))
    is_system: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    permissions = relationship('RolePermission', back_populates='role', cascade='all, delete-orphan')
    user_roles = relationship('UserRole', back_populates='role', cascade='all, delete-orphan')
    created_at: Mapped[Any] = mapped_column(DateTime(timezone=True), server_default=text('CURRENT_TIMESTAMP'))

    def to_dict(self) -> Dict[str, Any]:
        return {'id': self.id, 'name': self.name, 'description': self.description, 'is_system': bool(self.is_system)}

class RolePermission(Base):
    __tablename__ = 'admin_role_permissions'
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    role_id: Mapped[str] = mapped_column(ForeignKey('admin_roles.id', ondelete='CASCADE'), nullable=False, index=True)
    permission_id: Mapped[str] = mapped_column(ForeignKey('admin_permissions.id', ondelete='CASCADE'), nullable=False)

    role = relationship('Role', back_populates='permissions')
    permission = relationship('Permission')

    __table_args__ = (UniqueConstraint('role_id', 'permission_id', name='uq_admin_role_permission'),)

class UserRole(Base):
    __tablename__ = 'admin_user_roles'
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    # identity-provider user id; not a foreign key
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    role_id: Mapped[str] = mapped_column(ForeignKey('admin_roles.id', ondelete='CASCADE'), nullable=False)
    created_at: Mapped[Any] = mapped_column(DateTime(timezone=True), server_default=text('CURRENT_TIMESTAMP'))
    __table_args__ = (UniqueConstraint('user_id', 'role_id', name='uq_admin_user_role'),)
    role = relationship('Role', back_populates='user_roles')

class User(Base):
    """Identity record shared with the auth provider. Only `role` (legacy single-role field) is read here."""
    __tablename__ = 'users'
    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    email: Mapped[Optional[str]] = mapped_column(String(255), unique=True, index=True)
    name: Mapped[Optional[str]] = mapped_column(String(128))
    role: Mapped[Optional[str]] = mapped_column(String(32))
