from __future__ import annotations
import json
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import Integer, String, Text, Index, UniqueConstraint
from typing import Any, Dict, Optional

from .authz import Base  # reuse same metadata

class AuditEntry(Base):
    """Hash-chained admin audit record.

    Write-once: rows are inserted by AuditLedger and never updated or deleted.
    `created_at` is the ISO-8601 UTC string that was hashed, so it is stored
    verbatim rather than as a DateTime.
    """
    __tablename__ = 'admin_audit_log'
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    actor_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    action: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    target_type: Mapped[Optional[str]] = mapped_column(String(64))
    target_id: Mapped[Optional[str]] = mapped_column(String(128))
    reason: Mapped[Optional[str]] = mapped_column(Text)
    before_json: Mapped[Optional[str]] = mapped_column(Text)
    after_json: Mapped[Optional[str]] = mapped_column(Text)
    ip_address: Mapped[Optional[str]] = mapped_column(String(64))
    user_agent: Mapped[Optional[str]] = mapped_column(String(512))
    hash_prev: Mapped[str] = mapped_column(String(64), nullable=False)
    hash_curr: Mapped[str] = mapped_column(String(64), nullable=False)
    created_at: Mapped[str] = mapped_column(String(32), nullable=False, index=True)

    __table_args__ = (
        UniqueConstraint('hash_prev', name='uq_admin_audit_hash_prev'),
        Index('ix_admin_audit_target', 'target_type', 'target_id'),
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'actor_id': self.actor_id,
            'action': self.action,
            'target_type': self.target_type,
            'target_id': self.target_id,
            'reason': self.reason,
            'before': json.loads(self.before_json) if self.before_json else None,
            'after': json.loads(self.after_json) if self.after_json else None,
            'ip_address': self.ip_address,
            'user_agent': self.user_agent,
            'hash_prev': self.hash_prev,
            'hash_curr': self.hash_curr,
            'created_at': self.created_at,
        }
