from __future__ import annotations
"""Audit decorator and helpers that turn admin view calls into ledger entries.

Usage examples:

@audit_log('admin.role.create', target_type='role', target_id_key='id')
def create_role():
    ... return {'id': role.id, 'name': role.name}, 201

@audit_log('admin.user.role.assign', target_type='user', target_id_arg='user_id',
           pre_fetch=lambda args, kwargs: {'roles': role_ids_of(kwargs['user_id'])})
def assign_user_role(user_id, role_id): ...

Parameters:
  action: audit action verb (e.g. admin.role.create)
  target_type: optional target label (role, user, system)
  target_id_key: key in the returned JSON object whose value becomes target_id.
  target_id_arg: name of the view argument / path parameter used when target_id_key is absent.
  pre_fetch: callable (args, kwargs) -> dict captured before the view runs ("before" snapshot).
  after_builder: callable (data, args, kwargs) -> dict for the "after" snapshot; defaults to the payload.

Return handling:
  Views return dict, (dict, status) or (dict, status, headers). Only successful
  responses (status < 400) are recorded. The reason is read from the JSON body
  ("reason", truncated to 500 chars).

A failed audit write is logged at ERROR together with the already committed
change, then AuditWriteError propagates and the request fails with 500.
"""

import logging
from functools import wraps
from typing import Any, Callable, Dict, Optional, Tuple

from flask import request
from flask_jwt_extended import get_jwt_identity

from admin_trust.errors import AuditWriteError
from admin_trust.services.audit import AuditEventInput
from admin_trust.services.registry import current_services

logger = logging.getLogger(__name__)

REASON_MAX = 500


def request_meta() -> Tuple[str, str]:
    """Return (ip_address, user_agent) for the current request."""
    forwarded = request.headers.get('X-Forwarded-For')
    ip = forwarded.split(',')[0].strip() if forwarded else None
    ip = ip or request.headers.get('X-Real-IP') or request.remote_addr or 'unknown'
    user_agent = request.headers.get('User-Agent') or 'unknown'
    return ip, user_agent


def request_reason() -> Optional[str]:
    body = request.get_json(silent=True) or {}
    reason = body.get('reason') if isinstance(body, dict) else None
    return str(reason)[:REASON_MAX] if reason else None


def add_audit(
    action: str,
    target_type: Optional[str] = None,
    target_id: Optional[Any] = None,
    *,
    before: Optional[Dict[str, Any]] = None,
    after: Optional[Dict[str, Any]] = None,
    reason: Optional[str] = None,
):
    """Append an audit entry for the authenticated actor of the current request."""
    ip, user_agent = request_meta()
    return current_services().ledger.write_audit_event(AuditEventInput(
        actor_id=str(get_jwt_identity()),
        action=action,
        target_type=target_type,
        target_id=str(target_id) if target_id is not None else None,
        reason=reason if reason is not None else request_reason(),
        before=before,
        after=after,
        ip_address=ip,
        user_agent=user_agent,
    ))


def _extract_payload(rv: Any) -> Tuple[Any, int]:
    """Return (data, status) from a view return value."""
    if isinstance(rv, tuple) and rv:
        data = rv[0]
        status = rv[1] if len(rv) > 1 and isinstance(rv[1], int) else 200
        return data, status
    status = getattr(rv, 'status_code', 200)
    return rv, status


def audit_log(
    action: str,
    *,
    target_type: Optional[str] = None,
    target_id_key: Optional[str] = None,
    target_id_arg: Optional[str] = None,
    pre_fetch: Optional[Callable[[tuple, dict], Dict[str, Any]]] = None,
    after_builder: Optional[Callable[[dict, tuple, dict], Dict[str, Any]]] = None,
):
    def outer(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            before_snapshot = pre_fetch(args, kwargs) if pre_fetch else None
            rv = fn(*args, **kwargs)
            data, status = _extract_payload(rv)
            if status >= 400:
                return rv
            if not isinstance(data, dict):
                data = {}
            target_id = None
            if target_id_key and target_id_key in data:
                target_id = data.get(target_id_key)
            elif target_id_arg and target_id_arg in kwargs:
                target_id = kwargs.get(target_id_arg)
            after = after_builder(data, args, kwargs) if after_builder else data
            try:
                add_audit(action, target_type, target_id, before=before_snapshot, after=after)
            except AuditWriteError:
                # the view already committed; this mutation has no ledger entry
                logger.error(
                    "Unaudited mutation committed: action=%s target=%s/%s actor=%s after=%s",
                    action, target_type, target_id, get_jwt_identity(), after,
                )
                raise
            return rv
        return wrapper
    return outer
