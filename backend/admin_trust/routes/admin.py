import re
from flask import Blueprint, request, abort, current_app
from flask_jwt_extended import jwt_required, get_jwt_identity
from admin_trust.config.pagination import normalize_pagination
from admin_trust.constants.permissions import Permissions
from admin_trust.decorators.audit import audit_log, add_audit, request_reason
from admin_trust.decorators.auth import require_permissions
from admin_trust.services.audit import AuditQueryFilters
from admin_trust.services.registry import current_services

admin_bp = Blueprint('admin', __name__)


def _slug(name: str) -> str:
    return re.sub(r'[^a-z0-9]+', '_', name.lower()).strip('_')


def _role_payload(role):
    keys = [p.key for p in current_services().roles.get_role_permissions(role.id)]
    return {**role.to_dict(), 'permissions': keys}


def _role_snapshot(role_id: str):  # helper for audit decorator pre_fetch
    role = current_services().roles.get_role(role_id)
    if not role:
        return {}
    return _role_payload(role)


def _role_permission_keys(role_id: str):
    return {'permissions': [p.key for p in current_services().roles.get_role_permissions(role_id)]}


def _user_role_ids(user_id: str):
    return {'role_ids': [r.id for r in current_services().roles.get_user_roles(user_id)]}


def _require_reason():
    reason = request_reason()
    if not reason:
        abort(400, description='Reason is required for role changes')
    return reason


@admin_bp.get('/me')
@jwt_required()
def me():
    user_id = get_jwt_identity()
    summary = current_services().roles.get_user_permission_summary(user_id)
    return {
        'id': user_id,
        'roles': [r.to_dict() for r in summary['roles']],
        'permissions': summary['permissions'],
    }


# --- Catalog & roles ---

@admin_bp.get('/permissions')
@require_permissions(Permissions.USERS_READ)
def list_permissions():
    return {'data': [p.to_dict() for p in current_services().roles.get_all_permissions()]}


@admin_bp.get('/roles')
@require_permissions(Permissions.USERS_READ)
def list_roles():
    return {'data': [_role_payload(r) for r in current_services().roles.get_all_roles()]}


@admin_bp.post('/roles')
@require_permissions(Permissions.SYSTEM_SETTINGS)
@audit_log('admin.role.create', target_type='role', target_id_key='id')
def create_role():
    data = request.get_json(silent=True) or {}
    name = str(data.get('name') or '').strip()
    if not name:
        abort(400, description='name required')
    role_id = str(data.get('id') or '').strip() or f'role_{_slug(name)}'
    role = current_services().roles.create_role(role_id, name, data.get('description'))
    if role is None:
        abort(409, description='role exists')
    return role.to_dict(), 201


@admin_bp.delete('/roles/<role_id>')
@require_permissions(Permissions.SYSTEM_SETTINGS)
@audit_log(
    'admin.role.delete',
    target_type='role',
    target_id_arg='role_id',
    pre_fetch=lambda a, kw: _role_snapshot(kw.get('role_id')),
)
def delete_role(role_id: str):
    roles = current_services().roles
    if roles.get_role(role_id) is None:
        abort(404)
    if not roles.delete_role(role_id):
        abort(409, description='System roles cannot be deleted')
    return {'id': role_id, 'status': 'deleted'}


@admin_bp.get('/roles/<role_id>/permissions')
@require_permissions(Permissions.USERS_READ)
def get_role_permissions(role_id: str):
    roles = current_services().roles
    if roles.get_role(role_id) is None:
        abort(404)
    return {'role_id': role_id, 'data': [p.to_dict() for p in roles.get_role_permissions(role_id)]}


@admin_bp.put('/roles/<role_id>/permissions/<permission_id>')
@require_permissions(Permissions.SYSTEM_SETTINGS)
@audit_log(
    'admin.role.permission.assign',
    target_type='role',
    target_id_arg='role_id',
    pre_fetch=lambda a, kw: _role_permission_keys(kw.get('role_id')),
    after_builder=lambda data, a, kw: {'permissions': data.get('permissions', [])},
)
def assign_role_permission(role_id: str, permission_id: str):
    if not current_services().roles.assign_permission_to_role(role_id, permission_id):
        abort(404, description='Unknown role or permission')
    return {'role_id': role_id, **_role_permission_keys(role_id)}


@admin_bp.delete('/roles/<role_id>/permissions/<permission_id>')
@require_permissions(Permissions.SYSTEM_SETTINGS)
@audit_log(
    'admin.role.permission.remove',
    target_type='role',
    target_id_arg='role_id',
    pre_fetch=lambda a, kw: _role_permission_keys(kw.get('role_id')),
    after_builder=lambda data, a, kw: {'permissions': data.get('permissions', [])},
)
def remove_role_permission(role_id: str, permission_id: str):
    if not current_services().roles.remove_permission_from_role(role_id, permission_id):
        abort(500, description='Failed to remove permission')
    return {'role_id': role_id, **_role_permission_keys(role_id)}


# --- User role assignments ---

@admin_bp.get('/users/<user_id>/permissions')
@require_permissions(Permissions.USERS_READ)
def user_permissions(user_id: str):
    summary = current_services().roles.get_user_permission_summary(user_id)
    return {
        'user_id': user_id,
        'roles': [r.to_dict() for r in summary['roles']],
        'permissions': summary['permissions'],
    }


@admin_bp.put('/users/<user_id>/roles/<role_id>')
@require_permissions(Permissions.USERS_WRITE_ROLE)
@audit_log(
    'admin.user.role.assign',
    target_type='user',
    target_id_arg='user_id',
    pre_fetch=lambda a, kw: _user_role_ids(kw.get('user_id')),
    after_builder=lambda data, a, kw: {'role_ids': data.get('role_ids', [])},
)
def assign_user_role(user_id: str, role_id: str):
    _require_reason()
    if not current_services().roles.assign_role_to_user(user_id, role_id):
        abort(404, description='Unknown role')
    return {'user_id': user_id, **_user_role_ids(user_id)}


@admin_bp.delete('/users/<user_id>/roles/<role_id>')
@require_permissions(Permissions.USERS_WRITE_ROLE)
@audit_log(
    'admin.user.role.remove',
    target_type='user',
    target_id_arg='user_id',
    pre_fetch=lambda a, kw: _user_role_ids(kw.get('user_id')),
    after_builder=lambda data, a, kw: {'role_ids': data.get('role_ids', [])},
)
def remove_user_role(user_id: str, role_id: str):
    _require_reason()
    if not current_services().roles.remove_role_from_user(user_id, role_id):
        abort(500, description='Failed to remove role')
    return {'user_id': user_id, **_user_role_ids(user_id)}


# --- Audit log ---

@admin_bp.get('/audit')
@require_permissions(Permissions.AUDIT_READ)
def list_audit_logs():
    try:
        limit, offset = normalize_pagination(
            request.args.get('limit'), request.args.get('offset'), max_limit=current_app.config['AUDIT_MAX_LIMIT']
        )
    except ValueError as e:
        abort(400, description=str(e))
    filters = AuditQueryFilters(
        actor_id=request.args.get('actorId') or None,
        action=request.args.get('action') or None,
        target_type=request.args.get('targetType') or None,
        target_id=request.args.get('targetId') or None,
        start_date=request.args.get('startDate') or None,
        end_date=request.args.get('endDate') or None,
    )
    ledger = current_services().ledger
    try:
        result = ledger.query_audit_log(filters, limit, offset)
    except ValueError as e:
        abort(400, description=str(e))
    add_audit('admin.audit.view', 'system', after={'filters': filters.to_dict(), 'limit': limit, 'offset': offset})
    return {
        'logs': [e.to_dict() for e in result.logs],
        'total': result.total,
        'hasMore': result.has_more,
        'pagination': {'limit': limit, 'offset': offset},
    }


@admin_bp.get('/audit/stats')
@require_permissions(Permissions.AUDIT_READ)
def audit_stats():
    stats = current_services().ledger.get_audit_stats()
    add_audit('admin.audit.stats', 'system')
    return stats.to_dict()


@admin_bp.get('/audit/history/<target_type>/<target_id>')
@require_permissions(Permissions.AUDIT_READ)
def audit_history(target_type: str, target_id: str):
    try:
        limit, _ = normalize_pagination(
            request.args.get('limit', 20), None, max_limit=current_app.config['AUDIT_MAX_LIMIT']
        )
    except ValueError as e:
        abort(400, description=str(e))
    entries = current_services().ledger.get_audit_history_for_target(target_type, target_id, limit)
    return {'target_type': target_type, 'target_id': target_id, 'logs': [e.to_dict() for e in entries]}


@admin_bp.post('/audit/verify')
@require_permissions(Permissions.AUDIT_READ)
def verify_audit():
    result = current_services().ledger.verify_audit_chain()
    add_audit('admin.audit.verify', 'system', after={'valid': result.valid, 'firstInvalidId': result.first_invalid_id})
    if not result.valid:
        abort(400, description=f'Audit chain integrity check failed: {result.error} (entry {result.first_invalid_id})')
    return {'valid': True, 'checked': result.checked, 'message': 'Audit chain integrity verified'}
