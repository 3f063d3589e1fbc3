import logging
from sqlalchemy import update
from admin_trust import get_db
from admin_trust.errors import AuditWriteError
from admin_trust.models.audit import AuditEntry
from admin_trust.models.authz import UserRole
from admin_trust.services.bootstrap import seed_catalog
from admin_trust.services.registry import current_services
from tests.test_utils_seed import ensure_user, ensure_user_role


def _seed(session, **assignments):
    seed_catalog(session)
    session.commit()
    for user_id, role_id in assignments.items():
        ensure_user(session, user_id)
        ensure_user_role(session, user_id, role_id)


def _audit_entries(action=None):
    session = get_db()
    q = session.query(AuditEntry).order_by(AuditEntry.id)
    if action:
        q = q.filter_by(action=action)
    return q.all()


def test_unauthenticated_request_rejected(client):
    r = client.get('/admin/roles')
    assert r.status_code == 401


def test_missing_permission_names_key(client, app_context, auth_headers):
    _seed(get_db(), mod='role_moderator')
    r = client.get('/admin/audit', headers=auth_headers('mod'))
    assert r.status_code == 403
    err = r.get_json()['error']
    assert err['status'] == 403
    assert err['detail'] == 'Missing required permission: admin.audit.read'
    # moderator can still read roles
    assert client.get('/admin/roles', headers=auth_headers('mod')).status_code == 200


def test_me_lists_effective_permissions(client, app_context, auth_headers):
    _seed(get_db(), ro='role_readonly')
    body = client.get('/admin/me', headers=auth_headers('ro')).get_json()
    assert body['id'] == 'ro'
    assert [r['id'] for r in body['roles']] == ['role_readonly']
    assert body['permissions'] == sorted([
        'admin.stats.read', 'admin.activity.read', 'admin.audit.read', 'admin.users.read',
    ])


def test_catalog_listing(client, app_context, auth_headers):
    _seed(get_db(), root='role_superadmin')
    perms = client.get('/admin/permissions', headers=auth_headers('root')).get_json()['data']
    assert len(perms) == 13
    roles = client.get('/admin/roles', headers=auth_headers('root')).get_json()['data']
    superadmin = next(r for r in roles if r['id'] == 'role_superadmin')
    assert len(superadmin['permissions']) == 13
    assert all(r['is_system'] for r in roles)


def test_role_lifecycle_is_audited(client, app_context, auth_headers):
    _seed(get_db(), root='role_superadmin')
    h = auth_headers('root')

    r = client.post('/admin/roles', json={'name': 'Content Editor', 'description': 'Edits docs'}, headers=h)
    assert r.status_code == 201
    assert r.get_json()['id'] == 'role_content_editor'
    assert client.post('/admin/roles', json={'name': 'Content Editor'}, headers=h).status_code == 409
    assert client.post('/admin/roles', json={}, headers=h).status_code == 400

    created = _audit_entries('admin.role.create')
    assert len(created) == 1
    assert created[0].actor_id == 'root'
    assert created[0].target_type == 'role'
    assert created[0].target_id == 'role_content_editor'
    assert created[0].to_dict()['after']['name'] == 'Content Editor'

    r = client.put('/admin/roles/role_content_editor/permissions/perm_users_read', headers=h)
    assert r.status_code == 200
    assert r.get_json()['permissions'] == ['admin.users.read']
    assign = _audit_entries('admin.role.permission.assign')[0].to_dict()
    assert assign['before'] == {'permissions': []}
    assert assign['after'] == {'permissions': ['admin.users.read']}

    assert client.put('/admin/roles/role_content_editor/permissions/perm_nope', headers=h).status_code == 404
    assert client.get('/admin/roles/role_content_editor/permissions', headers=h).get_json()['data'][0]['key'] == 'admin.users.read'

    r = client.delete('/admin/roles/role_content_editor/permissions/perm_users_read', headers=h)
    assert r.status_code == 200
    assert r.get_json()['permissions'] == []

    r = client.delete('/admin/roles/role_content_editor', headers=h)
    assert r.status_code == 200
    deleted = _audit_entries('admin.role.delete')[0].to_dict()
    assert deleted['before']['id'] == 'role_content_editor'

    assert client.get('/admin/audit/verify', headers=h).status_code == 405
    assert client.post('/admin/audit/verify', headers=h).get_json()['valid'] is True


def test_system_role_delete_conflict_and_unknown_role(client, app_context, auth_headers):
    _seed(get_db(), root='role_superadmin')
    h = auth_headers('root')
    r = client.delete('/admin/roles/role_admin', headers=h)
    assert r.status_code == 409
    assert r.get_json()['error']['detail'] == 'System roles cannot be deleted'
    r = client.delete('/admin/roles/role_missing', headers=h)
    assert r.status_code == 404
    assert r.get_json()['error']['title'] == 'Not Found'
    assert _audit_entries('admin.role.delete') == []


def test_user_role_assignment_requires_reason(client, app_context, auth_headers):
    _seed(get_db(), root='role_superadmin')
    h = auth_headers('root')
    r = client.put('/admin/users/u-9/roles/role_moderator', json={}, headers=h)
    assert r.status_code == 400
    assert r.get_json()['error']['detail'] == 'Reason is required for role changes'
    assert client.get('/admin/users/u-9/permissions', headers=h).get_json()['permissions'] == []

    r = client.put('/admin/users/u-9/roles/role_moderator', json={'reason': 'on-call rotation'},
                   headers={**h, 'X-Forwarded-For': '203.0.113.5, 10.0.0.1', 'User-Agent': 'pytest-agent'})
    assert r.status_code == 200
    assert r.get_json()['role_ids'] == ['role_moderator']
    perms = client.get('/admin/users/u-9/permissions', headers=h).get_json()['permissions']
    assert 'admin.users.write.ban' in perms

    entry = _audit_entries('admin.user.role.assign')[0]
    assert entry.reason == 'on-call rotation'
    assert entry.target_id == 'u-9'
    assert entry.ip_address == '203.0.113.5'
    assert entry.user_agent == 'pytest-agent'
    assert entry.to_dict()['before'] == {'role_ids': []}

    assert client.put('/admin/users/u-9/roles/role_ghost', json={'reason': 'x'}, headers=h).status_code == 404

    r = client.delete('/admin/users/u-9/roles/role_moderator', json={'reason': 'rotation ended'}, headers=h)
    assert r.status_code == 200
    assert r.get_json()['role_ids'] == []
    assert client.get('/admin/users/u-9/permissions', headers=h).get_json()['permissions'] == []


def test_role_change_takes_effect_without_waiting_for_ttl(client, app_context, auth_headers):
    _seed(get_db(), root='role_superadmin', helper='role_readonly')
    assert client.post('/admin/roles', json={'name': 'x'}, headers=auth_headers('helper')).status_code == 403
    client.put('/admin/roles/role_readonly/permissions/perm_system_settings', headers=auth_headers('root'))
    assert client.post('/admin/roles', json={'name': 'x'}, headers=auth_headers('helper')).status_code == 201


def test_audit_listing_and_stats(client, app_context, auth_headers):
    _seed(get_db(), root='role_superadmin')
    h = auth_headers('root')
    for name in ('one', 'two', 'three'):
        client.post('/admin/roles', json={'name': name}, headers=h)

    r = client.get('/admin/audit?limit=2&action=admin.role.create', headers=h)
    body = r.get_json()
    assert r.status_code == 200
    assert body['total'] == 3
    assert body['hasMore'] is True
    assert body['pagination'] == {'limit': 2, 'offset': 0}
    assert [log['target_id'] for log in body['logs']] == ['role_three', 'role_two']

    assert client.get('/admin/audit?limit=abc', headers=h).status_code == 400
    r = client.get('/admin/audit?startDate=last-tuesday', headers=h)
    assert r.status_code == 400
    assert 'Invalid ISO-8601 timestamp' in r.get_json()['error']['detail']

    view = _audit_entries('admin.audit.view')
    assert len(view) == 1
    assert view[0].to_dict()['after']['filters']['action'] == 'admin.role.create'

    stats = client.get('/admin/audit/stats', headers=h).get_json()
    assert stats['actionsBreakdown']['admin.role.create'] == 3
    assert stats['actionsBreakdown']['admin.audit.view'] == 1
    assert stats['uniqueActors'] == 1
    assert stats['totalEvents'] == 4

    history = client.get('/admin/audit/history/role/role_two', headers=h).get_json()
    assert [log['action'] for log in history['logs']] == ['admin.role.create']


def test_verify_reports_tampering(client, app_context, auth_headers):
    _seed(get_db(), root='role_superadmin')
    h = auth_headers('root')
    client.post('/admin/roles', json={'name': 'alpha'}, headers=h)
    client.post('/admin/roles', json={'name': 'beta'}, headers=h)
    assert client.post('/admin/audit/verify', headers=h).status_code == 200

    first = _audit_entries('admin.role.create')[0]
    session = get_db()
    session.execute(update(AuditEntry).where(AuditEntry.id == first.id).values(actor_id='someone-else'))
    session.commit()

    r = client.post('/admin/audit/verify', headers=h)
    assert r.status_code == 400
    assert r.get_json()['error']['detail'] == (
        f'Audit chain integrity check failed: Hash mismatch at entry {first.id} (entry {first.id})'
    )


def test_failed_audit_write_returns_500_and_logs_committed_change(client, app_context, auth_headers, monkeypatch, caplog):
    _seed(get_db(), root='role_superadmin')
    ledger = current_services().ledger

    def broken_write(event):
        raise AuditWriteError('Failed to write audit event')

    monkeypatch.setattr(ledger, 'write_audit_event', broken_write)
    with caplog.at_level(logging.ERROR, logger='admin_trust.decorators.audit'):
        r = client.post('/admin/roles', json={'name': 'orphan'}, headers=auth_headers('root'))
    assert r.status_code == 500
    assert current_services().roles.get_role('role_orphan') is not None
    messages = [rec.getMessage() for rec in caplog.records if rec.name == 'admin_trust.decorators.audit']
    assert any('Unaudited mutation committed: action=admin.role.create target=role/role_orphan' in m for m in messages)


def test_healthz(client):
    assert client.get('/healthz').get_json() == {'status': 'ok'}
