import sys
from sqlalchemy import select
from admin_trust import get_db
from admin_trust.constants.permissions import ALL_PERMISSION_KEYS
from admin_trust.models.audit import AuditEntry
from admin_trust.models.authz import UserRole
from admin_trust.services.bootstrap import seed_catalog, build_role_permission_map
from admin_trust.services.registry import build_services, current_services
from scripts import seed_authz
from scripts.seed_authz import ensure_superadmin, print_role_summary


def _seeded_services(session_factory):
    with session_factory() as session:
        seed_catalog(session)
        session.commit()
    return build_services(session_factory)


def test_grant_superadmin_goes_through_role_admin_and_is_audited(session_factory):
    services = _seeded_services(session_factory)
    assert services.resolver.get_user_permissions('ops-1') == frozenset()

    assert ensure_superadmin(services, 'ops-1') is True
    # cache entry invalidated by RoleAdmin
    assert services.resolver.get_user_permissions('ops-1') == ALL_PERMISSION_KEYS

    logs = services.ledger.query_audit_log().logs
    assert len(logs) == 1
    entry = logs[0].to_dict()
    assert entry['actor_id'] == 'system'
    assert entry['action'] == 'admin.user.role.assign'
    assert entry['target_type'] == 'user'
    assert entry['target_id'] == 'ops-1'
    assert entry['before'] == {'role_ids': []}
    assert entry['after'] == {'role_ids': ['role_superadmin']}
    assert services.ledger.verify_audit_chain().valid is True


def test_repeat_grant_is_a_no_op(session_factory):
    services = _seeded_services(session_factory)
    assert ensure_superadmin(services, 'ops-1') is True
    assert ensure_superadmin(services, 'ops-1') is False
    with session_factory() as session:
        rows = session.execute(select(UserRole).where(UserRole.user_id == 'ops-1')).scalars().all()
    assert [r.role_id for r in rows] == ['role_superadmin']
    assert services.ledger.get_audit_stats().total_events == 1


def test_grant_without_catalog_is_skipped(session_factory, capsys):
    services = build_services(session_factory)
    assert ensure_superadmin(services, 'ops-1') is False
    assert 'role_superadmin missing' in capsys.readouterr().out
    assert services.ledger.get_audit_stats().total_events == 0


def test_dry_run_grants_nothing(app_instance, monkeypatch, capsys):
    monkeypatch.setattr(seed_authz, 'create_app', lambda: app_instance)
    monkeypatch.setattr(sys, 'argv', ['seed_authz.py', '--dry-run', '--grant-superadmin', 'ops-9'])
    seed_authz.main()
    out = capsys.readouterr().out
    assert '[DRY-RUN] Would grant role_superadmin to user ops-9' in out
    assert '[INFO] Granted' not in out
    with app_instance.app_context():
        assert get_db().execute(select(UserRole)).scalars().all() == []
        assert get_db().execute(select(AuditEntry)).scalars().all() == []


def test_cli_grant_is_audited_and_chain_verifies(app_instance, monkeypatch, capsys):
    monkeypatch.setattr(seed_authz, 'create_app', lambda: app_instance)
    monkeypatch.setattr(sys, 'argv', ['seed_authz.py', '--grant-superadmin', 'ops-9', '--verify-audit'])
    seed_authz.main()
    out = capsys.readouterr().out
    assert '[INFO] Granted role_superadmin to user ops-9.' in out
    assert '[AUDIT] OK: 1 entries verified' in out
    with app_instance.app_context():
        assert current_services().resolver.has_permission('ops-9', 'admin.system.settings')


def test_role_summary_output(session_factory, capsys):
    print_role_summary({})
    assert 'No roles present' in capsys.readouterr().out
    with session_factory() as session:
        seed_catalog(session)
        print_role_summary(build_role_permission_map(session))
    out = capsys.readouterr().out
    assert 'superadmin' in out
    assert '   13 |' in out
