#!/usr/bin/env python
"""Idempotent seed script for the admin permission catalog & system roles.

Usage:
    python backend/scripts/seed_authz.py                          # seed normally
    python backend/scripts/seed_authz.py --show-roles             # print role -> permission counts (after ensuring seed)
    python backend/scripts/seed_authz.py --dry-run                # run logic then rollback (no DB changes)
    python backend/scripts/seed_authz.py --grant-superadmin USER  # attach role_superadmin to USER (audited as actor "system")
    python backend/scripts/seed_authz.py --verify-audit           # verify the audit hash chain, exit 3 when broken
"""
from __future__ import annotations
import os, sys, argparse, textwrap, json, hashlib
from sqlalchemy import text

# Allow running from repo root
sys.path.append(os.path.abspath('backend'))

from admin_trust import create_app, get_db  # type: ignore
from admin_trust.services.audit import AuditEventInput
from admin_trust.services.bootstrap import seed_catalog, build_role_permission_map
from admin_trust.services.registry import current_services

SUPERADMIN_ROLE_ID = 'role_superadmin'
SYSTEM_ACTOR = 'system'


def ensure_superadmin(services, user_id: str, actor_id: str = SYSTEM_ACTOR) -> bool:
    """Attach role_superadmin to user_id through RoleAdmin and record it in the audit ledger.

    Returns True when the grant was made, False when the role is missing or already held.
    """
    roles = services.roles
    if roles.get_role(SUPERADMIN_ROLE_ID) is None:
        print(f"[WARN] {SUPERADMIN_ROLE_ID} missing; skipping grant")
        return False
    before = [r.id for r in roles.get_user_roles(user_id)]
    if SUPERADMIN_ROLE_ID in before:
        return False
    if not roles.assign_role_to_user(user_id, SUPERADMIN_ROLE_ID):
        print(f"[ERROR] Could not grant {SUPERADMIN_ROLE_ID} to user {user_id}")
        return False
    services.ledger.write_audit_event(AuditEventInput(
        actor_id=actor_id,
        action='admin.user.role.assign',
        target_type='user',
        target_id=user_id,
        reason='seed_authz --grant-superadmin',
        before={'role_ids': before},
        after={'role_ids': [r.id for r in roles.get_user_roles(user_id)]},
    ))
    print(f"[INFO] Granted {SUPERADMIN_ROLE_ID} to user {user_id}.")
    return True


def print_role_summary(role_perm_map):
    if not role_perm_map:
        print("[INFO] No roles present.")
        return
    name_w = max(len(name) for name in role_perm_map)
    print(f"{'Role'.ljust(name_w)} | Count | Sample (up to 8)")
    print('-' * (name_w + 40))
    for name, perms in role_perm_map.items():
        print(f"{name.ljust(name_w)} | {str(len(perms)).rjust(5)} | {', '.join(perms[:8])}")


def parse_args():
    p = argparse.ArgumentParser(
        description="Seed admin RBAC permissions & system roles",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=textwrap.dedent("""Examples:\n  seed normally: seed_authz.py\n  dry run: seed_authz.py --dry-run\n  show roles: seed_authz.py --show-roles\n""")
    )
    p.add_argument('--show-roles', action='store_true', help='Print role permission counts after seeding')
    p.add_argument('--dry-run', action='store_true', help='Rollback after operations (no commit)')
    p.add_argument('--export-json', nargs='?', const='-', metavar='FILE', help='Export role->permissions JSON (to FILE or stdout if omitted)')
    p.add_argument('--grant-superadmin', metavar='USER_ID', default=os.getenv('SEED_SUPERADMIN_USER_ID'),
                   help='Assign role_superadmin to this user id (default: $SEED_SUPERADMIN_USER_ID)')
    p.add_argument('--verify-audit', action='store_true', help='Verify the audit hash chain; exits 3 on the first broken entry')
    return p.parse_args()


def main():
    args = parse_args()
    app = create_app()
    with app.app_context():
        session = get_db()
        try:
            # Ensure tables exist (lightweight fallback if migrations not run yet)
            session.execute(text('SELECT 1 FROM admin_permissions LIMIT 1'))
        except Exception:
            session.rollback()
            # Auto-create schema for bootstrap; in real env prefer alembic upgrade
            from admin_trust.models.authz import Base  # local import to avoid circular
            import admin_trust.models.audit  # noqa: F401
            engine = session.get_bind()
            Base.metadata.create_all(engine)
        finally:
            session.commit()

    with app.app_context():
        session = get_db()
        try:
            counts = seed_catalog(session)
            role_perm_map = build_role_permission_map(session)
            if args.dry_run:
                session.rollback()
                print(f"[DRY-RUN] (rolled back) Permissions would create: {counts['permissions_created']}, Roles would create: {counts['roles_created']}")
            else:
                session.commit()
                print(f"[DONE] Permissions created: {counts['permissions_created']}, Roles created: {counts['roles_created']}")
            if args.show_roles:
                print('\nRole Permission Summary:')
                print_role_summary(role_perm_map)

            if args.export_json is not None:
                # Deterministic checksum for build caching / change detection
                canonical = json.dumps(role_perm_map, sort_keys=True, separators=(',', ':'))
                checksum = hashlib.sha256(canonical.encode('utf-8')).hexdigest()
                payload = {
                    'roles': role_perm_map,
                    'meta': {
                        'permissions_total': sum(len(v) for v in role_perm_map.values()),
                        'distinct_permissions': len({p for plist in role_perm_map.values() for p in plist}),
                        'roles_checksum_sha256': checksum,
                        'role_names_sorted': sorted(role_perm_map.keys()),
                        'dry_run': args.dry_run,
                    }
                }
                if args.export_json == '-':
                    print(json.dumps(payload, indent=2, sort_keys=True))
                else:
                    with open(args.export_json, 'w', encoding='utf-8') as f:
                        json.dump(payload, f, indent=2, sort_keys=True)
                    print(f"[INFO] Exported JSON to {args.export_json}")
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

        if args.grant_superadmin:
            if args.dry_run:
                print(f"[DRY-RUN] Would grant {SUPERADMIN_ROLE_ID} to user {args.grant_superadmin}")
            else:
                ensure_superadmin(current_services(), args.grant_superadmin)

        if args.verify_audit:
            result = current_services().ledger.verify_audit_chain()
            if result.valid:
                print(f"[AUDIT] OK: {result.checked} entries verified")
            else:
                print(f"[AUDIT] FAIL at entry {result.first_invalid_id}: {result.error}")
                sys.exit(3)

if __name__ == '__main__':
    main()
