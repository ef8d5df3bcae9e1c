#!/usr/bin/env python
"""Idempotent bootstrap for the permission tables and the first admin account.

Usage:
    python backend/scripts/seed_authz.py                   # ensure schema + initial admin
    python backend/scripts/seed_authz.py --show-matrix     # print role -> module grant summary
    python backend/scripts/seed_authz.py --dry-run         # run logic then rollback (no DB changes)
    python backend/scripts/seed_authz.py --validate        # check stored assignments/overrides against catalogs
    python backend/scripts/seed_authz.py --export-json matrix.json
    python backend/scripts/seed_authz.py --fail-if-changed <sha256>
"""
from __future__ import annotations
import os, sys, argparse, textwrap, json, hashlib
from sqlalchemy import select, text

# Allow running from repo root
sys.path.append(os.path.abspath('backend'))

from erp_core import create_app, get_db, get_sequence_store  # type: ignore
from erp_core.constants.catalog import ACTIONS, DEPARTMENT_DEFINITIONS, MODULES, ROLE_DEFINITIONS, ROLE_PERMISSION_MATRIX
from erp_core.models.authz import Base, User, UserRoleAssignment, UserPermissionOverride
from erp_core.services.sequences import issue_sequence, peek_sequence


def ensure_schema(session):
    try:
        session.execute(text('SELECT 1 FROM users LIMIT 1'))
    except Exception:
        # Auto-create schema for bootstrap; in real env prefer alembic upgrade
        session.rollback()
        import erp_core.models  # noqa: F401  register every table
        Base.metadata.create_all(session.get_bind())
    finally:
        session.commit()


def ensure_initial_admin(session, dry_run: bool = False):
    """Create the first admin (code drawn from the USER sequence) if no admin assignment exists."""
    has_admin = session.execute(select(UserRoleAssignment).where(UserRoleAssignment.role=='admin')).first()
    if has_admin:
        return None
    admin_email = os.getenv('SEED_ADMIN_EMAIL', 'admin@example.com').lower()
    user = session.execute(select(User).where(User.email==admin_email)).scalar_one_or_none()
    if not user:
        # a dry run must not consume a number from the shared counter
        if dry_run:
            code = peek_sequence('USER')['formatted']
        else:
            code = issue_sequence('USER', get_sequence_store())['value']
        user = User(code=code, name='Administrator', email=admin_email, primary_role='admin')
        user.set_password(os.getenv('SEED_ADMIN_PASSWORD', 'ChangeMe123!'))
        session.add(user)
        session.flush()
    session.add(UserRoleAssignment(user_id=user.id, role='admin', departments=['management'], is_primary=True))
    print(f"[INFO] Granted admin to {admin_email} ({user.code}).")
    return user


def matrix_as_json():
    return {role: {m: sorted(ROLE_PERMISSION_MATRIX[role][m]) for m in MODULES} for role in ROLE_DEFINITIONS}


def matrix_checksum(payload) -> str:
    canonical = json.dumps(payload, sort_keys=True, separators=(',', ':'))
    return hashlib.sha256(canonical.encode('utf-8')).hexdigest()


def print_matrix_summary():
    name_w = max(len(r) for r in ROLE_DEFINITIONS)
    print(f"{'Role'.ljust(name_w)} | Rank | Grants | Modules with access")
    print('-' * (name_w + 50))
    for role in sorted(ROLE_DEFINITIONS.values(), key=lambda r: -r.hierarchy):
        row = ROLE_PERMISSION_MATRIX[role.id]
        grants = sum(len(a) for a in row.values())
        with_access = sum(1 for a in row.values() if a)
        print(f"{role.id.ljust(name_w)} | {str(role.hierarchy).rjust(4)} | {str(grants).rjust(6)} | {with_access}/{len(MODULES)}")


def find_problems(session):
    problems = []
    for ra in session.execute(select(UserRoleAssignment)).scalars().all():
        if ra.role not in ROLE_DEFINITIONS:
            problems.append(f"user {ra.user_id}: unknown role '{ra.role}'")
        for d in ra.departments or []:
            if d not in DEPARTMENT_DEFINITIONS:
                problems.append(f"user {ra.user_id}: unknown department '{d}' on role '{ra.role}'")
    for ov in session.execute(select(UserPermissionOverride)).scalars().all():
        if ov.module not in MODULES:
            problems.append(f"user {ov.user_id}: override for unknown module '{ov.module}'")
            continue
        for a in ov.actions or []:
            if a not in ACTIONS:
                import difflib
                suggestion = difflib.get_close_matches(a, ACTIONS, n=1)
                hint = f" (did you mean {suggestion[0]})" if suggestion else ''
                problems.append(f"user {ov.user_id}: unknown action '{a}' in {ov.module} override{hint}")
    return problems


def parse_args(argv=None):
    p = argparse.ArgumentParser(
        description="Bootstrap permission tables and initial admin",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=textwrap.dedent("""Examples:\n  seed normally: seed_authz.py\n  dry run: seed_authz.py --dry-run\n  show matrix: seed_authz.py --show-matrix\n""")
    )
    p.add_argument('--show-matrix', action='store_true', help='Print role grant summary')
    p.add_argument('--dry-run', action='store_true', help='Rollback after operations (no commit)')
    p.add_argument('--export-json', nargs='?', const='-', metavar='FILE', help='Export role->module->actions JSON (to FILE or stdout if omitted)')
    p.add_argument('--validate', action='store_true', help='Validate stored assignments & overrides; exits non-zero on problems')
    p.add_argument('--fail-if-changed', metavar='CHECKSUM', help='Exit 4 if the matrix checksum differs from provided value')
    return p.parse_args(argv)


def main(argv=None):
    args = parse_args(argv)
    app = create_app()
    with app.app_context():
        session = get_db()
        ensure_schema(session)
        try:
            ensure_initial_admin(session, dry_run=args.dry_run)
            if args.validate:
                problems = find_problems(session)
                if problems:
                    print('\n[VALIDATION] FAIL:')
                    for p in problems:
                        print(' -', p)
                    session.rollback()
                    sys.exit(2)
                print('[VALIDATION] OK: all stored assignments & overrides reference known catalog entries.')
            if args.dry_run:
                session.rollback()
                print('[DRY-RUN] (rolled back)')
            else:
                session.commit()
                print('[DONE]')
            if args.show_matrix:
                print('\nRole Matrix Summary:')
                print_matrix_summary()
            matrix = matrix_as_json()
            checksum = matrix_checksum(matrix)
            if args.fail_if_changed:
                if checksum != args.fail_if_changed:
                    print(f"[CHECKSUM] MISMATCH: expected {args.fail_if_changed} got {checksum}")
                    sys.exit(4)
                print(f"[CHECKSUM] OK: {checksum}")
            if args.export_json is not None:
                payload = {'matrix': matrix, 'meta': {'matrix_checksum_sha256': checksum, 'roles': list(ROLE_DEFINITIONS)}}
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

if __name__ == '__main__':
    main()
