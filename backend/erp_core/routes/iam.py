from flask import Blueprint, request, abort
from flask_jwt_extended import create_access_token, jwt_required
from sqlalchemy import select, delete
from erp_core.models.authz import User, UserRoleAssignment, UserPermissionOverride
from erp_core import get_db
from erp_core.constants.catalog import ROLE_DEFINITIONS, DEPARTMENT_DEFINITIONS, MODULE_DEFINITIONS, ACTION_LABELS
from erp_core.errors import InvalidArgument
from erp_core.services.claims import identity_from_jwt
from erp_core.services.permissions import (
    RoleAssignment, build_permission_profile, can_perform_action, get_highest_role, normalize_overrides, profile_to_json,
)
from erp_core.services.policy import compute_effective_permissions, load_user_access
from erp_core.decorators.audit import audit_log
from erp_core.decorators.auth import require_permission

iam_bp = Blueprint('iam', __name__)


@iam_bp.post('/auth/login')
def login():
    data = request.json or {}
    email = data.get('email'); password = data.get('password')
    if not email or not password:
        abort(400, description='email & password required')
    session = get_db()
    user = session.execute(select(User).where(User.email==email.strip().lower())).scalar_one_or_none()
    if not user or not user.is_active or not user.verify_password(password):
        abort(401, description='invalid credentials')
    claims = compute_effective_permissions(user.id)
    claims['email'] = user.email
    # JWT identity must be a string (flask-jwt-extended v4 requirement)
    token = create_access_token(identity=str(user.id), additional_claims=claims)
    return {'access_token': token}


@iam_bp.get('/auth/me')
@jwt_required()
def me():
    identity = identity_from_jwt()
    session = get_db()
    user = session.execute(select(User).where(User.id==identity.user_id)).scalar_one_or_none()
    if not user:
        abort(404)
    assignments, overrides = load_user_access(user)
    claims = identity.claims
    return {
        'id': user.id,
        'code': user.code,
        'name': user.name,
        'email': user.email,
        'primary_role': user.primary_role,
        'highest_role': get_highest_role(assignments),
        'roles': [a.to_dict() for a in assignments],
        'claims': {
            'roles': sorted(claims.roles) if claims.roles is not None else None,
            'departments': sorted(claims.departments) if claims.departments is not None else None,
            'modules': {m: sorted(a) for m, a in claims.modules.items()} if claims.modules is not None else None,
        },
        'permissions': profile_to_json(build_permission_profile(assignments, overrides=overrides)),
    }


@iam_bp.get('/catalog')
@jwt_required()
def catalog():
    return {
        'roles': [
            {'id': r.id, 'label': r.label, 'description': r.description, 'hierarchy': r.hierarchy}
            for r in sorted(ROLE_DEFINITIONS.values(), key=lambda r: -r.hierarchy)
        ],
        'departments': [{'id': d.id, 'label': d.label, 'description': d.description} for d in DEPARTMENT_DEFINITIONS.values()],
        'modules': [{'id': m.id, 'label': m.label, 'description': m.description} for m in MODULE_DEFINITIONS.values()],
        'actions': [{'id': a, 'label': label} for a, label in ACTION_LABELS.items()],
    }


def _optional_str(data, key):
    value = data.get(key)
    if value is not None and not isinstance(value, str):
        raise InvalidArgument(f'{key} must be a string')
    return value


def _parse_assignments(raw):
    if not isinstance(raw, list):
        raise InvalidArgument('roles must be a list of role assignments')
    return [RoleAssignment.from_dict(r) for r in raw]


@iam_bp.post('/permissions/preview')
@require_permission('users', 'view')
def preview_permissions():
    """What would this assignment set (optionally narrowed) be allowed to do."""
    data = request.json or {}
    assignments = _parse_assignments(data.get('roles') or [])
    profile = build_permission_profile(
        assignments,
        role_filter=_optional_str(data, 'role_filter'),
        department_filter=_optional_str(data, 'department_filter'),
        overrides=data.get('overrides'),
    )
    return {'highest_role': get_highest_role(assignments), 'permissions': profile_to_json(profile)}


@iam_bp.post('/permissions/check')
@require_permission('users', 'view')
def check_permissions():
    data = request.json or {}
    module = _optional_str(data, 'module'); action = _optional_str(data, 'action')
    if not module or not action:
        raise InvalidArgument('module and action required')
    allowed = can_perform_action(
        _parse_assignments(data.get('roles') or []),
        module,
        action,
        role_filter=_optional_str(data, 'role_filter'),
        department_filter=_optional_str(data, 'department_filter'),
        overrides=data.get('overrides'),
    )
    return {'module': module, 'action': action, 'allowed': allowed}


def _get_user(user_id: int) -> User:
    user = get_db().execute(select(User).where(User.id==user_id)).scalar_one_or_none()
    if not user:
        abort(404)
    return user


def _access_json(user: User):
    assignments, overrides = load_user_access(user)
    return {
        'user_id': user.id,
        'roles': [a.to_dict() for a in sorted(assignments, key=lambda a: a.role)],
        'overrides': {m: sorted(a) for m, a in sorted(overrides.items())},
        'permissions': profile_to_json(build_permission_profile(assignments, overrides=overrides)),
    }


@iam_bp.get('/users/<int:user_id>/permissions')
@require_permission('users', 'view')
def get_user_permissions(user_id: int):
    return _access_json(_get_user(user_id))


def _snapshot_access(user_id: int):
    user = get_db().execute(select(User).where(User.id==user_id)).scalar_one_or_none()
    return _access_json(user) if user else {}


def assert_not_removing_last_admin(user: User, new_roles):
    """At least one active user must keep the admin role."""
    if any(a.role == 'admin' for a in new_roles):
        return
    if not any(ra.role == 'admin' for ra in user.role_assignments):
        return
    session = get_db()
    other_admins = session.execute(
        select(UserRoleAssignment.user_id)
        .join(User, User.id == UserRoleAssignment.user_id)
        .where(UserRoleAssignment.role == 'admin', UserRoleAssignment.user_id != user.id, User.status == User.STATUS_ACTIVE)
    ).first()
    if other_admins is None:
        abort(400, description='Cannot remove last admin role')


@iam_bp.put('/users/<int:user_id>/roles')
@require_permission('users', 'update')
@audit_log('USER.ROLES.SET', entity='User', entity_id_key='user_id', diff_keys=['roles'],
           before=lambda a, kw: _snapshot_access(kw.get('user_id')))
def set_user_roles(user_id: int):
    user = _get_user(user_id)
    data = request.json or {}
    assignments = _parse_assignments(data.get('roles'))
    if len({a.role for a in assignments}) != len(assignments):
        raise InvalidArgument('roles must not repeat a role')
    assert_not_removing_last_admin(user, assignments)
    session = get_db()
    # Replace assignments
    session.execute(delete(UserRoleAssignment).where(UserRoleAssignment.user_id==user.id))
    for a in assignments:
        session.add(UserRoleAssignment(user_id=user.id, role=a.role, departments=sorted(a.departments), is_primary=a.is_primary))
    primary = next((a.role for a in assignments if a.is_primary), None)
    user.primary_role = primary or get_highest_role(assignments)
    session.commit()
    session.expire(user)
    return _access_json(user)


@iam_bp.put('/users/<int:user_id>/overrides')
@require_permission('users', 'approve')
@audit_log('USER.OVERRIDES.SET', entity='User', entity_id_key='user_id', diff_keys=['overrides'],
           before=lambda a, kw: _snapshot_access(kw.get('user_id')))
def set_user_overrides(user_id: int):
    """Replace the user's per-module overrides. A module listed with [] revokes it entirely."""
    user = _get_user(user_id)
    data = request.json or {}
    overrides = normalize_overrides(data.get('overrides') or {})
    session = get_db()
    session.execute(delete(UserPermissionOverride).where(UserPermissionOverride.user_id==user.id))
    for module, actions in overrides.items():
        session.add(UserPermissionOverride(user_id=user.id, module=module, actions=sorted(actions)))
    session.commit()
    session.expire(user)
    return _access_json(user)
