"""User provisioning queue.

Requests are enqueued as ``pending`` records and processed separately. Processing
authorizes the requester through the full resolver chain for ``users:create``
before validating the payload, and validates the payload before creating anything.

Outcomes (``state`` / ``error``):
  rejected / permission-denied   requester may not create users
  rejected / invalid-argument    required field missing or not in the catalogs
  failed   / already-exists      email or user code already taken
  failed   / internal            storage error while creating the account
  completed / None
"""
from __future__ import annotations
import logging
from datetime import datetime, timezone
from typing import Optional, Sequence

from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from erp_core.errors import AlreadyExists, InvalidArgument
from erp_core.models.authz import User, UserPermissionOverride, UserRoleAssignment
from erp_core.models.provisioning import ProvisioningRequest
from erp_core.services.audit import add_audit
from erp_core.services.claims import Identity, decode_claims_or_empty
from erp_core.services.permissions import RoleAssignment, normalize_overrides, validate_department, validate_role
from erp_core.services.resolvers import Resolver, resolve
from erp_core.utils.fsm import TransitionValidator
from erp_core.utils.validation import require_fields, validate_choice, validate_email

log = logging.getLogger(__name__)

PROVISION_FSM = TransitionValidator({
    ProvisioningRequest.STATE_PENDING: {
        ProvisioningRequest.STATE_COMPLETED,
        ProvisioningRequest.STATE_REJECTED,
        ProvisioningRequest.STATE_FAILED,
    },
    ProvisioningRequest.STATE_COMPLETED: set(),
    ProvisioningRequest.STATE_REJECTED: set(),
    ProvisioningRequest.STATE_FAILED: set(),
}, field_name='state')

REQUIRED_FIELDS = ('id', 'name', 'email', 'primaryRole', 'status', 'roles')


def requester_can_create_users(identity: Identity, chain: Sequence[Resolver]) -> bool:
    return resolve(identity, 'users', 'create', chain).granted


def enqueue_request(session, identity: Identity, payload: dict, raw_claims: Optional[dict] = None) -> ProvisioningRequest:
    if not isinstance(payload, dict):
        raise InvalidArgument('payload must be an object')
    req = ProvisioningRequest(
        requested_by=(identity.email or '').lower(),
        requested_by_uid=str(identity.user_id) if identity.user_id is not None else None,
        requester_claims=dict(raw_claims or {}),
        payload=payload,
        state=ProvisioningRequest.STATE_PENDING,
    )
    session.add(req)
    session.flush()
    return req


def _requester_identity(req: ProvisioningRequest) -> Identity:
    try:
        user_id = int(req.requested_by_uid) if req.requested_by_uid else None
    except ValueError:
        user_id = None
    return Identity(
        user_id=user_id,
        email=req.requested_by or None,
        claims=decode_claims_or_empty(req.requester_claims or None),
    )


def parse_payload(payload: dict) -> dict:
    """Validate a provisioning payload and return it in engine types."""
    require_fields(payload, REQUIRED_FIELDS)
    # departments must be sent, but an empty list is a valid answer
    if 'departments' not in payload:
        raise InvalidArgument('missing required fields: departments')
    primary_role = validate_role(payload['primaryRole'])
    departments = payload['departments']
    if not isinstance(departments, list):
        raise InvalidArgument('departments must be a list')
    for d in departments:
        validate_department(d)
    raw_roles = payload['roles']
    if not isinstance(raw_roles, list):
        raise InvalidArgument('roles must be a non-empty list')
    assignments = [RoleAssignment.from_dict(r) for r in raw_roles]
    if len({a.role for a in assignments}) != len(assignments):
        raise InvalidArgument('roles must not repeat a role')
    if primary_role not in {a.role for a in assignments}:
        raise InvalidArgument('primaryRole must be one of the assigned roles')
    code = payload['id']
    if not isinstance(code, str):
        raise InvalidArgument('id must be a string')
    return {
        'code': code.strip(),
        'name': str(payload['name']).strip(),
        'email': validate_email(payload['email']),
        'primary_role': primary_role,
        'status': validate_choice(payload['status'], User.ALL_STATUSES, 'status'),
        'assignments': assignments,
        'overrides': normalize_overrides(payload.get('overrides')),
        'password': payload.get('password'),
    }


def _finish(req: ProvisioningRequest, state: str, error: Optional[str] = None):
    PROVISION_FSM.assert_can_transition(req.state, state)
    req.state = state
    req.error = error
    req.completed_at = datetime.now(timezone.utc)


def _create_user(session, parsed: dict) -> User:
    clash = session.execute(
        select(User).where(or_(User.email == parsed['email'], User.code == parsed['code']))
    ).scalars().first()
    if clash:
        raise AlreadyExists(f"user {parsed['email']} / {parsed['code']} already exists")
    user = User(
        code=parsed['code'],
        name=parsed['name'],
        email=parsed['email'],
        status=parsed['status'],
        primary_role=parsed['primary_role'],
    )
    if parsed['password']:
        user.set_password(str(parsed['password']))
    for a in parsed['assignments']:
        user.role_assignments.append(UserRoleAssignment(
            role=a.role,
            departments=sorted(a.departments),
            is_primary=a.is_primary or a.role == parsed['primary_role'],
        ))
    for module, actions in parsed['overrides'].items():
        user.overrides.append(UserPermissionOverride(module=module, actions=sorted(actions)))
    session.add(user)
    session.flush()
    return user


def process_request(session, request_id: int, chain: Sequence[Resolver]) -> ProvisioningRequest:
    """Process one pending request; the request row always ends in a terminal state."""
    req = session.get(ProvisioningRequest, request_id)
    if req is None:
        raise InvalidArgument(f'unknown provisioning request {request_id}')
    PROVISION_FSM.assert_can_transition(req.state, ProvisioningRequest.STATE_COMPLETED)
    requester = _requester_identity(req)

    if not requester_can_create_users(requester, chain):
        _finish(req, ProvisioningRequest.STATE_REJECTED, 'permission-denied')
        log.info('Provisioning request %s rejected: requester %s lacks users:create', req.id, req.requested_by)
    else:
        try:
            parsed = parse_payload(req.payload or {})
        except InvalidArgument as e:
            _finish(req, ProvisioningRequest.STATE_REJECTED, 'invalid-argument')
            log.info('Provisioning request %s rejected: %s', req.id, e.detail)
        else:
            try:
                user = _create_user(session, parsed)
                req.created_user_id = user.id
                _finish(req, ProvisioningRequest.STATE_COMPLETED)
                log.info('Provisioning request %s completed: user %s', req.id, user.code)
            except AlreadyExists as e:
                _finish(req, ProvisioningRequest.STATE_FAILED, e.code)
                log.info('Provisioning request %s failed: %s', req.id, e.detail)
            except SQLAlchemyError as e:
                # the half-created user is discarded with the rollback; reload the request row
                session.rollback()
                req = session.get(ProvisioningRequest, request_id)
                error = AlreadyExists.code if isinstance(e, IntegrityError) else 'internal'
                log.exception('Provisioning request %s failed while creating the account', request_id)
                _finish(req, ProvisioningRequest.STATE_FAILED, error)

    add_audit(
        f'PROVISION.{req.state.upper()}', 'ProvisioningRequest', req.id,
        {'error': req.error, 'created_user_id': req.created_user_id},
        actor_user_id=requester.user_id, session=session,
    )
    session.commit()
    return req


def process_pending(session, chain: Sequence[Resolver], limit: int = 50) -> list:
    ids = session.execute(
        select(ProvisioningRequest.id)
        .where(ProvisioningRequest.state == ProvisioningRequest.STATE_PENDING)
        .order_by(ProvisioningRequest.id.asc())
        .limit(limit)
    ).scalars().all()
    return [process_request(session, rid, chain) for rid in ids]


def request_json(req: ProvisioningRequest) -> dict:
    payload = req.payload or {}
    return {
        'id': req.id,
        'code': payload.get('id'),
        'name': payload.get('name'),
        'email': payload.get('email'),
        'primary_role': payload.get('primaryRole'),
        'departments': payload.get('departments') or [],
        'status': payload.get('status') or User.STATUS_ACTIVE,
        'requested_by': req.requested_by,
        'requested_by_uid': req.requested_by_uid,
        'state': req.state,
        'error': req.error,
        'created_user_id': req.created_user_id,
        'created_at': req.created_at.isoformat() if req.created_at else None,
        'completed_at': req.completed_at.isoformat() if req.completed_at else None,
    }


__all__ = [
    'PROVISION_FSM', 'REQUIRED_FIELDS', 'requester_can_create_users', 'enqueue_request', 'parse_payload',
    'process_request', 'process_pending', 'request_json',
]
