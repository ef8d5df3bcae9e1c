from __future__ import annotations
from flask import Blueprint, request, abort
from flask_jwt_extended import jwt_required, get_jwt
from erp_core import get_db
from erp_core.config.pagination import normalize_pagination
from erp_core.decorators.audit import audit_log
from erp_core.decorators.auth import require_permission
from erp_core.models.provisioning import ProvisioningRequest
from erp_core.services.claims import identity_from_jwt
from erp_core.services.policy import permission_chain
from erp_core.services.provisioning import enqueue_request, process_pending, process_request, request_json

prov_bp = Blueprint('provisioning', __name__)


@prov_bp.post('')
@jwt_required()
@audit_log('PROVISION.ENQUEUE', entity='ProvisioningRequest', entity_id_key='id', meta_keys=['email', 'primary_role'])
def enqueue():
    """Queue a user-creation request; authorization happens when it is processed."""
    data = request.json or {}
    payload = data.get('payload', data)
    raw_claims = {k: v for k, v in (get_jwt() or {}).items() if k in ('roles', 'departments', 'modules')}
    session = get_db()
    req = enqueue_request(session, identity_from_jwt(), payload, raw_claims)
    session.commit()
    return request_json(req), 201


@prov_bp.get('')
@require_permission('users', 'approve')
def list_requests():
    session = get_db()
    q = session.query(ProvisioningRequest)
    state = request.args.get('state')
    if state:
        if state not in ProvisioningRequest.ALL_STATES:
            abort(400, description='state invalid')
        q = q.filter(ProvisioningRequest.state==state)
    try:
        limit, offset = normalize_pagination(request.args.get('limit'), request.args.get('offset'))
    except ValueError as e:
        abort(400, description=str(e))
    total = q.count()
    rows = q.order_by(ProvisioningRequest.id.desc()).offset(offset).limit(limit).all()
    return {
        'data': [request_json(r) for r in rows],
        'pagination': {
            'total': total,
            'limit': limit,
            'offset': offset,
            'returned': len(rows)
        }
    }


@prov_bp.get('/<int:request_id>')
@require_permission('users', 'approve')
def get_request(request_id: int):
    req = get_db().get(ProvisioningRequest, request_id)
    if not req:
        abort(404)
    return request_json(req)


@prov_bp.post('/<int:request_id>/process')
@require_permission('users', 'approve')
def process_one(request_id: int):
    session = get_db()
    if not session.get(ProvisioningRequest, request_id):
        abort(404)
    req = process_request(session, request_id, permission_chain())
    return request_json(req)


@prov_bp.post('/process')
@require_permission('users', 'approve')
def process_all():
    session = get_db()
    done = process_pending(session, permission_chain())
    return {'data': [request_json(r) for r in done]}
