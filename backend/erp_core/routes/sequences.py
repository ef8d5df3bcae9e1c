from __future__ import annotations
from flask import Blueprint, current_app
from flask_jwt_extended import verify_jwt_in_request
from erp_core import get_sequence_store
from erp_core.constants.sequences import SEQUENCE_DEFINITIONS
from erp_core.decorators.audit import audit_log
from erp_core.decorators.auth import require_permission
from erp_core.errors import UnknownSequence
from erp_core.services.claims import identity_from_jwt
from erp_core.services.policy import require_permission as require_identity_permission
from erp_core.services.sequences import issue_sequence, list_sequences, peek_sequence, read_sequence_state

seq_bp = Blueprint('sequences', __name__)


@seq_bp.get('')
@require_permission('sequences', 'view')
def list_all():
    return {'data': list_sequences()}


@seq_bp.get('/<key>')
@require_permission('sequences', 'view')
def peek(key: str):
    """Seed preview only; the issued number may differ."""
    return peek_sequence(key)


@seq_bp.get('/<key>/state')
@require_permission('sequences', 'view')
def state(key: str):
    return read_sequence_state(key, get_sequence_store())


@seq_bp.post('/<key>/issue')
@audit_log('SEQUENCE.ISSUE', entity='Sequence', entity_id_key='key', meta_keys=['value', 'issued_number'])
def issue(key: str):
    verify_jwt_in_request()
    # Unknown keys fail before the store is touched
    definition = SEQUENCE_DEFINITIONS.get(key)
    if definition is None:
        raise UnknownSequence(f'Sequence {key} not found')
    # Issuing a number is part of creating the document it belongs to
    require_identity_permission(identity_from_jwt(), definition.module, 'create')
    result = issue_sequence(
        key,
        get_sequence_store(),
        max_retries=current_app.config['SEQUENCE_MAX_RETRIES'],
        base_delay=current_app.config['SEQUENCE_RETRY_BASE_DELAY'],
    )
    return result, 201
