from __future__ import annotations
from typing import Any, Dict, Optional
from flask_jwt_extended import get_jwt_identity, get_jwt
from erp_core import get_db
from erp_core.models.audit import AuditLog


def add_audit(action: str, entity: Optional[str] = None, entity_id: Optional[str] = None, meta: Optional[Dict[str, Any]] = None, actor_user_id: Optional[int] = None, session=None):
    """Persist an audit log entry within the given (or current request) DB session.

    Parameters:
      action: short action code e.g. SEQUENCE.ISSUE, USER.ROLES.SET, PROVISION.COMPLETE
      entity: optional entity name (Sequence, User, ProvisioningRequest)
      entity_id: optional primary key string
      meta: additional JSON-safe dictionary (will be shallow copied)
      actor_user_id: explicit actor when running outside a request (e.g. queue processing)
    """
    session = session or get_db()
    claims = {}
    try:
        claims = get_jwt() or {}
    except Exception:
        pass  # no JWT context (e.g., provisioning worker or tests without auth) – keep empty
    actor = actor_user_id
    if actor is None:
        try:
            ident = get_jwt_identity()
            actor = int(ident) if ident is not None else None
        except Exception:
            actor = None
    log = AuditLog(
        actor_user_id=actor or 0,
        action=action,
        entity=entity,
        entity_id=str(entity_id) if entity_id is not None else None,
        roles_snapshot={'roles': claims.get('roles', [])},
        meta=dict(meta or {}),
    )
    session.add(log)
    # No commit here; caller's transaction boundary controls durability.
    return log
