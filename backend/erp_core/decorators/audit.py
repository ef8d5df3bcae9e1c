from __future__ import annotations
"""Audit logging decorator for route handlers.

Usage:

@audit_log('SEQUENCE.ISSUE', entity='Sequence', entity_id_key='key', meta_keys=['value', 'issued_number'])
def issue(key): ...

@audit_log('USER.ROLES.SET', entity='User', entity_id_arg='user_id',
           before=lambda a, kw: _snapshot_roles(kw['user_id']), diff_keys=['roles'])
def set_user_roles(user_id): ...

Parameters:
  action: audit action code
  entity: optional entity label (Sequence, User, ProvisioningRequest)
  entity_id_key: key of the returned JSON object used as entity_id
  entity_id_arg: view kwarg used as entity_id when entity_id_key is absent
  meta_keys: keys projected from the returned JSON into meta
  before / diff_keys: snapshot taken before the handler runs; changed keys are stored
    under meta['changes'] as {'before': ..., 'after': ...}

Handlers may return dict, (dict, status) or (dict, status, headers). Only successful
returns are audited; exceptions propagate untouched and nothing is written.
"""

import logging
from functools import wraps
from typing import Any, Callable, Dict, Iterable, Optional

from erp_core.services.audit import add_audit
from erp_core import get_db

log = logging.getLogger(__name__)


def audit_log(
    action: str,
    *,
    entity: Optional[str] = None,
    entity_id_key: Optional[str] = None,
    entity_id_arg: Optional[str] = None,
    meta_keys: Optional[Iterable[str]] = None,
    diff_keys: Optional[Iterable[str]] = None,
    before: Optional[Callable[[tuple, dict], Dict[str, Any]]] = None,
):
    def outer(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            snapshot = before(args, kwargs) if (before and diff_keys) else None
            rv = fn(*args, **kwargs)
            data = rv[0] if isinstance(rv, tuple) and rv else rv
            if not isinstance(data, dict):
                data = {}
            entity_id = data.get(entity_id_key) if entity_id_key else None
            if entity_id is None and entity_id_arg:
                entity_id = kwargs.get(entity_id_arg)
            meta = {k: data[k] for k in (meta_keys or ()) if k in data}
            if snapshot:
                changes = {
                    k: {'before': snapshot.get(k), 'after': data.get(k)}
                    for k in diff_keys
                    if k in snapshot and k in data and snapshot.get(k) != data.get(k)
                }
                if changes:
                    meta['changes'] = changes
            session = get_db()
            try:
                add_audit(action, entity, entity_id, meta, session=session)
                session.commit()
            except Exception:
                # the operation already committed; a lost audit row must not turn it into an error
                session.rollback()
                log.exception('Failed to write audit entry %s', action)
            return rv
        return wrapper
    return outer
