"""Domain error taxonomy.

Every error carries an HTTP status and a stable machine code so the Flask error
handler in ``erp_core.create_app`` can render the standard JSON envelope and
the provisioning queue can persist the code on failed requests.
"""
from __future__ import annotations
from typing import Optional


class ErpError(Exception):
    status = 500
    code = 'internal'
    title = 'Internal Server Error'

    def __init__(self, detail: Optional[str] = None):
        super().__init__(detail or self.title)
        self.detail = detail or self.title


class InvalidArgument(ErpError):
    status = 400
    code = 'invalid-argument'
    title = 'Invalid Argument'


class UnknownModule(InvalidArgument):
    code = 'unknown-module'
    title = 'Unknown Module'


class UnknownAction(InvalidArgument):
    code = 'unknown-action'
    title = 'Unknown Action'


class UnknownRole(InvalidArgument):
    code = 'unknown-role'
    title = 'Unknown Role'


class UnknownDepartment(InvalidArgument):
    code = 'unknown-department'
    title = 'Unknown Department'


class UnknownSequence(ErpError):
    status = 404
    code = 'unknown-sequence'
    title = 'Unknown Sequence'


class SequenceStoreConflict(ErpError):
    """Transient write conflict; retried inside the issuer, never surfaced on success."""
    status = 409
    code = 'sequence-conflict'
    title = 'Sequence Conflict'


class SequenceStoreUnavailable(ErpError):
    status = 503
    code = 'sequence-unavailable'
    title = 'Sequence Store Unavailable'


class PermissionDenied(ErpError):
    status = 403
    code = 'permission-denied'
    title = 'Forbidden'


class InvalidClaims(ErpError):
    status = 401
    code = 'invalid-claims'
    title = 'Invalid Claims'


class AlreadyExists(ErpError):
    status = 409
    code = 'already-exists'
    title = 'Conflict'


__all__ = [
    'ErpError', 'InvalidArgument', 'UnknownModule', 'UnknownAction', 'UnknownRole', 'UnknownDepartment',
    'UnknownSequence', 'SequenceStoreConflict', 'SequenceStoreUnavailable', 'PermissionDenied',
    'InvalidClaims', 'AlreadyExists',
]
