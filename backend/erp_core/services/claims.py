"""Strict decoding of permission claims carried by an access token.

Token claims arrive as loosely-typed JSON. They are decoded here, once, into
``PermissionClaims``; anything structurally wrong raises ``InvalidClaims`` and
callers fail closed (no claims) rather than guessing.
"""
from __future__ import annotations
import logging
from dataclasses import dataclass
from typing import Dict, FrozenSet, Mapping, Optional

from erp_core.constants.catalog import ACTIONS, DEPARTMENT_DEFINITIONS, MODULES, ROLE_DEFINITIONS
from erp_core.errors import InvalidClaims

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class PermissionClaims:
    roles: Optional[FrozenSet[str]] = None
    departments: Optional[FrozenSet[str]] = None
    modules: Optional[Mapping[str, FrozenSet[str]]] = None


EMPTY_CLAIMS = PermissionClaims()


@dataclass(frozen=True)
class Identity:
    """An already-verified caller."""
    user_id: Optional[int]
    email: Optional[str]
    claims: PermissionClaims = EMPTY_CLAIMS


def _id_list(raw, name: str, allowed) -> FrozenSet[str]:
    if not isinstance(raw, list):
        raise InvalidClaims(f'{name} claim must be a list')
    for item in raw:
        if not isinstance(item, str) or item not in allowed:
            raise InvalidClaims(f'{name} claim contains unknown value {item!r}')
    return frozenset(raw)


def decode_claims(raw: Optional[Mapping]) -> PermissionClaims:
    if raw is None:
        return EMPTY_CLAIMS
    if not isinstance(raw, Mapping):
        raise InvalidClaims('claims must be an object')
    roles = raw.get('roles')
    departments = raw.get('departments')
    modules = raw.get('modules')

    decoded_modules: Optional[Dict[str, FrozenSet[str]]] = None
    if modules is not None:
        if not isinstance(modules, Mapping):
            raise InvalidClaims('modules claim must be an object')
        decoded_modules = {}
        for module, actions in modules.items():
            if module not in MODULES:
                raise InvalidClaims(f'modules claim contains unknown module {module!r}')
            decoded_modules[module] = _id_list(actions, f'modules.{module}', ACTIONS)

    return PermissionClaims(
        roles=_id_list(roles, 'roles', ROLE_DEFINITIONS) if roles is not None else None,
        departments=_id_list(departments, 'departments', DEPARTMENT_DEFINITIONS) if departments is not None else None,
        modules=decoded_modules,
    )


def decode_claims_or_empty(raw: Optional[Mapping]) -> PermissionClaims:
    try:
        return decode_claims(raw)
    except InvalidClaims as e:
        log.warning('Discarding invalid permission claims: %s', e.detail)
        return EMPTY_CLAIMS


def identity_from_jwt() -> Identity:
    """Build the caller identity from the verified JWT of the current request."""
    from flask_jwt_extended import get_jwt, get_jwt_identity
    jwt_claims = get_jwt() or {}
    ident = get_jwt_identity()
    try:
        user_id = int(ident) if ident is not None else None
    except (TypeError, ValueError):
        user_id = None
    raw = {k: jwt_claims[k] for k in ('roles', 'departments', 'modules') if k in jwt_claims}
    email = jwt_claims.get('email')
    return Identity(
        user_id=user_id,
        email=email if isinstance(email, str) else None,
        claims=decode_claims_or_empty(raw),
    )


__all__ = ['PermissionClaims', 'EMPTY_CLAIMS', 'Identity', 'decode_claims', 'decode_claims_or_empty', 'identity_from_jwt']
