from __future__ import annotations
from typing import Dict, FrozenSet, List, Optional, Sequence, Tuple
from flask import current_app
from sqlalchemy import select
from erp_core.models.authz import User
from erp_core.errors import PermissionDenied
from erp_core.services.claims import Identity, identity_from_jwt
from erp_core.services.permissions import RoleAssignment, normalize_overrides, profile_to_claims
from erp_core.services.resolvers import Resolver, Resolution, build_default_chain, resolve
from erp_core import get_db, get_session_factory


def load_user_access(user: User) -> Tuple[List[RoleAssignment], Dict[str, FrozenSet[str]]]:
    """Decode a user's persisted assignments and overrides into engine types.

    Stored rows were validated on write; a row naming a role or module that has since
    left the catalog raises here rather than being silently skipped.
    """
    assignments = [
        RoleAssignment.of(ra.role, ra.departments or [], ra.is_primary)
        for ra in user.role_assignments
    ]
    overrides = normalize_overrides({o.module: list(o.actions or []) for o in user.overrides})
    return assignments, overrides


def compute_effective_permissions(user_id: int) -> Optional[dict]:
    """Claims payload ``{roles, departments, modules}`` for a stored user, or None if absent."""
    session = get_db()
    user = session.execute(select(User).where(User.id==user_id)).scalar_one_or_none()
    if not user:
        return None
    assignments, overrides = load_user_access(user)
    return profile_to_claims(assignments, overrides)


def permission_chain() -> Sequence[Resolver]:
    return build_default_chain(current_app.config, get_session_factory())


def check_permission(identity: Identity, module: str, action: str, chain: Optional[Sequence[Resolver]] = None) -> Resolution:
    return resolve(identity, module, action, chain if chain is not None else permission_chain())


def require_permission(identity: Identity, module: str, action: str, chain: Optional[Sequence[Resolver]] = None) -> Resolution:
    resolution = check_permission(identity, module, action, chain)
    if not resolution.granted:
        raise PermissionDenied(f'Missing permission {module}:{action}')
    return resolution


def has_permission(module: str, action: str) -> bool:
    """Point check for the caller of the current request (JWT already verified)."""
    return check_permission(identity_from_jwt(), module, action).granted
