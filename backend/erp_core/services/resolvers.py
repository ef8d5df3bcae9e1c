"""Permission precedence as an explicit chain of resolver strategies.

Each resolver answers GRANT, DENY or INCONCLUSIVE for (identity, module, action).
The chain is walked in order and stops at the first conclusive answer; a DENY is
final and is never rescued by a later tier. When every tier is inconclusive the
answer is DENY.

Default order:
  1. elevated role claim (e.g. admin)      -> GRANT, else inconclusive
  2. module action list from claims        -> GRANT / DENY, inconclusive if module absent
  3. profile rebuilt from persisted record -> GRANT / DENY, inconclusive if no record
  4. static bootstrap allow-list           -> GRANT, else inconclusive
"""
from __future__ import annotations
import enum
import logging
from dataclasses import dataclass
from typing import Callable, Iterable, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from erp_core.models.authz import User
from erp_core.services.claims import Identity
from erp_core.services.permissions import can_perform_action, validate_action, validate_module

log = logging.getLogger(__name__)


class Decision(enum.Enum):
    GRANT = 'grant'
    DENY = 'deny'
    INCONCLUSIVE = 'inconclusive'


@dataclass(frozen=True)
class Resolution:
    decision: Decision
    source: str

    @property
    def granted(self) -> bool:
        return self.decision is Decision.GRANT


class Resolver:
    name = 'resolver'

    def resolve(self, identity: Identity, module: str, action: str) -> Decision:
        raise NotImplementedError


class ElevatedRoleResolver(Resolver):
    name = 'elevated-role'

    def __init__(self, elevated_roles: Iterable[str] = ('admin',)):
        self.elevated_roles = frozenset(elevated_roles)

    def resolve(self, identity, module, action):
        roles = identity.claims.roles
        if roles and roles & self.elevated_roles:
            return Decision.GRANT
        return Decision.INCONCLUSIVE


class ModuleClaimResolver(Resolver):
    name = 'module-claims'

    def resolve(self, identity, module, action):
        modules = identity.claims.modules
        if modules is None or module not in modules:
            return Decision.INCONCLUSIVE
        return Decision.GRANT if action in modules[module] else Decision.DENY


class PersistedAssignmentResolver(Resolver):
    """Rebuild the profile from the user's stored role assignments and overrides."""
    name = 'persisted-record'

    def __init__(self, session_factory: Callable):
        self.session_factory = session_factory

    def resolve(self, identity, module, action):
        if identity.user_id is None and not identity.email:
            return Decision.INCONCLUSIVE
        from erp_core.services.policy import load_user_access  # local import to avoid cycle
        session = self.session_factory()
        try:
            if identity.user_id is not None:
                user = session.get(User, identity.user_id)
            else:
                user = session.execute(select(User).where(User.email == identity.email.lower())).scalar_one_or_none()
            if user is None or not user.is_active:
                return Decision.INCONCLUSIVE
            assignments, overrides = load_user_access(user)
            if not assignments and not overrides:
                return Decision.INCONCLUSIVE
            allowed = can_perform_action(assignments, module, action, overrides=overrides)
            return Decision.GRANT if allowed else Decision.DENY
        except SQLAlchemyError:
            log.exception('Persisted permission lookup failed for user %s', identity.user_id)
            return Decision.INCONCLUSIVE
        finally:
            session.close()


class StaticAllowListResolver(Resolver):
    """Bootstrap safety net: identities listed here may act before any record exists."""
    name = 'static-allow-list'

    def __init__(self, emails: Iterable[str] = ()):
        self.emails = frozenset(e.strip().lower() for e in emails if e and e.strip())

    def resolve(self, identity, module, action):
        if identity.email and identity.email.lower() in self.emails:
            return Decision.GRANT
        return Decision.INCONCLUSIVE


def build_default_chain(config, session_factory: Optional[Callable]) -> Sequence[Resolver]:
    chain = [
        ElevatedRoleResolver(config.get('ELEVATED_ROLES', ('admin',))),
        ModuleClaimResolver(),
    ]
    if session_factory is not None:
        chain.append(PersistedAssignmentResolver(session_factory))
    chain.append(StaticAllowListResolver(config.get('BOOTSTRAP_ADMIN_EMAILS', ())))
    return chain


def resolve(identity: Identity, module: str, action: str, chain: Sequence[Resolver]) -> Resolution:
    validate_module(module)
    validate_action(action)
    for resolver in chain:
        decision = resolver.resolve(identity, module, action)
        if decision is not Decision.INCONCLUSIVE:
            log.debug('%s/%s for user %s: %s by %s', module, action, identity.user_id, decision.value, resolver.name)
            return Resolution(decision, resolver.name)
    return Resolution(Decision.DENY, 'default-deny')


__all__ = [
    'Decision', 'Resolution', 'Resolver', 'ElevatedRoleResolver', 'ModuleClaimResolver',
    'PersistedAssignmentResolver', 'StaticAllowListResolver', 'build_default_chain', 'resolve',
]
