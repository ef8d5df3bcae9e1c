"""Permission resolution engine.

Turns a set of role/department assignments (plus optional per-user overrides)
into a module -> allowed actions profile. Pure functions over the static
catalogs in ``erp_core.constants.catalog``; safe to call from any thread.

Combination rules:
  * across assignments: union of matrix grants per module
  * overrides: for each module present, the override set REPLACES the union
"""
from __future__ import annotations
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Iterable, Mapping, Optional, Sequence

from erp_core.constants.catalog import (
    ACTIONS, DEPARTMENT_DEFINITIONS, MODULES, ROLE_DEFINITIONS, ROLE_PERMISSION_MATRIX, role_rank,
)
from erp_core.errors import InvalidArgument, UnknownAction, UnknownDepartment, UnknownModule, UnknownRole

PermissionProfile = Dict[str, FrozenSet[str]]


@dataclass(frozen=True)
class RoleAssignment:
    role: str
    departments: FrozenSet[str] = field(default_factory=frozenset)
    is_primary: bool = False  # informational only; not consumed by profile computation

    @classmethod
    def of(cls, role: str, departments: Iterable[str] = (), is_primary: bool = False) -> 'RoleAssignment':
        """Validated constructor; raises UnknownRole / UnknownDepartment."""
        validate_role(role)
        if isinstance(departments, str):
            raise InvalidArgument('departments must be a list of department ids')
        for d in departments:
            validate_department(d)
        depts = frozenset(departments)
        return cls(role=role, departments=depts, is_primary=bool(is_primary))

    @classmethod
    def from_dict(cls, data: Mapping) -> 'RoleAssignment':
        if not isinstance(data, Mapping):
            raise InvalidArgument('role assignment must be an object')
        role = data.get('role')
        if not isinstance(role, str):
            raise InvalidArgument('role assignment requires a role id')
        departments = data.get('departments') or []
        if not isinstance(departments, (list, tuple, set, frozenset)):
            raise InvalidArgument('departments must be a list of department ids')
        return cls.of(role, departments, bool(data.get('isPrimary', data.get('is_primary', False))))

    def to_dict(self) -> dict:
        return {'role': self.role, 'departments': sorted(self.departments), 'isPrimary': self.is_primary}


def validate_role(role: str) -> str:
    if not isinstance(role, str) or role not in ROLE_DEFINITIONS:
        raise UnknownRole(f'Unknown role: {role!r}')
    return role


def validate_department(department: str) -> str:
    if not isinstance(department, str) or department not in DEPARTMENT_DEFINITIONS:
        raise UnknownDepartment(f'Unknown department: {department!r}')
    return department


def validate_module(module: str) -> str:
    if not isinstance(module, str) or module not in MODULES:
        raise UnknownModule(f'Unknown module: {module!r}')
    return module


def validate_action(action: str) -> str:
    if not isinstance(action, str) or action not in ACTIONS:
        raise UnknownAction(f'Unknown action: {action!r}')
    return action


def empty_profile() -> PermissionProfile:
    return {m: frozenset() for m in MODULES}


def normalize_overrides(raw: Optional[Mapping[str, Iterable[str]]]) -> Dict[str, FrozenSet[str]]:
    """Validate an override map (module -> actions) and freeze it.

    An empty list for a module is meaningful: it revokes every action for that module.
    """
    if not raw:
        return {}
    if not isinstance(raw, Mapping):
        raise InvalidArgument('overrides must map module -> list of actions')
    out: Dict[str, FrozenSet[str]] = {}
    for module, actions in raw.items():
        validate_module(module)
        if not isinstance(actions, (list, tuple, set, frozenset)):
            raise InvalidArgument(f'overrides.{module} must be a list of actions')
        for a in actions:
            validate_action(a)
        out[module] = frozenset(actions)
    return out


def _applicable(assignments: Iterable[RoleAssignment], role_filter: Optional[str], department_filter: Optional[str]):
    for a in assignments:
        if role_filter is not None and a.role != role_filter:
            continue
        if department_filter is not None and department_filter not in a.departments:
            continue
        yield a


def build_permission_profile(
    assignments: Iterable[RoleAssignment],
    role_filter: Optional[str] = None,
    department_filter: Optional[str] = None,
    overrides: Optional[Mapping[str, Iterable[str]]] = None,
) -> PermissionProfile:
    """Return the module -> actions profile for the given assignments.

    The result always covers every module; modules without access map to an empty set.
    Filters narrow the assignments considered; if nothing survives, every module is empty.
    """
    if role_filter is not None:
        validate_role(role_filter)
    if department_filter is not None:
        validate_department(department_filter)
    frozen_overrides = normalize_overrides(overrides)

    collected = {m: set() for m in MODULES}
    for a in _applicable(assignments, role_filter, department_filter):
        grants = ROLE_PERMISSION_MATRIX[a.role]
        for module in MODULES:
            collected[module].update(grants[module])

    profile = {m: frozenset(actions) for m, actions in collected.items()}
    profile.update(frozen_overrides)
    return profile


def can_perform_action(
    assignments: Iterable[RoleAssignment],
    module: str,
    action: str,
    role_filter: Optional[str] = None,
    department_filter: Optional[str] = None,
    overrides: Optional[Mapping[str, Iterable[str]]] = None,
) -> bool:
    """Short-circuiting equivalent of ``action in build_permission_profile(...)[module]``."""
    validate_module(module)
    validate_action(action)
    if role_filter is not None:
        validate_role(role_filter)
    if department_filter is not None:
        validate_department(department_filter)
    frozen_overrides = normalize_overrides(overrides)
    if module in frozen_overrides:
        return action in frozen_overrides[module]
    return any(
        action in ROLE_PERMISSION_MATRIX[a.role][module]
        for a in _applicable(assignments, role_filter, department_filter)
    )


def get_highest_role(assignments: Iterable[RoleAssignment]) -> Optional[str]:
    """Role with the highest hierarchy rank across assignments, or None when empty."""
    best = None
    for a in assignments:
        if best is None or role_rank(a.role) > role_rank(best):
            best = a.role
    return best


def profile_to_claims(assignments: Sequence[RoleAssignment], overrides: Optional[Mapping[str, Iterable[str]]] = None) -> dict:
    """Materialize the token claims shape ``{roles, departments, modules}`` for a user.

    Lists are sorted so the same inputs always produce byte-identical claims. Modules with
    no access are left out so a check on them stays inconclusive and falls through to the
    persisted record; a module overridden to an empty set is kept as an explicit denial.
    """
    frozen_overrides = normalize_overrides(overrides)
    profile = build_permission_profile(assignments, overrides=frozen_overrides)
    return {
        'roles': sorted({a.role for a in assignments}),
        'departments': sorted({d for a in assignments for d in a.departments}),
        'modules': {
            m: sorted(actions) for m, actions in profile.items()
            if actions or m in frozen_overrides
        },
    }


def profile_to_json(profile: PermissionProfile) -> Dict[str, list]:
    return {m: sorted(profile[m]) for m in MODULES}


__all__ = [
    'PermissionProfile', 'RoleAssignment', 'validate_role', 'validate_department', 'validate_module',
    'validate_action', 'empty_profile', 'normalize_overrides', 'build_permission_profile',
    'can_perform_action', 'get_highest_role', 'profile_to_claims', 'profile_to_json',
]
