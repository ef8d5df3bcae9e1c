"""Central role / department / module / action definitions and the base grant matrix.

Extend cautiously: modules and actions are closed sets. Adding one requires a
coordinated change here plus a matrix update for every role.
"""
from __future__ import annotations
from dataclasses import dataclass
from types import MappingProxyType
from typing import Dict, FrozenSet, Iterable, Mapping


@dataclass(frozen=True)
class RoleDefinition:
    id: str
    label: str
    description: str
    hierarchy: int


@dataclass(frozen=True)
class DepartmentDefinition:
    id: str
    label: str
    description: str


@dataclass(frozen=True)
class ModuleDefinition:
    id: str
    label: str
    description: str


ROLE_DEFINITIONS: Mapping[str, RoleDefinition] = MappingProxyType({
    'admin': RoleDefinition('admin', 'Admin', 'Sequence adjustment, approvals, highest authority', 4),
    'manager': RoleDefinition('manager', 'Manager', 'Daily operations and approval kickoff', 3),
    'planner': RoleDefinition('planner', 'Planner', 'Drafts and process planning', 2),
    'operator': RoleDefinition('operator', 'Operator', 'Lookups and shop-floor execution', 1),
})

DEPARTMENT_DEFINITIONS: Mapping[str, DepartmentDefinition] = MappingProxyType({
    'executive': DepartmentDefinition('executive', 'Executive', 'Decisions / strategy'),
    'rd': DepartmentDefinition('rd', 'R&D', 'Product and design'),
    'production': DepartmentDefinition('production', 'Production', 'Manufacturing and shop floor'),
    'sales': DepartmentDefinition('sales', 'Sales', 'Business and customer service'),
    'management': DepartmentDefinition('management', 'Management', 'Administration'),
    'finance': DepartmentDefinition('finance', 'Finance', 'Accounting / audit'),
})

MODULE_DEFINITIONS: Mapping[str, ModuleDefinition] = MappingProxyType({
    'users': ModuleDefinition('users', 'Users', 'Accounts and permissions'),
    'employees': ModuleDefinition('employees', 'Employees', 'Personnel records'),
    'units': ModuleDefinition('units', 'Units', 'Cross-module units of measure'),
    'suppliers': ModuleDefinition('suppliers', 'Suppliers', 'Purchasing partners'),
    'customers': ModuleDefinition('customers', 'Customers', 'Sales accounts'),
    'parts': ModuleDefinition('parts', 'Parts', 'Part numbers and cost'),
    'products': ModuleDefinition('products', 'Products', 'BOM and modules'),
    'categories': ModuleDefinition('categories', 'Categories', 'Material classification'),
    'materials': ModuleDefinition('materials', 'Materials', 'Part and purchased material master'),
    'files': ModuleDefinition('files', 'File Center', 'Drawings / images / attachments'),
    'sequences': ModuleDefinition('sequences', 'Sequences', 'Prefix / running numbers'),
    'quotes': ModuleDefinition('quotes', 'Quotes', 'Quotations and lead times'),
    'orders': ModuleDefinition('orders', 'Orders', 'Order intake and changes'),
    'inventory': ModuleDefinition('inventory', 'Inventory', 'Receipts, issues and stocktake'),
    'production': ModuleDefinition('production', 'Production', 'Work orders and build history'),
})

MODULES = tuple(MODULE_DEFINITIONS.keys())

ACTION_LABELS: Mapping[str, str] = MappingProxyType({
    'view': 'View',
    'create': 'Create',
    'update': 'Edit',
    'disable': 'Disable',
    'approve': 'Approve',
    'lock': 'Lock',
    'sequence-adjust': 'Adjust sequence',
    'cancel': 'Cancel',
})

ACTIONS = tuple(ACTION_LABELS.keys())

_FULL = ['view', 'create', 'update', 'disable', 'approve']

_RAW_MATRIX: Dict[str, Dict[str, list]] = {
    'admin': {
        'users': _FULL,
        'employees': ['view', 'create', 'update', 'disable'],
        'units': _FULL,
        'suppliers': _FULL,
        'customers': _FULL,
        'parts': _FULL,
        'products': _FULL,
        'categories': _FULL,
        'sequences': ['view', 'lock', 'sequence-adjust', 'approve'],
        'quotes': ['view', 'create', 'update', 'approve', 'lock', 'cancel'],
        'orders': ['view', 'create', 'update', 'approve', 'lock', 'cancel'],
        'inventory': ['view', 'create', 'update', 'lock'],
        'production': ['view', 'create', 'update', 'approve', 'lock'],
        'materials': ['view', 'create', 'update', 'disable'],
        'files': ['view', 'create', 'update', 'disable'],
    },
    'manager': {
        'users': ['view', 'create', 'update', 'disable'],
        'employees': ['view', 'create', 'update'],
        'units': ['view', 'create', 'update', 'disable'],
        'suppliers': ['view', 'create', 'update'],
        'customers': ['view', 'create', 'update'],
        'parts': ['view', 'create', 'update', 'disable'],
        'products': ['view', 'create', 'update'],
        'categories': ['view', 'create', 'update'],
        'sequences': ['view', 'lock'],
        'quotes': ['view', 'create', 'update', 'lock'],
        'orders': ['view', 'create', 'update', 'lock'],
        'inventory': ['view', 'create', 'update'],
        'production': ['view', 'create', 'update'],
        'materials': ['view', 'create', 'update'],
        'files': ['view', 'create', 'update'],
    },
    # planner: view + draft creation everywhere except user management
    'planner': {m: (['view'] if m in ('users', 'sequences') else ['view', 'create']) for m in MODULES},
    'operator': {m: ['view'] for m in MODULES},
}


def _freeze_matrix(raw: Dict[str, Dict[str, Iterable[str]]]) -> Mapping[str, Mapping[str, FrozenSet[str]]]:
    frozen = {}
    for role_id in ROLE_DEFINITIONS:
        grants = raw.get(role_id, {})
        unknown = set(grants) - set(MODULES)
        if unknown:
            raise ValueError(f"Matrix for role '{role_id}' references unknown modules: {sorted(unknown)}")
        row = {}
        for module in MODULES:
            actions = frozenset(grants.get(module, ()))
            bad = actions - set(ACTIONS)
            if bad:
                raise ValueError(f"Matrix for {role_id}/{module} references unknown actions: {sorted(bad)}")
            row[module] = actions
        frozen[role_id] = MappingProxyType(row)
    return MappingProxyType(frozen)


ROLE_PERMISSION_MATRIX = _freeze_matrix(_RAW_MATRIX)


def role_rank(role_id: str) -> int:
    return ROLE_DEFINITIONS[role_id].hierarchy


__all__ = [
    'RoleDefinition', 'DepartmentDefinition', 'ModuleDefinition',
    'ROLE_DEFINITIONS', 'DEPARTMENT_DEFINITIONS', 'MODULE_DEFINITIONS', 'MODULES',
    'ACTION_LABELS', 'ACTIONS', 'ROLE_PERMISSION_MATRIX', 'role_rank',
]
