"""Seed sequence definitions.

The seed table is read-only: it defines the universe of valid sequence keys and
the starting point used when a key is first issued. The authoritative counter
lives in the ``sequences`` table once a key has been issued.
"""
from __future__ import annotations
from dataclasses import dataclass
from types import MappingProxyType
from typing import Mapping


@dataclass(frozen=True)
class SequenceDefinition:
    key: str
    prefix: str
    padding: int
    next_number: int
    scope: str
    module: str  # module whose 'create' action gates issuance over HTTP

    def __post_init__(self):
        if self.padding < 1:
            raise ValueError(f'Sequence {self.key}: padding must be >= 1')
        if self.next_number < 0:
            raise ValueError(f'Sequence {self.key}: next_number must be >= 0')


SEQUENCE_DEFINITIONS: Mapping[str, SequenceDefinition] = MappingProxyType({
    d.key: d for d in (
        SequenceDefinition('QUOTE', 'QU', 4, 128, 'Quotes', 'quotes'),
        SequenceDefinition('ORDER', 'SO', 5, 3021, 'Orders', 'orders'),
        SequenceDefinition('WO', 'WO', 5, 873, 'Work orders', 'production'),
        SequenceDefinition('SERIAL', 'CFM', 6, 54219, 'Serials', 'production'),
        SequenceDefinition('USER', 'UA', 4, 42, 'Accounts', 'users'),
    )
})

__all__ = ['SequenceDefinition', 'SEQUENCE_DEFINITIONS']
