from __future__ import annotations
"""Simple finite state machine utility for enforcing allowed state transitions.

Used by the provisioning queue:
    from erp_core.utils.fsm import TransitionValidator
    PROVISION_FSM = TransitionValidator({
        'pending': {'completed', 'rejected', 'failed'},
        'completed': set(),
    }, field_name='state')
    PROVISION_FSM.assert_can_transition(request.state, 'completed')

Raises InvalidArgument if the transition is not in the graph.
"""
from typing import Dict, Set
from erp_core.errors import InvalidArgument

class TransitionValidator:
    def __init__(self, graph: Dict[str, Set[str]], field_name: str = 'status'):
        self.graph = graph
        self.field_name = field_name

    def can_transition(self, current: str, target: str) -> bool:
        return target in self.graph.get(current, set())

    def assert_can_transition(self, current: str, target: str):
        if not self.can_transition(current, target):
            raise InvalidArgument(f"Invalid {self.field_name} transition {current} -> {target}")
        return True

__all__ = ['TransitionValidator']
