"""Sequence issuer: formatted business document numbers (quotes, orders, work orders...).

Only ``issue_sequence`` mutates state, and only through the store's transactional
primitive. The seed table is immutable; nothing here keeps a process-local copy of
"next number", so uniqueness holds across processes and restarts.
"""
from __future__ import annotations
import logging
import random
import time
from typing import Optional

from erp_core.constants.sequences import SEQUENCE_DEFINITIONS, SequenceDefinition
from erp_core.errors import InvalidArgument, SequenceStoreConflict, SequenceStoreUnavailable, UnknownSequence
from erp_core.services.sequence_store import SequenceSnapshot

log = logging.getLogger(__name__)

DEFAULT_MAX_RETRIES = 10
DEFAULT_BASE_DELAY = 0.01  # seconds
MAX_DELAY = 0.5


def _definition(key: str) -> SequenceDefinition:
    definition = SEQUENCE_DEFINITIONS.get(key)
    if definition is None:
        raise UnknownSequence(f'Sequence {key} not found')
    return definition


def _format(prefix: str, padding: int, value: int) -> str:
    # zfill pads only; wider values keep every digit
    return f'{prefix}{str(value).zfill(padding)}'


def format_sequence_number(key: str, value: int) -> str:
    definition = _definition(key)
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise InvalidArgument('sequence value must be a non-negative integer')
    return _format(definition.prefix, definition.padding, value)


def peek_sequence(key: str) -> dict:
    """Preview from the seed table only. Not authoritative; never use for issuance."""
    definition = _definition(key)
    return {
        'key': key,
        'prefix': definition.prefix,
        'next_number': definition.next_number,
        'formatted': _format(definition.prefix, definition.padding, definition.next_number),
        'scope': definition.scope,
        'padding': definition.padding,
    }


def list_sequences() -> list:
    return [peek_sequence(key) for key in SEQUENCE_DEFINITIONS]


def read_sequence_state(key: str, store) -> dict:
    """Current authoritative state from the store (seed values when never issued). Non-mutating."""
    definition = _definition(key)
    snapshot = store.get(key)
    issued = snapshot is not None
    if snapshot is None:
        snapshot = SequenceSnapshot(definition.prefix, definition.padding, definition.next_number)
    return {
        'key': key,
        'prefix': snapshot.prefix,
        'padding': snapshot.padding,
        'next_number': snapshot.next_number,
        'formatted': _format(snapshot.prefix, snapshot.padding, snapshot.next_number),
        'scope': definition.scope,
        'issued': issued,
    }


def issue_sequence(
    key: str,
    store,
    max_retries: int = DEFAULT_MAX_RETRIES,
    base_delay: float = DEFAULT_BASE_DELAY,
) -> dict:
    """Atomically allocate the next number for ``key``.

    Write conflicts are retried with exponential backoff (plus jitter) up to
    ``max_retries`` extra attempts; exhaustion raises SequenceStoreUnavailable.
    Every other error propagates on the first occurrence.
    """
    definition = _definition(key)

    def allocate(current: Optional[SequenceSnapshot]):
        state = current or SequenceSnapshot(definition.prefix, definition.padding, definition.next_number)
        formatted = _format(state.prefix, state.padding, state.next_number)
        new_state = SequenceSnapshot(state.prefix, state.padding, state.next_number + 1)
        return new_state, (formatted, state.next_number)

    attempt = 0
    while True:
        try:
            formatted, issued_number = store.transact(key, allocate)
            break
        except SequenceStoreConflict:
            if attempt >= max_retries:
                log.warning('Sequence %s: giving up after %d conflicting attempts', key, attempt + 1)
                raise SequenceStoreUnavailable(f'Sequence {key}: retries exhausted')
            delay = min(MAX_DELAY, base_delay * (2 ** attempt)) * (0.5 + random.random())
            log.debug('Sequence %s: write conflict on attempt %d, retrying in %.3fs', key, attempt + 1, delay)
            attempt += 1
            time.sleep(delay)

    log.info('Issued %s for sequence %s', formatted, key)
    return {'key': key, 'value': formatted, 'issued_number': issued_number}


__all__ = [
    'DEFAULT_MAX_RETRIES', 'DEFAULT_BASE_DELAY', 'format_sequence_number', 'peek_sequence',
    'list_sequences', 'read_sequence_state', 'issue_sequence',
]
