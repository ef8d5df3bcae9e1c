"""Transactional storage for sequence counters.

``SqlSequenceStore.transact`` is the optimistic read-modify-write primitive the
issuer builds on: read a snapshot, let the caller compute the next state, then
write it conditionally on the version that was read. Losing a race surfaces as
``SequenceStoreConflict``; the store never retries on its own.
"""
from __future__ import annotations
import logging
from dataclasses import dataclass
from typing import Callable, Optional, Tuple, TypeVar

from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError
from sqlalchemy.orm.exc import StaleDataError

from erp_core.errors import SequenceStoreConflict, SequenceStoreUnavailable
from erp_core.models.sequence import SequenceRecord

log = logging.getLogger(__name__)

T = TypeVar('T')

# Driver messages for lock / serialization failures that succeed when retried.
_TRANSIENT_MARKERS = (
    'database is locked',
    'database table is locked',
    'could not serialize access',
    'deadlock detected',
    'lock wait timeout',
)


@dataclass(frozen=True)
class SequenceSnapshot:
    prefix: str
    padding: int
    next_number: int


def _is_transient(exc: OperationalError) -> bool:
    message = str(getattr(exc, 'orig', exc)).lower()
    return any(marker in message for marker in _TRANSIENT_MARKERS)


class SqlSequenceStore:
    """Sequence records in the ``sequences`` table, one row per key."""

    def __init__(self, session_factory: Callable):
        self.session_factory = session_factory

    def get(self, key: str) -> Optional[SequenceSnapshot]:
        session = self.session_factory()
        try:
            rec = session.get(SequenceRecord, key)
            if rec is None:
                return None
            return SequenceSnapshot(rec.prefix, rec.padding, rec.next_number)
        except DBAPIError as e:
            raise SequenceStoreUnavailable(f'Sequence store read failed for {key}') from e
        finally:
            session.close()

    def transact(self, key: str, fn: Callable[[Optional[SequenceSnapshot]], Tuple[SequenceSnapshot, T]]) -> T:
        """Run ``fn`` against the current record for ``key`` and commit its new state atomically.

        ``fn`` receives the stored snapshot (None when the key was never issued) and returns
        ``(new_state, result)``. ``result`` is returned only after the commit succeeded.
        """
        session = self.session_factory()
        try:
            rec = session.get(SequenceRecord, key)
            snapshot = SequenceSnapshot(rec.prefix, rec.padding, rec.next_number) if rec is not None else None
            new_state, result = fn(snapshot)
            if rec is None:
                session.add(SequenceRecord(
                    key=key,
                    prefix=new_state.prefix,
                    padding=new_state.padding,
                    next_number=new_state.next_number,
                ))
            else:
                rec.prefix = new_state.prefix
                rec.padding = new_state.padding
                rec.next_number = new_state.next_number
            session.commit()
            return result
        except StaleDataError as e:
            session.rollback()
            raise SequenceStoreConflict(f'Concurrent update on sequence {key}') from e
        except IntegrityError as e:
            # Two first issuances raced to create the row
            session.rollback()
            raise SequenceStoreConflict(f'Concurrent create on sequence {key}') from e
        except OperationalError as e:
            session.rollback()
            if _is_transient(e):
                raise SequenceStoreConflict(f'Transient lock on sequence {key}') from e
            log.warning('Sequence store unavailable for %s: %s', key, e)
            raise SequenceStoreUnavailable(f'Sequence store unavailable for {key}') from e
        except DBAPIError as e:
            session.rollback()
            log.warning('Sequence store error for %s: %s', key, e)
            raise SequenceStoreUnavailable(f'Sequence store unavailable for {key}') from e
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()


__all__ = ['SequenceSnapshot', 'SqlSequenceStore']
