import threading
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from erp_core.errors import (
    InvalidArgument, SequenceStoreConflict, SequenceStoreUnavailable, UnknownSequence,
)
from erp_core.models.sequence import SequenceRecord
from erp_core.services import sequences as seq_service
from erp_core.services.sequence_store import SequenceSnapshot, SqlSequenceStore
from erp_core.services.sequences import (
    format_sequence_number, issue_sequence, list_sequences, peek_sequence, read_sequence_state,
)


class FlakyStore:
    """In-memory store that loses the first ``conflicts`` writes."""

    def __init__(self, conflicts=0, state=None):
        self.conflicts = conflicts
        self.state = dict(state or {})
        self.attempts = 0

    def get(self, key):
        return self.state.get(key)

    def transact(self, key, fn):
        self.attempts += 1
        new_state, result = fn(self.state.get(key))
        if self.conflicts:
            self.conflicts -= 1
            raise SequenceStoreConflict(f'lost race on {key}')
        self.state[key] = new_state
        return result


class BrokenStore(FlakyStore):
    def transact(self, key, fn):
        self.attempts += 1
        raise SequenceStoreUnavailable('store offline')


def test_format_pads_without_truncating():
    assert format_sequence_number('ORDER', 42) == 'SO00042'
    assert format_sequence_number('ORDER', 123456) == 'SO123456'
    assert format_sequence_number('SERIAL', 0) == 'CFM000000'


def test_format_rejects_bad_values():
    with pytest.raises(UnknownSequence):
        format_sequence_number('NOPE', 1)
    with pytest.raises(InvalidArgument):
        format_sequence_number('ORDER', -1)
    with pytest.raises(InvalidArgument):
        format_sequence_number('ORDER', '42')


def test_peek_reads_seed_only():
    assert peek_sequence('QUOTE') == {
        'key': 'QUOTE', 'prefix': 'QU', 'next_number': 128, 'formatted': 'QU0128', 'scope': 'Quotes', 'padding': 4,
    }
    keys = [s['key'] for s in list_sequences()]
    assert keys == ['QUOTE', 'ORDER', 'WO', 'SERIAL', 'USER']


def test_unknown_key_fails_without_touching_store(seq_store, file_session_factory):
    with pytest.raises(UnknownSequence):
        peek_sequence('NOPE')
    with pytest.raises(UnknownSequence):
        issue_sequence('NOPE', seq_store)
    fake = FlakyStore()
    with pytest.raises(UnknownSequence):
        issue_sequence('NOPE', fake)
    assert fake.attempts == 0
    session = file_session_factory()
    try:
        assert session.query(SequenceRecord).count() == 0
    finally:
        session.close()


def test_work_order_scenario(seq_store):
    first = issue_sequence('WO', seq_store)
    assert first == {'key': 'WO', 'value': 'WO00873', 'issued_number': 873}
    assert seq_store.get('WO') == SequenceSnapshot('WO', 5, 874)
    second = issue_sequence('WO', seq_store)
    assert second == {'key': 'WO', 'value': 'WO00874', 'issued_number': 874}
    # peek still shows the immutable seed
    assert peek_sequence('WO')['next_number'] == 873


def test_read_state_before_and_after_issue(seq_store):
    before = read_sequence_state('ORDER', seq_store)
    assert before['issued'] is False and before['next_number'] == 3021
    issue_sequence('ORDER', seq_store)
    after = read_sequence_state('ORDER', seq_store)
    assert after['issued'] is True
    assert after['next_number'] == 3022
    assert after['formatted'] == 'SO03022'


def test_keys_are_independent(seq_store):
    issue_sequence('QUOTE', seq_store)
    issue_sequence('QUOTE', seq_store)
    assert issue_sequence('ORDER', seq_store)['issued_number'] == 3021
    assert seq_store.get('QUOTE').next_number == 130


def test_conflicts_are_retried_transparently(monkeypatch):
    monkeypatch.setattr(seq_service.time, 'sleep', lambda s: None)
    store = FlakyStore(conflicts=3)
    result = issue_sequence('QUOTE', store, max_retries=5)
    assert result == {'key': 'QUOTE', 'value': 'QU0128', 'issued_number': 128}
    assert store.attempts == 4
    assert store.state['QUOTE'].next_number == 129


def test_retry_exhaustion_is_unavailable(monkeypatch):
    delays = []
    monkeypatch.setattr(seq_service.time, 'sleep', delays.append)
    store = FlakyStore(conflicts=100)
    with pytest.raises(SequenceStoreUnavailable):
        issue_sequence('QUOTE', store, max_retries=4, base_delay=0.01)
    assert store.attempts == 5
    assert len(delays) == 4
    assert all(d <= seq_service.MAX_DELAY * 1.5 for d in delays)
    # nothing was written
    assert 'QUOTE' not in store.state


def test_other_store_errors_are_not_retried(monkeypatch):
    monkeypatch.setattr(seq_service.time, 'sleep', lambda s: pytest.fail('should not back off'))
    store = BrokenStore()
    with pytest.raises(SequenceStoreUnavailable):
        issue_sequence('ORDER', store)
    assert store.attempts == 1


class RacedStore(SqlSequenceStore):
    """Real store where another writer commits between the first read and write."""

    def __init__(self, session_factory, bump_to):
        super().__init__(session_factory)
        self.bump_to = bump_to
        self.attempts = 0

    def transact(self, key, fn):
        self.attempts += 1
        if self.attempts > 1:
            return super().transact(key, fn)

        def raced(current):
            out = fn(current)
            other = self.session_factory()
            try:
                other.get(SequenceRecord, key).next_number = self.bump_to
                other.commit()
            finally:
                other.close()
            return out

        return super().transact(key, raced)


def test_stale_write_is_retried_against_real_store(file_session_factory, monkeypatch):
    monkeypatch.setattr(seq_service.time, 'sleep', lambda s: None)
    assert issue_sequence('QUOTE', SqlSequenceStore(file_session_factory))['issued_number'] == 128

    store = RacedStore(file_session_factory, bump_to=140)
    result = issue_sequence('QUOTE', store)
    assert result == {'key': 'QUOTE', 'value': 'QU0140', 'issued_number': 140}
    assert store.attempts == 2
    assert store.get('QUOTE').next_number == 141


def test_stale_write_surfaces_as_conflict(file_session_factory):
    issue_sequence('ORDER', SqlSequenceStore(file_session_factory))
    store = RacedStore(file_session_factory, bump_to=5000)
    with pytest.raises(SequenceStoreConflict):
        store.transact('ORDER', lambda s: (SequenceSnapshot(s.prefix, s.padding, s.next_number + 1), s.next_number))
    # the concurrent writer's value survives
    assert store.get('ORDER').next_number == 5000


def test_unreachable_database_is_unavailable(tmp_path, monkeypatch):
    monkeypatch.setattr(seq_service.time, 'sleep', lambda s: pytest.fail('should not back off'))
    engine = create_engine(f"sqlite+pysqlite:///{tmp_path / 'missing' / 'sequences.db'}")
    store = SqlSequenceStore(sessionmaker(bind=engine))
    try:
        with pytest.raises(SequenceStoreUnavailable):
            issue_sequence('ORDER', store)
        with pytest.raises(SequenceStoreUnavailable):
            store.get('ORDER')
    finally:
        engine.dispose()
    assert not (tmp_path / 'missing').exists()


def test_concurrent_issuance_is_contiguous(seq_store):
    threads_n, per_thread = 6, 5
    results, errors = [], []
    lock = threading.Lock()

    def worker():
        try:
            for _ in range(per_thread):
                out = issue_sequence('SERIAL', seq_store, max_retries=50, base_delay=0.001)
                with lock:
                    results.append(out['issued_number'])
        except Exception as e:  # collected and asserted below
            with lock:
                errors.append(e)

    threads = [threading.Thread(target=worker) for _ in range(threads_n)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert not errors
    total = threads_n * per_thread
    assert sorted(results) == list(range(54219, 54219 + total))
    assert seq_store.get('SERIAL').next_number == 54219 + total
