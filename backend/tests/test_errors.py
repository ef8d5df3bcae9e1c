from erp_core.errors import (
    AlreadyExists, ErpError, InvalidArgument, InvalidClaims, PermissionDenied, SequenceStoreConflict,
    SequenceStoreUnavailable, UnknownAction, UnknownDepartment, UnknownModule, UnknownRole, UnknownSequence,
)
from test_utils_seed import auth_headers, ensure_user


def test_unknown_path_returns_error_json(client):
    resp = client.get('/non-existent-path')
    # Flask default 404 should be wrapped by error handler
    assert resp.status_code == 404
    body = resp.get_json()
    assert 'error' in body
    assert body['error']['status'] == 404
    assert 'detail' in body['error']


def test_error_taxonomy_codes_and_statuses():
    expected = {
        UnknownModule: ('unknown-module', 400),
        UnknownAction: ('unknown-action', 400),
        UnknownRole: ('unknown-role', 400),
        UnknownDepartment: ('unknown-department', 400),
        UnknownSequence: ('unknown-sequence', 404),
        SequenceStoreConflict: ('sequence-conflict', 409),
        SequenceStoreUnavailable: ('sequence-unavailable', 503),
        PermissionDenied: ('permission-denied', 403),
        InvalidArgument: ('invalid-argument', 400),
        InvalidClaims: ('invalid-claims', 401),
        AlreadyExists: ('already-exists', 409),
    }
    for cls, (code, status) in expected.items():
        err = cls('boom')
        assert isinstance(err, ErpError)
        assert (err.code, err.status, err.detail) == (code, status, 'boom')
    assert UnknownSequence().detail == 'Unknown Sequence'


def test_store_outage_surfaces_as_503(client, monkeypatch):
    ensure_user('err.admin@example.com', roles=[('admin', ['management'])])
    headers = auth_headers(client, 'err.admin@example.com')
    import erp_core.routes.sequences as seq_routes

    class DownStore:
        def transact(self, key, fn):
            raise SequenceStoreUnavailable(f'Sequence store unavailable for {key}')

    monkeypatch.setattr(seq_routes, 'get_sequence_store', lambda: DownStore())
    resp = client.post('/sequences/ORDER/issue', headers=headers)
    assert resp.status_code == 503
    body = resp.get_json()
    assert body['error'] == {
        'status': 503,
        'code': 'sequence-unavailable',
        'title': 'Sequence Store Unavailable',
        'detail': 'Sequence store unavailable for ORDER',
    }


def test_internal_error_shape(client, monkeypatch):
    ensure_user('err.admin2@example.com', roles=[('admin', ['management'])])
    headers = auth_headers(client, 'err.admin2@example.com')
    # Monkeypatch AFTER login so auth works; only break the store
    import erp_core.routes.sequences as seq_routes

    class BoomStore:
        def transact(self, key, fn):
            raise RuntimeError('explode')

    monkeypatch.setattr(seq_routes, 'get_sequence_store', lambda: BoomStore())
    resp = client.post('/sequences/QUOTE/issue', headers=headers)
    assert resp.status_code == 500
    body = resp.get_json()
    assert body['error']['status'] == 500
    assert body['error']['title'] == 'Internal Server Error'
    assert 'explode' not in body['error']['detail']
