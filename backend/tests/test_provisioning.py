import pytest
from erp_core import get_db, get_session_factory
from erp_core.errors import InvalidArgument
from erp_core.models.audit import AuditLog
from erp_core.models.authz import User
from erp_core.models.provisioning import ProvisioningRequest
from erp_core.services.claims import Identity
from erp_core.services.provisioning import enqueue_request, parse_payload, process_pending, process_request
from erp_core.services.resolvers import build_default_chain
from test_utils_seed import BOOTSTRAP_EMAIL, auth_headers, ensure_user


@pytest.fixture()
def chain(app_instance):
    return build_default_chain(app_instance.config, get_session_factory())


def payload(code, email, **extra):
    body = {
        'id': code,
        'name': f'User {code}',
        'email': email,
        'primaryRole': 'planner',
        'departments': ['rd'],
        'status': 'active',
        'roles': [{'role': 'planner', 'departments': ['rd']}],
    }
    body.update(extra)
    return body


def enqueue(requester_email, body, raw_claims=None, user_id=None):
    session = get_db()
    req = enqueue_request(session, Identity(user_id=user_id, email=requester_email), body, raw_claims)
    session.commit()
    return req.id


def test_admin_claims_complete_request(chain):
    rid = enqueue('boss@example.com', payload('UA9001', 'new.planner@example.com', overrides={'files': ['view']}),
                  raw_claims={'roles': ['admin']})
    req = process_request(get_db(), rid, chain)
    assert req.state == ProvisioningRequest.STATE_COMPLETED
    assert req.error is None
    assert req.completed_at is not None
    user = get_db().get(User, req.created_user_id)
    assert user.code == 'UA9001'
    assert user.primary_role == 'planner'
    assert [(a.role, a.departments, a.is_primary) for a in user.role_assignments] == [('planner', ['rd'], True)]
    assert {o.module: o.actions for o in user.overrides} == {'files': ['view']}
    audit = get_db().query(AuditLog).filter_by(action='PROVISION.COMPLETED', entity_id=str(rid)).one()
    assert audit.meta['created_user_id'] == user.id


def test_requester_without_users_create_is_rejected(chain):
    rid = enqueue('op@example.com', payload('UA9002', 'never@example.com'),
                  raw_claims={'roles': ['operator'], 'modules': {'users': ['view']}})
    req = process_request(get_db(), rid, chain)
    assert (req.state, req.error) == (ProvisioningRequest.STATE_REJECTED, 'permission-denied')
    assert req.created_user_id is None
    assert get_db().query(User).filter_by(email='never@example.com').one_or_none() is None


def test_bootstrap_allow_list_authorizes_without_claims(chain):
    rid = enqueue(BOOTSTRAP_EMAIL, payload(
        'UA9003', 'first.admin@example.com', primaryRole='admin', departments=['management'],
        roles=[{'role': 'admin', 'departments': ['management']}],
    ))
    req = process_request(get_db(), rid, chain)
    assert req.state == ProvisioningRequest.STATE_COMPLETED


def test_persisted_record_authorizes_requester(chain):
    mgr = ensure_user('prov.manager@example.com', roles=[('manager', ['management'])])
    rid = enqueue(mgr.email, payload('UA9004', 'by.manager@example.com'), user_id=mgr.id)
    assert process_request(get_db(), rid, chain).state == ProvisioningRequest.STATE_COMPLETED


@pytest.mark.parametrize('bad', [
    {'email': ''},
    {'primaryRole': 'superuser'},
    {'departments': ['moon-base']},
    {'status': 'archived'},
    {'roles': [{'role': 'planner'}, {'role': 'planner'}]},
    {'roles': []},
    {'roles': [{'role': 'operator', 'departments': ['production']}]},
    {'overrides': {'orders': ['explode']}},
    {'overrides': {'orders': [['view']]}},
])
def test_invalid_payload_is_rejected(chain, bad):
    code = 'UA9500'  # never created
    body = payload(code, f'{code.lower()}@example.com')
    body.update(bad)
    rid = enqueue('boss@example.com', body, raw_claims={'roles': ['admin']})
    req = process_request(get_db(), rid, chain)
    assert (req.state, req.error) == (ProvisioningRequest.STATE_REJECTED, 'invalid-argument')
    assert get_db().query(User).filter_by(code=code).one_or_none() is None


@pytest.mark.parametrize('field', ['id', 'name', 'email', 'primaryRole', 'departments', 'status', 'roles'])
def test_missing_required_field_is_rejected(chain, field):
    body = payload('UA9501', 'ua9501@example.com')
    del body[field]
    with pytest.raises(InvalidArgument):
        parse_payload(body)
    rid = enqueue('boss@example.com', body, raw_claims={'roles': ['admin']})
    req = process_request(get_db(), rid, chain)
    assert (req.state, req.error) == (ProvisioningRequest.STATE_REJECTED, 'invalid-argument')


def test_primary_role_must_be_assigned():
    body = payload('UA9502', 'ua9502@example.com', primaryRole='manager')
    with pytest.raises(InvalidArgument) as exc:
        parse_payload(body)
    assert 'primaryRole' in exc.value.detail


def test_empty_departments_list_is_accepted(chain):
    rid = enqueue('boss@example.com', payload('UA9503', 'no.depts@example.com', departments=[]),
                  raw_claims={'roles': ['admin']})
    req = process_request(get_db(), rid, chain)
    assert req.state == ProvisioningRequest.STATE_COMPLETED, req.error


def test_email_and_code_owned_by_different_users_fails(chain):
    ensure_user('owner.a@example.com')
    ensure_user('owner.b@example.com')
    # A's email together with B's code
    rid = enqueue('boss@example.com', payload('T-owner.b', 'owner.a@example.com'), raw_claims={'roles': ['admin']})
    req = process_request(get_db(), rid, chain)
    assert (req.state, req.error) == (ProvisioningRequest.STATE_FAILED, 'already-exists')
    assert req.created_user_id is None


def test_duplicate_email_fails(chain):
    ensure_user('taken@example.com')
    rid = enqueue('boss@example.com', payload('UA9005', 'Taken@example.com'), raw_claims={'roles': ['admin']})
    req = process_request(get_db(), rid, chain)
    assert (req.state, req.error) == (ProvisioningRequest.STATE_FAILED, 'already-exists')


def test_terminal_request_cannot_be_reprocessed(chain):
    rid = enqueue('op@example.com', payload('UA9006', 'again@example.com'), raw_claims={'roles': ['operator']})
    process_request(get_db(), rid, chain)
    with pytest.raises(InvalidArgument):
        process_request(get_db(), rid, chain)


def test_invalid_requester_claims_fail_closed(chain):
    rid = enqueue('forged@example.com', payload('UA9007', 'forged.target@example.com'),
                  raw_claims={'roles': ['admin'], 'modules': 'all'})
    req = process_request(get_db(), rid, chain)
    assert req.error == 'permission-denied'


def test_process_pending_drains_queue(chain):
    ids = [
        enqueue('boss@example.com', payload('UA9010', 'drain1@example.com'), raw_claims={'roles': ['admin']}),
        enqueue('op@example.com', payload('UA9011', 'drain2@example.com'), raw_claims={'roles': ['operator']}),
    ]
    done = process_pending(get_db(), chain)
    assert [r.id for r in done if r.id in ids] == ids
    assert get_db().query(ProvisioningRequest).filter_by(state=ProvisioningRequest.STATE_PENDING).count() == 0


def test_parse_payload_normalizes_fields():
    parsed = parse_payload(payload(
        'UA9020', 'Parse@Example.com ', primaryRole='manager', departments=['sales'],
        roles=[{'role': 'manager', 'departments': ['sales']}, {'role': 'operator', 'departments': []}],
    ))
    assert parsed['email'] == 'parse@example.com'
    assert parsed['primary_role'] == 'manager'
    assert [(a.role, sorted(a.departments)) for a in parsed['assignments']] == [('manager', ['sales']), ('operator', [])]


def test_http_enqueue_then_process(client):
    ensure_user('http.op@example.com', roles=[('operator', ['production'])])
    ensure_user('http.admin@example.com', roles=[('admin', ['management'])])
    op = auth_headers(client, 'http.op@example.com')
    admin = auth_headers(client, 'http.admin@example.com')

    created = client.post('/iam/provisioning', json={'payload': payload('UA9030', 'http.new@example.com')}, headers=op)
    assert created.status_code == 201, created.get_json()
    body = created.get_json()
    assert body['state'] == 'pending'
    assert body['requested_by'] == 'http.op@example.com'

    # operators may enqueue but not read the queue
    assert client.get('/iam/provisioning', headers=op).status_code == 403

    listed = client.get('/iam/provisioning?state=pending&limit=500', headers=admin)
    assert listed.status_code == 200
    assert listed.get_json()['pagination']['limit'] == 100
    assert body['id'] in [r['id'] for r in listed.get_json()['data']]

    processed = client.post(f"/iam/provisioning/{body['id']}/process", headers=admin)
    assert processed.status_code == 200
    assert processed.get_json()['state'] == 'rejected'
    assert processed.get_json()['error'] == 'permission-denied'

    assert client.get('/iam/provisioning?state=bogus', headers=admin).status_code == 400
    assert client.get('/iam/provisioning/999999', headers=admin).status_code == 404
