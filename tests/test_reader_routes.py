def test_create_reader_selects_it_for_the_session(client):
    resp = client.post('/api/readers', json={'username': 'carol', 'name': 'Carol'})
    assert resp.status_code == 201
    created = resp.get_json()
    assert created['type'] == 'Person'

    me = client.get('/api/whoami')
    assert me.status_code == 200
    assert me.get_json()['id'] == created['id']


def test_duplicate_username_is_rejected(client):
    client.post('/api/readers', json={'username': 'carol'})
    resp = client.post('/api/readers', json={'username': 'carol'})
    assert resp.status_code == 400
    assert resp.get_json()['message'] == 'Username already exists'


def test_username_is_required(client):
    resp = client.post('/api/readers', json={'username': '  '})
    assert resp.status_code == 400


def test_set_reader_checks_password(app):
    first = app.test_client()
    reader = first.post('/api/readers', json={'username': 'dana', 'password': 's3cret'}).get_json()

    other = app.test_client()
    assert other.post(f"/api/set-reader/{reader['id']}", json={'password': 'wrong'}).status_code == 401
    assert other.get('/api/whoami').status_code == 401

    resp = other.post(f"/api/set-reader/{reader['id']}", json={'password': 's3cret'})
    assert resp.status_code == 200
    assert other.get('/api/whoami').get_json()['username'] == 'dana'


def test_set_unknown_reader(client):
    resp = client.post('/api/set-reader/999')
    assert resp.status_code == 404
    assert resp.get_json()['message'] == 'No Reader found with id: 999'


def test_header_auth_requires_shared_key(client, alice):
    resp = client.get('/api/whoami', headers={'X-API-Key': 'wrong', 'X-User-Id': str(alice.reader_id)})
    assert resp.status_code == 401
    assert alice.get('/api/whoami').get_json()['username'] == 'alice'
