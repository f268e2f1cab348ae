def test_create_and_get_source(alice):
    resp = alice.post('/sources', json={'name': 'The Waves', 'type': 'Book', 'json': {'isbn': '123'}})
    assert resp.status_code == 201
    source = resp.get_json()
    alice.post('/notes', json={'body': {'motivation': 'highlighting'}, 'sourceId': source['id']})

    data = alice.get(f"/sources/{source['id']}").get_json()
    assert data['name'] == 'The Waves'
    assert data['json'] == {'isbn': '123'}
    assert len(data['replies']) == 1


def test_source_validation(alice):
    resp = alice.post('/sources', json={'type': 'Scroll'})
    assert resp.status_code == 400
    validation = resp.get_json()['details']['validation']
    assert set(validation) == {'name', 'type'}


def test_list_body_is_rejected(alice):
    resp = alice.post('/sources', json=[{'name': 'The Waves', 'type': 'Book'}])
    assert resp.status_code == 400
    assert resp.get_json()['message'] == 'Request body must be a JSON object'


def test_deleted_source_disappears_from_notes(alice):
    source = alice.post('/sources', json={'name': 'Orlando'}).get_json()
    note = alice.post('/notes', json={'body': {'motivation': 'highlighting'}, 'sourceId': source['id']}).get_json()
    assert alice.delete(f"/sources/{source['id']}").status_code == 204
    assert alice.get(f"/sources/{source['id']}").status_code == 404

    again = alice.get(f"/notes/{note['id']}").get_json()
    assert again['sourceId'] == source['id']
    assert 'source' not in again


def test_source_of_other_reader_is_forbidden(alice, bob):
    source = alice.post('/sources', json={'name': 'Private'}).get_json()
    assert bob.get(f"/sources/{source['id']}").status_code == 403
    resp = bob.post('/notes', json={'body': {'motivation': 'highlighting'}, 'sourceId': source['id']})
    assert resp.status_code == 403


def test_notebook_invitation_flow(alice, bob):
    notebook = alice.post('/notebooks', json={'name': 'Seminar'}).get_json()
    assert bob.get(f"/notebooks/{notebook['id']}").status_code == 403

    invite = alice.post(f"/notebooks/{notebook['id']}/collaborators", json={'readerId': bob.reader_id})
    assert invite.status_code == 201
    collaborator = invite.get_json()
    assert collaborator['status'] == 'pending'
    assert collaborator['permission'] == {'read': True, 'comment': False}

    # Only the invitee answers the invitation
    owner_try = alice.put(
        f"/notebooks/{notebook['id']}/collaborators/{collaborator['id']}", json={'status': 'accepted'}
    )
    assert owner_try.status_code == 403

    accepted = bob.put(f"/notebooks/{notebook['id']}/collaborators/{collaborator['id']}", json={'status': 'accepted'})
    assert accepted.get_json()['status'] == 'accepted'
    data = bob.get(f"/notebooks/{notebook['id']}").get_json()
    assert data['collaborators'][0]['readerId'] == bob.reader_id


def test_collaborator_without_comment_permission_cannot_add(alice, bob):
    notebook = alice.post('/notebooks', json={'name': 'Read only'}).get_json()
    outline = alice.post('/outlines', json={'notebookId': notebook['id']}).get_json()
    collaborator = alice.post(
        f"/notebooks/{notebook['id']}/collaborators", json={'readerId': bob.reader_id}
    ).get_json()
    bob.put(f"/notebooks/{notebook['id']}/collaborators/{collaborator['id']}", json={'status': 'accepted'})

    assert bob.get(f"/outlines/{outline['id']}").status_code == 200
    resp = bob.post(f"/outlines/{outline['id']}/notes", json={'body': {'motivation': 'commenting'}})
    assert resp.status_code == 403

    alice.put(
        f"/notebooks/{notebook['id']}/collaborators/{collaborator['id']}",
        json={'permission': {'read': True, 'comment': True}},
    )
    resp = bob.post(f"/outlines/{outline['id']}/notes", json={'body': {'motivation': 'commenting'}})
    assert resp.status_code == 201


def test_cannot_invite_twice(alice, bob):
    notebook = alice.post('/notebooks', json={'name': 'Twice'}).get_json()
    alice.post(f"/notebooks/{notebook['id']}/collaborators", json={'readerId': bob.reader_id})
    resp = alice.post(f"/notebooks/{notebook['id']}/collaborators", json={'readerId': bob.reader_id})
    assert resp.status_code == 400
