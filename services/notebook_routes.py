"""Notebook and collaborator routes extracted from app.py."""

COLLABORATOR_STATUSES = {'pending', 'accepted', 'refused'}


def _load_notebook(notebook_id):
    import app as a

    notebook = a.db.session.get(a.Notebook, notebook_id)
    if notebook is None or notebook.deleted_at:
        raise a.NotFound(f"No Notebook found with id: {notebook_id}")
    return notebook


def _parse_permission(raw):
    import app as a

    if raw is None:
        return None
    if not isinstance(raw, dict) or not all(isinstance(v, bool) for v in raw.values()):
        raise a.ValidationError('Collaborator Validation Error', {'permission': 'must be an object of booleans'})
    return {'read': raw.get('read', True), 'comment': raw.get('comment', False)}


def create_notebook():
    import app as a

    Notebook = a.Notebook
    db = a.db

    reader = a.require_reader()
    data = a.read_json_body()
    name = str(data.get('name') or '').strip()
    if not name:
        raise a.ValidationError('Notebook Validation Error', {'name': 'is a required property'})
    notebook = Notebook(
        id=a.new_short_id(reader.id),
        reader_id=reader.id,
        name=name,
        description=data.get('description'),
    )
    db.session.add(notebook)
    db.session.commit()
    return a.ld_jsonify(notebook.to_dict(), 201, location=f"/notebooks/{notebook.id}")


def get_notebook(notebook_id):
    import app as a

    reader = a.require_reader()
    notebook = _load_notebook(notebook_id)
    if notebook.reader_id != reader.id:
        collaborator = notebook.accepted_collaborator(reader.id)
        if not collaborator or not collaborator.can_read():
            raise a.Forbidden(f"Access to Notebook {notebook_id} disallowed")
    return a.ld_jsonify(notebook.to_dict())


def invite_collaborator(notebook_id):
    import app as a

    Collaborator = a.Collaborator
    Reader = a.Reader
    ValidationError = a.ValidationError
    db = a.db

    reader = a.require_reader()
    notebook = _load_notebook(notebook_id)
    if notebook.reader_id != reader.id:
        raise a.Forbidden(f"Access to Notebook {notebook_id} disallowed")

    data = a.read_json_body()
    invitee_id = data.get('readerId')
    if not isinstance(invitee_id, int) or isinstance(invitee_id, bool):
        raise ValidationError('Collaborator Validation Error', {'readerId': 'is a required property'})
    invitee = db.session.get(Reader, invitee_id)
    if invitee is None or invitee.deleted_at:
        raise a.NotFound(f"No Reader found with id: {invitee_id}")
    if invitee.id == notebook.reader_id:
        raise a.DomainViolation('The notebook owner cannot be invited as a collaborator')
    if Collaborator.query.filter_by(notebook_id=notebook.id, reader_id=invitee.id).first():
        raise a.DomainViolation(f"Reader {invitee.id} is already a collaborator on notebook {notebook.id}")

    collaborator = Collaborator(
        id=a.new_short_id(reader.id),
        notebook_id=notebook.id,
        reader_id=invitee.id,
        status='pending',
        permission=_parse_permission(data.get('permission')) or {'read': True, 'comment': False},
    )
    db.session.add(collaborator)
    db.session.commit()
    a.app.logger.info(f"Reader {invitee.id} invited to notebook {notebook.id}")
    return a.ld_jsonify(collaborator.to_dict(), 201)


def update_collaborator(notebook_id, collaborator_id):
    """Invitee accepts/refuses; the owner may change permissions."""
    import app as a

    Collaborator = a.Collaborator
    ValidationError = a.ValidationError
    db = a.db

    reader = a.require_reader()
    notebook = _load_notebook(notebook_id)
    collaborator = db.session.get(Collaborator, collaborator_id)
    if collaborator is None or collaborator.notebook_id != notebook.id:
        raise a.NotFound(f"No Collaborator found with id: {collaborator_id}")

    is_owner = notebook.reader_id == reader.id
    is_invitee = collaborator.reader_id == reader.id
    if not (is_owner or is_invitee):
        raise a.Forbidden(f"Access to Notebook {notebook_id} disallowed")

    data = a.read_json_body()
    if 'status' in data:
        if not is_invitee:
            raise a.Forbidden('Only the invited reader can change the invitation status')
        if data['status'] not in COLLABORATOR_STATUSES:
            raise ValidationError(
                'Collaborator Validation Error',
                {'status': f"must be one of {', '.join(sorted(COLLABORATOR_STATUSES))}"}
            )
        collaborator.status = data['status']
    if 'permission' in data:
        if not is_owner:
            raise a.Forbidden('Only the notebook owner can change permissions')
        collaborator.permission = _parse_permission(data['permission']) or {'read': True, 'comment': False}
    collaborator.updated_at = a.utcnow()
    db.session.commit()
    return a.ld_jsonify(collaborator.to_dict())
