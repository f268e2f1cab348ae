"""Outline and note-context routes extracted from app.py."""

from backend.note_payloads import (
    build_note,
    copy_note,
    apply_note_changes,
    parse_note_batch,
    parse_note_payload,
    position_fields,
)
from backend.outline_ordering import (
    get_outline_note,
    link_created_notes,
    outline_guard,
    place_note,
    remove_note,
)
from backend.outline_tree import notes_list_to_tree, outline_to_lines


def _load_context(context_id, reader, write=False, outline_only=True):
    """Fetch a live context the reader may read (or, with `write`, add notes to)."""
    import app as a

    label = 'Outline' if outline_only else 'NoteContext'
    context = a.db.session.get(a.NoteContext, context_id)
    if context is None or context.deleted_at or (outline_only and not context.is_outline()):
        raise a.NotFound(f"No {label} found with id: {context_id}")
    if context.reader_id == reader.id:
        return context

    # Not the owner: fall back to notebook collaboration rights
    collaborator = context.notebook.accepted_collaborator(reader.id) if context.notebook else None
    allowed = collaborator is not None and (collaborator.can_comment() if write else collaborator.can_read())
    if not allowed:
        raise a.Forbidden(f"Access to {label} {context_id} disallowed")
    return context


def _require_owner(context, reader):
    import app as a

    if context.reader_id != reader.id:
        raise a.Forbidden(f"Access to Outline {context.id} disallowed")


def _check_note_access(note, reader, outline):
    import app as a

    if note.reader_id != reader.id and outline.reader_id != reader.id:
        raise a.Forbidden(f"Access to Note {note.id} disallowed")


def _resolve_notebook(reader, notebook_id):
    import app as a

    if not notebook_id:
        return None
    notebook = a.db.session.get(a.Notebook, notebook_id)
    if notebook is None or notebook.deleted_at:
        raise a.NotFound(f"No Notebook found with id: {notebook_id}")
    if notebook.reader_id != reader.id:
        collaborator = notebook.accepted_collaborator(reader.id)
        if not collaborator or not collaborator.can_comment():
            raise a.Forbidden(f"Access to Notebook {notebook_id} disallowed")
    return notebook


def _validate_context_fields(data, label):
    import app as a

    validation = {}
    for field in ('name', 'description', 'notebookId'):
        value = data.get(field)
        if value is not None and not isinstance(value, str):
            validation[field] = 'must be a string'
    if data.get('json') is not None and not isinstance(data.get('json'), dict):
        validation['json'] = 'must be an object'
    if validation:
        raise a.ValidationError(f"{label} Validation Error", validation)


def _new_context(reader, data, context_type):
    import app as a

    notebook = _resolve_notebook(reader, data.get('notebookId'))
    context = a.NoteContext(
        id=a.new_short_id(reader.id),
        reader_id=reader.id,
        type=context_type,
        name=data.get('name'),
        description=data.get('description'),
        json=data.get('json') or {},
        notebook_id=notebook.id if notebook else None,
    )
    a.db.session.add(context)
    a.db.session.commit()
    a.app.logger.info(f"Reader {reader.id} created {context_type} context {context.id}")
    return context


def _live_note_dicts(context):
    import app as a

    Note = a.Note
    notes = Note.query.filter(
        Note.context_id == context.id,
        Note.deleted_at.is_(None),
    ).order_by(Note.created_at.asc(), Note.id.asc()).all()
    return [n.to_dict() for n in notes]


def _outline_document(outline):
    import app as a

    data = outline.to_dict()
    data['notes'] = notes_list_to_tree(_live_note_dicts(outline), logger=a.app.logger)
    return data


def create_outline():
    import app as a

    reader = a.require_reader()
    data = a.read_json_body()
    _validate_context_fields(data, 'Outline')
    outline = _new_context(reader, data, a.OUTLINE_TYPE)
    return a.ld_jsonify(_outline_document(outline), 201, location=f"/outlines/{outline.id}")


def handle_outline(outline_id):
    import app as a

    db = a.db
    request = a.request

    reader = a.require_reader()

    if request.method == 'GET':
        outline = _load_context(outline_id, reader)
        return a.ld_jsonify(_outline_document(outline))

    if request.method == 'PUT':
        data = a.read_json_body()
        outline = _load_context(outline_id, reader, write=True)
        _require_owner(outline, reader)
        if data.get('type') != a.OUTLINE_TYPE:
            raise a.ValidationError("Outline type must be 'outline'", {'type': "must be 'outline'"})
        _validate_context_fields(data, 'Outline')
        if 'name' in data:
            outline.name = data['name']
        if 'description' in data:
            outline.description = data['description']
        if 'json' in data:
            outline.json = data['json'] or {}
        if 'notebookId' in data:
            notebook = _resolve_notebook(reader, data['notebookId'])
            outline.notebook_id = notebook.id if notebook else None
        outline.updated_at = a.utcnow()
        db.session.commit()
        return a.ld_jsonify(_outline_document(outline))

    outline = _load_context(outline_id, reader, write=True)
    _require_owner(outline, reader)
    with outline_guard(outline_id) as locked:
        now = a.utcnow()
        locked.deleted_at = now
        for note in locked.live_notes():
            note.deleted_at = now
    a.app.logger.info(f"Outline {outline_id} deleted by reader {reader.id}")
    return a.no_content()


def export_outline(outline_id):
    import app as a

    reader = a.require_reader()
    outline = _load_context(outline_id, reader)
    lines = outline_to_lines(notes_list_to_tree(_live_note_dicts(outline), logger=a.app.logger))
    if outline.name:
        lines = [outline.name, ''] + lines
    content = '\n'.join(lines)
    filename = f"{a._slugify_filename(outline.name)}-{outline.id}.txt"

    response = a.app.response_class(content, mimetype='text/plain; charset=utf-8')
    response.headers['Content-Disposition'] = f'attachment; filename="{filename}"'
    return response


def _add_batch(reader, outline_id, items):
    import app as a

    with outline_guard(outline_id) as outline:
        notes = parse_note_batch(reader, items)
        for note in notes:
            note.context_id = outline.id
        link_created_notes(outline, notes)
        a.db.session.add_all(notes)
    return a.ld_jsonify([n.to_dict() for n in notes], 201)


def add_outline_note(outline_id):
    """Create a positioned note, a batch of linked notes, or a copy of an existing note."""
    import app as a

    request = a.request

    reader = a.require_reader()
    _load_context(outline_id, reader, write=True)

    data = request.get_json(silent=True)
    if isinstance(data, list):
        return _add_batch(reader, outline_id, data)

    source_note_id = request.args.get('source')
    if source_note_id:
        overrides = parse_note_payload(data, creating=False) if data else {}
        with outline_guard(outline_id) as outline:
            note = copy_note(reader, source_note_id, outline, overrides)
            place_note(outline, note, position_fields(overrides), is_new=True)
            a.db.session.add(note)
    else:
        if not isinstance(data, dict):
            raise a.ValidationError('Body must be a JSON object')
        payload = parse_note_payload(data, creating=True)
        with outline_guard(outline_id) as outline:
            note = build_note(reader, payload, context=outline, allow_id=True)
            place_note(outline, note, position_fields(payload), is_new=True)
            a.db.session.add(note)

    return a.ld_jsonify(note.to_dict(), 201, location=f"/notes/{note.id}")


def handle_outline_note(outline_id, note_id):
    """PATCH edits and/or moves a note; DELETE takes it out of the outline."""
    import app as a

    request = a.request

    reader = a.require_reader()
    _load_context(outline_id, reader, write=True)

    if request.method == 'DELETE':
        with outline_guard(outline_id) as outline:
            note = get_outline_note(outline, note_id)
            _check_note_access(note, reader, outline)
            remove_note(outline, note)
            note.deleted_at = a.utcnow()
        return a.no_content()

    payload = parse_note_payload(a.read_json_body(), creating=False)
    with outline_guard(outline_id) as outline:
        note = get_outline_note(outline, note_id)
        _check_note_access(note, reader, outline)
        apply_note_changes(reader, note, payload)
        place_note(outline, note, position_fields(payload))
    return a.ld_jsonify(note.to_dict())


def create_note_context():
    import app as a

    reader = a.require_reader()
    data = a.read_json_body()
    context_type = data.get('type')
    if not isinstance(context_type, str) or not context_type.strip():
        raise a.ValidationError('NoteContext Validation Error', {'type': 'is a required property'})
    _validate_context_fields(data, 'NoteContext')
    context = _new_context(reader, data, context_type.strip())
    return a.ld_jsonify(context.to_dict(), 201, location=f"/noteContexts/{context.id}")


def get_note_context(context_id):
    import app as a

    reader = a.require_reader()
    context = _load_context(context_id, reader, outline_only=False)
    data = context.to_dict()
    data['notes'] = _live_note_dicts(context)
    return a.ld_jsonify(data)


def add_context_note(context_id):
    """
    Add an unpositioned note (or a copy via ?source=) to any context.

    Outlines take the note as unsorted under the outline lock, so their
    revision moves like any other structural change.
    """
    import app as a

    request = a.request

    reader = a.require_reader()
    context = _load_context(context_id, reader, write=True, outline_only=False)

    data = request.get_json(silent=True)
    source_note_id = request.args.get('source')
    if source_note_id:
        overrides = parse_note_payload(data, creating=False) if data else {}
    else:
        payload = parse_note_payload(data, creating=True)

    def make_note(target):
        if source_note_id:
            return copy_note(reader, source_note_id, target, overrides)
        return build_note(reader, payload, context=target)

    if context.is_outline():
        with outline_guard(context.id) as outline:
            note = make_note(outline)
            place_note(outline, note, {}, is_new=True)
            a.db.session.add(note)
    else:
        note = make_note(context)
        note.clear_position()
        a.db.session.add(note)
        a.db.session.commit()
    return a.ld_jsonify(note.to_dict(), 201, location=f"/notes/{note.id}")
