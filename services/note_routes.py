"""Standalone note routes extracted from app.py."""

from backend.note_payloads import build_note, parse_note_payload
from backend.outline_ordering import outline_guard, remove_note


def _load_note(note_id):
    import app as a

    note = a.db.session.get(a.Note, note_id)
    if note is None or note.deleted_at:
        raise a.NotFound(f"No Note found with id: {note_id}")
    return note


def _can_read(note, reader):
    if note.reader_id == reader.id:
        return True
    context = note.context
    if context is None or context.deleted_at:
        return False
    if context.reader_id == reader.id:
        return True
    collaborator = context.notebook.accepted_collaborator(reader.id) if context.notebook else None
    return bool(collaborator and collaborator.can_read())


def create_note():
    import app as a

    reader = a.require_reader()
    payload = parse_note_payload(a.read_json_body(), creating=True)
    note = build_note(reader, payload)
    note.clear_position()
    a.db.session.add(note)
    a.db.session.commit()
    a.app.logger.info(f"Reader {reader.id} created note {note.id}")
    return a.ld_jsonify(note.to_dict(), 201, location=f"/notes/{note.id}")


def handle_note(note_id):
    import app as a

    reader = a.require_reader()
    note = _load_note(note_id)

    if a.request.method == 'GET':
        if not _can_read(note, reader):
            raise a.Forbidden(f"Access to Note {note_id} disallowed")
        return a.ld_jsonify(note.to_dict())

    if note.reader_id != reader.id:
        raise a.Forbidden(f"Access to Note {note_id} disallowed")

    context = note.context
    if context is not None and context.is_outline() and not context.deleted_at:
        # Keep the outline's chains intact before the note disappears
        with outline_guard(context.id) as outline:
            locked = _load_note(note_id)
            remove_note(outline, locked)
            locked.deleted_at = a.utcnow()
    else:
        note.deleted_at = a.utcnow()
        a.db.session.commit()
    a.app.logger.info(f"Note {note_id} deleted by reader {reader.id}")
    return a.no_content()
