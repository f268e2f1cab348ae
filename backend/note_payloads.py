"""Validation and persistence helpers for note JSON payloads."""

import copy
import re

from backend.errors import Forbidden, NotFound, ValidationError
from backend.outline_ordering import POSITION_FIELDS
from models import db, Note, NoteBody, Source, new_short_id, utcnow
from text_helpers import _sanitize_note_html

NOTE_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]{1,255}$")

_STRING_FIELDS = ('id', 'canonical', 'documentUrl', 'sourceId')
_OBJECT_FIELDS = ('json', 'target')


def _fail(validation):
    problems = ', '.join(f"{field} {problem}" for field, problem in validation.items())
    raise ValidationError(f"Note Validation Error: {problems}", validation)


def parse_bodies(raw, required=True):
    """Normalise `body` (an object or a list of objects) into column dicts."""
    if raw is None or raw == []:
        if required:
            raise ValidationError(
                "Create Note Validation Error: body is a required property",
                {'body': 'is a required property'}
            )
        return []
    items = raw if isinstance(raw, list) else [raw]
    bodies = []
    for item in items:
        if not isinstance(item, dict):
            _fail({'body': 'must be an object or a list of objects'})
        motivation = item.get('motivation')
        if not isinstance(motivation, str) or not motivation.strip():
            _fail({'body.motivation': 'is a required property'})
        content = item.get('content')
        if content is not None and not isinstance(content, str):
            _fail({'body.content': 'must be a string'})
        language = item.get('language')
        if language is not None and not isinstance(language, str):
            _fail({'body.language': 'must be a string'})
        bodies.append({
            'content': _sanitize_note_html(content) if content is not None else None,
            'motivation': motivation.strip(),
            'language': language or None,
        })
    return bodies


def parse_note_payload(data, creating=True):
    """Type-check a single note payload. Returns a shallow copy with '' refs as None."""
    if not isinstance(data, dict) or not data:
        raise ValidationError('Body must be a JSON object')
    validation = {}
    for field in _STRING_FIELDS:
        value = data.get(field)
        if value is not None and not isinstance(value, str):
            validation[field] = 'must be a string'
    for field in _OBJECT_FIELDS:
        value = data.get(field)
        if value is not None and not isinstance(value, dict):
            validation[field] = 'must be an object'
    payload = dict(data)
    for field in POSITION_FIELDS:
        if field not in payload:
            continue
        value = payload[field]
        if value == '':
            payload[field] = None
        elif value is not None and not isinstance(value, str):
            validation[field] = 'must be a note id or null'
    if validation:
        _fail(validation)
    if creating or 'body' in payload:
        payload['_bodies'] = parse_bodies(payload.get('body'), required=True)
    return payload


def position_fields(payload):
    return {field: payload[field] for field in POSITION_FIELDS if field in payload}


def resolve_source(reader, source_id):
    source = db.session.get(Source, source_id)
    if source is None or source.deleted_at is not None:
        raise NotFound(f"No Source found with id: {source_id}")
    if source.reader_id != reader.id:
        raise Forbidden(f"Access to Source {source_id} disallowed")
    return source


def _note_id_for(reader, payload, allow_id):
    requested = payload.get('id') if allow_id else None
    if not requested:
        return new_short_id(reader.id)
    if not NOTE_ID_PATTERN.match(requested):
        _fail({'id': 'may only contain letters, digits, "-" and "_"'})
    if db.session.get(Note, requested) is not None:
        _fail({'id': f'{requested} is already in use'})
    return requested


def build_note(reader, payload, context=None, allow_id=False):
    """Create (but do not add) a Note row from a parsed payload."""
    source_id = payload.get('sourceId')
    if source_id:
        resolve_source(reader, source_id)
    note = Note(
        id=_note_id_for(reader, payload, allow_id),
        reader_id=reader.id,
        context_id=context.id if context is not None else None,
        source_id=source_id or None,
        document_url=payload.get('documentUrl'),
        canonical=payload.get('canonical'),
        target=payload.get('target'),
        json=payload.get('json') or {},
    )
    note.bodies = [NoteBody(**body) for body in payload['_bodies']]
    return note


def apply_note_changes(reader, note, payload):
    """
    Apply the content fields present in a PATCH payload.

    Omitted fields are preserved and an explicit null clears. Position fields
    are left to the ordering engine.
    """
    if 'canonical' in payload:
        note.canonical = payload['canonical']
    if 'documentUrl' in payload:
        note.document_url = payload['documentUrl']
    if 'target' in payload:
        note.target = payload['target']
    if 'json' in payload:
        note.json = payload['json'] or {}
    if 'sourceId' in payload:
        source_id = payload['sourceId']
        if source_id:
            resolve_source(reader, source_id)
        note.source_id = source_id or None
    if '_bodies' in payload:
        note.bodies = [NoteBody(**body) for body in payload['_bodies']]
    note.updated_at = utcnow()
    return note


def copy_note(reader, original_id, context, payload=None):
    """Duplicate one of the reader's notes into `context`, remembering the original."""
    original = db.session.get(Note, original_id) if original_id else None
    if original is None or original.deleted_at is not None:
        raise NotFound(f"No Note found with id: {original_id}")
    if original.reader_id != reader.id:
        raise Forbidden(f"Access to Note {original_id} disallowed")
    note = Note(
        id=new_short_id(reader.id),
        reader_id=reader.id,
        context_id=context.id,
        source_id=original.source_id,
        document_url=original.document_url,
        canonical=original.canonical,
        target=copy.deepcopy(original.target),
        json=copy.deepcopy(original.json) or {},
        original=original.id,
    )
    note.bodies = [
        NoteBody(content=b.content, motivation=b.motivation, language=b.language)
        for b in original.bodies
    ]
    if payload:
        apply_note_changes(reader, note, payload)
    return note


def parse_note_batch(reader, items):
    """Validate a list payload and build its notes with their requested pointers."""
    if not items:
        raise ValidationError('Body must contain at least one note')
    payloads = [parse_note_payload(item, creating=True) for item in items]
    notes = []
    seen_ids = set()
    for payload in payloads:
        note = build_note(reader, payload, allow_id=True)
        if note.id in seen_ids:
            _fail({'id': f'{note.id} appears more than once'})
        seen_ids.add(note.id)
        note.previous = payload.get('previous')
        note.next = payload.get('next')
        note.parent_id = payload.get('parentId')
        notes.append(note)
    return notes
