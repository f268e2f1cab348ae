import secrets
from datetime import datetime

import pytz
from flask_sqlalchemy import SQLAlchemy
from flask_login import UserMixin
from werkzeug.security import generate_password_hash, check_password_hash

db = SQLAlchemy()

OUTLINE_TYPE = 'outline'


def utcnow():
    """Naive UTC timestamp, the format every DateTime column stores."""
    return datetime.now(pytz.UTC).replace(tzinfo=None)


def new_short_id(reader_id):
    return f"{reader_id}-{secrets.token_hex(5)}"


def _iso(value):
    return value.isoformat() if value else None


class Reader(UserMixin, db.Model):
    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(80), unique=True, nullable=False)
    name = db.Column(db.String(120), nullable=True)
    password_hash = db.Column(db.String(200), nullable=True)
    created_at = db.Column(db.DateTime, default=utcnow)
    deleted_at = db.Column(db.DateTime, nullable=True)

    def set_password(self, password):
        self.password_hash = generate_password_hash(password)

    def check_password(self, password):
        if not self.password_hash:
            return False
        return check_password_hash(self.password_hash, password)

    def to_dict(self):
        return {
            'id': self.id,
            'type': 'Person',
            'username': self.username,
            'name': self.name,
            'published': _iso(self.created_at),
        }


class Source(db.Model):
    """A book, article or other document that notes can point at."""
    id = db.Column(db.String(255), primary_key=True)
    reader_id = db.Column(db.Integer, db.ForeignKey('reader.id'), nullable=False)
    name = db.Column(db.String(300), nullable=False)
    type = db.Column(db.String(40), default='Book')
    json = db.Column(db.JSON, nullable=True)
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)
    deleted_at = db.Column(db.DateTime, nullable=True)

    def to_dict(self):
        return {
            'id': self.id,
            'type': self.type,
            'name': self.name,
            'json': self.json or {},
            'published': _iso(self.created_at),
            'updated': _iso(self.updated_at),
        }


class Notebook(db.Model):
    id = db.Column(db.String(255), primary_key=True)
    reader_id = db.Column(db.Integer, db.ForeignKey('reader.id'), nullable=False)
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)
    deleted_at = db.Column(db.DateTime, nullable=True)

    collaborators = db.relationship('Collaborator', backref='notebook', lazy=True, cascade="all, delete-orphan")
    contexts = db.relationship('NoteContext', backref='notebook', lazy=True)

    def accepted_collaborator(self, reader_id):
        """Return the accepted collaborator record for a reader, if any."""
        for collaborator in self.collaborators:
            if collaborator.reader_id == reader_id and collaborator.status == 'accepted':
                return collaborator
        return None

    def to_dict(self):
        return {
            'id': self.id,
            'type': 'Notebook',
            'name': self.name,
            'description': self.description,
            'collaborators': [c.to_dict() for c in self.collaborators],
            'noteContexts': [c.to_dict() for c in self.contexts if not c.deleted_at],
            'published': _iso(self.created_at),
            'updated': _iso(self.updated_at),
        }


class Collaborator(db.Model):
    id = db.Column(db.String(255), primary_key=True)
    notebook_id = db.Column(db.String(255), db.ForeignKey('notebook.id'), nullable=False)
    reader_id = db.Column(db.Integer, db.ForeignKey('reader.id'), nullable=False)
    status = db.Column(db.String(20), default='pending')  # pending | accepted | refused
    permission = db.Column(db.JSON, nullable=False, default=lambda: {'read': True, 'comment': False})
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    def can_comment(self):
        return self.status == 'accepted' and bool((self.permission or {}).get('comment'))

    def can_read(self):
        return self.status == 'accepted' and bool((self.permission or {}).get('read'))

    def to_dict(self):
        return {
            'id': self.id,
            'notebookId': self.notebook_id,
            'readerId': self.reader_id,
            'status': self.status,
            'permission': self.permission or {},
        }


class NoteContext(db.Model):
    """Named collection of notes. Outlines are the ordered kind."""
    id = db.Column(db.String(255), primary_key=True)
    reader_id = db.Column(db.Integer, db.ForeignKey('reader.id'), nullable=False)
    type = db.Column(db.String(40), nullable=False, default=OUTLINE_TYPE)
    name = db.Column(db.String(200), nullable=True)
    description = db.Column(db.Text, nullable=True)
    json = db.Column(db.JSON, nullable=True)
    notebook_id = db.Column(db.String(255), db.ForeignKey('notebook.id'), nullable=True)
    revision = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)
    deleted_at = db.Column(db.DateTime, nullable=True)

    notes = db.relationship('Note', backref='context', lazy=True, foreign_keys='Note.context_id')

    def is_outline(self):
        return self.type == OUTLINE_TYPE

    def live_notes(self):
        return [n for n in self.notes if n.deleted_at is None]

    def to_dict(self):
        return {
            'id': self.id,
            'type': self.type,
            'name': self.name,
            'description': self.description,
            'json': self.json or {},
            'notebookId': self.notebook_id,
            'revision': self.revision,
            'published': _iso(self.created_at),
            'updated': _iso(self.updated_at),
        }


class Note(db.Model):
    """Annotation owned by a reader, optionally positioned inside an outline."""
    id = db.Column(db.String(255), primary_key=True)
    reader_id = db.Column(db.Integer, db.ForeignKey('reader.id'), nullable=False)
    context_id = db.Column(db.String(255), db.ForeignKey('note_context.id'), nullable=True, index=True)
    source_id = db.Column(db.String(255), db.ForeignKey('source.id'), nullable=True)
    document_url = db.Column(db.String(500), nullable=True)
    canonical = db.Column(db.String(500), nullable=True)
    target = db.Column(db.JSON, nullable=True)
    json = db.Column(db.JSON, nullable=True)

    # Sibling links and nesting, only meaningful inside an outline
    previous = db.Column(db.String(255), nullable=True)
    next = db.Column(db.String(255), nullable=True)
    parent_id = db.Column(db.String(255), nullable=True)

    original = db.Column(db.String(255), nullable=True)
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)
    deleted_at = db.Column(db.DateTime, nullable=True)

    bodies = db.relationship(
        'NoteBody',
        backref='note',
        lazy=True,
        cascade="all, delete-orphan",
        order_by="NoteBody.id"
    )
    source = db.relationship('Source', lazy=True)

    def is_unsorted(self):
        return not (self.previous or self.next or self.parent_id)

    def clear_position(self):
        self.previous = None
        self.next = None
        self.parent_id = None

    def to_dict(self):
        data = {
            'id': self.id,
            'type': 'Note',
            'body': [b.to_dict() for b in self.bodies],
            'canonical': self.canonical,
            'documentUrl': self.document_url,
            'target': self.target,
            'json': self.json or {},
            'contextId': self.context_id,
            'sourceId': self.source_id,
            'previous': self.previous,
            'next': self.next,
            'parentId': self.parent_id,
            'original': self.original,
            'published': _iso(self.created_at),
            'updated': _iso(self.updated_at),
        }
        if self.source is not None and self.source.deleted_at is None:
            data['source'] = {'id': self.source.id, 'name': self.source.name, 'type': self.source.type}
        return data


class NoteBody(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    note_id = db.Column(db.String(255), db.ForeignKey('note.id'), nullable=False)
    content = db.Column(db.Text, nullable=True)  # Stored as sanitised HTML
    motivation = db.Column(db.String(40), nullable=False)
    language = db.Column(db.String(20), nullable=True)

    def to_dict(self):
        data = {'motivation': self.motivation}
        if self.content is not None:
            data['content'] = self.content
        if self.language:
            data['language'] = self.language
        return data


class JobLock(db.Model):
    """Named lock row so scheduled jobs run on one worker at a time."""
    id = db.Column(db.Integer, primary_key=True)
    job_name = db.Column(db.String(80), unique=True, nullable=False)
    locked_at = db.Column(db.DateTime, nullable=False)
    locked_by = db.Column(db.String(80), nullable=True)
