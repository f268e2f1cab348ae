"""
Structural edits to outlines.

Notes in an outline are kept as doubly linked sibling lists (previous/next)
nested through parent_id. All pointer changes go through this module so the
links stay symmetric: a note is spliced out of its old position and linked
into its new one inside a single transaction, after every reference in the
request has been validated.
"""

import threading
import weakref
from contextlib import contextmanager

from flask import current_app

from backend.errors import DomainViolation, NotBelongingToOutline, NotFound
from backend.outline_tree import is_single_chain, order_siblings
from models import db, Note, NoteContext

POSITION_FIELDS = ('previous', 'next', 'parentId')

_FIELD_LABELS = {
    'previous': 'previous property',
    'next': 'next property',
    'parentId': 'parentId property',
}

# Entries vanish once no request holds the lock
_outline_mutexes = weakref.WeakValueDictionary()
_outline_mutexes_guard = threading.Lock()


def _outline_mutex(outline_id):
    with _outline_mutexes_guard:
        mutex = _outline_mutexes.get(outline_id)
        if mutex is None:
            mutex = threading.Lock()
            _outline_mutexes[outline_id] = mutex
        return mutex


@contextmanager
def outline_guard(outline_id):
    """
    Serialise structural changes to one outline and commit them as a unit.

    SQLite has no row locks, so writers to the same outline share a process
    mutex; other databases lock the outline row with SELECT ... FOR UPDATE.
    Yields the freshly loaded outline. Any exception rolls everything back.
    """
    mutex = _outline_mutex(outline_id) if db.engine.dialect.name == 'sqlite' else None
    if mutex is not None:
        mutex.acquire()
    try:
        # Rows read before the lock was taken may be stale
        db.session.expire_all()
        query = db.session.query(NoteContext).filter_by(id=outline_id)
        if mutex is None:
            query = query.with_for_update()
        outline = query.first()
        if outline is None or outline.deleted_at is not None:
            raise NotFound(f"No Outline found with id: {outline_id}")
        yield outline
        outline.revision = (outline.revision or 0) + 1
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    finally:
        if mutex is not None:
            mutex.release()


def get_outline_note(outline, note_id, field=None):
    """Load a live note by id and check it sits in `outline`."""
    note = db.session.get(Note, note_id) if note_id else None
    if note is None or note.deleted_at is not None:
        if field:
            raise NotFound(f"No Note found for {_FIELD_LABELS[field]}: {note_id}")
        raise NotFound(f"No Note found with id: {note_id}")
    if note.context_id != outline.id:
        raise NotBelongingToOutline(note_id, outline.id)
    return note


def _neighbour(note_id):
    """Follow a stored pointer; dangling or deleted targets read as empty."""
    if not note_id:
        return None
    note = db.session.get(Note, note_id)
    if note is None or note.deleted_at is not None:
        current_app.logger.warning("Note pointer to missing note %s ignored", note_id)
        return None
    return note


def _group_members(outline, parent_id, exclude_id):
    query = Note.query.filter(Note.context_id == outline.id, Note.deleted_at.is_(None))
    if parent_id is None:
        query = query.filter(Note.parent_id.is_(None))
    else:
        query = query.filter(Note.parent_id == parent_id)
    members = query.order_by(Note.created_at.asc(), Note.id.asc()).all()
    return [m for m in members if m.id != exclude_id]


class _DetachedView:
    """Pointer values of the siblings as they will be once `note` is spliced out."""

    def __init__(self, note):
        self.note = note

    def previous_of(self, other):
        if other.previous == self.note.id:
            return self.note.previous
        return other.previous

    def next_of(self, other):
        if other.next == self.note.id:
            return self.note.next
        return other.next


def _check_parent(note, parent):
    if parent.id == note.id:
        raise DomainViolation(f"Note {note.id} cannot be nested under itself")
    seen = set()
    ancestor = parent
    while ancestor is not None and ancestor.id not in seen:
        if ancestor.id == note.id:
            raise DomainViolation(f"Note {note.id} cannot be nested under its own descendant {parent.id}")
        seen.add(ancestor.id)
        ancestor = _neighbour(ancestor.parent_id) if ancestor.parent_id else None


def _check_sibling(note, ref, field, parent_id):
    if ref.id == note.id:
        raise DomainViolation(f"Note {note.id} cannot be its own {field} note")
    if ref.parent_id != parent_id:
        raise DomainViolation(
            f"Note {ref.id} ({field}) is not at the same level as note {note.id}"
        )


def resolve_position(outline, note, fields, is_new=False):
    """
    Validate a requested position and work out the new neighbours.

    Returns (parent_id, previous_note, next_note, chain_tail), or None when the
    request does not touch the note's position. `chain_tail` is set when an
    unsorted top-level `previous` note has to be appended after it first.
    Raises before anything is mutated.
    """
    has_prev = 'previous' in fields
    has_next = 'next' in fields
    has_parent = 'parentId' in fields
    if not (has_prev or has_next or has_parent):
        return None
    if (not is_new and has_parent and not (has_prev or has_next)
            and fields['parentId'] == note.parent_id and not note.is_unsorted()):
        return None

    if has_parent:
        parent_id = fields['parentId']
    else:
        parent_id = None if is_new else note.parent_id

    if parent_id is not None:
        parent = get_outline_note(outline, parent_id, 'parentId')
        if not is_new:
            _check_parent(note, parent)
        elif parent.id == note.id:
            raise DomainViolation(f"Note {note.id} cannot be nested under itself")

    req_prev = fields.get('previous')
    req_next = fields.get('next')
    prev_note = get_outline_note(outline, req_prev, 'previous') if req_prev else None
    next_note = get_outline_note(outline, req_next, 'next') if req_next else None
    if prev_note is not None:
        _check_sibling(note, prev_note, 'previous', parent_id)
    if next_note is not None:
        _check_sibling(note, next_note, 'next', parent_id)

    view = _DetachedView(note)

    if prev_note is not None and next_note is not None:
        if view.next_of(prev_note) != next_note.id:
            raise DomainViolation(f"Notes {prev_note.id} and {next_note.id} are not next to each other")
        return parent_id, prev_note, next_note, None

    if prev_note is not None:
        following = view.next_of(prev_note)
        if has_next and following:
            raise DomainViolation(f"Note {prev_note.id} is not the last note at its level")
        if parent_id is None and prev_note.is_unsorted():
            # The anchor joins the end of the existing chain, if there is one
            tail = _root_tail(outline, note, view)
            if tail is not None:
                return None, prev_note, None, tail
        return parent_id, prev_note, _neighbour(following), None

    if next_note is not None:
        preceding = view.previous_of(next_note)
        if has_prev and preceding:
            raise DomainViolation(f"Note {next_note.id} is not the first note at its level")
        if parent_id is None and next_note.is_unsorted():
            tail = _root_tail(outline, note, view)
            if tail is not None:
                if has_prev:
                    raise DomainViolation(
                        f"Note {next_note.id} is unsorted and the outline already has a first note"
                    )
                return None, tail, next_note, None
        return parent_id, _neighbour(preceding), next_note, None

    # Only boundaries were requested: find the head/tail of the target level
    if parent_id is None and has_prev and has_next:
        return None, None, None, None

    members = _group_members(outline, parent_id, note.id)
    if parent_id is None:
        # Unsorted notes are not part of the top-level chain
        members = [m for m in members if m.previous or m.next]
    if has_prev and not has_next:
        head = next((m for m in members if not view.previous_of(m)), None)
        return parent_id, None, head, None
    tail = next((m for m in members if not view.next_of(m)), None)
    return parent_id, tail, None, None


def _root_tail(outline, note, view):
    """Last note of the top-level chain once `note` is spliced out, or None."""
    members = [m for m in _group_members(outline, None, note.id) if m.previous or m.next]
    return next((m for m in members if not view.next_of(m)), None)


def _splice_out(note):
    old_prev = _neighbour(note.previous)
    old_next = _neighbour(note.next)
    if old_prev is not None and old_prev.next == note.id:
        old_prev.next = old_next.id if old_next is not None else None
    if old_next is not None and old_next.previous == note.id:
        old_next.previous = old_prev.id if old_prev is not None else None
    note.previous = None
    note.next = None


def _link(note, parent_id, prev_note, next_note):
    note.parent_id = parent_id
    note.previous = prev_note.id if prev_note is not None else None
    note.next = next_note.id if next_note is not None else None
    if prev_note is not None:
        prev_note.next = note.id
    if next_note is not None:
        next_note.previous = note.id


def place_note(outline, note, fields, is_new=False):
    """
    Insert or move `note` to the position described by `fields`.

    `fields` may carry `previous`, `next` and `parentId`; a key that is absent
    means "not requested", an explicit None means "boundary" or "un-nest".
    """
    resolved = resolve_position(outline, note, fields, is_new=is_new)
    if resolved is None:
        if is_new:
            note.clear_position()
        return note

    parent_id, prev_note, next_note, chain_tail = resolved
    if not is_new:
        _splice_out(note)
    if chain_tail is not None:
        chain_tail.next = prev_note.id
        prev_note.previous = chain_tail.id
    _link(note, parent_id, prev_note, next_note)
    current_app.logger.info(
        "Placed note %s in outline %s (parent=%s previous=%s next=%s)",
        note.id, outline.id, note.parent_id, note.previous, note.next,
    )
    return note


def remove_note(outline, note):
    """
    Take `note` out of the outline structure.

    Its children move up to the note's parent and take its place in the
    sibling chain, in their existing order. Children of an unsorted note are
    appended to the end of the top-level chain instead.
    """
    children = order_siblings(_group_members(outline, note.id, note.id))
    if not children:
        _splice_out(note)
        note.clear_position()
        current_app.logger.info("Removed note %s from outline %s", note.id, outline.id)
        return []

    old_prev = _neighbour(note.previous)
    old_next = _neighbour(note.next)
    if note.parent_id is None and old_prev is None and old_next is None:
        roots = [m for m in _group_members(outline, None, note.id) if m.previous or m.next]
        old_prev = next((m for m in roots if not m.next), None)

    for index, child in enumerate(children):
        child.parent_id = note.parent_id
        child.previous = children[index - 1].id if index else None
        child.next = children[index + 1].id if index + 1 < len(children) else None
    first, last = children[0], children[-1]
    if old_prev is not None:
        first.previous = old_prev.id
        old_prev.next = first.id
    if old_next is not None:
        last.next = old_next.id
        old_next.previous = last.id
    note.clear_position()
    current_app.logger.info(
        "Removed note %s from outline %s; moved %d children up a level",
        note.id, outline.id, len(children),
    )
    return children


def link_created_notes(outline, notes):
    """
    Attach a batch of new notes whose pointers may reference each other.

    References must resolve to a note in the batch or a live note of the
    outline. Referenced notes get their back-pointers set; each slot may be
    claimed once, and existing notes must not already point at another note
    in that slot. Notes that only name a parent are appended to the end of
    its children. Every sibling group the batch touches must still form a
    single chain afterwards, otherwise DomainViolation is raised and the
    caller's transaction rolls back.
    """
    batch = {n.id: n for n in notes}

    def resolve(ref_id, field):
        if ref_id in batch:
            return batch[ref_id]
        return get_outline_note(outline, ref_id, field)

    claims = {}
    for note in notes:
        if note.parent_id:
            resolve(note.parent_id, 'parentId')
        seen = {note.id}
        parent_id = note.parent_id
        while parent_id in batch:
            if parent_id in seen:
                raise DomainViolation(f"Note {note.id} cannot be nested under itself or its descendants")
            seen.add(parent_id)
            parent_id = batch[parent_id].parent_id
        for field, back in (('previous', 'next'), ('next', 'previous')):
            ref_id = getattr(note, field)
            if not ref_id:
                continue
            ref = resolve(ref_id, field)
            _check_sibling(note, ref, field, note.parent_id)
            current = getattr(ref, back)
            if not current and (ref.id, back) in claims:
                current = claims[(ref.id, back)][1]
            if current and current != note.id:
                raise DomainViolation(f"Note {ref.id} already has a {back} note {current}")
            claims[(ref.id, back)] = (ref, note.id)

    for (_, back), (ref, note_id) in claims.items():
        setattr(ref, back, note_id)

    appended = set()
    for note in notes:
        if not note.parent_id or note.previous or note.next:
            continue
        siblings = [] if note.parent_id in batch else _group_members(outline, note.parent_id, None)
        siblings += [
            n for n in notes
            if n.parent_id == note.parent_id and n.id != note.id
            and (n.previous or n.next or n.id in appended)
        ]
        if siblings:
            tail = order_siblings(siblings)[-1]
            tail.next = note.id
            note.previous = tail.id
        appended.add(note.id)

    for parent_id in {n.parent_id for n in notes}:
        members = [] if parent_id in batch else _group_members(outline, parent_id, None)
        members += [n for n in notes if n.parent_id == parent_id]
        if parent_id is None:
            members = [m for m in members if m.previous or m.next]
        if not is_single_chain(members):
            level = 'top-level notes' if parent_id is None else f'children of note {parent_id}'
            raise DomainViolation(f"New notes would leave the {level} out of order")

    current_app.logger.info("Linked %d new notes into outline %s", len(notes), outline.id)
    return notes
