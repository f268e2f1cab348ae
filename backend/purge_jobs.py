"""Nightly hard-delete of soft-deleted notes, contexts and sources."""

import os
from datetime import timedelta

from flask import current_app
from sqlalchemy.exc import IntegrityError

from models import db, JobLock, Note, NoteBody, NoteContext, Source, utcnow

PURGE_LOCK_NAME = 'purge_deleted_records'
STALE_LOCK_AFTER = timedelta(minutes=30)


def purge_deleted_records(older_than_days=30):
    """
    Hard-delete rows whose deleted_at is older than `older_than_days`.

    Live notes that still point at a purged row (previous/next/parent, context
    or source) have the reference cleared first. Returns per-table counts.
    """
    cutoff = utcnow() - timedelta(days=older_than_days)

    notes = Note.query.filter(Note.deleted_at.isnot(None), Note.deleted_at < cutoff).all()
    contexts = NoteContext.query.filter(
        NoteContext.deleted_at.isnot(None), NoteContext.deleted_at < cutoff
    ).all()
    sources = Source.query.filter(Source.deleted_at.isnot(None), Source.deleted_at < cutoff).all()

    note_ids = [n.id for n in notes]
    context_ids = [c.id for c in contexts]
    source_ids = [s.id for s in sources]

    if note_ids:
        for field in (Note.previous, Note.next, Note.parent_id):
            Note.query.filter(field.in_(note_ids)).update({field: None}, synchronize_session=False)
    if context_ids:
        # Notes of a purged context go with it
        extra = Note.query.filter(Note.context_id.in_(context_ids)).all()
        notes.extend(n for n in extra if n.id not in set(note_ids))
    if source_ids:
        Note.query.filter(Note.source_id.in_(source_ids)).update(
            {Note.source_id: None}, synchronize_session=False
        )

    all_note_ids = [n.id for n in notes]
    if all_note_ids:
        NoteBody.query.filter(NoteBody.note_id.in_(all_note_ids)).delete(synchronize_session=False)
        Note.query.filter(Note.id.in_(all_note_ids)).delete(synchronize_session=False)
    if context_ids:
        NoteContext.query.filter(NoteContext.id.in_(context_ids)).delete(synchronize_session=False)
    if source_ids:
        Source.query.filter(Source.id.in_(source_ids)).delete(synchronize_session=False)
    db.session.commit()
    db.session.expire_all()

    counts = {'notes': len(all_note_ids), 'contexts': len(context_ids), 'sources': len(source_ids)}
    current_app.logger.info(
        "Purged %(notes)d notes, %(contexts)d contexts, %(sources)d sources", counts
    )
    return counts


def _acquire_lock(worker_id):
    now = utcnow()
    if db.engine.dialect.name == 'sqlite':
        # SQLite doesn't support FOR UPDATE; use insert + fallback update for stale locks.
        try:
            db.session.add(JobLock(job_name=PURGE_LOCK_NAME, locked_at=now, locked_by=worker_id))
            db.session.commit()
            return True
        except IntegrityError:
            db.session.rollback()
            lock = db.session.query(JobLock).filter_by(job_name=PURGE_LOCK_NAME).first()
            if lock and now - lock.locked_at >= STALE_LOCK_AFTER:
                lock.locked_at = now
                lock.locked_by = worker_id
                db.session.commit()
                return True
            if lock:
                current_app.logger.info(f"Purge already running (locked by {lock.locked_by}), skipping")
            return False

    lock = db.session.query(JobLock).filter_by(job_name=PURGE_LOCK_NAME).with_for_update(nowait=True).first()
    if lock:
        if now - lock.locked_at < STALE_LOCK_AFTER:
            current_app.logger.info(f"Purge already running (locked by {lock.locked_by}), skipping")
            db.session.rollback()
            return False
        lock.locked_at = now
        lock.locked_by = worker_id
    else:
        db.session.add(JobLock(job_name=PURGE_LOCK_NAME, locked_at=now, locked_by=worker_id))
    db.session.commit()
    return True


def _release_lock(worker_id):
    try:
        lock = db.session.query(JobLock).filter_by(job_name=PURGE_LOCK_NAME).first()
        if lock and lock.locked_by == worker_id:
            db.session.delete(lock)
            db.session.commit()
    except Exception as e:
        current_app.logger.error(f"Error releasing purge lock: {e}")
        db.session.rollback()


def run_scheduled_purge(flask_app):
    """Scheduler entry point: take the job lock, purge, release."""
    with flask_app.app_context():
        worker_id = str(os.getpid())
        try:
            acquired = _acquire_lock(worker_id)
        except Exception as e:
            db.session.rollback()
            current_app.logger.info(f"Purge lock acquisition failed (worker {worker_id}), skipping: {e}")
            return None
        if not acquired:
            return None
        try:
            return purge_deleted_records(flask_app.config['PURGE_AFTER_DAYS'])
        except Exception:
            db.session.rollback()
            current_app.logger.exception("Purge of deleted records failed")
            return None
        finally:
            _release_lock(worker_id)
