from datetime import timedelta

from backend.purge_jobs import PURGE_LOCK_NAME, purge_deleted_records, run_scheduled_purge
from models import db, JobLock, Note, NoteBody, NoteContext, Reader, Source, utcnow


def _seed():
    reader = Reader(username='sweeper')
    db.session.add(reader)
    db.session.flush()
    old = utcnow() - timedelta(days=45)
    recent = utcnow() - timedelta(days=2)

    gone_outline = NoteContext(id='gone', reader_id=reader.id, deleted_at=old)
    live_outline = NoteContext(id='live', reader_id=reader.id)
    old_source = Source(id='src-old', reader_id=reader.id, name='Old', deleted_at=old)
    db.session.add_all([gone_outline, live_outline, old_source])

    notes = [
        Note(id='in-gone', reader_id=reader.id, context_id='gone', json={}),
        Note(id='old-deleted', reader_id=reader.id, context_id='live', deleted_at=old, json={}),
        Note(id='recent-deleted', reader_id=reader.id, context_id='live', deleted_at=recent, json={}),
        Note(id='keeper', reader_id=reader.id, context_id='live', previous='old-deleted',
             source_id='src-old', json={}),
    ]
    notes[1].bodies = [NoteBody(motivation='highlighting', content='old')]
    db.session.add_all(notes)
    db.session.commit()


def test_purge_removes_only_old_soft_deleted_rows(app):
    with app.app_context():
        _seed()
        counts = purge_deleted_records(30)
        assert counts == {'notes': 2, 'contexts': 1, 'sources': 1}

        remaining = {n.id for n in Note.query.all()}
        assert remaining == {'recent-deleted', 'keeper'}
        assert db.session.get(NoteContext, 'gone') is None
        assert db.session.get(Source, 'src-old') is None
        assert NoteBody.query.count() == 0

        keeper = db.session.get(Note, 'keeper')
        assert keeper.previous is None
        assert keeper.source_id is None


def test_scheduled_purge_skips_when_locked(app):
    with app.app_context():
        _seed()
        db.session.add(JobLock(job_name=PURGE_LOCK_NAME, locked_at=utcnow(), locked_by='other-worker'))
        db.session.commit()

    assert run_scheduled_purge(app) is None
    with app.app_context():
        assert db.session.get(NoteContext, 'gone') is not None


def test_scheduled_purge_releases_lock(app):
    with app.app_context():
        _seed()

    counts = run_scheduled_purge(app)
    assert counts['notes'] == 2
    with app.app_context():
        assert JobLock.query.filter_by(job_name=PURGE_LOCK_NAME).count() == 0
