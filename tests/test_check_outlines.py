import importlib.util
from pathlib import Path

from models import db, Note, NoteContext, Reader

SCRIPT = Path(__file__).resolve().parents[1] / 'scripts' / 'check_outlines.py'


def _load_script():
    module_spec = importlib.util.spec_from_file_location('check_outlines', SCRIPT)
    module = importlib.util.module_from_spec(module_spec)
    module_spec.loader.exec_module(module)
    return module


def _seed(broken):
    reader = Reader(username='checker')
    db.session.add(reader)
    db.session.flush()
    db.session.add(NoteContext(id='o1', reader_id=reader.id))
    db.session.add_all([
        Note(id='a', reader_id=reader.id, context_id='o1', next='b', json={}),
        Note(id='b', reader_id=reader.id, context_id='o1', previous=None if broken else 'a', json={}),
    ])
    db.session.commit()


def test_check_outlines_reports_broken_links(app, capsys):
    with app.app_context():
        _seed(broken=True)
    script = _load_script()

    assert script.main([]) == 1
    out = capsys.readouterr().out
    assert 'Outline o1:' in out
    assert 'note a: next b does not link back' in out


def test_check_outlines_passes_consistent_outline(app, capsys):
    with app.app_context():
        _seed(broken=False)
    script = _load_script()

    assert script.main(['o1']) == 0
    assert 'All outlines consistent' in capsys.readouterr().out
