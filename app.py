import os
import re
import json
import logging

from dotenv import load_dotenv
from flask import Flask, request, session
from werkzeug.exceptions import HTTPException
from werkzeug.http import HTTP_STATUS_CODES

load_dotenv()

from models import db, Reader, Source, Notebook, Collaborator, NoteContext, Note, OUTLINE_TYPE, new_short_id, utcnow
from backend.errors import ApiError, DomainViolation, Forbidden, NotFound, Unauthorized, ValidationError
from apscheduler.schedulers.background import BackgroundScheduler
from services import reader_routes, source_routes, notebook_routes, outline_routes, note_routes

LD_JSON = 'application/ld+json'

app = Flask(__name__)
app.config['SQLALCHEMY_DATABASE_URI'] = os.environ.get('DATABASE_URL', 'sqlite:///reader_notes.db')
app.config['SQLALCHEMY_TRACK_MODIFICATIONS'] = False
app.config['SECRET_KEY'] = os.environ.get('SECRET_KEY', 'dev-secret-key-change-in-production')
app.config['PERMANENT_SESSION_LIFETIME'] = 365 * 24 * 60 * 60  # 1 year in seconds
app.config['API_SHARED_KEY'] = os.environ.get('API_SHARED_KEY')  # Optional shared key for API callers
app.config['PURGE_AFTER_DAYS'] = int(os.environ.get('PURGE_AFTER_DAYS', 30))
app.logger.setLevel(getattr(logging, os.environ.get('LOG_LEVEL', 'INFO').upper(), logging.INFO))

db.init_app(app)
scheduler = None

def get_current_user():
    """Resolve the current reader from a shared API key + reader id header, else fall back to session."""
    # Header-based auth for service callers
    api_key = request.headers.get('X-API-Key')
    api_user_id = request.headers.get('X-User-Id')
    shared_key = app.config.get('API_SHARED_KEY')
    if shared_key and api_key and api_user_id:
        try:
            api_uid_int = int(api_user_id)
        except (TypeError, ValueError):
            api_uid_int = None
        if api_uid_int and api_key == shared_key:
            reader = db.session.get(Reader, api_uid_int)
            if reader and not reader.deleted_at:
                return reader

    # Session-based auth for browser readers
    reader_id = session.get('user_id')
    if reader_id:
        reader = db.session.get(Reader, reader_id)
        if reader and not reader.deleted_at:
            return reader
    return None


def require_reader():
    reader = get_current_user()
    if not reader:
        raise Unauthorized('No reader selected')
    return reader


def read_json_body():
    """Return the parsed JSON body, rejecting anything that is not an object."""
    data = request.get_json(silent=True)
    if isinstance(data, dict):
        return data
    raise ValidationError('Request body must be a JSON object')


def ld_jsonify(payload, status=200, location=None):
    response = app.response_class(json.dumps(payload), status=status, mimetype=LD_JSON)
    if location:
        response.headers['Location'] = location
    return response


def no_content():
    response = app.response_class(status=204)
    response.headers['Content-Type'] = LD_JSON
    return response


def _slugify_filename(value):
    slug = re.sub(r'[^A-Za-z0-9]+', '-', str(value or '')).strip('-').lower()
    return slug or 'outline'


def _error_details(extra=None):
    details = {
        'requestUrl': request.full_path.rstrip('?'),
        'requestBody': request.get_json(silent=True),
    }
    details.update(extra or {})
    return details


@app.errorhandler(ApiError)
def handle_api_error(err):
    if err.status_code >= 500:
        app.logger.error(f"{request.method} {request.path} failed: {err.message}")
    elif isinstance(err, DomainViolation):
        app.logger.warning(f"{request.method} {request.path} rejected: {err.message}")
    else:
        app.logger.info(f"{request.method} {request.path} -> {err.status_code}: {err.message}")
    body = {
        'statusCode': err.status_code,
        'error': HTTP_STATUS_CODES.get(err.status_code, 'Error'),
        'message': err.message,
        'details': _error_details(err.details),
    }
    return ld_jsonify(body, err.status_code)


@app.errorhandler(HTTPException)
def handle_http_error(err):
    if err.code is None or err.code < 400:
        return err
    body = {
        'statusCode': err.code,
        'error': HTTP_STATUS_CODES.get(err.code, 'Error'),
        'message': err.description,
        'details': _error_details(),
    }
    return ld_jsonify(body, err.code)


with app.app_context():
    db.create_all()


def _run_purge():
    from backend.purge_jobs import run_scheduled_purge
    run_scheduled_purge(app)


def _start_scheduler():
    """Start background scheduler for the nightly purge of deleted records."""
    global scheduler
    if os.environ.get('ENABLE_BACKGROUND_JOBS', '1') != '1':
        return
    if scheduler and scheduler.running:
        return
    # Avoid double-start in Flask debug reloader
    if app.debug and os.environ.get('WERKZEUG_RUN_MAIN') != 'true':
        return
    scheduler = BackgroundScheduler()
    scheduler.add_job(_run_purge, 'cron', hour=int(os.environ.get('PURGE_HOUR', 3)), minute=0)
    scheduler.start()
    app.logger.info("Background scheduler started")

_jobs_bootstrapped = False

@app.before_request
def _bootstrap_background_jobs():
    global _jobs_bootstrapped
    if _jobs_bootstrapped:
        return
    _start_scheduler()
    _jobs_bootstrapped = True

# Reader selection
@app.route('/api/readers', methods=['POST'])
def create_reader():
    return reader_routes.create_reader()

@app.route('/api/set-reader/<int:reader_id>', methods=['POST'])
def set_reader(reader_id):
    return reader_routes.set_reader(reader_id)

@app.route('/api/whoami')
def whoami():
    return reader_routes.whoami()

# Sources
@app.route('/sources', methods=['POST'])
def create_source():
    return source_routes.create_source()

@app.route('/sources/<source_id>', methods=['GET', 'DELETE'])
def handle_source(source_id):
    return source_routes.handle_source(source_id)

# Notebooks and collaborators
@app.route('/notebooks', methods=['POST'])
def create_notebook():
    return notebook_routes.create_notebook()

@app.route('/notebooks/<notebook_id>', methods=['GET'])
def get_notebook(notebook_id):
    return notebook_routes.get_notebook(notebook_id)

@app.route('/notebooks/<notebook_id>/collaborators', methods=['POST'])
def invite_collaborator(notebook_id):
    return notebook_routes.invite_collaborator(notebook_id)

@app.route('/notebooks/<notebook_id>/collaborators/<collaborator_id>', methods=['PUT'])
def update_collaborator(notebook_id, collaborator_id):
    return notebook_routes.update_collaborator(notebook_id, collaborator_id)

# Outlines
@app.route('/outlines', methods=['POST'])
def create_outline():
    return outline_routes.create_outline()

@app.route('/outlines/<outline_id>', methods=['GET', 'PUT', 'DELETE'])
def handle_outline(outline_id):
    return outline_routes.handle_outline(outline_id)

@app.route('/outlines/<outline_id>/export', methods=['GET'])
def export_outline(outline_id):
    """Export an outline as an indented plain-text list."""
    return outline_routes.export_outline(outline_id)

@app.route('/outlines/<outline_id>/notes', methods=['POST'])
def add_outline_note(outline_id):
    return outline_routes.add_outline_note(outline_id)

@app.route('/outlines/<outline_id>/notes/<note_id>', methods=['PATCH', 'DELETE'])
def handle_outline_note(outline_id, note_id):
    return outline_routes.handle_outline_note(outline_id, note_id)

# Generic note contexts
@app.route('/noteContexts', methods=['POST'])
def create_note_context():
    return outline_routes.create_note_context()

@app.route('/noteContexts/<context_id>', methods=['GET'])
def get_note_context(context_id):
    return outline_routes.get_note_context(context_id)

@app.route('/noteContexts/<context_id>/notes', methods=['POST'])
def add_context_note(context_id):
    return outline_routes.add_context_note(context_id)

# Notes
@app.route('/notes', methods=['POST'])
def create_note():
    return note_routes.create_note()

@app.route('/notes/<note_id>', methods=['GET', 'DELETE'])
def handle_note(note_id):
    return note_routes.handle_note(note_id)

if __name__ == '__main__':
    app.run(host='0.0.0.0', debug=True)
