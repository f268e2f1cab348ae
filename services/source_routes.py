"""Source (book/document) routes extracted from app.py."""

SOURCE_TYPES = {'Book', 'Article', 'Chapter', 'WebPage', 'Thesis', 'Report', 'Other'}


def _owned_source(source_id, reader):
    import app as a

    source = a.db.session.get(a.Source, source_id)
    if source is None or source.deleted_at:
        raise a.NotFound(f"No Source found with id: {source_id}")
    if source.reader_id != reader.id:
        raise a.Forbidden(f"Access to Source {source_id} disallowed")
    return source


def create_source():
    import app as a

    Source = a.Source
    ValidationError = a.ValidationError
    db = a.db

    reader = a.require_reader()
    data = a.read_json_body()
    name = str(data.get('name') or '').strip()
    validation = {}
    if not name:
        validation['name'] = 'is a required property'
    source_type = data.get('type') or 'Book'
    if source_type not in SOURCE_TYPES:
        validation['type'] = f"must be one of {', '.join(sorted(SOURCE_TYPES))}"
    extra = data.get('json')
    if extra is not None and not isinstance(extra, dict):
        validation['json'] = 'must be an object'
    if validation:
        raise ValidationError('Source Validation Error', validation)

    source = Source(id=a.new_short_id(reader.id), reader_id=reader.id, name=name, type=source_type, json=extra or {})
    db.session.add(source)
    db.session.commit()
    a.app.logger.info(f"Reader {reader.id} created source {source.id}")
    return a.ld_jsonify(source.to_dict(), 201, location=f"/sources/{source.id}")


def handle_source(source_id):
    import app as a

    Note = a.Note
    db = a.db

    reader = a.require_reader()
    source = _owned_source(source_id, reader)

    if a.request.method == 'DELETE':
        now = a.utcnow()
        source.deleted_at = now
        # Notes keep their sourceId; the summary is hidden once the source is gone
        count = Note.query.filter(Note.source_id == source.id, Note.deleted_at.is_(None)).count()
        db.session.commit()
        a.app.logger.info(f"Source {source.id} deleted ({count} notes still reference it)")
        return a.no_content()

    data = source.to_dict()
    notes = Note.query.filter(
        Note.source_id == source.id,
        Note.reader_id == reader.id,
        Note.deleted_at.is_(None),
    ).order_by(Note.created_at.asc()).all()
    data['replies'] = [n.to_dict() for n in notes]
    return a.ld_jsonify(data)
