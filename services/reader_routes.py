"""Reader/session routes extracted from app.py for readability."""


def create_reader():
    import app as a

    Reader = a.Reader
    ValidationError = a.ValidationError
    db = a.db
    session = a.session

    data = a.read_json_body()
    username = str(data.get('username') or '').strip()
    if not username:
        raise ValidationError('Username is required', {'username': 'is a required property'})
    if Reader.query.filter_by(username=username).first():
        raise ValidationError('Username already exists', {'username': 'already exists'})

    reader = Reader(username=username, name=(data.get('name') or '').strip() or None)
    password = data.get('password')
    if password:
        reader.set_password(str(password))
    db.session.add(reader)
    db.session.commit()
    a.app.logger.info(f"Created reader {reader.id} ({reader.username})")

    # Automatically select the new reader
    session['user_id'] = reader.id
    session.permanent = True
    return a.ld_jsonify(reader.to_dict(), 201)


def set_reader(reader_id):
    import app as a

    Reader = a.Reader
    db = a.db
    session = a.session

    reader = db.session.get(Reader, reader_id)
    if reader is None or reader.deleted_at:
        raise a.NotFound(f"No Reader found with id: {reader_id}")
    if reader.password_hash:
        data = a.request.get_json(silent=True) or {}
        if not reader.check_password(str(data.get('password') or '')):
            raise a.Unauthorized('Invalid password')

    session['user_id'] = reader.id
    session.permanent = True
    return a.ld_jsonify(reader.to_dict())


def whoami():
    import app as a

    reader = a.require_reader()
    return a.ld_jsonify(reader.to_dict())
