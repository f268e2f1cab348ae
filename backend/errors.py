"""Request-scoped API errors rendered into the JSON error envelope by app.py."""


class ApiError(Exception):
    status_code = 400

    def __init__(self, message, details=None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ValidationError(ApiError):
    """Malformed request body; `validation` maps field names to problems."""
    status_code = 400

    def __init__(self, message, validation=None):
        super().__init__(message, details={'validation': validation or {}})
        self.validation = validation or {}


class DomainViolation(ApiError):
    status_code = 400


class Unauthorized(ApiError):
    status_code = 401


class Forbidden(ApiError):
    status_code = 403


class NotFound(ApiError):
    status_code = 404


class NotBelongingToOutline(DomainViolation):
    def __init__(self, note_id, outline_id):
        super().__init__(f"Note {note_id} does not belong to outline {outline_id}")
        self.note_id = note_id
        self.outline_id = outline_id
