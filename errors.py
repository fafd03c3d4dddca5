class ElectionError(Exception):
    """Base error for the election service. Carries the HTTP status it maps to."""
    status_code = 500

    def __init__(self, message, **details):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self):
        body = {'success': False, 'error': self.message}
        body.update(self.details)
        return body

class ValidationError(ElectionError):
    """Malformed or missing fields."""
    status_code = 400

class NotFound(ElectionError):
    status_code = 404

class Conflict(ElectionError):
    """Duplicate voter, duplicate position name or already voted."""
    status_code = 409

class Unavailable(ElectionError):
    """The store could not be reached or a write failed."""
    status_code = 503
