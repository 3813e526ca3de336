"""Error kinds raised by the booking and lifecycle engines.

Every error carries an HTTP status and a machine-readable ``code`` so the API
layer can render it without knowing where it came from.
"""


class ClinicError(Exception):
    status_code = 500
    default_code = 'INTERNAL_ERROR'

    def __init__(self, detail: str, code: str | None = None):
        super().__init__(detail)
        self.detail = detail
        self.code = code or self.default_code


class ValidationError(ClinicError):
    status_code = 400
    default_code = 'INVALID_REQUEST'


class AuthorizationError(ClinicError):
    status_code = 403
    default_code = 'ACCESS_DENIED'


class NotFoundError(ClinicError):
    status_code = 404
    default_code = 'NOT_FOUND'


class ConflictError(ClinicError):
    status_code = 409
    default_code = 'CONFLICT'


class PersistenceError(ClinicError):
    status_code = 500
    default_code = 'PERSISTENCE_ERROR'
