"""Domain errors raised by crud/services and mapped to HTTP responses in main."""


class DomainError(Exception):
    status_code = 400

    def __init__(self, message: str, **context):
        super().__init__(message)
        self.message = message
        self.context = context


class ValidationError(DomainError):
    """Bad input: missing required field, malformed parent_id, cyclic predecessor."""
    status_code = 400


class NotFoundError(DomainError):
    status_code = 404


class ConflictError(DomainError):
    status_code = 409


class PermissionDenied(DomainError):
    status_code = 403
