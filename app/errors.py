"""
Server-side error taxonomy.

Services raise these; the handlers registered in app.main turn them into
JSON responses. A moderation hold is NOT an error - it is a normal 201 with
is_approved=False.
"""


class AppError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"detail": self.message}


class ValidationError(AppError):
    """Malformed or missing fields. Raised before moderation; nothing is persisted."""

    status_code = 400

    def __init__(self, errors: list):
        super().__init__("Validation failed")
        self.errors = errors

    def to_dict(self) -> dict:
        return {"detail": self.message, "errors": self.errors}


class NotFoundError(AppError):
    status_code = 404

    def __init__(self, resource: str, resource_id):
        super().__init__(f"{resource} not found")
        self.resource = resource
        self.resource_id = resource_id


class AuthError(AppError):
    status_code = 401


class PermissionDeniedError(AppError):
    status_code = 403

    def __init__(self, message: str = "Access denied"):
        super().__init__(message)


class PersistenceError(AppError):
    """The write was rolled back; no partial state is left behind."""

    status_code = 500
