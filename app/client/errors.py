"""Errors raised by the staff notification client."""


class NotificationClientError(Exception):
    """Any failure talking to the notification endpoints."""

    def __init__(self, message: str, status: int = 0):
        super().__init__(message)
        self.status = status


class TransientNetworkError(NotificationClientError):
    """Timeouts, dropped connections, 5xx, exhausted 429 retries."""


class AuthError(NotificationClientError):
    """Missing, invalid or expired token - the server refused the request or channel."""
