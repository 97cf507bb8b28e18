"""
errors.py — Relay exception hierarchy.

Each error carries the HTTP status it maps to; main.py turns them into
{"error": ...} JSON (or plain text on the streaming route).
"""


class RelayError(Exception):
    status_code: int = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class InvalidRequestError(RelayError):
    """Missing sessionId / message or an unreadable body."""
    status_code = 400


class UpstreamModelError(RelayError):
    """The inference service failed or returned something unusable."""
    status_code = 500


class SessionStorageError(RelayError):
    """Session store I/O fault. Transient — the caller may retry the request."""
    status_code = 500
