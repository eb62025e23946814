"""
Named errors raised by the tracking core.
Routers let these propagate; main.py maps them to HTTP responses.
"""


class TrackingError(Exception):
    """Base class for errors reported to the caller"""
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFound(TrackingError):
    status_code = 404


class InvalidRole(TrackingError):
    status_code = 400


class NotAuthenticated(TrackingError):
    status_code = 401

    def __init__(self, message: str = "Not authenticated"):
        super().__init__(message)


class PermissionDenied(TrackingError):
    status_code = 403


class InvalidTransition(TrackingError):
    status_code = 409


class ConcurrentModification(TrackingError):
    status_code = 409


class StoreError(TrackingError):
    status_code = 503


def require_actor(actor_uid):
    """Fail fast before any store access when the caller has no identity"""
    if not actor_uid:
        raise NotAuthenticated()
    return actor_uid
