"""Error kinds raised by importers, exporters and the transport.

``NotFound``, ``Forbidden`` and ``BadRequest`` are terminal for a task.
``UpstreamFailure`` wraps anything the external service (or the network)
threw at us; retrying is up to the caller.
"""

from typing import Optional


class SyncError(Exception):
    """Base class; ``status_code`` is what the HTTP layer reports."""

    status_code = 500

    def __init__(self, message: str = ""):
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__


class NotFound(SyncError):
    status_code = 404


class Forbidden(SyncError):
    status_code = 403


class BadRequest(SyncError):
    status_code = 400


class UpstreamFailure(SyncError):
    status_code = 502

    def __init__(self, message: str = "", response_code: Optional[int] = None):
        super().__init__(message)
        self.response_code = response_code


class TaskAborted(SyncError):
    """Raised inside a job when its task was finalized from the outside."""

    status_code = 409
