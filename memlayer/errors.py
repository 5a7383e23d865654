"""
Exception taxonomy for the memory layer.

Every error carries a machine-readable ``kind`` so the API and CLI can
report failures in a structured way.
"""

from typing import Any, Dict, Optional


class MemoryLayerError(Exception):
    """Base exception for all memory layer errors."""

    kind = "memory_error"

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> Dict[str, Any]:
        """Structured form for API responses and CLI output."""
        data = {"kind": self.kind, "message": self.message}
        data.update({k: v for k, v in self.details.items() if v is not None})
        return data


class InvalidRequest(MemoryLayerError):
    """Bad caller input (blank prompt, missing path, empty messages)."""

    kind = "invalid_request"


class BackendError(MemoryLayerError):
    """Generation/embedding backend failure."""

    kind = "backend_error"
    retryable = True


class BackendUnreachable(BackendError):
    """Transport-level failure talking to the backend."""

    kind = "backend_unreachable"


class BackendHTTPError(BackendError):
    """Backend answered with a non-2xx status or an error payload."""

    kind = "backend_http_error"

    def __init__(self, message: str, status: Optional[int] = None, body: Optional[str] = None, **details: Any):
        super().__init__(message, status=status, body=body, **details)
        self.status = status
        self.body = body


class ModelLoading(BackendError):
    """Backend reported the model is still loading."""

    kind = "model_loading"


class MalformedResponse(BackendError):
    """Backend response had no usable content."""

    kind = "malformed_response"
    retryable = False


class InvalidMergePath(MemoryLayerError):
    """Merge destination collides with a source store."""

    kind = "invalid_merge_path"


class StorageError(MemoryLayerError):
    """Any persistence failure."""

    kind = "storage_error"


class AskFailed(MemoryLayerError):
    """The ask flow failed after the user turn was accepted."""

    kind = "ask_failed"

    def __init__(self, session: str, cause: Exception):
        super().__init__(
            f"ask failed for session '{session}': {cause}",
            session=session,
            cause=getattr(cause, "kind", type(cause).__name__),
        )
        self.session = session
        self.cause = cause
