"""
Error taxonomy for adomcp.

Every failure a tool can report is an ``AdoMcpError`` carrying a ``kind``
(the category an agent can branch on) and a human-readable ``detail``.
"""

from typing import Any, Dict, List, Optional


class AdoMcpError(Exception):
    """Base error for the project."""

    kind = "Error"

    def __init__(self, detail: str, **context: Any):
        super().__init__(detail)
        self.detail = detail
        self.context = context

    def to_dict(self) -> Dict[str, Any]:
        """Render the error as the ``error`` member of a tool payload."""
        payload = {"kind": self.kind, "type": type(self).__name__, "detail": self.detail}
        if self.context:
            payload["context"] = self.context
        return payload


class NotFoundError(AdoMcpError):
    kind = "NotFound"


class BranchNotFound(NotFoundError):
    pass


class SourceBranchNotFound(NotFoundError):
    pass


class FileNotFound(NotFoundError):
    pass


class UnknownStage(NotFoundError):
    """Requested stage is not a key of the document's ``Environments``."""

    def __init__(self, stage: str, available: List[str]):
        super().__init__(
            f"Stage '{stage}' not found in Environments section. "
            f"Available stages: {', '.join(available)}",
            stage=stage,
            available=list(available),
        )
        self.stage = stage
        self.available = list(available)


class ConflictError(AdoMcpError):
    kind = "Conflict"


class StaleBranchTip(ConflictError):
    """The branch advanced since its tip was read; the push was rejected."""


class BranchAlreadyExists(ConflictError):
    pass


class FileAlreadyExists(ConflictError):
    pass


class MalformedDocument(AdoMcpError):
    kind = "MalformedDocument"


class InvalidRequest(AdoMcpError):
    kind = "InvalidRequest"


class EmptyRequirement(InvalidRequest):
    pass


class RemoteUnavailable(AdoMcpError):
    """Transport, throttling, server or authentication failure from the service."""

    kind = "RemoteUnavailable"

    def __init__(self, detail: str, status_code: Optional[int] = None, **context: Any):
        if status_code is not None:
            context["status_code"] = status_code
        super().__init__(detail, **context)
        self.status_code = status_code


class PartialFailure(AdoMcpError):
    """A multi-step operation stopped after some steps took effect."""

    kind = "PartialFailure"

    def __init__(self, detail: str, completed: List[str], failed_step: str, cause: AdoMcpError):
        super().__init__(
            detail,
            completed=list(completed),
            failed_step=failed_step,
            cause=cause.to_dict(),
        )
        self.completed = list(completed)
        self.failed_step = failed_step
        self.cause = cause
