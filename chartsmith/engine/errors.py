"""Exception hierarchy for the realtime sync pipeline.

One exception per failure mode. Each carries the context needed to
log it without re-deriving state at the catch site.
"""
from __future__ import annotations


class ChartsmithError(Exception):
    """Base exception for all sync errors."""


class MalformedFrameError(ChartsmithError):
    """Inbound push frame cannot be interpreted."""
    def __init__(self, reason: str, frame: object = None):
        self.reason = reason
        self.frame = frame
        super().__init__(f"Malformed push frame: {reason}")


class ApiError(ChartsmithError):
    """Backend HTTP request failed or returned an unusable body."""
    def __init__(self, endpoint: str, reason: str, status: int | None = None):
        self.endpoint = endpoint
        self.reason = reason
        self.status = status
        prefix = f"HTTP {status} " if status is not None else ""
        super().__init__(f"{prefix}request to {endpoint} failed: {reason}")


class PushTokenError(ChartsmithError):
    """A push token could not be obtained from the token issuer."""
    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Push token unavailable: {reason}")


class PushTokenRejectedError(PushTokenError):
    """The broker refused the push token (expired or unauthorized)."""
    def __init__(self, code: int, message: str = ""):
        self.code = code
        self.message = message
        super().__init__(f"broker rejected token (code {code}): {message}")


class TransportError(ChartsmithError):
    """The push connection failed or dropped."""
    def __init__(self, endpoint: str, reason: str):
        self.endpoint = endpoint
        self.reason = reason
        super().__init__(f"Push transport error on {endpoint}: {reason}")


class ArtifactPathError(ChartsmithError):
    """An artifact path cannot be mapped into the local chart directory."""
    def __init__(self, file_path: str, reason: str):
        self.file_path = file_path
        self.reason = reason
        super().__init__(f"Cannot resolve artifact path {file_path!r}: {reason}")


class ArtifactWriteError(ChartsmithError):
    """Reading or writing an artifact on disk failed."""
    def __init__(
        self,
        file_path: str,
        workspace_id: str,
        operation: str,
        cause: BaseException,
    ):
        self.file_path = file_path
        self.workspace_id = workspace_id
        self.operation = operation
        self.cause = cause
        super().__init__(
            f"{operation} failed for {file_path} "
            f"(workspace {workspace_id}): {cause}"
        )
