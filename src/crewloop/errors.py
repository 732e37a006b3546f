from __future__ import annotations


class CrewloopError(Exception):
    """Base class for runtime errors raised to callers."""


class ConfigurationError(CrewloopError):
    pass


class TransportError(CrewloopError):
    def __init__(self, message: str, *, status: int | None = None, body: str = "") -> None:
        super().__init__(message)
        self.status = status
        self.body = body


class ResumeError(CrewloopError):
    pass


class CheckpointNotFoundError(ResumeError):
    def __init__(self, session_id: str) -> None:
        super().__init__(f"Checkpoint not found: {session_id}")
        self.session_id = session_id


class CheckpointNotResumableError(ResumeError):
    def __init__(self, session_id: str, status: str) -> None:
        super().__init__(f"Cannot resume checkpoint with status: {status}")
        self.session_id = session_id
        self.status = status


class CheckpointStateError(CrewloopError):
    pass


class ActionNotPermittedError(CrewloopError):
    def __init__(self, message: str, *, code: str | None = None) -> None:
        super().__init__(message)
        self.code = code
