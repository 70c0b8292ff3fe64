"""
Error taxonomy for transcription jobs.

Every fatal error records the stage it happened in so a failed job can tell
the caller where it stopped; chunk errors also carry the chunk index.
"""

from typing import Optional


class TranscriptionError(Exception):
    """Base class for job failures."""

    def __init__(
        self,
        message: str,
        stage: Optional[str] = None,
        chunk_index: Optional[int] = None,
    ):
        super().__init__(message)
        self.message = message
        self.stage = stage
        self.chunk_index = chunk_index

    def __str__(self) -> str:
        parts = []
        if self.stage:
            parts.append(f"[{self.stage}]")
        if self.chunk_index is not None:
            parts.append(f"chunk {self.chunk_index}:")
        parts.append(self.message)
        return " ".join(parts)


class InvalidInput(TranscriptionError):
    """Zero-duration, missing or undecodable audio."""

    def __init__(self, message: str):
        super().__init__(message, stage="preprocessing")


class ChunkExportFailed(TranscriptionError):
    def __init__(self, index: int, reason: str):
        super().__init__(f"Failed to export chunk: {reason}", stage="chunking", chunk_index=index)
        self.reason = reason


class BackendFailure(TranscriptionError):
    def __init__(self, chunk_index: int, cause: BaseException):
        super().__init__(
            f"Backend failed: {cause}",
            stage="transcribing",
            chunk_index=chunk_index,
        )
        self.cause = cause


class RemoteAPIError(Exception):
    """Non-success answer from a hosted transcription API."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code

    def __str__(self) -> str:
        if self.status_code is not None:
            return f"HTTP {self.status_code}: {self.args[0]}"
        return self.args[0]


class TranscriptionCancelled(Exception):
    """Raised to unwind a job after cancel() was observed. Not a failure."""
