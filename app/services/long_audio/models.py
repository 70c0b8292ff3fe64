"""
Data model for the long-audio transcription pipeline.

Timestamps are seconds as floats. Segments in a ChunkTranscript are relative
to the chunk they came from; segments in a TranscriptionResult are on the
original audio's timeline.
"""

from dataclasses import dataclass, field, asdict
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple


@dataclass(frozen=True)
class AudioAsset:
    """Decodable audio file and the metadata ffprobe reported for it."""
    path: Path
    duration: float
    byte_size: int
    sample_rate: int = 0
    channels: int = 0

    def __post_init__(self):
        if self.duration < 0:
            raise ValueError(f"duration must be >= 0, got {self.duration}")
        if self.byte_size < 0:
            raise ValueError(f"byte_size must be >= 0, got {self.byte_size}")


@dataclass(frozen=True)
class ChunkDescriptor:
    """One time window of the original audio and the file holding it."""
    index: int
    start_time: float
    end_time: float
    source_path: Path
    temporary: bool = False  # True when the file was exported for this job

    def __post_init__(self):
        if self.end_time <= self.start_time:
            raise ValueError(
                f"Chunk {self.index}: end_time ({self.end_time}) must be greater "
                f"than start_time ({self.start_time})"
            )

    @property
    def duration(self) -> float:
        return self.end_time - self.start_time


@dataclass
class TranscriptSegment:
    start: float
    end: float
    text: str
    id: int = 0
    confidence: Optional[float] = None
    speaker: Optional[str] = None

    def shifted(self, offset: float, segment_id: int) -> "TranscriptSegment":
        """Copy of this segment moved by `offset` seconds."""
        return TranscriptSegment(
            start=self.start + offset,
            end=self.end + offset,
            text=self.text,
            id=segment_id,
            confidence=self.confidence,
            speaker=self.speaker,
        )


@dataclass
class ChunkTranscript:
    """What a backend returned for one chunk, in chunk-local time."""
    text: str
    segments: List[TranscriptSegment] = field(default_factory=list)
    language: Optional[str] = None
    model_used: str = "unknown"


@dataclass
class ChunkResult:
    """
    A chunk paired with its transcript.

    `transcript` is None when the chunk failed and the job runs with the
    skip policy; `error` then holds the failure.
    """
    chunk: ChunkDescriptor
    transcript: Optional[ChunkTranscript] = None
    error: Optional[BaseException] = None

    @property
    def failed(self) -> bool:
        return self.transcript is None


@dataclass
class TranscriptionResult:
    text: str
    segments: List[TranscriptSegment]
    language: str
    duration: float
    model_used: str
    timestamp: datetime = field(default_factory=datetime.now)
    gaps: List[Tuple[float, float]] = field(default_factory=list)

    @classmethod
    def empty(cls) -> "TranscriptionResult":
        return cls(
            text="",
            segments=[],
            language="unknown",
            duration=0.0,
            model_used="unknown",
        )

    @property
    def is_complete(self) -> bool:
        """False when skipped chunks left untranscribed gaps."""
        return not self.gaps

    @property
    def word_count(self) -> int:
        return len(self.text.split())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "text": self.text,
            "segments": [asdict(s) for s in self.segments],
            "language": self.language,
            "duration": round(self.duration, 3),
            "model_used": self.model_used,
            "timestamp": self.timestamp.isoformat(),
            "gaps": [list(gap) for gap in self.gaps],
            "complete": self.is_complete,
        }


class SessionState(str, Enum):
    IDLE = "idle"
    PREPROCESSING = "preprocessing"
    CHUNKING = "chunking"
    TRANSCRIBING = "transcribing"
    MERGING = "merging"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (SessionState.COMPLETED, SessionState.FAILED, SessionState.CANCELLED)


@dataclass(frozen=True)
class ProgressEvent:
    """Progress update for a UI layer: fraction in [0, 1] and a stage label."""
    fraction: float
    stage_label: str
