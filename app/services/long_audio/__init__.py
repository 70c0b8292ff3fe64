"""
Long Audio Pipeline - Chunk, Transcribe, Merge

Architecture:
- Audio longer or larger than one inference call allows is split into
  overlapping chunks
- Each chunk goes to a transcription backend (on-device MLX or remote API)
- Chunk transcripts are merged with overlap detection and timestamps shifted
  back onto the original timeline

Pipeline Flow:
    [Probe] ─> [SmartChunker] ─> [ChunkScheduler ─> backend per chunk] ─> [OverlapMerger]
       └──────────────── TranscriptionSession (state, progress, cleanup) ───────────┘

Components:
- SmartChunker: Plans and exports overlapping chunks
- ChunkScheduler: Dispatches chunks in order, aggregates progress
- OverlapMerger: Deduplicates overlap text, rebases segments
- TranscriptionSession: One job's state machine
- PipelineTranscriber: Many sessions side by side
"""

from .backends import MLXWhisperBackend, RemoteAPIBackend, create_backend
from .chunk_scheduler import ChunkScheduler
from .errors import (
    BackendFailure,
    ChunkExportFailed,
    InvalidInput,
    TranscriptionCancelled,
    TranscriptionError,
)
from .models import (
    AudioAsset,
    ChunkDescriptor,
    ChunkResult,
    ChunkTranscript,
    ProgressEvent,
    SessionState,
    TranscriptionResult,
    TranscriptSegment,
)
from .overlap_merger import OverlapMerger
from .pipeline_transcriber import PipelineTranscriber
from .smart_chunking import SmartChunker
from .transcription_session import TranscriptionSession

__all__ = [
    'AudioAsset',
    'BackendFailure',
    'ChunkDescriptor',
    'ChunkExportFailed',
    'ChunkResult',
    'ChunkScheduler',
    'ChunkTranscript',
    'InvalidInput',
    'MLXWhisperBackend',
    'OverlapMerger',
    'PipelineTranscriber',
    'ProgressEvent',
    'RemoteAPIBackend',
    'SessionState',
    'SmartChunker',
    'TranscriptionCancelled',
    'TranscriptionError',
    'TranscriptionResult',
    'TranscriptionSession',
    'TranscriptSegment',
    'create_backend',
]
