"""
Transcription Session - one end-to-end job

State machine:

    IDLE ─> PREPROCESSING ─┬─> CHUNKING ─> TRANSCRIBING ─> MERGING ─> COMPLETED
                           └──────────────> TRANSCRIBING
    any non-terminal state ─> FAILED | CANCELLED

Stages:
- Preprocessing: spool non-file input to disk, probe it with FFprobe
- Chunking: only when the asset is too long or too large; exports chunks
- Transcribing: ChunkScheduler, progress scaled into [0.05, 0.95]
- Merging: OverlapMerger, progress goes to 1.0

Temporary files (spooled input, chunk exports) are removed on every terminal
path. Only files created by this session are touched.
"""

import logging
import threading
import uuid
from datetime import datetime
from pathlib import Path
from typing import Callable, List, Optional

from lib.config import TranscriptionConfig, ensure_temp_dir

from .audio_io import FFmpegAudioTool
from .chunk_scheduler import SCHEDULER_PROGRESS_CAP, ChunkScheduler
from .errors import InvalidInput, TranscriptionCancelled, TranscriptionError
from .models import (
    AudioAsset,
    ChunkDescriptor,
    ChunkResult,
    ProgressEvent,
    SessionState,
    TranscriptionResult,
)
from .overlap_merger import OverlapMerger
from .smart_chunking import SmartChunker

logger = logging.getLogger(__name__)

PREPROCESS_FRACTION = 0.05

ALLOWED_TRANSITIONS = {
    SessionState.IDLE: {SessionState.PREPROCESSING, SessionState.CANCELLED},
    SessionState.PREPROCESSING: {
        SessionState.CHUNKING,
        SessionState.TRANSCRIBING,
        SessionState.FAILED,
        SessionState.CANCELLED,
    },
    SessionState.CHUNKING: {SessionState.TRANSCRIBING, SessionState.FAILED, SessionState.CANCELLED},
    SessionState.TRANSCRIBING: {SessionState.MERGING, SessionState.FAILED, SessionState.CANCELLED},
    SessionState.MERGING: {SessionState.COMPLETED, SessionState.FAILED, SessionState.CANCELLED},
    SessionState.COMPLETED: set(),
    SessionState.FAILED: set(),
    SessionState.CANCELLED: set(),
}


class InvalidStateTransition(RuntimeError):
    pass


class TranscriptionSession:
    """
    Owns one transcription job from input file to merged transcript.

    Usage:
        session = TranscriptionSession(backend, config, on_progress=print)
        result = session.run("meeting.mp3")   # None if cancelled

    cancel() may be called from another thread. Sessions share no mutable
    state, so many can run at once.
    """

    def __init__(
        self,
        backend,
        config: Optional[TranscriptionConfig] = None,
        on_progress: Optional[Callable[[ProgressEvent], None]] = None,
        audio_tool: Optional[FFmpegAudioTool] = None,
        job_id: Optional[str] = None,
    ):
        self.config = (config or TranscriptionConfig.from_env()).validate()
        self.backend = backend
        self.on_progress = on_progress
        self.audio_tool = audio_tool or FFmpegAudioTool()
        self.job_id = job_id or uuid.uuid4().hex[:8]

        self.state = SessionState.IDLE
        self.error: Optional[TranscriptionError] = None
        self.result: Optional[TranscriptionResult] = None
        self.asset: Optional[AudioAsset] = None
        self.chunks: List[ChunkDescriptor] = []
        self.chunk_results: List[ChunkResult] = []
        self.progress = 0.0
        self.start_time: Optional[datetime] = None
        self.end_time: Optional[datetime] = None

        self._cancel_event = threading.Event()
        self._temp_files: List[Path] = []
        self._state_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def failed_stage(self) -> Optional[str]:
        return self.error.stage if self.error else None

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    def cancel(self) -> None:
        """Stop dispatching further chunks. In-flight backend calls finish on their own."""
        logger.info(f"[Job {self.job_id}] Cancel requested")
        self._cancel_event.set()
        with self._state_lock:
            if self.state == SessionState.IDLE:
                self.state = SessionState.CANCELLED

    def run(self, source) -> Optional[TranscriptionResult]:
        """
        Transcribe `source`: a path, raw bytes or a binary file object.

        Returns:
            The merged TranscriptionResult, or None if the job was cancelled

        Raises:
            TranscriptionError: With `stage` (and `chunk_index` for chunk
                failures) set; the session is left in FAILED
        """
        with self._state_lock:
            if self.state == SessionState.CANCELLED:
                return None
            if self.state != SessionState.IDLE:
                raise InvalidStateTransition(f"Session already ran (state={self.state.value})")
            # Checked and claimed atomically against cancel()
            self.state = SessionState.PREPROCESSING

        self.start_time = datetime.now()
        stage = SessionState.PREPROCESSING
        try:
            self._emit(0.0, "Analyzing audio file")
            path = self._materialize(source)
            self.asset = self.audio_tool.probe(path)
            logger.info(
                f"[Job {self.job_id}] Input: {path.name} ({self.asset.duration:.1f}s, "
                f"{self.asset.byte_size / (1024 * 1024):.1f}MB)"
            )
            self._emit(PREPROCESS_FRACTION, "Audio analyzed")
            self._check_cancelled()

            chunker = SmartChunker.from_config(self.config, self.audio_tool, self.job_id)
            if chunker.needs_chunking(self.asset):
                stage = SessionState.CHUNKING
                self._transition(SessionState.CHUNKING)
                self._emit(PREPROCESS_FRACTION, "Splitting audio into chunks")
            try:
                self.chunks = chunker.plan(self.asset, cancel_event=self._cancel_event)
            finally:
                self._temp_files.extend(c.source_path for c in self.chunks if c.temporary)
            self._check_cancelled()

            stage = SessionState.TRANSCRIBING
            self._transition(SessionState.TRANSCRIBING)
            scheduler = ChunkScheduler.from_config(self.config, self._cancel_event, self.job_id)
            self.chunk_results = scheduler.run(self.chunks, self.backend, self._on_scheduler_progress)
            self._check_cancelled()

            stage = SessionState.MERGING
            self._transition(SessionState.MERGING)
            self._emit(SCHEDULER_PROGRESS_CAP, "Merging results")
            # A non-empty plan always yields results; merge([]) is only a guard
            assert self.chunk_results, "scheduler returned no results for a non-empty plan"
            merger = OverlapMerger.from_config(self.config, self.job_id)
            self.result = merger.merge(self.chunk_results)

            self._transition(SessionState.COMPLETED)
            self._emit(1.0, "Completed")
            logger.info(
                f"[Job {self.job_id}] ✅ COMPLETED: {len(self.chunks)} chunks, "
                f"{self.result.word_count} words"
            )
            return self.result

        except TranscriptionCancelled:
            self._transition(SessionState.CANCELLED)
            logger.info(f"[Job {self.job_id}] Cancelled during {stage.value}")
            return None

        except TranscriptionError as e:
            e.stage = e.stage or stage.value
            self._fail(e)
            raise

        except Exception as e:
            error = TranscriptionError(str(e) or type(e).__name__, stage=stage.value)
            self._fail(error)
            raise error from e

        finally:
            self.end_time = datetime.now()
            self._cleanup()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _transition(self, new_state: SessionState) -> None:
        with self._state_lock:
            if new_state not in ALLOWED_TRANSITIONS[self.state]:
                raise InvalidStateTransition(
                    f"Cannot move from {self.state.value} to {new_state.value}"
                )
            logger.debug(f"[Job {self.job_id}] {self.state.value} -> {new_state.value}")
            self.state = new_state

    def _fail(self, error: TranscriptionError) -> None:
        self.error = error
        self._transition(SessionState.FAILED)
        logger.error(f"[Job {self.job_id}] ❌ FAILED: {error}")

    def _check_cancelled(self) -> None:
        if self._cancel_event.is_set():
            raise TranscriptionCancelled()

    def _emit(self, fraction: float, label: str) -> None:
        # Progress never moves backwards
        self.progress = max(self.progress, min(max(fraction, 0.0), 1.0))
        if self.on_progress:
            self.on_progress(ProgressEvent(fraction=self.progress, stage_label=label))

    def _on_scheduler_progress(self, value: float, label: str) -> None:
        span = SCHEDULER_PROGRESS_CAP - PREPROCESS_FRACTION
        self._emit(PREPROCESS_FRACTION + (value / SCHEDULER_PROGRESS_CAP) * span, label)

    def _materialize(self, source) -> Path:
        """Return a path for `source`, spooling bytes or streams to a temp file."""
        if isinstance(source, (str, Path)):
            return Path(source)

        data = source if isinstance(source, (bytes, bytearray)) else source.read()
        if not data:
            raise InvalidInput("Input stream is empty")

        suffix = Path(getattr(source, "name", "") or "").suffix or ".audio"
        spool = ensure_temp_dir(self.config.temp_dir) / f"input_{self.job_id}_{uuid.uuid4().hex[:12]}{suffix}"
        self._temp_files.append(spool)
        spool.write_bytes(data)
        return spool

    def _cleanup(self) -> None:
        removed = 0
        for path in self._temp_files:
            try:
                if path.exists():
                    path.unlink()
                    removed += 1
            except OSError as e:
                logger.warning(f"[Job {self.job_id}] Could not remove temp file {path}: {e}")
        if removed:
            logger.info(f"[Job {self.job_id}] Removed {removed} temporary files")
        self._temp_files = []
