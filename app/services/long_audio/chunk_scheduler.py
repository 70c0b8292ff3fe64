"""
Chunk Scheduler

Dispatches chunks to a transcription backend in index order and aggregates
progress across chunks.

- Sequential by default; up to MAX_CONCURRENT_CHUNKS_LIMIT chunks may run in
  a thread pool. Results are always returned in chunk index order.
- Progress = (completed + fraction of chunks in flight) / total, never
  decreasing, capped at 0.95 (the merge stage owns the rest).
- Failure policy:
    abort: the first failed chunk fails the job (default)
    skip:  the chunk is recorded as a gap and the job continues
- Cancellation is checked before every dispatch. A backend call already in
  flight is not interrupted; its result is discarded.
"""

import logging
import threading
from concurrent.futures import FIRST_COMPLETED, ThreadPoolExecutor, wait
from typing import Callable, Dict, List, Optional

from lib.config import (
    DEFAULT_CHUNK_RETRIES,
    DEFAULT_FAILURE_POLICY,
    FAILURE_POLICIES,
    MAX_CONCURRENT_CHUNKS_LIMIT,
    TranscriptionConfig,
)

from .errors import BackendFailure, TranscriptionCancelled
from .models import ChunkDescriptor, ChunkResult

logger = logging.getLogger(__name__)

# Aggregate value reserved for everything before merging
SCHEDULER_PROGRESS_CAP = 0.95

SchedulerProgress = Callable[[float, str], None]


class _ProgressTracker:
    """Thread-safe aggregation of per-chunk progress."""

    def __init__(self, total: int, on_progress: Optional[SchedulerProgress]):
        self.total = total
        self.on_progress = on_progress
        self.completed = 0
        self.in_flight: Dict[int, float] = {}
        self.value = 0.0
        self._lock = threading.Lock()

    def partial(self, index: int, fraction: float) -> None:
        with self._lock:
            if index in self.in_flight:
                self.in_flight[index] = max(self.in_flight[index], min(max(fraction, 0.0), 1.0))
            self._emit(f"Transcribing chunk {index + 1}/{self.total}")

    def start(self, index: int) -> None:
        with self._lock:
            self.in_flight[index] = 0.0
            self._emit(f"Transcribing chunk {index + 1}/{self.total}")

    def finish(self, index: int) -> None:
        with self._lock:
            self.in_flight.pop(index, None)
            self.completed += 1
            self._emit(f"Transcribed {self.completed}/{self.total} chunks")

    def _emit(self, label: str) -> None:
        raw = (self.completed + sum(self.in_flight.values())) / self.total
        self.value = max(self.value, min(max(raw, 0.0), SCHEDULER_PROGRESS_CAP))
        if self.on_progress:
            self.on_progress(self.value, label)


class ChunkScheduler:
    """
    Runs a chunk plan against one backend.

    Example:
        >>> scheduler = ChunkScheduler(max_concurrency=1, failure_policy="abort")
        >>> results = scheduler.run(chunks, backend, on_progress=print)
    """

    def __init__(
        self,
        max_concurrency: int = 1,
        failure_policy: str = DEFAULT_FAILURE_POLICY,
        retries: int = DEFAULT_CHUNK_RETRIES,
        language: Optional[str] = None,
        cancel_event: Optional[threading.Event] = None,
        job_id: str = "",
    ):
        """
        Args:
            max_concurrency: Chunks transcribed at once (1..3)
            failure_policy: "abort" or "skip"
            retries: Extra attempts per chunk before it counts as failed
            language: Language hint passed to the backend (None = detect)
            cancel_event: Set by the owner to stop further dispatches
            job_id: Job identifier for logging
        """
        if not 1 <= max_concurrency <= MAX_CONCURRENT_CHUNKS_LIMIT:
            raise ValueError(
                f"max_concurrency must be between 1 and {MAX_CONCURRENT_CHUNKS_LIMIT}"
            )
        if failure_policy not in FAILURE_POLICIES:
            raise ValueError(f"Unknown failure_policy: {failure_policy}")
        self.max_concurrency = max_concurrency
        self.failure_policy = failure_policy
        self.retries = max(0, retries)
        self.language = language
        self.cancel_event = cancel_event or threading.Event()
        self.job_id = job_id

    @classmethod
    def from_config(
        cls,
        config: TranscriptionConfig,
        cancel_event: Optional[threading.Event] = None,
        job_id: str = "",
    ) -> "ChunkScheduler":
        return cls(
            max_concurrency=config.max_concurrent_chunks,
            failure_policy=config.failure_policy,
            retries=config.chunk_retries,
            language=config.language_hint,
            cancel_event=cancel_event,
            job_id=job_id,
        )

    def run(
        self,
        chunks: List[ChunkDescriptor],
        backend,
        on_progress: Optional[SchedulerProgress] = None,
    ) -> List[ChunkResult]:
        """
        Transcribe every chunk.

        Returns:
            One ChunkResult per chunk, ordered by chunk index

        Raises:
            BackendFailure: With the abort policy, for the lowest failed
                index; with the skip policy, only when every chunk failed
            TranscriptionCancelled: If cancellation was observed
        """
        if not chunks:
            return []

        ordered = sorted(chunks, key=lambda c: c.index)
        tracker = _ProgressTracker(len(ordered), on_progress)

        logger.info(
            f"[Job {self.job_id}] Transcribing {len(ordered)} chunks "
            f"(concurrency={self.max_concurrency}, policy={self.failure_policy})"
        )

        if self.max_concurrency == 1:
            results = self._run_sequential(ordered, backend, tracker)
        else:
            results = self._run_concurrent(ordered, backend, tracker)

        failed = [r for r in results if r.failed]
        if failed and len(failed) == len(results):
            raise BackendFailure(failed[0].chunk.index, failed[0].error)
        if failed:
            logger.warning(
                f"[Job {self.job_id}] {len(failed)}/{len(results)} chunks skipped: "
                f"{[r.chunk.index for r in failed]}"
            )
        return results

    def _check_cancelled(self) -> None:
        if self.cancel_event.is_set():
            logger.info(f"[Job {self.job_id}] Cancellation observed, stopping dispatch")
            raise TranscriptionCancelled()

    def _run_sequential(self, chunks, backend, tracker) -> List[ChunkResult]:
        results = []
        for chunk in chunks:
            self._check_cancelled()
            results.append(self._dispatch(chunk, backend, tracker))
        # Discard the last in-flight result if cancel arrived meanwhile
        self._check_cancelled()
        return results

    def _run_concurrent(self, chunks, backend, tracker) -> List[ChunkResult]:
        results: Dict[int, ChunkResult] = {}
        abort_error: Optional[BackendFailure] = None
        remaining = iter(chunks)

        with ThreadPoolExecutor(max_workers=self.max_concurrency) as executor:
            pending = {}
            exhausted = False
            while True:
                while (
                    not exhausted
                    and len(pending) < self.max_concurrency
                    and abort_error is None
                    and not self.cancel_event.is_set()
                ):
                    chunk = next(remaining, None)
                    if chunk is None:
                        exhausted = True
                        break
                    future = executor.submit(self._dispatch, chunk, backend, tracker)
                    pending[future] = chunk

                if not pending:
                    break

                done, _ = wait(pending, return_when=FIRST_COMPLETED)
                for future in done:
                    chunk = pending.pop(future)
                    try:
                        results[chunk.index] = future.result()
                    except BackendFailure as failure:
                        if abort_error is None or failure.chunk_index < abort_error.chunk_index:
                            abort_error = failure

        self._check_cancelled()
        if abort_error is not None:
            raise abort_error
        return [results[chunk.index] for chunk in chunks]

    def _dispatch(self, chunk: ChunkDescriptor, backend, tracker: _ProgressTracker) -> ChunkResult:
        tracker.start(chunk.index)
        try:
            transcript = self._transcribe_with_retries(chunk, backend, tracker)
        except BackendFailure as failure:
            if self.failure_policy == "abort":
                logger.error(f"[Job {self.job_id}] ✗ Chunk {chunk.index} failed: {failure.cause}")
                raise
            logger.warning(
                f"[Job {self.job_id}] ✗ Chunk {chunk.index} failed, recording gap "
                f"{chunk.start_time:.1f}s - {chunk.end_time:.1f}s: {failure.cause}"
            )
            tracker.finish(chunk.index)
            return ChunkResult(chunk=chunk, error=failure.cause)

        tracker.finish(chunk.index)
        logger.info(
            f"[Job {self.job_id}] ✓ Chunk {chunk.index + 1}/{tracker.total}: "
            f"{len(transcript.text)} chars, {len(transcript.segments)} segments"
        )
        return ChunkResult(chunk=chunk, transcript=transcript)

    def _transcribe_with_retries(self, chunk, backend, tracker):
        attempts = self.retries + 1
        for attempt in range(1, attempts + 1):
            try:
                return backend.transcribe(
                    chunk.source_path,
                    language=self.language,
                    on_progress=lambda _text, fraction: tracker.partial(chunk.index, fraction),
                )
            except Exception as e:
                if attempt == attempts:
                    raise BackendFailure(chunk.index, e) from e
                logger.warning(
                    f"[Job {self.job_id}] Chunk {chunk.index} attempt {attempt}/{attempts} failed: {e}"
                )
