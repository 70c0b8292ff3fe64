"""
Pipeline Transcriber - many files, one session each

Runs independent TranscriptionSessions side by side. Sessions share only the
backend (whose own lock serializes model access where needed) and the temp
directory, in which every session deletes just the files it created.
"""

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from lib.config import TranscriptionConfig

from .errors import TranscriptionError
from .exporters import write_outputs
from .models import ProgressEvent
from .transcription_session import TranscriptionSession

logger = logging.getLogger(__name__)


class PipelineTranscriber:
    """
    Batch orchestrator.

    Usage:
        pipeline = PipelineTranscriber(backend, config, max_parallel_jobs=2)
        results = pipeline.process_batch([
            ("input1.mp3", "output1.txt"),
            ("input2.mp3", "output2.txt"),
        ])
    """

    def __init__(
        self,
        backend,
        config: Optional[TranscriptionConfig] = None,
        max_parallel_jobs: int = 1,
        export_formats: tuple = ("txt",),
        session_factory: Callable[..., TranscriptionSession] = TranscriptionSession,
    ):
        """
        Args:
            backend: Backend shared by all sessions
            config: Options applied to every job
            max_parallel_jobs: Sessions running at the same time
            export_formats: Formats written per file (txt, json, srt, vtt)
            session_factory: Builds a session; override in tests
        """
        self.backend = backend
        self.config = (config or TranscriptionConfig.from_env()).validate()
        self.max_parallel_jobs = max(1, max_parallel_jobs)
        self.export_formats = export_formats
        self.session_factory = session_factory
        self.sessions: Dict[str, TranscriptionSession] = {}
        self._sessions_lock = threading.Lock()
        self._cancel_event = threading.Event()

        logger.info("=" * 70)
        logger.info("🚀 PIPELINE TRANSCRIBER INITIALIZED")
        logger.info("=" * 70)
        logger.info(f"Backend: {self.config.backend} ({self.config.model_name})")
        logger.info(f"Parallel jobs: {self.max_parallel_jobs}")
        logger.info(
            f"Chunking: {self.config.max_chunk_duration:.0f}s + "
            f"{self.config.overlap_duration:.0f}s overlap"
        )
        logger.info("=" * 70)

    def process_single(
        self,
        input_file: str,
        output_file: Optional[str] = None,
        on_progress: Optional[Callable[[ProgressEvent], None]] = None,
    ) -> Dict[str, Any]:
        """Process a single file."""
        return self._process(input_file, output_file, on_progress)

    def process_batch(
        self,
        file_pairs: List[tuple],
        on_progress: Optional[Callable[[str, ProgressEvent], None]] = None,
    ) -> List[Dict[str, Any]]:
        """
        Process (input_file, output_file) pairs. output_file may be None.

        Args:
            file_pairs: Files to transcribe
            on_progress: Called with (input_file, event)

        Returns:
            One outcome dict per pair, in input order
        """
        start_time = time.time()
        logger.info(f"📋 Starting batch processing: {len(file_pairs)} files")

        outcomes: Dict[int, Dict[str, Any]] = {}
        executor = ThreadPoolExecutor(max_workers=self.max_parallel_jobs)
        try:
            futures = {}
            for position, (input_file, output_file) in enumerate(file_pairs):
                callback = None
                if on_progress:
                    callback = (lambda name: lambda event: on_progress(name, event))(str(input_file))
                futures[executor.submit(self._process, input_file, output_file, callback)] = position

            for future in as_completed(futures):
                outcomes[futures[future]] = future.result()
        except BaseException:
            # Ctrl-C or a bug: stop queued jobs, let running ones wind down
            logger.warning("⚠️ Batch interrupted, cancelling running jobs")
            self.cancel_all()
            executor.shutdown(wait=True, cancel_futures=True)
            raise
        executor.shutdown(wait=True)

        results = [outcomes[i] for i in range(len(file_pairs))]
        successful = sum(1 for r in results if r['success'])
        total_time = time.time() - start_time
        logger.info("=" * 70)
        logger.info(f"🎉 BATCH COMPLETE: {successful}/{len(results)} files in {total_time / 60:.1f} min")
        logger.info("=" * 70)
        return results

    def cancel_all(self) -> None:
        """Cancel running sessions; jobs that start afterwards return cancelled."""
        self._cancel_event.set()
        with self._sessions_lock:
            sessions = list(self.sessions.values())
        for session in sessions:
            if not session.state.is_terminal:
                session.cancel()

    def _process(self, input_file, output_file, on_progress) -> Dict[str, Any]:
        session = self.session_factory(
            self.backend,
            self.config,
            on_progress=on_progress,
        )
        with self._sessions_lock:
            self.sessions[session.job_id] = session
        if self._cancel_event.is_set():
            session.cancel()

        outcome: Dict[str, Any] = {
            'job_id': session.job_id,
            'input_file': str(input_file),
            'output_file': str(output_file) if output_file else None,
            'success': False,
            'cancelled': False,
            'result': None,
            'error': None,
            'stage': None,
            'chunk_index': None,
        }

        try:
            result = session.run(input_file)
        except TranscriptionError as e:
            outcome.update(error=str(e), stage=e.stage, chunk_index=e.chunk_index)
            return outcome
        except Exception as e:
            logger.error(f"[Job {session.job_id}] ❌ Unexpected error: {e}")
            outcome.update(error=str(e) or type(e).__name__, stage=session.failed_stage or session.state.value)
            return outcome

        if result is None:
            outcome['cancelled'] = True
            return outcome

        outcome['result'] = result
        if output_file:
            try:
                written = write_outputs(result, output_file, self.export_formats)
            except Exception as e:
                logger.error(f"[Job {session.job_id}] ❌ Could not write {output_file}: {e}")
                outcome.update(error=str(e), stage='exporting')
                return outcome
            outcome['outputs'] = {fmt: str(path) for fmt, path in written.items()}

        outcome['success'] = True
        logger.info(f"[Job {session.job_id}] ✓ {Path(str(input_file)).name}")
        return outcome
