"""
Smart Audio Chunking Service

Splits audio that is too long or too large for a single inference call into
overlapping windows, each exported to its own temporary file.

Strategy:
- Window length: max_chunk_duration (default 540s)
- Consecutive windows share overlap_duration seconds (default 30s)
- Window i starts at i * (max_chunk_duration - overlap_duration)
- The final window is clipped to the end of the audio

Example timeline (20 minutes, 540s windows, 30s overlap):
    Chunk 0:    0s -  540s
    Chunk 1:  510s - 1050s
    Chunk 2: 1020s - 1200s

The overlap lets the merger detect and drop text transcribed twice.
"""

import logging
import threading
import uuid
from datetime import datetime
from pathlib import Path
from typing import List, Optional, Tuple

from lib.config import (
    DEFAULT_MAX_BYTES,
    DEFAULT_MAX_CHUNK_DURATION,
    DEFAULT_MAX_SINGLE_FILE_DURATION,
    DEFAULT_OVERLAP_DURATION,
    DEFAULT_SAMPLE_RATE,
    TranscriptionConfig,
    ensure_temp_dir,
)

from .audio_io import FFmpegAudioTool
from .errors import ChunkExportFailed, InvalidInput, TranscriptionCancelled
from .models import AudioAsset, ChunkDescriptor

logger = logging.getLogger(__name__)


def plan_windows(
    duration: float,
    max_chunk_duration: float,
    overlap_duration: float,
) -> List[Tuple[float, float]]:
    """
    Compute (start, end) windows covering [0, duration].

    Args:
        duration: Total audio duration in seconds
        max_chunk_duration: Nominal window length in seconds
        overlap_duration: Seconds shared by consecutive windows

    Returns:
        Ordered list of (start, end) tuples

    Raises:
        ValueError: If the window would not advance
    """
    step = max_chunk_duration - overlap_duration
    if step <= 0:
        raise ValueError(
            f"overlap_duration ({overlap_duration}s) must be shorter than "
            f"max_chunk_duration ({max_chunk_duration}s)"
        )

    windows = []
    i = 0
    while True:
        # Multiply instead of accumulating to keep boundaries exact
        start = max(0.0, i * step)
        end = min(start + max_chunk_duration, duration)
        windows.append((start, end))
        if end >= duration:
            break
        i += 1
    return windows


class SmartChunker:
    """
    Decides whether an asset must be split and exports the chunks.

    Example:
        >>> chunker = SmartChunker(max_chunk_duration=540, overlap_duration=30)
        >>> chunks = chunker.plan(asset)
        >>> print(f"Created {len(chunks)} chunks")
    """

    def __init__(
        self,
        max_chunk_duration: float = DEFAULT_MAX_CHUNK_DURATION,
        overlap_duration: float = DEFAULT_OVERLAP_DURATION,
        max_bytes: int = DEFAULT_MAX_BYTES,
        max_single_file_duration: Optional[float] = DEFAULT_MAX_SINGLE_FILE_DURATION,
        sample_rate: int = DEFAULT_SAMPLE_RATE,
        enhance: bool = False,
        temp_dir: Optional[Path] = None,
        audio_tool: Optional[FFmpegAudioTool] = None,
        job_id: str = "",
    ):
        """
        Initialize smart chunker.

        Args:
            max_chunk_duration: Window length in seconds (default: 540)
            overlap_duration: Overlap between neighbours in seconds (default: 30)
            max_bytes: Largest file sent whole to a backend
            max_single_file_duration: Longest file sent whole (default: 600;
                None means max_chunk_duration); never below
                max_chunk_duration
            sample_rate: Sample rate of exported chunks
            enhance: Apply speech filters while exporting
            temp_dir: Directory for chunk files
            audio_tool: FFmpeg wrapper used for export
            job_id: Job identifier for logging
        """
        if overlap_duration < 0 or overlap_duration >= max_chunk_duration:
            raise ValueError(
                f"overlap_duration must be in [0, {max_chunk_duration}), got {overlap_duration}"
            )
        self.max_chunk_duration = max_chunk_duration
        self.overlap_duration = overlap_duration
        self.max_bytes = max_bytes
        self.single_file_duration = max(max_chunk_duration, max_single_file_duration or 0.0)
        self.sample_rate = sample_rate
        self.enhance = enhance
        self.temp_dir = temp_dir
        self.audio_tool = audio_tool or FFmpegAudioTool()
        self.job_id = job_id

    @classmethod
    def from_config(
        cls,
        config: TranscriptionConfig,
        audio_tool: Optional[FFmpegAudioTool] = None,
        job_id: str = "",
    ) -> "SmartChunker":
        return cls(
            max_chunk_duration=config.max_chunk_duration,
            overlap_duration=config.overlap_duration,
            max_bytes=config.max_bytes,
            max_single_file_duration=config.max_single_file_duration,
            sample_rate=config.sample_rate,
            enhance=config.enhance_audio,
            temp_dir=config.temp_dir,
            audio_tool=audio_tool,
            job_id=job_id,
        )

    def needs_chunking(self, asset: AudioAsset) -> bool:
        return asset.duration > self.single_file_duration or asset.byte_size > self.max_bytes

    def plan(
        self,
        asset: AudioAsset,
        cancel_event: Optional[threading.Event] = None,
    ) -> List[ChunkDescriptor]:
        """
        Build the chunk plan for an asset, exporting chunk files if needed.

        Args:
            asset: Probed input audio
            cancel_event: Checked between chunk exports

        Returns:
            Ordered chunk descriptors covering [0, asset.duration]

        Raises:
            InvalidInput: If the asset has zero duration
            ChunkExportFailed: If any chunk fails to export; chunks already
                written are removed first
            TranscriptionCancelled: If cancel_event was set mid-export
        """
        if asset.duration <= 0:
            raise InvalidInput(f"Audio has zero duration: {asset.path}")

        if not self.needs_chunking(asset):
            logger.info(
                f"[Job {self.job_id}] Single chunk: {asset.duration:.1f}s, "
                f"{asset.byte_size / (1024 * 1024):.1f}MB"
            )
            return [ChunkDescriptor(
                index=0,
                start_time=0.0,
                end_time=asset.duration,
                source_path=asset.path,
                temporary=False,
            )]

        windows = plan_windows(asset.duration, self.max_chunk_duration, self.overlap_duration)
        output_dir = ensure_temp_dir(self.temp_dir)

        logger.info(
            f"[Job {self.job_id}] Chunking {asset.path.name} ({asset.duration / 60:.1f} min) into "
            f"{len(windows)} chunks ({self.max_chunk_duration:.0f}s + {self.overlap_duration:.0f}s overlap)"
        )
        started = datetime.now()

        chunks: List[ChunkDescriptor] = []
        for index, (start, end) in enumerate(windows):
            if cancel_event is not None and cancel_event.is_set():
                self.discard(chunks)
                raise TranscriptionCancelled()

            chunk_file = output_dir / f"chunk_{index:03d}_{uuid.uuid4().hex[:12]}.wav"
            try:
                self.audio_tool.export_segment(
                    asset.path,
                    start,
                    end,
                    chunk_file,
                    sample_rate=self.sample_rate,
                    enhance=self.enhance,
                )
            except Exception as e:
                logger.error(f"[Job {self.job_id}] Error creating chunk {index}: {e}")
                self.discard(chunks)
                _remove_file(chunk_file)
                raise ChunkExportFailed(index, str(e)) from e

            chunks.append(ChunkDescriptor(
                index=index,
                start_time=start,
                end_time=end,
                source_path=chunk_file,
                temporary=True,
            ))
            logger.info(
                f"[Job {self.job_id}] ✓ Chunk {index + 1}/{len(windows)}: "
                f"{start:.1f}s - {end:.1f}s ({end - start:.1f}s)"
            )

        elapsed = (datetime.now() - started).total_seconds()
        logger.info(f"[Job {self.job_id}] ✅ Chunking complete: {len(chunks)} chunks in {elapsed:.1f}s")
        return chunks

    def discard(self, chunks: List[ChunkDescriptor]) -> None:
        """Delete the temporary files behind `chunks`."""
        for chunk in chunks:
            if chunk.temporary:
                _remove_file(chunk.source_path)


def _remove_file(path: Path) -> None:
    try:
        Path(path).unlink(missing_ok=True)
    except OSError as e:
        logger.warning(f"Could not remove temp file {path}: {e}")
