"""
Configuration Module - lib/config.py

Central configuration for the long-audio transcription pipeline.
All constants, paths, and default settings are defined here.

Impact Analysis:
===============
- DEFAULT_MAX_CHUNK_DURATION, DEFAULT_OVERLAP_DURATION: chunk boundaries
- DEFAULT_MAX_BYTES, DEFAULT_MAX_SINGLE_FILE_DURATION: fast-path threshold
- DEFAULT_MIN_OVERLAP_WORDS: how eagerly the merger drops duplicated text
- TEMP_DIR: where chunk audio is exported during a job

Dependencies:
============
- None (base module)

Used By:
========
- app/services/long_audio/*.py
- scripts/transcribe_pipeline.py

Configuration Override:
=====================
Environment variables can override defaults:
- TRANSCRIPTOR_LANGUAGE: Default language code ("auto" to detect)
- TRANSCRIPTOR_BACKEND: "mlx" or "remote"
- TRANSCRIPTOR_MODEL: Model id for the selected backend
- TRANSCRIPTOR_CHUNK_DURATION: Override chunk duration
- TRANSCRIPTOR_OVERLAP_DURATION: Override overlap duration
- TRANSCRIPTOR_MAX_BYTES: Override single-request size limit
- TRANSCRIPTOR_FAILURE_POLICY: "abort" or "skip"
- TRANSCRIPTOR_TEMP_DIR: Override temp directory for chunk files
- TRANSCRIPTOR_API_BASE_URL, TRANSCRIPTOR_API_KEY: Remote backend
"""

import os
import tempfile
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Optional

# =============================================================================
# PATH CONFIGURATION
# =============================================================================

PROJECT_ROOT = Path(__file__).parent.parent

# Chunk exports land here; each session only ever deletes its own files
TEMP_DIR = Path(os.environ.get(
    'TRANSCRIPTOR_TEMP_DIR',
    str(Path(tempfile.gettempdir()) / "transcriptor")
))

# =============================================================================
# FILE FORMATS
# =============================================================================

SUPPORTED_FORMATS = ['.mp3', '.wav', '.m4a', '.flac', '.ogg', '.webm', '.mp4', '.mov']

EXPORT_FORMATS = ['txt', 'json', 'srt', 'vtt']

# =============================================================================
# TRANSCRIPTION DEFAULTS
# =============================================================================

DEFAULT_LANGUAGE = os.environ.get('TRANSCRIPTOR_LANGUAGE', 'auto')

# 9 minute windows with 30 seconds shared between neighbours
DEFAULT_MAX_CHUNK_DURATION = float(os.environ.get(
    'TRANSCRIPTOR_CHUNK_DURATION', '540'
))

DEFAULT_OVERLAP_DURATION = float(os.environ.get(
    'TRANSCRIPTOR_OVERLAP_DURATION', '30'
))

# Upload limit of hosted transcription APIs
DEFAULT_MAX_BYTES = int(os.environ.get(
    'TRANSCRIPTOR_MAX_BYTES', str(25 * 1024 * 1024)
))

# Files up to 10 minutes are sent whole when they fit in DEFAULT_MAX_BYTES
DEFAULT_MAX_SINGLE_FILE_DURATION = float(os.environ.get(
    'TRANSCRIPTOR_MAX_SINGLE_FILE_DURATION', '600'
))

# Whisper standard
DEFAULT_SAMPLE_RATE = 16000

# =============================================================================
# MERGE DEFAULTS
# =============================================================================

# An overlap is accepted only when MORE than this many words line up.
# Empirical; word matching does not suit scripts without spaces.
DEFAULT_MIN_OVERLAP_WORDS = int(os.environ.get(
    'TRANSCRIPTOR_MIN_OVERLAP_WORDS', '5'
))

# Trailing words of the merged text searched for an overlap
DEFAULT_OVERLAP_TAIL_WORDS = 50

# =============================================================================
# SCHEDULER DEFAULTS
# =============================================================================

DEFAULT_MAX_CONCURRENT_CHUNKS = int(os.environ.get(
    'TRANSCRIPTOR_MAX_CONCURRENT_CHUNKS', '1'
))

# Each in-flight chunk holds a model activation / upload in memory
MAX_CONCURRENT_CHUNKS_LIMIT = 3

FAILURE_POLICIES = ['abort', 'skip']

DEFAULT_FAILURE_POLICY = os.environ.get('TRANSCRIPTOR_FAILURE_POLICY', 'abort')

DEFAULT_CHUNK_RETRIES = 0

# =============================================================================
# MODEL CONFIGURATION
# =============================================================================

BACKENDS = ['mlx', 'remote']

DEFAULT_BACKEND = os.environ.get('TRANSCRIPTOR_BACKEND', 'mlx')

STANDARD_MODELS = {
    'whisper-medium-mlx': {
        'display_name': 'Medium',
        'short_name': 'medium',
        'huggingface_id': 'mlx-community/whisper-medium-mlx',
        'memory_gb': 0.5,
    },
    'whisper-large-v3-mlx': {
        'display_name': 'Large-v3',
        'short_name': 'large-v3',
        'huggingface_id': 'mlx-community/whisper-large-v3-mlx',
        'memory_gb': 1.5,
    },
    'whisper-large-v3-turbo': {
        'display_name': 'Large-v3-Turbo',
        'short_name': 'large-v3-turbo',
        'huggingface_id': 'mlx-community/whisper-large-v3-turbo',
        'memory_gb': 1.6,
    },
}

DEFAULT_MLX_MODEL = 'mlx-community/whisper-medium-mlx'

# OpenAI-compatible /audio/transcriptions endpoint
REMOTE_API_BASE_URL = os.environ.get(
    'TRANSCRIPTOR_API_BASE_URL', 'https://api.berget.ai/v1'
)
REMOTE_API_MODEL = os.environ.get('TRANSCRIPTOR_API_MODEL', 'KBLab/kb-whisper-large')
REMOTE_API_KEY_ENV = 'TRANSCRIPTOR_API_KEY'
REMOTE_API_TIMEOUT = 600

# =============================================================================
# SESSION CONFIGURATION
# =============================================================================


@dataclass(frozen=True)
class TranscriptionConfig:
    """Options for one transcription job, passed into each session."""
    language: str = DEFAULT_LANGUAGE
    backend: str = DEFAULT_BACKEND
    model: Optional[str] = None
    max_chunk_duration: float = DEFAULT_MAX_CHUNK_DURATION
    overlap_duration: float = DEFAULT_OVERLAP_DURATION
    max_bytes: int = DEFAULT_MAX_BYTES
    max_single_file_duration: float = DEFAULT_MAX_SINGLE_FILE_DURATION
    sample_rate: int = DEFAULT_SAMPLE_RATE
    min_overlap_words: int = DEFAULT_MIN_OVERLAP_WORDS
    overlap_tail_words: int = DEFAULT_OVERLAP_TAIL_WORDS
    max_concurrent_chunks: int = DEFAULT_MAX_CONCURRENT_CHUNKS
    failure_policy: str = DEFAULT_FAILURE_POLICY
    chunk_retries: int = DEFAULT_CHUNK_RETRIES
    enhance_audio: bool = False
    temp_dir: Path = field(default_factory=lambda: TEMP_DIR)
    api_base_url: str = REMOTE_API_BASE_URL
    api_key: Optional[str] = None
    api_timeout: float = REMOTE_API_TIMEOUT

    @classmethod
    def from_env(cls, **overrides) -> "TranscriptionConfig":
        """Build a config from the module defaults plus explicit overrides."""
        config = cls(api_key=os.environ.get(REMOTE_API_KEY_ENV))
        if overrides:
            config = replace(config, **overrides)
        return config

    @property
    def language_hint(self) -> Optional[str]:
        """Language passed to backends; None lets the backend detect it."""
        if not self.language or self.language == 'auto':
            return None
        return self.language

    @property
    def model_name(self) -> str:
        if self.model:
            return self.model
        return REMOTE_API_MODEL if self.backend == 'remote' else DEFAULT_MLX_MODEL

    def validate(self) -> "TranscriptionConfig":
        """
        Check option ranges.

        Raises:
            ValueError: If any option is out of range
        """
        if self.max_chunk_duration <= 0:
            raise ValueError(f"max_chunk_duration must be positive, got {self.max_chunk_duration}")
        if self.overlap_duration < 0:
            raise ValueError(f"overlap_duration must not be negative, got {self.overlap_duration}")
        # A chunk must reach past both of its overlaps or merged segments lose ordering
        if 2 * self.overlap_duration >= self.max_chunk_duration:
            raise ValueError(
                f"overlap_duration ({self.overlap_duration}s) must be less than half of "
                f"max_chunk_duration ({self.max_chunk_duration}s)"
            )
        if self.max_bytes <= 0:
            raise ValueError(f"max_bytes must be positive, got {self.max_bytes}")
        if self.max_single_file_duration <= 0:
            raise ValueError("max_single_file_duration must be positive")
        if self.sample_rate <= 0:
            raise ValueError("sample_rate must be positive")
        if self.min_overlap_words < 0 or self.overlap_tail_words <= 0:
            raise ValueError("min_overlap_words must be >= 0 and overlap_tail_words > 0")
        if not 1 <= self.max_concurrent_chunks <= MAX_CONCURRENT_CHUNKS_LIMIT:
            raise ValueError(
                f"max_concurrent_chunks must be between 1 and {MAX_CONCURRENT_CHUNKS_LIMIT}, "
                f"got {self.max_concurrent_chunks}"
            )
        if self.failure_policy not in FAILURE_POLICIES:
            raise ValueError(f"Unknown failure_policy: {self.failure_policy}")
        if self.chunk_retries < 0:
            raise ValueError("chunk_retries must not be negative")
        if self.backend not in BACKENDS:
            raise ValueError(f"Unknown backend: {self.backend}")
        return self


def ensure_temp_dir(temp_dir: Optional[Path] = None) -> Path:
    """Create the chunk temp directory if it doesn't exist."""
    directory = Path(temp_dir) if temp_dir else TEMP_DIR
    directory.mkdir(parents=True, exist_ok=True)
    return directory
