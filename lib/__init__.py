"""
Transcriptor - Library Modules

Shared configuration for the long-audio transcription pipeline.

Module Structure:
================

lib/
├── __init__.py          # Package initialization
└── config.py            # Configuration, constants and TranscriptionConfig

Impact Analysis:
===============
- config.py: Changing constants affects chunking, merging and backends
"""

from .config import (
    PROJECT_ROOT,
    SUPPORTED_FORMATS,
    EXPORT_FORMATS,
    TEMP_DIR,
    DEFAULT_MAX_CHUNK_DURATION,
    DEFAULT_OVERLAP_DURATION,
    DEFAULT_MAX_BYTES,
    TranscriptionConfig,
)

__all__ = [
    'PROJECT_ROOT',
    'SUPPORTED_FORMATS',
    'EXPORT_FORMATS',
    'TEMP_DIR',
    'DEFAULT_MAX_CHUNK_DURATION',
    'DEFAULT_OVERLAP_DURATION',
    'DEFAULT_MAX_BYTES',
    'TranscriptionConfig',
]

__version__ = '1.0.0'
