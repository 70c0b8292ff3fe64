"""Shared fakes for pipeline tests: an in-memory backend and ffmpeg tool."""

import threading
from pathlib import Path

import pytest

from app.services.long_audio.models import AudioAsset, ChunkTranscript, TranscriptSegment
from lib.config import TranscriptionConfig

MB = 1024 * 1024


class FakeAudioTool:
    """Stands in for FFmpegAudioTool; writes placeholder chunk files."""

    def __init__(self, duration=120.0, byte_size=5 * MB, fail_on_index=None):
        self.duration = duration
        self.byte_size = byte_size
        self.fail_on_index = fail_on_index
        self.exports = []

    def probe(self, path):
        return AudioAsset(
            path=Path(path),
            duration=self.duration,
            byte_size=self.byte_size,
            sample_rate=44100,
            channels=2,
        )

    def export_segment(self, source, start, end, destination, sample_rate=16000, enhance=False):
        if self.fail_on_index is not None and len(self.exports) == self.fail_on_index:
            raise RuntimeError("FFmpeg export failed: disk full")
        Path(destination).write_bytes(b"RIFF")
        self.exports.append((start, end, Path(destination)))
        return Path(destination)


class FakeBackend:
    """
    Returns scripted transcripts keyed by call order.

    `responses` entries are ChunkTranscript or Exception instances.
    """

    def __init__(self, responses=None, partial_steps=(0.5,)):
        self.responses = list(responses or [])
        self.partial_steps = partial_steps
        self.calls = []
        self._lock = threading.Lock()

    def transcribe(self, audio_file, language=None, on_progress=None):
        with self._lock:
            position = len(self.calls)
            self.calls.append((Path(audio_file), language))
        response = (
            self.responses[position]
            if position < len(self.responses)
            else ChunkTranscript(text=f"chunk {position}", model_used="fake-model")
        )
        if isinstance(response, Exception):
            raise response
        if on_progress:
            for step in self.partial_steps:
                on_progress(response.text, step)
        return response


def transcript(text, segments=(), language="en"):
    return ChunkTranscript(
        text=text,
        segments=[TranscriptSegment(start=s, end=e, text=t) for s, e, t in segments],
        language=language,
        model_used="fake-model",
    )


@pytest.fixture
def config(tmp_path):
    return TranscriptionConfig(backend="mlx", language="en", temp_dir=tmp_path / "chunks")


@pytest.fixture
def input_file(tmp_path):
    path = tmp_path / "meeting.mp3"
    path.write_bytes(b"ID3")
    return path
