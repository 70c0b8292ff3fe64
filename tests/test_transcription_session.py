"""Tests for the end-to-end session state machine."""

import io
from dataclasses import replace

import pytest

from app.services.long_audio.errors import InvalidInput, TranscriptionError
from app.services.long_audio.models import SessionState
from app.services.long_audio.transcription_session import (
    InvalidStateTransition,
    TranscriptionSession,
)

from conftest import MB, FakeAudioTool, FakeBackend, transcript


def three_chunk_backend():
    return FakeBackend([
        transcript(
            "first part of the talk and we keep going until the end of chunk zero",
            segments=[(0.0, 270.0, "first part"), (270.0, 540.0, "end of chunk zero")],
        ),
        transcript(
            "we keep going until the end of chunk zero and then chunk one",
            segments=[(0.0, 30.0, "overlap"), (30.0, 540.0, "and then chunk one")],
        ),
        transcript(
            "chunk two closes",
            segments=[(5.0, 25.0, "overlap again"), (31.0, 180.0, "chunk two closes")],
        ),
    ])


class TestHappyPath:
    def test_single_file_fast_path(self, config, input_file) -> None:
        tool = FakeAudioTool(duration=120, byte_size=5 * MB)
        backend = FakeBackend([transcript("short clip", segments=[(0.0, 3.0, "short clip")])])
        session = TranscriptionSession(backend, config, audio_tool=tool)

        result = session.run(input_file)

        assert session.state == SessionState.COMPLETED
        assert result.text == "short clip"
        assert [(s.start, s.end) for s in result.segments] == [(0.0, 3.0)]
        assert len(session.chunks) == 1
        assert tool.exports == []
        assert backend.calls[0][0] == input_file

    def test_twenty_minute_file(self, config, input_file) -> None:
        tool = FakeAudioTool(duration=1200, byte_size=30 * MB)
        backend = three_chunk_backend()
        session = TranscriptionSession(backend, config, audio_tool=tool)

        result = session.run(input_file)

        assert [(c.start_time, c.end_time) for c in session.chunks] == [
            (0, 540), (510, 1050), (1020, 1200)
        ]
        assert result.text == (
            "first part of the talk and we keep going until the end of chunk zero "
            "and then chunk one chunk two closes"
        )
        assert [s.text for s in result.segments] == [
            "first part", "end of chunk zero", "and then chunk one", "chunk two closes"
        ]
        assert result.segments[2].start == 540.0
        assert result.segments[3].start == 1051.0
        assert result.duration == 1260
        assert result.is_complete

    def test_progress_events(self, config, input_file) -> None:
        events = []
        session = TranscriptionSession(
            three_chunk_backend(),
            config,
            on_progress=events.append,
            audio_tool=FakeAudioTool(duration=1200, byte_size=30 * MB),
        )

        session.run(input_file)

        fractions = [e.fraction for e in events]
        assert fractions == sorted(fractions)
        assert fractions[-1] == 1.0
        assert events[-1].stage_label == "Completed"
        assert any(e.stage_label == "Merging results" for e in events)
        assert max(f for f, e in zip(fractions, events) if e.stage_label.startswith("Transcrib")) <= 0.95

    def test_temp_chunks_removed_after_success(self, config, input_file) -> None:
        tool = FakeAudioTool(duration=1200, byte_size=30 * MB)
        session = TranscriptionSession(three_chunk_backend(), config, audio_tool=tool)

        session.run(input_file)

        assert len(tool.exports) == 3
        assert not any(path.exists() for _, _, path in tool.exports)
        assert input_file.exists()

    def test_bytes_input_is_spooled_and_removed(self, config) -> None:
        backend = FakeBackend([transcript("from a stream")])
        session = TranscriptionSession(backend, config, audio_tool=FakeAudioTool())

        result = session.run(io.BytesIO(b"fake audio bytes"))

        spooled = backend.calls[0][0]
        assert result.text == "from a stream"
        assert spooled.name.startswith(f"input_{session.job_id}_")
        assert not spooled.exists()

    def test_language_hint_passed_to_backend(self, config, input_file) -> None:
        backend = FakeBackend([transcript("hej")])

        TranscriptionSession(backend, config, audio_tool=FakeAudioTool()).run(input_file)

        assert backend.calls[0][1] == "en"


class TestFailures:
    def test_zero_duration_fails_in_preprocessing(self, config, input_file) -> None:
        session = TranscriptionSession(FakeBackend(), config, audio_tool=FakeAudioTool(duration=0))

        with pytest.raises(InvalidInput):
            session.run(input_file)

        assert session.state == SessionState.FAILED
        assert session.failed_stage == "preprocessing"

    def test_chunk_export_failure(self, config, input_file) -> None:
        tool = FakeAudioTool(duration=1200, byte_size=30 * MB, fail_on_index=2)
        session = TranscriptionSession(FakeBackend(), config, audio_tool=tool)

        with pytest.raises(TranscriptionError) as exc_info:
            session.run(input_file)

        assert session.state == SessionState.FAILED
        assert exc_info.value.stage == "chunking"
        assert exc_info.value.chunk_index == 2
        assert not any(path.exists() for _, _, path in tool.exports)

    def test_backend_failure_reports_chunk_and_cleans_up(self, config, input_file) -> None:
        tool = FakeAudioTool(duration=1200, byte_size=30 * MB)
        backend = FakeBackend([transcript("ok"), RuntimeError("out of memory")])
        session = TranscriptionSession(backend, config, audio_tool=tool)

        with pytest.raises(TranscriptionError) as exc_info:
            session.run(input_file)

        assert session.state == SessionState.FAILED
        assert session.failed_stage == "transcribing"
        assert exc_info.value.chunk_index == 1
        assert session.result is None
        assert not any(path.exists() for _, _, path in tool.exports)

    def test_skip_policy_marks_gap(self, config, input_file) -> None:
        tool = FakeAudioTool(duration=1200, byte_size=30 * MB)
        backend = FakeBackend([transcript("a"), RuntimeError("timeout"), transcript("c")])
        session = TranscriptionSession(backend, replace(config, failure_policy="skip"), audio_tool=tool)

        result = session.run(input_file)

        assert session.state == SessionState.COMPLETED
        assert result.gaps == [(510, 1050)]
        assert not result.is_complete

    def test_unexpected_error_is_wrapped_with_stage(self, config, input_file) -> None:
        class ToolCrash(Exception):
            pass

        class ExplodingTool(FakeAudioTool):
            def probe(self, path):
                raise ToolCrash("ffprobe crashed")

        session = TranscriptionSession(FakeBackend(), config, audio_tool=ExplodingTool())

        with pytest.raises(TranscriptionError) as exc_info:
            session.run(input_file)

        assert exc_info.value.stage == "preprocessing"
        assert isinstance(exc_info.value.__cause__, ToolCrash)

    def test_session_runs_once(self, config, input_file) -> None:
        session = TranscriptionSession(FakeBackend(), config, audio_tool=FakeAudioTool())
        session.run(input_file)

        with pytest.raises(InvalidStateTransition):
            session.run(input_file)


class TestCancellation:
    def test_cancel_before_run(self, config, input_file) -> None:
        backend = FakeBackend()
        session = TranscriptionSession(backend, config, audio_tool=FakeAudioTool())

        session.cancel()

        assert session.run(input_file) is None
        assert session.state == SessionState.CANCELLED
        assert backend.calls == []

    def test_cancel_mid_job_discards_and_cleans_up(self, config, input_file) -> None:
        tool = FakeAudioTool(duration=1200, byte_size=30 * MB)
        backend = FakeBackend()
        holder = {}

        def on_progress(event):
            if event.stage_label.startswith("Transcribed 1/"):
                holder["session"].cancel()

        session = TranscriptionSession(backend, config, on_progress=on_progress, audio_tool=tool)
        holder["session"] = session

        result = session.run(input_file)

        assert result is None
        assert session.state == SessionState.CANCELLED
        assert session.error is None
        assert len(backend.calls) == 1
        assert not any(path.exists() for _, _, path in tool.exports)

    def test_cancel_as_run_starts(self, config, input_file) -> None:
        backend = FakeBackend()
        holder = {}

        def on_progress(event):
            if event.stage_label == "Analyzing audio file":
                holder["session"].cancel()

        session = TranscriptionSession(backend, config, on_progress=on_progress, audio_tool=FakeAudioTool())
        holder["session"] = session

        result = session.run(input_file)

        assert result is None
        assert session.state == SessionState.CANCELLED
        assert session.error is None
        assert backend.calls == []

    def test_cancel_after_start_does_not_reset_state(self, config, input_file) -> None:
        states = []
        holder = {}

        def on_progress(event):
            session = holder["session"]
            states.append(session.state)
            session.cancel()

        session = TranscriptionSession(FakeBackend(), config, on_progress=on_progress, audio_tool=FakeAudioTool())
        holder["session"] = session

        session.run(input_file)

        # cancel() only flips the state directly while the session is idle
        assert states[0] == SessionState.PREPROCESSING
        assert session.state == SessionState.CANCELLED
