"""Tests for running several sessions as a batch."""

import threading
import time

import pytest

from app.services.long_audio import pipeline_transcriber
from app.services.long_audio.models import SessionState
from app.services.long_audio.pipeline_transcriber import PipelineTranscriber
from app.services.long_audio.transcription_session import TranscriptionSession

from conftest import MB, FakeAudioTool, FakeBackend


def session_factory(tool):
    def build(backend, config, on_progress=None):
        return TranscriptionSession(backend, config, on_progress=on_progress, audio_tool=tool)
    return build


def test_batch_keeps_input_order_and_writes_outputs(tmp_path, config) -> None:
    inputs = []
    for name in ("a.mp3", "b.mp3", "c.mp3"):
        path = tmp_path / name
        path.write_bytes(b"ID3")
        inputs.append(path)
    pairs = [(path, tmp_path / "out" / f"{path.stem}.txt") for path in inputs]
    pipeline = PipelineTranscriber(
        FakeBackend(),
        config,
        max_parallel_jobs=2,
        export_formats=("txt", "srt"),
        session_factory=session_factory(FakeAudioTool()),
    )
    progress = []

    outcomes = pipeline.process_batch(pairs, on_progress=lambda name, event: progress.append(name))

    assert [o["input_file"] for o in outcomes] == [str(p) for p in inputs]
    assert all(o["success"] for o in outcomes)
    assert all((tmp_path / "out" / f"{p.stem}.srt").exists() for p in inputs)
    assert set(progress) == {str(p) for p in inputs}


def test_failed_job_reports_stage(tmp_path, config, input_file) -> None:
    pipeline = PipelineTranscriber(
        FakeBackend(),
        config,
        session_factory=session_factory(FakeAudioTool(duration=0)),
    )

    outcome = pipeline.process_single(str(input_file))

    assert not outcome["success"]
    assert outcome["stage"] == "preprocessing"
    assert outcome["result"] is None


def test_unwritable_output_does_not_sink_batch(tmp_path, config) -> None:
    first = tmp_path / "first.mp3"
    second = tmp_path / "second.mp3"
    for path in (first, second):
        path.write_bytes(b"ID3")
    blocker = tmp_path / "blocker"
    blocker.write_text("not a directory")
    pipeline = PipelineTranscriber(
        FakeBackend(),
        config,
        max_parallel_jobs=2,
        session_factory=session_factory(FakeAudioTool()),
    )

    outcomes = pipeline.process_batch([
        (first, tmp_path / "out" / "first.txt"),
        (second, blocker / "second.txt"),
    ])

    assert outcomes[0]["success"]
    assert (tmp_path / "out" / "first.txt").exists()
    assert not outcomes[1]["success"]
    assert outcomes[1]["stage"] == "exporting"
    assert outcomes[1]["error"]
    assert outcomes[1]["result"] is not None


def test_interrupt_cancels_running_jobs(tmp_path, config, input_file, monkeypatch) -> None:
    first_call = threading.Event()

    class GatedBackend(FakeBackend):
        def transcribe(self, audio_file, language=None, on_progress=None):
            first_call.set()
            time.sleep(0.05)
            return super().transcribe(audio_file, language, on_progress)

    def interrupted_as_completed(futures):
        first_call.wait(timeout=5)
        raise KeyboardInterrupt

    monkeypatch.setattr(pipeline_transcriber, "as_completed", interrupted_as_completed)
    backend = GatedBackend()
    tool = FakeAudioTool(duration=3600, byte_size=60 * MB)
    pipeline = PipelineTranscriber(backend, config, session_factory=session_factory(tool))

    with pytest.raises(KeyboardInterrupt):
        pipeline.process_batch([(input_file, None)])

    assert len(tool.exports) == 7
    assert len(backend.calls) < 7
    assert [s.state for s in pipeline.sessions.values()] == [SessionState.CANCELLED]
    assert not any(path.exists() for _, _, path in tool.exports)


def test_jobs_started_after_cancel_all_are_cancelled(config, input_file) -> None:
    backend = FakeBackend()
    pipeline = PipelineTranscriber(backend, config, session_factory=session_factory(FakeAudioTool()))

    pipeline.cancel_all()
    outcome = pipeline.process_single(str(input_file))

    assert outcome["cancelled"]
    assert not outcome["success"]
    assert backend.calls == []
