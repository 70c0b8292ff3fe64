"""Tests for the FFmpeg wrapper with subprocess mocked out."""

import json
import subprocess
from unittest.mock import MagicMock

import pytest

from app.services.long_audio import audio_io
from app.services.long_audio.audio_io import FFmpegAudioTool
from app.services.long_audio.errors import InvalidInput


def completed(returncode=0, stdout="", stderr=""):
    return subprocess.CompletedProcess(args=[], returncode=returncode, stdout=stdout, stderr=stderr)


@pytest.fixture
def audio_file(tmp_path):
    path = tmp_path / "meeting.mp3"
    path.write_bytes(b"ID3" * 10)
    return path


class TestProbe:
    def test_reads_metadata(self, monkeypatch, audio_file) -> None:
        payload = {
            "streams": [{"sample_rate": "44100", "channels": 2}],
            "format": {"duration": "1200.5", "size": "31457280"},
        }
        run = MagicMock(return_value=completed(stdout=json.dumps(payload)))
        monkeypatch.setattr(audio_io.subprocess, "run", run)

        asset = FFmpegAudioTool().probe(audio_file)

        assert asset.duration == 1200.5
        assert asset.byte_size == 31457280
        assert asset.sample_rate == 44100
        assert asset.channels == 2
        assert run.call_args[0][0][0] == "ffprobe"

    def test_missing_file(self, tmp_path) -> None:
        with pytest.raises(InvalidInput):
            FFmpegAudioTool().probe(tmp_path / "missing.mp3")

    def test_undecodable_file(self, monkeypatch, audio_file) -> None:
        monkeypatch.setattr(
            audio_io.subprocess, "run",
            MagicMock(return_value=completed(1, stderr="Invalid data found when processing input")),
        )

        with pytest.raises(InvalidInput, match="Invalid data"):
            FFmpegAudioTool().probe(audio_file)

    def test_no_audio_stream(self, monkeypatch, audio_file) -> None:
        payload = {"streams": [], "format": {"duration": "10"}}
        monkeypatch.setattr(
            audio_io.subprocess, "run",
            MagicMock(return_value=completed(stdout=json.dumps(payload))),
        )

        with pytest.raises(InvalidInput):
            FFmpegAudioTool().probe(audio_file)


class TestExport:
    def test_command_writes_mono_pcm(self) -> None:
        cmd = FFmpegAudioTool().build_export_command("in.mp3", 510, 1050, "out.wav")

        assert cmd[cmd.index("-ss") + 1] == "510.000"
        assert cmd[cmd.index("-t") + 1] == "540.000"
        assert cmd[cmd.index("-ac") + 1] == "1"
        assert cmd[cmd.index("-c:a") + 1] == "pcm_s16le"
        assert "-af" not in cmd

    def test_enhance_adds_filter_chain(self) -> None:
        cmd = FFmpegAudioTool(highpass_freq=100).build_export_command(
            "in.mp3", 0, 60, "out.wav", enhance=True
        )

        assert cmd[cmd.index("-af") + 1].startswith("highpass=f=100,lowpass=")

    def test_failure_raises_with_stderr(self, monkeypatch, tmp_path) -> None:
        monkeypatch.setattr(
            audio_io.subprocess, "run",
            MagicMock(return_value=completed(1, stderr="No space left on device")),
        )

        with pytest.raises(RuntimeError, match="No space left"):
            FFmpegAudioTool().export_segment("in.mp3", 0, 60, tmp_path / "out.wav")

    def test_missing_ffmpeg(self, monkeypatch) -> None:
        monkeypatch.setattr(audio_io.subprocess, "run", MagicMock(side_effect=FileNotFoundError()))

        with pytest.raises(RuntimeError, match="FFmpeg not found"):
            FFmpegAudioTool().check_ffmpeg()
