"""Tests for the command-line entry point's argument handling."""

import importlib.util

import pytest

from lib.config import PROJECT_ROOT

SCRIPT = PROJECT_ROOT / "scripts" / "transcribe_pipeline.py"


@pytest.fixture(scope="module")
def cli():
    spec = importlib.util.spec_from_file_location("transcribe_pipeline", SCRIPT)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


def test_batch_requires_output_dir(cli, tmp_path) -> None:
    assert cli.main(["--batch", str(tmp_path / "a.mp3")]) == 1


def test_missing_input_file(cli, tmp_path) -> None:
    assert cli.main([str(tmp_path / "missing.mp3"), str(tmp_path / "out.txt")]) == 1


def test_invalid_overlap_rejected_before_backend(cli, tmp_path, monkeypatch) -> None:
    source = tmp_path / "talk.mp3"
    source.write_bytes(b"ID3")
    monkeypatch.setattr(cli, "create_backend", lambda config: pytest.fail("backend created"))

    code = cli.main([str(source), str(tmp_path / "out.txt"), "--chunk-duration", "60", "--overlap", "30"])

    assert code == 1


def test_parser_defaults(cli) -> None:
    args = cli.build_parser().parse_args(["in.mp3", "out.txt"])

    assert args.backend == "mlx"
    assert args.on_chunk_failure == "abort"
    assert args.concurrency == 1
    assert args.formats == ["txt"]


def test_batch_outputs_are_unique(cli, tmp_path) -> None:
    inputs = ["day1/talk.mp3", "day2/talk.mp3", "day1/talk.mp3", "notes.wav"]

    pairs = cli.batch_file_pairs(inputs, tmp_path)

    assert [source for source, _ in pairs] == ["day1/talk.mp3", "day2/talk.mp3", "notes.wav"]
    assert [output for _, output in pairs] == [
        str(tmp_path / "talk_transcript.txt"),
        str(tmp_path / "talk_2_transcript.txt"),
        str(tmp_path / "notes_transcript.txt"),
    ]
