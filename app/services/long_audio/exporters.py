"""
Transcript export: TXT, JSON, SRT and VTT renderings of a TranscriptionResult.
"""

import json
import logging
from pathlib import Path
from typing import Dict, Iterable, List, Tuple

from lib.config import EXPORT_FORMATS

from .models import TranscriptionResult

logger = logging.getLogger(__name__)


def seconds_to_timestamp(seconds: float, separator: str = ",") -> str:
    """
    Convert seconds to a subtitle timestamp (HH:MM:SS,mmm).

    Args:
        seconds: Time in seconds
        separator: "," for SRT, "." for VTT
    """
    total_ms = int(round(max(seconds, 0.0) * 1000))
    hours, remainder = divmod(total_ms, 3_600_000)
    minutes, remainder = divmod(remainder, 60_000)
    secs, millis = divmod(remainder, 1000)
    return f"{hours:02d}:{minutes:02d}:{secs:02d}{separator}{millis:03d}"


def to_text(result: TranscriptionResult) -> str:
    text = result.text
    if result.gaps:
        gaps = ", ".join(
            f"{seconds_to_timestamp(start)} - {seconds_to_timestamp(end)}"
            for start, end in result.gaps
        )
        text += f"\n\n[Untranscribed gaps: {gaps}]"
    return text + "\n"


def to_json(result: TranscriptionResult) -> str:
    return json.dumps(result.to_dict(), indent=2, ensure_ascii=False)


GAP_CUE_TEXT = "[untranscribed]"


def _cues(result: TranscriptionResult) -> List[Tuple[float, float, str]]:
    """Non-empty segments plus a cue per skipped gap, in time order."""
    cues = [(seg.start, seg.end, seg.text.strip()) for seg in result.segments if seg.text.strip()]
    cues += [(start, end, GAP_CUE_TEXT) for start, end in result.gaps]
    return sorted(cues, key=lambda cue: cue[0])


def to_srt(result: TranscriptionResult) -> str:
    entries = []
    for entry_num, (start, end, text) in enumerate(_cues(result), start=1):
        start_ts = seconds_to_timestamp(start)
        end_ts = seconds_to_timestamp(end)
        entries.append(f"{entry_num}\n{start_ts} --> {end_ts}\n{text}\n")
    return "\n".join(entries)


def to_vtt(result: TranscriptionResult) -> str:
    lines = ["WEBVTT", ""]
    for start, end, text in _cues(result):
        lines.append(f"{seconds_to_timestamp(start, '.')} --> {seconds_to_timestamp(end, '.')}")
        lines.append(text)
        lines.append("")
    return "\n".join(lines)


RENDERERS = {
    "txt": to_text,
    "json": to_json,
    "srt": to_srt,
    "vtt": to_vtt,
}


def write_outputs(
    result: TranscriptionResult,
    output_file,
    formats: Iterable[str] = ("txt",),
) -> Dict[str, Path]:
    """
    Write `result` in each requested format next to `output_file`.

    The text format goes to `output_file` itself; other formats reuse its
    stem with their own extension.

    Returns:
        Mapping of format to written path

    Raises:
        ValueError: If a format is not supported
    """
    output_path = Path(output_file)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    written = {}
    for fmt in formats:
        if fmt not in EXPORT_FORMATS:
            raise ValueError(f"Unsupported export format: {fmt}")
        path = output_path if fmt == "txt" else output_path.with_suffix(f".{fmt}")
        path.write_text(RENDERERS[fmt](result), encoding="utf-8")
        written[fmt] = path
        logger.info(f"✓ {fmt.upper()} saved: {path}")
    return written
