"""
Audio I/O Service

Thin wrapper around FFmpeg/FFprobe used by the pipeline:
- Probe duration, size, sample rate and channel count
- Export a time range as 16kHz mono WAV (optimal for Whisper)
- Optional speech enhancement while exporting:
    - High-pass filter (remove low-frequency rumble)
    - Low-pass filter (remove high-frequency noise)
    - Loudness normalization (-16 LUFS target)
"""

import json
import logging
import subprocess
from pathlib import Path
from typing import List

from .errors import InvalidInput
from .models import AudioAsset

logger = logging.getLogger(__name__)


class FFmpegAudioTool:
    """
    FFmpeg-backed probing and chunk export.

    Example:
        >>> tool = FFmpegAudioTool()
        >>> asset = tool.probe("meeting.mp3")
        >>> tool.export_segment(asset.path, 510, 1050, "chunk_1.wav")
    """

    def __init__(
        self,
        target_lufs: float = -16.0,
        highpass_freq: int = 200,
        lowpass_freq: int = 3000,
        probe_timeout: int = 30,
        export_timeout: int = 600,
    ):
        """
        Args:
            target_lufs: Target loudness in LUFS (-16 is speech standard)
            highpass_freq: High-pass filter frequency (Hz) - removes low rumble
            lowpass_freq: Low-pass filter frequency (Hz) - removes high noise
            probe_timeout: Seconds allowed for ffprobe
            export_timeout: Seconds allowed for exporting one chunk
        """
        self.target_lufs = target_lufs
        self.highpass_freq = highpass_freq
        self.lowpass_freq = lowpass_freq
        self.probe_timeout = probe_timeout
        self.export_timeout = export_timeout

    def check_ffmpeg(self) -> None:
        """Verify FFmpeg is installed and accessible."""
        try:
            result = subprocess.run(
                ["ffmpeg", "-version"],
                capture_output=True,
                text=True,
                timeout=5
            )
            if result.returncode != 0:
                raise RuntimeError("FFmpeg is not working properly")
        except FileNotFoundError:
            raise RuntimeError(
                "FFmpeg not found. Install with: brew install ffmpeg (macOS) "
                "or apt install ffmpeg (Linux)"
            )
        except subprocess.TimeoutExpired:
            raise RuntimeError("FFmpeg check timed out")

    def probe(self, audio_file) -> AudioAsset:
        """
        Read audio metadata using FFprobe.

        Args:
            audio_file: Path to audio/video file

        Returns:
            AudioAsset describing the file

        Raises:
            InvalidInput: If the file is missing or holds no decodable audio
        """
        path = Path(audio_file)
        if not path.is_file():
            raise InvalidInput(f"Input file not found: {path}")

        cmd = [
            "ffprobe",
            "-v", "error",
            "-select_streams", "a:0",
            "-show_entries", "format=duration,size:stream=sample_rate,channels",
            "-of", "json",
            str(path),
        ]
        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=self.probe_timeout
            )
        except FileNotFoundError:
            raise RuntimeError("FFprobe not found. Install ffmpeg to decode audio")
        except subprocess.TimeoutExpired:
            raise InvalidInput(f"Timed out probing {path.name}")

        if result.returncode != 0:
            logger.error(f"FFprobe error for {path}: {result.stderr.strip()}")
            raise InvalidInput(f"Could not decode {path.name}: {result.stderr.strip()}")

        try:
            info = json.loads(result.stdout or "{}")
        except json.JSONDecodeError as e:
            raise InvalidInput(f"Unreadable ffprobe output for {path.name}") from e

        streams = info.get("streams") or []
        if not streams:
            raise InvalidInput(f"No audio stream in {path.name}")

        fmt = info.get("format") or {}
        try:
            duration = float(fmt.get("duration", 0.0))
        except (TypeError, ValueError):
            raise InvalidInput(f"Unknown duration for {path.name}")

        stream = streams[0]
        byte_size = int(fmt.get("size") or path.stat().st_size)

        return AudioAsset(
            path=path,
            duration=max(duration, 0.0),
            byte_size=byte_size,
            sample_rate=int(stream.get("sample_rate") or 0),
            channels=int(stream.get("channels") or 0),
        )

    def _filter_chain(self) -> str:
        filters = [
            f"highpass=f={self.highpass_freq}",
            f"lowpass=f={self.lowpass_freq}",
            f"loudnorm=I={self.target_lufs}:TP=-1.5:LRA=11",
        ]
        return ",".join(filters)

    def build_export_command(
        self,
        source,
        start: float,
        end: float,
        destination,
        sample_rate: int = 16000,
        enhance: bool = False,
    ) -> List[str]:
        cmd = [
            "ffmpeg",
            "-ss", f"{start:.3f}",
            "-t", f"{end - start:.3f}",
            "-i", str(source),
            "-vn",
        ]
        if enhance:
            cmd += ["-af", self._filter_chain()]
        cmd += [
            "-ar", str(sample_rate),  # Resample
            "-ac", "1",  # Convert to mono
            "-c:a", "pcm_s16le",  # 16-bit PCM
            "-y",  # Overwrite output
            str(destination),
        ]
        return cmd

    def export_segment(
        self,
        source,
        start: float,
        end: float,
        destination,
        sample_rate: int = 16000,
        enhance: bool = False,
    ) -> Path:
        """
        Export [start, end) of `source` to a mono PCM WAV file.

        Raises:
            RuntimeError: If FFmpeg fails or times out
        """
        output_path = Path(destination)
        output_path.parent.mkdir(parents=True, exist_ok=True)

        cmd = self.build_export_command(source, start, end, output_path, sample_rate, enhance)
        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=self.export_timeout
            )
        except subprocess.TimeoutExpired:
            raise RuntimeError(f"FFmpeg timed out exporting {start:.1f}s - {end:.1f}s")

        if result.returncode != 0:
            logger.error(f"FFmpeg error: {result.stderr}")
            raise RuntimeError(f"FFmpeg export failed: {result.stderr.strip()}")

        return output_path
