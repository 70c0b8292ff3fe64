"""
Transcription Backends

Every backend exposes the same call:

    backend.transcribe(audio_file, language=None, on_progress=None) -> ChunkTranscript

`on_progress(partial_text, fraction)` may be called with partial results
before the call returns; only the returned transcript is used for merging.

Backends:
- MLXWhisperBackend: on-device inference with mlx-whisper (Apple Silicon)
- RemoteAPIBackend: OpenAI-compatible /audio/transcriptions endpoint

create_backend() picks one from a TranscriptionConfig.
"""

import gc
import logging
import math
import threading
from pathlib import Path
from typing import Any, Callable, Dict, Optional

import requests

from lib.config import (
    REMOTE_API_BASE_URL,
    REMOTE_API_MODEL,
    REMOTE_API_TIMEOUT,
    DEFAULT_MLX_MODEL,
    TranscriptionConfig,
)

from .errors import RemoteAPIError
from .models import ChunkTranscript, TranscriptSegment

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[str, float], None]


def parse_transcription_payload(payload: Dict[str, Any], model: str) -> ChunkTranscript:
    """
    Convert a Whisper-style result dict into a ChunkTranscript.

    Accepts both mlx-whisper output and `verbose_json` API responses.
    Segments missing start/end/text are skipped.

    Raises:
        ValueError: If the payload has neither text nor segments
    """
    raw_segments = payload.get("segments") or []
    segments = []
    for raw in raw_segments:
        try:
            start = float(raw["start"])
            end = float(raw["end"])
            text = str(raw["text"]).strip()
        except (KeyError, TypeError, ValueError):
            continue

        confidence = raw.get("confidence")
        if confidence is None and raw.get("avg_logprob") is not None:
            confidence = min(1.0, math.exp(float(raw["avg_logprob"])))

        segments.append(TranscriptSegment(
            start=start,
            end=end,
            text=text,
            id=len(segments),
            confidence=confidence,
            speaker=raw.get("speaker"),
        ))

    text = payload.get("text")
    if text is None:
        if not raw_segments:
            raise ValueError("Transcription payload has no text")
        text = " ".join(s.text for s in segments)

    return ChunkTranscript(
        text=str(text).strip(),
        segments=segments,
        language=payload.get("language"),
        model_used=model,
    )


class MLXWhisperBackend:
    """
    MLX-optimized Whisper transcription for Apple Silicon.

    One model is shared by all callers; calls are serialized with a lock
    because MLX is not fully thread-safe.

    Example:
        >>> backend = MLXWhisperBackend(model="mlx-community/whisper-medium-mlx")
        >>> transcript = backend.transcribe("chunk_000.wav", language="sv")
    """

    def __init__(self, model: str = DEFAULT_MLX_MODEL, **transcribe_kwargs):
        self.model_name = model
        self.transcribe_kwargs = transcribe_kwargs
        self.model = None
        self._model_lock = threading.Lock()

    def _load_model(self):
        """Load MLX Whisper module (lazy loading)."""
        if self.model is not None:
            return

        try:
            import mlx_whisper
        except ImportError:
            raise RuntimeError(
                "mlx-whisper not installed. Install with: pip install mlx-whisper"
            )
        logger.info(f"Loading MLX model: {self.model_name}")
        # MLX Whisper loads the weights internally when transcribe() is called
        self.model = mlx_whisper
        logger.info("✓ MLX model ready")

    def transcribe(
        self,
        audio_file,
        language: Optional[str] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> ChunkTranscript:
        self._load_model()

        with self._model_lock:
            try:
                result = self.model.transcribe(
                    str(audio_file),
                    path_or_hf_repo=self.model_name,
                    language=language,
                    **self.transcribe_kwargs
                )
            except Exception as e:
                logger.error(f"Transcription failed for {audio_file}: {e}")
                raise
            finally:
                # Free activations between chunks
                gc.collect()

        transcript = parse_transcription_payload(result, self.model_name)
        if on_progress:
            on_progress(transcript.text, 1.0)
        return transcript


class RemoteAPIBackend:
    """
    Hosted Whisper behind an OpenAI-compatible API.

    Uploads the chunk as multipart form data with
    `response_format=verbose_json` so segments come back with timestamps.
    """

    def __init__(
        self,
        api_key: str,
        base_url: str = REMOTE_API_BASE_URL,
        model: str = REMOTE_API_MODEL,
        timeout: float = REMOTE_API_TIMEOUT,
        session: Optional[requests.Session] = None,
    ):
        if not api_key:
            raise ValueError("RemoteAPIBackend requires an API key")
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.model_name = model
        self.timeout = timeout
        self.session = session or requests.Session()

    @property
    def endpoint(self) -> str:
        return f"{self.base_url}/audio/transcriptions"

    def transcribe(
        self,
        audio_file,
        language: Optional[str] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> ChunkTranscript:
        path = Path(audio_file)
        if not path.is_file():
            raise FileNotFoundError(f"Audio file not found: {path}")

        data = {
            "model": self.model_name,
            "response_format": "verbose_json",
        }
        if language:
            data["language"] = language

        logger.debug(f"POST {self.endpoint} ({path.stat().st_size / (1024 * 1024):.1f}MB)")
        with open(path, "rb") as f:
            response = self.session.post(
                self.endpoint,
                headers={"Authorization": f"Bearer {self.api_key}"},
                data=data,
                files={"file": (path.name, f, "audio/wav")},
                timeout=self.timeout,
            )

        if not response.ok:
            raise RemoteAPIError(_error_message(response), status_code=response.status_code)

        try:
            payload = response.json()
        except ValueError:
            raise RemoteAPIError("Invalid response from server", status_code=response.status_code)

        if not isinstance(payload, dict) or ("text" not in payload and "segments" not in payload):
            raise RemoteAPIError("Invalid response from server", status_code=response.status_code)

        transcript = parse_transcription_payload(payload, self.model_name)
        if on_progress:
            on_progress(transcript.text, 1.0)
        return transcript


def _error_message(response: requests.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text.strip() or response.reason or "Request failed"
    error = body.get("error") if isinstance(body, dict) else None
    if isinstance(error, dict):
        return str(error.get("message") or error)
    if error:
        return str(error)
    return response.reason or "Request failed"


def create_backend(config: TranscriptionConfig):
    """
    Create the backend selected by `config.backend`.

    Raises:
        ValueError: If the backend is unknown or misconfigured
    """
    factories = {
        "mlx": lambda: MLXWhisperBackend(model=config.model_name),
        "remote": lambda: RemoteAPIBackend(
            api_key=config.api_key,
            base_url=config.api_base_url,
            model=config.model_name,
            timeout=config.api_timeout,
        ),
    }
    try:
        factory = factories[config.backend]
    except KeyError:
        raise ValueError(f"Unknown backend: {config.backend}")
    return factory()
