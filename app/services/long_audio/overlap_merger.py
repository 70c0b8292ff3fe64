"""
Overlap Merger

Stitches per-chunk transcripts into one transcript on the original timeline.

Consecutive chunks share an overlap window that was transcribed twice.
For each chunk after the first:

1. Segment times are shifted by the chunk's start time.
2. Text: the trailing words of the merged text are compared with the leading
   words of the new chunk. For every candidate end position i in the new
   chunk, words are compared backwards (merged[-1-j] vs new[i-j]) until the
   first mismatch. The longest run wins. The run is accepted only if it is
   longer than `min_overlap_words`; otherwise the whole chunk text is
   appended, preferring visible duplication over silently dropped speech.
3. Segments: a segment starting inside the overlap window (chunk-local start
   below the overlap length) was already covered by the previous chunk and
   is dropped.

A chunk that failed under the skip policy leaves a gap. The chunk after a
gap has nothing to deduplicate against and is appended whole.

Merged duration is the sum of chunk spans, so it counts overlaps twice.
"""

import logging
import re
from typing import List, Optional, Sequence, Tuple

from lib.config import DEFAULT_MIN_OVERLAP_WORDS, DEFAULT_OVERLAP_TAIL_WORDS, TranscriptionConfig

from .models import ChunkDescriptor, ChunkResult, TranscriptSegment, TranscriptionResult

logger = logging.getLogger(__name__)

_PUNCTUATION = re.compile(r"[^\w]+", re.UNICODE)


def normalize_word(word: str) -> str:
    """Case- and punctuation-insensitive form used for comparison."""
    stripped = _PUNCTUATION.sub("", word.casefold())
    return stripped or word.casefold()


def find_overlap(
    previous_words: Sequence[str],
    current_words: Sequence[str],
    search_words: int = DEFAULT_OVERLAP_TAIL_WORDS,
) -> Tuple[int, int]:
    """
    Find where `current_words` stops repeating the end of `previous_words`.

    Args:
        previous_words: Tail of the already merged text
        current_words: Words of the new chunk
        search_words: Leading words of the new chunk to consider

    Returns:
        (best_match_index, best_score): index of the last repeated word in
        current_words and the number of words in the run. (0, 0) if none.
    """
    previous = [normalize_word(w) for w in previous_words]
    current = [normalize_word(w) for w in current_words]

    best_match = 0
    best_score = 0
    for i in range(min(search_words, len(current))):
        score = 0
        max_j = min(len(previous), i + 1)
        for j in range(max_j):
            if previous[len(previous) - 1 - j] == current[i - j]:
                score += 1
            else:
                break
        if score > best_score:
            best_score = score
            best_match = i
    return best_match, best_score


class OverlapMerger:
    """
    Merges ordered ChunkResults into a single TranscriptionResult.

    Example:
        >>> merger = OverlapMerger(min_overlap_words=5)
        >>> result = merger.merge(chunk_results)
        >>> print(result.text)
    """

    def __init__(
        self,
        min_overlap_words: int = DEFAULT_MIN_OVERLAP_WORDS,
        tail_words: int = DEFAULT_OVERLAP_TAIL_WORDS,
        fallback_language: str = "unknown",
        job_id: str = "",
    ):
        """
        Args:
            min_overlap_words: A match must be longer than this to be trusted
            tail_words: Words of merged text (and of the new chunk) searched
            fallback_language: Used when no backend reported a language
            job_id: Job identifier for logging
        """
        self.min_overlap_words = min_overlap_words
        self.tail_words = tail_words
        self.fallback_language = fallback_language
        self.job_id = job_id

    @classmethod
    def from_config(cls, config: TranscriptionConfig, job_id: str = "") -> "OverlapMerger":
        return cls(
            min_overlap_words=config.min_overlap_words,
            tail_words=config.overlap_tail_words,
            fallback_language=config.language_hint or "unknown",
            job_id=job_id,
        )

    def remove_overlap(self, merged_text: str, current_text: str) -> str:
        """
        Return the part of `current_text` that does not repeat the end of
        `merged_text`.
        """
        if not merged_text or not current_text:
            return current_text

        previous_words = merged_text.split()[-self.tail_words:]
        current_words = current_text.split()
        if not previous_words or not current_words:
            return current_text

        best_match, best_score = find_overlap(previous_words, current_words, self.tail_words)
        logger.debug(
            f"[Job {self.job_id}] Overlap search: best_match={best_match}, score={best_score}"
        )

        if best_score > self.min_overlap_words:
            logger.debug(f"[Job {self.job_id}] Found overlap: {best_score} words")
            return " ".join(current_words[best_match + 1:])

        if best_score > 0:
            logger.warning(
                f"[Job {self.job_id}] Weak overlap ({best_score} words), keeping full chunk text"
            )
        return " ".join(current_words)

    def merge(self, results: List[ChunkResult]) -> TranscriptionResult:
        """
        Merge chunk results, which must be in ascending chunk index order.

        Returns:
            The merged transcript; an empty result for empty input
        """
        if not results:
            logger.warning(f"[Job {self.job_id}] Nothing to merge, returning empty result")
            return TranscriptionResult.empty()

        indices = [r.chunk.index for r in results]
        if indices != sorted(indices):
            raise ValueError(f"Chunk results out of order: {indices}")

        merged_text = ""
        segments: List[TranscriptSegment] = []
        gaps: List[Tuple[float, float]] = []
        language: Optional[str] = None
        model_used: Optional[str] = None
        previous: Optional[ChunkDescriptor] = None

        for result in results:
            chunk = result.chunk
            if result.failed:
                gaps.append((chunk.start_time, chunk.end_time))
                previous = None
                continue

            transcript = result.transcript
            language = language or transcript.language
            model_used = model_used or transcript.model_used

            if previous is None:
                # First chunk, or first after a gap: take everything
                if transcript.text.strip():
                    merged_text = f"{merged_text} {transcript.text}" if merged_text else transcript.text
                overlap = 0.0
            else:
                new_text = self.remove_overlap(merged_text, transcript.text)
                if new_text:
                    merged_text = f"{merged_text} {new_text}" if merged_text else new_text
                overlap = max(0.0, previous.end_time - chunk.start_time)

            for segment in transcript.segments:
                if segment.start < overlap:
                    continue
                segments.append(segment.shifted(chunk.start_time, len(segments)))

            previous = chunk

        duration = sum(r.chunk.end_time - r.chunk.start_time for r in results)

        if gaps:
            logger.warning(f"[Job {self.job_id}] Merged transcript has {len(gaps)} gap(s): {gaps}")
        logger.info(
            f"[Job {self.job_id}] Merged {len(results)} chunks: "
            f"{len(merged_text.split())} words, {len(segments)} segments"
        )

        return TranscriptionResult(
            text=merged_text.strip(),
            segments=segments,
            language=language or self.fallback_language,
            duration=duration,
            model_used=model_used or "unknown",
            gaps=gaps,
        )
