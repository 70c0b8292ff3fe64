#!/usr/bin/env python3
"""
Long Audio Transcription - Chunk, Transcribe, Merge

Splits long recordings into overlapping chunks, transcribes each chunk with
the selected backend and merges the results into one transcript.

Usage:
    # Single file
    python scripts/transcribe_pipeline.py input.mp3 output.txt

    # Batch mode (multiple files)
    python scripts/transcribe_pipeline.py --batch file1.mp3 file2.mp3 --output-dir ./outputs

    # Remote API backend (key from TRANSCRIPTOR_API_KEY)
    python scripts/transcribe_pipeline.py input.mp3 output.txt --backend remote

    # With options
    python scripts/transcribe_pipeline.py input.mp3 output.txt \
        --language sv \
        --chunk-duration 540 \
        --overlap 30 \
        --on-chunk-failure skip \
        --formats txt srt json
"""

import sys
import logging
import argparse
from pathlib import Path
from datetime import datetime

from tqdm import tqdm

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from lib.config import (  # noqa: E402
    BACKENDS,
    DEFAULT_LANGUAGE,
    DEFAULT_MAX_CHUNK_DURATION,
    DEFAULT_OVERLAP_DURATION,
    EXPORT_FORMATS,
    FAILURE_POLICIES,
    MAX_CONCURRENT_CHUNKS_LIMIT,
    TranscriptionConfig,
)
from app.services.long_audio import PipelineTranscriber, create_backend  # noqa: E402
from app.services.long_audio.audio_io import FFmpegAudioTool  # noqa: E402


def setup_logging(verbose: bool = False):
    """Setup logging configuration."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(levelname)s - %(message)s',
        datefmt='%H:%M:%S'
    )


def batch_file_pairs(inputs, output_dir: Path):
    """
    Map batch inputs to unique transcript paths in output_dir.

    Repeated inputs are transcribed once. Inputs sharing a stem get a
    numeric suffix so their transcripts do not overwrite each other.
    """
    pairs = []
    used = set()
    for input_file in dict.fromkeys(str(f) for f in inputs):
        stem = Path(input_file).stem
        name = f"{stem}_transcript.txt"
        suffix = 1
        while name in used:
            suffix += 1
            name = f"{stem}_{suffix}_transcript.txt"
        used.add(name)
        pairs.append((input_file, str(output_dir / name)))
    return pairs


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description='Long Audio Transcription - Chunk, Transcribe, Merge',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Single file
  python scripts/transcribe_pipeline.py meeting.mp3 transcript.txt

  # Batch mode
  python scripts/transcribe_pipeline.py --batch file1.mp3 file2.mp3 --output-dir ./outputs
        """
    )

    # Mode selection
    parser.add_argument('input_file', nargs='?', help='Input audio file (single file mode)')
    parser.add_argument('output_file', nargs='?', help='Output text file (single file mode)')
    parser.add_argument('--batch', nargs='+', help='Batch mode: list of input files')
    parser.add_argument('--output-dir', help='Output directory for batch mode')

    # Backend settings
    parser.add_argument(
        '--backend',
        default='mlx',
        choices=BACKENDS,
        help='Transcription backend (default: mlx)'
    )
    parser.add_argument('--model', help='Model id for the backend')
    parser.add_argument(
        '--language',
        default=DEFAULT_LANGUAGE,
        help=f'Language code or "auto" (default: {DEFAULT_LANGUAGE})'
    )

    # Chunking settings
    parser.add_argument(
        '--chunk-duration',
        type=float,
        default=DEFAULT_MAX_CHUNK_DURATION,
        help=f'Chunk duration in seconds (default: {DEFAULT_MAX_CHUNK_DURATION:.0f})'
    )
    parser.add_argument(
        '--overlap',
        type=float,
        default=DEFAULT_OVERLAP_DURATION,
        help=f'Overlap duration in seconds (default: {DEFAULT_OVERLAP_DURATION:.0f})'
    )
    parser.add_argument(
        '--min-overlap-words',
        type=int,
        help='Words that must line up before overlap text is dropped'
    )
    parser.add_argument('--enhance', action='store_true', help='Apply speech filters to chunks')

    # Scheduling settings
    parser.add_argument(
        '--concurrency',
        type=int,
        default=1,
        choices=range(1, MAX_CONCURRENT_CHUNKS_LIMIT + 1),
        help='Chunks transcribed at once (default: 1)'
    )
    parser.add_argument(
        '--on-chunk-failure',
        default='abort',
        choices=FAILURE_POLICIES,
        help='abort the job or skip the chunk and mark a gap (default: abort)'
    )
    parser.add_argument('--retries', type=int, default=0, help='Retries per failed chunk')
    parser.add_argument('--jobs', type=int, default=1, help='Files processed in parallel (batch)')

    # Output
    parser.add_argument(
        '--formats',
        nargs='+',
        default=['txt'],
        choices=EXPORT_FORMATS,
        help='Output formats (default: txt)'
    )
    parser.add_argument('--verbose', '-v', action='store_true', help='Verbose logging')
    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    setup_logging(args.verbose)
    logger = logging.getLogger(__name__)

    # Validate arguments
    if args.batch:
        if not args.output_dir:
            logger.error("Batch mode requires --output-dir")
            return 1
        output_dir = Path(args.output_dir)
        output_dir.mkdir(parents=True, exist_ok=True)
        file_pairs = batch_file_pairs(args.batch, output_dir)
    elif args.input_file and args.output_file:
        input_path = Path(args.input_file)
        if not input_path.exists():
            logger.error(f"Input file not found: {args.input_file}")
            return 1
        file_pairs = [(str(input_path), args.output_file)]
    else:
        parser.print_help()
        return 1

    overrides = dict(
        backend=args.backend,
        language=args.language,
        max_chunk_duration=args.chunk_duration,
        overlap_duration=args.overlap,
        max_concurrent_chunks=args.concurrency,
        failure_policy=args.on_chunk_failure,
        chunk_retries=args.retries,
        enhance_audio=args.enhance,
    )
    if args.model:
        overrides['model'] = args.model
    if args.min_overlap_words is not None:
        overrides['min_overlap_words'] = args.min_overlap_words

    try:
        config = TranscriptionConfig.from_env(**overrides).validate()
        backend = create_backend(config)
    except ValueError as e:
        logger.error(f"Invalid configuration: {e}")
        return 1

    try:
        FFmpegAudioTool().check_ffmpeg()
    except RuntimeError as e:
        logger.error(f"❌ {e}")
        return 1

    logger.info("=" * 70)
    logger.info("🚀 LONG AUDIO TRANSCRIPTION")
    logger.info("=" * 70)
    logger.info(f"Mode: {'Batch' if args.batch else 'Single'} ({len(file_pairs)} files)")
    logger.info(f"Backend: {config.backend} ({config.model_name})")
    logger.info(f"Language: {config.language}")
    logger.info(f"Chunking: {config.max_chunk_duration:.0f}s + {config.overlap_duration:.0f}s overlap")
    logger.info(f"On chunk failure: {config.failure_policy}")
    logger.info("=" * 70)

    start_time = datetime.now()
    pipeline = PipelineTranscriber(
        backend,
        config,
        max_parallel_jobs=args.jobs,
        export_formats=tuple(args.formats),
    )

    bars = {
        name: tqdm(total=100, desc=Path(name).name, unit='%', position=i, leave=True)
        for i, (name, _) in enumerate(file_pairs)
    }

    def on_progress(name, event):
        bar = bars[name]
        bar.set_postfix_str(event.stage_label)
        bar.update(int(event.fraction * 100) - bar.n)

    try:
        results = pipeline.process_batch(file_pairs, on_progress=on_progress)
    except KeyboardInterrupt:
        pipeline.cancel_all()
        logger.warning("Interrupted, cancelling jobs")
        return 1
    finally:
        for bar in bars.values():
            bar.close()

    total_time = (datetime.now() - start_time).total_seconds()
    successful = sum(1 for r in results if r['success'])

    logger.info("")
    logger.info("=" * 70)
    logger.info("✨ PIPELINE COMPLETE!")
    logger.info("=" * 70)
    logger.info(f"Total time: {total_time / 60:.1f} minutes")
    logger.info(f"Files processed: {successful}/{len(results)}")

    for result in results:
        name = Path(result['input_file']).name
        if result['success']:
            transcript = result['result']
            status = "" if transcript.is_complete else f" (gaps: {transcript.gaps})"
            logger.info(f"  ✓ {name}{status}")
        elif result['cancelled']:
            logger.info(f"  - {name}: cancelled")
        else:
            logger.info(f"  ✗ {name}: {result['error']}")

    logger.info("=" * 70)
    return 0 if successful == len(results) else 1


if __name__ == "__main__":
    sys.exit(main())
