"""Extract the audio track of a video file to MP3 with a live progress bar.

All decoding and encoding is done by ffmpeg, which must be on PATH. While
it runs, its status output is parsed into a single self-updating line
showing percentage, speed multiplier and ETA.

Usage example
-------------
  python convert.py lecture.mp4 lecture.mp3 --bitrate 256k

Installed as the ``vid2mp3`` command; run ``vid2mp3 --help`` for the full
argument list.
"""

import argparse
import logging
import sys
import time
from pathlib import Path
from typing import List, Optional

from tqdm.contrib.logging import logging_redirect_tqdm  # type: ignore

from vid2mp3.display import ProgressBar
from vid2mp3.errors import ConversionError
from vid2mp3.ffmpeg import (
    DEFAULT_BITRATE,
    DEFAULT_CODEC,
    DEFAULT_SAMPLE_RATE,
    EncodeSettings,
    convert,
    probe_duration,
)
from vid2mp3.progress import ProgressMonitor
from vid2mp3.timecode import format_hms

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Conversion
# ---------------------------------------------------------------------------


def run(args: argparse.Namespace) -> Path:
    """Convert ``args.input`` to ``args.output`` according to *args*."""
    input_path: Path = args.input.expanduser()
    output_path: Path = args.output.expanduser()

    settings = EncodeSettings(
        codec=args.codec,
        bitrate=args.bitrate,
        sample_rate=args.sample_rate,
        overwrite=not args.no_overwrite,
    )

    total = None
    if args.probe and input_path.is_file():
        total = probe_duration(input_path)

    monitor = ProgressMonitor(
        renderer=ProgressBar(desc="Converting", disable=args.no_progress),
        total=total,
    )

    logger.info("Starting conversion: %s -> %s", input_path, output_path)
    started = time.monotonic()
    with logging_redirect_tqdm():
        convert(input_path, output_path, monitor, settings=settings, ffmpeg=args.ffmpeg)

    duration = time.monotonic() - started
    logger.info("Conversion completed in %s (%.2fs)", format_hms(duration), duration)
    logger.info("Output file: %s", output_path)
    return output_path


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="vid2mp3",
        description="Extract the audio track of a video file to MP3 using ffmpeg",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )

    parser.add_argument("input", type=Path, help="Input video file")
    parser.add_argument("output", type=Path, help="Output MP3 file")

    # Encoding
    parser.add_argument(
        "--bitrate",
        default=DEFAULT_BITRATE,
        help="Constant audio bitrate passed to the encoder",
    )
    parser.add_argument(
        "--sample-rate",
        type=int,
        default=DEFAULT_SAMPLE_RATE,
        dest="sample_rate",
        help="Output sample rate in Hz",
    )
    parser.add_argument(
        "--codec",
        default=DEFAULT_CODEC,
        help="ffmpeg audio encoder",
    )

    # Tool
    parser.add_argument(
        "--ffmpeg",
        default="ffmpeg",
        help="Name or path of the ffmpeg executable",
    )
    parser.add_argument(
        "--no-overwrite",
        action="store_true",
        dest="no_overwrite",
        help="Fail instead of replacing an existing output file",
    )
    parser.add_argument(
        "--probe",
        action="store_true",
        help="Ask ffprobe for the input duration before converting",
    )

    # Output
    parser.add_argument(
        "--no-progress",
        action="store_true",
        dest="no_progress",
        help="Do not draw the progress bar",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Log the ffmpeg command and skipped status lines",
    )

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%H:%M:%S",
    )

    try:
        run(args)
    except ConversionError as exc:
        logger.error("%s", exc)
        return exc.exit_code
    except KeyboardInterrupt:
        logger.error("Interrupted.")
        return 130
    return 0


if __name__ == "__main__":
    sys.exit(main())
