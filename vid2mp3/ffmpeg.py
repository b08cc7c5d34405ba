"""Building and running the ffmpeg audio-extraction command.

ffmpeg must be available on PATH (both Windows and Linux are supported).
"""

import json
import logging
import os
import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from vid2mp3.errors import (
    ConversionFailed,
    InputNotFound,
    OutputWriteFailure,
    SpawnFailure,
    ToolNotAvailable,
)
from vid2mp3.progress import ProgressMonitor

logger = logging.getLogger(__name__)

DEFAULT_CODEC = "libmp3lame"
DEFAULT_BITRATE = "192k"
DEFAULT_SAMPLE_RATE = 44100

# Checked when the default binary name is not on PATH.
FALLBACK_LOCATIONS = ("/usr/bin/ffmpeg", "/usr/local/bin/ffmpeg")

# ffmpeg messages that always concern the output side.
OUTPUT_ERROR_MARKERS = (
    "Error opening output",
    "No space left on device",
    "Error writing trailer",
    "Read-only file system",
)
# Generic I/O messages; only counted when they name the output file.
IO_ERROR_MARKERS = (
    "Permission denied",
    "Could not open file",
    "Input/output error",
    "No such file or directory",
)


@dataclass
class EncodeSettings:
    """Encoder options passed to ffmpeg."""

    codec: str = DEFAULT_CODEC
    bitrate: str = DEFAULT_BITRATE
    sample_rate: int = DEFAULT_SAMPLE_RATE
    overwrite: bool = True


# ---------------------------------------------------------------------------
# Command construction
# ---------------------------------------------------------------------------


def find_ffmpeg(binary: str = "ffmpeg") -> str:
    """Resolve *binary* to an executable path or raise ToolNotAvailable."""
    found = shutil.which(binary)
    if found:
        return found
    if binary == "ffmpeg":
        for candidate in FALLBACK_LOCATIONS:
            if Path(candidate).is_file() and os.access(candidate, os.X_OK):
                return candidate
    raise ToolNotAvailable(
        f"{binary} not found. Install ffmpeg and ensure it is on your PATH."
    )


def build_command(
    ffmpeg: str,
    input_path: Path,
    output_path: Path,
    settings: EncodeSettings,
) -> List[str]:
    """Return the argument vector for an audio-only MP3 encode.

    The channel count is left untouched so the source layout is kept.
    """
    return [
        ffmpeg,
        "-hide_banner",
        "-nostdin",
        "-y" if settings.overwrite else "-n",
        "-i", str(input_path),
        "-vn",                           # no video stream
        "-acodec", settings.codec,
        "-b:a", settings.bitrate,        # constant bitrate
        "-ar", str(settings.sample_rate),
        "-progress", "pipe:2",           # key=value status lines on stderr
        "-nostats",
        str(output_path),
    ]


def _is_output_error(diagnostics: str, output_path: Path) -> bool:
    name = str(output_path)
    for line in diagnostics.splitlines():
        if any(marker in line for marker in OUTPUT_ERROR_MARKERS):
            return True
        if name in line and any(marker in line for marker in IO_ERROR_MARKERS):
            return True
    return False


# ---------------------------------------------------------------------------
# Execution
# ---------------------------------------------------------------------------


def convert(
    input_path: Path,
    output_path: Path,
    monitor: ProgressMonitor,
    settings: Optional[EncodeSettings] = None,
    ffmpeg: str = "ffmpeg",
) -> Path:
    """Extract the audio of *input_path* into *output_path*.

    ffmpeg's stderr is handed to *monitor* until the stream closes; the
    child's exit status then decides success. Returns *output_path*.
    """
    settings = settings or EncodeSettings()

    if not input_path.is_file():
        raise InputNotFound(f"Input file not found: {input_path}")

    executable = find_ffmpeg(ffmpeg)

    try:
        output_path.parent.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise OutputWriteFailure(
            f"Cannot create output directory {output_path.parent}: {exc}"
        ) from exc

    cmd = build_command(executable, input_path, output_path, settings)
    logger.debug("Running: %s", " ".join(cmd))

    try:
        proc = subprocess.Popen(
            cmd,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.PIPE,
            text=True,
            errors="replace",
        )
    except FileNotFoundError as exc:
        raise ToolNotAvailable(f"Cannot execute {executable}: {exc}") from exc
    except OSError as exc:
        raise SpawnFailure(f"Failed to start {executable}: {exc}") from exc

    with proc:
        try:
            monitor.consume(proc.stderr)
        except BaseException:
            proc.kill()
            raise
        finally:
            monitor.finish()
        returncode = proc.wait()

    if returncode != 0:
        diagnostics = monitor.diagnostics
        if _is_output_error(diagnostics, output_path):
            raise OutputWriteFailure(
                f"ffmpeg could not write {output_path}",
                returncode=returncode,
                diagnostics=diagnostics,
            )
        raise ConversionFailed(returncode, diagnostics)

    logger.debug("ffmpeg finished (progress end marker seen: %s)", monitor.reached_end)
    return output_path


def probe_duration(media_path: Path, ffprobe: str = "ffprobe") -> Optional[float]:
    """Return the duration of *media_path* in seconds using ffprobe.

    Returns ``None`` when ffprobe is missing or reports no duration; the
    caller then relies on the duration line in ffmpeg's own output.
    """
    try:
        result = subprocess.run(
            [
                ffprobe, "-v", "quiet",
                "-print_format", "json",
                "-show_format",
                str(media_path),
            ],
            capture_output=True,
            text=True,
            check=True,
        )
        data = json.loads(result.stdout)
        return float(data["format"]["duration"])
    except (OSError, subprocess.CalledProcessError) as exc:
        logger.warning("ffprobe failed, duration unknown: %s", exc)
    except (ValueError, KeyError, TypeError) as exc:
        logger.warning("ffprobe reported no usable duration: %s", exc)
    return None
