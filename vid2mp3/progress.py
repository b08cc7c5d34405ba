"""Incremental parsing of ffmpeg's diagnostic stream into progress estimates.

ffmpeg writes two kinds of lines we care about to stderr:

* the input banner, once, containing ``Duration: HH:MM:SS.ff, ...``
* periodic status lines carrying the elapsed encoded time, either as
  ``-progress`` key/value pairs (``out_time=00:00:45.200000``) or as the
  classic stats line (``size= 512kB time=00:00:45.20 bitrate=...``).

Field extraction is anchored on fixed ``key=`` markers rather than a single
exact pattern so that minor layout changes between ffmpeg versions (extra
padding, reordered fields) do not break parsing.
"""

import logging
import time
from collections import deque
from dataclasses import dataclass
from typing import Any, Callable, Deque, Iterable, Optional, Tuple

from vid2mp3.timecode import parse_timecode

logger = logging.getLogger(__name__)

DURATION_MARKER = "Duration:"

# Checked in this order; the microsecond variants duplicate ``out_time``.
ELAPSED_KEYS = ("out_time", "time", "out_time_us", "out_time_ms")
MICROSECOND_KEYS = ("out_time_us", "out_time_ms")

# Keys of ffmpeg's ``-progress`` protocol that carry no elapsed time.
PROGRESS_KEYS = (
    "frame",
    "fps",
    "bitrate",
    "total_size",
    "dup_frames",
    "drop_frames",
    "speed",
    "progress",
)


# ---------------------------------------------------------------------------
# Data model
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ProgressSample:
    """Elapsed encoded time observed at a monotonic wall-clock instant."""

    elapsed: float
    timestamp: float


@dataclass(frozen=True)
class ProgressSnapshot:
    """Everything the renderer needs for one redraw.

    Derived fields are ``None`` when they cannot be computed yet.
    """

    elapsed: float
    total: Optional[float] = None
    fraction: Optional[float] = None
    speed: Optional[float] = None
    eta: Optional[float] = None
    bitrate: Optional[str] = None


# ---------------------------------------------------------------------------
# Estimates
# ---------------------------------------------------------------------------


def estimate_fraction(elapsed: float, total: Optional[float]) -> Optional[float]:
    """Share of *total* already encoded, clamped to [0, 1]."""
    if not total or total <= 0:
        return None
    return min(max(elapsed / total, 0.0), 1.0)


def estimate_speed(
    previous: Optional[ProgressSample], current: ProgressSample
) -> Optional[float]:
    """Media seconds encoded per wall-clock second between two samples."""
    if previous is None:
        return None
    wall = current.timestamp - previous.timestamp
    if wall <= 0:
        return None
    speed = (current.elapsed - previous.elapsed) / wall
    if speed <= 0:
        return None
    return speed


def estimate_eta(
    elapsed: float, total: Optional[float], speed: Optional[float]
) -> Optional[float]:
    """Wall-clock seconds left at the current *speed*."""
    if not total or total <= 0 or not speed or speed <= 0:
        return None
    return max(total - elapsed, 0.0) / speed


# ---------------------------------------------------------------------------
# Line parsing
# ---------------------------------------------------------------------------


def _field(line: str, key: str) -> Optional[str]:
    """Return the whitespace-delimited value following ``key=`` in *line*.

    The key must start the line or follow whitespace, so ``time`` does not
    match inside ``out_time``.
    """
    marker = key + "="
    start = 0
    while True:
        index = line.find(marker, start)
        if index < 0:
            return None
        if index == 0 or line[index - 1].isspace():
            break
        start = index + 1

    rest = line[index + len(marker):].lstrip()
    if not rest:
        return None
    value = rest.split(None, 1)[0]
    # "bitrate= speed=1x" must not yield "speed=1x" as the bitrate.
    if "=" in value:
        return None
    return value


def _elapsed_field(line: str) -> Tuple[Optional[str], Optional[str]]:
    for key in ELAPSED_KEYS:
        value = _field(line, key)
        if value is not None:
            return key, value
    return None, None


def _elapsed_seconds(key: str, value: str) -> Optional[float]:
    try:
        if key in MICROSECOND_KEYS:
            micros = int(value)
            if micros < 0:
                return None
            return micros / 1_000_000
        return parse_timecode(value)
    except ValueError:
        return None


def parse_duration_line(line: str) -> Optional[float]:
    """Total media duration from the input banner line, if *line* is one."""
    text = line.strip()
    if not text.startswith(DURATION_MARKER):
        return None
    value = text[len(DURATION_MARKER):].split(",", 1)[0].strip()
    try:
        return parse_timecode(value)
    except ValueError:
        return None


def parse_status_line(line: str) -> Optional[float]:
    """Elapsed encoded seconds from a status line, if *line* carries one."""
    key, value = _elapsed_field(line)
    if key is None or value is None:
        return None
    return _elapsed_seconds(key, value)


def parse_bitrate(line: str) -> Optional[str]:
    value = _field(line, "bitrate")
    if value is None or value == "N/A":
        return None
    return value


def _is_progress_key_line(line: str) -> bool:
    key, sep, _ = line.strip().partition("=")
    if not sep:
        return False
    return key in PROGRESS_KEYS or key.startswith("stream_")


# ---------------------------------------------------------------------------
# Monitor
# ---------------------------------------------------------------------------


class ProgressMonitor:
    """Consume ffmpeg's stderr line by line and drive a progress renderer.

    *renderer* is any object with ``update(snapshot)`` and ``close()``
    methods (see :class:`vid2mp3.display.ProgressBar`); ``None`` disables
    rendering. *clock* must be monotonic.

    ``-progress`` output arrives in blocks terminated by ``progress=...``;
    one sample is recorded per block, preferring ``out_time`` over its
    microsecond twins. Classic stats lines are sampled as they arrive.
    """

    def __init__(
        self,
        renderer: Any = None,
        clock: Callable[[], float] = time.monotonic,
        total: Optional[float] = None,
        diagnostic_lines: int = 20,
    ) -> None:
        self.renderer = renderer
        self.clock = clock
        self.total: Optional[float] = total
        self.sample: Optional[ProgressSample] = None
        self.snapshot: Optional[ProgressSnapshot] = None
        self.bitrate: Optional[str] = None
        self.reached_end = False
        self._duration_seen = False
        self._pending: Optional[float] = None
        self._pending_key: Optional[str] = None
        self._finished = False
        self._tail: Deque[str] = deque(maxlen=diagnostic_lines)

    @property
    def diagnostics(self) -> str:
        """The most recent lines of ffmpeg output that were not progress."""
        return "\n".join(self._tail)

    # ------------------------------------------------------------------
    # Line handling
    # ------------------------------------------------------------------

    def feed(self, line: str) -> Optional[ProgressSnapshot]:
        """Handle one line of output; return a snapshot if progress moved."""
        text = line.strip()
        if not text:
            return None

        if text.startswith(DURATION_MARKER):
            self._tail.append(text)
            if not self._duration_seen:
                self._duration_seen = True
                self._take_duration(text)
            return None

        bitrate = parse_bitrate(text)
        if bitrate is not None:
            self.bitrate = bitrate

        key, sep, value = text.partition("=")
        if sep and key == "progress":
            if value == "end":
                self.reached_end = True
            return self._commit()

        if sep and key in ("out_time",) + MICROSECOND_KEYS:
            elapsed = _elapsed_seconds(key, value.strip())
            if elapsed is None:
                logger.debug("Skipping unparseable status field %s", text)
            elif key == "out_time" or self._pending_key != "out_time":
                self._pending = elapsed
                self._pending_key = key
            return None

        # Classic stats lines may start with "frame=", so test for them first.
        if _field(text, "time") is not None:
            elapsed = parse_status_line(text)
            if elapsed is None:
                logger.debug("Skipping unparseable status line: %s", text)
                return None
            return self._record(elapsed)

        if _is_progress_key_line(text):
            return None

        self._tail.append(text)
        return None

    def _take_duration(self, text: str) -> None:
        duration = parse_duration_line(text)
        if duration is None:
            logger.debug("Input duration unknown: %s", text)
        elif self.total is None:
            self.total = duration
            logger.debug("Input duration: %.2fs", duration)

    def _commit(self) -> Optional[ProgressSnapshot]:
        if self._pending is None:
            return None
        elapsed = self._pending
        self._pending = None
        self._pending_key = None
        return self._record(elapsed)

    def _record(self, elapsed: float) -> ProgressSnapshot:
        sample = ProgressSample(elapsed=elapsed, timestamp=self.clock())
        speed = estimate_speed(self.sample, sample)
        self.sample = sample

        self.snapshot = ProgressSnapshot(
            elapsed=elapsed,
            total=self.total,
            fraction=estimate_fraction(elapsed, self.total),
            speed=speed,
            eta=estimate_eta(elapsed, self.total, speed),
            bitrate=self.bitrate,
        )
        if self.renderer is not None:
            self.renderer.update(self.snapshot)
        return self.snapshot

    # ------------------------------------------------------------------
    # Stream handling
    # ------------------------------------------------------------------

    def consume(self, stream: Iterable[str]) -> None:
        """Read *stream* until it closes, then finish the display."""
        for line in stream:
            self.feed(line)
        self.finish()

    def finish(self) -> None:
        """Flush a trailing partial block and close the renderer.

        Safe to call more than once.
        """
        if self._finished:
            return
        self._finished = True
        self._commit()
        if self.renderer is not None:
            self.renderer.close()
