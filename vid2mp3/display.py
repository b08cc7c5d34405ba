"""Terminal rendering of conversion progress via tqdm."""

from typing import IO, List, Optional

from tqdm import tqdm  # type: ignore

from vid2mp3.progress import ProgressSnapshot
from vid2mp3.timecode import format_eta

KNOWN_TOTAL_FORMAT = "{desc}: {percentage:3.0f}%|{bar}| {n:.1f}/{total:.1f}s{postfix}"
UNKNOWN_TOTAL_FORMAT = "{desc}: {n:.1f}s{postfix}"


def format_postfix(snapshot: ProgressSnapshot) -> str:
    """Speed, ETA and bitrate labels, skipping whatever is undefined."""
    parts: List[str] = []
    if snapshot.speed is not None:
        parts.append(f"speed={snapshot.speed:.2f}x")
    if snapshot.eta is not None:
        parts.append(f"eta={format_eta(snapshot.eta)}")
    if snapshot.bitrate:
        parts.append(f"bitrate={snapshot.bitrate}")
    return ", ".join(parts)


class ProgressBar:
    """A single self-overwriting progress line.

    The underlying tqdm bar is created on the first snapshot, once it is
    known whether ffmpeg reported the input duration.
    """

    def __init__(
        self,
        desc: str = "Converting",
        file: Optional[IO[str]] = None,
        disable: bool = False,
        mininterval: float = 0.25,
    ) -> None:
        self.desc = desc
        self.file = file
        self.disable = disable
        self.mininterval = mininterval
        self._bar: Optional[tqdm] = None

    def _open(self, total: Optional[float]) -> tqdm:
        known = bool(total and total > 0)
        return tqdm(
            total=total if known else None,
            desc=self.desc,
            unit="s",
            file=self.file,
            disable=self.disable,
            mininterval=self.mininterval,
            leave=True,
            bar_format=KNOWN_TOTAL_FORMAT if known else UNKNOWN_TOTAL_FORMAT,
        )

    def update(self, snapshot: ProgressSnapshot) -> None:
        if self._bar is None:
            self._bar = self._open(snapshot.total)

        position = snapshot.elapsed
        if self._bar.total:
            position = min(position, self._bar.total)
        self._bar.set_postfix_str(format_postfix(snapshot), refresh=False)
        self._bar.update(position - self._bar.n)

    def close(self) -> None:
        """Leave the last state on screen and move to a new line."""
        if self._bar is not None:
            self._bar.close()
            self._bar = None
