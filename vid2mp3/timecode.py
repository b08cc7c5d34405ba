"""Fixed-format timecode parsing and human-readable duration formatting."""


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


def parse_timecode(text: str) -> float:
    """Convert ``HH:MM:SS[.fraction]`` to a number of seconds.

    The fractional part may have any number of digits (ffmpeg prints two in
    its banner and six in ``-progress`` output). Raises :class:`ValueError`
    for anything that does not match the fixed shape.
    """
    fields = text.strip().split(":")
    if len(fields) != 3:
        raise ValueError(f"Expected HH:MM:SS timecode, got {text!r}")

    hours, minutes, seconds = fields
    whole, dot, fraction = seconds.partition(".")
    for field in (hours, minutes, whole):
        if not field.isdigit():
            raise ValueError(f"Malformed timecode: {text!r}")
    if dot and not fraction.isdigit():
        raise ValueError(f"Malformed timecode fraction: {text!r}")

    h, m, s = int(hours), int(minutes), int(whole)
    if m >= 60 or s >= 60:
        raise ValueError(f"Timecode field out of range: {text!r}")

    # Re-assemble as a decimal literal so the float is correctly rounded.
    return float(f"{h * 3600 + m * 60 + s}.{fraction or '0'}")


# ---------------------------------------------------------------------------
# Formatting
# ---------------------------------------------------------------------------


def format_hms(seconds: float) -> str:
    """Convert a float number of seconds to HH:MM:SS (no fraction)."""
    h = int(seconds // 3600)
    m = int((seconds % 3600) // 60)
    s = int(seconds % 60)
    return f"{h:02d}:{m:02d}:{s:02d}"


def format_eta(seconds: float) -> str:
    """Compact remaining-time label: ``17s``, ``3m 05s`` or ``1h 02m``."""
    seconds = max(0, int(round(seconds)))
    if seconds < 60:
        return f"{seconds}s"
    if seconds < 3600:
        return f"{seconds // 60}m {seconds % 60:02d}s"
    return f"{seconds // 3600}h {(seconds % 3600) // 60:02d}m"
