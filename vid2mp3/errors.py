"""Failure categories surfaced to the user.

Every error maps to a distinct process exit code so that scripts wrapping
the CLI can tell them apart.
"""

from typing import Optional


class ConversionError(Exception):
    """Base class for all conversion failures."""

    exit_code = 1


class InputNotFound(ConversionError):
    exit_code = 2


class ToolNotAvailable(ConversionError):
    exit_code = 3


class SpawnFailure(ConversionError):
    exit_code = 4


class ConversionFailed(ConversionError):
    """ffmpeg exited with a non-zero status."""

    exit_code = 5

    def __init__(self, returncode: int, diagnostics: str = "") -> None:
        self.returncode = returncode
        self.diagnostics = diagnostics
        message = f"ffmpeg exited with status {returncode}"
        if diagnostics:
            message += ":\n" + diagnostics
        super().__init__(message)


class OutputWriteFailure(ConversionError):
    """The output file could not be written."""

    exit_code = 6

    def __init__(
        self,
        message: str,
        returncode: Optional[int] = None,
        diagnostics: str = "",
    ) -> None:
        self.returncode = returncode
        self.diagnostics = diagnostics
        if diagnostics:
            message += ":\n" + diagnostics
        super().__init__(message)
