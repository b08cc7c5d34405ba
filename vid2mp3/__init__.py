"""Extract the audio track of a video as MP3 via ffmpeg, with live progress."""

__version__ = "0.1.0"
