"""Tests for vid2mp3.ffmpeg (command construction and subprocess handling)."""

import io
import json
import subprocess
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from vid2mp3.errors import (
    ConversionFailed,
    InputNotFound,
    OutputWriteFailure,
    SpawnFailure,
    ToolNotAvailable,
)
from vid2mp3.ffmpeg import (
    EncodeSettings,
    build_command,
    convert,
    find_ffmpeg,
    probe_duration,
)
from vid2mp3.progress import ProgressMonitor


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


STDERR_OK = """\
Input #0, mov,mp4,m4a,3gp,3g2,mj2, from 'in.mp4':
  Duration: 00:01:10.50, start: 0.000000, bitrate: 1205 kb/s
  Stream #0:1[0x2](und): Audio: aac (LC), 44100 Hz, stereo, fltp
Output #0, mp3, to 'out.mp3':
bitrate= 192.0kbits/s
out_time_us=45200000
out_time=00:00:45.200000
speed=1.51x
progress=continue
bitrate= 192.0kbits/s
out_time_us=70500000
out_time=00:01:10.500000
speed=1.60x
progress=end
"""


class FakePopen:
    """Stand-in for subprocess.Popen yielding scripted stderr."""

    def __init__(self, stderr_text="", returncode=0):
        self.stderr = io.StringIO(stderr_text)
        self.returncode = returncode
        self.killed = False
        self.exited = False

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.stderr.close()
        self.exited = True

    def wait(self):
        return self.returncode

    def kill(self):
        self.killed = True


class RecordingRenderer:
    def __init__(self):
        self.snapshots = []
        self.closed = 0

    def update(self, snapshot):
        self.snapshots.append(snapshot)

    def close(self):
        self.closed += 1


@pytest.fixture
def video(tmp_path):
    path = tmp_path / "in.mp4"
    path.write_bytes(b"\x00")
    return path


@pytest.fixture
def which():
    with patch("vid2mp3.ffmpeg.shutil.which", return_value="/usr/bin/ffmpeg") as mock:
        yield mock


def _counter_clock():
    ticks = iter(range(1, 1000))
    return lambda: float(next(ticks))


# ---------------------------------------------------------------------------
# build_command
# ---------------------------------------------------------------------------


def test_build_command_defaults():
    cmd = build_command("ffmpeg", Path("in.mp4"), Path("out.mp3"), EncodeSettings())
    assert cmd[0] == "ffmpeg"
    assert cmd[cmd.index("-i") + 1] == "in.mp4"
    assert "-vn" in cmd
    assert cmd[cmd.index("-acodec") + 1] == "libmp3lame"
    assert cmd[cmd.index("-b:a") + 1] == "192k"
    assert cmd[cmd.index("-ar") + 1] == "44100"
    assert cmd[cmd.index("-progress") + 1] == "pipe:2"
    assert "-y" in cmd
    assert cmd[-1] == "out.mp3"


def test_build_command_preserves_channel_count():
    cmd = build_command("ffmpeg", Path("in.mp4"), Path("out.mp3"), EncodeSettings())
    assert "-ac" not in cmd


def test_build_command_custom_settings():
    settings = EncodeSettings(codec="mp3", bitrate="320k", sample_rate=48000, overwrite=False)
    cmd = build_command("/opt/ffmpeg", Path("a.mkv"), Path("b.mp3"), settings)
    assert cmd[0] == "/opt/ffmpeg"
    assert cmd[cmd.index("-acodec") + 1] == "mp3"
    assert cmd[cmd.index("-b:a") + 1] == "320k"
    assert cmd[cmd.index("-ar") + 1] == "48000"
    assert "-n" in cmd
    assert "-y" not in cmd


# ---------------------------------------------------------------------------
# find_ffmpeg
# ---------------------------------------------------------------------------


def test_find_ffmpeg_on_path(which):
    assert find_ffmpeg() == "/usr/bin/ffmpeg"


def test_find_ffmpeg_missing():
    with patch("vid2mp3.ffmpeg.shutil.which", return_value=None), \
            patch("vid2mp3.ffmpeg.os.access", return_value=False):
        with pytest.raises(ToolNotAvailable):
            find_ffmpeg()


def test_find_ffmpeg_custom_name_has_no_fallback():
    with patch("vid2mp3.ffmpeg.shutil.which", return_value=None), \
            patch("vid2mp3.ffmpeg.os.access", return_value=True) as access:
        with pytest.raises(ToolNotAvailable, match="my-ffmpeg"):
            find_ffmpeg("my-ffmpeg")
    access.assert_not_called()


# ---------------------------------------------------------------------------
# convert
# ---------------------------------------------------------------------------


def test_convert_missing_input_does_not_spawn(tmp_path, which):
    monitor = ProgressMonitor()
    with patch("vid2mp3.ffmpeg.subprocess.Popen") as popen:
        with pytest.raises(InputNotFound):
            convert(tmp_path / "missing.mp4", tmp_path / "out.mp3", monitor)
    popen.assert_not_called()


def test_convert_success_drives_monitor(tmp_path, video, which):
    renderer = RecordingRenderer()
    monitor = ProgressMonitor(renderer, clock=_counter_clock())
    fake = FakePopen(STDERR_OK, returncode=0)
    output = tmp_path / "nested" / "out.mp3"

    with patch("vid2mp3.ffmpeg.subprocess.Popen", return_value=fake) as popen:
        result = convert(video, output, monitor)

    assert result == output
    assert output.parent.is_dir()
    assert len(renderer.snapshots) == 2
    assert renderer.snapshots[0].fraction * 100 == pytest.approx(64.2, abs=0.1)
    assert renderer.snapshots[-1].fraction == 1.0
    assert renderer.closed == 1
    assert monitor.reached_end
    assert fake.exited

    cmd = popen.call_args[0][0]
    assert cmd[0] == "/usr/bin/ffmpeg"
    kwargs = popen.call_args[1]
    assert kwargs["stderr"] is subprocess.PIPE
    assert kwargs["stdin"] is subprocess.DEVNULL


def test_convert_nonzero_exit_keeps_diagnostics(tmp_path, video, which):
    stderr = "in.mp4: Invalid data found when processing input\n"
    monitor = ProgressMonitor()
    fake = FakePopen(stderr, returncode=1)

    with patch("vid2mp3.ffmpeg.subprocess.Popen", return_value=fake):
        with pytest.raises(ConversionFailed) as excinfo:
            convert(video, tmp_path / "out.mp3", monitor)

    assert excinfo.value.returncode == 1
    assert "Invalid data found when processing input" in str(excinfo.value)
    assert excinfo.value.exit_code != 0


def test_convert_output_error_is_write_failure(tmp_path, video, which):
    output = tmp_path / "out.mp3"
    stderr = (
        f"{output}: Permission denied\n"
        f"Error opening output file {output}.\n"
    )
    fake = FakePopen(stderr, returncode=1)

    with patch("vid2mp3.ffmpeg.subprocess.Popen", return_value=fake):
        with pytest.raises(OutputWriteFailure) as excinfo:
            convert(video, output, ProgressMonitor())

    assert "Permission denied" in str(excinfo.value)


def test_convert_output_dir_not_creatable(tmp_path, video, which):
    blocker = tmp_path / "file"
    blocker.write_text("x")
    with patch("vid2mp3.ffmpeg.subprocess.Popen") as popen:
        with pytest.raises(OutputWriteFailure):
            convert(video, blocker / "out.mp3", ProgressMonitor())
    popen.assert_not_called()


def test_convert_tool_missing_at_spawn(tmp_path, video, which):
    with patch("vid2mp3.ffmpeg.subprocess.Popen", side_effect=FileNotFoundError("ffmpeg")):
        with pytest.raises(ToolNotAvailable):
            convert(video, tmp_path / "out.mp3", ProgressMonitor())


def test_convert_spawn_failure(tmp_path, video, which):
    with patch("vid2mp3.ffmpeg.subprocess.Popen", side_effect=PermissionError("denied")):
        with pytest.raises(SpawnFailure):
            convert(video, tmp_path / "out.mp3", ProgressMonitor())


def test_convert_kills_child_when_monitor_fails(tmp_path, video, which):
    renderer = RecordingRenderer()
    monitor = ProgressMonitor(renderer)
    monitor.consume = MagicMock(side_effect=KeyboardInterrupt)
    fake = FakePopen(STDERR_OK)

    with patch("vid2mp3.ffmpeg.subprocess.Popen", return_value=fake):
        with pytest.raises(KeyboardInterrupt):
            convert(video, tmp_path / "out.mp3", monitor)

    assert fake.killed
    assert fake.exited
    assert renderer.closed == 1


# ---------------------------------------------------------------------------
# probe_duration
# ---------------------------------------------------------------------------


def test_probe_duration_parses_ffprobe_json(video):
    completed = MagicMock(stdout=json.dumps({"format": {"duration": "70.500000"}}))
    with patch("vid2mp3.ffmpeg.subprocess.run", return_value=completed) as run:
        assert probe_duration(video) == 70.5
    assert run.call_args[0][0][0] == "ffprobe"


def test_probe_duration_missing_tool(video):
    with patch("vid2mp3.ffmpeg.subprocess.run", side_effect=FileNotFoundError("ffprobe")):
        assert probe_duration(video) is None


def test_probe_duration_without_duration_field(video):
    completed = MagicMock(stdout=json.dumps({"format": {}}))
    with patch("vid2mp3.ffmpeg.subprocess.run", return_value=completed):
        assert probe_duration(video) is None
