#!/usr/bin/env python3
"""Command-line wrapper; see :mod:`vid2mp3.cli`.

  python convert.py lecture.mp4 lecture.mp3 --bitrate 256k
"""

import sys

from vid2mp3.cli import main

if __name__ == "__main__":
    sys.exit(main())
