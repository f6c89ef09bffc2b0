"""Pytest bootstrap for local source imports.

Keeps the client and server logs out of the working tree while tests run.
"""

from __future__ import annotations

import os
import sys
import tempfile
from pathlib import Path


PROJECT_ROOT = Path(__file__).resolve().parent.parent
PROJECT_ROOT_STR = str(PROJECT_ROOT)

if PROJECT_ROOT_STR not in sys.path:
    sys.path.insert(0, PROJECT_ROOT_STR)

_LOG_DIR = tempfile.mkdtemp(prefix="filebeam-test-logs-")
os.environ.setdefault("FILEBEAM_LOG", os.path.join(_LOG_DIR, "filebeam.log"))
os.environ.setdefault("BEAM_LOG_DIR", _LOG_DIR)
os.environ.setdefault("BEAM_LOG_LEVEL_CONSOLE", "WARNING")
