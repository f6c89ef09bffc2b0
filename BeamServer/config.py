import os

BEAM_ROOT = os.path.expanduser(os.getenv("BEAM_ROOT", "~"))
BEAM_HOST = os.getenv("BEAM_HOST", "0.0.0.0")
BEAM_PORT = int(os.getenv("BEAM_PORT", "8000"))

# Logging
LOG_BASENAME = os.getenv("BEAM_LOG_BASENAME", "beamserver")
LOG_DIR = os.getenv("BEAM_LOG_DIR", "logs")
LOG_LEVEL_FILE = os.getenv("BEAM_LOG_LEVEL_FILE", "DEBUG")
LOG_LEVEL_CONSOLE = os.getenv("BEAM_LOG_LEVEL_CONSOLE", "INFO")
LOG_MAX_BYTES = int(os.getenv("BEAM_LOG_MAX_BYTES", str(10 * 1024 * 1024)))
LOG_BACKUP_COUNT = int(os.getenv("BEAM_LOG_BACKUP_COUNT", "5"))
SLOW_REQUEST_MS = int(os.getenv("BEAM_SLOW_REQUEST_MS", "500"))  # spans slower than this log at INFO
