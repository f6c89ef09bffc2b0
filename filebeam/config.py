import os

FILEBEAM_HOME = os.path.expanduser(os.getenv("FILEBEAM_HOME", "~/.filebeam"))
STATE_DIR = os.path.expanduser(os.getenv("FILEBEAM_STATE_DIR", os.path.join(FILEBEAM_HOME, "transfers")))

DOWNLOAD_DIR = os.path.expanduser(os.getenv("FILEBEAM_DOWNLOAD_DIR", "~/Downloads/filebeam"))
GALLERY_DIR = os.path.expanduser(os.getenv("FILEBEAM_GALLERY_DIR", "~/Pictures"))
GALLERY_ALBUM = os.getenv("FILEBEAM_GALLERY_ALBUM", "Download")

REQUEST_TIMEOUT = float(os.getenv("FILEBEAM_TIMEOUT", "30"))
MAX_CONCURRENT = int(os.getenv("FILEBEAM_MAX_CONCURRENT", "3"))
HISTORY_LIMIT = int(os.getenv("FILEBEAM_HISTORY_LIMIT", "50"))
CHUNK_SIZE = int(os.getenv("FILEBEAM_CHUNK_SIZE", str(64 * 1024)))

# Logging: everything goes to the log file; the console only gets what --verbose asks for
LOG_PATH = os.path.expanduser(os.getenv("FILEBEAM_LOG", os.path.join(os.getcwd(), "filebeam.log")))
LOG_LEVEL = os.getenv("FILEBEAM_LOG_LEVEL", "DEBUG")
LOG_MAX_BYTES = int(os.getenv("FILEBEAM_LOG_MAX_BYTES", str(5 * 1024 * 1024)))
LOG_BACKUP_COUNT = int(os.getenv("FILEBEAM_LOG_BACKUP_COUNT", "3"))
