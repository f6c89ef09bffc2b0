import logging
logger = logging.getLogger(__name__)

import os, shutil
from abc import ABC, abstractmethod

from filebeam import config
from filebeam.transfers.fileops import resolve_file_target
from filebeam.utils import echo, brightgreen, brightyellow, brightred


class PermissionProvider(ABC):
	@abstractmethod
	def request(self) -> bool:
		"""Ask for permission to write downloads; False means denied."""


class GrantedPermissions(PermissionProvider):
	def request(self) -> bool:
		return True


class DirectoryPermissions(PermissionProvider):
	"""Grants when the download directory exists (or can be created) and is writable."""
	def __init__(self, path: str):
		self.path = path

	def request(self) -> bool:
		try:
			os.makedirs(self.path, exist_ok=True)
		except OSError as e:
			logger.warning("cannot create download directory %s: %s", self.path, e)
			return False
		return os.access(self.path, os.W_OK)


class GalleryImporter(ABC):
	@abstractmethod
	def import_file(self, path: str) -> str:
		"""Add a finished download to the user's media collection; return where it went."""


class AlbumGallery(GalleryImporter):
	"""Copies finished downloads into <root>/<album>/, creating the album on first use."""
	def __init__(self, root: str = None, album: str = None):
		self.root = root or config.GALLERY_DIR
		self.album = album or config.GALLERY_ALBUM

	@property
	def album_dir(self) -> str:
		return os.path.join(self.root, self.album)

	def import_file(self, path: str) -> str:
		if not os.path.isdir(self.album_dir):
			logger.debug("creating album %s", self.album_dir)
			os.makedirs(self.album_dir, exist_ok=True)
		target = resolve_file_target(self.album_dir, os.path.basename(path))
		shutil.copy2(path, target)
		return target


class Notifier(ABC):
	@abstractmethod
	def notify(self, title: str, body: str) -> None:
		"""Show one user-visible message."""


class ConsoleNotifier(Notifier):
	_COLORS = {
		"Download started": brightyellow,
		"Download complete": brightgreen,
		"Download failed": brightred,
		"Download warning": brightyellow,
	}

	def notify(self, title: str, body: str) -> None:
		echo(f"[{title}] {body}", color=self._COLORS.get(title))


class LogNotifier(Notifier):
	def notify(self, title: str, body: str) -> None:
		logger.info("%s: %s", title, body)
