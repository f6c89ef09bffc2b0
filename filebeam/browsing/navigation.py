import threading, time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Optional, Tuple

from filebeam.errors import NavigationBusy
from filebeam.logutil import get_logger
from filebeam.schemas import DirectoryEntry

logger = get_logger("navigation")

ROOT = ""


@dataclass(frozen=True)
class NavigationFrame:
	path: str
	entries: Tuple[DirectoryEntry, ...] = ()
	fetched_at: Optional[float] = None


class NavigationStack:
	"""
	Browsing path as a stack of visited directory frames.
	Directories are listed only when entered; a frame's listing is kept for as
	long as it stays on the stack. Every failed listing leaves the stack as it was.
	"""
	def __init__(self, client):
		self.client = client
		self._frames = [NavigationFrame(ROOT)]
		self._busy = threading.Lock()

	@contextmanager
	def _navigating(self, what: str):
		if not self._busy.acquire(blocking=False):
			logger.debug("%s rejected: navigation already pending (path=%r)", what, self.path)
			raise NavigationBusy(f"Cannot {what} while another navigation is pending")
		try:
			yield
		finally:
			self._busy.release()

	def _fetch(self, path: str) -> NavigationFrame:
		entries = self.client.list_dir(path)
		return NavigationFrame(path, tuple(entries), time.time())

	# ---------- commands ----------
	def start(self) -> NavigationFrame:
		"""Enter from the root: always a fresh root listing, nothing cached is reused."""
		with self._navigating("start"):
			root = self._fetch(ROOT)
			self._frames = [root]
			logger.debug("start: root has %d entries", len(root.entries))
			return root

	def descend(self, entry: DirectoryEntry) -> NavigationFrame:
		if not entry.is_dir:
			raise ValueError(f"{entry.path!r} is not a directory")
		with self._navigating("descend"):
			frame = self._fetch(entry.path)
			self._frames.append(frame)
			logger.debug("descend -> %r (depth=%d entries=%d)", frame.path, self.depth, len(frame.entries))
			return frame

	def ascend(self) -> NavigationFrame:
		# waits behind a pending listing instead of rejecting, so it never fails
		with self._busy:
			if len(self._frames) > 1:
				left = self._frames.pop()
				logger.debug("ascend from %r -> %r", left.path, self.path)
			return self._frames[-1]

	def refresh(self) -> NavigationFrame:
		with self._navigating("refresh"):
			pos = len(self._frames) - 1
			frame = self._fetch(self._frames[pos].path)
			self._frames[pos] = frame
			logger.debug("refresh %r (%d entries)", frame.path, len(frame.entries))
			return frame

	# ---------- views ----------
	def current(self) -> Tuple[DirectoryEntry, ...]:
		return self._frames[-1].entries

	@property
	def current_frame(self) -> NavigationFrame:
		return self._frames[-1]

	@property
	def frames(self) -> Tuple[NavigationFrame, ...]:
		return tuple(self._frames)

	@property
	def depth(self) -> int:
		return len(self._frames) - 1

	@property
	def path(self) -> str:
		return self._frames[-1].path

	def find(self, name: str) -> Optional[DirectoryEntry]:
		for entry in self.current():
			if entry.name == name:
				return entry
		return None
