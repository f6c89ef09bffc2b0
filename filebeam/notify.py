import logging
logger = logging.getLogger(__name__)

import threading
from typing import Dict, List, Optional, Tuple

from filebeam.transfers.state import TransferTask


class NotificationRelay:
	"""
	Turns transfer snapshots into user-visible notifications.
	Only a subscriber: it reads snapshots and never touches transfer state.
	"""
	def __init__(self, manager, notifier):
		self.notifier = notifier
		self._seen: Dict[str, Tuple[str, Optional[str]]] = {}
		self._lock = threading.Lock()
		for task in manager.snapshot():
			self._seen[task.tid] = (task.status, task.warning)
		self._unsubscribe = manager.subscribe(self._on_snapshot)

	def _on_snapshot(self, tasks: List[TransferTask]) -> None:
		with self._lock:
			for task in tasks:
				before, warned = self._seen.get(task.tid, (None, None))
				if before == task.status and warned == task.warning:
					continue
				self._seen[task.tid] = (task.status, task.warning)
				if before != task.status:
					self._announce(task, before)
				if task.warning and task.warning != warned:
					self.notifier.notify("Download warning", f"{task.name}: {task.warning}")

	def _announce(self, task: TransferTask, before: Optional[str]) -> None:
		if task.status == "in_progress" and before in (None, "queued"):
			self.notifier.notify("Download started", f"Downloading {task.name}")
		elif task.status == "completed":
			self.notifier.notify("Download complete", f"{task.name} has been downloaded")
		elif task.status == "failed":
			logger.debug("notify failure of %s (%s)", task.tid, task.last_error)
			self.notifier.notify("Download failed", f"Failed to download {task.name}")

	def close(self) -> None:
		self._unsubscribe()
