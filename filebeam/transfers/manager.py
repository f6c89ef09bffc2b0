from filebeam.logutil import get_logger
logger = get_logger("transfers.manager")

import errno, threading, time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Any

import requests

from filebeam import config
from filebeam.errors import ErrorKind, FileBeamError, PermissionDenied, RemoteUnavailable, StorageFull
from filebeam.schemas import DirectoryEntry
from .state import StateStore, TransferTask, check_transition, new_tid
from .fileops import human_bytes, resolve_file_target, remove_quietly
from .protocols.base import TransferProtocol

Listener = Callable[[List[TransferTask]], None]

_NO_SPACE = {errno.ENOSPC, getattr(errno, "EDQUOT", errno.ENOSPC)}
_NO_ACCESS = {errno.EACCES, errno.EPERM}
_KIND_ERRORS = {
	"StorageFull": StorageFull,
	"PermissionDenied": PermissionDenied,
	"RemoteUnavailable": RemoteUnavailable,
	"Unknown": FileBeamError,
}

@dataclass
class TransferOpts:
	download_dir: str = config.DOWNLOAD_DIR
	max_concurrent: int = config.MAX_CONCURRENT
	history_limit: int = config.HISTORY_LIMIT  # 0 = forget finished transfers right away
	timeout: Optional[float] = config.REQUEST_TIMEOUT
	save_interval: float = 0.5  # seconds between state saves while bytes are flowing

def error_kind(exc: BaseException) -> ErrorKind:
	if isinstance(exc, FileBeamError):
		return exc.kind
	# requests exceptions are OSErrors too, check them first
	if isinstance(exc, requests.RequestException):
		return "RemoteUnavailable"
	if isinstance(exc, OSError):
		if exc.errno in _NO_SPACE:
			return "StorageFull"
		if exc.errno in _NO_ACCESS:
			return "PermissionDenied"
	return "Unknown"

class TransferManager:
	def __init__(self, protocol: TransferProtocol, *, store: Optional[StateStore] = None, permissions=None, gallery=None, opts: Optional[TransferOpts] = None):
		self.protocol = protocol
		self.store = store or StateStore()
		self.permissions = permissions
		self.gallery = gallery
		self.opts = opts or TransferOpts()
		self._lock = threading.RLock()
		self._finished = threading.Condition(self._lock)
		self._tasks: Dict[str, TransferTask] = {}      # tid -> unfinished task
		self._active: Dict[str, TransferTask] = {}     # file_key -> unfinished task
		self._history: "OrderedDict[str, TransferTask]" = OrderedDict()
		self._threads: Dict[str, threading.Thread] = {}
		self._stop_flags: Dict[str, threading.Event] = {}
		self._last_saved: Dict[str, float] = {}
		self._last_activity: Dict[str, float] = {}  # tid -> last time bytes moved
		self._listeners: List[Listener] = []
		self._slots = threading.BoundedSemaphore(max(1, int(self.opts.max_concurrent)))
		self._permission_granted = permissions is None
		self._closing = threading.Event()
		self._watchdog: Optional[threading.Thread] = None
		self._restore()

	# ---------- helpers ----------
	def _restore(self) -> None:
		"""Load the persisted record; anything that was still running when the process died is failed."""
		tasks = self.store.load_all()
		for task in tasks:
			if not task.is_terminal:
				logger.debug(f"DL[{task.tid}] found interrupted record (status={task.status}); marking failed")
				task.status = "failed"
				task.last_error = "Unknown"
				task.error = "interrupted"
				task.finished_at = time.time()
				self._save_quietly(task)
		tasks.sort(key=lambda t: (t.finished_at or t.updated_at, t.created_at))
		for task in tasks:
			self._history[task.tid] = task
		self._trim_history()
		if tasks:
			logger.debug(f"restored {len(self._history)} transfer record(s) from {self.store.base}")

	def _transition(self, task: TransferTask, status: str) -> None:
		check_transition(task.status, status)
		logger.debug(f"DL[{task.tid}] {task.status} -> {status}")
		task.status = status

	def _save(self, task: TransferTask) -> None:
		self.store.save(task)
		self._last_saved[task.tid] = time.time()

	def _save_quietly(self, task: TransferTask) -> bool:
		"""Persist once the task exists; a failed write is recorded on the task, the transfer goes on."""
		try:
			self._save(task)
			return True
		except OSError as e:
			logger.warning(f"DL[{task.tid}] could not save transfer record: {e}")
			task.warning = f"Transfer record not saved: {e}"
			return False

	def _finalize(self, task: TransferTask, status: str) -> None:
		self._transition(task, status)
		task.finished_at = time.time()
		if task.started_at and task.finished_at < task.started_at:
			task.finished_at = task.started_at
		self._save_quietly(task)

	def _end(self, task: TransferTask, status: str) -> None:
		try:
			self._finalize(task, status)
		finally:
			self._retire(task)
			self._publish()

	def _retire(self, task: TransferTask) -> None:
		self._tasks.pop(task.tid, None)
		if self._active.get(task.file_key) is task:
			del self._active[task.file_key]
		self._last_saved.pop(task.tid, None)
		self._last_activity.pop(task.tid, None)
		self._history[task.tid] = task
		self._history.move_to_end(task.tid)
		self._trim_history()
		self._finished.notify_all()

	def _trim_history(self) -> None:
		limit = max(0, int(self.opts.history_limit))
		while len(self._history) > limit:
			tid, _ = self._history.popitem(last=False)
			self.store.delete(tid)
			logger.debug(f"DL[{tid}] evicted from history")

	def _publish(self) -> None:
		snaps = self.snapshot()
		for listener in list(self._listeners):
			try:
				listener(list(snaps))
			except Exception:
				logger.exception(f"transfer listener {listener!r} raised; continuing")

	def _check_permission(self) -> None:
		if self._permission_granted:
			return
		if not self.permissions.request():
			logger.warning("storage permission denied; download not started")
			raise PermissionDenied("Storage permission denied")
		self._permission_granted = True

	def _progress_line(self, task: TransferTask) -> str:
		pct = task.percent
		pct_s = f"{pct:5.1f}%" if pct is not None else "  ?.?%"
		return f"[{task.tid}] {pct_s}  {human_bytes(task.bytes_written)}/{human_bytes(task.bytes_expected)}"

	# ---------- stall watchdog ----------
	def _ensure_watchdog(self) -> None:
		if self._watchdog is not None or not self.opts.timeout or self.opts.timeout <= 0:
			return
		self._watchdog = threading.Thread(target=self._watch_stalls, daemon=True, name="filebeam-dl-watchdog")
		self._watchdog.start()

	def _watch_stalls(self) -> None:
		"""Fail running transfers that made no progress for `timeout` seconds, whatever the transport does."""
		timeout = float(self.opts.timeout)
		interval = min(0.5, max(0.02, timeout / 4))
		while not self._closing.wait(interval):
			now = time.time()
			with self._lock:
				stalled = [
					t for t in self._tasks.values()
					if t.status == "in_progress" and now - self._last_activity.get(t.tid, now) > timeout
				]
				for task in stalled:
					self._expire(task, timeout)

	def _expire(self, task: TransferTask, timeout: float) -> None:
		stop = self._stop_flags.get(task.tid)
		if stop is not None:
			stop.set()
		task.last_error = "RemoteUnavailable"
		task.error = f"No data received for {timeout:g}s"
		logger.warning(f"[!] Transfer {task.tid} stalled at {self._progress_line(task)}; failing it")
		self._end(task, "failed")

	# ---------- public API ----------
	def start_download(self, entry: DirectoryEntry) -> str:
		"""
		Start downloading one remote file and return its transfer id.
		While a transfer for the same server path is still queued or running,
		its id is returned and nothing new is started.
		"""
		if entry.is_dir:
			raise ValueError(f"{entry.path!r} is a directory")
		self._check_permission()
		with self._lock:
			existing = self._active.get(entry.path)
			if existing is not None and not existing.is_terminal:
				logger.debug(f"DL[{existing.tid}] coalesced duplicate request for {entry.path!r} (status={existing.status})")
				return existing.tid

			reserved = [t.local_path for t in self._tasks.values()]
			task = TransferTask(
				tid=new_tid(),
				file_key=entry.path,
				name=entry.name,
				remote_path=entry.path,
				local_path=resolve_file_target(self.opts.download_dir, entry.name, reserved),
			)
			# nothing is registered until the record is on disk, so a failed write can simply be retried
			try:
				self._save(task)
			except OSError as e:
				self._last_saved.pop(task.tid, None)
				self.store.delete(task.tid)
				logger.warning(f"[!] Could not record transfer for {entry.path!r}: {e}")
				raise _KIND_ERRORS[error_kind(e)](f"Cannot start download of {entry.name}: {e}", path=entry.path) from e

			stop = threading.Event()
			t = threading.Thread(target=self._run_download, args=(task, stop), daemon=True, name=f"filebeam-dl-{task.tid}")
			self._tasks[task.tid] = task
			self._active[task.file_key] = task
			self._stop_flags[task.tid] = stop
			self._threads[task.tid] = t
			try:
				t.start()
			except RuntimeError:
				for registry, key in ((self._tasks, task.tid), (self._active, task.file_key), (self._stop_flags, task.tid), (self._threads, task.tid)):
					registry.pop(key, None)
				self.store.delete(task.tid)
				raise
			self._publish()
		logger.info(f"[*] Transfer queued TID={task.tid} {task.remote_path!r} -> {task.local_path}")
		return task.tid

	def _run_download(self, task: TransferTask, stop: threading.Event) -> None:
		acquired = False
		try:
			while not stop.is_set():
				if self._slots.acquire(timeout=0.1):
					acquired = True
					break
			with self._lock:
				if not acquired or task.status != "queued":
					# cancelled while waiting for a slot; cancel() already recorded it
					return
				self._transition(task, "in_progress")
				task.started_at = time.time()
				self._last_activity[task.tid] = task.started_at
				self._save_quietly(task)
				self._publish()
				self._ensure_watchdog()
			logger.debug(f"DL[{task.tid}] start: remote={task.remote_path!r} local={task.local_path!r} timeout={self.opts.timeout}")
			final = self.protocol.fetch(task, lambda written, expected: self._on_progress(task.tid, written, expected), stop, self.opts.timeout)
		except Exception as e:
			self._finish_failed(task, stop, e)
		else:
			self._finish_ok(task, stop, final)
		finally:
			if acquired:
				self._slots.release()
			with self._lock:
				self._threads.pop(task.tid, None)
				self._stop_flags.pop(task.tid, None)

	def _on_progress(self, tid: str, written: int, expected: Optional[int]) -> None:
		with self._lock:
			task = self._tasks.get(tid)
			if task is None or task.status != "in_progress":
				return
			written = max(0, int(written or 0))
			if written < task.bytes_written:
				logger.warning(f"DL[{tid}] transport reported {written} bytes after {task.bytes_written}; keeping {task.bytes_written}")
				written = task.bytes_written
			if expected is not None and expected < 0:
				expected = None
			if written > task.bytes_written or (expected is not None and expected != task.bytes_expected):
				self._last_activity[tid] = time.time()
			task.bytes_written = written
			if expected is not None:
				task.bytes_expected = int(expected)
			if time.time() - self._last_saved.get(tid, 0.0) >= self.opts.save_interval:
				self._save_quietly(task)
				logger.debug(f"DL[{tid}] progress saved: {self._progress_line(task)}")
			self._publish()

	def _finish_ok(self, task: TransferTask, stop: threading.Event, final: int) -> None:
		with self._lock:
			if task.is_terminal:
				# already failed by the watchdog; drop whatever the transport left behind
				if task.status == "failed":
					remove_quietly(task.local_path)
				return
			if stop.is_set():
				# transport finished before it noticed the stop flag
				remove_quietly(task.local_path)
				self._end(task, "cancelled")
				logger.info(f"[{task.tid}] cancelled (transport completed first; file removed)")
				return
			final = int(final if final is not None else task.bytes_written)
			if task.bytes_expected is not None and task.bytes_expected != final:
				remove_quietly(task.local_path)
				self._fail(task, RemoteUnavailable(f"Transport finished with {final} of {task.bytes_expected} bytes", path=task.remote_path))
				return
			task.bytes_written = final
			task.bytes_expected = final
			try:
				self._finalize(task, "completed")
			except Exception:
				self._retire(task)
				self._publish()
				raise
			self._publish()
		logger.info(f"[+] Transfer complete: {task.local_path} ({human_bytes(final)})")

		try:
			if self.gallery is not None:
				try:
					where = self.gallery.import_file(task.local_path)
					logger.debug(f"DL[{task.tid}] imported into gallery at {where!r}")
				except Exception as e:
					logger.warning(f"DL[{task.tid}] gallery import failed (download kept): {e}", exc_info=True)
					with self._lock:
						task.warning = f"Saved, but gallery import failed: {e}"
						self._save_quietly(task)
		finally:
			with self._lock:
				self._retire(task)
				self._publish()

	def _fail(self, task: TransferTask, exc: BaseException) -> None:
		task.last_error = error_kind(exc)
		task.error = f"{exc}"
		logger.warning(f"[!] Transfer error {task.tid} ({task.last_error}): {exc}", exc_info=not isinstance(exc, FileBeamError))
		self._end(task, "failed")

	def _finish_failed(self, task: TransferTask, stop: threading.Event, exc: Exception) -> None:
		with self._lock:
			if task.is_terminal:
				return
			if stop.is_set():
				logger.info(f"[{task.tid}] cancelled at {self._progress_line(task)}")
				self._end(task, "cancelled")
			else:
				self._fail(task, exc)

	# control plane
	def cancel(self, tid: str) -> bool:
		with self._lock:
			task = self._tasks.get(tid)
			if task is None or task.is_terminal:
				return False
			stop = self._stop_flags.get(tid)
			if stop is not None:
				stop.set()
			if task.status == "queued":
				logger.info(f"[{tid}] cancelled before start")
				self._end(task, "cancelled")
			else:
				logger.info(f"[{tid}] cancel requested; waiting for transport to stop")
			return True

	def subscribe(self, listener: Listener) -> Callable[[], None]:
		with self._lock:
			self._listeners.append(listener)

		def unsubscribe() -> None:
			with self._lock:
				if listener in self._listeners:
					self._listeners.remove(listener)
		return unsubscribe

	def snapshot(self) -> List[TransferTask]:
		with self._lock:
			rows = [t.snapshot() for t in self._history.values()]
			rows += [t.snapshot() for t in self._tasks.values()]
		rows.sort(key=lambda t: t.created_at)
		return rows

	def get(self, tid: str) -> Optional[TransferTask]:
		with self._lock:
			task = self._tasks.get(tid) or self._history.get(tid)
			return task.snapshot() if task else None

	def find(self, file_key: str) -> Optional[TransferTask]:
		"""The running task for a server path, else its most recent finished one."""
		with self._lock:
			task = self._active.get(file_key)
			if task is not None:
				return task.snapshot()
			for task in reversed(self._history.values()):
				if task.file_key == file_key:
					return task.snapshot()
		return None

	def wait(self, tid: str, timeout: Optional[float] = None) -> Optional[TransferTask]:
		deadline = None if timeout is None else time.time() + timeout
		with self._finished:
			while tid in self._tasks:
				remaining = None if deadline is None else deadline - time.time()
				if remaining is not None and remaining <= 0:
					break
				self._finished.wait(remaining)
			return self.get(tid)

	def status(self, tid: str) -> Optional[Dict[str, Any]]:
		task = self.get(tid)
		return task.to_dict() if task else None

	def list(self) -> Dict[str, Any]:
		return {"transfers": [t.to_dict() for t in self.snapshot()]}

	def clear_history(self) -> int:
		with self._lock:
			n = len(self._history)
			for tid in list(self._history):
				self.store.delete(tid)
			self._history.clear()
			self._publish()
		return n

	def shutdown(self, timeout: Optional[float] = 5.0) -> None:
		"""Cancel everything still running and give the workers a moment to acknowledge."""
		with self._lock:
			tids = list(self._tasks)
			threads = list(self._threads.values())
		for tid in tids:
			self.cancel(tid)
		for t in threads:
			t.join(timeout)
		self._closing.set()
