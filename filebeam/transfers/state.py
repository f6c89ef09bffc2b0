import logging
logger = logging.getLogger(__name__)

import json, os, shutil, threading, time, uuid
from dataclasses import dataclass, asdict, field, fields, replace
from typing import Optional, Literal, Dict, Any, List

from filebeam import config
from filebeam.errors import ErrorKind, InvalidTransition

STATUS = Literal["queued","in_progress","completed","failed","cancelled"]
TERMINAL = ("completed","failed","cancelled")

_TRANSITIONS: Dict[str, tuple] = {
	"queued": ("in_progress","cancelled","failed"),
	"in_progress": ("completed","failed","cancelled"),
	"completed": (),
	"failed": (),
	"cancelled": (),
}

def _ensure_dir(path: str) -> None:
	os.makedirs(path, exist_ok=True)

def new_tid() -> str:
	return uuid.uuid4().hex[:12]

def check_transition(old: str, new: str) -> None:
	if new not in _TRANSITIONS.get(old, ()):
		raise InvalidTransition(f"Illegal transfer transition {old} -> {new}")

@dataclass
class TransferTask:
	tid: str
	file_key: str  # server path; two files with the same name in different folders are different tasks
	name: str
	remote_path: str
	local_path: str
	status: STATUS = "queued"
	bytes_written: int = 0
	bytes_expected: Optional[int] = None  # None = server did not say
	created_at: float = field(default_factory=time.time)
	updated_at: float = field(default_factory=time.time)
	started_at: Optional[float] = None
	finished_at: Optional[float] = None
	last_error: Optional[ErrorKind] = None
	error: Optional[str] = None
	warning: Optional[str] = None  # non-fatal, e.g. gallery import failed

	@property
	def is_terminal(self) -> bool:
		return self.status in TERMINAL

	@property
	def percent(self) -> Optional[float]:
		if not self.bytes_expected:
			return 100.0 if self.status == "completed" else None
		return min(100.0, self.bytes_written / self.bytes_expected * 100.0)

	def snapshot(self) -> "TransferTask":
		return replace(self)

	def to_dict(self) -> Dict[str, Any]:
		d = asdict(self)
		return d

	@classmethod
	def from_dict(cls, d: Dict[str, Any]) -> "TransferTask":
		known = {f.name for f in fields(cls)}
		return cls(**{k: v for k, v in d.items() if k in known})


class StateStore:
	"""
	Thread-safe, crash-safe persistence for TransferTask records.
	Layout: ~/.filebeam/transfers/<tid>/state.json
	"""
	def __init__(self, base_dir: str = None):
		self.base = base_dir or config.STATE_DIR
		_ensure_dir(self.base)
		self._lock = threading.RLock()
		# per-tid locks to reduce contention
		self._tid_locks: Dict[str, threading.RLock] = {}

	def _tid_dir(self, tid: str) -> str:
		p = os.path.join(self.base, tid)
		_ensure_dir(p)
		return p

	def _state_path(self, tid: str) -> str:
		return os.path.join(self.base, tid, "state.json")

	def lock_for(self, tid: str) -> threading.RLock:
		with self._lock:
			if tid not in self._tid_locks:
				self._tid_locks[tid] = threading.RLock()
			return self._tid_locks[tid]

	def save(self, task: TransferTask) -> None:
		task.updated_at = time.time()
		with self.lock_for(task.tid):
			path = os.path.join(self._tid_dir(task.tid), "state.json")
			tmp  = path + ".tmp"
			with open(tmp, "w", encoding="utf-8") as f:
				json.dump(task.to_dict(), f, indent=2, sort_keys=True)
			os.replace(tmp, path)

	def load(self, tid: str) -> TransferTask:
		with self.lock_for(tid):
			with open(self._state_path(tid), "r", encoding="utf-8") as f:
				return TransferTask.from_dict(json.load(f))

	def exists(self, tid: str) -> bool:
		return os.path.exists(self._state_path(tid))

	def delete(self, tid: str) -> None:
		with self.lock_for(tid):
			shutil.rmtree(os.path.join(self.base, tid), ignore_errors=True)
		with self._lock:
			self._tid_locks.pop(tid, None)

	def load_all(self) -> List[TransferTask]:
		out = []
		for tid in sorted(os.listdir(self.base)):
			if not os.path.isdir(os.path.join(self.base, tid)):
				continue
			try:
				out.append(self.load(tid))
			except (OSError, ValueError, TypeError):
				logger.debug(f"skipping unreadable transfer record {tid}", exc_info=True)
		return out
