import logging
logger = logging.getLogger(__name__)

import os, threading
from typing import Optional

import requests

from filebeam import config
from filebeam.errors import RemoteUnavailable, TransferCancelled
from .base import TransferProtocol, ProgressCallback
from ..fileops import part_path, finalize_part, remove_quietly
from ..state import TransferTask


def _content_length(r: requests.Response) -> Optional[int]:
	raw = r.headers.get("Content-Length")
	try:
		n = int(raw)
	except (TypeError, ValueError):
		return None
	return n if n >= 0 else None


class HttpProtocol(TransferProtocol):
	"""Streams GET /download?path=... into <local_path>.part, then moves it into place."""
	def __init__(self, client, chunk_size: int = config.CHUNK_SIZE):
		self.client = client
		self.chunk_size = chunk_size

	def fetch(self, task: TransferTask, on_progress: ProgressCallback, stop: threading.Event, timeout: Optional[float] = None) -> int:
		tmp = part_path(task.local_path)
		os.makedirs(os.path.dirname(task.local_path) or ".", exist_ok=True)
		ok = False
		r = self.client.open_download(task.remote_path, timeout=timeout)
		try:
			total = _content_length(r)
			done = 0
			logger.debug(f"DL[{task.tid}] stream open: remote={task.remote_path!r} total={total} tmp={tmp!r}")
			on_progress(done, total)
			with open(tmp, "wb") as f:
				try:
					for chunk in r.iter_content(chunk_size=self.chunk_size):
						if stop.is_set():
							raise TransferCancelled(f"Transfer {task.tid} cancelled")
						if not chunk:
							continue
						f.write(chunk)
						done += len(chunk)
						on_progress(done, total)
				except requests.RequestException as e:
					raise RemoteUnavailable(f"Connection lost after {done} bytes: {e}", path=task.remote_path) from e
			if stop.is_set():
				raise TransferCancelled(f"Transfer {task.tid} cancelled")
			if total is not None and done != total:
				raise RemoteUnavailable(f"Server sent {done} of {total} bytes", path=task.remote_path)
			finalize_part(tmp, task.local_path)
			ok = True
			logger.debug(f"DL[{task.tid}] finalized {task.local_path!r} ({done} bytes)")
			return done
		finally:
			r.close()
			if not ok:
				remove_quietly(tmp)
