import threading
from abc import ABC, abstractmethod
from typing import Callable, Optional
from ..state import TransferTask

ProgressCallback = Callable[[int, Optional[int]], None]

class TransferProtocol(ABC):
    @abstractmethod
    def fetch(self, task: TransferTask, on_progress: ProgressCallback, stop: threading.Event, timeout: Optional[float] = None) -> int:
    	"""
    	Copy task.remote_path to task.local_path.
    	Report (bytes_written, bytes_expected or None) through on_progress, raise
    	TransferCancelled once `stop` is set, return the final size.
    	"""
