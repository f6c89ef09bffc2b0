from typing import Literal, Optional

ErrorKind = Literal["PermissionDenied", "RemoteUnavailable", "StorageFull", "Unknown"]
ERROR_KINDS = ("PermissionDenied", "RemoteUnavailable", "StorageFull", "Unknown")


class FileBeamError(Exception):
	"""Base class for every error raised by filebeam. `kind` is what a failed transfer records."""
	kind: ErrorKind = "Unknown"

	def __init__(self, message: str = "", *, path: Optional[str] = None):
		super().__init__(message or self.__class__.__name__)
		self.path = path


class RemoteUnavailable(FileBeamError):
	kind = "RemoteUnavailable"


class InvalidResponse(FileBeamError):
	pass


class NotFound(FileBeamError):
	# a missing file on download is reported as the server failing to deliver it
	kind = "RemoteUnavailable"


class PermissionDenied(FileBeamError):
	kind = "PermissionDenied"


class StorageFull(FileBeamError):
	kind = "StorageFull"


class TransferCancelled(FileBeamError):
	pass


class InvalidTransition(FileBeamError):
	pass


class NavigationBusy(FileBeamError):
	pass
