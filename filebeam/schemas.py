from dataclasses import dataclass
from typing import Optional

from pydantic import BaseModel, StrictBool, StrictStr


class FileInfo(BaseModel):
	name: StrictStr
	is_dir: StrictBool
	size: Optional[int] = None


def join_path(parent: str, name: str) -> str:
	return f"{parent}/{name}" if parent else name


def is_hidden(name: str) -> bool:
	return name.startswith(".")


@dataclass(frozen=True)
class DirectoryEntry:
	name: str
	is_dir: bool
	path: str

	@classmethod
	def under(cls, parent: str, info: FileInfo) -> "DirectoryEntry":
		return cls(name=info.name, is_dir=info.is_dir, path=join_path(parent, info.name))

	def to_dict(self) -> dict:
		return {"name": self.name, "is_dir": self.is_dir, "path": self.path}
