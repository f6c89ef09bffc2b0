import logging

logger = logging.getLogger(__name__)

import shlex

from filebeam.errors import FileBeamError
from filebeam.transfers import xfer
from filebeam.transfers.fileops import human_bytes
from filebeam.utils import echo, brightgreen, brightyellow, brightred, brightblue, reset

HELP = """
ls                 list the current folder
cd NAME | cd ..    enter a folder / go back up
refresh            list the current folder again
get NAME           download a file from the current folder
url NAME           print the direct download link of a file
transfers          show running and recent transfers
status TID         show one transfer
cancel TID         cancel a transfer
help               this text
exit               leave (running transfers are cancelled)
""".strip("\n")


def _transfer_badge(task) -> str:
	if task is None or task.is_terminal:
		return ""
	if task.status == "queued":
		return f"  {brightyellow}[queued]{reset}"
	pct = task.percent
	return f"  {brightyellow}[{pct:.0f}%]{reset}" if pct is not None else f"  {brightyellow}[{human_bytes(task.bytes_written)}]{reset}"

def format_listing(entries, find=None) -> str:
	"""Folders first, then files; `find(path)` supplies the transfer shown next to a file being downloaded."""
	if not entries:
		return brightyellow + "(empty)" + reset
	dirs = [e for e in entries if e.is_dir]
	files = [e for e in entries if not e.is_dir]
	lines = [brightblue + f"{e.name}/" + reset for e in dirs]
	lines += [e.name + (_transfer_badge(find(e.path)) if find else "") for e in files]
	return "\n".join(lines)


class BrowseShell:
	"""Line-oriented console over one navigation stack and one transfer manager."""
	def __init__(self, client, stack, manager, *, input_fn=input, to_console: bool = True):
		self.client = client
		self.stack = stack
		self.manager = manager
		self.input_fn = input_fn
		self.to_console = to_console
		self._commands = {
			"ls": self.do_ls,
			"cd": self.do_cd,
			"refresh": self.do_refresh,
			"get": self.do_get,
			"url": self.do_url,
			"transfers": self.do_transfers,
			"status": self.do_status,
			"cancel": self.do_cancel,
			"help": self.do_help,
		}

	def _out(self, msg: str, color=None) -> None:
		echo(msg, to_console=self.to_console, color=color)

	def prompt(self) -> str:
		return f"{brightgreen}filebeam{reset}:/{self.stack.path}> "

	def _entry(self, name: str, *, want_dir: bool):
		entry = self.stack.find(name)
		if entry is None:
			self._out(f"[!] No such entry: {name}", brightred)
			return None
		if entry.is_dir != want_dir:
			self._out(f"[!] {name} is {'not ' if want_dir else ''}a folder", brightred)
			return None
		return entry

	# ---------- commands ----------
	def do_ls(self, args) -> None:
		self._out(format_listing(self.stack.current(), self.manager.find))

	def do_cd(self, args) -> None:
		if not args:
			self._out("usage: cd NAME | cd ..", brightyellow)
			return
		name = " ".join(args)
		if name == "..":
			self.stack.ascend()
			return
		if name == "/":
			self.stack.start()
			return
		entry = self._entry(name, want_dir=True)
		if entry is not None:
			self.stack.descend(entry)
			self.do_ls([])

	def do_refresh(self, args) -> None:
		self.stack.refresh()
		self.do_ls([])

	def do_get(self, args) -> None:
		if not args:
			self._out("usage: get NAME", brightyellow)
			return
		entry = self._entry(" ".join(args), want_dir=False)
		if entry is None:
			return
		tid = self.manager.start_download(entry)
		self._out(f"[*] {entry.name} -> transfer {tid}")

	def do_url(self, args) -> None:
		if not args:
			self._out("usage: url NAME", brightyellow)
			return
		entry = self._entry(" ".join(args), want_dir=False)
		if entry is not None:
			self._out(self.client.download_url(entry.path))

	def do_transfers(self, args) -> None:
		xfer.cmd_list(self.manager.list()["transfers"], to_console=self.to_console)

	def do_status(self, args) -> None:
		xfer.cmd_status(self.manager.list()["transfers"], args[0] if args else "", to_console=self.to_console)

	def do_cancel(self, args) -> None:
		if not args:
			self._out("usage: cancel TID", brightyellow)
			return
		rows = [t for t in self.manager.snapshot() if t.tid.startswith(args[0]) and not t.is_terminal]
		if len(rows) != 1 or not self.manager.cancel(rows[0].tid):
			self._out(f"[!] No running transfer matches {args[0]!r}", brightred)
			return
		self._out(f"[*] Cancelling {rows[0].tid}", brightyellow)

	def do_help(self, args) -> None:
		self._out(HELP)

	# ---------- loop ----------
	def execute(self, line: str) -> bool:
		"""Run one command line. Returns False when the shell should exit."""
		try:
			parts = shlex.split(line)
		except ValueError as e:
			self._out(f"[!] {e}", brightred)
			return True
		if not parts:
			return True
		cmd, args = parts[0].lower(), parts[1:]
		if cmd in ("exit", "quit"):
			return False
		handler = self._commands.get(cmd)
		if handler is None:
			self._out(f"[!] Unknown command {cmd!r} (try 'help')", brightred)
			return True
		try:
			handler(args)
		except FileBeamError as e:
			logger.debug("command %r failed", line, exc_info=True)
			self._out(f"[!] {e.__class__.__name__}: {e}", brightred)
		return True

	def run(self) -> None:
		self.stack.start()
		self.do_ls([])
		while True:
			try:
				line = self.input_fn(self.prompt())
			except (EOFError, KeyboardInterrupt):
				self._out("")
				break
			if not self.execute(line):
				break
