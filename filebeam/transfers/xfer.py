from __future__ import annotations
import logging
logger = logging.getLogger(__name__)

import shutil
from typing import Optional, Dict, Any, List, Tuple

from .fileops import human_bytes
from filebeam.utils import echo, brightgreen, brightyellow, brightred, brightblue, reset

Row = Dict[str, Any]

_STATUS_ORDER = {"failed": 0, "in_progress": 1, "queued": 2, "completed": 3, "cancelled": 4}
_STATUS_COLORS = {"completed": brightgreen, "cancelled": brightyellow, "failed": brightred}

# (header, width); the last column takes whatever the terminal has left
_COLUMNS: List[Tuple[str, int]] = [("TID", 12), ("status", 11), ("progress", 26), ("rate", 11), ("error", 17), ("path", 0)]

def _paint(text: str, color: Optional[str]) -> str:
	return color + text + reset if color else text

def _status_cell(status: str, width: int = 0) -> str:
	status = (status or "?").lower()
	return _paint(f"{status:<{width}}", _STATUS_COLORS.get(status, brightblue))

def _elapsed(st: Row) -> float:
	started = float(st.get("started_at") or 0.0)
	if not started:
		return 0.0
	ended = float(st.get("finished_at") or st.get("updated_at") or started)
	return max(0.0, ended - started)

def _rate(st: Row) -> float:
	"""Average bytes/s since the transport started; 0 when unknown."""
	secs = _elapsed(st)
	done = int(st.get("bytes_written") or 0)
	return done / secs if secs > 0 and done > 0 else 0.0

def _eta(st: Row) -> str:
	bps, total = _rate(st), st.get("bytes_expected")
	if not total or bps <= 0:
		return "-"
	secs = int(max(0, total - int(st.get("bytes_written") or 0)) / bps)
	m, s = divmod(secs, 60)
	h, m = divmod(m, 60)
	return f"{h}:{m:02d}:{s:02d}"

def _fit(text: str, width: int) -> str:
	# keeps both ends of long paths: the folder and the file name
	if width <= 0 or len(text) <= width:
		return text
	if width <= 3:
		return text[:width]
	head = (width - 3) // 2
	return text[:head] + "..." + text[len(text) - (width - 3 - head):]

def fmt_progress(st: Row) -> str:
	done = int(st.get("bytes_written") or 0)
	total = st.get("bytes_expected")
	if total:
		return f"{done / total * 100.0:5.1f}% {human_bytes(done)}/{human_bytes(total)}"
	return f"  ?.?% {human_bytes(done)}/?"

def progress_bar(current: int, total: Optional[int], bar_width: int = 30) -> str:
	if not total:
		return f"[{'?' * bar_width}] {human_bytes(current)}"
	frac = min(1.0, current / total)
	filled = int(bar_width * frac)
	return f"[{'#' * filled}{'-' * (bar_width - filled)}] {int(frac * 100)}%"

def sort_rows(rows: List[Row]) -> List[Row]:
	"""Failed and running transfers first, newest first within a status."""
	return sorted(rows, key=lambda st: (_STATUS_ORDER.get((st.get("status") or "").lower(), 9), -(st.get("updated_at") or 0)))

def _cells(st: Row) -> List[str]:
	bps = _rate(st)
	return [
		(st.get("tid") or "?"),
		(st.get("status") or "?").lower(),
		fmt_progress(st),
		f"{human_bytes(bps)}/s" if bps else "",
		st.get("last_error") or ("warning" if st.get("warning") else ""),
		f"{st.get('remote_path', '')} -> {st.get('local_path', '')}",
	]

def render_list_table(rows: List[Row]) -> str:
	term_w = shutil.get_terminal_size((120, 20)).columns
	fixed = sum(w + 1 for _, w in _COLUMNS[:-1])
	widths = [w for _, w in _COLUMNS[:-1]] + [max(20, term_w - fixed)]

	header = " ".join(_paint(f"{name:<{w}}", brightblue) for (name, _), w in zip(_COLUMNS, widths))
	lines = [header, "-" * min(term_w, fixed + widths[-1])]
	for st in rows:
		cells = _cells(st)
		out = []
		for i, (cell, w) in enumerate(zip(cells, widths)):
			if i == 1:
				out.append(_status_cell(cell, w))
			elif i == len(cells) - 1:
				out.append(_fit(cell, w))
			else:
				out.append(f"{cell[:w]:<{w}}")
		lines.append(" ".join(out))
	return "\n".join(lines)

def _label(key: str, width: int) -> str:
	return _paint(f"{key:<{width}}", brightblue)

def render_status_kv(st: Row) -> str:
	keys = ("tid", "status", "remote_path", "local_path", "bytes_written", "bytes_expected", "last_error", "error", "warning")
	width = max(len(k) for k in keys)
	lines = []
	for k in keys:
		v = st.get(k)
		if v is None:
			continue
		lines.append(f"{_label(k, width)}  {_status_cell(v) if k == 'status' else v}")
	bar = progress_bar(int(st.get("bytes_written") or 0), st.get("bytes_expected"))
	lines.append(f"{_label('progress', width)}  {bar}")
	if st.get("status") == "in_progress":
		lines.append(f"{_label('eta', width)}  {_eta(st)}")
	return "\n".join(lines)

# ---------------- entry points for the cli and the browse shell ----------------

def cmd_list(rows: List[Row], *, to_console: bool = True) -> bool:
	if not rows:
		echo("[*] No transfers.", to_console=to_console, color=brightyellow)
	else:
		echo(render_list_table(sort_rows(rows)), to_console=to_console)
	return True

def cmd_status(rows: List[Row], tid_or_prefix: str, *, to_console: bool = True) -> bool:
	prefix = (tid_or_prefix or "").strip()
	matches = [st for st in rows if prefix and (st.get("tid") or "").startswith(prefix)]
	if len(matches) == 1:
		echo(render_status_kv(matches[0]), to_console=to_console)
		return True
	logger.debug("status lookup %r matched %d transfers", prefix, len(matches))
	echo(f"[!] Transfer {tid_or_prefix!r} {'ambiguous' if matches else 'not found'}", to_console=to_console, color=brightred)
	return False
