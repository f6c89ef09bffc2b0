import errno, os, shutil, tempfile
from typing import Iterable

def human_bytes(n) -> str:
    if n is None:
        return "?"
    units = ["B","KB","MB","GB","TB"]
    x = float(n)
    for u in units:
        if x < 1024 or u == units[-1]:
            return f"{x:.1f} {u}"
        x /= 1024.0

def part_path(local_path: str) -> str:
    return local_path + ".part"

def remove_quietly(path: str) -> None:
    try:
        os.remove(path)
    except FileNotFoundError:
        pass

def finalize_part(tmp_path: str, final_path: str) -> None:
    """
    Atomic finalize: .part -> final; handle cross-device safely.
    """
    final_dir = os.path.dirname(final_path) or "."
    os.makedirs(final_dir, exist_ok=True)
    try:
        os.replace(tmp_path, final_path)
    except OSError as e:
        if getattr(e, "errno", None) != errno.EXDEV:
            raise
        # Cross-device link (EXDEV): copy into a temp file in final_dir, then atomic replace
        with open(tmp_path, "rb") as src, tempfile.NamedTemporaryFile(dir=final_dir, delete=False) as dst:
            shutil.copyfileobj(src, dst, 1024 * 1024)
            dst.flush()
            os.fsync(dst.fileno())
            temp_in_final = dst.name
        os.replace(temp_in_final, final_path)
        remove_quietly(tmp_path)

def resolve_file_target(download_dir: str, name: str, reserved: Iterable[str] = ()) -> str:
    """
    Pick a local path for `name` inside download_dir that neither exists nor is
    reserved by another running transfer: 'a.jpg', 'a (1).jpg', 'a (2).jpg', ...
    """
    reserved = set(reserved)
    stem, ext = os.path.splitext(name)
    candidate = os.path.join(download_dir, name)
    n = 1
    while candidate in reserved or os.path.exists(candidate) or os.path.exists(part_path(candidate)):
        candidate = os.path.join(download_dir, f"{stem} ({n}){ext}")
        n += 1
    return candidate
