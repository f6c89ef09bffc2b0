# BeamServer/files.py
import os
from pathlib import Path
from typing import List

from fastapi import APIRouter, HTTPException, Query, Request
from fastapi.responses import FileResponse

from filebeam.schemas import FileInfo

from .logutil import get_logger, bind, span

router = APIRouter()
logger = get_logger("files")


def _root(request: Request) -> Path:
    return request.app.state.root

def _resolve(request: Request, rel: str) -> Path:
    """
    Map a '/'-joined relative path onto the served root.
    Anything that escapes the root is reported as missing.
    """
    root = _root(request)
    parts = [p for p in (rel or "").replace("\\", "/").split("/") if p not in ("", ".")]
    target = root.joinpath(*parts).resolve()
    if target != root and root not in target.parents:
        logger.warning("path escapes served root", extra={"path": rel})
        raise HTTPException(status_code=404, detail="Path not found")
    if not target.exists():
        raise HTTPException(status_code=404, detail="Path not found")
    return target

def _list(request: Request, rel: str) -> List[FileInfo]:
    target = _resolve(request, rel)
    if not target.is_dir():
        raise HTTPException(status_code=400, detail="Not a directory")
    log = bind(logger, client=getattr(request.client, "host", "?"))
    items: List[FileInfo] = []
    with span(log, "list", path=rel) as fields:
        with os.scandir(target) as it:
            for entry in it:
                try:
                    is_dir = entry.is_dir()
                    size = None if is_dir else entry.stat().st_size
                except OSError:
                    continue
                items.append(FileInfo(name=entry.name, is_dir=is_dir, size=size))
        fields["entries"] = len(items)
    items.sort(key=lambda f: (not f.is_dir, f.name.lower()))
    return items

@router.get("/connect")
def connect(request: Request):
    logger.info("client connected", extra={"client": getattr(request.client, "host", "?")})
    return {"status": "connected", "root": _root(request).name}

@router.get("/home", response_model=List[FileInfo])
def home(request: Request):
    return _list(request, "")

@router.get("/list", response_model=List[FileInfo])
def list_dir(request: Request, path: str = Query(default="")):
    return _list(request, path)

@router.get("/download")
def download_file(request: Request, path: str = Query(...)):
    target = _resolve(request, path)
    if not target.is_file():
        raise HTTPException(status_code=400, detail="Not a file")
    logger.info("download", extra={"path": path, "size": target.stat().st_size})
    return FileResponse(target, media_type="application/octet-stream", filename=target.name)
