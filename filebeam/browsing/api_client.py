# filebeam/browsing/api_client.py
import requests
import urllib.parse

from typing import Any, Dict, List

from pydantic import ValidationError

from filebeam import config
from filebeam.errors import InvalidResponse, NotFound, RemoteUnavailable
from filebeam.logutil import get_logger
from filebeam.schemas import DirectoryEntry, FileInfo, is_hidden

logger = get_logger("api_client")


class APIClient:
    def __init__(self, base_url: str, timeout: float = config.REQUEST_TIMEOUT):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    @classmethod
    def from_address(cls, address: str, timeout: float = config.REQUEST_TIMEOUT) -> "APIClient":
        """
        Build a client from the 'host:port' string the pairing code carries.
        An address that already has a scheme is used as-is.
        """
        address = (address or "").strip()
        if not address:
            raise ValueError("Server address required")
        if "://" not in address:
            address = f"http://{address}"
        return cls(address, timeout=timeout)

    # ---------- transport ----------
    def _get(self, route: str, *, params: Dict[str, str] | None = None, stream: bool = False,
             timeout: float | None = None) -> requests.Response:
        url = f"{self.base_url}{route}"
        try:
            r = requests.get(url, params=params, stream=stream, timeout=timeout or self.timeout)
        except requests.Timeout as e:
            logger.warning("GET %s timed out after %ss", url, timeout or self.timeout)
            raise RemoteUnavailable(f"Request timed out: {url}") from e
        except requests.RequestException as e:
            logger.warning("GET %s failed: %s", url, e)
            raise RemoteUnavailable(f"Server unreachable: {e}") from e

        path = (params or {}).get("path")
        if r.status_code == 404:
            r.close()
            raise NotFound(f"Not found on server: {path or route}", path=path)
        if not r.ok:
            try:
                msg = r.json().get("detail")
            except Exception:
                msg = r.text
            r.close()
            raise RemoteUnavailable(f"Server answered {r.status_code}: {msg}", path=path)
        return r

    # ---------- handshake ----------
    def connect(self) -> Dict[str, Any]:
        r = self._get("/connect")
        try:
            data = r.json()
        except ValueError:
            data = {}
        logger.info("connected to %s: %r", self.base_url, data)
        return data if isinstance(data, dict) else {"reply": data}

    # ---------- listing ----------
    def list_dir(self, path: str = "") -> List[DirectoryEntry]:
        """
        List one directory. '' asks for the server's home directory.
        Hidden entries are dropped here; an empty list is an empty directory,
        anything that is not a list of {name, is_dir} records is InvalidResponse.
        """
        if path:
            r = self._get("/list", params={"path": path})
        else:
            r = self._get("/home")
        try:
            data = r.json()
        except ValueError as e:
            raise InvalidResponse(f"Listing for {path!r} is not JSON", path=path) from e
        return self._parse_listing(path, data)

    def _parse_listing(self, path: str, data: Any) -> List[DirectoryEntry]:
        if not isinstance(data, list):
            raise InvalidResponse(f"Listing for {path!r} is not a list ({type(data).__name__})", path=path)
        entries: List[DirectoryEntry] = []
        seen = set()
        for item in data:
            try:
                info = FileInfo.model_validate(item)
            except ValidationError as e:
                raise InvalidResponse(f"Malformed entry in listing for {path!r}: {item!r}", path=path) from e
            name = info.name
            if not name or "/" in name or "\\" in name or name in (".", ".."):
                raise InvalidResponse(f"Invalid entry name {name!r} in listing for {path!r}", path=path)
            if name in seen:
                raise InvalidResponse(f"Duplicate entry {name!r} in listing for {path!r}", path=path)
            seen.add(name)
            if is_hidden(name):
                continue
            entries.append(DirectoryEntry.under(path, info))
        logger.debug("list %r -> %d entries (%d hidden)", path, len(entries), len(seen) - len(entries))
        return entries

    # ---------- files ----------
    def download_url(self, path: str) -> str:
        return f"{self.base_url}/download?{urllib.parse.urlencode({'path': path})}"

    def open_download(self, path: str, *, timeout: float | None = None) -> requests.Response:
        """Streamed GET of one file; the caller closes the response."""
        return self._get("/download", params={"path": path}, stream=True, timeout=timeout)
