"""HTTP client for the external file-management API.

The file API exposes the engine host's snapshot directory:

* ``GET /files?path=<dir>&pattern=*.ss`` returns ``{"files": [{"name", "size"}]}``
  (a bare list is accepted too);
* ``DELETE /files/<name>?path=<dir>`` removes one file.

Requests authenticate with HTTP Basic auth.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import httpx

from rewind_core.errors import FileApiError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RemoteFile:
    """One file reported by the file API."""

    name: str
    size_bytes: int = 0


class FileApiClient:
    """Thin async wrapper around the file-management REST API.

    Parameters
    ----------
    base_url:
        Root URL of the file API (e.g. ``http://fileserver:8080``).
    username, password:
        HTTP Basic credentials.
    timeout:
        Per-request timeout in seconds.
    transport:
        Optional httpx transport, e.g. ``httpx.MockTransport`` in tests.
    """

    def __init__(
        self,
        base_url: str,
        username: str = "",
        password: str = "",
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        auth = httpx.BasicAuth(username, password) if username else None
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            timeout=httpx.Timeout(timeout),
            auth=auth,
            headers={"Accept": "application/json"},
            transport=transport,
        )

    @property
    def base_url(self) -> str:
        return self._base_url

    async def list(self, path: str, pattern: str = "*.ss") -> list[RemoteFile]:
        """List files in *path* matching *pattern*.

        Raises
        ------
        FileApiError
            When the API is unreachable or answers with an error status.
        """
        body = await self._request("GET", "/files", params={"path": path, "pattern": pattern})
        items: Any = body.get("files", []) if isinstance(body, dict) else body
        files: list[RemoteFile] = []
        for item in items or []:
            if isinstance(item, str):
                files.append(RemoteFile(name=item))
            else:
                files.append(RemoteFile(name=str(item["name"]), size_bytes=int(item.get("size", 0) or 0)))
        return files

    async def delete(self, name: str, path: str) -> None:
        """Delete file *name* from *path*."""
        await self._request("DELETE", f"/files/{name}", params={"path": path})
        logger.info("Deleted snapshot file %s via file API", name)

    async def close(self) -> None:
        """Close the underlying HTTP connection pool."""
        await self._client.aclose()

    # -- Internal helpers ----------------------------------------------------

    async def _request(self, method: str, url: str, params: dict[str, str] | None = None) -> Any:
        try:
            response = await self._client.request(method, url, params=params)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            logger.warning(
                "File API returned %d for %s %s: %s",
                exc.response.status_code,
                method,
                url,
                exc.response.text[:500],
            )
            raise FileApiError(f"File API returned {exc.response.status_code} for {method} {url}") from exc
        except httpx.RequestError as exc:
            logger.warning("File API request %s %s failed: %s", method, url, str(exc))
            raise FileApiError(f"File API request failed: {exc}") from exc
        if not response.content:
            return {}
        return response.json()
