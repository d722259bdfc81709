"""
Content-Addressed Storage
=========================
Client interface for uploading proof artifacts and fetching them back by
content address (CID), plus CID format validation.

``HttpStorageClient`` talks to an IPFS-style pinning service:
    - ``POST {api_url}/upload`` (multipart ``file``) → ``{"cid": "..."}``
    - ``GET  {gateway_url}/{cid}/{name}`` → artifact bytes
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import aiohttp
from multiformats import CID

from .errors import ArtifactNotFoundError, StorageRetrievalError, StorageUploadError

logger = logging.getLogger(__name__)


def is_valid_cid(address: Optional[str]) -> bool:
    """True if *address* parses as a CID (v0 or v1, any multibase)."""
    if not address or not isinstance(address, str):
        return False
    try:
        CID.decode(address.strip())
        return True
    except Exception:
        return False


class ContentStorageClient:
    """Interface of the content-addressed storage collaborator."""

    async def upload(self, file_path: str) -> str:
        """Upload a file and return its content address."""
        raise NotImplementedError

    async def get(self, address: str, artifact_name: str) -> bytes:
        """Return the bytes of *artifact_name* inside *address*."""
        raise NotImplementedError


class HttpStorageClient(ContentStorageClient):
    """aiohttp client for an IPFS pinning API + gateway."""

    def __init__(
        self,
        api_url: str = "",
        gateway_url: str = "https://ipfs.io/ipfs",
        *,
        token: Optional[str] = None,
        timeout_s: float = 30.0,
    ):
        self.api_url = api_url.rstrip('/')
        self.gateway_url = gateway_url.rstrip('/')
        self.token = token
        self.timeout = aiohttp.ClientTimeout(total=timeout_s)

    def _headers(self) -> dict:
        return {'Authorization': f"Bearer {self.token}"} if self.token else {}

    async def upload(self, file_path: str) -> str:
        if not self.api_url:
            raise StorageUploadError("no storage API URL configured")

        path = Path(file_path)
        form = aiohttp.FormData()
        form.add_field(
            'file', path.read_bytes(),
            filename=path.name, content_type='application/json',
        )
        try:
            async with aiohttp.ClientSession(timeout=self.timeout) as session:
                async with session.post(
                    f"{self.api_url}/upload", data=form, headers=self._headers()
                ) as resp:
                    if resp.status >= 400:
                        raise StorageUploadError(f"upload returned HTTP {resp.status}")
                    payload = await resp.json(content_type=None)
        except aiohttp.ClientError as e:
            raise StorageUploadError(f"upload failed: {e}") from e

        cid = payload.get('cid') if isinstance(payload, dict) else None
        if not cid:
            raise StorageUploadError("upload response carried no cid")
        logger.info(f"[STORAGE] Uploaded {path.name} → {cid}")
        return cid

    async def get(self, address: str, artifact_name: str) -> bytes:
        url = f"{self.gateway_url}/{address}/{artifact_name}"
        try:
            async with aiohttp.ClientSession(timeout=self.timeout) as session:
                async with session.get(url, headers=self._headers()) as resp:
                    if resp.status == 404:
                        raise ArtifactNotFoundError(f"{address}/{artifact_name} not found")
                    if resp.status >= 400:
                        raise StorageRetrievalError(f"HTTP {resp.status} from storage")
                    return await resp.read()
        except aiohttp.ClientError as e:
            raise StorageRetrievalError(f"storage request failed: {e}") from e
