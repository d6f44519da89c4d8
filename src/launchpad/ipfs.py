"""
Content-addressed metadata upload (Pinata pinning API) and gateway reads.

upload() pins the image first, then a metadata document
``{"name", "description", "image": "ipfs://<image cid>"}``, and resolves to
``ipfs://<metadata cid>``. Progress is reported as 0, 50, 100.
"""
import asyncio
import json
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol

import httpx

from launchpad.models import ImageFile

log = logging.getLogger("launchpad.ipfs")

ProgressCallback = Callable[[int], None]

PINATA_API_URL = "https://api.pinata.cloud"
DEFAULT_GATEWAYS = (
    "https://gateway.pinata.cloud/ipfs",
    "https://ipfs.io/ipfs",
    "https://cloudflare-ipfs.com/ipfs",
)


@dataclass(frozen=True, slots=True)
class UploadResult:
    success: bool
    uri: str | None = None
    error: str | None = None


class UploadHandle:
    """A running upload: ``await handle.result`` or ``handle.cancel()``."""

    def __init__(self, task: asyncio.Task):
        self._task = task

    def cancel(self) -> None:
        self._task.cancel()

    @property
    def cancelled(self) -> bool:
        return self._task.cancelled()

    @property
    def result(self) -> asyncio.Task:
        return self._task


class MetadataUploader(Protocol):
    def upload(
        self, file: ImageFile, meta: dict, on_progress: ProgressCallback | None = None
    ) -> UploadHandle: ...


class IPFSError(Exception):
    pass


def cid_from_uri(uri: str) -> str:
    return uri.removeprefix("ipfs://")


class PinataUploader:
    def __init__(
        self,
        api_key: str,
        api_secret: str,
        *,
        api_url: str = PINATA_API_URL,
        gateways: tuple[str, ...] = DEFAULT_GATEWAYS,
        client: httpx.AsyncClient | None = None,
        timeout: float = 30.0,
        gateway_timeout: float = 5.0,
    ):
        self.api_url = api_url.rstrip("/")
        self.gateways = gateways
        self._headers = {"pinata_api_key": api_key, "pinata_secret_api_key": api_secret}
        self._configured = bool(api_key and api_secret)
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._gateway_timeout = gateway_timeout
        self._cache: dict[str, dict] = {}

    # ---- upload ---------------------------------------------------------

    def upload(
        self, file: ImageFile, meta: dict, on_progress: ProgressCallback | None = None
    ) -> UploadHandle:
        task = asyncio.get_running_loop().create_task(
            self._upload(file, meta, on_progress), name=f"ipfs-upload-{file.filename}"
        )
        return UploadHandle(task)

    async def _upload(self, file: ImageFile, meta: dict, on_progress: ProgressCallback | None) -> UploadResult:
        def progress(pct: int) -> None:
            if on_progress is not None:
                on_progress(pct)

        if not self._configured:
            return UploadResult(False, error="IPFS credentials not configured")

        progress(0)
        try:
            image_cid = await self._pin_file(file)
            progress(50)
            document = {
                "name": meta.get("name", ""),
                "description": meta.get("description", ""),
                "image": f"ipfs://{image_cid}",
            }
            metadata_cid = await self._pin_json(document, name=f"{meta.get('name', 'token')}-metadata.json")
        except (IPFSError, httpx.HTTPError) as e:
            log.warning("IPFS upload failed for %s: %s", file.filename, e)
            return UploadResult(False, error=str(e) or e.__class__.__name__)
        progress(100)
        uri = f"ipfs://{metadata_cid}"
        log.info("Pinned metadata %s (image %s)", uri, image_cid)
        return UploadResult(True, uri=uri)

    async def _pin_file(self, file: ImageFile) -> str:
        r = await self._client.post(
            f"{self.api_url}/pinning/pinFileToIPFS",
            headers=self._headers,
            files={"file": (file.filename, file.content, file.content_type)},
        )
        return self._cid(r)

    async def _pin_json(self, document: dict, name: str) -> str:
        r = await self._client.post(
            f"{self.api_url}/pinning/pinJSONToIPFS",
            headers=self._headers,
            json={"pinataContent": document, "pinataMetadata": {"name": name}},
        )
        return self._cid(r)

    @staticmethod
    def _cid(r: httpx.Response) -> str:
        if not r.is_success:
            raise IPFSError(f"IPFS upload failed: {r.status_code} {r.reason_phrase}")
        cid = r.json().get("IpfsHash")
        if not cid:
            raise IPFSError("IPFS upload failed: response carried no IpfsHash")
        return cid

    # ---- read -----------------------------------------------------------

    async def fetch_metadata(self, uri: str) -> dict:
        """Resolve ``ipfs://<cid>`` through the gateways in order; results are cached."""
        if uri in self._cache:
            return self._cache[uri]

        cid = cid_from_uri(uri)
        for gateway in self.gateways:
            url = f"{gateway.rstrip('/')}/{cid}"
            try:
                r = await self._client.get(url, timeout=self._gateway_timeout)
            except httpx.HTTPError as e:
                log.debug("Gateway %s failed: %s", gateway, e)
                continue
            if not r.is_success:
                continue
            try:
                metadata = r.json()
            except json.JSONDecodeError:
                log.debug("Gateway %s returned non-JSON for %s", gateway, cid)
                continue
            if not isinstance(metadata, dict) or not all(metadata.get(k) for k in ("name", "description", "image")):
                log.debug("Gateway %s returned incomplete metadata for %s", gateway, cid)
                continue
            self._cache[uri] = metadata
            return metadata

        raise IPFSError("Failed to fetch metadata from all gateways")

    async def aclose(self) -> None:
        await self._client.aclose()
