"""
Media storage for chat attachments.

Downloads an attachment URL into UPLOAD_DIR/tenant-{id}/ and returns the public
reference "/uploads/tenant-{id}/{filename}" that vehicles store in their photo list.
"""
import asyncio
import re
import secrets
import time
from pathlib import Path
from typing import Optional

import httpx

from autoleads.core.circuit_breaker import CircuitBreaker, get_media_circuit_breaker
from autoleads.core.config import settings
from autoleads.core.exceptions import (
    ErrorCode,
    MediaDownloadError,
    MediaUnavailableError,
    ServiceTimeoutError,
)
from autoleads.core.logging import get_logger

logger = get_logger(__name__)

# what some gateways put in media.url when the attachment cannot be fetched
UNAVAILABLE_URL_SENTINELS = {"", "no url", "no-url", "none", "null", "undefined"}
IMAGE_EXTENSIONS = {"jpg", "jpeg", "png", "gif", "webp"}
_EXTENSION = re.compile(r"\.([a-zA-Z0-9]+)(?:\?|#|$)")
_UNSAFE_FILENAME = re.compile(r"[^A-Za-z0-9._-]")


def is_media_outage(exc: Exception) -> bool:
    """Failures that say the media host is down, as opposed to one bad attachment"""
    if isinstance(exc, MediaDownloadError):
        return exc.outage
    return True


def is_retrievable_url(url: Optional[str]) -> bool:
    if url is None or url.strip().lower() in UNAVAILABLE_URL_SENTINELS:
        return False
    return url.strip().lower().startswith(("http://", "https://"))


def file_extension(url: str, default: str = "jpg") -> str:
    match = _EXTENSION.search(url or "")
    extension = match.group(1).lower() if match else default
    return extension if extension in IMAGE_EXTENSIONS else default


def generate_filename(prefix: str = "car", extension: str = "jpg") -> str:
    return f"{prefix}-{int(time.time() * 1000)}-{secrets.token_hex(3)}.{extension}"


class MediaStorageService:
    """Downloads attachments to local storage with a size cap and timeout"""

    def __init__(
        self,
        upload_dir: Optional[str] = None,
        *,
        max_file_size: Optional[int] = None,
        timeout_seconds: Optional[float] = None,
        circuit_breaker: Optional[CircuitBreaker] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._upload_dir = Path(upload_dir or settings.UPLOAD_DIR)
        self._max_file_size = max_file_size or settings.MAX_FILE_SIZE
        self._timeout_seconds = timeout_seconds or settings.MEDIA_DOWNLOAD_TIMEOUT_SECONDS
        self._circuit_breaker = circuit_breaker or get_media_circuit_breaker(is_media_outage)
        self._transport = transport

    def tenant_dir(self, tenant_id: int) -> Path:
        return self._upload_dir / f"tenant-{tenant_id}"

    async def save(self, url: Optional[str], tenant_id: int, filename: str) -> str:
        """
        Download url and store it as filename for the tenant.

        Raises:
            MediaUnavailableError: no retrievable URL (not a hard failure).
            MediaDownloadError: the download or the write failed.
        """
        if not is_retrievable_url(url):
            raise MediaUnavailableError(url)

        safe_name = _UNSAFE_FILENAME.sub("_", Path(filename).name) or generate_filename()
        content = await self._circuit_breaker.execute(self._download, url)

        target = self.tenant_dir(tenant_id) / safe_name
        try:
            await asyncio.to_thread(self._write, target, content)
        except OSError as exc:
            raise MediaDownloadError(url, f"write failed: {exc}") from exc

        logger.info(
            "Media stored",
            extra_data={"tenant_id": tenant_id, "filename": safe_name, "bytes": len(content)},
        )
        return f"/uploads/tenant-{tenant_id}/{safe_name}"

    async def _download(self, url: str) -> bytes:
        try:
            async with httpx.AsyncClient(
                timeout=self._timeout_seconds,
                follow_redirects=True,
                transport=self._transport,
            ) as client:
                async with client.stream("GET", url) as response:
                    if response.status_code != 200:
                        raise MediaDownloadError(
                            url, f"status {response.status_code}", outage=response.status_code >= 500
                        )

                    declared = response.headers.get("content-length")
                    if declared and declared.isdigit() and int(declared) > self._max_file_size:
                        raise MediaDownloadError(url, "file too large", ErrorCode.MEDIA_TOO_LARGE)

                    chunks: list[bytes] = []
                    received = 0
                    async for chunk in response.aiter_bytes():
                        received += len(chunk)
                        if received > self._max_file_size:
                            raise MediaDownloadError(url, "file too large", ErrorCode.MEDIA_TOO_LARGE)
                        chunks.append(chunk)
        except httpx.TimeoutException as exc:
            raise ServiceTimeoutError("media", self._timeout_seconds) from exc
        except httpx.RequestError as exc:
            raise MediaDownloadError(url, f"transport error: {exc}", outage=True) from exc

        return b"".join(chunks)

    @staticmethod
    def _write(target: Path, content: bytes) -> None:
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(content)
