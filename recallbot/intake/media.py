"""Download and local storage of media attached to inbound messages."""

from __future__ import annotations

import hashlib
import logging
from pathlib import Path
from typing import List, Optional, Protocol, Sequence
from uuid import UUID

import requests

from .models import MediaAttachment
from .schemas import StoredMedia

logger = logging.getLogger(__name__)

MAX_MEDIA_ITEMS = 10
CHUNK_SIZE = 64 * 1024

_SIGNATURES: tuple[tuple[bytes, int, str], ...] = (
    (b"\xff\xd8\xff", 0, "image/jpeg"),
    (b"\x89PNG\r\n\x1a\n", 0, "image/png"),
    (b"GIF87a", 0, "image/gif"),
    (b"GIF89a", 0, "image/gif"),
    (b"WEBP", 8, "image/webp"),
    (b"OggS", 0, "audio/ogg"),
    (b"ID3", 0, "audio/mpeg"),
    (b"ftyp", 4, "video/mp4"),
    (b"%PDF", 0, "application/pdf"),
)

_EXTENSIONS = {
    "image/jpeg": ".jpg",
    "image/png": ".png",
    "image/gif": ".gif",
    "image/webp": ".webp",
    "audio/ogg": ".ogg",
    "audio/mpeg": ".mp3",
    "audio/amr": ".amr",
    "video/mp4": ".mp4",
    "application/pdf": ".pdf",
}


class MediaRejectedError(ValueError):
    """The downloaded media is empty, too large or otherwise unusable."""


def sniff_content_type(data: bytes, declared: Optional[str] = None) -> str:
    """Detect the MIME type from magic bytes, else trust ``declared``."""

    for magic, offset, mime in _SIGNATURES:
        if data[offset : offset + len(magic)] == magic:
            return mime
    return (declared or "application/octet-stream").split(";")[0].strip().lower()


class MediaProcessor(Protocol):
    def process(
        self,
        owner_id: UUID,
        interaction_id: UUID,
        url: str,
        content_type: str,
    ) -> List[StoredMedia]: ...


class HttpMediaProcessor:
    """Fetch media over HTTP and store it content-addressed on disk.

    Files land at ``<storage_dir>/<owner_id>/<sha256><ext>``; re-sending the
    same bytes reuses the existing file.
    """

    def __init__(
        self,
        storage_dir: str | Path,
        *,
        account_sid: Optional[str] = None,
        auth_token: Optional[str] = None,
        timeout: float = 30.0,
        max_bytes: int = 16 * 1024 * 1024,
        session: requests.Session | None = None,
    ) -> None:
        self.storage_dir = Path(storage_dir)
        self.auth = (account_sid, auth_token) if account_sid and auth_token else None
        self.timeout = timeout
        self.max_bytes = max_bytes
        self.session = session or requests.Session()

    def _download(self, url: str) -> bytes:
        """Stream ``url`` into memory, refusing bodies over ``max_bytes``."""

        with self.session.get(
            url, auth=self.auth, timeout=self.timeout, stream=True
        ) as response:
            response.raise_for_status()
            declared = response.headers.get("Content-Length")
            if declared and declared.isdigit() and int(declared) > self.max_bytes:
                raise MediaRejectedError(
                    f"Media from {url} declares {declared} bytes (limit {self.max_bytes})"
                )
            buffer = bytearray()
            for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
                buffer.extend(chunk)
                if len(buffer) > self.max_bytes:
                    raise MediaRejectedError(
                        f"Media from {url} exceeds {self.max_bytes} bytes"
                    )
        if not buffer:
            raise MediaRejectedError(f"Empty media download from {url}")
        return bytes(buffer)

    def process(
        self,
        owner_id: UUID,
        interaction_id: UUID,
        url: str,
        content_type: str,
    ) -> List[StoredMedia]:
        data = self._download(url)

        detected = sniff_content_type(data, content_type)
        digest = hashlib.sha256(data).hexdigest()
        target_dir = self.storage_dir / str(owner_id)
        target_dir.mkdir(parents=True, exist_ok=True)
        target = target_dir / f"{digest}{_EXTENSIONS.get(detected, '.bin')}"
        if target.exists():
            logger.debug("Media %s already stored at %s", url, target)
        else:
            target.write_bytes(data)
            logger.info(
                "Stored media for interaction %s at %s (%d bytes, %s)",
                interaction_id,
                target,
                len(data),
                detected,
            )
        return [
            StoredMedia(
                source_url=url,
                content_type=detected,
                path=str(target),
                size_bytes=len(data),
                sha256=digest,
            )
        ]


class MediaIntake:
    """Process attachments one by one, dropping the ones that fail."""

    def __init__(self, processor: MediaProcessor, *, max_items: int = MAX_MEDIA_ITEMS) -> None:
        self._processor = processor
        self._max_items = max_items

    def run(
        self,
        owner_id: UUID,
        interaction_id: UUID,
        attachments: Sequence[MediaAttachment],
    ) -> List[StoredMedia]:
        if len(attachments) > self._max_items:
            logger.warning(
                "Interaction %s declared %d attachments; only the first %d are processed",
                interaction_id,
                len(attachments),
                self._max_items,
            )
        stored: List[StoredMedia] = []
        for index, attachment in enumerate(attachments[: self._max_items]):
            try:
                stored.extend(
                    self._processor.process(
                        owner_id,
                        interaction_id,
                        attachment.source_url,
                        attachment.content_type,
                    )
                )
            except Exception:
                logger.exception(
                    "Media attachment %d (%s) of interaction %s failed; skipping",
                    index,
                    attachment.source_url,
                    interaction_id,
                )
        return stored
