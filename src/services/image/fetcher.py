"""
Receipt Attachment Fetcher

Downloads the image a user attached to a chat message so it can be sent to
the vision model inline.

DESIGN DECISION: We check the bytes with Pillow before spending an oracle
call on them. A truncated download, an HTML error page served with a 200,
or a sticker in an unsupported format is rejected here with a clear error
instead of producing a confusing model answer.

MIME type, first available wins:
1. The content type the relay reported for the attachment
2. The Content-Type header of the download
3. The format Pillow detects from the bytes
"""

from io import BytesIO
from typing import Optional

import httpx
import structlog
from PIL import Image, UnidentifiedImageError

from src.config import AppSettings, get_settings


logger = structlog.get_logger("spenly.attachments")


class AttachmentError(Exception):
    """Base exception for attachment errors."""
    pass


class AttachmentFetchError(AttachmentError):
    """The attachment could not be downloaded."""
    pass


class AttachmentTooLargeError(AttachmentError):
    """The attachment exceeds the configured size limit."""
    pass


class UnsupportedAttachmentError(AttachmentError):
    """The attachment is not an image we can send to the vision model."""
    pass


def _image_mime(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    mime = value.split(";", 1)[0].strip().lower()
    return mime if mime.startswith("image/") else None


class AttachmentFetcher:
    """
    Fetches and checks receipt images.

    Relay-hosted media (Twilio) requires the account credentials as HTTP
    basic auth; pass them as `auth`.
    """

    def __init__(
        self,
        settings: Optional[AppSettings] = None,
        auth: Optional[tuple[str, str]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._settings = settings or get_settings().app
        self._auth = auth
        self._transport = transport

    async def fetch(
        self,
        url: str,
        content_type: Optional[str] = None,
    ) -> tuple[bytes, str]:
        """
        Download an image.

        Args:
            url: Attachment URL from the relay
            content_type: Content type reported by the relay, if any

        Returns:
            (image bytes, mime type)

        Raises:
            AttachmentFetchError: Network error or non-2xx status
            AttachmentTooLargeError: Larger than max_attachment_size_mb
            UnsupportedAttachmentError: Not an image Pillow can read, or a
                format outside supported_image_formats
        """
        try:
            async with httpx.AsyncClient(
                timeout=self._settings.attachment_timeout_seconds,
                follow_redirects=True,
                auth=self._auth,
                transport=self._transport,
            ) as client:
                response = await client.get(url)
        except httpx.HTTPError as e:
            raise AttachmentFetchError(f"Failed to fetch attachment: {e}") from e

        if not response.is_success:
            raise AttachmentFetchError(
                f"Failed to fetch attachment: HTTP {response.status_code}"
            )

        data = response.content
        if not data:
            raise AttachmentFetchError("Attachment is empty")
        if len(data) > self._settings.max_attachment_size_bytes:
            raise AttachmentTooLargeError(
                f"Attachment is {len(data)} bytes "
                f"(limit {self._settings.max_attachment_size_mb} MB)"
            )

        image_format = self._detect_format(data)
        if image_format.lower() not in self._settings.supported_formats_list:
            raise UnsupportedAttachmentError(f"Unsupported image format: {image_format}")

        mime_type = (
            _image_mime(content_type)
            or _image_mime(response.headers.get("content-type"))
            or Image.MIME.get(image_format, f"image/{image_format.lower()}")
        )

        logger.info(
            "attachment_fetched",
            size_bytes=len(data),
            mime_type=mime_type,
        )
        return data, mime_type

    def _detect_format(self, data: bytes) -> str:
        """Format name as reported by Pillow (e.g. "JPEG", "PNG")."""
        try:
            with Image.open(BytesIO(data)) as img:
                img.verify()
                image_format = img.format
        except (UnidentifiedImageError, OSError, SyntaxError) as e:
            raise UnsupportedAttachmentError(f"Attachment is not a readable image: {e}") from e

        if not image_format:
            raise UnsupportedAttachmentError("Could not determine image format")
        return image_format
