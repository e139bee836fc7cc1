"""
Inline file representation for media messages.

A shared file travels whole inside a single envelope as a data URL:

    data:<mime-type>;base64,<payload>

There is no chunking. Files above the configured size limit are refused
before anything is sent, so a transfer is either complete or absent.

Classification is coarse and driven only by the MIME type prefix:

    image/*  -> image
    video/*  -> video
    other    -> file
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import logging
import mimetypes
from pathlib import Path

from mintchat.config import MAX_MEDIA_BYTES
from mintchat.errors import MediaConversionError
from mintchat.protocol import MediaAttachment, MessageKind

logger = logging.getLogger(__name__)

DEFAULT_MIME_TYPE = "application/octet-stream"
"""Fallback content type when none is declared or guessable."""

_DATA_URL_PREFIX = "data:"
_BASE64_MARKER = ";base64,"


def classify(mime_type: str) -> MessageKind:
    """Map a MIME type onto the image/video/file message kinds."""
    major = mime_type.partition("/")[0].strip().lower()
    if major == "image":
        return MessageKind.IMAGE
    if major == "video":
        return MessageKind.VIDEO
    return MessageKind.FILE


def guess_mime_type(filename: str) -> str:
    """Guess a content type from a file name, falling back to octet-stream."""
    mime_type, _ = mimetypes.guess_type(filename)
    return mime_type or DEFAULT_MIME_TYPE


def describe(kind: MessageKind, filename: str) -> str:
    """Display text for a shared file."""
    match kind:
        case MessageKind.IMAGE:
            return f"Shared an image: {filename}"
        case MessageKind.VIDEO:
            return f"Shared a video: {filename}"
        case _:
            return f"Shared a file: {filename}"


def encode_bytes(
    data: bytes,
    filename: str,
    mime_type: str | None = None,
    max_bytes: int = MAX_MEDIA_BYTES,
) -> MediaAttachment:
    """
    Build an attachment from in-memory file content.

    Args:
        data: Raw file content.
        filename: Name shown to recipients.
        mime_type: Declared content type. Guessed from the filename when absent.
        max_bytes: Size limit for the raw content.

    Raises:
        MediaConversionError: If the content exceeds the size limit.
    """
    if len(data) > max_bytes:
        raise MediaConversionError(
            f"File {filename} is {len(data)} bytes; the limit is {max_bytes} bytes"
        )

    mime_type = mime_type or guess_mime_type(filename)
    payload = base64.b64encode(data).decode("ascii")
    return MediaAttachment(
        filename=filename,
        mime_type=mime_type,
        size_bytes=len(data),
        inline_data=f"{_DATA_URL_PREFIX}{mime_type}{_BASE64_MARKER}{payload}",
    )


async def encode_file(
    path: str | Path,
    mime_type: str | None = None,
    max_bytes: int = MAX_MEDIA_BYTES,
) -> MediaAttachment:
    """
    Read a file from disk and build an attachment.

    The size is checked before the content is read.

    Raises:
        MediaConversionError: If the file is missing, unreadable or too large.
    """
    path = Path(path)
    try:
        size = path.stat().st_size
        if size > max_bytes:
            raise MediaConversionError(
                f"File {path.name} is {size} bytes; the limit is {max_bytes} bytes"
            )
        data = await asyncio.to_thread(path.read_bytes)
    except OSError as e:
        raise MediaConversionError(f"Cannot read {path}: {e.strerror or e}") from e

    logger.debug("Encoded %s (%d bytes)", path.name, len(data))
    return encode_bytes(data, path.name, mime_type, max_bytes)


def decode(attachment: MediaAttachment) -> bytes:
    """
    Recover the raw file content of an attachment.

    Raises:
        MediaConversionError: If the inline data is not a base64 data URL,
            or its decoded length disagrees with the declared size.
    """
    inline = attachment.inline_data
    if not inline.startswith(_DATA_URL_PREFIX) or _BASE64_MARKER not in inline:
        raise MediaConversionError(f"Inline data of {attachment.filename} is not a base64 data URL")

    _, _, payload = inline.partition(_BASE64_MARKER)
    try:
        data = base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as e:
        raise MediaConversionError(
            f"Inline data of {attachment.filename} is not valid base64"
        ) from e

    if len(data) != attachment.size_bytes:
        raise MediaConversionError(
            f"Inline data of {attachment.filename} is {len(data)} bytes, "
            f"declared {attachment.size_bytes}"
        )
    return data
