"""Conversion between files and inline media attachments."""

from .codec import (
    DEFAULT_MIME_TYPE,
    classify,
    decode,
    describe,
    encode_bytes,
    encode_file,
    guess_mime_type,
)

__all__ = [
    "DEFAULT_MIME_TYPE",
    "classify",
    "decode",
    "describe",
    "encode_bytes",
    "encode_file",
    "guess_mime_type",
]
