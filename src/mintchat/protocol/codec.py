"""
Encoding and two-step decoding of envelopes.

Inbound bytes are decoded in exactly two steps:

    1. Outer: raw bytes -> transport envelope (or legacy text)
    2. Inner: decrypted bytes of an `encrypted` envelope -> content envelope

The inner step only accepts content kinds. A decrypted payload that is
itself `encrypted`, or a `system`/`keyExchange` envelope, is a protocol
violation. Unwrapping depth is therefore bounded at one by construction.

Legacy fallback
---------------
Older clients sent bare strings instead of JSON objects. Any input that
is not a JSON object decodes as `LegacyText`. A JSON object that fails
validation is NOT legacy text: it is a malformed envelope.
"""

from __future__ import annotations

import json
import logging

from pydantic import TypeAdapter, ValidationError

from mintchat.crypto import SecureChannel
from mintchat.errors import ProtocolViolation

from .messages import (
    ContentEnvelope,
    ContentMessage,
    EncryptedEnvelope,
    LegacyText,
    MessageKind,
    TransportEnvelope,
    TransportMessage,
)

logger = logging.getLogger(__name__)

_TRANSPORT_ADAPTER: TypeAdapter[TransportMessage] = TypeAdapter(TransportEnvelope)
_CONTENT_ADAPTER: TypeAdapter[ContentMessage] = TypeAdapter(ContentEnvelope)


def encode(envelope: TransportMessage) -> bytes:
    """Serialize an envelope to its JSON wire form."""
    return envelope.model_dump_json(by_alias=True, exclude_none=True).encode("utf-8")


def decode_transport(raw: bytes) -> TransportMessage | LegacyText:
    """
    Decode the outer envelope of bytes received from a connection.

    Returns:
        A validated transport envelope, or LegacyText for unstructured input.

    Raises:
        ProtocolViolation: If the input is a JSON object but not a valid envelope.
    """
    try:
        obj = json.loads(raw)
    except RecursionError as e:
        raise ProtocolViolation("Envelope is nested too deeply") from e
    except ValueError:
        # Covers JSONDecodeError and UnicodeDecodeError.
        return LegacyText(raw.decode("utf-8", errors="replace"))

    if not isinstance(obj, dict):
        return LegacyText(raw.decode("utf-8", errors="replace"))

    try:
        return _TRANSPORT_ADAPTER.validate_python(obj)
    except ValidationError as e:
        raise ProtocolViolation(
            f"Malformed {obj.get('type', 'untyped')!s} envelope ({e.error_count()} errors)"
        ) from e


def decode_content(plaintext: bytes) -> ContentMessage:
    """
    Decode the inner envelope recovered from an `encrypted` envelope.

    Raises:
        ProtocolViolation: If the payload is not a content envelope.
    """
    try:
        obj = json.loads(plaintext)
    except RecursionError as e:
        raise ProtocolViolation("Decrypted payload is nested too deeply") from e
    except ValueError as e:
        raise ProtocolViolation("Decrypted payload is not JSON") from e

    if not isinstance(obj, dict):
        raise ProtocolViolation("Decrypted payload is not an envelope")

    kind = obj.get("type")
    if kind == MessageKind.ENCRYPTED:
        raise ProtocolViolation("Nested encrypted envelope")
    if kind in (MessageKind.SYSTEM, MessageKind.KEY_EXCHANGE):
        raise ProtocolViolation(f"{kind} envelope is not allowed inside an encrypted envelope")

    try:
        return _CONTENT_ADAPTER.validate_python(obj)
    except ValidationError as e:
        raise ProtocolViolation(f"Malformed inner envelope ({e.error_count()} errors)") from e


async def seal(channel: SecureChannel, envelope: ContentMessage) -> EncryptedEnvelope:
    """
    Wrap a content envelope into an `encrypted` envelope.

    Raises:
        NoSessionKeyError: If the channel has no key bound.
    """
    nonce, ciphertext = await channel.encrypt(encode(envelope))
    return EncryptedEnvelope(iv=nonce, ciphertext=ciphertext)


async def unseal(channel: SecureChannel, envelope: EncryptedEnvelope) -> ContentMessage:
    """
    Decrypt an `encrypted` envelope and decode the content inside.

    Raises:
        DecryptionError: If authentication or decryption fails.
        ProtocolViolation: If the decrypted payload is not a content envelope.
    """
    plaintext = await channel.decrypt(envelope.iv, envelope.ciphertext)
    return decode_content(plaintext)
