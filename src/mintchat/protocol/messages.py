"""
Envelope definitions for the chat wire protocol.

Every unit exchanged over a connection is a JSON object tagged by `type`.
The set of kinds is closed:

    text, image, video, file   -> content (always encrypted on the wire)
    keyExchange                -> public key announcement (always in the clear)
    encrypted                  -> sealed content envelope
    system                     -> local notices only, never accepted from peers

Decoding validates into a discriminated union, so dispatch on kind is a
`match` over concrete classes rather than on raw strings.

Keys are camelCase on the wire (`mimeType`, `publicKey`) and snake_case
in Python. Unknown keys are dropped; in particular any sender identity a
payload claims for itself never survives parsing.
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Annotated, Any, Literal, TypeAlias

from pydantic import BeforeValidator, Field, PlainSerializer

from mintchat.types import PeerId, Timestamp, WireModel


def now_ms() -> Timestamp:
    """Return current time in Unix milliseconds."""
    return int(time.time() * 1000)


class MessageKind(StrEnum):
    """Envelope kinds, by their wire tag."""

    TEXT = "text"
    SYSTEM = "system"
    KEY_EXCHANGE = "keyExchange"
    ENCRYPTED = "encrypted"
    IMAGE = "image"
    VIDEO = "video"
    FILE = "file"


CONTENT_KINDS: frozenset[MessageKind] = frozenset(
    {MessageKind.TEXT, MessageKind.IMAGE, MessageKind.VIDEO, MessageKind.FILE}
)
"""Kinds carrying user content. These must be encrypted before transmission."""

MEDIA_KINDS: frozenset[MessageKind] = frozenset(
    {MessageKind.IMAGE, MessageKind.VIDEO, MessageKind.FILE}
)
"""Kinds carrying an inline file attachment."""


def _bytes_from_array(value: Any) -> bytes:
    """Accept a JSON array of integers (the wire form) or raw bytes."""
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    if isinstance(value, list):
        try:
            return bytes(value)
        except (TypeError, ValueError) as e:
            raise ValueError("byte array entries must be integers in 0..255") from e
    raise ValueError(f"expected a byte array, got {type(value).__name__}")


ByteArray = Annotated[
    bytes,
    BeforeValidator(_bytes_from_array),
    PlainSerializer(list, return_type=list[int]),
]
"""Binary field serialized as a JSON array of byte values."""


class KeyExchangeData(WireModel):
    """Payload of a public key announcement."""

    public_key: str
    """Sender's ephemeral public key (base64 of raw bytes)."""

    timestamp: Timestamp
    """Session timestamp of the announcement. Feeds the fingerprint salt."""


class MediaAttachment(WireModel):
    """A whole file carried inline in one envelope."""

    filename: str
    """Original file name."""

    mime_type: str
    """Declared content type, used for image/video/file classification."""

    size_bytes: int = Field(ge=0)
    """Size of the decoded file in bytes."""

    inline_data: str
    """File content as a base64 data URL."""


class TextEnvelope(WireModel):
    """A chat text message."""

    type: Literal["text"] = "text"
    timestamp: Timestamp = Field(default_factory=now_ms)
    content: str

    @property
    def kind(self) -> MessageKind:
        """Envelope kind."""
        return MessageKind.TEXT


class MediaEnvelope(WireModel):
    """A shared image, video or generic file."""

    type: Literal["image", "video", "file"]
    timestamp: Timestamp = Field(default_factory=now_ms)
    data: MediaAttachment

    @property
    def kind(self) -> MessageKind:
        """Envelope kind."""
        return MessageKind(self.type)


class SystemEnvelope(WireModel):
    """A protocol-level notice. Only ever trusted when generated locally."""

    type: Literal["system"] = "system"
    timestamp: Timestamp = Field(default_factory=now_ms)
    content: str

    @property
    def kind(self) -> MessageKind:
        """Envelope kind."""
        return MessageKind.SYSTEM


class KeyExchangeEnvelope(WireModel):
    """A public key announcement. Travels unencrypted."""

    type: Literal["keyExchange"] = "keyExchange"
    timestamp: Timestamp = Field(default_factory=now_ms)
    data: KeyExchangeData

    @property
    def kind(self) -> MessageKind:
        """Envelope kind."""
        return MessageKind.KEY_EXCHANGE


class EncryptedEnvelope(WireModel):
    """A content envelope sealed under the connection's session key."""

    type: Literal["encrypted"] = "encrypted"
    timestamp: Timestamp = Field(default_factory=now_ms)
    iv: ByteArray
    """AES-GCM nonce."""

    ciphertext: ByteArray
    """Sealed inner envelope with authentication tag appended."""

    @property
    def kind(self) -> MessageKind:
        """Envelope kind."""
        return MessageKind.ENCRYPTED


ContentMessage: TypeAlias = TextEnvelope | MediaEnvelope
"""Envelopes carrying user content."""

TransportMessage: TypeAlias = (
    TextEnvelope | MediaEnvelope | SystemEnvelope | KeyExchangeEnvelope | EncryptedEnvelope
)
"""Every envelope that may appear directly on a connection."""

ContentEnvelope = Annotated[ContentMessage, Field(discriminator="type")]
"""Discriminated union used to validate decrypted inner envelopes."""

TransportEnvelope = Annotated[TransportMessage, Field(discriminator="type")]
"""Discriminated union used to validate outer envelopes."""


@dataclass(frozen=True, slots=True)
class LegacyText:
    """
    Raw bytes from a peer that speaks the old unstructured protocol.

    Treated as a bare text message with no kind tagging and no encryption.
    """

    content: str
    """Text decoded from the raw bytes."""


@dataclass(frozen=True, slots=True)
class DisplayMessage:
    """
    A message handed to the UI.

    The sender fields always come from the verified transport connection
    (or the local identity for own messages), never from envelope content.
    """

    content: str
    """Text to display."""

    sender_id: PeerId
    """Transport-verified sender identifier."""

    sender_name: str
    """Display name derived from the verified sender identifier."""

    kind: MessageKind
    """Message kind, for rendering."""

    media: MediaAttachment | None = None
    """Attached file for image/video/file messages."""

    encrypted: bool = True
    """Whether the message arrived under encryption."""

    is_own: bool = False
    """Whether the local user authored the message."""

    timestamp: Timestamp = field(default_factory=now_ms)
    """Local receipt time in milliseconds."""

    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    """Unique message identifier."""
