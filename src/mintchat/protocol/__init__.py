"""
Chat wire protocol: envelope kinds, models, and encode/decode rules.

    Outbound:  content envelope -> seal -> encrypted envelope -> encode -> bytes
    Inbound:   bytes -> decode_transport -> (unseal -> content envelope)
"""

from .codec import decode_content, decode_transport, encode, seal, unseal
from .messages import (
    CONTENT_KINDS,
    MEDIA_KINDS,
    ContentMessage,
    DisplayMessage,
    EncryptedEnvelope,
    KeyExchangeData,
    KeyExchangeEnvelope,
    LegacyText,
    MediaAttachment,
    MediaEnvelope,
    MessageKind,
    SystemEnvelope,
    TextEnvelope,
    TransportMessage,
    now_ms,
)

__all__ = [
    # Kinds
    "CONTENT_KINDS",
    "MEDIA_KINDS",
    "MessageKind",
    # Envelopes
    "ContentMessage",
    "EncryptedEnvelope",
    "KeyExchangeData",
    "KeyExchangeEnvelope",
    "LegacyText",
    "MediaAttachment",
    "MediaEnvelope",
    "SystemEnvelope",
    "TextEnvelope",
    "TransportMessage",
    "DisplayMessage",
    # Codec
    "decode_content",
    "decode_transport",
    "encode",
    "seal",
    "unseal",
    "now_ms",
]
