"""
Session cryptography for the chat protocol.

    KeyExchange    -> X25519 agreement + HKDF-SHA256 session key + fingerprints
    SecureChannel  -> AES-256-GCM payload encryption under the session key
"""

from .channel import AUTH_TAG_SIZE, NONCE_SIZE, SecureChannel
from .key_exchange import (
    PUBLIC_KEY_SIZE,
    SESSION_KEY_SIZE,
    KeyExchange,
    decode_public_key,
    derive_session_key,
    encode_public_key,
    fingerprint,
)

__all__ = [
    "AUTH_TAG_SIZE",
    "NONCE_SIZE",
    "PUBLIC_KEY_SIZE",
    "SESSION_KEY_SIZE",
    "KeyExchange",
    "SecureChannel",
    "decode_public_key",
    "derive_session_key",
    "encode_public_key",
    "fingerprint",
]
