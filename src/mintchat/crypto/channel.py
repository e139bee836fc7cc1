"""
Authenticated encryption of message payloads.

Once a connection has a shared session key, every content envelope is
serialized and sealed with AES-256-GCM before it leaves the process.

Nonces are 12 random bytes drawn from the operating system CSPRNG for
every call. With a 96-bit random nonce the collision probability stays
negligible far beyond the number of messages a chat session produces.
Nonce reuse under one key would be catastrophic for confidentiality.

Authentication failure covers:
    1. Tampered ciphertext
    2. Wrong key
    3. Wrong nonce
All are reported identically as DecryptionError.
"""

from __future__ import annotations

import asyncio
import os
from dataclasses import dataclass, field

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from mintchat.errors import DecryptionError, NoSessionKeyError

from .key_exchange import SESSION_KEY_SIZE

NONCE_SIZE: int = 12
"""AES-GCM nonce length in bytes."""

AUTH_TAG_SIZE: int = 16
"""AES-GCM authentication tag appended to every ciphertext."""


@dataclass(slots=True)
class SecureChannel:
    """
    Symmetric cipher bound to one session key.

    Usage:
        channel = SecureChannel()
        channel.bind(session_key)
        nonce, ciphertext = await channel.encrypt(b"hello")
        plaintext = await channel.decrypt(nonce, ciphertext)
    """

    _cipher: AESGCM | None = field(default=None, repr=False)
    """Cipher keyed with the session key, absent until bound."""

    _lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)
    """Serializes operations against the bound key."""

    @property
    def is_bound(self) -> bool:
        """Whether a session key is bound."""
        return self._cipher is not None

    def bind(self, key: bytes) -> None:
        """
        Bind a session key, replacing any previous one.

        Raises:
            ValueError: If the key is not 32 bytes.
        """
        if len(key) != SESSION_KEY_SIZE:
            raise ValueError(f"Session key must be {SESSION_KEY_SIZE} bytes, got {len(key)}")
        self._cipher = AESGCM(key)

    def clear(self) -> None:
        """Drop the bound key."""
        self._cipher = None

    async def encrypt(self, plaintext: bytes) -> tuple[bytes, bytes]:
        """
        Seal a payload under the bound key.

        Returns:
            Tuple of (nonce, ciphertext with 16-byte tag appended).

        Raises:
            NoSessionKeyError: If no key is bound.
        """
        async with self._lock:
            if self._cipher is None:
                raise NoSessionKeyError("No session key bound to channel")

            nonce = os.urandom(NONCE_SIZE)
            return nonce, self._cipher.encrypt(nonce, plaintext, None)

    async def decrypt(self, nonce: bytes, ciphertext: bytes) -> bytes:
        """
        Authenticate and open a payload.

        Raises:
            DecryptionError: On authentication failure, malformed input, or absent key.
        """
        async with self._lock:
            if self._cipher is None:
                raise DecryptionError("Shared secret key not established yet")

            if len(nonce) != NONCE_SIZE:
                raise DecryptionError(f"Nonce must be {NONCE_SIZE} bytes, got {len(nonce)}")

            if len(ciphertext) < AUTH_TAG_SIZE:
                raise DecryptionError("Ciphertext shorter than authentication tag")

            try:
                return self._cipher.decrypt(nonce, ciphertext, None)
            except InvalidTag as e:
                raise DecryptionError("Authentication failed; message corrupted or tampered") from e
