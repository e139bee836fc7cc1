"""
Ephemeral key agreement for a chat session.

Each side of a connection holds a fresh X25519 key pair for the session.
The public halves travel in the clear inside `keyExchange` envelopes; they
carry no secret, so a signaling server that observes them learns nothing
useful.

Both sides then run the agreement independently:

    agreement(priv_A, pub_B) == agreement(priv_B, pub_A)

The raw agreement output is never used as a key directly. It is passed
through HKDF-SHA256 with a protocol-specific info string, producing the
32-byte AES-256-GCM key bound by the secure channel.

Verification fingerprints let two users confirm out of band that they hold
the same secret without revealing it:

    fingerprint = hex(SHA256(session_key || salt))[:16]

References:
    - https://datatracker.ietf.org/doc/html/rfc7748 (X25519)
    - https://datatracker.ietf.org/doc/html/rfc5869 (HKDF)
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import hashlib
import logging
from dataclasses import dataclass, field

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import x25519
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from mintchat.config import FINGERPRINT_LENGTH
from mintchat.errors import KeyExchangeError

logger = logging.getLogger(__name__)

PUBLIC_KEY_SIZE: int = 32
"""Raw X25519 public key length in bytes."""

SESSION_KEY_SIZE: int = 32
"""Derived symmetric key length in bytes (AES-256)."""

HKDF_INFO: bytes = b"mintchat/session-key/v1"
"""Context string binding derived keys to this protocol and version."""


def encode_public_key(public_key: x25519.X25519PublicKey) -> str:
    """Serialize a public key as base64 of its 32 raw bytes."""
    return base64.b64encode(public_key.public_bytes_raw()).decode("ascii")


def decode_public_key(encoded: str) -> x25519.X25519PublicKey:
    """
    Parse a public key produced by `encode_public_key`.

    Raises:
        KeyExchangeError: If the value is not base64 of exactly 32 bytes.
    """
    if not isinstance(encoded, str):
        raise KeyExchangeError(f"Public key must be a string, got {type(encoded).__name__}")

    try:
        raw = base64.b64decode(encoded, validate=True)
    except (binascii.Error, ValueError) as e:
        raise KeyExchangeError(f"Public key is not valid base64: {e}") from e

    if len(raw) != PUBLIC_KEY_SIZE:
        raise KeyExchangeError(f"Public key must be {PUBLIC_KEY_SIZE} bytes, got {len(raw)}")

    return x25519.X25519PublicKey.from_public_bytes(raw)


def derive_session_key(
    private_key: x25519.X25519PrivateKey,
    peer_public_key: x25519.X25519PublicKey,
) -> bytes:
    """
    Run X25519 and expand the result into a symmetric session key.

    Args:
        private_key: Our ephemeral private key.
        peer_public_key: The remote side's ephemeral public key.

    Returns:
        32-byte key for AES-256-GCM.

    Raises:
        KeyExchangeError: If the agreement yields the all-zero value
            (peer sent a low-order point).
    """
    try:
        shared = private_key.exchange(peer_public_key)
    except ValueError as e:
        raise KeyExchangeError(f"Key agreement failed: {e}") from e

    return HKDF(
        algorithm=hashes.SHA256(),
        length=SESSION_KEY_SIZE,
        salt=None,
        info=HKDF_INFO,
    ).derive(shared)


def fingerprint(session_key: bytes, salt: str | bytes) -> str:
    """Short, human-comparable digest of a session key combined with a salt."""
    if isinstance(salt, str):
        salt = salt.encode("utf-8")
    return hashlib.sha256(session_key + salt).hexdigest()[:FINGERPRINT_LENGTH]


@dataclass(slots=True)
class KeyExchange:
    """
    Key material for one end of one connection.

    Operations that touch the key material are coroutines serialized by a
    lock: a second call issued while one is pending waits its turn rather
    than interleaving against the same keys.

    Usage:
        kx = KeyExchange()
        await kx.generate_keys()
        announce(kx.export_public_key())
        key = await kx.derive_shared_secret(remote_public_key)
        print(await kx.verification_fingerprint("1700000000000:1700000000042"))
    """

    _private_key: x25519.X25519PrivateKey | None = field(default=None, repr=False)
    """Ephemeral private key, regenerated every session."""

    _shared_secret: bytes | None = field(default=None, repr=False)
    """Derived symmetric key, absent until a peer key is processed."""

    _lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)
    """Serializes operations on the key material."""

    @property
    def has_keys(self) -> bool:
        """Whether a local key pair exists."""
        return self._private_key is not None

    @property
    def has_shared_secret(self) -> bool:
        """Whether a shared secret has been derived."""
        return self._shared_secret is not None

    async def generate_keys(self) -> None:
        """
        Generate a fresh ephemeral key pair.

        Any previously derived secret belonged to the old key pair and is
        discarded.
        """
        async with self._lock:
            self._private_key = x25519.X25519PrivateKey.generate()
            self._shared_secret = None
        logger.debug("Generated ephemeral key pair")

    def export_public_key(self) -> str:
        """
        Return the local public key in its wire representation.

        Raises:
            KeyExchangeError: If no key pair has been generated.
        """
        if self._private_key is None:
            raise KeyExchangeError("No local key pair to export")
        return encode_public_key(self._private_key.public_key())

    async def derive_shared_secret(self, peer_public_key: str) -> bytes:
        """
        Import the peer's public key and derive the shared session key.

        Args:
            peer_public_key: Peer key as produced by `export_public_key`.

        Returns:
            The derived 32-byte session key, also retained by this object.

        Raises:
            KeyExchangeError: If no local key pair exists or the peer key is malformed.
        """
        async with self._lock:
            if self._private_key is None:
                raise KeyExchangeError("No local key pair; generate keys before deriving")

            remote = decode_public_key(peer_public_key)
            self._shared_secret = derive_session_key(self._private_key, remote)

        logger.debug("Derived shared secret from peer key %s...", peer_public_key[:12])
        return self._shared_secret

    async def verification_fingerprint(self, salt: str | bytes) -> str:
        """
        Digest of the shared secret and a salt for out-of-band comparison.

        Raises:
            KeyExchangeError: If no shared secret has been derived.
        """
        async with self._lock:
            if self._shared_secret is None:
                raise KeyExchangeError("No shared secret established")
            return fingerprint(self._shared_secret, salt)

    def clear(self) -> None:
        """Forget the key pair and any derived secret."""
        self._private_key = None
        self._shared_secret = None
