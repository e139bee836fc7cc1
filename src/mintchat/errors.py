"""
Exception hierarchy for the chat protocol layer.

None of these errors is fatal to the process. The worst outcome of any of
them is a single connection transitioning to CLOSED:

    TransportError        -> connection failed, UI returns home
    KeyExchangeError      -> system notice, retried on the next key event
    NoSessionKeyError     -> send refused
    DecryptionError       -> message dropped, tamper warning
    ProtocolViolation     -> message dropped, security warning
    MediaConversionError  -> send aborted, UI warning
"""

from __future__ import annotations


class ChatError(Exception):
    """
    Base exception for all chat protocol errors.

    Attributes:
        message: Human-readable error description.
    """

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r})"


class TransportError(ChatError):
    """Raised when a connection cannot be opened, times out, or fails to send."""


class KeyExchangeError(ChatError):
    """Raised when key material is missing or a peer public key is malformed."""


class NoSessionKeyError(ChatError):
    """Raised when encryption is attempted before a shared secret is bound."""


class DecryptionError(ChatError):
    """
    Raised when a payload cannot be authenticated or decrypted.

    Covers a failed authentication tag, malformed nonce or ciphertext, and
    an absent key. These cases are indistinguishable to the caller.
    """


class ProtocolViolation(ChatError):
    """
    Raised when a remote peer sends something the protocol forbids.

    Attributes:
        peer_id: The offending peer, when known.
    """

    def __init__(self, message: str, *, peer_id: str | None = None) -> None:
        self.peer_id = peer_id
        super().__init__(message)


class MediaConversionError(ChatError):
    """Raised when a file is too large, unreadable, or carries invalid inline data."""
