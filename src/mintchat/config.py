"""
Chat Configuration

Protocol constants and runtime configuration for the chat client.
"""

from typing import Final

from mintchat.types import StrictBaseModel

CONNECT_TIMEOUT_SECS: Final = 10.0
"""Time allowed for an outbound connection to open before the peer is declared unreachable."""

MAX_MEDIA_BYTES: Final = 5 * 1024 * 1024
"""Largest file accepted for sending. The whole file travels inside one envelope."""

DISPLAY_NAME_LENGTH: Final = 8
"""Number of peer id characters shown as a peer's display name."""

SHORT_ID_LENGTH: Final = 6
"""Number of peer id characters shown in system notices."""

FINGERPRINT_LENGTH: Final = 16
"""Number of hex characters in a key verification fingerprint."""

NOTIFY_BRIEF_MS: Final = 2000
"""Display duration for transient progress notifications."""

NOTIFY_SHORT_MS: Final = 3000
"""Display duration for routine notifications."""

NOTIFY_LONG_MS: Final = 5000
"""Display duration for errors the user should read."""

NOTIFY_HOST_MS: Final = 8000
"""Display duration for the room id shown after hosting."""


class ChatConfig(StrictBaseModel):
    """Runtime configuration for the connection manager."""

    connect_timeout_secs: float = CONNECT_TIMEOUT_SECS
    """Timeout for an outbound connection to reach the open state."""

    max_media_bytes: int = MAX_MEDIA_BYTES
    """Maximum size of a file that may be sent."""

    display_name_length: int = DISPLAY_NAME_LENGTH
    """Peer id prefix length used as display name."""

    short_id_length: int = SHORT_ID_LENGTH
    """Peer id prefix length used in notices."""
