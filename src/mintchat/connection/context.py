"""
Application context shared by the connection manager and the UI.

Holds the small amount of session state the chat needs: who we are,
which room we are in, and who else is present. There are no module-level
globals; the application root creates one context and passes it down.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from mintchat.protocol import now_ms
from mintchat.types import PeerId, Timestamp


@dataclass(slots=True)
class ChatUser:
    """A participant in the current room."""

    peer_id: PeerId
    """Transport-verified identifier."""

    is_host: bool = False
    """Whether this participant hosts the room."""

    joined_at: Timestamp = field(default_factory=now_ms)
    """When the participant was added locally."""


@dataclass(slots=True)
class ChatContext:
    """Session state owned by the application root."""

    local_id: PeerId
    """Our own transport identifier."""

    room_id: PeerId | None = None
    """Id of the room's host, or None when not in a room."""

    users: dict[PeerId, ChatUser] = field(default_factory=dict)
    """Known participants keyed by peer id."""

    @property
    def is_host(self) -> bool:
        """Whether we host the current room."""
        return self.room_id is not None and self.room_id == self.local_id

    @property
    def in_room(self) -> bool:
        """Whether a room is active."""
        return self.room_id is not None

    def add_user(self, peer_id: PeerId, is_host: bool = False) -> ChatUser:
        """Add a participant, replacing any previous entry for the same id."""
        user = ChatUser(peer_id, is_host)
        self.users[peer_id] = user
        return user

    def remove_user(self, peer_id: PeerId) -> ChatUser | None:
        """Remove a participant. Returns the removed entry, if any."""
        return self.users.pop(peer_id, None)

    def clear_users(self) -> None:
        """Forget all participants."""
        self.users.clear()

    def reset(self) -> None:
        """Leave the room."""
        self.room_id = None
        self.users.clear()
