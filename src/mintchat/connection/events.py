"""
Events produced for the UI collaborator.

The connection manager reports everything user-visible through a
ChatEvents implementation. Callbacks are synchronous: they must only
record or render, never block or call back into the manager.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Protocol, runtime_checkable

from mintchat.protocol import DisplayMessage
from mintchat.types import PeerId


class Severity(StrEnum):
    """Notification severity, for styling."""

    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


@runtime_checkable
class ChatEvents(Protocol):
    """Sink for protocol events."""

    def on_user_joined(self, peer_id: PeerId, is_host: bool) -> None:
        """A participant was added to the room."""
        ...

    def on_user_left(self, peer_id: PeerId) -> None:
        """A participant left the room."""
        ...

    def on_users_cleared(self) -> None:
        """The participant list was emptied."""
        ...

    def on_connection_status(self, connected: bool) -> None:
        """At least one peer is (or no peer is) connected."""
        ...

    def on_message(self, message: DisplayMessage) -> None:
        """A message should be shown in the conversation."""
        ...

    def on_notify(self, text: str, duration_ms: int, severity: Severity) -> None:
        """A transient notification should be shown."""
        ...

    def on_return_home(self) -> None:
        """The UI should leave the chat view."""
        ...
