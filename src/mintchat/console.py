"""
Terminal rendering of chat events.

ConsoleUI is the UI collaborator used by the command-line client. It
prints conversation lines and notifications, keeps the participant list
for the `/users` command, and saves received attachments to disk.
"""

from __future__ import annotations

import logging
import sys
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import TextIO

from mintchat import media
from mintchat.connection import Severity
from mintchat.errors import MediaConversionError
from mintchat.protocol import DisplayMessage, MessageKind
from mintchat.types import PeerId

logger = logging.getLogger(__name__)

GREY = "\x1b[38;5;244m"
GREEN = "\x1b[38;5;40m"
YELLOW = "\x1b[38;5;220m"
RED = "\x1b[38;5;196m"
CYAN = "\x1b[38;5;51m"
BLUE = "\x1b[38;5;39m"
RESET = "\x1b[0m"

SEVERITY_COLORS = {
    Severity.INFO: BLUE,
    Severity.SUCCESS: GREEN,
    Severity.WARNING: YELLOW,
    Severity.ERROR: RED,
}


def _unique_path(path: Path) -> Path:
    """Return `path`, or `stem (N)suffix` for the first N that is free."""
    candidate = path
    counter = 1
    while candidate.exists():
        candidate = path.with_name(f"{path.stem} ({counter}){path.suffix}")
        counter += 1
    return candidate


@dataclass(slots=True)
class ConsoleUI:
    """Prints chat events to a text stream."""

    out: TextIO = field(default_factory=lambda: sys.stdout)
    """Destination stream."""

    color: bool = True
    """Whether to emit ANSI colors."""

    download_dir: Path | None = None
    """Where received attachments are saved. None disables saving."""

    users: dict[PeerId, bool] = field(default_factory=dict)
    """Participants and whether each hosts the room."""

    connected: bool = False
    """Last reported connection status."""

    home_requested: bool = False
    """Set when the manager asks to return to the home screen."""

    def on_user_joined(self, peer_id: PeerId, is_host: bool) -> None:
        self.users[peer_id] = is_host

    def on_user_left(self, peer_id: PeerId) -> None:
        self.users.pop(peer_id, None)

    def on_users_cleared(self) -> None:
        self.users.clear()

    def on_connection_status(self, connected: bool) -> None:
        if connected != self.connected:
            self.connected = connected
            status = "Connected" if connected else "Waiting for connection..."
            self._print(f"Status: {status}", GREY)

    def on_message(self, message: DisplayMessage) -> None:
        stamp = time.strftime("%H:%M:%S", time.localtime(message.timestamp / 1000))

        if message.kind is MessageKind.SYSTEM:
            self._print(f"[{stamp}] * {message.content}", GREY)
            return

        lock = "🔒" if message.encrypted else "🔓"
        name = self._paint(message.sender_name, GREEN if message.is_own else CYAN)
        self._print(f"[{stamp}] {lock} {name}: {message.content}")

        if message.media is not None and not message.is_own:
            self._save_attachment(message)

    def on_notify(self, text: str, duration_ms: int, severity: Severity) -> None:
        self._print(f"[{severity}] {text}", SEVERITY_COLORS.get(severity, RESET))

    def on_return_home(self) -> None:
        self.home_requested = True
        self._print("Returned to home screen.", GREY)

    def _save_attachment(self, message: DisplayMessage) -> None:
        if self.download_dir is None or message.media is None:
            return

        attachment = message.media
        try:
            data = media.decode(attachment)
        except MediaConversionError as e:
            logger.warning("Discarded attachment from %s: %s", message.sender_id, e.message)
            self._print(f"Attachment {attachment.filename} is corrupt; not saved", YELLOW)
            return

        # The sender chooses the name; keep only its final component.
        name = Path(attachment.filename).name
        if name in ("", ".", ".."):
            name = "attachment"
        self.download_dir.mkdir(parents=True, exist_ok=True)
        target = _unique_path(self.download_dir / name)
        target.write_bytes(data)
        self._print(f"Saved {attachment.filename} to {target}", GREY)

    def _paint(self, text: str, color: str) -> str:
        return f"{color}{text}{RESET}" if self.color else text

    def _print(self, text: str, color: str | None = None) -> None:
        print(self._paint(text, color) if color else text, file=self.out, flush=True)
