"""
Connection manager: lifecycle, key exchange, relay and sender verification.

The ConnectionManager owns every PeerConnection and is the only component
that talks to both the transport and the UI:

    Transport --bytes--> queue --worker--> decode --> UI events
                                             |
                                             +--> relay to other peers
    UI command --> envelope --> seal per peer --> Transport

Key exchange
------------
Both sides announce a fresh public key as soon as a connection opens. A
side that receives an announcement before it has keys generates them and
replies first. Once a side holds the peer's key, it derives the pairwise
secret and the connection becomes SECURE.

Every connection has its own key pair and its own secret. A host relaying
between two joiners decrypts under one pairwise key and re-encrypts under
the other, so no peer ever encrypts under a key derived with someone else.

Sender verification
-------------------
The sender of every inbound message is the connection it arrived on.
Envelopes never carry a trusted sender field; whatever a payload claims
about its origin is dropped during parsing.

Relay
-----
The room is a star around the host. Content received from one peer is
forwarded to every other SECURE connection, never back to its origin.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from pathlib import Path

from mintchat import media
from mintchat.config import (
    NOTIFY_BRIEF_MS,
    NOTIFY_HOST_MS,
    NOTIFY_LONG_MS,
    NOTIFY_SHORT_MS,
    ChatConfig,
)
from mintchat.errors import (
    DecryptionError,
    KeyExchangeError,
    MediaConversionError,
    NoSessionKeyError,
    ProtocolViolation,
    TransportError,
)
from mintchat.protocol import (
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
    decode_transport,
    encode,
    now_ms,
    seal,
    unseal,
)
from mintchat.transport import Transport, TransportConnection
from mintchat.types import PeerId

from .context import ChatContext
from .events import ChatEvents, Severity
from .types import (
    ConnectionClosed,
    ConnectionEvent,
    ConnectionOpened,
    ConnectionState,
    DataReceived,
    PeerConnection,
    Role,
)

logger = logging.getLogger(__name__)

SYSTEM_SENDER_ID = "system"
"""Sender id of locally generated notices."""

SYSTEM_SENDER_NAME = "System"
"""Sender name of locally generated notices."""

OWN_SENDER_NAME = "You"
"""Sender name of locally authored messages."""

NO_SHARED_KEY_WARNING = "No shared key available for encryption"
"""Notification shown when content is refused for lack of a key."""


@dataclass(slots=True)
class ConnectionManager:
    """
    Drives all peer connections of one chat client.

    Usage:
        context = ChatContext(local_id=transport.local_id)
        manager = ConnectionManager(transport, ui, context)
        manager.host()                        # or: await manager.connect_to(room_id)
        await manager.send_text("hello")
        await manager.leave()
    """

    transport: Transport
    """Peer transport. Inbound connections are registered on construction."""

    events: ChatEvents
    """UI sink."""

    context: ChatContext
    """Session state shared with the application root."""

    config: ChatConfig = field(default_factory=ChatConfig)
    """Timeouts and limits."""

    _connections: dict[PeerId, PeerConnection] = field(default_factory=dict)
    """Live connections keyed by peer id. Closed connections are removed."""

    def __post_init__(self) -> None:
        self.transport.on_connection(self.accept)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def connections(self) -> dict[PeerId, PeerConnection]:
        """Snapshot of live connections."""
        return dict(self._connections)

    @property
    def has_session_key(self) -> bool:
        """Whether any connection has a derived shared secret."""
        return any(conn.is_secure for conn in self._connections.values())

    def get(self, peer_id: PeerId) -> PeerConnection | None:
        """Look up a live connection."""
        return self._connections.get(peer_id)

    async def fingerprint(self, peer_id: PeerId) -> str:
        """
        Verification fingerprint of the secret shared with one peer.

        Both ends of a connection compute the same value. Users compare it
        out of band to detect a man in the middle.

        Raises:
            KeyExchangeError: If there is no SECURE connection to the peer.
        """
        conn = self._connections.get(peer_id)
        if conn is None or not conn.is_secure:
            raise KeyExchangeError(f"No secure connection to {peer_id}")
        return await conn.key_exchange.verification_fingerprint(conn.fingerprint_salt)

    # ------------------------------------------------------------------
    # UI commands
    # ------------------------------------------------------------------

    def host(self) -> PeerId:
        """
        Start hosting a room.

        The local transport id becomes the room id. Opens nothing; peers
        arrive through `accept`.
        """
        room_id = self.context.local_id
        self.context.room_id = room_id
        self.context.add_user(room_id, is_host=True)
        self.events.on_user_joined(room_id, True)
        self.events.on_notify(
            f"Hosting chat! Share this ID: {room_id}", NOTIFY_HOST_MS, Severity.SUCCESS
        )
        logger.info("Hosting room %s", room_id)
        return room_id

    async def connect_to(self, remote_id: PeerId) -> PeerConnection:
        """
        Join the room hosted by `remote_id`.

        On failure or timeout the connection ends CLOSED, the user list is
        cleared and the UI is sent home.

        Returns:
            The connection: open with key exchange under way, or CLOSED on failure.
        """
        existing = self._connections.get(remote_id)
        if existing is not None:
            self.events.on_notify(
                f"Already connected to {self._display_name(remote_id)}",
                NOTIFY_SHORT_MS,
                Severity.WARNING,
            )
            return existing

        self.events.on_notify(
            f"Connecting to {self._display_name(remote_id)}...", NOTIFY_SHORT_MS, Severity.INFO
        )

        conn = PeerConnection(peer_id=remote_id, role=Role.INITIATOR)
        conn.state = ConnectionState.OPENING

        try:
            handle = await asyncio.wait_for(
                self.transport.dial(remote_id), self.config.connect_timeout_secs
            )
        except (TimeoutError, TransportError) as e:
            conn.state = ConnectionState.CLOSED
            logger.warning("Connect to %s failed: %s", remote_id, str(e) or "timed out")
            self._system_notice(
                f"Failed to connect to {self._display_name(remote_id)}"
                " - peer not found or unreachable"
            )
            self.events.on_connection_status(False)
            self.context.clear_users()
            self.events.on_users_cleared()
            self.events.on_return_home()
            return conn

        conn.handle = handle
        self.context.room_id = remote_id
        self._register(conn)

        logger.info("Connected to %s", remote_id)
        self.events.on_connection_status(True)
        self._system_notice(f"Connected to {self._display_name(remote_id)}!")
        self.context.add_user(remote_id, is_host=True)
        self.events.on_user_joined(remote_id, True)
        self.context.add_user(self.context.local_id, is_host=False)
        self.events.on_user_joined(self.context.local_id, False)
        return conn

    async def accept(self, handle: TransportConnection) -> None:
        """Take ownership of an inbound transport connection."""
        if handle.peer_id in self._connections:
            logger.warning("Duplicate connection from %s rejected", handle.peer_id)
            await handle.close()
            return

        conn = PeerConnection(peer_id=handle.peer_id, role=Role.ACCEPTOR, handle=handle)
        conn.state = ConnectionState.OPENING
        self._register(conn)
        logger.info("Accepted connection from %s", handle.peer_id)

    async def send_text(self, content: str) -> DisplayMessage | None:
        """
        Send a text message to the room.

        Returns:
            The locally displayed copy, or None if the send was refused.
        """
        try:
            await self.broadcast(TextEnvelope(content=content))
        except NoSessionKeyError:
            return None

        message = self._own_message(content, MessageKind.TEXT)
        logger.debug("Sent text (%d chars)", len(content))
        return message

    async def send_file(self, path: str | Path) -> DisplayMessage | None:
        """
        Share a file with the room.

        The file is checked against the size limit and read whole before
        anything is sent.

        Returns:
            The locally displayed copy, or None if the send was refused or failed.
        """
        path = Path(path)
        if not self.has_session_key:
            self._refuse_unkeyed()
            return None

        self.events.on_notify(f"Uploading {path.name}...", NOTIFY_BRIEF_MS, Severity.INFO)
        try:
            attachment = await media.encode_file(path, max_bytes=self.config.max_media_bytes)
        except MediaConversionError as e:
            logger.warning("Cannot send %s: %s", path, e.message)
            self.events.on_notify(
                f"Failed to send {path.name}: {e.message}", NOTIFY_LONG_MS, Severity.ERROR
            )
            return None

        kind = media.classify(attachment.mime_type)
        try:
            await self.broadcast(MediaEnvelope(type=kind.value, data=attachment))
        except NoSessionKeyError:
            return None

        message = self._own_message(
            media.describe(kind, attachment.filename), kind, attachment
        )
        self.events.on_notify(f"{path.name} sent successfully!", NOTIFY_BRIEF_MS, Severity.SUCCESS)
        logger.debug("Sent %s %s (%d bytes)", kind, attachment.filename, attachment.size_bytes)
        return message

    async def leave(self) -> None:
        """Close every connection and leave the room."""
        for conn in list(self._connections.values()):
            await self._teardown(conn)

        self.context.reset()
        self.events.on_users_cleared()
        self.events.on_connection_status(False)
        self._system_notice("You left the chat")
        logger.info("Left the chat")

    # ------------------------------------------------------------------
    # Broadcast and disconnect
    # ------------------------------------------------------------------

    async def broadcast(
        self,
        envelope: ContentMessage | KeyExchangeEnvelope,
        exclude_peer_id: PeerId | None = None,
    ) -> int:
        """
        Send an envelope to every eligible connection except one.

        Content envelopes are sealed separately under each SECURE
        connection's key. Key exchange envelopes go out in the clear to
        every open connection.

        Returns:
            Number of connections the envelope was sent to.

        Raises:
            NoSessionKeyError: If content is sent before any secret exists.
                The UI has already been warned.
        """
        if isinstance(envelope, KeyExchangeEnvelope):
            targets = self._targets(exclude_peer_id, secure_only=False)
            payload = encode(envelope)
            sent = 0
            for conn in targets:
                if await self._send(conn, payload):
                    sent += 1
            return sent

        if not self.has_session_key:
            self._refuse_unkeyed()
            raise NoSessionKeyError(NO_SHARED_KEY_WARNING)

        return await self._send_sealed(envelope, self._targets(exclude_peer_id, secure_only=True))

    async def handle_disconnect(self, peer_id: PeerId) -> None:
        """
        Remove a peer after its connection closed.

        Idempotent: a second call for the same peer does nothing.
        """
        conn = self._connections.get(peer_id)
        if conn is None:
            return
        await self._teardown(conn)

        logger.info("Peer %s disconnected", peer_id)
        self._system_notice(f"[{self._short_id(peer_id)}] has disconnected.")
        self.context.remove_user(peer_id)
        self.events.on_user_left(peer_id)

        if not self._connections:
            self.events.on_connection_status(False)
            self._system_notice("All users have disconnected.")

    async def settle(self) -> None:
        """Wait until every queued connection event has been handled."""
        while True:
            pending = [conn.queue.join() for conn in self._connections.values()]
            if not pending:
                return
            await asyncio.gather(*pending)
            if all(conn.queue.empty() for conn in self._connections.values()):
                return

    # ------------------------------------------------------------------
    # Connection workers
    # ------------------------------------------------------------------

    def _register(self, conn: PeerConnection) -> None:
        """Start tracking a connection whose transport is open."""
        assert conn.handle is not None
        self._connections[conn.peer_id] = conn

        # Opened must precede any data in the queue.
        conn.queue.put_nowait(ConnectionOpened())

        async def on_data(data: bytes) -> None:
            conn.queue.put_nowait(DataReceived(data))

        async def on_close() -> None:
            conn.queue.put_nowait(ConnectionClosed("remote closed"))

        conn.handle.set_handlers(on_data, on_close)
        conn.worker = asyncio.create_task(self._run_worker(conn))

    async def _run_worker(self, conn: PeerConnection) -> None:
        """Consume one connection's events in order until it closes."""
        while True:
            event = await conn.queue.get()
            try:
                await self._handle_event(conn, event)
            except Exception:
                logger.exception("Unexpected error handling %r from %s", event, conn.peer_id)
                await self.handle_disconnect(conn.peer_id)
            finally:
                conn.queue.task_done()

            if conn.state is ConnectionState.CLOSED:
                while not conn.queue.empty():
                    conn.queue.get_nowait()
                    conn.queue.task_done()
                return

    async def _handle_event(self, conn: PeerConnection, event: ConnectionEvent) -> None:
        if conn.state is ConnectionState.CLOSED:
            return

        match event:
            case ConnectionOpened():
                await self._on_opened(conn)
            case DataReceived(data=data):
                await self._on_data(conn, data)
            case ConnectionClosed(reason=reason):
                logger.debug("Connection to %s closed: %s", conn.peer_id, reason)
                if self._connections.get(conn.peer_id) is conn:
                    await self.handle_disconnect(conn.peer_id)

    async def _on_opened(self, conn: PeerConnection) -> None:
        conn.state = ConnectionState.KEY_PENDING

        if conn.role is Role.ACCEPTOR:
            self._system_notice(f"[{self._short_id(conn.peer_id)}] has joined.")
            self.context.add_user(conn.peer_id, is_host=False)
            self.events.on_user_joined(conn.peer_id, False)
            self.events.on_connection_status(True)

        await self._initiate_key_exchange(conn)

    async def _teardown(self, conn: PeerConnection) -> None:
        """Close a connection and drop its key material."""
        if self._connections.get(conn.peer_id) is conn:
            del self._connections[conn.peer_id]
        conn.state = ConnectionState.CLOSED
        conn.clear_keys()

        if conn.handle is not None:
            try:
                await conn.handle.close()
            except TransportError as e:
                logger.debug("Error closing connection to %s: %s", conn.peer_id, e)

        # Wakes an idle worker so it notices the CLOSED state and exits.
        if conn.worker is not None and conn.worker is not asyncio.current_task():
            conn.queue.put_nowait(ConnectionClosed("torn down"))

    # ------------------------------------------------------------------
    # Key exchange
    # ------------------------------------------------------------------

    async def _initiate_key_exchange(self, conn: PeerConnection) -> None:
        """Generate fresh keys for the connection and announce the public half."""
        await conn.key_exchange.generate_keys()
        conn.channel.clear()
        await self._announce_key(conn)
        self._system_notice("🔄 Initiating key exchange...")

    async def _announce_key(self, conn: PeerConnection) -> None:
        conn.key_announced_at = now_ms()
        envelope = KeyExchangeEnvelope(
            timestamp=conn.key_announced_at,
            data=KeyExchangeData(
                public_key=conn.key_exchange.export_public_key(),
                timestamp=conn.key_announced_at,
            ),
        )
        await self._send(conn, encode(envelope))
        logger.debug("Announced public key to %s", conn.peer_id)

    async def _on_key_exchange(self, conn: PeerConnection, envelope: KeyExchangeEnvelope) -> None:
        public_key = envelope.data.public_key

        # A peer may announce before our own announcement was generated.
        if not conn.key_exchange.has_keys:
            await conn.key_exchange.generate_keys()
            await self._announce_key(conn)

        self._system_notice(f"Received public key: {public_key[:16]}...")
        try:
            session_key = await conn.key_exchange.derive_shared_secret(public_key)
        except KeyExchangeError as e:
            logger.warning("Key exchange with %s failed: %s", conn.peer_id, e.message)
            self._system_notice(f"Key exchange failed: {e.message}")
            return

        conn.channel.bind(session_key)
        conn.remote_key_timestamp = envelope.data.timestamp
        conn.state = ConnectionState.SECURE

        fingerprint = await conn.key_exchange.verification_fingerprint(conn.fingerprint_salt)
        logger.info("Secure session with %s (fingerprint %s)", conn.peer_id, fingerprint)
        self._system_notice(f"Computed shared secret key: {fingerprint}")
        self._system_notice(
            "Key exchange complete! To verify integrity, "
            "compare the final key with the other party."
        )

    # ------------------------------------------------------------------
    # Inbound dispatch
    # ------------------------------------------------------------------

    async def _on_data(self, conn: PeerConnection, data: bytes) -> None:
        try:
            envelope = decode_transport(data)
        except ProtocolViolation as e:
            self._reject(conn, e)
            return

        match envelope:
            case KeyExchangeEnvelope():
                await self._on_key_exchange(conn, envelope)

            case SystemEnvelope():
                self._reject(
                    conn,
                    ProtocolViolation("remote system envelope", peer_id=conn.peer_id),
                    f"⚠️ Security Warning: Peer {self._short_id(conn.peer_id)}"
                    " attempted to send a system message (blocked)",
                )

            case EncryptedEnvelope():
                try:
                    content = await unseal(conn.channel, envelope)
                except DecryptionError as e:
                    logger.warning("Dropped message from %s: %s", conn.peer_id, e.message)
                    self._system_notice(
                        "🔒❌ Failed to decrypt message. It may be corrupted or tampered with."
                    )
                    return
                except ProtocolViolation as e:
                    self._reject(conn, e)
                    return
                await self._deliver(conn, content, encrypted=True)

            case TextEnvelope() | MediaEnvelope():
                self._system_notice(
                    "⚠️ WARNING: This message was sent UNENCRYPTED and could be intercepted!"
                )
                await self._deliver(conn, envelope, encrypted=False)

            case LegacyText(content=text):
                logger.debug("Legacy message from %s", conn.peer_id)
                self._system_notice(
                    "⚠️ WARNING: This message was sent UNENCRYPTED and could be intercepted!"
                )
                await self._deliver(conn, TextEnvelope(content=text), encrypted=False)

    async def _deliver(
        self,
        conn: PeerConnection,
        content: ContentMessage,
        encrypted: bool,
    ) -> None:
        """Show content attributed to the connection's peer, then relay it."""
        match content:
            case TextEnvelope(content=text):
                message = DisplayMessage(
                    content=text,
                    sender_id=conn.peer_id,
                    sender_name=self._display_name(conn.peer_id),
                    kind=MessageKind.TEXT,
                    encrypted=encrypted,
                )
            case MediaEnvelope(data=attachment):
                message = DisplayMessage(
                    content=media.describe(content.kind, attachment.filename),
                    sender_id=conn.peer_id,
                    sender_name=self._display_name(conn.peer_id),
                    kind=content.kind,
                    media=attachment,
                    encrypted=encrypted,
                )

        self.events.on_message(message)
        await self._relay(content, conn.peer_id)

    async def _relay(self, content: ContentMessage, origin: PeerId) -> None:
        """Forward content to every other SECURE connection."""
        targets = self._targets(origin, secure_only=True)
        if not targets:
            return
        sent = await self._send_sealed(content, targets)
        logger.debug("Relayed %s from %s to %d peers", content.kind, origin, sent)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _targets(self, exclude_peer_id: PeerId | None, secure_only: bool) -> list[PeerConnection]:
        """Snapshot of eligible connections."""
        return [
            conn
            for conn in list(self._connections.values())
            if conn.peer_id != exclude_peer_id
            and (conn.is_secure if secure_only else conn.is_open)
        ]

    async def _send_sealed(self, content: ContentMessage, targets: list[PeerConnection]) -> int:
        sent = 0
        for conn in targets:
            # The connection may have closed while an earlier send was in flight.
            if not conn.is_secure:
                continue
            try:
                sealed = await seal(conn.channel, content)
            except NoSessionKeyError:
                logger.debug("Skipped %s: key cleared during broadcast", conn.peer_id)
                continue
            if await self._send(conn, encode(sealed)):
                sent += 1
        return sent

    async def _send(self, conn: PeerConnection, payload: bytes) -> bool:
        """Write to one connection. A failed write schedules its disconnect."""
        if conn.handle is None:
            return False
        try:
            await conn.handle.send(payload)
        except TransportError as e:
            logger.warning("Send to %s failed: %s", conn.peer_id, e.message)
            conn.queue.put_nowait(ConnectionClosed("send failed"))
            return False
        return True

    def _reject(
        self, conn: PeerConnection, violation: ProtocolViolation, notice: str | None = None
    ) -> None:
        logger.warning("Dropped message from %s: %s", conn.peer_id, violation.message)
        self._system_notice(
            notice
            or f"⚠️ Security Warning: Peer {self._short_id(conn.peer_id)}"
            f" sent an invalid message (blocked)"
        )

    def _refuse_unkeyed(self) -> None:
        logger.warning("No shared key available for encryption; send refused")
        self.events.on_notify(NO_SHARED_KEY_WARNING, NOTIFY_SHORT_MS, Severity.WARNING)

    def _own_message(
        self,
        content: str,
        kind: MessageKind,
        attachment: MediaAttachment | None = None,
    ) -> DisplayMessage:
        message = DisplayMessage(
            content=content,
            sender_id=self.context.local_id,
            sender_name=OWN_SENDER_NAME,
            kind=kind,
            media=attachment,
            is_own=True,
        )
        self.events.on_message(message)
        return message

    def _system_notice(self, text: str) -> None:
        self.events.on_message(
            DisplayMessage(
                content=text,
                sender_id=SYSTEM_SENDER_ID,
                sender_name=SYSTEM_SENDER_NAME,
                kind=MessageKind.SYSTEM,
                encrypted=False,
            )
        )

    def _display_name(self, peer_id: PeerId) -> str:
        return peer_id[: self.config.display_name_length]

    def _short_id(self, peer_id: PeerId) -> str:
        return peer_id[: self.config.short_id_length]
