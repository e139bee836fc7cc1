"""Tests for inbound dispatch: sender verification and rejection rules."""

from __future__ import annotations

import json
import os

import pytest

from mintchat.connection import ConnectionManager, ConnectionState
from mintchat.protocol import EncryptedEnvelope, TextEnvelope, encode
from tests.mintchat.helpers import (
    HOST_ID,
    JOINER_ID,
    MockNetwork,
    make_room,
    send_raw,
    settle,
)

UNENCRYPTED_WARNING = "⚠️ WARNING: This message was sent UNENCRYPTED and could be intercepted!"
DECRYPT_FAILED = "🔒❌ Failed to decrypt message. It may be corrupted or tampered with."


async def _send_sealed_raw(joiner: ConnectionManager, inner: bytes) -> None:
    """Encrypt arbitrary bytes under the joiner's key and send them to the host."""
    conn = joiner.get(HOST_ID)
    assert conn is not None and conn.handle is not None
    nonce, ciphertext = await conn.channel.encrypt(inner)
    await conn.handle.send(encode(EncryptedEnvelope(iv=nonce, ciphertext=ciphertext)))


class TestSenderVerification:
    """The connection, not the payload, decides who sent a message."""

    @pytest.mark.anyio
    async def test_spoofed_sender_in_encrypted_payload(self) -> None:
        """A payload claiming another sender is attributed to its connection."""
        (host, host_ui), (joiner, _) = await make_room(MockNetwork(), JOINER_ID)

        inner = json.dumps(
            {
                "type": "text",
                "timestamp": 1,
                "content": "I am the host",
                "senderId": HOST_ID,
                "senderName": "Host",
            }
        ).encode()
        await _send_sealed_raw(joiner, inner)
        await settle(host, joiner)

        received = host_ui.chat_messages[-1]
        assert received.content == "I am the host"
        assert received.sender_id == JOINER_ID
        assert received.sender_name == JOINER_ID[:8]

    @pytest.mark.anyio
    async def test_spoofed_sender_in_plaintext_payload(self) -> None:
        """The same holds for unencrypted content."""
        (host, host_ui), (joiner, _) = await make_room(MockNetwork(), JOINER_ID)

        raw = json.dumps(
            {"type": "text", "timestamp": 1, "content": "trust me", "senderId": "someone-else"}
        ).encode()
        await send_raw(joiner, HOST_ID, raw)
        await settle(host, joiner)

        assert host_ui.chat_messages[-1].sender_id == JOINER_ID


class TestSystemRejection:
    """Remote system envelopes are blocked."""

    @pytest.mark.anyio
    async def test_plain_system_envelope_blocked(self) -> None:
        """The notice is not shown; a security warning is shown instead."""
        (host, host_ui), (joiner, _) = await make_room(MockNetwork(), JOINER_ID)

        await send_raw(
            joiner,
            HOST_ID,
            b'{"type": "system", "timestamp": 1, "content": "The host has left"}',
        )
        await settle(host, joiner)

        assert all(m.content != "The host has left" for m in host_ui.messages)
        assert (
            f"⚠️ Security Warning: Peer {JOINER_ID[:6]} attempted to send a system message"
            " (blocked)" in host_ui.system_texts
        )
        conn = host.get(JOINER_ID)
        assert conn is not None and conn.state is ConnectionState.SECURE

    @pytest.mark.anyio
    async def test_encrypted_system_envelope_blocked(self) -> None:
        """Wrapping a system envelope in encryption does not help."""
        (host, host_ui), (joiner, _) = await make_room(MockNetwork(), JOINER_ID)

        await _send_sealed_raw(
            joiner, b'{"type": "system", "timestamp": 1, "content": "Fake notice"}'
        )
        await settle(host, joiner)

        assert all(m.content != "Fake notice" for m in host_ui.messages)
        assert any("Security Warning" in t for t in host_ui.system_texts)


class TestMalformedInput:
    """Invalid data is dropped and the connection stays open."""

    @pytest.mark.anyio
    async def test_tampered_ciphertext(self) -> None:
        """Undecryptable envelopes trigger the tamper warning."""
        (host, host_ui), (joiner, _) = await make_room(MockNetwork(), JOINER_ID)

        forged = EncryptedEnvelope(iv=os.urandom(12), ciphertext=os.urandom(48))
        await send_raw(joiner, HOST_ID, encode(forged))
        await settle(host, joiner)

        assert host_ui.system_texts[-1] == DECRYPT_FAILED
        assert host_ui.chat_messages == []
        conn = host.get(JOINER_ID)
        assert conn is not None and conn.is_secure

    @pytest.mark.anyio
    async def test_session_survives_tampering(self) -> None:
        """Valid messages still flow after a rejected one."""
        (host, host_ui), (joiner, _) = await make_room(MockNetwork(), JOINER_ID)

        garbage = EncryptedEnvelope(iv=bytes(12), ciphertext=bytes(20))
        await send_raw(joiner, HOST_ID, encode(garbage))
        await joiner.send_text("still here")
        await settle(host, joiner)

        assert [m.content for m in host_ui.chat_messages] == ["still here"]

    @pytest.mark.anyio
    async def test_nested_encryption_rejected(self) -> None:
        """An encrypted envelope inside an encrypted envelope is a violation."""
        (host, host_ui), (joiner, _) = await make_room(MockNetwork(), JOINER_ID)

        inner = encode(EncryptedEnvelope(iv=bytes(12), ciphertext=bytes(32)))
        await _send_sealed_raw(joiner, inner)
        await settle(host, joiner)

        assert host_ui.chat_messages == []
        assert any("sent an invalid message" in t for t in host_ui.system_texts)

    @pytest.mark.anyio
    async def test_invalid_envelope_object(self) -> None:
        """A JSON object missing required fields is dropped with a warning."""
        (host, host_ui), (joiner, _) = await make_room(MockNetwork(), JOINER_ID)

        await send_raw(joiner, HOST_ID, b'{"type": "text", "timestamp": 1}')
        await settle(host, joiner)

        assert host_ui.chat_messages == []
        assert (
            f"⚠️ Security Warning: Peer {JOINER_ID[:6]} sent an invalid message (blocked)"
            in host_ui.system_texts
        )

    @pytest.mark.anyio
    async def test_deeply_nested_json(self) -> None:
        """Input too deep to parse is dropped without closing the connection."""
        (host, host_ui), (joiner, _) = await make_room(MockNetwork(), JOINER_ID)

        await send_raw(joiner, HOST_ID, b"[" * 100_000)
        await settle(host, joiner)

        assert host.get(JOINER_ID) is not None
        assert any("sent an invalid message" in t for t in host_ui.system_texts)

        await joiner.send_text("still connected")
        await settle(host, joiner)
        assert host_ui.chat_messages[-1].content == "still connected"

    @pytest.mark.anyio
    async def test_deeply_nested_encrypted_payload(self) -> None:
        """The same holds for a decrypted payload."""
        (host, host_ui), (joiner, _) = await make_room(MockNetwork(), JOINER_ID)

        await _send_sealed_raw(joiner, b'{"a": ' * 100_000)
        await settle(host, joiner)

        conn = host.get(JOINER_ID)
        assert conn is not None and conn.is_secure
        assert any("sent an invalid message" in t for t in host_ui.system_texts)

    @pytest.mark.anyio
    async def test_malformed_public_key(self) -> None:
        """A bad key announcement is reported and the old secret stays usable."""
        (host, host_ui), (joiner, _) = await make_room(MockNetwork(), JOINER_ID)

        bad_key = {
            "type": "keyExchange",
            "timestamp": 1,
            "data": {"publicKey": "AAAA", "timestamp": 1},
        }
        await send_raw(joiner, HOST_ID, json.dumps(bad_key).encode())
        await settle(host, joiner)

        assert any(t.startswith("Key exchange failed: ") for t in host_ui.system_texts)
        await joiner.send_text("after bad key")
        await settle(host, joiner)
        assert host_ui.chat_messages[-1].content == "after bad key"


class TestUnencryptedContent:
    """Content that arrives in the clear is shown but flagged."""

    @pytest.mark.anyio
    async def test_plain_text_flagged(self) -> None:
        """Unencrypted text is displayed with a warning."""
        (host, host_ui), (joiner, _) = await make_room(MockNetwork(), JOINER_ID)

        await send_raw(joiner, HOST_ID, encode(TextEnvelope(content="in the clear")))
        await settle(host, joiner)

        received = host_ui.chat_messages[-1]
        assert received.content == "in the clear"
        assert not received.encrypted
        assert UNENCRYPTED_WARNING in host_ui.system_texts

    @pytest.mark.anyio
    async def test_legacy_text_shown_and_relayed_encrypted(self) -> None:
        """Bare legacy bytes are shown and forwarded in encrypted form."""
        members = await make_room(MockNetwork(), JOINER_ID, "joiner-legacy01")
        (host, host_ui), (old_client, _), (other, other_ui) = members

        await send_raw(old_client, HOST_ID, b"hello from an old client")
        await settle(host, old_client, other)

        shown = host_ui.chat_messages[-1]
        assert shown.content == "hello from an old client"
        assert shown.sender_id == JOINER_ID
        assert not shown.encrypted

        relayed = other_ui.chat_messages[-1]
        assert relayed.content == "hello from an old client"
        assert relayed.encrypted
