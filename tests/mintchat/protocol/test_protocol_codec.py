"""Tests for envelope encoding and two-step decoding."""

from __future__ import annotations

import asyncio
import json
import os

import pytest

from mintchat.crypto import SecureChannel
from mintchat.errors import DecryptionError, ProtocolViolation
from mintchat.protocol import (
    CONTENT_KINDS,
    EncryptedEnvelope,
    KeyExchangeData,
    KeyExchangeEnvelope,
    LegacyText,
    MediaAttachment,
    MediaEnvelope,
    MessageKind,
    SystemEnvelope,
    TextEnvelope,
    decode_content,
    decode_transport,
    encode,
    seal,
    unseal,
)


def _channel() -> SecureChannel:
    channel = SecureChannel()
    channel.bind(os.urandom(32))
    return channel


def _attachment() -> MediaAttachment:
    return MediaAttachment(
        filename="cat.png",
        mime_type="image/png",
        size_bytes=3,
        inline_data="data:image/png;base64,AQID",
    )


class TestMessageKind:
    """Tests for the closed set of envelope kinds."""

    def test_wire_tags(self) -> None:
        """Kinds serialize to their wire tags."""
        assert [kind.value for kind in MessageKind] == [
            "text",
            "system",
            "keyExchange",
            "encrypted",
            "image",
            "video",
            "file",
        ]

    def test_content_kinds(self) -> None:
        """Only user content kinds must be encrypted."""
        assert CONTENT_KINDS == {
            MessageKind.TEXT,
            MessageKind.IMAGE,
            MessageKind.VIDEO,
            MessageKind.FILE,
        }


class TestEncode:
    """Tests for the JSON wire form."""

    def test_text_envelope(self) -> None:
        """A text envelope carries type, timestamp and content."""
        wire = json.loads(encode(TextEnvelope(timestamp=1700000000000, content="hello")))

        assert wire == {"type": "text", "timestamp": 1700000000000, "content": "hello"}

    def test_key_exchange_uses_camel_case(self) -> None:
        """Payload keys are camelCase on the wire."""
        envelope = KeyExchangeEnvelope(
            timestamp=5, data=KeyExchangeData(public_key="AAAA", timestamp=5)
        )
        wire = json.loads(encode(envelope))

        assert wire == {
            "type": "keyExchange",
            "timestamp": 5,
            "data": {"publicKey": "AAAA", "timestamp": 5},
        }

    def test_media_attachment_keys(self) -> None:
        """Attachments use mimeType, sizeBytes and inlineData."""
        wire = json.loads(encode(MediaEnvelope(type="image", timestamp=1, data=_attachment())))

        assert wire["data"] == {
            "filename": "cat.png",
            "mimeType": "image/png",
            "sizeBytes": 3,
            "inlineData": "data:image/png;base64,AQID",
        }

    def test_encrypted_fields_are_byte_arrays(self) -> None:
        """Nonce and ciphertext travel as arrays of byte values."""
        envelope = EncryptedEnvelope(timestamp=1, iv=b"\x00\x01\xff", ciphertext=b"\x10")
        wire = json.loads(encode(envelope))

        assert wire["iv"] == [0, 1, 255]
        assert wire["ciphertext"] == [16]

    def test_copy_keeps_defaulted_fields(self) -> None:
        """Copying an envelope with an update keeps its tag and timestamp."""
        envelope = TextEnvelope(content="draft")
        copied = envelope.model_copy(update={"content": "final"})

        assert json.loads(encode(copied)) == {
            "type": "text",
            "timestamp": envelope.timestamp,
            "content": "final",
        }


class TestDecodeTransport:
    """Tests for the outer decode step."""

    def test_text(self) -> None:
        """A text envelope decodes to TextEnvelope."""
        envelope = decode_transport(b'{"type": "text", "timestamp": 1, "content": "hi"}')

        assert isinstance(envelope, TextEnvelope)
        assert envelope.content == "hi"
        assert envelope.kind is MessageKind.TEXT

    def test_media_kind_follows_tag(self) -> None:
        """The media envelope kind is its tag."""
        raw = encode(MediaEnvelope(type="video", data=_attachment()))
        envelope = decode_transport(raw)

        assert isinstance(envelope, MediaEnvelope)
        assert envelope.kind is MessageKind.VIDEO

    def test_system(self) -> None:
        """System envelopes parse so the caller can reject them explicitly."""
        envelope = decode_transport(b'{"type": "system", "timestamp": 1, "content": "x"}')

        assert isinstance(envelope, SystemEnvelope)

    def test_encrypted(self) -> None:
        """Byte arrays decode into bytes."""
        raw = b'{"type": "encrypted", "timestamp": 1, "iv": [1, 2], "ciphertext": [3]}'
        envelope = decode_transport(raw)

        assert isinstance(envelope, EncryptedEnvelope)
        assert envelope.iv == b"\x01\x02"
        assert envelope.ciphertext == b"\x03"

    def test_sender_claims_are_dropped(self) -> None:
        """A payload's claimed sender never survives parsing."""
        raw = json.dumps(
            {
                "type": "text",
                "timestamp": 1,
                "content": "trust me",
                "senderId": "host",
                "senderName": "Host",
            }
        ).encode()
        envelope = decode_transport(raw)

        assert isinstance(envelope, TextEnvelope)
        assert "senderId" not in json.loads(encode(envelope))
        assert not hasattr(envelope, "sender_id")

    @pytest.mark.parametrize(
        "raw",
        [b"hello there", b'"a json string"', b"[1, 2, 3]", b"42", b"\xff\xfe not utf-8"],
    )
    def test_non_objects_are_legacy_text(self, raw: bytes) -> None:
        """Anything that is not a JSON object is a bare legacy message."""
        envelope = decode_transport(raw)

        assert isinstance(envelope, LegacyText)
        assert envelope.content == raw.decode("utf-8", errors="replace")

    @pytest.mark.parametrize(
        "raw",
        [
            b'{"type": "text", "timestamp": 1}',
            b'{"type": "bogus", "timestamp": 1}',
            b'{"content": "no type"}',
            b'{"type": "encrypted", "iv": [256], "ciphertext": []}',
            b'{"type": "keyExchange", "data": {"timestamp": 1}}',
        ],
    )
    def test_malformed_objects_are_violations(self, raw: bytes) -> None:
        """A JSON object that is not a valid envelope is a protocol violation."""
        with pytest.raises(ProtocolViolation):
            decode_transport(raw)

    def test_excessive_nesting_is_violation(self) -> None:
        """Input nested beyond the parser's depth is a violation, not legacy text."""
        with pytest.raises(ProtocolViolation, match="nested too deeply"):
            decode_transport(b"[" * 100_000)

    def test_negative_media_size_rejected(self) -> None:
        """Attachment sizes cannot be negative."""
        raw = json.dumps(
            {
                "type": "file",
                "timestamp": 1,
                "data": {
                    "filename": "a",
                    "mimeType": "text/plain",
                    "sizeBytes": -1,
                    "inlineData": "data:text/plain;base64,",
                },
            }
        ).encode()

        with pytest.raises(ProtocolViolation):
            decode_transport(raw)


class TestDecodeContent:
    """Tests for the inner decode step."""

    def test_text(self) -> None:
        """Inner text envelopes are accepted."""
        envelope = decode_content(encode(TextEnvelope(content="inner")))

        assert isinstance(envelope, TextEnvelope)
        assert envelope.content == "inner"

    def test_nested_encrypted_rejected(self) -> None:
        """Unwrapping depth is exactly one."""
        nested = encode(EncryptedEnvelope(iv=bytes(12), ciphertext=bytes(16)))

        with pytest.raises(ProtocolViolation, match="Nested"):
            decode_content(nested)

    @pytest.mark.parametrize(
        "raw",
        [
            b'{"type": "system", "timestamp": 1, "content": "x"}',
            b'{"type": "keyExchange", "timestamp": 1, "data": {"publicKey": "A", "timestamp": 1}}',
        ],
    )
    def test_non_content_rejected(self, raw: bytes) -> None:
        """System and key exchange envelopes never travel encrypted."""
        with pytest.raises(ProtocolViolation, match="not allowed"):
            decode_content(raw)

    def test_excessive_nesting_rejected(self) -> None:
        """Deeply nested plaintext is a violation."""
        with pytest.raises(ProtocolViolation, match="nested too deeply"):
            decode_content(b'{"a": ' * 100_000)

    @pytest.mark.parametrize("raw", [b"not json", b"[1]"])
    def test_unstructured_rejected(self, raw: bytes) -> None:
        """Legacy fallback does not apply inside encryption."""
        with pytest.raises(ProtocolViolation):
            decode_content(raw)


class TestSealUnseal:
    """Tests for wrapping content into encrypted envelopes."""

    def test_round_trip(self) -> None:
        """Sealed content unseals to an equal envelope."""
        channel = _channel()
        original = MediaEnvelope(type="image", timestamp=7, data=_attachment())

        async def run_test() -> object:
            sealed = await seal(channel, original)
            return await unseal(channel, decode_transport(encode(sealed)))  # type: ignore[arg-type]

        assert asyncio.run(run_test()) == original

    def test_sealed_wire_hides_content(self) -> None:
        """The encrypted envelope does not reveal the plaintext."""
        channel = _channel()

        async def run_test() -> bytes:
            return encode(await seal(channel, TextEnvelope(content="top secret")))

        wire = asyncio.run(run_test())

        assert b"top secret" not in wire
        assert json.loads(wire)["type"] == "encrypted"

    def test_unseal_with_other_key_fails(self) -> None:
        """A different secret cannot open the envelope."""

        async def run_test() -> None:
            sealed = await seal(_channel(), TextEnvelope(content="x"))
            await unseal(_channel(), sealed)

        with pytest.raises(DecryptionError):
            asyncio.run(run_test())
