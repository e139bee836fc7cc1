"""Test helpers for mintchat unit tests."""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Coroutine
from typing import TypeVar

from mintchat.config import ChatConfig
from mintchat.connection import ChatContext, ConnectionManager
from mintchat.transport import Transport

from .mocks import (
    MockConnection,
    MockNetwork,
    MockTransport,
    RecordingEvents,
    UnresponsiveTransport,
)

HOST_ID = "host-4f2a9c1d"
"""Transport id of the room host in connection tests."""

JOINER_ID = "joiner-7b3e0a55"
"""Transport id of the first joiner."""

SECOND_JOINER_ID = "joiner-c91d44e0"
"""Transport id of the second joiner."""


_T = TypeVar("_T")


def run_async(coro: Coroutine[object, object, _T]) -> _T:
    """Run an async coroutine synchronously."""
    return asyncio.run(coro)


def make_manager(
    transport: Transport,
    config: ChatConfig | None = None,
) -> tuple[ConnectionManager, RecordingEvents]:
    """Build a manager with a recording UI over the given transport."""
    events = RecordingEvents()
    manager = ConnectionManager(
        transport,
        events,
        ChatContext(local_id=transport.local_id),
        config or ChatConfig(),
    )
    return manager, events


async def make_room(
    network: MockNetwork,
    *joiner_ids: str,
    config: ChatConfig | None = None,
) -> list[tuple[ConnectionManager, RecordingEvents]]:
    """
    Host a room and connect joiners to it, with key exchange completed.

    Returns:
        (manager, events) pairs; the host first, then joiners in order.
    """
    host = make_manager(network.transport(HOST_ID), config)
    host[0].host()

    members = [host]
    for joiner_id in joiner_ids:
        joiner = make_manager(network.transport(joiner_id), config)
        await joiner[0].connect_to(HOST_ID)
        members.append(joiner)
        await settle(*(manager for manager, _ in members))

    return members


async def send_raw(manager: ConnectionManager, peer_id: str, payload: bytes) -> None:
    """Write bytes on a connection, bypassing envelope construction."""
    conn = manager.get(peer_id)
    assert conn is not None and conn.handle is not None
    await conn.handle.send(payload)


async def settle(*managers: ConnectionManager, rounds: int = 20) -> None:
    """
    Let in-memory traffic between managers run to completion.

    Delivery through the mock network is immediate, so a bounded number of
    rounds covers every request/reply chain the protocol produces.
    """
    for _ in range(rounds):
        for manager in managers:
            await manager.settle()
        await asyncio.sleep(0)


async def wait_until(predicate: Callable[[], bool], timeout: float = 5.0) -> None:
    """Poll a condition until it holds, for tests over real sockets."""
    async with asyncio.timeout(timeout):
        while not predicate():
            await asyncio.sleep(0.01)


__all__ = [
    # Mocks
    "MockConnection",
    "MockNetwork",
    "MockTransport",
    "RecordingEvents",
    "UnresponsiveTransport",
    # Builders
    "make_manager",
    "make_room",
    "send_raw",
    # Constants
    "HOST_ID",
    "JOINER_ID",
    "SECOND_JOINER_ID",
    # Async utilities
    "run_async",
    "settle",
    "wait_until",
]
