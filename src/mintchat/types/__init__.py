"""Reusable type definitions for mintchat."""

from typing import TypeAlias

from .base import CamelModel, StrictBaseModel, WireModel

PeerId: TypeAlias = str
"""Transport-assigned peer identifier.

Opaque, unique and immutable for the lifetime of a connection.
The transport verifies it; the remote side cannot choose or spoof it.
"""

Timestamp: TypeAlias = int
"""Unix timestamp in milliseconds since epoch."""

__all__ = [
    "CamelModel",
    "StrictBaseModel",
    "WireModel",
    "PeerId",
    "Timestamp",
]
