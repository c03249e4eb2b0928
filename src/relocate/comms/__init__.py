"""Outbound surfaces: the internal EventBus and the position broadcasters."""

from .broadcaster import (
    FanoutBroadcaster,
    FileBroadcaster,
    MemoryBroadcaster,
    MqttBroadcaster,
    PositionBroadcaster,
    PublishedPosition,
    bits_to_double,
    double_to_bits,
    read_published,
)
from .event_bus import EventBus, EventLog

__all__ = [
    "EventBus",
    "EventLog",
    "FanoutBroadcaster",
    "FileBroadcaster",
    "MemoryBroadcaster",
    "MqttBroadcaster",
    "PositionBroadcaster",
    "PublishedPosition",
    "bits_to_double",
    "double_to_bits",
    "read_published",
]
