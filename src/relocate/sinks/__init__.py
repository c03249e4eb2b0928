"""Injection sinks: the Detectable and Undetectable ways to assert a position."""

from .base import (
    ChannelError,
    ChannelSink,
    Fix,
    InjectionChannel,
    InjectionSink,
    SpoofMode,
)
from .channels import FixBroadcastChannel, TestProviderChannel
from .mock import MockLocationSink, default_mock_channels
from .root import RootSpoofSink, default_root_channels

__all__ = [
    "ChannelError",
    "ChannelSink",
    "Fix",
    "FixBroadcastChannel",
    "InjectionChannel",
    "InjectionSink",
    "MockLocationSink",
    "RootSpoofSink",
    "SpoofMode",
    "TestProviderChannel",
    "default_mock_channels",
    "default_root_channels",
]
