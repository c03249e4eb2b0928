"""Detectable sink — standard mock location, no privilege needed.

Drives two channels: the ``gps`` test provider (required) and the ``fused``
aggregated provider (best effort, reported accuracy doubled).  Consumers can
tell the fixes are synthetic; that is the price of not needing root.
"""

from __future__ import annotations

from typing import Callable, Sequence

from loguru import logger

from relocate.shell import ShellRunner

from .base import ChannelSink, InjectionChannel, SpoofMode
from .channels import TestProviderChannel


def default_mock_channels(runner: ShellRunner) -> list[InjectionChannel]:
    return [
        TestProviderChannel(runner, "gps", required=True),
        TestProviderChannel(runner, "fused", required=False, accuracy_scale=2.0),
    ]


class MockLocationSink(ChannelSink):
    mode = SpoofMode.DETECTABLE
    detectable = True

    def __init__(
        self,
        channels: Sequence[InjectionChannel],
        permission_check: Callable[[], bool] | None = None,
    ) -> None:
        super().__init__(channels)
        self._permission_check = permission_check

    @classmethod
    def over_shell(cls, runner: ShellRunner, package: str = "") -> MockLocationSink:
        """Sink on the default channels, gated on the mock-location app-op."""
        check = None
        if package:
            def check() -> bool:
                result = runner.run(f"appops get {package} android:mock_location")
                return result.ok and "allow" in result.stdout
        return cls(default_mock_channels(runner), permission_check=check)

    def is_available(self) -> bool:
        if self._permission_check is None:
            return True
        try:
            return bool(self._permission_check())
        except Exception as e:
            logger.warning(f"Mock location availability check failed: {e}")
            return False
