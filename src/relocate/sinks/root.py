"""Undetectable sink — privileged injection with the mock marker stripped.

Needs a PrivilegedExecutor that can actually reach uid 0.  On start it
grants the mock-location app-op to ``package`` and clears the system-wide
mock-location indicator; on stop it restores the indicator.  Fixes carry
``synthetic=False`` and a little altitude noise so consecutive fixes do not
look machine-generated.  The gps test provider (required) takes the
position; the FIX broadcast (best effort) carries the whole fix to the
receiver in ``package``.

Whether a consumer can still detect the injection depends on a host-side
hook that is outside this package; when root is missing ``is_available()``
is simply False.
"""

from __future__ import annotations

import random
from typing import Sequence

from loguru import logger

from relocate.geo import Coordinate
from relocate.shell import PrivilegedExecutor

from .base import ChannelError, ChannelSink, Fix, InjectionChannel, SpoofMode
from .channels import FixBroadcastChannel, TestProviderChannel


def default_root_channels(executor: PrivilegedExecutor, package: str) -> list[InjectionChannel]:
    return [
        TestProviderChannel(executor, "gps", required=True),
        FixBroadcastChannel(executor, package, required=False),
    ]


class RootSpoofSink(ChannelSink):
    mode = SpoofMode.UNDETECTABLE
    detectable = False

    BASE_ALTITUDE_M = 30.0
    ALTITUDE_JITTER_M = 5.0

    def __init__(
        self,
        executor: PrivilegedExecutor,
        package: str,
        channels: Sequence[InjectionChannel] | None = None,
        rng: random.Random | None = None,
    ) -> None:
        super().__init__(channels or default_root_channels(executor, package))
        self._executor = executor
        self._package = package
        self._rng = rng or random.Random()

    def is_available(self) -> bool:
        return self._executor.has_root()

    def _before_engage(self) -> None:
        result = self._executor.run(f"appops set {self._package} android:mock_location allow")
        if not result.ok:
            raise ChannelError(f"could not grant mock_location to {self._package}")

    def _after_engage(self) -> None:
        if not self._executor.run("settings put secure mock_location 0").ok:
            logger.warning("Could not clear mock_location indicator; fixes may be flagged")

    def _after_release(self) -> None:
        if not self._executor.run("settings put secure mock_location 1").ok:
            logger.warning("Could not restore mock_location indicator")

    def _build_fix(self, coordinate: Coordinate, bearing: float, speed: float) -> Fix:
        if speed == 0.0:
            # Stationary receivers still report a wandering bearing
            bearing = self._rng.random() * 360.0
        return Fix(
            coordinate=coordinate,
            accuracy=coordinate.accuracy,
            altitude=self.BASE_ALTITUDE_M + self._rng.random() * self.ALTITUDE_JITTER_M,
            bearing=bearing,
            speed=speed,
            synthetic=False,
        )
