"""Concrete injection channels.

TestProviderChannel drives the platform location service's test provider
from a shell (Android ``cmd location providers ...``).  Run it through a
plain ShellRunner for the mock-location path or through a
PrivilegedExecutor for the root path.  FixBroadcastChannel carries the
fields the test provider cannot (altitude, bearing, speed, synthetic flag)
to a receiver in the target package.
"""

from __future__ import annotations

from loguru import logger

from relocate.shell import ShellRunner

from .base import ChannelError, Fix, InjectionChannel

_CMD = "cmd location providers"


class TestProviderChannel(InjectionChannel):
    """Registers ``provider`` as a test provider and pushes fixes into it."""

    __test__ = False  # not a pytest class

    def __init__(
        self,
        runner: ShellRunner,
        provider: str = "gps",
        required: bool = True,
        accuracy_scale: float = 1.0,
    ) -> None:
        self._runner = runner
        self.provider = provider
        self.name = provider
        self.required = required
        self.accuracy_scale = accuracy_scale
        self._engaged = False

    @property
    def engaged(self) -> bool:
        return self._engaged

    def _must(self, command: str) -> str:
        result = self._runner.run(command)
        if not result.ok:
            detail = result.stderr or result.stdout or f"exit {result.exit_status}"
            raise ChannelError(f"{command!r} failed: {detail}")
        return result.stdout

    def engage(self) -> None:
        # Stale registration from a crashed session blocks add-test-provider
        self._runner.run(f"{_CMD} remove-test-provider {self.provider}")
        self._must(f"{_CMD} add-test-provider {self.provider}")
        self._must(f"{_CMD} set-test-provider-enabled {self.provider} true")
        self._engaged = True

    def push(self, fix: Fix) -> None:
        if not self._engaged:
            raise ChannelError(f"{self.provider} test provider not engaged")
        c = fix.coordinate
        # repr() keeps every digit of the double
        self._must(
            f"{_CMD} set-test-provider-location {self.provider}"
            f" --location {c.latitude!r},{c.longitude!r}"
            f" --accuracy {fix.accuracy:.1f}"
            f" --time {fix.time_ms}"
        )

    def release(self) -> None:
        if not self._engaged:
            return
        self._engaged = False
        disable = self._runner.run(f"{_CMD} set-test-provider-enabled {self.provider} false")
        remove = self._runner.run(f"{_CMD} remove-test-provider {self.provider}")
        if not (disable.ok and remove.ok):
            logger.warning(f"{self.provider} test provider release incomplete")


class FixBroadcastChannel(InjectionChannel):
    """Hands every fix, ancillary fields included, to a receiver in ``package``.

    The test provider only takes location, accuracy and time.  Altitude,
    bearing, speed and the synthetic flag reach consumers through the
    host-side receiver, which is delivered ``<package>.FIX`` broadcasts and
    a ``<package>.CLEAR`` on release.
    """

    def __init__(self, runner: ShellRunner, package: str, required: bool = False) -> None:
        self._runner = runner
        self.package = package
        self.name = "broadcast"
        self.required = required
        self._engaged = False

    @property
    def engaged(self) -> bool:
        return self._engaged

    def _broadcast(self, action: str, extras: str = "") -> str:
        return f"am broadcast -a {self.package}.{action} -p {self.package}{extras}"

    def engage(self) -> None:
        result = self._runner.run(f"pm path {self.package}")
        if not (result.ok and result.stdout.strip()):
            raise ChannelError(f"{self.package} is not installed")
        self._engaged = True

    def push(self, fix: Fix) -> None:
        if not self._engaged:
            raise ChannelError(f"{self.package} receiver not engaged")
        c = fix.coordinate
        command = self._broadcast(
            "FIX",
            f" --ed latitude {c.latitude!r} --ed longitude {c.longitude!r}"
            f" --ef accuracy {fix.accuracy:.1f}"
            f" --ed altitude {fix.altitude:.2f}"
            f" --ef bearing {fix.bearing:.1f}"
            f" --ef speed {fix.speed:.2f}"
            f" --ez synthetic {'true' if fix.synthetic else 'false'}"
            f" --el time {fix.time_ms}",
        )
        result = self._runner.run(command)
        if not result.ok:
            raise ChannelError(f"FIX broadcast to {self.package} failed: "
                               f"{result.stderr or f'exit {result.exit_status}'}")

    def release(self) -> None:
        if not self._engaged:
            return
        self._engaged = False
        if not self._runner.run(self._broadcast("CLEAR")).ok:
            logger.warning(f"CLEAR broadcast to {self.package} failed")
