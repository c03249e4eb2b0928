"""Shell command runners used by the injection channels.

ShellRunner runs a command string behind a fixed argv prefix, e.g.
``["adb", "-s", "emulator-5554", "shell"]`` to reach a device, or an empty
prefix to run locally.  PrivilegedExecutor is a ShellRunner whose prefix
ends in ``su -c`` so the command runs with elevated privilege.

Neither interprets output beyond exit status: a command that cannot be
spawned or times out comes back as exit status -1 with the error text in
``stderr``.
"""

from __future__ import annotations

import subprocess
from typing import NamedTuple, Sequence

from loguru import logger


class CommandResult(NamedTuple):
    stdout: str
    exit_status: int
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.exit_status == 0


def adb_prefix(adb_path: str = "adb", serial: str = "") -> list[str]:
    """argv prefix for ``adb [-s serial] shell``."""
    prefix = [adb_path]
    if serial:
        prefix += ["-s", serial]
    prefix.append("shell")
    return prefix


class ShellRunner:
    """Runs command strings through ``prefix``."""

    def __init__(self, prefix: Sequence[str] = (), timeout: float = 10.0) -> None:
        self._prefix = list(prefix)
        self._timeout = timeout

    @property
    def prefix(self) -> list[str]:
        return list(self._prefix)

    def _argv(self, command: str) -> list[str]:
        if self._prefix:
            return self._prefix + [command]
        return ["sh", "-c", command]

    def run(self, command: str) -> CommandResult:
        argv = self._argv(command)
        try:
            proc = subprocess.run(
                argv,
                capture_output=True,
                text=True,
                timeout=self._timeout,
                check=False,
            )
        except subprocess.TimeoutExpired:
            logger.warning(f"Command timed out after {self._timeout}s: {command}")
            return CommandResult("", -1, "timeout")
        except OSError as e:
            logger.warning(f"Command could not start: {command}: {e}")
            return CommandResult("", -1, str(e))
        if proc.returncode != 0 and proc.stderr.strip():
            logger.debug(f"Command failed ({proc.returncode}): {command} -> {proc.stderr.strip()}")
        return CommandResult(proc.stdout.strip(), proc.returncode, proc.stderr.strip())


class PrivilegedExecutor(ShellRunner):
    """Runs commands as root via ``su -c``."""

    def __init__(self, prefix: Sequence[str] = ("su", "-c"), timeout: float = 10.0) -> None:
        super().__init__(prefix, timeout)

    def has_root(self) -> bool:
        """True when ``id`` runs with uid 0."""
        result = self.run("id")
        return result.ok and "uid=0" in result.stdout
