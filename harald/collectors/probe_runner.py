"""
External Probe Runner
======================

Runs Bluetooth diagnostic binaries (``hcitool``, ``l2ping``, ``sdptool``,
``rfcomm``, ``btscanner`` ...) as asyncio subprocesses with a bounded
timeout and captures their exit status and output.

Binaries are resolved through a fixed list of install directories and
then through ``$PATH``. A binary that cannot be resolved, or that fails
to launch, yields an *unavailable* result rather than an exception;
a timeout kills the process and yields a *timed out* result.
Each invocation owns its own process, so concurrent calls for different
devices do not interfere.
"""

from __future__ import annotations

import asyncio
import os
import shutil
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Sequence

from shared.logger import HaraldLogger

from harald.core.errors import ProbeTimeoutError, ProbeUnavailableError

logger = HaraldLogger("collectors.probe_runner")

DEFAULT_SEARCH_PATHS: tuple[str, ...] = (
    "/usr/bin",
    "/usr/local/bin",
    "/opt/homebrew/bin",
    "/usr/sbin",
)

# Tools the discovery stages and heuristic probes know how to drive.
KNOWN_TOOLS: tuple[str, ...] = (
    "hcitool",
    "hciconfig",
    "l2ping",
    "sdptool",
    "rfcomm",
    "btscanner",
    "bluetoothctl",
)


@dataclass(frozen=True, slots=True)
class ProbeResult:
    """Outcome of one probe invocation.

    ``exit_code`` is ``None`` when the tool never ran to completion
    (unavailable or timed out).
    """

    binary: str
    args: tuple[str, ...] = ()
    exit_code: Optional[int] = None
    stdout: str = ""
    stderr: str = ""
    available: bool = True
    timed_out: bool = False
    duration: float = 0.0
    path: Optional[str] = field(default=None, compare=False)

    @property
    def completed(self) -> bool:
        return self.available and not self.timed_out and self.exit_code is not None

    @property
    def succeeded(self) -> bool:
        return self.completed and self.exit_code == 0

    @property
    def failed(self) -> bool:
        """Ran to completion with a non-zero exit status."""
        return self.completed and self.exit_code != 0

    @property
    def lines(self) -> list[str]:
        return [line for line in self.stdout.splitlines() if line.strip()]


class ProbeRunner:
    """Resolve and execute external diagnostic tools.

    Usage::

        runner = ProbeRunner()
        result = await runner.run("l2ping", ["-c", "3", "-t", "1", addr])
        if result.failed:
            ...

    Args:
        search_paths: Directories checked, in order, before ``$PATH``.
        default_timeout: Timeout in seconds used when ``run`` gets none.
        use_path: Fall back to a ``$PATH`` lookup. Disabled for simulated
            runs so that no real tool is ever executed.
    """

    def __init__(
        self,
        search_paths: Optional[Sequence[str]] = None,
        default_timeout: float = 3.0,
        use_path: bool = True,
    ) -> None:
        self._search_paths = tuple(
            DEFAULT_SEARCH_PATHS if search_paths is None else search_paths
        )
        self._default_timeout = default_timeout
        self._use_path = use_path

    @property
    def default_timeout(self) -> float:
        return self._default_timeout

    # ------------------------------------------------------------------ #
    #  Resolution
    # ------------------------------------------------------------------ #

    def resolve(self, binary: str) -> Optional[str]:
        """Return an executable path for *binary*, or ``None``."""
        if os.path.isabs(binary):
            return binary if _is_executable(Path(binary)) else None

        for directory in self._search_paths:
            candidate = Path(directory) / binary
            if _is_executable(candidate):
                return str(candidate)

        return shutil.which(binary) if self._use_path else None

    def is_available(self, binary: str) -> bool:
        return self.resolve(binary) is not None

    def available_tools(
        self, binaries: Sequence[str] = KNOWN_TOOLS
    ) -> dict[str, Optional[str]]:
        """Map each tool name to its resolved path (``None`` if missing)."""
        return {name: self.resolve(name) for name in binaries}

    # ------------------------------------------------------------------ #
    #  Execution
    # ------------------------------------------------------------------ #

    async def run(
        self,
        binary: str,
        args: Sequence[str] = (),
        timeout: Optional[float] = None,
    ) -> ProbeResult:
        """Run *binary* and return its result. Never raises for a missing
        tool, a launch failure or a timeout; cancellation propagates after
        the child process has been killed."""
        argv = tuple(args)
        try:
            return await self.run_strict(binary, argv, timeout)
        except ProbeUnavailableError as exc:
            logger.debug("Probe unavailable: %s", exc, binary=binary)
            return ProbeResult(binary=binary, args=argv, available=False, stderr=str(exc))
        except ProbeTimeoutError as exc:
            logger.warning("%s", exc, binary=binary)
            return ProbeResult(
                binary=binary,
                args=argv,
                timed_out=True,
                duration=exc.timeout,
                stderr=str(exc),
            )

    async def run_strict(
        self,
        binary: str,
        args: Sequence[str] = (),
        timeout: Optional[float] = None,
    ) -> ProbeResult:
        """Like :meth:`run` but raises :class:`ProbeUnavailableError` and
        :class:`ProbeTimeoutError` instead of folding them into the result."""
        argv = tuple(args)
        limit = self._default_timeout if timeout is None else timeout

        path = self.resolve(binary)
        if path is None:
            raise ProbeUnavailableError(binary)

        started = time.monotonic()
        try:
            proc = await asyncio.create_subprocess_exec(
                path,
                *argv,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            raise ProbeUnavailableError(binary, f"failed to launch ({exc})") from exc

        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=limit)
        except asyncio.TimeoutError:
            await _kill(proc)
            raise ProbeTimeoutError(binary, limit) from None
        except asyncio.CancelledError:
            await _kill(proc)
            raise

        result = ProbeResult(
            binary=binary,
            args=argv,
            exit_code=proc.returncode,
            stdout=(stdout or b"").decode("utf-8", errors="replace"),
            stderr=(stderr or b"").decode("utf-8", errors="replace"),
            duration=time.monotonic() - started,
            path=path,
        )
        logger.debug(
            "%s exited with %s in %.2fs",
            binary, result.exit_code, result.duration,
        )
        return result


def _is_executable(path: Path) -> bool:
    return path.is_file() and os.access(path, os.X_OK)


async def _kill(proc: asyncio.subprocess.Process) -> None:
    if proc.returncode is not None:
        return
    try:
        proc.kill()
    except ProcessLookupError:
        return
    try:
        await asyncio.wait_for(proc.wait(), timeout=2.0)
    except asyncio.TimeoutError:
        logger.warning("Probe process %s did not exit after kill", proc.pid)
