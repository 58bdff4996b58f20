"""Relaunch the interpreter with forced garbage collection enabled.

Interpreter ``-X`` options can only be set when the process starts.  When
the server is started without them, the launcher spawns a child running
``python -m nano_banana`` with the options added, inherits stdio and the
environment (package root prepended to ``PYTHONPATH``), forwards
SIGINT/SIGTERM and exits with the child's code.
"""

from __future__ import annotations

import asyncio
import enum
import os
import signal
import sys
from pathlib import Path
from typing import Awaitable, Callable, List, Optional, Sequence

from loguru import logger

from nano_banana.core.memory import (
    COMPACT_HEAP_OPTION,
    FORCED_GC_OPTION,
    MAX_HEAP_OPTION,
    forced_gc_available,
)

DEFAULT_HEAP_MB = 512
HEAP_ENV_VAR = "MAX_HEAP_MB"
MAIN_MODULE = "nano_banana"
FORWARDED_SIGNALS = (signal.SIGINT, signal.SIGTERM)
# directory holding the nano_banana package, for children of an uninstalled checkout
PACKAGE_ROOT = str(Path(__file__).resolve().parents[2])


class LaunchState(enum.Enum):
    BOOTSTRAPPING = "bootstrapping"
    DIRECT = "direct"
    SUPERVISING = "supervising"


def resolve_heap_mb(environ: Optional[dict] = None) -> int:
    environ = os.environ if environ is None else environ
    raw = environ.get(HEAP_ENV_VAR)
    if raw:
        try:
            return int(raw)
        except ValueError:
            logger.warning(f"Ignoring invalid {HEAP_ENV_VAR}={raw!r}, using {DEFAULT_HEAP_MB}")
    return DEFAULT_HEAP_MB


def capability_flags(heap_mb: int) -> List[str]:
    return [
        "-X", FORCED_GC_OPTION,
        "-X", f"{MAX_HEAP_OPTION}={heap_mb}",
        "-X", COMPACT_HEAP_OPTION,
    ]


def build_child_command(argv: Sequence[str], heap_mb: int) -> List[str]:
    """Interpreter, capability flags, main module, then *argv* unchanged."""
    return [sys.executable, *capability_flags(heap_mb), "-m", MAIN_MODULE, *argv]


def child_environment(environ: dict) -> dict:
    """Copy of *environ* with the package root first on ``PYTHONPATH``."""
    env = dict(environ)
    existing = [p for p in env.get("PYTHONPATH", "").split(os.pathsep) if p]
    if PACKAGE_ROOT not in existing:
        env["PYTHONPATH"] = os.pathsep.join([PACKAGE_ROOT, *existing])
    return env


Spawner = Callable[..., Awaitable[asyncio.subprocess.Process]]


class Launcher:
    """Two-state bootstrap: run in process, or supervise a relaunched child."""

    def __init__(
        self,
        main: Callable[[], None],
        *,
        probe: Callable[[], bool] = forced_gc_available,
        spawner: Spawner = asyncio.create_subprocess_exec,
        environ: Optional[dict] = None,
    ) -> None:
        self._main = main
        self._probe = probe
        self._spawner = spawner
        self._environ = environ
        self.state = LaunchState.BOOTSTRAPPING

    def run(self, argv: Optional[Sequence[str]] = None) -> int:
        """Run the main program; return the exit code to use."""
        argv = list(sys.argv[1:] if argv is None else argv)

        if self._probe():
            self.state = LaunchState.DIRECT
            self._main()
            return 0

        self.state = LaunchState.SUPERVISING
        return asyncio.run(self.supervise(argv))

    async def supervise(self, argv: Sequence[str]) -> int:
        environ = child_environment(os.environ if self._environ is None else self._environ)
        heap_mb = resolve_heap_mb(environ)
        command = build_child_command(argv, heap_mb)
        logger.debug(f"Forced GC unavailable, relaunching: {' '.join(command)}")

        # stdin/stdout/stderr left as None so the child inherits them
        child = await self._spawner(*command, env=environ)

        loop = asyncio.get_running_loop()
        installed = self._install_forwarding(loop, child)
        try:
            code = await child.wait()
        finally:
            for sig in installed:
                loop.remove_signal_handler(sig)

        return code if code is not None else 0

    @staticmethod
    def _install_forwarding(loop: asyncio.AbstractEventLoop, child: asyncio.subprocess.Process) -> List[int]:
        installed = []

        def _forward(sig: int) -> None:
            if child.returncode is None:
                child.send_signal(sig)

        for sig in FORWARDED_SIGNALS:
            try:
                loop.add_signal_handler(sig, _forward, sig)
            except (NotImplementedError, RuntimeError):
                # Windows event loops: the console delivers Ctrl+C to the child too
                continue
            installed.append(sig)
        return installed


def main() -> None:
    """Console entry point."""
    from nano_banana.mcp.server import run_server

    sys.exit(Launcher(run_server).run())
