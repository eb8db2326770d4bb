from __future__ import annotations

import asyncio
import contextlib
import logging
import signal
import subprocess
import sys
from typing import Dict, List, Optional, Tuple

from .core import LogHandler, SpawnError
from .framing import LineBuffer
from .meta import DEFAULT_KILL_GRACE

logger = logging.getLogger(__name__)

_READ_CHUNK = 64 * 1024
_TASKKILL_TIMEOUT = 5.0


def describe_exit(returncode: Optional[int]) -> Tuple[Optional[int], Optional[str]]:
    """Split an asyncio return code into (exit code, signal name)."""
    if returncode is None:
        return None, None
    if returncode < 0:
        try:
            return None, signal.Signals(-returncode).name
        except ValueError:
            return None, str(-returncode)
    return returncode, None


class AgentProcess:
    """
    Owns one agent subprocess: its pipes, a pump turning stderr into log
    lines, and an escalating shutdown.
    """

    def __init__(self, process: asyncio.subprocess.Process, on_log: Optional[LogHandler] = None) -> None:
        self._process = process
        self._on_log = on_log
        self._kill_timer: Optional[asyncio.TimerHandle] = None
        self._stderr_task = asyncio.create_task(self._pump_stderr()) if process.stderr is not None else None
        self._exit_task = asyncio.create_task(self._wait_exit())

    @classmethod
    async def start(
        cls,
        command: str,
        args: List[str],
        cwd: str,
        env: Optional[Dict[str, str]] = None,
        on_log: Optional[LogHandler] = None,
    ) -> "AgentProcess":
        try:
            process = await asyncio.create_subprocess_exec(
                command,
                *args,
                cwd=cwd,
                env=env,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as err:
            raise SpawnError(command, err) from err
        logger.info("Started %s (pid %s)", command, process.pid)
        return cls(process, on_log)

    @property
    def pid(self) -> int:
        return self._process.pid

    @property
    def stdin(self) -> asyncio.StreamWriter:
        assert self._process.stdin is not None
        return self._process.stdin

    @property
    def stdout(self) -> asyncio.StreamReader:
        assert self._process.stdout is not None
        return self._process.stdout

    @property
    def returncode(self) -> Optional[int]:
        return self._process.returncode

    async def wait(self) -> int:
        return await asyncio.shield(self._exit_task)

    def terminate(self, grace: float = DEFAULT_KILL_GRACE) -> None:
        """
        POSIX: SIGTERM now, SIGKILL after ``grace`` seconds unless the process
        exits first. Windows: kill the whole process tree at once.
        """
        if self.returncode is not None:
            return
        if sys.platform == "win32":
            self._kill_tree()
            return
        logger.info("Sending SIGTERM to pid %s", self.pid)
        with contextlib.suppress(ProcessLookupError):
            self._process.terminate()
        if self._kill_timer is None:
            self._kill_timer = asyncio.get_running_loop().call_later(grace, self._force_kill)

    def _force_kill(self) -> None:
        self._kill_timer = None
        if self.returncode is not None:
            return
        logger.warning("pid %s still running after SIGTERM, sending SIGKILL", self.pid)
        with contextlib.suppress(ProcessLookupError):
            self._process.kill()

    def _kill_tree(self) -> None:
        try:
            subprocess.run(
                ["taskkill", "/PID", str(self.pid), "/T", "/F"],
                capture_output=True,
                timeout=_TASKKILL_TIMEOUT,
                check=True,
            )
        except (OSError, subprocess.SubprocessError):
            logger.warning("taskkill failed for pid %s, killing the process only", self.pid)
            with contextlib.suppress(ProcessLookupError):
                self._process.kill()

    async def _wait_exit(self) -> int:
        returncode = await self._process.wait()
        if self._kill_timer is not None:
            self._kill_timer.cancel()
            self._kill_timer = None
        code, sig = describe_exit(returncode)
        logger.info("pid %s exited: code=%s, signal=%s", self.pid, code, sig)
        return returncode

    async def _pump_stderr(self) -> None:
        assert self._process.stderr is not None
        lines = LineBuffer()
        try:
            while True:
                chunk = await self._process.stderr.read(_READ_CHUNK)
                if not chunk:
                    break
                for line in lines.feed(chunk):
                    self._log(line)
            for line in lines.flush():
                self._log(line)
        except asyncio.CancelledError:
            return

    def _log(self, line: str) -> None:
        logger.debug("[stderr] %s", line)
        if self._on_log is not None:
            self._on_log(line)
