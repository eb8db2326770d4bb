import asyncio
import sys

import pytest

from unified_agent import SpawnError
from unified_agent.process import AgentProcess, describe_exit

IGNORES_SIGTERM = """
import signal, sys, time
signal.signal(signal.SIGTERM, signal.SIG_IGN)
print("armed", flush=True)
time.sleep(30)
"""

WRITES_STDERR = """
import sys
sys.stderr.write("first\\nsecond\\npartial")
"""


def test_describe_exit():
    assert describe_exit(0) == (0, None)
    assert describe_exit(3) == (3, None)
    assert describe_exit(-9) == (None, "SIGKILL")
    assert describe_exit(-15) == (None, "SIGTERM")
    assert describe_exit(None) == (None, None)


@pytest.mark.asyncio
async def test_stderr_lines_become_log_lines(tmp_path):
    lines = []
    process = await AgentProcess.start(sys.executable, ["-c", WRITES_STDERR], str(tmp_path), on_log=lines.append)
    assert await asyncio.wait_for(process.wait(), 10) == 0
    for _ in range(100):
        if len(lines) == 3:
            break
        await asyncio.sleep(0.01)
    assert lines == ["first", "second", "partial"]


@pytest.mark.asyncio
async def test_spawn_failure_raises_spawn_error(tmp_path):
    with pytest.raises(SpawnError) as info:
        await AgentProcess.start(str(tmp_path / "no-such-agent"), [], str(tmp_path))
    assert isinstance(info.value.cause, OSError)


@pytest.mark.asyncio
@pytest.mark.skipif(sys.platform == "win32", reason="POSIX signals")
async def test_terminate_escalates_to_sigkill(tmp_path):
    process = await AgentProcess.start(sys.executable, ["-c", IGNORES_SIGTERM], str(tmp_path))
    assert (await asyncio.wait_for(process.stdout.readline(), 10)).strip() == b"armed"

    loop = asyncio.get_running_loop()
    started = loop.time()
    process.terminate(grace=0.2)
    returncode = await asyncio.wait_for(process.wait(), 5)
    assert describe_exit(returncode) == (None, "SIGKILL")
    assert loop.time() - started >= 0.2


@pytest.mark.asyncio
@pytest.mark.skipif(sys.platform == "win32", reason="POSIX signals")
async def test_terminate_stops_a_cooperative_process_with_sigterm(tmp_path):
    process = await AgentProcess.start(sys.executable, ["-c", "import time; time.sleep(30)"], str(tmp_path))
    process.terminate(grace=5.0)
    returncode = await asyncio.wait_for(process.wait(), 5)
    assert describe_exit(returncode) == (None, "SIGTERM")
    # Terminating an exited process is a no-op
    process.terminate()
