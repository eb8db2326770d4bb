import os
import sys
from typing import Any, Callable, Dict, List, Optional

import pytest
import pytest_asyncio

from helpers import Channel
from unified_agent import SpawnConfig

FIXTURES = os.path.join(os.path.dirname(__file__), "fixtures")
FAKE_ACP_AGENT = os.path.join(FIXTURES, "fake_acp_agent.py")
FAKE_MCP_SERVER = os.path.join(FIXTURES, "fake_mcp_server.py")


@pytest_asyncio.fixture
async def make_channel():
    channels: List[Channel] = []

    def factory(**kwargs: Any) -> Channel:
        channel = Channel(**kwargs)
        channels.append(channel)
        return channel

    yield factory
    for channel in channels:
        channel.conn.close()


def _spawn(script: str, cwd: str, env: Optional[Dict[str, str]] = None) -> SpawnConfig:
    full_env = None if env is None else {**os.environ, **env}
    return SpawnConfig(command=sys.executable, args=["-u", script], cwd=cwd, env=full_env)


@pytest.fixture
def acp_spawn(tmp_path) -> Callable[..., SpawnConfig]:
    return lambda **env: _spawn(FAKE_ACP_AGENT, str(tmp_path), env or None)


@pytest.fixture
def mcp_spawn(tmp_path) -> Callable[..., SpawnConfig]:
    return lambda **env: _spawn(FAKE_MCP_SERVER, str(tmp_path), env or None)
