from __future__ import annotations

from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from .meta import (
    DEFAULT_INIT_TIMEOUT,
    DEFAULT_KILL_GRACE,
    DEFAULT_REQUEST_TIMEOUT,
    MCP_PROTOCOL_VERSION,
    PROTOCOL_VERSION,
)
from .schema import Implementation

CLIENT_NAME = "UnifiedAgent"
CLIENT_VERSION = "0.1.0"


class ProtocolType(str, Enum):
    ACP = "acp"
    MCP = "mcp"


class _Options(BaseModel):
    model_config = ConfigDict(extra="forbid")


class SpawnConfig(_Options):
    """Fully formed spawn descriptor; ``env=None`` inherits the current environment."""

    command: str
    args: List[str] = Field(default_factory=list)
    cwd: str
    env: Optional[Dict[str, str]] = None


class ConnectionOptions(_Options):
    request_timeout: float = Field(default=DEFAULT_REQUEST_TIMEOUT, gt=0)
    init_timeout: float = Field(default=DEFAULT_INIT_TIMEOUT, gt=0)
    kill_grace: float = Field(default=DEFAULT_KILL_GRACE, ge=0)
    client_info: Implementation = Field(
        default_factory=lambda: Implementation(name=CLIENT_NAME, version=CLIENT_VERSION)
    )
    auto_approve: bool = False


class AcpOptions(ConnectionOptions):
    protocol_version: int = PROTOCOL_VERSION


class McpOptions(ConnectionOptions):
    protocol_version: str = MCP_PROTOCOL_VERSION
    # Unsupervised mode: approve every elicitation without asking the host
    yolo_mode: bool = False
    # Unclaimed early approvals are evicted after this many seconds (default: request_timeout)
    approval_horizon: Optional[float] = Field(default=None, gt=0)
    approval_capacity: int = Field(default=1024, gt=0)


class ClientOptions(_Options):
    protocol: ProtocolType = ProtocolType.ACP
    yolo_mode: bool = False
    model: Optional[str] = None
    acp: AcpOptions = Field(default_factory=AcpOptions)
    mcp: McpOptions = Field(default_factory=McpOptions)
