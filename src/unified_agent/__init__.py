from .acp import AcpConnection, Session
from .client import ConnectionInfo, UnifiedAgentClient
from .connection import BaseConnection
from .core import (
    AgentConnectionError,
    Connection,
    ConnectionClosedError,
    IncomingRequest,
    NotReadyError,
    ProcessExitedError,
    RequestError,
    RequestTimeoutError,
    SpawnError,
)
from .events import (
    ApprovalRequestEvent,
    CodexEvent,
    ErrorEvent,
    Event,
    EventEmitter,
    ExitEvent,
    FileReadEvent,
    FileWriteEvent,
    LogEvent,
    MessageChunkEvent,
    NotificationEvent,
    PermissionRequestEvent,
    PlanEvent,
    PromptCompleteEvent,
    SessionUpdateEvent,
    StateChangeEvent,
    ThoughtChunkEvent,
    ToolCallEvent,
    ToolCallUpdateEvent,
    ToolResultEvent,
    ToolsChangedEvent,
)
from .mcp import ApprovalLedger, McpConnection
from .meta import MCP_PROTOCOL_VERSION, PROTOCOL_VERSION
from .options import (
    CLIENT_VERSION,
    AcpOptions,
    ClientOptions,
    ConnectionOptions,
    McpOptions,
    ProtocolType,
    SpawnConfig,
)
from .router import Router
from .schema import CallToolResult, ElicitationDecision, PromptResponse, Tool
from .state import ConnectionState

__version__ = CLIENT_VERSION

__all__ = [
    # constants
    "PROTOCOL_VERSION",
    "MCP_PROTOCOL_VERSION",
    "__version__",
    # connections
    "UnifiedAgentClient",
    "ConnectionInfo",
    "BaseConnection",
    "AcpConnection",
    "McpConnection",
    "Session",
    "ApprovalLedger",
    "Connection",
    "IncomingRequest",
    "Router",
    "ConnectionState",
    # options
    "SpawnConfig",
    "ConnectionOptions",
    "AcpOptions",
    "McpOptions",
    "ClientOptions",
    "ProtocolType",
    # errors
    "AgentConnectionError",
    "RequestError",
    "RequestTimeoutError",
    "ConnectionClosedError",
    "ProcessExitedError",
    "SpawnError",
    "NotReadyError",
    # events
    "Event",
    "EventEmitter",
    "StateChangeEvent",
    "LogEvent",
    "ErrorEvent",
    "ExitEvent",
    "NotificationEvent",
    "SessionUpdateEvent",
    "MessageChunkEvent",
    "ThoughtChunkEvent",
    "ToolCallEvent",
    "ToolCallUpdateEvent",
    "PlanEvent",
    "PromptCompleteEvent",
    "PermissionRequestEvent",
    "FileReadEvent",
    "FileWriteEvent",
    "ToolsChangedEvent",
    "ToolResultEvent",
    "CodexEvent",
    "ApprovalRequestEvent",
    # schema
    "PromptResponse",
    "CallToolResult",
    "Tool",
    "ElicitationDecision",
]
