"""
Wire types for the session dialect (ACP) and the tool dialect (MCP).

Field names follow the wire (camelCase for ACP, whatever the server uses for
MCP extensions). Unknown fields are preserved so newer peers do not fail
validation.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class _WireModel(BaseModel):
    model_config = ConfigDict(extra="allow")

    def to_params(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)


class Implementation(_WireModel):
    name: str
    version: str


# --- Session dialect: handshake ---------------------------------------------------

class FileSystemCapability(_WireModel):
    readTextFile: bool = False
    writeTextFile: bool = False


class ClientCapabilities(_WireModel):
    fs: FileSystemCapability = Field(default_factory=FileSystemCapability)
    terminal: bool = False


class InitializeRequest(_WireModel):
    protocolVersion: int
    clientCapabilities: ClientCapabilities = Field(default_factory=ClientCapabilities)
    clientInfo: Optional[Implementation] = None


class InitializeResponse(_WireModel):
    protocolVersion: int
    agentCapabilities: Optional[Dict[str, Any]] = None
    authMethods: List[Dict[str, Any]] = Field(default_factory=list)
    agentInfo: Optional[Implementation] = None


# --- Session dialect: sessions ----------------------------------------------------

class NewSessionRequest(_WireModel):
    cwd: str
    mcpServers: List[Dict[str, Any]] = Field(default_factory=list)


class ModelInfo(_WireModel):
    modelId: str
    name: Optional[str] = None


class SessionModelState(_WireModel):
    availableModels: List[ModelInfo] = Field(default_factory=list)
    currentModelId: Optional[str] = None


class SessionMode(_WireModel):
    id: str
    name: Optional[str] = None
    description: Optional[str] = None


class SessionModeState(_WireModel):
    availableModes: List[SessionMode] = Field(default_factory=list)
    currentModeId: Optional[str] = None


class ConfigOption(_WireModel):
    id: str
    name: Optional[str] = None
    type: Optional[str] = None
    currentValue: Any = None
    options: List[Any] = Field(default_factory=list)


class NewSessionResponse(_WireModel):
    sessionId: str
    models: Optional[SessionModelState] = None
    modes: Optional[SessionModeState] = None
    configOptions: List[ConfigOption] = Field(default_factory=list)


class TextContentBlock(_WireModel):
    type: Literal["text"] = "text"
    text: str


class PromptRequest(_WireModel):
    sessionId: str
    prompt: List[TextContentBlock]


class PromptResponse(_WireModel):
    stopReason: str


class CancelNotification(_WireModel):
    sessionId: str


class SetSessionModeRequest(_WireModel):
    sessionId: str
    modeId: str


class SetSessionModelRequest(_WireModel):
    sessionId: str
    modelId: str


class SetSessionConfigOptionRequest(_WireModel):
    sessionId: str
    configId: str
    value: Any


class SetSessionConfigOptionResponse(_WireModel):
    configOptions: Optional[List[ConfigOption]] = None


# --- Session dialect: agent -> host requests -------------------------------------

class PermissionOption(_WireModel):
    optionId: str
    name: Optional[str] = None
    label: Optional[str] = None
    kind: Optional[str] = None


class RequestPermissionRequest(_WireModel):
    sessionId: str
    options: List[PermissionOption] = Field(default_factory=list)
    toolCall: Optional[Dict[str, Any]] = None
    description: Optional[str] = None


class RequestPermissionResponse(_WireModel):
    outcome: Dict[str, Any]

    @classmethod
    def selected(cls, option_id: str) -> "RequestPermissionResponse":
        return cls(outcome={"outcome": "selected", "optionId": option_id})

    @classmethod
    def cancelled(cls) -> "RequestPermissionResponse":
        return cls(outcome={"outcome": "cancelled"})


class ReadTextFileRequest(_WireModel):
    sessionId: str
    path: str
    line: Optional[int] = None
    limit: Optional[int] = None


class ReadTextFileResponse(_WireModel):
    content: str


class WriteTextFileRequest(_WireModel):
    sessionId: str
    path: str
    content: str


# --- Session dialect: session/update ---------------------------------------------

class SessionNotification(_WireModel):
    sessionId: str
    update: Dict[str, Any]


class ContentChunk(_WireModel):
    sessionUpdate: str
    content: Dict[str, Any]

    @property
    def text(self) -> Optional[str]:
        if self.content.get("type") == "text" and isinstance(self.content.get("text"), str):
            return self.content["text"]
        return None


class ToolCallUpdate(_WireModel):
    sessionUpdate: str
    toolCallId: Optional[str] = None
    title: Optional[str] = None
    status: Optional[str] = None
    kind: Optional[str] = None


class PlanEntry(_WireModel):
    content: str
    priority: Optional[str] = None
    status: Optional[str] = None


class PlanUpdate(_WireModel):
    sessionUpdate: str
    entries: List[PlanEntry] = Field(default_factory=list)


# --- Tool dialect -----------------------------------------------------------------

class McpInitializeRequest(_WireModel):
    protocolVersion: str
    capabilities: Dict[str, Any]
    clientInfo: Implementation


class McpInitializeResult(_WireModel):
    protocolVersion: str
    capabilities: Dict[str, Any] = Field(default_factory=dict)
    serverInfo: Optional[Implementation] = None


class Tool(_WireModel):
    name: str
    description: Optional[str] = None
    inputSchema: Dict[str, Any] = Field(default_factory=dict)


class ListToolsResult(_WireModel):
    tools: List[Tool] = Field(default_factory=list)


class CallToolRequest(_WireModel):
    name: str
    arguments: Dict[str, Any] = Field(default_factory=dict)


class ToolContent(_WireModel):
    type: str
    text: Optional[str] = None
    data: Optional[str] = None
    mimeType: Optional[str] = None


class CallToolResult(_WireModel):
    content: List[ToolContent] = Field(default_factory=list)
    isError: bool = False


class CodexEventMessage(_WireModel):
    type: Optional[str] = None
    call_id: Optional[str] = None


class CodexEventParams(_WireModel):
    msg: Optional[CodexEventMessage] = None


class ElicitationCreateParams(_WireModel):
    codex_call_id: Optional[str] = None
    message: Optional[str] = None


class ElicitationDecision(str, Enum):
    APPROVED = "approved"
    APPROVED_FOR_SESSION = "approved_for_session"
    DENIED = "denied"
    ABORT = "abort"


class ElicitationResponse(_WireModel):
    decision: ElicitationDecision

    def to_params(self) -> Dict[str, Any]:
        return {"decision": self.decision.value}
