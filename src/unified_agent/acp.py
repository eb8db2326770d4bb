from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional

from pydantic import ValidationError

from .connection import BaseConnection
from .core import AgentConnectionError, IncomingRequest, NotReadyError, RequestError
from .events import (
    Event,
    FileReadEvent,
    FileWriteEvent,
    MessageChunkEvent,
    PermissionRequestEvent,
    PlanEvent,
    PromptCompleteEvent,
    SessionUpdateEvent,
    ThoughtChunkEvent,
    ToolCallEvent,
    ToolCallUpdateEvent,
)
from .meta import AGENT_METHODS, CLIENT_METHODS
from .options import AcpOptions, SpawnConfig
from .router import NotificationHandler, RequestHandler
from .schema import (
    CancelNotification,
    ClientCapabilities,
    ConfigOption,
    ContentChunk,
    FileSystemCapability,
    InitializeRequest,
    InitializeResponse,
    NewSessionRequest,
    NewSessionResponse,
    PlanUpdate,
    PromptRequest,
    PromptResponse,
    ReadTextFileRequest,
    ReadTextFileResponse,
    RequestPermissionRequest,
    RequestPermissionResponse,
    SessionNotification,
    SetSessionConfigOptionRequest,
    SetSessionConfigOptionResponse,
    SetSessionModelRequest,
    SetSessionModeRequest,
    TextContentBlock,
    ToolCallUpdate,
    WriteTextFileRequest,
)
from .state import ConnectionState

logger = logging.getLogger(__name__)


@dataclass
class Session:
    session_id: str
    models: List[str] = field(default_factory=list)
    current_model_id: Optional[str] = None
    modes: List[str] = field(default_factory=list)
    current_mode_id: Optional[str] = None
    config_options: List[ConfigOption] = field(default_factory=list)

    @classmethod
    def from_response(cls, resp: NewSessionResponse) -> "Session":
        session = cls(session_id=resp.sessionId, config_options=list(resp.configOptions))
        if resp.models is not None:
            session.models = [m.modelId for m in resp.models.availableModels]
            session.current_model_id = resp.models.currentModelId
        if resp.modes is not None:
            session.modes = [m.id for m in resp.modes.availableModes]
            session.current_mode_id = resp.modes.currentModeId
        return session

    def set_option_value(self, config_id: str, value: Any) -> None:
        for option in self.config_options:
            if option.id == config_id:
                option.currentValue = value
                return


# --- session/update decoding ------------------------------------------------------

UpdateDecoder = Callable[[Dict[str, Any], str], Optional[Event]]


def _decode_message_chunk(update: Dict[str, Any], session_id: str) -> Optional[Event]:
    text = ContentChunk.model_validate(update).text
    return MessageChunkEvent(text=text, session_id=session_id) if text is not None else None


def _decode_thought_chunk(update: Dict[str, Any], session_id: str) -> Optional[Event]:
    text = ContentChunk.model_validate(update).text
    return ThoughtChunkEvent(text=text, session_id=session_id) if text is not None else None


def _decode_tool_call(update: Dict[str, Any], session_id: str) -> Optional[Event]:
    call = ToolCallUpdate.model_validate(update)
    return ToolCallEvent(
        tool_call_id=call.toolCallId, title=call.title or "", status=call.status or "", session_id=session_id
    )


def _decode_tool_call_update(update: Dict[str, Any], session_id: str) -> Optional[Event]:
    call = ToolCallUpdate.model_validate(update)
    return ToolCallUpdateEvent(
        tool_call_id=call.toolCallId, title=call.title or "", status=call.status or "", session_id=session_id
    )


def _decode_plan(update: Dict[str, Any], session_id: str) -> Optional[Event]:
    return PlanEvent(entries=PlanUpdate.model_validate(update).entries, session_id=session_id)


_UPDATE_DECODERS: Dict[str, UpdateDecoder] = {
    "agent_message_chunk": _decode_message_chunk,
    "user_message_chunk": _decode_message_chunk,
    "agent_thought_chunk": _decode_thought_chunk,
    "tool_call": _decode_tool_call,
    "tool_call_update": _decode_tool_call_update,
    "plan": _decode_plan,
}


def _rejecter(request: IncomingRequest) -> Callable[[str], bool]:
    def reject(message: str) -> bool:
        return request.fail(RequestError(-32603, message))

    return reject


class AcpConnection(BaseConnection):
    """
    Session-dialect (Agent Client Protocol) connection.

    ``connect`` spawns the agent, performs ``initialize`` and ``session/new``
    and leaves the connection ready for prompts. Permission and file requests
    from the agent reach the host as events carrying a resolver.
    """

    options: AcpOptions

    def __init__(self, spawn: SpawnConfig, options: Optional[AcpOptions] = None) -> None:
        super().__init__(spawn, options or AcpOptions())
        self.agent_info: Optional[InitializeResponse] = None
        self.session: Optional[Session] = None

    def _request_handlers(self) -> Mapping[str, RequestHandler]:
        return {
            CLIENT_METHODS["session_request_permission"]: self._on_request_permission,
            CLIENT_METHODS["fs_read_text_file"]: self._on_read_text_file,
            CLIENT_METHODS["fs_write_text_file"]: self._on_write_text_file,
        }

    def _notification_handlers(self) -> Mapping[str, NotificationHandler]:
        return {CLIENT_METHODS["session_update"]: self._on_session_update}

    def _on_teardown(self) -> None:
        self.session = None

    # --- Lifecycle ---------------------------------------------------------------

    async def connect(self, cwd: Optional[str] = None) -> NewSessionResponse:
        await self._spawn()
        self._set_state(ConnectionState.INITIALIZING)
        try:
            init = await self._handshake(
                AGENT_METHODS["initialize"],
                InitializeRequest(
                    protocolVersion=self.options.protocol_version,
                    clientCapabilities=ClientCapabilities(
                        fs=FileSystemCapability(readTextFile=True, writeTextFile=True)
                    ),
                    clientInfo=self.options.client_info,
                ).to_params(),
            )
            self.agent_info = InitializeResponse.model_validate(init)
            resp = NewSessionResponse.model_validate(
                await self._handshake(
                    AGENT_METHODS["session_new"],
                    NewSessionRequest(cwd=cwd or self.spawn.cwd).to_params(),
                )
            )
        except (AgentConnectionError, ValidationError) as err:
            if not self._torn_down:
                self._fail(err)
            raise
        self._check_torn_down()
        self.session = Session.from_response(resp)
        self._set_state(ConnectionState.READY)
        return resp

    # --- Agent-bound methods (host -> agent) -------------------------------------

    async def send_prompt(self, text: str) -> PromptResponse:
        session = self._require_session()
        result = await self._request(
            AGENT_METHODS["session_prompt"],
            PromptRequest(sessionId=session.session_id, prompt=[TextContentBlock(text=text)]).to_params(),
        )
        resp = PromptResponse.model_validate(result)
        self.events.emit(PromptCompleteEvent(session_id=session.session_id, stop_reason=resp.stopReason))
        return resp

    async def set_mode(self, mode_id: str = "bypassPermissions") -> None:
        session = self._require_session()
        await self._request(
            AGENT_METHODS["session_set_mode"],
            SetSessionModeRequest(sessionId=session.session_id, modeId=mode_id).to_params(),
        )
        session.current_mode_id = mode_id

    async def set_model(self, model_id: str) -> None:
        """``session/set_model``, falling back to the ``model`` config option if the agent rejects it."""
        session = self._require_session()
        try:
            await self._request(
                AGENT_METHODS["session_set_model"],
                SetSessionModelRequest(sessionId=session.session_id, modelId=model_id).to_params(),
            )
        except RequestError as err:
            logger.info("session/set_model rejected (%s); using session/set_config_option", err)
            await self.set_config_option("model", model_id)
            return
        session.current_model_id = model_id

    async def set_config_option(self, config_id: str, value: Any) -> None:
        session = self._require_session()
        result = await self._request(
            AGENT_METHODS["session_set_config_option"],
            SetSessionConfigOptionRequest(sessionId=session.session_id, configId=config_id, value=value).to_params(),
        )
        resp = SetSessionConfigOptionResponse.model_validate(result or {})
        if resp.configOptions is not None:
            session.config_options = resp.configOptions
        else:
            session.set_option_value(config_id, value)
        if config_id == "model":
            session.current_model_id = value
        elif config_id == "mode":
            session.current_mode_id = value

    async def cancel(self) -> None:
        session = self._require_session()
        await self._require_ready().send_notification(
            AGENT_METHODS["session_cancel"], CancelNotification(sessionId=session.session_id).to_params()
        )

    def _require_session(self) -> Session:
        if self.session is None:
            raise NotReadyError("no session; call connect() first")
        return self.session

    # --- Client-bound methods (agent -> host) ------------------------------------

    def _on_request_permission(self, request: IncomingRequest) -> None:
        params = RequestPermissionRequest.model_validate(request.params or {})
        if self.options.auto_approve and params.options:
            request.respond(RequestPermissionResponse.selected(params.options[0].optionId))
            return

        def respond(option_id: Optional[str]) -> bool:
            if option_id is None:
                return request.respond(RequestPermissionResponse.cancelled())
            return request.respond(RequestPermissionResponse.selected(option_id))

        self.events.emit(PermissionRequestEvent(request=params, respond=respond, reject=_rejecter(request)))

    def _on_read_text_file(self, request: IncomingRequest) -> None:
        params = ReadTextFileRequest.model_validate(request.params or {})

        def respond(content: str) -> bool:
            return request.respond(ReadTextFileResponse(content=content))

        self.events.emit(FileReadEvent(request=params, respond=respond, reject=_rejecter(request)))

    def _on_write_text_file(self, request: IncomingRequest) -> None:
        params = WriteTextFileRequest.model_validate(request.params or {})

        def respond() -> bool:
            return request.respond(None)

        self.events.emit(FileWriteEvent(request=params, respond=respond, reject=_rejecter(request)))

    def _on_session_update(self, params: Optional[Any]) -> None:
        notification = SessionNotification.model_validate(params or {})
        session_id = notification.sessionId
        self.events.emit(SessionUpdateEvent(session_id=session_id, update=notification.update))

        kind = notification.update.get("sessionUpdate")
        decoder = _UPDATE_DECODERS.get(kind) if isinstance(kind, str) else None
        if decoder is None:
            logger.debug("Ignoring session update kind %r", kind)
            return
        try:
            event = decoder(notification.update, session_id)
        except ValidationError:
            logger.debug("Ignoring malformed %s update", kind, exc_info=True)
            return
        if event is not None:
            self.events.emit(event)
