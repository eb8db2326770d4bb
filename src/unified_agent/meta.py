# Method names and protocol constants for both dialects.
PROTOCOL_VERSION = 1
MCP_PROTOCOL_VERSION = "2024-11-05"

# Session dialect (ACP): host -> agent
AGENT_METHODS = {
    'initialize': 'initialize',
    'session_new': 'session/new',
    'session_prompt': 'session/prompt',
    'session_cancel': 'session/cancel',
    'session_set_mode': 'session/set_mode',
    'session_set_model': 'session/set_model',
    'session_set_config_option': 'session/set_config_option',
}
# Session dialect (ACP): agent -> host
CLIENT_METHODS = {
    'fs_read_text_file': 'fs/read_text_file',
    'fs_write_text_file': 'fs/write_text_file',
    'session_request_permission': 'session/request_permission',
    'session_update': 'session/update',
}

# Tool dialect (MCP): host -> server
MCP_METHODS = {
    'initialize': 'initialize',
    'initialized': 'notifications/initialized',
    'tools_list': 'tools/list',
    'tools_call': 'tools/call',
}
# Tool dialect (MCP): server -> host
MCP_CLIENT_METHODS = {
    'elicitation_create': 'elicitation/create',
    'sampling_create_message': 'sampling/createMessage',
    'codex_event': 'codex/event',
    'tools_list_changed': 'notifications/tools/list_changed',
}

DEFAULT_REQUEST_TIMEOUT = 600.0
DEFAULT_INIT_TIMEOUT = 60.0
DEFAULT_KILL_GRACE = 3.0
