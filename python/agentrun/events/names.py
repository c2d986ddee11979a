# Progress events emitted while a run is driven to completion
AGENT_MESSAGE = "agent_message"
AGENT_ACTION = "agent_action"
AGENT_ACTION_COMPLETE = "agent_action_complete"

# Turn lifecycle events emitted by the conversation service
THREAD_CREATED = "thread_created"
AGENT_SELECTED = "agent_selected"
AGENT_EXECUTION_START = "agent_execution_start"
AGENT_EXECUTION_END = "agent_execution_end"
RESPONSE = "response"
ERROR = "error"

# Envelope sent to monitors; wraps any of the events above
MONITORED_EVENT = "monitored_event"
DISCONNECT = "disconnect"

# Values of the "type" field of an agent_message payload
MESSAGE_ASSISTANT = "assistant"
MESSAGE_USER = "user"
MESSAGE_FUNCTION_CALLS = "function_calls"
MESSAGE_FUNCTION_RESULT = "function_result"
MESSAGE_FUNCTION_OUTPUTS = "function_outputs"
