from pydantic import BaseModel, Field
from typing import Optional, Dict, Any, Union

# --- Incoming Request Models ---

class VapiFunction(BaseModel):
    name: str
    # Vapi sends either an object or a JSON-encoded string
    arguments: Union[Dict[str, Any], str, None] = None

class VapiToolCall(BaseModel):
    id: str
    type: str = "function"
    function: VapiFunction

class ToolInvocation(BaseModel):
    """One tool call, detached from the webhook envelope it arrived in."""
    tool_call_id: str
    tool_name: str
    call_id: str
    arguments: Union[Dict[str, Any], str, None] = None
    assistant_id: Optional[str] = None
    assistant_name: Optional[str] = None

class DirectToolRequest(BaseModel):
    callId: str
    arguments: Union[Dict[str, Any], str, None] = Field(default_factory=dict)
    assistantId: Optional[str] = None
    toolCallId: Optional[str] = None

# --- Outgoing Response Models ---

class ToolCallResult(BaseModel):
    toolCallId: str
    result: Optional[str] = None
    error: Optional[str] = None
