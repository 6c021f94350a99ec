from pydantic import BaseModel
from typing import Any, Optional

class AuditLogEntry(BaseModel):
    tool_call_id: str
    call_id: str
    tool_name: str
    practice_id: Optional[str] = None
    arguments: Any = None
    result: Optional[str] = None
    error: Optional[str] = None
    success: bool = False
    latency_ms: int = 0
