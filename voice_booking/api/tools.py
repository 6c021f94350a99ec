import uuid

from fastapi import APIRouter, BackgroundTasks

from voice_booking.models.vapi_models import DirectToolRequest, ToolInvocation
from voice_booking.services.dispatcher import get_dispatcher

router = APIRouter()

@router.post("/tools/{tool_name}")
async def run_tool(tool_name: str, req: DirectToolRequest, background_tasks: BackgroundTasks):
    """
    Runs one tool outside the Vapi envelope.
    Returns {"result": ...} or {"error": ...}.
    """
    invocation = ToolInvocation(
        tool_call_id=req.toolCallId or f"direct-{uuid.uuid4()}",
        tool_name=tool_name,
        call_id=req.callId,
        arguments=req.arguments,
        assistant_id=req.assistantId,
    )
    result = await get_dispatcher().dispatch(invocation, defer=background_tasks.add_task)
    if result.error is not None:
        return {"error": result.error}
    return {"result": result.result}
