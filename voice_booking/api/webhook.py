from fastapi import APIRouter, BackgroundTasks, Request
from pydantic import ValidationError
from typing import Dict, Any, List

from voice_booking.models.vapi_models import ToolCallResult, ToolInvocation, VapiToolCall
from voice_booking.services.db_service import db_service
from voice_booking.services.dispatcher import get_dispatcher
from voice_booking.services.llm_service import get_assistant_config
from voice_booking.core.logger import logger

router = APIRouter()

@router.post("/webhook")
async def vapi_webhook(
    request: Request,
    background_tasks: BackgroundTasks
) -> Dict[str, Any]:
    """
    Handle incoming webhooks from Vapi.ai. The body is read manually so a
    partially malformed payload still gets a usable answer.
    """
    try:
        payload = await request.json()
        message = payload.get("message", {})
        msg_type = message.get("type")
        call = message.get("call") or {}
        call_id = call.get("id")

        if msg_type == "assistant-request":
            logger.info("Handling assistant-request")
            return {"assistant": get_assistant_config()}

        if msg_type == "tool-calls":
            return {"results": await _handle_tool_calls(message, background_tasks)}

        if msg_type == "transcript":
            # Partial fragments are superseded by the final one
            if call_id and message.get("transcriptType") == "final" and message.get("transcript"):
                line = f"[{message.get('role', 'unknown')}]: {message['transcript']}"
                background_tasks.add_task(db_service.append_transcript, call_id, line)
            return {}

        if msg_type == "status-update":
            if call_id and message.get("status"):
                logger.info(f"📞 Call {call_id} status: {message['status']}")
                background_tasks.add_task(db_service.update_call, call_id, {"call_status": message["status"]})
            return {}

        if msg_type == "end-of-call-report":
            if call_id:
                fields = {"call_status": "ENDED", "ended_reason": message.get("endedReason")}
                if message.get("summary"):
                    fields["summary"] = message["summary"]
                if message.get("transcript"):
                    fields["transcript_text"] = message["transcript"]
                logger.info(f"🏁 Call {call_id} ended: {message.get('endedReason')}")
                background_tasks.add_task(db_service.update_call, call_id, fields)
            return {}

        return {}

    except Exception:
        logger.error("❌ CRITICAL WEBHOOK ERROR:", exc_info=True)
        return {}


async def _handle_tool_calls(message: Dict[str, Any], background_tasks: BackgroundTasks) -> List[Dict[str, Any]]:
    call = message.get("call") or {}
    assistant = message.get("assistant") or {}
    tool_calls = message.get("toolCallList") or message.get("toolCalls") or []
    dispatcher = get_dispatcher()
    results = []

    for raw in tool_calls:
        try:
            tool_call = VapiToolCall.model_validate(raw)
        except ValidationError as e:
            logger.error(f"❌ Malformed tool call: {e}")
            results.append(ToolCallResult(
                toolCallId=(raw.get("id") if isinstance(raw, dict) else None) or "unknown",
                error="Malformed tool call payload."
            ).model_dump(exclude_none=True))
            continue

        if not call.get("id"):
            results.append(ToolCallResult(toolCallId=tool_call.id, error="Missing call id.").model_dump(exclude_none=True))
            continue

        invocation = ToolInvocation(
            tool_call_id=tool_call.id,
            tool_name=tool_call.function.name,
            call_id=call["id"],
            arguments=tool_call.function.arguments,
            assistant_id=call.get("assistantId") or assistant.get("id"),
            assistant_name=assistant.get("name"),
        )
        result = await dispatcher.dispatch(invocation, defer=background_tasks.add_task)
        results.append(result.model_dump(exclude_none=True))

    return results
