from fastapi.testclient import TestClient
from unittest.mock import AsyncMock, MagicMock, patch

from voice_booking.main import app
from voice_booking.models.vapi_models import ToolCallResult

client = TestClient(app)


def _dispatcher(result):
    dispatcher = MagicMock()
    dispatcher.dispatch = AsyncMock(return_value=result)
    return dispatcher


def _tool_calls_payload(call=None, tool_calls=None):
    return {
        "message": {
            "type": "tool-calls",
            "call": {"id": "call-1", "assistantId": "asst-1"} if call is None else call,
            "toolCallList": tool_calls if tool_calls is not None else [{
                "id": "tc-1",
                "type": "function",
                "function": {"name": "findAppointmentType", "arguments": '{"patientRequest": "cleaning"}'},
            }],
        }
    }


def test_health():
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_assistant_request_returns_tools():
    response = client.post("/api/webhook", json={"message": {"type": "assistant-request"}})
    assert response.status_code == 200
    tools = response.json()["assistant"]["model"]["tools"]
    assert [t["function"]["name"] for t in tools] == [
        "findAppointmentType", "managePatientRecord", "checkAvailableSlots", "selectAndBookSlot", "insuranceInfo",
    ]


def test_tool_calls_are_dispatched():
    dispatcher = _dispatcher(ToolCallResult(toolCallId="tc-1", result="Okay, I've noted you're looking for a cleaning."))
    with patch("voice_booking.api.webhook.get_dispatcher", return_value=dispatcher):
        response = client.post("/api/webhook", json=_tool_calls_payload())

    assert response.status_code == 200
    assert response.json() == {"results": [{"toolCallId": "tc-1", "result": "Okay, I've noted you're looking for a cleaning."}]}
    invocation = dispatcher.dispatch.call_args.args[0]
    assert invocation.call_id == "call-1"
    assert invocation.assistant_id == "asst-1"
    assert invocation.tool_name == "findAppointmentType"
    assert invocation.arguments == '{"patientRequest": "cleaning"}'


def test_tool_call_without_call_id():
    dispatcher = _dispatcher(None)
    with patch("voice_booking.api.webhook.get_dispatcher", return_value=dispatcher):
        response = client.post("/api/webhook", json=_tool_calls_payload(call={}))

    assert response.json() == {"results": [{"toolCallId": "tc-1", "error": "Missing call id."}]}
    dispatcher.dispatch.assert_not_awaited()


def test_malformed_tool_call():
    with patch("voice_booking.api.webhook.get_dispatcher", return_value=_dispatcher(None)):
        response = client.post("/api/webhook", json=_tool_calls_payload(tool_calls=[{"id": "tc-9"}]))
    assert response.json()["results"][0]["toolCallId"] == "tc-9"
    assert "error" in response.json()["results"][0]


def test_final_transcript_is_stored():
    db = MagicMock()
    db.append_transcript = AsyncMock()
    with patch("voice_booking.api.webhook.db_service", db):
        client.post("/api/webhook", json={"message": {
            "type": "transcript", "transcriptType": "partial", "role": "user", "transcript": "hel",
            "call": {"id": "call-1"},
        }})
        client.post("/api/webhook", json={"message": {
            "type": "transcript", "transcriptType": "final", "role": "user", "transcript": "hello",
            "call": {"id": "call-1"},
        }})

    db.append_transcript.assert_awaited_once_with("call-1", "[user]: hello")


def test_end_of_call_report():
    db = MagicMock()
    db.update_call = AsyncMock()
    with patch("voice_booking.api.webhook.db_service", db):
        response = client.post("/api/webhook", json={"message": {
            "type": "end-of-call-report", "endedReason": "customer-ended-call", "summary": "Booked a cleaning",
            "call": {"id": "call-1"},
        }})

    assert response.json() == {}
    call_id, fields = db.update_call.call_args.args
    assert call_id == "call-1"
    assert fields == {"call_status": "ENDED", "ended_reason": "customer-ended-call", "summary": "Booked a cleaning"}


def test_unknown_event_is_acknowledged():
    response = client.post("/api/webhook", json={"message": {"type": "speech-update"}})
    assert response.status_code == 200
    assert response.json() == {}


def test_direct_tool_endpoint():
    completed = []

    async def record_completion(tool_call_id):
        completed.append(tool_call_id)

    async def dispatch(invocation, defer=None):
        defer(record_completion, invocation.tool_call_id)
        return ToolCallResult(toolCallId=invocation.tool_call_id, result="What day would work best for you?")

    dispatcher = MagicMock()
    dispatcher.dispatch = AsyncMock(side_effect=dispatch)
    with patch("voice_booking.api.tools.get_dispatcher", return_value=dispatcher):
        response = client.post("/tools/checkAvailableSlots", json={"callId": "call-1", "arguments": {}})

    assert response.json() == {"result": "What day would work best for you?"}
    invocation = dispatcher.dispatch.call_args.args[0]
    assert invocation.tool_name == "checkAvailableSlots"
    assert invocation.tool_call_id.startswith("direct-")
    # Completion audit is handed to the background task queue
    assert completed == [invocation.tool_call_id]


def test_direct_tool_endpoint_error():
    dispatcher = _dispatcher(ToolCallResult(toolCallId="x", error="I'm sorry, I can't help with that request right now."))
    with patch("voice_booking.api.tools.get_dispatcher", return_value=dispatcher):
        response = client.post("/tools/somethingElse", json={"callId": "call-1"})
    assert response.json() == {"error": "I'm sorry, I can't help with that request right now."}
