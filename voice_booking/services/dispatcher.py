import json
import time
from typing import Any, Callable, Dict, Optional, Tuple

from voice_booking.core.logger import logger
from voice_booking.models.conversation import ConversationState, HandlerResult, PatientStatus
from voice_booking.models.db_models import AuditLogEntry
from voice_booking.models.practice import Practice
from voice_booking.models.vapi_models import ToolCallResult, ToolInvocation
from voice_booking.services.appointment_types import AppointmentTypeResolver
from voice_booking.services.audit_log import AuditLog, audit_log
from voice_booking.services.availability import AvailabilityFinder
from voice_booking.services.booking_service import BookingService
from voice_booking.services.insurance_info import InsuranceInfo
from voice_booking.services.nexhealth_client import client_for_practice
from voice_booking.services.nlu_service import NLUService, nlu_service
from voice_booking.services.patient_identification import PatientIdentifier
from voice_booking.services.practice_service import PracticeService, practice_service
from voice_booking.services.state_store import ConversationStore, conversation_store

FIND_APPOINTMENT_TYPE = "findAppointmentType"
MANAGE_PATIENT_RECORD = "managePatientRecord"
CHECK_AVAILABLE_SLOTS = "checkAvailableSlots"
SELECT_AND_BOOK_SLOT = "selectAndBookSlot"
INSURANCE_INFO = "insuranceInfo"

# Tools that talk to the scheduling system and need the practice's NexHealth setup
SCHEDULING_TOOLS = {MANAGE_PATIENT_RECORD, CHECK_AVAILABLE_SLOTS, SELECT_AND_BOOK_SLOT}

TECHNICAL_ISSUE = (
    "I'm sorry, I'm having a technical issue right now. "
    "Please try again in a moment, or call the office directly."
)
PRACTICE_UNAVAILABLE = (
    "I'm sorry, I'm having trouble accessing the practice's information right now. "
    "Please call the office directly and our team will be happy to help."
)
NOT_CONFIGURED = (
    "I'm sorry, online scheduling isn't fully set up for this office yet. "
    "Please call the office directly and our team will be happy to help."
)
UNREADABLE_ARGUMENTS = "I'm sorry, I didn't quite catch that. Could you say that again?"
UNKNOWN_TOOL = "I'm sorry, I can't help with that request right now."


class ArgumentError(ValueError):
    pass


def parse_arguments(raw: Any) -> Dict[str, Any]:
    """Tool arguments arrive as an object or a JSON string."""
    if raw is None:
        return {}
    if isinstance(raw, dict):
        return raw
    if isinstance(raw, str):
        if not raw.strip():
            return {}
        try:
            parsed = json.loads(raw)
        except ValueError as e:
            raise ArgumentError(f"arguments are not valid JSON: {e}") from e
        if isinstance(parsed, dict):
            return parsed
    raise ArgumentError(f"arguments must be an object, got {type(raw).__name__}")


class ToolDispatcher:
    """
    Runs one tool invocation end to end: audit, state load, practice lookup,
    handler, optional follow-up, state save, audit completion.
    """

    def __init__(self, store: Optional[ConversationStore] = None, audit: Optional[AuditLog] = None,
                 practices: Optional[PracticeService] = None, nlu: Optional[NLUService] = None,
                 ehr_factory: Optional[Callable[[Practice], Any]] = None):
        self.store = store or conversation_store
        self.audit = audit or audit_log
        self.practices = practices or practice_service
        self.nlu = nlu or nlu_service
        self.ehr_factory = ehr_factory or client_for_practice

        self.appointment_types = AppointmentTypeResolver(self.nlu)
        self.patients = PatientIdentifier(self.nlu)
        self.availability = AvailabilityFinder(self.nlu)
        self.booking = BookingService(self.nlu, self.store)
        self.insurance = InsuranceInfo(self.nlu)

    async def dispatch(self, invocation: ToolInvocation, defer: Optional[Callable] = None) -> ToolCallResult:
        """
        Always returns a result. `defer` (e.g. BackgroundTasks.add_task) lets the
        completion audit write happen after the response is sent.
        """
        started = time.perf_counter()
        entry = AuditLogEntry(
            tool_call_id=invocation.tool_call_id,
            call_id=invocation.call_id,
            tool_name=invocation.tool_name,
            arguments=invocation.arguments,
        )
        await self.audit.record_start(entry)
        logger.info(f"🔔 Tool call: {invocation.tool_name} ({invocation.tool_call_id}) for call {invocation.call_id}")

        practice_id = None
        try:
            result, practice_id, success = await self._run(invocation)
        except Exception as e:
            logger.error(f"🔥 Tool {invocation.tool_name} failed: {e}", exc_info=True)
            result, success = ToolCallResult(toolCallId=invocation.tool_call_id, error=TECHNICAL_ISSUE), False

        entry = entry.model_copy(update={
            "practice_id": practice_id,
            "result": result.result,
            "error": result.error,
            "success": success,
            "latency_ms": int((time.perf_counter() - started) * 1000),
        })
        if defer is not None:
            defer(self.audit.record_completion, entry)
        else:
            await self.audit.record_completion(entry)
        return result

    async def _run(self, invocation: ToolInvocation) -> Tuple[ToolCallResult, Optional[str], bool]:
        tool_call_id = invocation.tool_call_id
        try:
            args = parse_arguments(invocation.arguments)
        except ArgumentError as e:
            logger.warning(f"⚠️ {invocation.tool_name}: {e}")
            return ToolCallResult(toolCallId=tool_call_id, error=UNREADABLE_ARGUMENTS), None, False

        state = await self.store.load(invocation.call_id)
        practice = await self.practices.resolve(state.practice_id, invocation.assistant_id, invocation.assistant_name)
        if practice is None:
            return ToolCallResult(toolCallId=tool_call_id, result=PRACTICE_UNAVAILABLE), None, False
        state = state.with_practice(practice.id)

        outcome = await self._route(invocation.tool_name, state, practice, args)
        if outcome is None:
            logger.warning(f"⚠️ Unknown tool name: {invocation.tool_name}")
            return ToolCallResult(toolCallId=tool_call_id, error=UNKNOWN_TOOL), practice.id, False

        # Saved last, after any EHR side effect. A failed save still returns the handler's answer
        try:
            await self.store.save(invocation.call_id, outcome.state)
        except Exception as e:
            logger.error(f"❌ State save failed for call {invocation.call_id}: {e}", exc_info=True)
        return ToolCallResult(toolCallId=tool_call_id, result=outcome.message), practice.id, not outcome.is_error

    async def _route(self, tool_name: str, state: ConversationState, practice: Practice,
                     args: Dict[str, Any]) -> Optional[HandlerResult]:
        if tool_name == FIND_APPOINTMENT_TYPE:
            return await self.appointment_types.resolve(state, practice, args)

        if tool_name == INSURANCE_INFO:
            return await self.insurance.answer(state, practice, args)

        if tool_name not in SCHEDULING_TOOLS:
            return None

        if not practice.is_scheduling_configured:
            logger.error(f"❌ Practice {practice.id} has no NexHealth subdomain/location configured")
            return HandlerResult(message=NOT_CONFIGURED, state=state, is_error=True)

        ehr = self.ehr_factory(practice)

        if tool_name == MANAGE_PATIENT_RECORD:
            outcome = await self.patients.handle(state, practice, ehr, args)
            newly_identified = (
                state.patient.status != PatientStatus.IDENTIFIED
                and outcome.state.patient.status == PatientStatus.IDENTIFIED
            )
            if not newly_identified:
                return outcome
            follow_up = await self.availability.continue_after_identification(outcome.state, practice, ehr)
            return HandlerResult(
                message=" ".join(m for m in (outcome.message, follow_up.message) if m),
                state=follow_up.state,
                is_error=follow_up.is_error,
            )

        if tool_name == CHECK_AVAILABLE_SLOTS:
            return await self.availability.discover(state, practice, ehr, args)

        return await self.booking.select_and_book(state, ehr, args)


_dispatcher: Optional[ToolDispatcher] = None


def get_dispatcher() -> ToolDispatcher:
    global _dispatcher
    if _dispatcher is None:
        _dispatcher = ToolDispatcher()
    return _dispatcher
