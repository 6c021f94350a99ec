from typing import Any, Dict

from voice_booking.core.logger import logger
from voice_booking.models.conversation import BookingStage, ConversationState, HandlerResult, PatientStatus
from voice_booking.models.practice import Practice
from voice_booking.services.nlu_service import NLUService

URGENT_KEYWORDS = ("pain", "toothache", "emergency", "hurts", "broken", "urgent", "abscess", "swelling", "infection")

NO_CATALOG_MESSAGE = (
    "I'm sorry, I'm not able to book appointments online for this office right now. "
    "Please call the office directly and our team will be happy to help."
)


def is_urgent_request(utterance: str) -> bool:
    text = (utterance or "").lower()
    return any(keyword in text for keyword in URGENT_KEYWORDS)


class AppointmentTypeResolver:
    def __init__(self, nlu: NLUService):
        self.nlu = nlu

    async def resolve(self, state: ConversationState, practice: Practice, args: Dict[str, Any]) -> HandlerResult:
        request = str(args.get("patientRequest") or "").strip()
        if not request:
            return HandlerResult(message="Of course. What's the reason for your visit today?", state=state)

        if state.booking.stage == BookingStage.BOOKING_CONFIRMED:
            return HandlerResult(
                message=f"You're already booked for your {state.booking.spoken_name}. Is there anything else I can help you with?",
                state=state,
            )

        catalog = [o for o in practice.offerings if o.bookable_online and o.keywords]
        if not catalog:
            logger.warning(f"⚠️ Practice {practice.id} has no bookable appointment types with keywords")
            return HandlerResult(message=NO_CATALOG_MESSAGE, state=state, is_error=True)

        # Internal ids never reach the prompt; the model only sees positions
        index = await self.nlu.match_intent_to_catalog(
            request, [{"name": o.name, "keywords": o.keywords} for o in catalog]
        )
        if index is None:
            return HandlerResult(
                message="I'm not quite sure what type of appointment you need. Could you tell me a bit more about the reason for your visit?",
                state=state,
            )

        offering = catalog[index]
        urgent = is_urgent_request(request)
        logger.info(f"🦷 Request '{request}' -> {offering.name} ({offering.duration_minutes} min, urgent={urgent})")

        # A new appointment type invalidates any times offered for the previous one
        new_state = state.with_booking(
            appointment_type_id=offering.id,
            appointment_type_name=offering.name,
            spoken_name=offering.spoken,
            duration_minutes=offering.duration_minutes,
            nexhealth_appointment_type_id=offering.nexhealth_appointment_type_id,
            patient_request=request,
            is_urgent=urgent,
            stage=BookingStage.PRESENTING_SLOTS,
            offered_slots=[],
            selected_slot=None,
        )

        message = f"Okay, I've noted you're looking for a {offering.spoken}."
        if urgent:
            message = f"I'm sorry to hear that. {message} We'll try to get you in as soon as possible."
        if state.patient.status == PatientStatus.IDENTIFIED:
            message += " What day works best for you?"
        else:
            message += " Before we look at times, I'll just need a few details from you."

        return HandlerResult(message=message, state=new_state)
