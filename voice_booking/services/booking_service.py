import asyncio
from datetime import timedelta
from typing import Any, Dict, Optional

from voice_booking.core.config import settings
from voice_booking.core.logger import logger
from voice_booking.core.speech import format_spoken_datetime
from voice_booking.models.conversation import BookingStage, ConversationState, HandlerResult, PatientStatus
from voice_booking.services.availability import offer_text
from voice_booking.services.nexhealth_client import NexHealthClient, NexHealthError, is_slot_taken
from voice_booking.services.nlu_service import NLUService

SLOT_TAKEN_MESSAGE = (
    "I'm so sorry, it looks like that time was just taken. "
    "Would you like me to check for other available times?"
)
BOOKING_FAILED_MESSAGE = (
    "I'm sorry, there was a system error while booking your appointment. "
    "Our staff has been notified and will give you a call back shortly to get you scheduled."
)


class BookingService:
    """
    Final turns of the call: match the caller's pick against the stored offer
    and create the appointment.
    """

    def __init__(self, nlu: NLUService, store, retry_delay: Optional[float] = None):
        self.nlu = nlu
        self.store = store
        self.retry_delay = settings.TRANSCRIPT_RETRY_DELAY_SECONDS if retry_delay is None else retry_delay

    async def select_and_book(self, state: ConversationState, ehr: NexHealthClient,
                              args: Dict[str, Any]) -> HandlerResult:
        booking = state.booking

        if booking.stage == BookingStage.BOOKING_CONFIRMED:
            return HandlerResult(
                message=f"You're already booked for {booking.selected_slot.display}. Is there anything else I can help you with?",
                state=state,
            )
        if not booking.offered_slots:
            return HandlerResult(
                message="I don't have any times to choose from yet. What day would you like me to check?",
                state=state,
            )
        if state.patient.status != PatientStatus.IDENTIFIED or not state.patient.patient_id:
            return HandlerResult(
                message="Before I can book that time, I'll just need to get a few details from you.",
                state=state,
            )

        selection = str(args.get("userSelection") or "").strip()
        index = await self.nlu.match_utterance_to_offer(selection, [s.display for s in booking.offered_slots])
        if index is None:
            return HandlerResult(
                message=f"I'm not sure which time you meant. {offer_text(booking.offered_slots)} Which one would you like?",
                state=state,
            )

        slot = booking.offered_slots[index]
        logger.info(f"🎯 Caller picked option {index + 1}: {slot.display}")

        transcript = await self._fetch_transcript(state.call_id)
        note = await self.nlu.appointment_note(booking.appointment_type_name, booking.patient_request, transcript)

        start = slot.start
        end = start + timedelta(minutes=booking.duration_minutes)
        try:
            appointment_id = await ehr.create_booking(
                patient_id=state.patient.patient_id,
                provider_id=slot.provider_id,
                operatory_id=slot.operatory_id,
                start=start,
                end=end,
                note=note,
                appointment_type_id=booking.nexhealth_appointment_type_id,
            )
        except NexHealthError as e:
            if is_slot_taken(e):
                logger.warning(f"⚠️ Slot {slot.display} was taken before booking: {e}")
                # Offer list stays as it was; only the selection is dropped
                new_state = state.with_booking(stage=BookingStage.AWAITING_SLOT_CONFIRMATION, selected_slot=None)
                return HandlerResult(message=SLOT_TAKEN_MESSAGE, state=new_state)

            logger.error(f"❌ Booking failed for call {state.call_id}: {e}")
            new_state = state.with_booking(stage=BookingStage.AWAITING_SLOT_CONFIRMATION, selected_slot=None)
            return HandlerResult(message=BOOKING_FAILED_MESSAGE, state=new_state, is_error=True)

        new_state = state.with_booking(
            stage=BookingStage.BOOKING_CONFIRMED,
            selected_slot=slot,
            appointment_id=appointment_id,
        )
        when = format_spoken_datetime(slot.start)
        fallback = f"You're all set! I've booked your {booking.spoken_name} for {when}. We look forward to seeing you!"
        message = await self.nlu.generate_confirmation_text(
            {"Appointment type": booking.spoken_name, "Day and time": when},
            fallback=fallback,
        )
        logger.info(f"✅ Booked {booking.appointment_type_name} for call {state.call_id} at {slot.start.isoformat()}")
        return HandlerResult(message=message, state=new_state)

    async def _fetch_transcript(self, call_id: str) -> str:
        """
        The platform may not have delivered the transcript yet, so an empty
        result is retried once after a short wait.
        """
        transcript = await self._read_transcript(call_id)
        if transcript:
            return transcript

        logger.info(f"⏳ Transcript for {call_id} not ready, retrying in {self.retry_delay}s")
        await asyncio.sleep(self.retry_delay)
        return await self._read_transcript(call_id)

    async def _read_transcript(self, call_id: str) -> str:
        try:
            return await self.store.get_transcript(call_id) or ""
        except Exception as e:
            logger.warning(f"⚠️ Could not read transcript for {call_id}: {e}")
            return ""
