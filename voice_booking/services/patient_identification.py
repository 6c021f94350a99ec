from datetime import date
from typing import Any, Dict

from voice_booking.core.logger import logger
from voice_booking.core.speech import (
    format_email_for_readback,
    format_phone_for_readback,
    is_affirmative,
    spell_out,
    split_full_name,
)
from voice_booking.models.conversation import (
    CollectedFields,
    CollectionStep,
    ConversationState,
    HandlerResult,
    PatientStatus,
)
from voice_booking.models.practice import Practice
from voice_booking.services.nexhealth_client import NexHealthClient, NexHealthError
from voice_booking.services.nlu_service import NLUService

ASK_NAME = "To get started, could I get your first and last name, please?"
CALL_OFFICE = "Please call our office directly and our staff will be happy to help you schedule your appointment."
AMBIGUOUS_IDENTITY = (
    "For security, because I found multiple records with that name and date of birth, I can't proceed "
    "with booking over the phone. Please call our office directly, and our staff will be happy to assist you."
)
CREATE_FAILED = (
    "I'm sorry, there was an issue creating your patient record. "
    "Please call our office directly to schedule your appointment."
)
SEARCH_FAILED = (
    "I'm sorry, I'm having trouble accessing our patient records right now. "
    "Give me a moment and I'll try that again, or you can call our office directly."
)

FIELD_LABELS = {
    CollectionStep.DOB: "date of birth",
    CollectionStep.PHONE: "phone number",
    CollectionStep.EMAIL: "email address",
}


class PatientIdentifier:
    """
    Drives the caller through name, date of birth, phone and email, then finds
    or creates the matching record in the EHR.
    """

    def __init__(self, nlu: NLUService):
        self.nlu = nlu

    async def handle(self, state: ConversationState, practice: Practice, ehr: NexHealthClient,
                     args: Dict[str, Any]) -> HandlerResult:
        status = state.patient.status
        logger.info(f"👤 Patient record step: {status.value} / {state.patient.next_field}")

        if status == PatientStatus.AWAITING_IDENTIFIER:
            new_state = state.with_patient(
                status=PatientStatus.COLLECTING_NEW_PATIENT_INFO,
                collected=CollectedFields(),
                next_field=CollectionStep.NAME,
            )
            # A restart already asked for the name
            if state.patient.next_field == CollectionStep.NAME and args.get("fullName"):
                return await self._collect(new_state, practice, args)
            return HandlerResult(message=ASK_NAME, state=new_state)

        if status == PatientStatus.COLLECTING_NEW_PATIENT_INFO:
            return await self._collect(state, practice, args)

        if status == PatientStatus.CONFIRMING_COLLECTED_INFO:
            return await self._confirm_summary(state, ehr, args)

        if status == PatientStatus.SEARCHING_EHR:
            return await self._search(state, ehr)

        if status == PatientStatus.CREATING_IN_EHR:
            return await self._create(state, ehr)

        if status == PatientStatus.IDENTIFIED:
            name = state.patient.collected.first_name or ""
            greeting = f"You're all set, {name}." if name else "You're all set."
            return HandlerResult(message=f"{greeting} Let's find you an appointment time.", state=state)

        return HandlerResult(message=CALL_OFFICE, state=state)

    # --- Collection sub-sequence ---

    async def _collect(self, state: ConversationState, practice: Practice, args: Dict[str, Any]) -> HandlerResult:
        step = state.patient.next_field or CollectionStep.NAME
        collected = state.patient.collected
        confirmation = args.get("userConfirmation")

        if step == CollectionStep.NAME:
            full_name = args.get("fullName")
            if not full_name:
                return HandlerResult(message="I didn't catch that. Could you please provide your first and last name?", state=state)
            parsed = split_full_name(full_name)
            if not parsed:
                return HandlerResult(message="I need both a first and last name. Could you please provide your full name?", state=state)
            first, last = parsed
            new_state = state.with_patient(
                collected=collected.evolve(first_name=first, last_name=last),
                next_field=CollectionStep.CONFIRM_NAME,
            )
            return HandlerResult(
                message=f"Got it. To confirm the spelling, I have {spell_out(first)}... {spell_out(last)}. Is that correct?",
                state=new_state,
            )

        if step == CollectionStep.CONFIRM_NAME:
            if is_affirmative(confirmation):
                return await self._ask_next(state, CollectionStep.DOB)
            new_state = state.with_patient(
                collected=collected.evolve(first_name=None, last_name=None),
                next_field=CollectionStep.NAME,
            )
            return HandlerResult(message="My apologies. Could you please tell me your first and last name again?", state=new_state)

        if step == CollectionStep.DOB:
            raw_dob = args.get("dob")
            if not raw_dob:
                return HandlerResult(message="I didn't catch that. What is your date of birth?", state=state)
            dob = await self.nlu.normalize_date(str(raw_dob), practice.timezone)
            if not dob or date.fromisoformat(dob) >= date.today():
                return HandlerResult(
                    message="I'm sorry, I didn't understand that date. Could you please tell me your date of birth again, like June 1st, 1990?",
                    state=state,
                )
            new_state = state.with_patient(collected=collected.evolve(dob=dob))
            return await self._ask_next(new_state, CollectionStep.PHONE)

        if step == CollectionStep.PHONE:
            phone = args.get("phone")
            if not phone:
                return HandlerResult(message="I didn't catch that. What is your phone number?", state=state)
            new_state = state.with_patient(
                collected=collected.evolve(phone=str(phone)),
                next_field=CollectionStep.CONFIRM_PHONE,
            )
            return HandlerResult(message=f"Okay, I have {format_phone_for_readback(str(phone))}. Is that correct?", state=new_state)

        if step == CollectionStep.CONFIRM_PHONE:
            if is_affirmative(confirmation):
                return await self._ask_next(state, CollectionStep.EMAIL)
            new_state = state.with_patient(collected=collected.evolve(phone=None), next_field=CollectionStep.PHONE)
            return HandlerResult(message="No problem. What is the correct phone number?", state=new_state)

        if step == CollectionStep.EMAIL:
            email = args.get("email")
            if not email:
                return HandlerResult(message="I didn't catch that. What is your email address?", state=state)
            new_state = state.with_patient(
                collected=collected.evolve(email=str(email).strip()),
                next_field=CollectionStep.CONFIRM_EMAIL,
            )
            return HandlerResult(
                message=f"Got it. To make sure I have it right, that's {format_email_for_readback(str(email))}. Is that correct?",
                state=new_state,
            )

        # CONFIRM_EMAIL
        if not is_affirmative(confirmation):
            new_state = state.with_patient(collected=collected.evolve(email=None), next_field=CollectionStep.EMAIL)
            return HandlerResult(message="My apologies. What is the correct email address?", state=new_state)

        new_state = state.with_patient(status=PatientStatus.CONFIRMING_COLLECTED_INFO, next_field=None)
        return HandlerResult(message=await self._summary(new_state.patient.collected), state=new_state)

    async def _ask_next(self, state: ConversationState, step: CollectionStep) -> HandlerResult:
        label = FIELD_LABELS[step]
        question = await self.nlu.next_question(
            label, state.patient.collected.first_name, fallback=f"Thanks. And what is your {label}?"
        )
        return HandlerResult(message=question, state=state.with_patient(next_field=step))

    async def _summary(self, collected: CollectedFields) -> str:
        spoken_dob = _spoken_dob(collected.dob)
        phone = format_phone_for_readback(collected.phone)
        fallback = (
            f"Okay, I have your name as {collected.full_name}, date of birth {spoken_dob}, "
            f"phone number {phone}, and email {collected.email}. Is that all correct?"
        )
        details = {
            "Full name": collected.full_name,
            "Spelled-out name": f"{spell_out(collected.first_name)}... {spell_out(collected.last_name)}",
            "Date of birth": spoken_dob,
            "Phone number (read-back)": phone,
            "Email": collected.email or "not provided",
        }
        return await self.nlu.summarize_collected_info(details, fallback=fallback)

    # --- Final confirmation and EHR resolution ---

    async def _confirm_summary(self, state: ConversationState, ehr: NexHealthClient, args: Dict[str, Any]) -> HandlerResult:
        confirmation = args.get("userConfirmation")
        if not confirmation:
            # Re-read the summary when called without an answer
            return HandlerResult(message=await self._summary(state.patient.collected), state=state)

        if not is_affirmative(confirmation):
            logger.info("🔄 Caller rejected the summary, restarting identification")
            new_state = state.with_patient(
                status=PatientStatus.AWAITING_IDENTIFIER,
                collected=CollectedFields(),
                next_field=CollectionStep.NAME,
            )
            return HandlerResult(
                message="I'm sorry about that. Let's start over to make sure we get it right. "
                        "Could you please tell me your first and last name again?",
                state=new_state,
            )

        return await self._search(state.with_patient(status=PatientStatus.SEARCHING_EHR), ehr)

    async def _search(self, state: ConversationState, ehr: NexHealthClient) -> HandlerResult:
        collected = state.patient.collected
        try:
            found = await ehr.search_patients(collected.full_name)
        except NexHealthError as e:
            logger.error(f"❌ Patient search failed: {e}")
            # Stays in SEARCHING_EHR so the next invocation retries the search
            return HandlerResult(message=SEARCH_FAILED, state=state, is_error=True)

        matches = [p for p in found if p.get("dob") == collected.dob]
        logger.info(f"🔍 {len(found)} record(s) named '{collected.full_name}', {len(matches)} with matching DOB")

        if len(matches) > 1:
            new_state = state.with_patient(status=PatientStatus.FAILED, patient_id=None)
            return HandlerResult(message=AMBIGUOUS_IDENTITY, state=new_state)

        if len(matches) == 1:
            new_state = state.with_patient(status=PatientStatus.IDENTIFIED, patient_id=int(matches[0]["id"]))
            return HandlerResult(
                message=f"Perfect, I've found your file in our system, {collected.first_name}.",
                state=new_state,
            )

        return await self._create(state.with_patient(status=PatientStatus.CREATING_IN_EHR), ehr)

    async def _create(self, state: ConversationState, ehr: NexHealthClient) -> HandlerResult:
        collected = state.patient.collected
        try:
            patient_id = await ehr.create_patient(
                first_name=collected.first_name,
                last_name=collected.last_name,
                dob=collected.dob,
                phone=collected.phone,
                email=collected.email,
            )
        except NexHealthError as e:
            logger.error(f"❌ Patient creation failed: {e}")
            return HandlerResult(message=CREATE_FAILED, state=state.with_patient(status=PatientStatus.FAILED), is_error=True)

        new_state = state.with_patient(status=PatientStatus.IDENTIFIED, patient_id=patient_id)
        return HandlerResult(
            message=f"Great, you're all set up in our system, {collected.first_name}. Welcome to the practice!",
            state=new_state,
        )


def _spoken_dob(dob) -> str:
    if not dob:
        return "not provided"
    value = date.fromisoformat(dob)
    return f"{value.strftime('%B')} {value.day}, {value.year}"
