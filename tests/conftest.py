import pytest
from datetime import datetime, timedelta
from unittest.mock import AsyncMock, MagicMock
from zoneinfo import ZoneInfo

from voice_booking.models.conversation import (
    BookingStage,
    CandidateSlot,
    CollectedFields,
    ConversationState,
    PatientStatus,
)
from voice_booking.models.practice import AppointmentOffering, Practice, Provider
from voice_booking.services.nexhealth_client import SlotSearchResult

CHICAGO = ZoneInfo("America/Chicago")


@pytest.fixture
def practice():
    return Practice(
        id="p1",
        name="Bright Smiles",
        timezone="America/Chicago",
        nexhealth_subdomain="demo",
        nexhealth_location_id="42",
        offerings=[
            AppointmentOffering(id="t1", name="Cleaning", spoken_name="cleaning", duration_minutes=60,
                                keywords="cleaning, checkup, hygiene"),
            AppointmentOffering(id="t2", name="Emergency Exam", spoken_name="emergency exam", duration_minutes=30,
                                keywords=["toothache", "pain", "broken tooth"], nexhealth_appointment_type_id=99),
            AppointmentOffering(id="t3", name="Implant Consult", duration_minutes=45, keywords=[],
                                bookable_online=False),
        ],
        providers=[
            Provider(id=11, name="Dr. Adams", accepted_offering_ids=["t1", "t2"], operatory_ids=[3]),
            Provider(id=12, name="Dr. Baker", accepted_offering_ids=["t1"]),
            Provider(id=13, name="Dr. Cole", is_active=False),
        ],
    )


@pytest.fixture
def nlu():
    """NLU double whose generation methods fall back to the template text."""
    mock = MagicMock()
    mock.match_intent_to_catalog = AsyncMock(return_value=None)
    mock.match_utterance_to_offer = AsyncMock(return_value=None)
    mock.normalize_date = AsyncMock(return_value=None)
    mock.generate_confirmation_text = AsyncMock(side_effect=lambda context, fallback: fallback)
    mock.summarize_collected_info = AsyncMock(side_effect=lambda details, fallback: fallback)
    mock.next_question = AsyncMock(side_effect=lambda label, first_name, fallback: fallback)
    mock.appointment_note = AsyncMock(return_value="Emergency exam for a toothache.")
    return mock


@pytest.fixture
def ehr():
    mock = MagicMock()
    mock.search_patients = AsyncMock(return_value=[])
    mock.create_patient = AsyncMock(return_value=501)
    mock.query_open_slots = AsyncMock(return_value=SlotSearchResult())
    mock.create_booking = AsyncMock(return_value=9001)
    return mock


def make_slot(hour, minute=0, day=datetime(2099, 6, 2), provider_id=11, operatory_id=3, length=30):
    start = day.replace(hour=hour, minute=minute, tzinfo=CHICAGO)
    return CandidateSlot(
        start=start,
        end=start + timedelta(minutes=length),
        provider_id=provider_id,
        operatory_id=operatory_id,
        display=f"slot {hour}:{minute:02d}",
    )


def collected_fields():
    return CollectedFields(first_name="Ann", last_name="Lee", dob="1990-06-01",
                           phone="5123341212", email="ann@example.com")


def typed_state(call_id="call-1", offering_id="t2"):
    """Fresh state with an appointment type already chosen."""
    names = {"t1": ("Cleaning", "cleaning", 60, None), "t2": ("Emergency Exam", "emergency exam", 30, 99)}
    name, spoken, duration, ehr_type = names[offering_id]
    return ConversationState.initial(call_id).with_practice("p1").with_booking(
        appointment_type_id=offering_id,
        appointment_type_name=name,
        spoken_name=spoken,
        duration_minutes=duration,
        nexhealth_appointment_type_id=ehr_type,
        patient_request="I have a toothache",
    )


def identified_state(call_id="call-1", offering_id="t2"):
    return typed_state(call_id, offering_id).with_patient(
        status=PatientStatus.IDENTIFIED,
        collected=collected_fields(),
        patient_id=501,
    )


def offered_state(slots=None, call_id="call-1"):
    return identified_state(call_id).with_booking(
        offered_slots=slots or [make_slot(9), make_slot(10, 30)],
        stage=BookingStage.AWAITING_SLOT_CONFIRMATION,
        requested_date="2099-06-02",
    )
