from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class PatientStatus(str, Enum):
    AWAITING_IDENTIFIER = "AWAITING_IDENTIFIER"
    COLLECTING_NEW_PATIENT_INFO = "COLLECTING_NEW_PATIENT_INFO"
    CONFIRMING_COLLECTED_INFO = "CONFIRMING_COLLECTED_INFO"
    SEARCHING_EHR = "SEARCHING_EHR"
    CREATING_IN_EHR = "CREATING_IN_EHR"
    IDENTIFIED = "IDENTIFIED"
    FAILED = "FAILED"


class CollectionStep(str, Enum):
    NAME = "name"
    CONFIRM_NAME = "confirmName"
    DOB = "dob"
    PHONE = "phone"
    CONFIRM_PHONE = "confirmPhone"
    EMAIL = "email"
    CONFIRM_EMAIL = "confirmEmail"


class BookingStage(str, Enum):
    PRESENTING_SLOTS = "PRESENTING_SLOTS"
    AWAITING_SLOT_CONFIRMATION = "AWAITING_SLOT_CONFIRMATION"
    BOOKING_CONFIRMED = "BOOKING_CONFIRMED"


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True)

    def evolve(self, **changes):
        """Returns a copy with the given fields replaced."""
        return self.model_copy(update=changes, deep=True)


class CollectedFields(_Frozen):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    dob: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None

    @property
    def full_name(self) -> str:
        return f"{self.first_name or ''} {self.last_name or ''}".strip()


class PatientState(_Frozen):
    status: PatientStatus = PatientStatus.AWAITING_IDENTIFIER
    collected: CollectedFields = Field(default_factory=CollectedFields)
    next_field: Optional[CollectionStep] = None
    patient_id: Optional[int] = None


class CandidateSlot(_Frozen):
    start: datetime
    end: datetime
    provider_id: int
    operatory_id: Optional[int] = None
    display: str


class BookingState(_Frozen):
    appointment_type_id: Optional[str] = None
    appointment_type_name: Optional[str] = None
    spoken_name: Optional[str] = None
    duration_minutes: Optional[int] = None
    nexhealth_appointment_type_id: Optional[int] = None
    patient_request: Optional[str] = None
    is_urgent: bool = False
    stage: BookingStage = BookingStage.PRESENTING_SLOTS
    offered_slots: List[CandidateSlot] = Field(default_factory=list)
    selected_slot: Optional[CandidateSlot] = None
    requested_date: Optional[str] = None
    time_bucket: Optional[str] = None
    next_available_date: Optional[str] = None
    appointment_id: Optional[int] = None

    @property
    def has_appointment_type(self) -> bool:
        return bool(self.appointment_type_id and self.duration_minutes)


class ConversationState(_Frozen):
    """
    Everything the dialogue needs to resume a call. One snapshot per call id,
    reloaded from the store at the start of every tool invocation.
    """
    call_id: str
    practice_id: Optional[str] = None
    patient: PatientState = Field(default_factory=PatientState)
    booking: BookingState = Field(default_factory=BookingState)

    @classmethod
    def initial(cls, call_id: str) -> "ConversationState":
        return cls(call_id=call_id)

    def with_patient(self, **changes) -> "ConversationState":
        return self.evolve(patient=self.patient.evolve(**changes))

    def with_booking(self, **changes) -> "ConversationState":
        return self.evolve(booking=self.booking.evolve(**changes))

    def with_practice(self, practice_id: Optional[str]) -> "ConversationState":
        # Set once on the first invocation for a call, never reassigned
        if self.practice_id or not practice_id:
            return self
        return self.evolve(practice_id=practice_id)


class HandlerResult(BaseModel):
    """What every dialogue handler returns: text to speak and the next state."""
    message: str
    state: ConversationState
    is_error: bool = False
