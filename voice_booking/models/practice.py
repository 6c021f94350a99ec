from datetime import time
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator


class AppointmentOffering(BaseModel):
    id: str
    name: str
    spoken_name: Optional[str] = None
    duration_minutes: int
    keywords: List[str] = Field(default_factory=list)
    bookable_online: bool = True
    nexhealth_appointment_type_id: Optional[int] = None

    @field_validator("keywords", mode="before")
    @classmethod
    def split_keywords(cls, value):
        # Stored either as a JSON list or as "pain, toothache, ache"
        if value is None:
            return []
        if isinstance(value, str):
            return [k.strip() for k in value.split(",") if k.strip()]
        return value

    @property
    def spoken(self) -> str:
        return self.spoken_name or self.name


class Provider(BaseModel):
    id: int
    name: str = ""
    is_active: bool = True
    # None means the provider was never restricted and accepts every offering
    accepted_offering_ids: Optional[List[str]] = None
    operatory_ids: List[int] = Field(default_factory=list)

    def accepts(self, offering_id: str) -> bool:
        if not self.accepted_offering_ids:
            return True
        return offering_id in self.accepted_offering_ids


class BlackoutWindow(BaseModel):
    start: time
    end: time
    days_of_week: Optional[List[int]] = None  # 0 = Monday

    def applies_on(self, weekday: int) -> bool:
        return self.days_of_week is None or weekday in self.days_of_week


class Practice(BaseModel):
    id: str
    name: str = ""
    timezone: str = "America/Chicago"
    nexhealth_subdomain: Optional[str] = None
    nexhealth_location_id: Optional[str] = None
    offerings: List[AppointmentOffering] = Field(default_factory=list)
    providers: List[Provider] = Field(default_factory=list)
    operatory_ids: List[int] = Field(default_factory=list)
    blackout_windows: List[BlackoutWindow] = Field(default_factory=list)
    # Comma separated, e.g. "Cigna, Delta Dental, MetLife"
    accepted_insurances: Optional[str] = None

    @property
    def is_scheduling_configured(self) -> bool:
        return bool(self.nexhealth_subdomain and self.nexhealth_location_id)

    @property
    def insurance_plans(self) -> List[str]:
        return [p.strip() for p in (self.accepted_insurances or "").split(",") if p.strip()]

    def get_offering(self, offering_id: Optional[str]) -> Optional[AppointmentOffering]:
        for offering in self.offerings:
            if offering.id == offering_id:
                return offering
        return None
