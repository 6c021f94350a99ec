import asyncio
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Any, Dict, List, Optional

import requests
from pydantic import BaseModel, Field

from voice_booking.core.config import settings
from voice_booking.core.logger import logger
from voice_booking.services.token_cache import TokenCache, nexhealth_token_fetcher

SLOT_TAKEN_PHRASES = ("already booked", "slot is not available")


class ErrorKind(str, Enum):
    CONFLICT = "CONFLICT"
    NOT_FOUND = "NOT_FOUND"
    TRANSIENT = "TRANSIENT"
    FATAL = "FATAL"


class NexHealthError(Exception):
    def __init__(self, message: str, status_code: Optional[int] = None, kind: ErrorKind = ErrorKind.FATAL):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.kind = kind


def classify_error(status_code: Optional[int], text: str) -> ErrorKind:
    lowered = (text or "").lower()
    if status_code == 409 or any(phrase in lowered for phrase in SLOT_TAKEN_PHRASES):
        return ErrorKind.CONFLICT
    if status_code == 404:
        return ErrorKind.NOT_FOUND
    if status_code is None or status_code == 429 or status_code >= 500:
        return ErrorKind.TRANSIENT
    return ErrorKind.FATAL


def is_slot_taken(error: Exception) -> bool:
    if isinstance(error, NexHealthError) and error.kind == ErrorKind.CONFLICT:
        return True
    # Errors raised outside the client still carry the upstream wording
    lowered = str(error).lower()
    return any(phrase in lowered for phrase in SLOT_TAKEN_PHRASES)


def _parse_time(value: str) -> datetime:
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def _parse_date(value) -> Optional[date]:
    if not value:
        return None
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        logger.warning(f"⚠️ Unreadable next_available_date: {value!r}")
        return None


class OpenSlot(BaseModel):
    start: datetime
    end: datetime
    provider_id: int
    operatory_id: Optional[int] = None


class SlotSearchResult(BaseModel):
    slots: List[OpenSlot] = Field(default_factory=list)
    # First day with an opening, as reported by NexHealth when the searched range is empty
    next_available_date: Optional[date] = None


class NexHealthClient:
    """
    Thin gateway to the NexHealth API for one practice (subdomain + location).
    Calls are blocking `requests` calls pushed to a worker thread.
    """

    def __init__(self, subdomain: str, location_id: str, token_cache: TokenCache,
                 base_url: Optional[str] = None, timeout: Optional[int] = None):
        self.subdomain = subdomain
        self.location_id = location_id
        self.token_cache = token_cache
        self.base_url = (base_url or settings.NEXHEALTH_API_BASE_URL).rstrip("/")
        self.timeout = timeout or settings.NEXHEALTH_TIMEOUT_SECONDS

    async def search_patients(self, name: str) -> List[Dict[str, Any]]:
        data = await self._request("GET", "/patients", params={"name": name, "location_id": self.location_id})
        patients = (data.get("data") or {}).get("patients") or []
        results = []
        for p in patients:
            bio = p.get("bio") or {}
            results.append({
                "id": p.get("id"),
                "first_name": p.get("first_name"),
                "last_name": p.get("last_name"),
                "dob": bio.get("date_of_birth"),
            })
        logger.info(f"🔍 Patient search for '{name}' returned {len(results)} record(s)")
        return results

    async def create_patient(self, first_name: str, last_name: str, dob: str,
                             phone: Optional[str], email: Optional[str]) -> int:
        body = {
            "patient": {
                "first_name": first_name,
                "last_name": last_name,
                "email": email,
                "bio": {"date_of_birth": dob, "phone_number": phone},
            }
        }
        data = await self._request("POST", "/patients", params={"location_id": self.location_id}, json=body)
        payload = data.get("data") or {}
        patient_id = payload.get("id") or (payload.get("user") or {}).get("id") or (data.get("patient") or {}).get("id")
        if not patient_id:
            raise NexHealthError("Patient create response did not include an id", kind=ErrorKind.FATAL)
        logger.info(f"🆕 Patient created in EHR: {patient_id}")
        return int(patient_id)

    async def query_open_slots(self, provider_ids: List[int], start_date: date, duration_minutes: int,
                               days: int = 1, operatory_ids: Optional[List[int]] = None) -> SlotSearchResult:
        params = {
            "start_date": start_date.isoformat(),
            "days": days,
            "lids[]": [self.location_id],
            "pids[]": [str(p) for p in provider_ids],
            "slot_length": duration_minutes,
        }
        if operatory_ids:
            params["operatory_ids[]"] = [str(o) for o in operatory_ids]

        data = await self._request("GET", "/appointment_slots", params=params)
        slots = []
        for group in data.get("data") or []:
            provider_id = group.get("pid")
            for raw in group.get("slots") or []:
                start = _parse_time(raw["time"])
                end = _parse_time(raw["end_time"]) if raw.get("end_time") else start + timedelta(minutes=duration_minutes)
                slots.append(OpenSlot(
                    start=start,
                    end=end,
                    provider_id=int(raw.get("provider_id") or provider_id),
                    operatory_id=raw.get("operatory_id"),
                ))
        next_available = _parse_date(data.get("next_available_date"))
        logger.info(f"📅 {len(slots)} raw slot(s) from {start_date} for providers {provider_ids}")
        return SlotSearchResult(slots=slots, next_available_date=next_available)

    async def create_booking(self, patient_id: int, provider_id: int, operatory_id: Optional[int],
                             start: datetime, end: datetime, note: str,
                             appointment_type_id: Optional[int] = None) -> Optional[int]:
        appt = {
            "patient_id": patient_id,
            "provider_id": provider_id,
            "operatory_id": operatory_id,
            "start_time": start.isoformat(),
            "end_time": end.isoformat(),
            "note": note,
        }
        if appointment_type_id:
            appt["appointment_type_id"] = appointment_type_id

        data = await self._request("POST", "/appointments", params={"location_id": self.location_id}, json={"appt": appt})
        payload = data.get("data") or {}
        appointment_id = payload.get("id") or (payload.get("appt") or {}).get("id")
        logger.info(f"✅ Appointment created in EHR: {appointment_id}")
        return int(appointment_id) if appointment_id else None

    async def _request(self, method: str, path: str, params: Optional[Dict[str, Any]] = None,
                       json: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        return await asyncio.to_thread(self._request_sync, method, path, params or {}, json)

    def _request_sync(self, method, path, params, json) -> Dict[str, Any]:
        url = f"{self.base_url}{path}"
        query = {"subdomain": self.subdomain, **params}

        for attempt in (1, 2):
            try:
                token = self.token_cache.get()
                response = requests.request(
                    method,
                    url,
                    params=query,
                    json=json if method != "GET" else None,
                    headers={
                        "Accept": "application/vnd.Nexhealth+json;version=2",
                        "Authorization": f"Bearer {token}",
                        "Content-Type": "application/json",
                    },
                    timeout=self.timeout,
                )
            except requests.RequestException as e:
                raise NexHealthError(f"NexHealth request failed: {e}", kind=ErrorKind.TRANSIENT) from e
            except Exception as e:
                # Token acquisition problems surface here
                raise NexHealthError(f"NexHealth authentication failed: {e}", kind=ErrorKind.FATAL) from e

            if response.status_code == 401 and attempt == 1:
                logger.warning("🔑 NexHealth token rejected, refreshing and retrying once")
                self.token_cache.invalidate()
                continue

            if not response.ok:
                text = response.text
                logger.error(f"❌ NexHealth {method} {path} failed ({response.status_code}): {text}")
                raise NexHealthError(
                    f"NexHealth API error ({response.status_code}): {text}",
                    status_code=response.status_code,
                    kind=classify_error(response.status_code, text),
                )
            try:
                return response.json()
            except ValueError as e:
                raise NexHealthError(f"NexHealth returned invalid JSON for {path}", status_code=response.status_code,
                                     kind=ErrorKind.TRANSIENT) from e

        # Unreachable: the second 401 raises above
        raise NexHealthError("NexHealth authentication failed", status_code=401, kind=ErrorKind.FATAL)


_token_cache: Optional[TokenCache] = None


def get_token_cache() -> TokenCache:
    """Process-wide cache shared by every practice's client."""
    global _token_cache
    if _token_cache is None:
        _token_cache = TokenCache(
            nexhealth_token_fetcher(settings.NEXHEALTH_API_BASE_URL, settings.NEXHEALTH_API_KEY,
                                    settings.NEXHEALTH_TIMEOUT_SECONDS),
            buffer_seconds=settings.NEXHEALTH_TOKEN_BUFFER_SECONDS,
        )
    return _token_cache


def client_for_practice(practice) -> NexHealthClient:
    return NexHealthClient(practice.nexhealth_subdomain, practice.nexhealth_location_id, get_token_cache())
