from datetime import date, datetime, time, timedelta
from typing import Any, Dict, List, Optional, Sequence, Tuple
from zoneinfo import ZoneInfo

from voice_booking.core.config import settings
from voice_booking.core.logger import logger
from voice_booking.core.speech import format_spoken_date, format_spoken_time, join_options
from voice_booking.models.conversation import (
    BookingStage,
    CandidateSlot,
    ConversationState,
    HandlerResult,
    PatientStatus,
)
from voice_booking.models.practice import BlackoutWindow, Practice, Provider
from voice_booking.services.nexhealth_client import NexHealthClient, NexHealthError, OpenSlot
from voice_booking.services.nlu_service import NLUService

# Start inclusive, end exclusive
TIME_BUCKETS: Dict[str, Tuple[time, time]] = {
    "Early": (time(5, 0), time(8, 30)),
    "Morning": (time(5, 0), time(12, 0)),
    "Midday": (time(10, 0), time(15, 0)),
    "Afternoon": (time(12, 0), time(17, 0)),
    "Evening": (time(15, 30), time(20, 0)),
    "Late": (time(17, 0), time(22, 0)),
    "AllDay": (time(5, 0), time(22, 0)),
}

NO_PROVIDERS_MESSAGE = (
    "I'm sorry, I can't find a provider who offers that appointment online right now. "
    "Please call the office directly and our team will find a time for you."
)
SCHEDULE_UNAVAILABLE = (
    "I'm sorry, I'm having trouble checking the schedule right now. "
    "Could you give me a moment and ask again, or call the office directly?"
)


def normalize_bucket(value: Optional[str]) -> Optional[str]:
    """'in the morning' -> 'Morning', 'all day' -> 'AllDay', unknown -> None."""
    if not value:
        return None
    text = value.lower().replace("-", " ")
    if "any" in text or "all day" in text or "allday" in text or "whenever" in text:
        return "AllDay"
    # Most specific names first so 'early afternoon' is not read as 'Early'
    for name in ("Afternoon", "Evening", "Midday", "Morning", "Late", "Early"):
        if name.lower() in text:
            return name
    if "noon" in text or "lunch" in text:
        return "Midday"
    if "night" in text:
        return "Late"
    return None


def eligible_providers(practice: Practice, offering_id: str) -> List[Provider]:
    return [p for p in practice.providers if p.is_active and p.accepts(offering_id)]


def _minutes(value: time) -> int:
    return value.hour * 60 + value.minute


def overlaps_blackout(start: datetime, end: datetime, windows: Sequence[BlackoutWindow]) -> bool:
    """Minute-granularity interval overlap; a slot ending exactly when a window starts is fine."""
    slot_start = _minutes(start.time())
    slot_end = slot_start + int((end - start).total_seconds() // 60)
    for window in windows:
        if not window.applies_on(start.weekday()):
            continue
        if slot_start < _minutes(window.end) and slot_end > _minutes(window.start):
            return True
    return False


def in_bucket(start: datetime, bucket: Optional[str]) -> bool:
    if not bucket:
        return True
    bucket_start, bucket_end = TIME_BUCKETS[bucket]
    return bucket_start <= start.time().replace(second=0, microsecond=0) < bucket_end


def filter_slots(raw: Sequence[OpenSlot], duration_minutes: int, timezone: str,
                 blackout_windows: Sequence[BlackoutWindow], bucket: Optional[str],
                 limit: int) -> List[CandidateSlot]:
    """
    Drops blackout overlaps and out-of-bucket times, then returns the earliest
    `limit` slots. End times always come from the offering's duration.
    """
    tz = ZoneInfo(timezone)
    seen = set()
    kept = []
    for slot in raw:
        start = slot.start.astimezone(tz) if slot.start.tzinfo else slot.start.replace(tzinfo=tz)
        end = start + timedelta(minutes=duration_minutes)
        if overlaps_blackout(start, end, blackout_windows):
            continue
        if not in_bucket(start, bucket):
            continue
        # Same start offered by two providers is read out once
        if start in seen:
            continue
        seen.add(start)
        kept.append(CandidateSlot(
            start=start,
            end=end,
            provider_id=slot.provider_id,
            operatory_id=slot.operatory_id,
            display=f"{format_spoken_date(start)} at {format_spoken_time(start)}",
        ))

    kept.sort(key=lambda s: s.start)
    return kept[:limit]


def offer_text(slots: Sequence[CandidateSlot]) -> str:
    days = {s.start.date() for s in slots}
    if len(days) == 1:
        times = join_options([format_spoken_time(s.start) for s in slots])
        return f"On {format_spoken_date(slots[0].start)}, I have {times}."
    return f"I have {join_options([s.display for s in slots])}."


class AvailabilityFinder:
    def __init__(self, nlu: NLUService):
        self.nlu = nlu

    async def discover(self, state: ConversationState, practice: Practice, ehr: NexHealthClient,
                       args: Dict[str, Any]) -> HandlerResult:
        """
        One discovery turn: resolve the day, query the EHR, filter, and store the offer.
        """
        booking = state.booking
        if booking.stage == BookingStage.BOOKING_CONFIRMED:
            return HandlerResult(
                message=f"You're already booked for {booking.selected_slot.display}. Is there anything else I can help you with?",
                state=state,
            )
        if not booking.has_appointment_type:
            return HandlerResult(
                message="Before I check the schedule, what's the reason for your visit?",
                state=state,
            )

        tz = ZoneInfo(practice.timezone)
        today = datetime.now(tz).date()
        raw_bucket = args.get("timeBucket")
        bucket = normalize_bucket(raw_bucket) or booking.time_bucket
        requested = str(args.get("requestedDate") or "").strip()

        days = 1
        if requested:
            iso = await self.nlu.normalize_date(requested, practice.timezone)
            if not iso:
                return HandlerResult(
                    message="I'm sorry, I didn't catch which day you meant. Could you tell me the date again, like next Tuesday or June 3rd?",
                    state=state,
                )
            target = date.fromisoformat(iso)
            if target < today:
                return HandlerResult(message="That date has already passed. What other day works for you?", state=state)
        elif booking.requested_date:
            target = date.fromisoformat(booking.requested_date)
        elif booking.is_urgent:
            target = today
            days = settings.URGENT_SEARCH_DAYS
        else:
            return HandlerResult(message="What day would work best for you?", state=state)

        offering = practice.get_offering(booking.appointment_type_id)
        providers = eligible_providers(practice, booking.appointment_type_id)
        if offering is None or not providers:
            logger.warning(f"⚠️ No eligible providers for {booking.appointment_type_name} at practice {practice.id}")
            return HandlerResult(message=NO_PROVIDERS_MESSAGE, state=state, is_error=True)

        operatories = sorted({o for p in providers for o in p.operatory_ids} | set(practice.operatory_ids))
        try:
            search = await ehr.query_open_slots(
                [p.id for p in providers], target, booking.duration_minutes,
                days=days, operatory_ids=operatories or None,
            )
        except NexHealthError as e:
            logger.error(f"❌ Slot query failed: {e}")
            return HandlerResult(message=SCHEDULE_UNAVAILABLE, state=state, is_error=True)

        raw = search.slots
        offered = filter_slots(
            raw, booking.duration_minutes, practice.timezone, practice.blackout_windows,
            bucket, settings.MAX_OFFERED_SLOTS,
        )
        logger.info(f"🗓️ {len(raw)} raw slot(s) -> {len(offered)} offered for {target} (bucket={bucket})")

        last_day = target + timedelta(days=days - 1)
        next_available = search.next_available_date
        if offered or not next_available or next_available <= last_day:
            next_available = None

        identified = state.patient.status == PatientStatus.IDENTIFIED
        new_state = state.with_booking(
            requested_date=target.isoformat() if requested or booking.requested_date else None,
            time_bucket=bucket,
            offered_slots=offered,
            next_available_date=next_available.isoformat() if next_available else None,
            selected_slot=None,
            stage=BookingStage.AWAITING_SLOT_CONFIRMATION if offered and identified else BookingStage.PRESENTING_SLOTS,
        )

        if not offered:
            window = f" in the {bucket.lower()}" if bucket and bucket != "AllDay" else ""
            when = "in the next few days" if days > 1 else f"on {format_spoken_date(target)}"
            if next_available:
                return HandlerResult(
                    message=f"I'm sorry, I don't see any openings{window} {when}. The next opening is "
                            f"{format_spoken_date(next_available)}. Would you like me to check that day?",
                    state=new_state,
                )
            return HandlerResult(
                message=f"I'm sorry, I don't see any openings{window} {when}. Would you like me to check a different day or time?",
                state=new_state,
            )

        return HandlerResult(message=self._offer_message(new_state), state=new_state)

    async def continue_after_identification(self, state: ConversationState, practice: Practice,
                                            ehr: NexHealthClient) -> HandlerResult:
        """Follow-up once the caller is identified: present a held offer or find one."""
        booking = state.booking
        if booking.stage == BookingStage.BOOKING_CONFIRMED:
            return HandlerResult(message="", state=state)
        if not booking.has_appointment_type:
            return HandlerResult(message="What can we help you with today?", state=state)
        if booking.offered_slots:
            new_state = state.with_booking(stage=BookingStage.AWAITING_SLOT_CONFIRMATION)
            return HandlerResult(message=self._offer_message(new_state), state=new_state)
        if booking.requested_date or booking.is_urgent:
            return await self.discover(state, practice, ehr, {})
        return HandlerResult(message="What day would work best for your appointment?", state=state)

    def _offer_message(self, state: ConversationState) -> str:
        text = offer_text(state.booking.offered_slots)
        if state.booking.stage == BookingStage.AWAITING_SLOT_CONFIRMATION:
            return f"{text} Which one works best for you?"
        return f"{text} Before I can book one of those, I'll just need a few details from you."
