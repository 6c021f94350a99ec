import json
from typing import Any, Dict, Optional

from voice_booking.core.config import settings
from voice_booking.core.logger import logger
from voice_booking.models.practice import AppointmentOffering, BlackoutWindow, Practice, Provider
from voice_booking.services.db_service import db_service


def _as_list(value):
    if value is None:
        return None
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except ValueError:
            return [v.strip() for v in value.split(",") if v.strip()]
    return list(value)


class PracticeService:
    """Reads practice configuration owned by the admin subsystem."""

    def __init__(self, db=None):
        self.db = db or db_service

    async def resolve(self, practice_id: Optional[str], assistant_id: Optional[str] = None,
                      assistant_name: Optional[str] = None) -> Optional[Practice]:
        """
        Finds the practice a call belongs to. Never raises; None means nothing usable was found.
        """
        try:
            if practice_id:
                row = await self.db.get_practice_row(practice_id)
            else:
                row = await self._lookup_row(assistant_id, assistant_name)
            if not row:
                logger.warning(f"⚠️ No practice found (id={practice_id}, assistant={assistant_id or assistant_name})")
                return None
            return await self._build(row)
        except Exception as e:
            logger.error(f"❌ Practice lookup failed: {e}", exc_info=True)
            return None

    async def _lookup_row(self, assistant_id, assistant_name) -> Optional[Dict[str, Any]]:
        if assistant_id:
            rows = await self.db.find_practice_rows('vapi_assistant_id', assistant_id)
            if rows:
                return rows[0]
        if assistant_name:
            rows = await self.db.find_practice_rows('vapi_assistant_name', assistant_name)
            if rows:
                return rows[0]

        # Best effort: a single-practice deployment needs no assistant mapping
        rows = await self.db.find_practice_rows()
        if len(rows) == 1:
            logger.info("ℹ️ Falling back to the only configured practice")
            return rows[0]
        if rows:
            logger.warning(f"⚠️ {len(rows)} practices configured and none matches assistant {assistant_id or assistant_name}")
        return None

    async def _build(self, row: Dict[str, Any]) -> Practice:
        practice_id = str(row['id'])
        type_rows = await self.db.get_appointment_type_rows(practice_id)
        provider_rows = await self.db.get_provider_rows(practice_id)

        offerings = [
            AppointmentOffering(
                id=str(t['id']),
                name=t.get('name') or "",
                spoken_name=t.get('spoken_name'),
                duration_minutes=int(t.get('duration') or 0),
                keywords=t.get('keywords'),
                bookable_online=t.get('bookable_online', True) is not False,
                nexhealth_appointment_type_id=t.get('nexhealth_appointment_type_id'),
            )
            for t in type_rows
        ]

        providers = []
        for p in provider_rows:
            accepted = _as_list(p.get('accepted_appointment_type_ids'))
            providers.append(Provider(
                id=int(p['nexhealth_provider_id']),
                name=p.get('name') or "",
                is_active=p.get('is_active', True) is not False,
                accepted_offering_ids=[str(a) for a in accepted] if accepted else None,
                operatory_ids=[int(o) for o in (_as_list(p.get('operatory_ids')) or [])],
            ))

        blackouts = [BlackoutWindow(**w) for w in (_as_list(row.get('blackout_windows')) or [])]

        return Practice(
            id=practice_id,
            name=row.get('name') or "",
            timezone=row.get('timezone') or settings.DEFAULT_TIMEZONE,
            nexhealth_subdomain=row.get('nexhealth_subdomain'),
            nexhealth_location_id=str(row['nexhealth_location_id']) if row.get('nexhealth_location_id') else None,
            offerings=offerings,
            providers=providers,
            operatory_ids=[int(o) for o in (_as_list(row.get('operatory_ids')) or [])],
            blackout_windows=blackouts,
            accepted_insurances=row.get('accepted_insurances'),
        )


practice_service = PracticeService()
