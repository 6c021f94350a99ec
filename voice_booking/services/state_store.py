from pydantic import ValidationError

from voice_booking.core.logger import logger
from voice_booking.models.conversation import ConversationState
from voice_booking.services.db_service import db_service


class ConversationStore:
    """
    Durable per-call conversation state, kept in the call_logs table.
    Loading an unknown call id yields a fresh default state.
    """

    def __init__(self, db=None):
        self.db = db or db_service

    async def load(self, call_id: str) -> ConversationState:
        row = await self.db.get_call_log(call_id)
        raw = (row or {}).get('conversation_state')
        if not raw:
            logger.info(f"🆕 New conversation state for call {call_id}")
            return ConversationState.initial(call_id)

        try:
            state = ConversationState.model_validate(raw)
        except ValidationError as e:
            logger.error(f"❌ Stored state for call {call_id} is unreadable, starting fresh: {e}")
            return ConversationState.initial(call_id)

        logger.info(
            f"📂 Loaded state for call {call_id}: patient={state.patient.status.value}, "
            f"booking={state.booking.stage.value}"
        )
        return state

    async def save(self, call_id: str, state: ConversationState):
        await self.db.upsert_conversation_state(call_id, state.practice_id, state.model_dump(mode="json"))
        logger.info(f"💾 Saved state for call {call_id}")

    async def get_transcript(self, call_id: str) -> str:
        return await self.db.get_transcript(call_id)


conversation_store = ConversationStore()
