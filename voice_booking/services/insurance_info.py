from typing import Any, Dict

from voice_booking.core.logger import logger
from voice_booking.models.conversation import ConversationState, HandlerResult
from voice_booking.models.practice import Practice
from voice_booking.services.nlu_service import NLUService

NO_INSURANCE_DATA = (
    "I'm sorry, I don't have the list of accepted insurances available right now, "
    "but our office staff can certainly help with that."
)


class InsuranceInfo:
    """Answers 'what insurance do you take?' and 'do you accept X?' from the practice's plan list."""

    def __init__(self, nlu: NLUService):
        self.nlu = nlu

    async def answer(self, state: ConversationState, practice: Practice, args: Dict[str, Any]) -> HandlerResult:
        plans = practice.insurance_plans
        if not plans:
            logger.info(f"ℹ️ Practice {practice.id} has no accepted insurances configured")
            return HandlerResult(message=NO_INSURANCE_DATA, state=state)

        queried = str(args.get("insuranceName") or "").strip() or None
        if queried is None:
            fallback = f"We accept {', '.join(plans)}."
            is_match = False
        else:
            is_match = any(plan.lower() == queried.lower() for plan in plans)
            if is_match:
                fallback = f"Yes, we do accept {queried}!"
            else:
                fallback = f"It looks like we may be out-of-network with {queried}, but we'd still love to take care of you."

        logger.info(f"💳 Insurance query '{queried or 'general'}' (match={is_match})")
        message = await self.nlu.insurance_response(queried, is_match, plans, fallback=fallback)
        return HandlerResult(message=message, state=state)
