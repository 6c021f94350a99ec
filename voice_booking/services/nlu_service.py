import asyncio
import re
from datetime import date, datetime
from typing import Dict, List, Optional, Sequence
from zoneinfo import ZoneInfo

from openai import AsyncOpenAI

from voice_booking.core.config import settings
from voice_booking.core.logger import logger

NO_MATCH = "NO_MATCH"
INVALID_DATE = "INVALID_DATE"

ORDINALS = {
    "first": 0, "1st": 0,
    "second": 1, "2nd": 1,
    "third": 2, "3rd": 2,
    "fourth": 3, "4th": 3,
    "fifth": 4, "5th": 4,
}
LAST_WORDS = ("last", "latest", "final")
_OPTION_NUMBER = re.compile(r"\b(?:option|number)\s+(\d)\b")
_ISO_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_TIME_IN_TEXT = re.compile(r"\d{1,2}(:\d{2})?\s*(am|pm|a\.m\.|p\.m\.)|\d{1,2}:\d{2}")


class NLUService:
    """
    Language understanding backed by an OpenAI chat model. Every method is
    best effort: failures and unusable answers come back as None or the fallback.
    """

    def __init__(self, client: Optional[AsyncOpenAI] = None, model: Optional[str] = None,
                 timeout: Optional[float] = None):
        self._client = client
        self.model = model or settings.OPENAI_MODEL
        self.timeout = settings.OPENAI_TIMEOUT_SECONDS if timeout is None else timeout

    def get_client(self) -> AsyncOpenAI:
        if self._client is None:
            self._client = AsyncOpenAI(
                api_key=settings.OPENAI_API_KEY or None,
                timeout=self.timeout,
                max_retries=settings.OPENAI_MAX_RETRIES,
            )
        return self._client

    async def _complete(self, prompt: str, temperature: float = 0.0, max_tokens: int = 50) -> Optional[str]:
        try:
            # Caps the whole call, client retries included
            response = await asyncio.wait_for(
                self.get_client().chat.completions.create(
                    model=self.model,
                    messages=[{"role": "user", "content": prompt}],
                    temperature=temperature,
                    max_tokens=max_tokens,
                ),
                timeout=self.timeout,
            )
            text = (response.choices[0].message.content or "").strip()
            return text or None
        except asyncio.TimeoutError:
            logger.error(f"⏱️ LLM call timed out after {self.timeout}s")
            return None
        except Exception as e:
            logger.error(f"❌ LLM call failed: {e}")
            return None

    # --- Matching ---

    async def match_intent_to_catalog(self, utterance: str, catalog: Sequence[Dict[str, object]]) -> Optional[int]:
        """
        `catalog` entries carry only 'name' and 'keywords'. Returns a 0-based index or None.
        """
        if not utterance or not catalog:
            return None

        lines = []
        for number, entry in enumerate(catalog, start=1):
            keywords = ", ".join(entry.get("keywords") or [])
            lines.append(f"{number}. {entry.get('name')} (keywords: {keywords})")

        prompt = f"""You match a dental patient's request to one appointment type from a fixed list.

Appointment types:
{chr(10).join(lines)}

Patient request: "{utterance}"

Rules:
- Answer with the number of the single best matching appointment type.
- If nothing in the list fits, answer exactly {NO_MATCH}.
- Never invent an appointment type that is not in the list.

Answer (number or {NO_MATCH}):"""

        answer = await self._complete(prompt, temperature=0.0, max_tokens=10)
        index = _parse_number(answer, len(catalog))
        logger.info(f"🧠 Catalog match for '{utterance}': {answer!r} -> {index}")
        return index

    async def match_utterance_to_offer(self, utterance: str, offered_displays: Sequence[str]) -> Optional[int]:
        """Returns the 0-based index of the offered slot the caller picked, or None."""
        if not utterance or not offered_displays:
            return None

        ordinal = match_ordinal(utterance, len(offered_displays))
        if ordinal is not None:
            return ordinal

        numbered = "\n".join(f"{n}. {display}" for n, display in enumerate(offered_displays, start=1))
        prompt = f"""A caller was offered these appointment times:
{numbered}

The caller said: "{utterance}"

Which option did the caller choose? Answer with the option number only.
If the caller did not clearly choose exactly one of these options, answer exactly {NO_MATCH}.

Answer:"""
        answer = await self._complete(prompt, temperature=0.0, max_tokens=10)
        index = _parse_number(answer, len(offered_displays))
        logger.info(f"🧠 Slot selection '{utterance}': {answer!r} -> {index}")
        return index

    async def normalize_date(self, utterance: str, timezone: str, today: Optional[date] = None) -> Optional[str]:
        """Free text ('next Tuesday', 'June 1st 1990') to YYYY-MM-DD, or None."""
        if not utterance or not utterance.strip():
            return None

        text = utterance.strip()
        if _ISO_DATE.match(text):
            return text if _valid_iso(text) else None

        today = today or datetime.now(ZoneInfo(timezone)).date()
        prompt = f"""You convert a spoken date into the format YYYY-MM-DD.

Today is {today.strftime('%A')}, {today.isoformat()} (timezone {timezone}).

Rules:
1. Resolve relative expressions ("tomorrow", "this Friday") against today's date.
2. If the caller says "next <weekday>" and today is that same weekday, use the date 7 days from today. Otherwise "next <weekday>" is the first upcoming <weekday>.
3. Birth dates and other full dates are returned as given.
4. If the text is ambiguous or is not a date, answer exactly {INVALID_DATE}.

Text: "{text}"

Answer (YYYY-MM-DD or {INVALID_DATE}):"""
        answer = await self._complete(prompt, temperature=0.0, max_tokens=20)
        if not answer or answer == INVALID_DATE or not _ISO_DATE.match(answer) or not _valid_iso(answer):
            logger.info(f"🧠 Date '{utterance}' could not be normalized ({answer!r})")
            return None
        logger.info(f"🧠 Date '{utterance}' -> {answer}")
        return answer

    # --- Generation ---

    async def generate_confirmation_text(self, context: Dict[str, str], fallback: str) -> str:
        details = "\n".join(f"- {key}: {value}" for key, value in context.items())
        prompt = f"""You write one spoken sentence for a friendly dental receptionist voice assistant.
The appointment below has just been booked. Confirm it warmly in one sentence, mentioning the
appointment type and the exact day and time. Do not invent any detail.

{details}

Sentence:"""
        return await self._complete(prompt, temperature=0.7, max_tokens=100) or fallback

    async def summarize_collected_info(self, details: Dict[str, str], fallback: str) -> str:
        lines = "\n".join(f"- {key}: {value}" for key, value in details.items())
        prompt = f"""You are a friendly dental receptionist voice assistant.
Read the patient's details back as one fluid statement and end with a question such as
"Is that all correct?". Use the spelled-out name and phone read-back exactly as given.

{lines}

Statement:"""
        return await self._complete(prompt, temperature=0.5, max_tokens=150) or fallback

    async def next_question(self, field_label: str, first_name: Optional[str], fallback: str) -> str:
        prompt = f"""You are a friendly dental receptionist voice assistant.
Ask the caller for their {field_label} in one short, natural sentence.
Caller's first name: {first_name or 'not provided'}.

Question:"""
        return await self._complete(prompt, temperature=0.7, max_tokens=50) or fallback

    async def appointment_note(self, appointment_name: str, patient_request: Optional[str],
                               transcript: Optional[str]) -> str:
        fallback = f"{appointment_name} appointment. Original request: {patient_request or 'not stated'}"
        if not transcript and not patient_request:
            return fallback

        prompt = f"""Write a short clinical scheduling note (max 2 sentences) for a dental appointment
booked by phone. Mention the reason for the visit. No greetings.

Appointment type: {appointment_name}
Patient's original request: {patient_request or 'not stated'}
Call transcript:
{transcript or '(not available)'}

Note:"""
        return await self._complete(prompt, temperature=0.3, max_tokens=80) or fallback

    async def insurance_response(self, queried: Optional[str], is_match: bool, plans: List[str],
                                 fallback: str) -> str:
        if queried is None:
            situation = f"The caller asked which insurances we accept. Name these plans naturally: {', '.join(plans)}"
        elif is_match:
            situation = f"The caller asked whether we accept {queried}. We do. Confirm it."
        else:
            situation = (
                f"The caller asked whether we accept {queried}. We do not. Say we may be out-of-network "
                f"with that plan, reassure them we'd still love to see them, and do not list other plans."
            )
        prompt = f"""You are a friendly dental receptionist voice assistant. Answer in one or two short spoken sentences.

{situation}

Answer:"""
        return await self._complete(prompt, temperature=0.2, max_tokens=150) or fallback


def match_ordinal(utterance: str, count: int) -> Optional[int]:
    """'the first one' -> 0, 'last' -> count - 1. Spoken times are left to the model."""
    text = utterance.lower()
    option = _OPTION_NUMBER.search(text)
    if option:
        index = int(option.group(1)) - 1
        return index if 0 <= index < count else None
    if _TIME_IN_TEXT.search(text):
        return None
    words = re.findall(r"[a-z0-9]+", text)
    has_last = any(w in LAST_WORDS for w in words)
    ordinals = [ORDINALS[w] for w in words if w in ORDINALS]
    # "second to last", "the first, not the last"
    if has_last and ordinals:
        return None
    if has_last:
        return count - 1
    if ordinals and ordinals[0] < count:
        return ordinals[0]
    return None


def _parse_number(answer: Optional[str], count: int) -> Optional[int]:
    if not answer or NO_MATCH in answer.upper():
        return None
    found = re.search(r"\d+", answer)
    if not found:
        return None
    index = int(found.group()) - 1
    if 0 <= index < count:
        return index
    return None


def _valid_iso(value: str) -> bool:
    try:
        date.fromisoformat(value)
        return True
    except ValueError:
        return False


nlu_service = NLUService()
