import asyncio
import pytest
from datetime import date
from unittest.mock import AsyncMock, MagicMock, patch

from voice_booking.services.nlu_service import NLUService, match_ordinal

OFFER = ["Tuesday, June 2 at 9:00 AM", "Tuesday, June 2 at 10:30 AM", "Tuesday, June 2 at 2:00 PM"]


def _service_with_answer(answer):
    service = NLUService(client=MagicMock(), model="test-model")
    return service, patch.object(service, "_complete", new_callable=AsyncMock, return_value=answer)


def test_match_ordinal():
    assert match_ordinal("the first one please", 3) == 0
    assert match_ordinal("I'll take the second", 3) == 1
    assert match_ordinal("the last one", 3) == 2
    assert match_ordinal("option 3", 3) == 2
    assert match_ordinal("option 4", 3) is None
    assert match_ordinal("the fifth", 3) is None
    # Spoken times go to the model
    assert match_ordinal("the first one at 2:00 pm", 3) is None
    assert match_ordinal("ten thirty works", 3) is None
    # Mixed ordinal and "last" phrasing goes to the model
    assert match_ordinal("the second to last one", 3) is None
    assert match_ordinal("the first, not the last", 3) is None


@pytest.mark.asyncio
async def test_ordinal_selection_skips_model():
    service, patcher = _service_with_answer("3")
    with patcher as mock_complete:
        assert await service.match_utterance_to_offer("the first one", OFFER) == 0
    mock_complete.assert_not_awaited()


@pytest.mark.asyncio
async def test_spoken_time_selection_uses_model():
    service, patcher = _service_with_answer("2")
    with patcher as mock_complete:
        assert await service.match_utterance_to_offer("ten thirty", OFFER) == 1
    prompt = mock_complete.call_args.args[0]
    assert "2. Tuesday, June 2 at 10:30 AM" in prompt


@pytest.mark.asyncio
async def test_selection_no_match():
    service, patcher = _service_with_answer("NO_MATCH")
    with patcher:
        assert await service.match_utterance_to_offer("something in July", OFFER) is None


@pytest.mark.asyncio
async def test_catalog_match_returns_index():
    catalog = [{"name": "Cleaning", "keywords": ["cleaning"]}, {"name": "Emergency Exam", "keywords": ["toothache", "pain"]}]
    service, patcher = _service_with_answer("2")
    with patcher as mock_complete:
        assert await service.match_intent_to_catalog("my tooth hurts", catalog) == 1
    prompt = mock_complete.call_args.args[0]
    assert "2. Emergency Exam (keywords: toothache, pain)" in prompt


@pytest.mark.asyncio
@pytest.mark.parametrize("answer", ["NO_MATCH", "7", None, "not sure"])
async def test_catalog_unusable_answers(answer):
    service, patcher = _service_with_answer(answer)
    with patcher:
        assert await service.match_intent_to_catalog("bleaching", [{"name": "Cleaning", "keywords": ["cleaning"]}]) is None


@pytest.mark.asyncio
async def test_relative_date_is_resolved_by_model():
    service, patcher = _service_with_answer("2026-10-20")
    with patcher as mock_complete:
        result = await service.normalize_date("next Tuesday", "America/Chicago", today=date(2026, 10, 18))
    assert result == "2026-10-20"
    assert "Today is Sunday, 2026-10-18" in mock_complete.call_args.args[0]


@pytest.mark.asyncio
@pytest.mark.parametrize("answer", ["INVALID_DATE", "2026-02-30", "Tuesday", None])
async def test_unusable_dates_return_none(answer):
    service, patcher = _service_with_answer(answer)
    with patcher:
        assert await service.normalize_date("sometime", "America/Chicago", today=date(2026, 10, 18)) is None


@pytest.mark.asyncio
async def test_iso_dates_skip_model():
    service, patcher = _service_with_answer("2000-01-01")
    with patcher as mock_complete:
        assert await service.normalize_date("1990-06-01", "America/Chicago") == "1990-06-01"
        assert await service.normalize_date("1990-02-30", "America/Chicago") is None
    mock_complete.assert_not_awaited()


@pytest.mark.asyncio
async def test_llm_failure_falls_back():
    client = MagicMock()
    client.chat.completions.create = AsyncMock(side_effect=RuntimeError("rate limited"))
    service = NLUService(client=client, model="test-model")

    text = await service.generate_confirmation_text({"Day": "Tuesday"}, fallback="You're booked.")
    assert text == "You're booked."

    note = await service.appointment_note("Cleaning", "I need a cleaning", "[user]: hi")
    assert note == "Cleaning appointment. Original request: I need a cleaning"


@pytest.mark.asyncio
async def test_complete_strips_model_output():
    response = MagicMock()
    response.choices[0].message.content = "  Which day works for you, Ann?  "
    client = MagicMock()
    client.chat.completions.create = AsyncMock(return_value=response)
    service = NLUService(client=client, model="test-model")

    question = await service.next_question("date of birth", "Ann", fallback="What is your date of birth?")
    assert question == "Which day works for you, Ann?"
    assert client.chat.completions.create.call_args.kwargs["model"] == "test-model"


@pytest.mark.asyncio
async def test_slow_completion_falls_back():
    async def slow(**kwargs):
        await asyncio.sleep(5)

    client = MagicMock()
    client.chat.completions.create = AsyncMock(side_effect=slow)
    service = NLUService(client=client, model="test-model", timeout=0.05)

    text = await service.generate_confirmation_text({"Day": "Tuesday"}, fallback="You're booked.")
    assert text == "You're booked."


def test_client_is_built_with_timeout_and_retries():
    with patch("voice_booking.services.nlu_service.AsyncOpenAI") as mock_openai, \
            patch("voice_booking.services.nlu_service.settings") as mock_settings:
        mock_settings.OPENAI_API_KEY = "sk-test"
        mock_settings.OPENAI_MODEL = "test-model"
        mock_settings.OPENAI_TIMEOUT_SECONDS = 6.0
        mock_settings.OPENAI_MAX_RETRIES = 1
        NLUService().get_client()

    kwargs = mock_openai.call_args.kwargs
    assert kwargs["timeout"] == 6.0
    assert kwargs["max_retries"] == 1
