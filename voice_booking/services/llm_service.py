from voice_booking.core.config import settings
from voice_booking.tools.definitions import all_tools

SYSTEM_PROMPT = """You are a friendly, efficient receptionist for a dental practice, answering the phone.
Your job is to book appointments using your tools, in this order:
1. Ask why they are calling and call findAppointmentType with their words.
2. Call managePatientRecord and keep calling it with each answer the caller gives until the tool says they are set up.
3. Call checkAvailableSlots with the day and time of day the caller prefers.
4. Read the options back and call selectAndBookSlot with the caller's choice.
If the caller asks about insurance at any point, call insuranceInfo with the plan they named.
Always speak the tool's result to the caller in your own natural words. Never make up times, names or prices.
Keep every reply short and conversational."""

def get_assistant_config():
    """
    Returns the Vapi assistant configuration.
    Prompt and tool wiring live here so the webhook stays a thin router.
    """
    return {
        "firstMessage": "Thanks for calling! How can I help you today?",
        "model": {
            "provider": "openai",
            "model": "gpt-4o",
            "messages": [
                {
                    "role": "system",
                    "content": SYSTEM_PROMPT
                }
            ],
            "tools": all_tools()
        },
        "voice": {"provider": "11labs", "voiceId": "sarah"},
        "serverUrl": f"{settings.APP_BASE_URL}{settings.API_V1_STR}/webhook"
    }
