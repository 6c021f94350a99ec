# Tool definitions for Vapi/LLM function calling
from voice_booking.core.config import settings

def _server():
    return {"url": f"{settings.APP_BASE_URL}{settings.API_V1_STR}/webhook"}

def find_appointment_type_tool():
    return {
        "type": "function",
        "function": {
            "name": "findAppointmentType",
            "description": "Identifies the appointment type that fits the caller's reason for calling. Call this first, before collecting patient details or checking times.",
            "parameters": {
                "type": "object",
                "properties": {
                    "patientRequest": {
                        "type": "string",
                        "description": "The caller's own words about why they are calling, e.g. 'I have a toothache' or 'I need a cleaning'."
                    }
                },
                "required": ["patientRequest"]
            }
        },
        "server": _server()
    }

def manage_patient_record_tool():
    return {
        "type": "function",
        "function": {
            "name": "managePatientRecord",
            "description": "Identifies an existing patient or creates a new patient record, one step at a time. Call it after the appointment type is known and pass whatever the caller just said.",
            "parameters": {
                "type": "object",
                "properties": {
                    "fullName": {"type": "string", "description": "The caller's first and last name."},
                    "dob": {"type": "string", "description": "The caller's date of birth as spoken."},
                    "phone": {"type": "string", "description": "The caller's phone number."},
                    "email": {"type": "string", "description": "The caller's email address."},
                    "userConfirmation": {"type": "string", "description": "The caller's answer to a confirmation question, e.g. 'yes' or 'no, that's wrong'."}
                },
                "required": []
            }
        },
        "server": _server()
    }

def check_available_slots_tool():
    return {
        "type": "function",
        "function": {
            "name": "checkAvailableSlots",
            "description": "Finds open appointment times for the appointment type already identified. Use when the caller names a day or a time of day.",
            "parameters": {
                "type": "object",
                "properties": {
                    "requestedDate": {
                        "type": "string",
                        "description": "The day the caller wants, as spoken, e.g. 'next Tuesday' or 'June 3rd'."
                    },
                    "timeBucket": {
                        "type": "string",
                        "description": "The caller's time-of-day preference: one of 'Early', 'Morning', 'Midday', 'Afternoon', 'Evening', 'Late' or 'AllDay'."
                    }
                },
                "required": []
            }
        },
        "server": _server()
    }

def select_and_book_slot_tool():
    return {
        "type": "function",
        "function": {
            "name": "selectAndBookSlot",
            "description": "Books the time the caller picked from the options just read to them. This is the final step.",
            "parameters": {
                "type": "object",
                "properties": {
                    "userSelection": {
                        "type": "string",
                        "description": "The caller's choice as spoken, e.g. 'the first one' or '10:30'."
                    }
                },
                "required": ["userSelection"]
            }
        },
        "server": {**_server(), "timeoutSeconds": 20}
    }

def insurance_info_tool():
    return {
        "type": "function",
        "function": {
            "name": "insuranceInfo",
            "description": "Answers questions about dental insurance, e.g. 'What insurance do you take?' or 'Do you accept Cigna?'",
            "parameters": {
                "type": "object",
                "properties": {
                    "insuranceName": {
                        "type": "string",
                        "description": "The insurance plan the caller asked about. Omit for general questions."
                    }
                },
                "required": []
            }
        },
        "server": _server()
    }

def all_tools():
    return [
        find_appointment_type_tool(),
        manage_patient_record_tool(),
        check_available_slots_tool(),
        select_and_book_slot_tool(),
        insurance_info_tool(),
    ]
