"""
Helpers that turn stored values into text a voice assistant can read aloud.
"""
import re
from datetime import date, datetime
from typing import List, Optional

AFFIRMATIVE_WORDS = ("yes", "correct", "right")


def is_affirmative(utterance: Optional[str]) -> bool:
    """
    Single gate for yes/no confirmations in the dialogue.
    Anything that does not contain an affirmative word counts as a denial.
    """
    if not utterance:
        return False
    text = utterance.lower()
    return any(word in text for word in AFFIRMATIVE_WORDS)


def spell_out(word: Optional[str]) -> str:
    """'John' -> 'J. O. H. N.'"""
    if not word:
        return ""
    letters = [ch.upper() for ch in word if ch.isalpha()]
    if not letters:
        return ""
    return ". ".join(letters) + "."


def format_phone_for_readback(phone: Optional[str]) -> str:
    """
    Groups digits the way a receptionist reads a number back:
    '5123341212' -> '5 1 2... 3 3 4... 1 2 1 2'.
    """
    if not phone:
        return ""
    digits = re.sub(r"\D", "", phone)

    def group(chunk: str) -> str:
        return " ".join(chunk)

    if len(digits) == 10:
        return f"{group(digits[:3])}... {group(digits[3:6])}... {group(digits[6:])}"
    if len(digits) == 11:
        return f"{digits[0]}... {group(digits[1:4])}... {group(digits[4:7])}... {group(digits[7:])}"
    return group(digits)


def format_email_for_readback(email: Optional[str]) -> str:
    if not email:
        return ""
    username, _, domain = email.strip().partition("@")
    if not domain:
        return spell_out(username)
    return f"{spell_out(username)} at {domain}"


def split_full_name(full_name: Optional[str]):
    """Returns (first, last) or None when only one word was given."""
    if not full_name:
        return None
    parts = full_name.strip().split()
    if len(parts) < 2:
        return None
    return parts[0], " ".join(parts[1:])


def format_spoken_date(value: date) -> str:
    # "Tuesday, October 20"
    return f"{value.strftime('%A')}, {value.strftime('%B')} {value.day}"


def format_spoken_time(value: datetime) -> str:
    # "9:00 AM"
    hour = value.hour % 12 or 12
    return f"{hour}:{value.minute:02d} {'AM' if value.hour < 12 else 'PM'}"


def format_spoken_datetime(value: datetime) -> str:
    return f"{format_spoken_date(value)} at {format_spoken_time(value)}"


def join_options(options: List[str]) -> str:
    """['a'] -> 'a', ['a', 'b'] -> 'a or b', ['a', 'b', 'c'] -> 'a, b, or c'"""
    if not options:
        return ""
    if len(options) == 1:
        return options[0]
    if len(options) == 2:
        return f"{options[0]} or {options[1]}"
    return ", ".join(options[:-1]) + f", or {options[-1]}"
