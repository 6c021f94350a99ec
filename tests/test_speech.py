from datetime import date, datetime

from voice_booking.core.speech import (
    format_email_for_readback,
    format_phone_for_readback,
    format_spoken_date,
    format_spoken_time,
    is_affirmative,
    join_options,
    spell_out,
    split_full_name,
)


def test_affirmative_words():
    assert is_affirmative("Yes, that's it")
    assert is_affirmative("that is correct")
    assert is_affirmative("Right.")
    assert not is_affirmative("no")
    assert not is_affirmative("")
    assert not is_affirmative(None)


def test_spell_out_name():
    assert spell_out("John") == "J. O. H. N."
    assert spell_out("O'Neil") == "O. N. E. I. L."
    assert spell_out("") == ""


def test_phone_readback_groups_digits():
    assert format_phone_for_readback("(512) 334-1212") == "5 1 2... 3 3 4... 1 2 1 2"
    assert format_phone_for_readback("+1 512 334 1212") == "1... 5 1 2... 3 3 4... 1 2 1 2"


def test_email_readback_spells_username():
    assert format_email_for_readback("jo@example.com") == "J. O. at example.com"


def test_split_full_name():
    assert split_full_name("Mary Ann Smith") == ("Mary", "Ann Smith")
    assert split_full_name("Mary") is None
    assert split_full_name(None) is None


def test_spoken_date_and_time():
    assert format_spoken_date(date(2026, 10, 20)) == "Tuesday, October 20"
    assert format_spoken_time(datetime(2026, 10, 20, 9, 0)) == "9:00 AM"
    assert format_spoken_time(datetime(2026, 10, 20, 13, 30)) == "1:30 PM"
    assert format_spoken_time(datetime(2026, 10, 20, 0, 15)) == "12:15 AM"


def test_join_options():
    assert join_options(["a"]) == "a"
    assert join_options(["a", "b"]) == "a or b"
    assert join_options(["a", "b", "c"]) == "a, b, or c"
