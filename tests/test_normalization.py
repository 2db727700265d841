from datetime import date, datetime, time

import pandas as pd
import pytest

from guest_identity.normalization import (
    coerce_text,
    is_standard_phone_safe,
    is_valid_email_safe,
    normalize_email,
    normalize_phone,
    parse_date,
    parse_datetime,
    parse_number,
    parse_time,
    resolve_identity_key,
)


def test_normalize_phone_russian_forms():
    assert normalize_phone("+7 (999) 123-45-67") == "9991234567"
    assert normalize_phone("8 999 123 45 67") == "9991234567"
    assert normalize_phone("79991234567") == "9991234567"
    assert normalize_phone("9991234567") == "9991234567"


def test_normalize_phone_twelve_digits_with_country_code():
    assert normalize_phone("779991234567") == "79991234567"
    assert normalize_phone("899912345678") == "899912345678"


def test_normalize_phone_empty_and_unparseable():
    assert normalize_phone(None) == ""
    assert normalize_phone("") == ""
    assert normalize_phone("no phone") == ""
    assert normalize_phone(float("nan")) == ""


def test_normalize_phone_spreadsheet_float():
    assert normalize_phone(79991234567.0) == "9991234567"
    assert normalize_phone(9991234567) == "9991234567"


def test_normalize_phone_is_idempotent_on_canonical_form():
    for raw in ["+7 (999) 123-45-67", "8-921-000-11-22", "9215556677", "7 812 555 66 77"]:
        once = normalize_phone(raw)
        assert len(once) == 10
        assert normalize_phone(once) == once


def test_normalize_email():
    assert normalize_email("  Anna.Petrova@Mail.RU ") == "anna.petrova@mail.ru"
    assert normalize_email(None) == ""
    assert normalize_email("") == ""


def test_resolve_identity_key_prefers_phone():
    assert resolve_identity_key("+7 999 123 45 67", "a@b.ru") == "9991234567"
    assert resolve_identity_key("", " A@B.ru") == "a@b.ru"
    assert resolve_identity_key(None, None) == ""


def test_coerce_text():
    assert coerce_text("  value  ") == "value"
    assert coerce_text(None) == ""
    assert coerce_text(float("nan")) == ""
    assert coerce_text(42) == "42"


def test_parse_number():
    assert parse_number("9 000 ₽") == 9000
    assert parse_number("1500,50") == pytest.approx(1500.5)
    assert parse_number(3) == 3
    assert parse_number(None) == 0
    assert parse_number("") == 0
    assert parse_number("n/a") == 0
    assert parse_number(float("nan")) == 0


def test_parse_date_formats():
    assert parse_date("2024-01-10") == date(2024, 1, 10)
    assert parse_date("2024-01-10 18:30:00") == date(2024, 1, 10)
    assert parse_date("05.03.2024") == date(2024, 3, 5)
    assert parse_date(datetime(2024, 2, 1, 12, 0)) == date(2024, 2, 1)
    assert parse_date(date(2024, 2, 1)) == date(2024, 2, 1)
    assert parse_date(pd.Timestamp("2024-02-01 09:00")) == date(2024, 2, 1)


def test_parse_date_rejects_garbage():
    assert parse_date(None) is None
    assert parse_date("") is None
    assert parse_date("not a date") is None
    assert parse_date("2024-13-45") is None
    assert parse_date(45000) is None


def test_parse_date_rejects_partial_values():
    assert parse_date("10:30") is None
    assert parse_date("March") is None
    assert parse_date("2024") is None
    assert parse_date("12.2024") is None


def test_parse_date_two_digit_year_and_textual_month():
    assert parse_date("05.03.24") == date(2024, 3, 5)
    assert parse_datetime("05.03.24 19:30") == datetime(2024, 3, 5, 19, 30)
    assert parse_date("2024/03/05") == date(2024, 3, 5)
    assert parse_date("6 Jan 2024") == date(2024, 1, 6)


def test_parse_datetime_is_always_naive():
    parsed = parse_datetime("Jan 6 2024 19:00 +0300")
    assert parsed is not None
    assert parsed.tzinfo is None
    assert parsed.date() == date(2024, 1, 6)
    aware = parse_datetime(pd.Timestamp("2024-01-06 19:00", tz="Europe/Moscow"))
    assert aware == datetime(2024, 1, 6, 19, 0)
    assert aware.tzinfo is None


def test_parse_datetime_keeps_clock():
    assert parse_datetime("15.06.2024 19:45") == datetime(2024, 6, 15, 19, 45)
    assert parse_datetime("2024-06-15") == datetime(2024, 6, 15, 0, 0)


def test_parse_time():
    assert parse_time("14:30") == time(14, 30)
    assert parse_time("09:05:10") == time(9, 5, 10)
    assert parse_time(datetime(2024, 1, 1, 8, 15)) == time(8, 15)
    assert parse_time("") is None
    assert parse_time("25:00") is None


def test_is_valid_email_safe():
    assert is_valid_email_safe("anna@gmail.com") is True
    assert is_valid_email_safe("not-an-email") is False
    assert is_valid_email_safe("") is False


def test_is_standard_phone_safe_rejects_impossible_numbers():
    assert is_standard_phone_safe("0000000000") is False
    assert is_standard_phone_safe("") is False


if __name__ == "__main__":
    pytest.main(["-q"])
