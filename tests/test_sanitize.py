"""
test_sanitize.py — Field cleaners for connector rows

Called by: pytest
Depends on: secondlook.utils.sanitize
"""

from datetime import date, datetime, timezone

from secondlook.utils.sanitize import (
    clean_id,
    parse_datetime,
    sanitize_city,
    sanitize_job_type,
    sanitize_money,
    sanitize_postal,
)


class TestSanitizeGeo:
    def test_city_is_trimmed_and_lowercased(self):
        assert sanitize_city("  Salt   Lake City ") == "salt lake city"

    def test_city_empty_is_none(self):
        assert sanitize_city("   ") is None
        assert sanitize_city(None) is None

    def test_postal_keeps_three_char_prefix(self):
        assert sanitize_postal("M5V 2T6") == "m5v"
        assert sanitize_postal("90210-1234") == "902"

    def test_postal_without_alphanumerics_is_none(self):
        assert sanitize_postal(" - ") is None


class TestSanitizeMoney:
    def test_parses_formatted_strings(self):
        assert sanitize_money("$1,250.50") == 1250.5
        assert sanitize_money("800") == 800.0

    def test_numbers_pass_through(self):
        assert sanitize_money(42) == 42.0

    def test_negative_is_returned_for_caller_to_reject(self):
        assert sanitize_money("-5") == -5.0

    def test_unusable_values(self):
        assert sanitize_money(None) is None
        assert sanitize_money("abc") is None
        assert sanitize_money(True) is None
        assert sanitize_money(float("nan")) is None
        assert sanitize_money(float("inf")) is None


def test_job_type_lowercased():
    assert sanitize_job_type(" Roof  Repair ") == "roof repair"
    assert sanitize_job_type("") is None


def test_clean_id_truncates():
    assert clean_id("  abc ") == "abc"
    assert len(clean_id("x" * 500)) == 128
    assert clean_id(None) is None


class TestParseDatetime:
    def test_zulu_suffix(self):
        assert parse_datetime("2026-03-01T10:00:00Z") == datetime(2026, 3, 1, 10, tzinfo=timezone.utc)

    def test_offset_converted_to_utc(self):
        dt = parse_datetime("2026-03-01T10:00:00-05:00")
        assert dt == datetime(2026, 3, 1, 15, tzinfo=timezone.utc)

    def test_naive_assumed_utc(self):
        assert parse_datetime("2026-03-01T10:00:00").tzinfo == timezone.utc

    def test_date_object(self):
        assert parse_datetime(date(2026, 3, 1)) == datetime(2026, 3, 1, tzinfo=timezone.utc)

    def test_garbage(self):
        assert parse_datetime("not a date") is None
        assert parse_datetime("") is None
        assert parse_datetime(12345) is None
