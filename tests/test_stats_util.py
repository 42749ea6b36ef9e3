"""Tests for stats_util.py timestamp, text and filename helpers."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from stats_util import (
    MIN_DATE,
    calculate_duration,
    count_words,
    date_from_iso,
    hash_message,
    max_date,
    min_date,
    parse_timestamp,
    sanitize_filename,
)


# -- parse_timestamp ---------------------------------------------------------

class TestParseTimestamp:
    def test_iso_with_offset(self):
        result = parse_timestamp("2024-01-15T10:00:00+00:00")
        assert result == datetime(2024, 1, 15, 10, 0, tzinfo=timezone.utc)

    def test_iso_with_z_suffix(self):
        result = parse_timestamp("2024-01-15T10:00:05.250Z")
        assert result == datetime(2024, 1, 15, 10, 0, 5, 250000, tzinfo=timezone.utc)

    def test_naive_iso_is_utc(self):
        result = parse_timestamp("2024-01-15T10:00:00")
        assert result.tzinfo is not None
        assert result.hour == 10

    def test_epoch_milliseconds_number(self):
        assert parse_timestamp(1705312800000) == datetime(2024, 1, 15, 10, 0, tzinfo=timezone.utc)

    def test_epoch_milliseconds_string(self):
        assert parse_timestamp("1705312800000") == datetime(2024, 1, 15, 10, 0, tzinfo=timezone.utc)

    def test_humanized_chat_date(self):
        result = parse_timestamp("2024-7-12@01h31m37s")
        assert result == datetime(2024, 7, 12, 1, 31, 37, tzinfo=timezone.utc)

    def test_humanized_chat_date_with_millis(self):
        result = parse_timestamp("2024-7-12@01h31m37s250ms")
        assert result.microsecond == 250000

    @pytest.mark.parametrize(
        "text", ["June 19, 2023 2:20pm", "June 19, 2023 2:20 PM", "Jun 19, 2023 2:20pm"]
    )
    def test_long_human_dates(self, text):
        assert parse_timestamp(text) == datetime(2023, 6, 19, 14, 20, tzinfo=timezone.utc)

    @pytest.mark.parametrize("value", [None, "", "   ", "not a date", True, {"a": 1}, float("nan")])
    def test_unparseable_returns_none(self, value):
        assert parse_timestamp(value) is None

    def test_aware_datetime_converted_to_utc(self):
        from datetime import timedelta

        plus_two = timezone(timedelta(hours=2))
        result = parse_timestamp(datetime(2024, 1, 15, 12, 0, tzinfo=plus_two))
        assert result == datetime(2024, 1, 15, 10, 0, tzinfo=timezone.utc)


# -- calculate_duration ------------------------------------------------------

class TestCalculateDuration:
    def test_milliseconds(self):
        assert calculate_duration("2024-01-15T10:00:02Z", "2024-01-15T10:00:05Z") == 3000

    def test_negative_when_reversed(self):
        assert calculate_duration("2024-01-15T10:00:05Z", "2024-01-15T10:00:02Z") == -3000

    def test_mixed_formats(self):
        assert calculate_duration("2024-1-15@10h00m00s", "2024-01-15T10:01:00Z") == 60000

    def test_unparseable_side_returns_none(self):
        assert calculate_duration("garbage", "2024-01-15T10:00:05Z") is None
        assert calculate_duration("2024-01-15T10:00:05Z", None) is None


# -- date helpers ------------------------------------------------------------

class TestDateHelpers:
    def test_min_max_ignore_none(self):
        a = datetime(2024, 1, 1, tzinfo=timezone.utc)
        b = datetime(2024, 2, 1, tzinfo=timezone.utc)
        assert min_date(None, b, a) == a
        assert max_date(a, None, b) == b

    def test_min_max_of_nothing(self):
        assert min_date() is None
        assert max_date(None) is None

    def test_date_from_iso_default(self):
        assert date_from_iso(None) == MIN_DATE
        assert date_from_iso("bad") == MIN_DATE


# -- text helpers ------------------------------------------------------------

class TestCountWords:
    @pytest.mark.parametrize(
        "text, expected",
        [
            ("hello there my good friend", 5),
            ("Hello, world! It's me.", 5),
            ("", 0),
            ("   ", 0),
            ("*waves* hi", 2),
        ],
    )
    def test_counts(self, text, expected):
        assert count_words(text) == expected

    def test_non_string(self):
        assert count_words(None) == 0


class TestHashMessage:
    def test_stable(self):
        assert hash_message("hi") == hash_message("hi")
        assert len(hash_message("hi")) == 64

    def test_distinct(self):
        assert hash_message("hi") != hash_message("ho")

    def test_none_hashes_as_empty(self):
        assert hash_message(None) == hash_message("")


class TestSanitizeFilename:
    def test_plain_name_unchanged(self):
        assert sanitize_filename("Alice - 2024-1-15@10h00m00s.jsonl") == "Alice - 2024-1-15@10h00m00s.jsonl"

    def test_strips_path_separators(self):
        result = sanitize_filename("../../etc/passwd")
        assert "/" not in result
        assert result.endswith("etcpasswd")

    @pytest.mark.parametrize("name", ["", ".", "..", "CON", "nul.txt"])
    def test_rejected_names(self, name):
        assert sanitize_filename(name) == ""
