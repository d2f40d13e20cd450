from datetime import date

import pytest

from conftest import document_text, make_pdf
from prayer_clock.errors import DocumentParsingError, ScheduleParsingError
from prayer_clock.scraping.pdf_parser import (
    ApartmentAdjustments,
    extract_text,
    parse_metadata,
    parse_schedule,
    to_24_hour,
)


def test_to_24_hour_conversions():
    assert to_24_hour("5:30", "AM") == "05:30"
    assert to_24_hour("12:15", "PM") == "12:15"
    assert to_24_hour("12:05", "AM") == "00:05"
    assert to_24_hour("7:45", "pm") == "19:45"


@pytest.mark.parametrize("bad", ["13:00", "5:7", "5:75"])
def test_to_24_hour_rejects_invalid(bad):
    with pytest.raises(ValueError):
        to_24_hour(bad, "AM")


def test_parse_schedule_full_month():
    metadata, rows = parse_schedule(document_text(2025, 3))
    assert metadata.zone == 1
    assert metadata.month == "March"
    assert metadata.year == 2025
    assert metadata.districts == ["Colombo District", "Gampaha District", "Kalutara District"]
    assert len(rows) == 31
    first = rows[0]
    assert first.date == date(2025, 3, 1)
    assert (first.fajr, first.sunrise, first.dhuhr) == ("04:06", "06:06", "12:06")
    assert (first.asr, first.maghrib, first.isha) == ("15:06", "18:06", "19:06")
    assert [r.day for r in rows] == list(range(1, 32))


def test_parse_schedule_without_periods_uses_prayer_defaults():
    text = "Zone: 7\nKANDY DISTRICT\n05-Jun 4:20 5:50 11:58 3:20 6:25 7:40\n06-Jun 4:21 5:51 12:01 3:21 6:26 7:41"
    metadata, rows = parse_schedule(text)
    assert metadata.zone == 7
    assert rows[0].dhuhr == "11:58"
    assert rows[1].dhuhr == "12:01"
    assert rows[0].asr == "15:20"
    assert rows[0].isha == "19:40"


def test_parse_schedule_accepts_24_hour_values():
    text = "Zone: 1\n2024\n01-Jan 04:55 06:15 12:10 15:35 18:05 19:20"
    _, rows = parse_schedule(text)
    assert rows[0].asr == "15:35"
    assert rows[0].date == date(2024, 1, 1)


def test_parse_schedule_skips_bad_rows_and_duplicates():
    text = "\n".join([
        "Zone: 1 2025",
        "01-Mar 4:55 AM 6:10 AM 12:15 PM 3:30 PM 6:20 PM 7:30 PM",
        "01-Mar 4:56 AM 6:11 AM 12:16 PM 3:31 PM 6:21 PM 7:31 PM",
        "02-Xyz 4:55 AM 6:10 AM 12:15 PM 3:30 PM 6:20 PM 7:30 PM",
        "03-Mar 4:99 AM 6:10 AM 12:15 PM 3:30 PM 6:20 PM 7:30 PM",
        "04-Mar 4:53 AM 6:09 AM 12:14 PM 3:29 PM 6:19 PM 7:29 PM",
    ])
    _, rows = parse_schedule(text)
    assert [r.date for r in rows] == [date(2025, 3, 1), date(2025, 3, 4)]
    # first occurrence of a day wins
    assert rows[0].fajr == "04:55"


def test_parse_schedule_without_rows_raises():
    with pytest.raises(ScheduleParsingError):
        parse_schedule("Zone: 1\nNo table here\n01-Mar only")


def test_parse_metadata_defaults():
    metadata = parse_metadata("nothing useful")
    assert metadata.zone == 1
    assert metadata.districts == ["Unknown District"]
    assert metadata.month == "Unknown"
    assert metadata.apartment_adjustments == ApartmentAdjustments()
    assert metadata.location == "Zone 1 - Unknown District"


def test_extract_text_reads_generated_pdf():
    text = extract_text(make_pdf(document_text(2025, 2)))
    _, rows = parse_schedule(text)
    assert len(rows) == 28
    assert rows[-1].date == date(2025, 2, 28)


def test_extract_text_rejects_garbage():
    with pytest.raises(DocumentParsingError):
        extract_text(b"<html>not a pdf</html>")
    with pytest.raises(DocumentParsingError):
        extract_text(b"")
