"""
Text extraction and schedule parsing for the monthly ACJU prayer time PDFs.

The parser is a pure function of the document text: bytes go in through
extract_text(), the text goes through parse_schedule(), and structured rows
come out. Nothing here touches the network or the database.
"""
import calendar
import logging
import re
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Dict, List, Optional, Tuple

import fitz  # PyMuPDF

from prayer_clock.errors import DocumentParsingError, ScheduleParsingError

logger = logging.getLogger(__name__)

SOURCE_NAME = "All Ceylon Jamiyyathul Ulama (ACJU)"
SOURCE_COUNTRY = "Sri Lanka"
SOURCE_WEBSITE = "www.acju.lk"

ZONE_PATTERN = re.compile(r"Zone:\s*(\d+)")
DISTRICT_PATTERNS = [
    re.compile(r"(GALLE DISTRICT[^-]*-[^A-Z]*)", re.IGNORECASE),
    re.compile(r"(COLOMBO DISTRICT[^-]*-[^A-Z]*)", re.IGNORECASE),
    re.compile(r"(KANDY DISTRICT[^-]*-[^A-Z]*)", re.IGNORECASE),
    re.compile(r"(\w+ DISTRICT)", re.IGNORECASE),
]
DAY_MONTH_PATTERN = re.compile(r"(\d{1,2})-([A-Za-z]{3})")
MONTH_NAME_PATTERN = re.compile(
    r"(?<!ACJU)(?<!News)\b(JANUARY|FEBRUARY|MARCH|APRIL|MAY|JUNE|JULY|AUGUST|"
    r"SEPTEMBER|OCTOBER|NOVEMBER|DECEMBER)\b",
    re.IGNORECASE,
)
YEAR_PATTERN = re.compile(r"20\d{2}")

# day-month followed by Fajr, Sunrise, Dhuhr, Asr, Maghrib, Isha with optional AM/PM
_TIME = r"\s+(\d{1,2}:\d{2})\s*(AM|PM)?"
ROW_PATTERN = re.compile(r"(\d{1,2})-([A-Za-z]{3})" + _TIME * 6, re.IGNORECASE)

PRAYER_FIELDS = ("fajr", "sunrise", "dhuhr", "asr", "maghrib", "isha")

MONTH_ABBREVIATIONS: Dict[str, int] = {
    calendar.month_abbr[i].lower(): i for i in range(1, 13)
}


@dataclass(frozen=True)
class ApartmentAdjustments:
    """Minute offsets for residents of high-rise buildings."""
    description: str = "Prayer Time Differences for Apartments"
    stories: str = "06-35"
    meters: str = "24-140"
    fajr: int = -1
    sunrise: int = -1
    maghrib: int = 1
    isha: int = 1

    def as_dict(self) -> Dict[str, int]:
        return {
            "fajr": self.fajr,
            "sunrise": self.sunrise,
            "maghrib": self.maghrib,
            "isha": self.isha,
        }


@dataclass
class MonthDocumentMetadata:
    zone: int
    districts: List[str]
    month: str
    year: int
    source: str = SOURCE_NAME
    country: str = SOURCE_COUNTRY
    website: str = SOURCE_WEBSITE
    apartment_adjustments: ApartmentAdjustments = field(default_factory=ApartmentAdjustments)

    @property
    def location(self) -> str:
        return f"Zone {self.zone} - {', '.join(self.districts)}"


@dataclass(frozen=True)
class DailyPrayerRow:
    """One parsed table row, times already in 24-hour HH:MM form."""
    date: date
    fajr: str
    sunrise: str
    dhuhr: str
    asr: str
    maghrib: str
    isha: str

    @property
    def day(self) -> int:
        return self.date.day


def extract_text(document_bytes: bytes) -> str:
    """Extract the plain text of every page, joined by newlines.

    Raises DocumentParsingError if the bytes are not a readable PDF or
    contain no text at all.
    """
    if not document_bytes:
        raise DocumentParsingError("Empty document")
    try:
        with fitz.open(stream=document_bytes, filetype="pdf") as doc:
            pages = [page.get_text() for page in doc]
    except Exception as e:
        raise DocumentParsingError(f"Unable to read PDF: {e}") from e

    text = "\n".join(pages)
    if not text.strip():
        raise DocumentParsingError("PDF contains no extractable text")
    logger.debug(f"Extracted {len(text)} characters from {len(pages)} page(s)")
    return text


def to_24_hour(time_str: str, period: str) -> str:
    """Convert an h:mm time with an AM/PM period to HH:MM.

    >>> to_24_hour("5:30", "AM"), to_24_hour("12:15", "PM"), to_24_hour("12:05", "AM")
    ('05:30', '12:15', '00:05')
    """
    hour_str, minute = time_str.strip().split(":")
    hour = int(hour_str)
    if hour > 12 or len(minute) != 2 or not minute.isdigit() or int(minute) > 59:
        raise ValueError(f"Invalid 12-hour time: {time_str}")
    period = period.upper()
    if period == "PM" and hour != 12:
        hour += 12
    elif period == "AM" and hour == 12:
        hour = 0
    return f"{hour:02d}:{minute}"


def _default_period(prayer: str, time_str: str) -> str:
    if prayer in ("fajr", "sunrise"):
        return "AM"
    if prayer == "dhuhr":
        return "AM" if time_str.startswith("11:") else "PM"
    return "PM"


def _parse_zone(text: str) -> int:
    match = ZONE_PATTERN.search(text)
    return int(match.group(1)) if match else 1


def _parse_districts(text: str) -> List[str]:
    for pattern in DISTRICT_PATTERNS:
        match = pattern.search(text)
        if not match:
            continue
        parts = match.group(1).replace("-", ",").split(",")
        districts = [p.strip().title() for p in parts if p.strip()]
        districts = [d for d in districts if "district" in d.lower()]
        if districts:
            return districts
    return ["Unknown District"]


def _parse_month(text: str) -> str:
    for match in DAY_MONTH_PATTERN.finditer(text):
        number = MONTH_ABBREVIATIONS.get(match.group(2).lower())
        if number:
            return calendar.month_name[number]
    match = MONTH_NAME_PATTERN.search(text)
    if match:
        return match.group(1).capitalize()
    return "Unknown"


def _parse_year(text: str) -> int:
    match = YEAR_PATTERN.search(text)
    return int(match.group(0)) if match else datetime.now().year


def parse_metadata(text: str) -> MonthDocumentMetadata:
    return MonthDocumentMetadata(
        zone=_parse_zone(text),
        districts=_parse_districts(text),
        month=_parse_month(text),
        year=_parse_year(text),
    )


def _row_from_match(match: re.Match, year: int) -> DailyPrayerRow:
    groups = match.groups()
    day = int(groups[0])
    month = MONTH_ABBREVIATIONS.get(groups[1].lower())
    if month is None:
        raise ValueError(f"Unknown month abbreviation: {groups[1]}")

    times = {}
    for index, prayer in enumerate(PRAYER_FIELDS):
        time_str = groups[2 + index * 2]
        period = groups[3 + index * 2]
        hour, minute = time_str.split(":")
        if period is None and int(hour) > 12:
            # already 24-hour
            times[prayer] = f"{int(hour):02d}:{minute}"
            continue
        times[prayer] = to_24_hour(time_str, period or _default_period(prayer, time_str))

    return DailyPrayerRow(date=date(year, month, day), **times)


def parse_schedule(text: str) -> Tuple[MonthDocumentMetadata, List[DailyPrayerRow]]:
    """Parse document text into metadata and one row per recognised day.

    Rows that fail to convert are skipped. Raises ScheduleParsingError when
    no row could be parsed.
    """
    metadata = parse_metadata(text)
    rows: List[DailyPrayerRow] = []
    seen = set()

    for match in ROW_PATTERN.finditer(text):
        key = f"{int(match.group(1))}-{match.group(2).lower()}"
        if key in seen:
            continue
        try:
            row = _row_from_match(match, metadata.year)
        except ValueError as e:
            start = max(0, match.start() - 20)
            logger.debug(f"Skipping unparseable row ({e}): {text[start:match.end()]!r}")
            continue
        seen.add(key)
        rows.append(row)

    if not rows:
        sample: Optional[re.Match] = DAY_MONTH_PATTERN.search(text)
        if sample:
            logger.warning(
                f"Found date markers but no complete rows, e.g. {text[sample.start():sample.start() + 120]!r}"
            )
        raise ScheduleParsingError("No prayer time rows found in document text")

    rows.sort(key=lambda r: r.date)
    logger.info(
        f"Parsed {len(rows)} prayer time rows for zone {metadata.zone} "
        f"({rows[0].date} to {rows[-1].date})"
    )
    return metadata, rows
