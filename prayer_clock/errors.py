"""
Error types raised while acquiring and resolving prayer times.
"""


class PrayerTimesError(Exception):
    """Base class for prayer time acquisition errors."""


class NotFound(PrayerTimesError):
    """The locator could not resolve a document for the zone/month."""


class FetchError(PrayerTimesError):
    """Transport failure while downloading a page or document."""


class DocumentParsingError(PrayerTimesError):
    """The downloaded document could not be read."""


class ScheduleParsingError(PrayerTimesError):
    """No recognizable schedule rows were found in the document text."""


class NetworkError(PrayerTimesError):
    """An API-backed provider failed to return usable prayer times."""
