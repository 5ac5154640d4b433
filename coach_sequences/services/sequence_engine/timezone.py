"""
Timezone handling for sequence scheduling.

This module contains functionality for:
- Sequence timezone resolution
- Conversion between stored UTC instants and sequence-local time
- Building UTC instants from a local date and time of day

Instants are stored as naive UTC datetimes; send windows and weekdays are
interpreted in the sequence's own timezone.
"""

import logging
from datetime import datetime, date, time
import pytz

logger = logging.getLogger(__name__)


def resolve_timezone(name):
    """Get a pytz timezone by IANA name, falling back to UTC."""
    if not name:
        return pytz.UTC
    try:
        return pytz.timezone(name)
    except pytz.exceptions.UnknownTimeZoneError:
        logger.warning(f"Unknown timezone '{name}', using UTC")
        return pytz.UTC


def to_local(instant: datetime, tz) -> datetime:
    """Convert a naive UTC (or aware) instant to local time in ``tz``."""
    if instant.tzinfo is None:
        instant = instant.replace(tzinfo=pytz.UTC)
    return instant.astimezone(tz)


def to_utc(instant: datetime) -> datetime:
    """Normalise an instant to a naive UTC datetime."""
    if instant.tzinfo is None:
        return instant
    return instant.astimezone(pytz.UTC).replace(tzinfo=None)


def local_instant(day: date, time_of_day: time, tz) -> datetime:
    """Get the naive UTC instant for ``day`` at ``time_of_day`` in ``tz``."""
    local = tz.localize(datetime.combine(day, time_of_day))
    return to_utc(local)


def _get_sequence_timezone(self, sequence):
    """Get the timezone for a sequence."""
    return resolve_timezone(sequence.timezone or self.default_timezone)
