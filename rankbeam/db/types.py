from datetime import datetime

from sqlalchemy import DateTime
from sqlalchemy.types import TypeDecorator

from rankbeam.utils.time import ensure_utc


class UTCDateTime(TypeDecorator):
    """SQLite drops tzinfo, so values are normalised to UTC on the way in and re-tagged on the way out."""

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect) -> datetime | None:
        if value is None:
            return None
        return ensure_utc(value)

    def process_result_value(self, value: datetime | None, dialect) -> datetime | None:
        if value is None:
            return None
        return ensure_utc(value)
