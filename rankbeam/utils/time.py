import re
from datetime import datetime, timezone

_FRACTION = re.compile(r"(?<=:\d\d)\.(\d+)")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def format_rfc3339(value: datetime) -> str:
    return ensure_utc(value).replace(microsecond=0).isoformat().replace("+00:00", "Z")


def _pad_fraction(match: re.Match) -> str:
    return "." + (match.group(1) + "000000")[:6]


def parse_rfc3339(value: str) -> datetime:
    raw = value.strip()
    if raw[-1:] in ("Z", "z"):
        raw = raw[:-1] + "+00:00"
    # Older fromisoformat only accepts 3 or 6 fractional digits.
    raw = _FRACTION.sub(_pad_fraction, raw, count=1)
    return ensure_utc(datetime.fromisoformat(raw))
