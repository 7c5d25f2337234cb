import hashlib
import re
import secrets
import string

KEY_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
DEFAULT_CUSTOMER_ID = "CUSTOMER"
MAX_CUSTOMER_ID_LENGTH = 12
MIN_FINGERPRINT_HASH_LENGTH = 12
RANDOM_SEGMENT_LENGTH = 5

KEY_PATTERN = re.compile(
    r"^[A-Z0-9]{1,12}(-[A-Z0-9]{4}){3}(-[ABCDEFGHJKLMNPQRSTUVWXYZ23456789]{5}){2}$"
)

_CUSTOMER_ID_CHARS = frozenset(string.ascii_uppercase + string.digits)


def sanitize_customer_id(value: str) -> str:
    cleaned = "".join(ch for ch in value.upper() if ch in _CUSTOMER_ID_CHARS)
    return cleaned[:MAX_CUSTOMER_ID_LENGTH] or DEFAULT_CUSTOMER_ID


def hash_fingerprint(raw: str) -> str:
    return hashlib.sha256(raw.strip().encode("utf-8")).hexdigest().upper()


def random_segment(length: int = RANDOM_SEGMENT_LENGTH) -> str:
    if length <= 0:
        raise ValueError("segment length must be positive")
    return "".join(secrets.choice(KEY_ALPHABET) for _ in range(length))


def generate_license_key(customer_id: str, fingerprint_hash: str) -> str:
    """Compose ``CUST-FP0-FP1-FP2-RAND1-RAND2``.

    The customer prefix and fingerprint slices let an operator recognise a key at a
    glance; the two random segments make it unguessable.
    """
    customer = sanitize_customer_id(customer_id)
    if len(fingerprint_hash) < MIN_FINGERPRINT_HASH_LENGTH:
        raise ValueError(f"fingerprint hash too short ({len(fingerprint_hash)})")
    slices = [fingerprint_hash[start : start + 4] for start in (0, 4, 8)]
    return "-".join([customer, *slices, random_segment(), random_segment()])


def is_well_formed_key(key: str) -> bool:
    return KEY_PATTERN.match(key) is not None
