import hmac
import logging
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timedelta

from sqlalchemy.exc import SQLAlchemyError

from rankbeam.services.keygen import (
    generate_license_key,
    hash_fingerprint,
    is_well_formed_key,
    sanitize_customer_id,
)
from rankbeam.services.store import (
    DeliveryRecord,
    DuplicateLicense,
    LicenseRecord,
    LicenseStore,
    StaleLicense,
)
from rankbeam.utils.time import ensure_utc, utcnow

logger = logging.getLogger(__name__)

MAX_ISSUE_ATTEMPTS = 3
PAYSTACK_FINGERPRINT_PREFIX = "paystack:"


class LicensingError(Exception):
    pass


class InvalidRequest(LicensingError):
    pass


class LicenseNotFound(LicensingError):
    pass


class FingerprintMismatch(LicensingError):
    pass


class LicenseExpired(LicensingError):
    pass


@contextmanager
def _storage_errors(action: str) -> Iterator[None]:
    try:
        yield
    except SQLAlchemyError as exc:
        raise LicensingError(f"{action}: {exc}") from exc


def _now(now: datetime | None) -> datetime:
    return ensure_utc(now) if now is not None else utcnow()


class LicensingService:
    def __init__(self, store: LicenseStore, default_validity: timedelta | None = None) -> None:
        self.store = store
        self.default_validity = default_validity

    def expiry_for(self, issued_at: datetime) -> datetime | None:
        if not self.default_validity or self.default_validity <= timedelta(0):
            return None
        return issued_at + self.default_validity

    def issue_license(
        self, customer_id: str, fingerprint: str, now: datetime | None = None
    ) -> tuple[LicenseRecord, bool]:
        """Return the license bound to ``fingerprint``, minting one if needed.

        The second element is ``True`` when a key was created or an expired one
        was replaced. Losing a race against another issuer for the same
        fingerprint yields the winner's record.
        """
        customer_id = (customer_id or "").strip()
        fingerprint = (fingerprint or "").strip()
        if not customer_id or not fingerprint:
            raise InvalidRequest("customerId and fingerprint are required")

        fingerprint_hash = hash_fingerprint(fingerprint)
        customer = sanitize_customer_id(customer_id)
        issued_at = _now(now).replace(microsecond=0)

        for attempt in range(1, MAX_ISSUE_ATTEMPTS + 1):
            with _storage_errors("lookup license"):
                existing = self.store.find_by_fingerprint(fingerprint_hash)
            if existing is not None and not existing.is_expired(issued_at):
                return existing, False

            key = generate_license_key(customer, fingerprint_hash)
            expires_at = self.expiry_for(issued_at)
            try:
                with _storage_errors("store license"):
                    if existing is None:
                        record = LicenseRecord(
                            key=key,
                            fingerprint_hash=fingerprint_hash,
                            customer_id=customer,
                            issued_at=issued_at,
                            expires_at=expires_at,
                        )
                        self.store.insert(record)
                    else:
                        record = self.store.update(
                            fingerprint_hash,
                            existing.key,
                            key=key,
                            customer_id=customer,
                            issued_at=issued_at,
                            expires_at=expires_at,
                        )
            except (DuplicateLicense, StaleLicense) as exc:
                logger.info("license issue attempt %d lost a race: %s", attempt, exc)
                continue

            if existing is None:
                logger.info("issued license %s for customer %s", record.key, customer)
            else:
                logger.info("replaced expired license %s with %s", existing.key, record.key)
            return record, True

        raise LicensingError(f"could not issue license after {MAX_ISSUE_ATTEMPTS} attempts")

    def validate_license(
        self, key: str, fingerprint: str, now: datetime | None = None
    ) -> LicenseRecord:
        key = (key or "").strip().upper()
        fingerprint = (fingerprint or "").strip()
        if not key or not fingerprint:
            raise InvalidRequest("licenseKey and fingerprint are required")
        if not is_well_formed_key(key):
            raise LicenseNotFound("license not found")

        fingerprint_hash = hash_fingerprint(fingerprint)
        now = _now(now)

        for _ in range(MAX_ISSUE_ATTEMPTS):
            with _storage_errors("lookup license"):
                record = self.store.find_by_key(key)
            if record is None:
                raise LicenseNotFound("license not found")

            if record.fingerprint_hash is None:
                record = self._bind(record, fingerprint_hash, now)
                if record is None:
                    continue

            if not hmac.compare_digest(record.fingerprint_hash, fingerprint_hash):
                raise FingerprintMismatch("fingerprint mismatch")
            if record.is_expired(now):
                raise LicenseExpired("license expired")
            return record

        raise LicensingError(f"could not validate license {key}")

    def _bind(self, record: LicenseRecord, fingerprint_hash: str, now: datetime) -> LicenseRecord | None:
        # Paid licenses carry no fingerprint until the first machine activates them.
        if record.is_expired(now):
            raise LicenseExpired("license expired")

        with _storage_errors("lookup license"):
            holder = self.store.find_by_fingerprint(fingerprint_hash)
        if holder is not None and not holder.is_expired(now):
            raise FingerprintMismatch("fingerprint mismatch")

        release_key = holder.key if holder is not None else None
        try:
            with _storage_errors("bind license"):
                bound = self.store.bind_fingerprint(record.key, fingerprint_hash, release_key=release_key)
        except (DuplicateLicense, StaleLicense) as exc:
            logger.info("binding license %s lost a race: %s", record.key, exc)
            return None
        logger.info("bound license %s to its first machine", bound.key)
        return bound

    def issue_paid_license(
        self,
        email: str,
        reference: str,
        paid_at: datetime,
        expires_at: datetime,
        now: datetime | None = None,
    ) -> tuple[LicenseRecord, DeliveryRecord, bool]:
        email = (email or "").strip().lower()
        reference = (reference or "").strip()
        if not email or not reference:
            raise InvalidRequest("customer email and reference are required")

        issued_at = _now(now).replace(microsecond=0)
        customer = sanitize_customer_id(email)
        slice_source = hash_fingerprint(PAYSTACK_FINGERPRINT_PREFIX + reference)

        for _ in range(MAX_ISSUE_ATTEMPTS):
            with _storage_errors("lookup delivery"):
                delivery = self.store.find_delivery(reference)
                record = self.store.find_by_key(delivery.license_key) if delivery else None
            if delivery is not None:
                if record is None:
                    raise LicensingError(f"delivery {reference} points at a missing license")
                return record, delivery, False

            key = generate_license_key(customer, slice_source)
            record = LicenseRecord(
                key=key,
                fingerprint_hash=None,
                customer_id=customer,
                issued_at=issued_at,
                expires_at=ensure_utc(expires_at),
            )
            delivery = DeliveryRecord(
                reference=reference,
                customer_email=email,
                license_key=key,
                paid_at=ensure_utc(paid_at),
                expires_at=ensure_utc(expires_at),
                created_at=issued_at,
            )
            try:
                with _storage_errors("store paid license"):
                    self.store.insert_with_delivery(record, delivery)
            except DuplicateLicense as exc:
                logger.info("paid license for %s lost a race: %s", reference, exc)
                continue
            logger.info("issued paid license %s for reference %s", key, reference)
            return record, delivery, True

        raise LicensingError(f"could not issue paid license for {reference}")

    def mark_emailed(self, reference: str, now: datetime | None = None) -> None:
        with _storage_errors("mark delivery emailed"):
            self.store.mark_delivery_emailed(reference, _now(now))
