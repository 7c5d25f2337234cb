import hashlib
import hmac
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from pydantic import BaseModel, ConfigDict, ValidationError

from rankbeam.services.licensing import LicensingService
from rankbeam.services.mailer import Mailer, MailerError
from rankbeam.services.store import DeliveryRecord, LicenseRecord
from rankbeam.utils.time import parse_rfc3339, utcnow

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "x-paystack-signature"
CHARGE_SUCCESS = "charge.success"


class WebhookPayloadError(ValueError):
    pass


class PaystackCustomer(BaseModel):
    model_config = ConfigDict(extra="ignore")

    email: str | None = None


class PaystackCharge(BaseModel):
    model_config = ConfigDict(extra="ignore")

    reference: str | None = None
    paid_at: Any = None
    customer: PaystackCustomer | None = None


class PaystackEvent(BaseModel):
    model_config = ConfigDict(extra="ignore")

    event: str = ""
    data: Any = None


@dataclass(frozen=True)
class ChargeSuccess:
    reference: str
    email: str
    paid_at: datetime


@dataclass(frozen=True)
class WebhookOutcome:
    record: LicenseRecord
    delivery: DeliveryRecord
    created: bool
    emailed: bool


def compute_signature(secret: str, body: bytes) -> str:
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha512).hexdigest()


def verify_signature(secret: str, body: bytes, signature: str | None) -> bool:
    if not secret or not signature:
        return False
    expected = compute_signature(secret, body)
    return hmac.compare_digest(expected.encode("utf-8"), signature.strip().encode("utf-8"))


def parse_charge_event(body: bytes, now: datetime | None = None) -> ChargeSuccess | None:
    """Decode a verified webhook body.

    Returns ``None`` for events other than ``charge.success``. A successful
    charge without a reference or payer email raises ``WebhookPayloadError``.
    """
    try:
        event = PaystackEvent.model_validate_json(body)
    except ValidationError as exc:
        raise WebhookPayloadError("invalid JSON payload") from exc
    if event.event != CHARGE_SUCCESS:
        return None

    try:
        charge = PaystackCharge.model_validate(event.data or {})
    except ValidationError as exc:
        raise WebhookPayloadError("invalid charge payload") from exc

    reference = (charge.reference or "").strip()
    email = ((charge.customer.email if charge.customer else None) or "").strip().lower()
    if not reference or not email:
        raise WebhookPayloadError("missing customer email or reference")

    paid_at = now or utcnow()
    if isinstance(charge.paid_at, str) and charge.paid_at.strip():
        try:
            paid_at = parse_rfc3339(charge.paid_at)
        except ValueError:
            logger.warning("paystack reference %s has unparseable paid_at %r", reference, charge.paid_at)
    elif charge.paid_at not in (None, ""):
        logger.warning("paystack reference %s has non-string paid_at %r", reference, charge.paid_at)
    return ChargeSuccess(reference=reference, email=email, paid_at=paid_at)


def deliver_license_email(
    service: LicensingService,
    mailer: Mailer | None,
    record: LicenseRecord,
    delivery: DeliveryRecord,
) -> bool:
    if delivery.emailed_at is not None:
        return True
    if mailer is None:
        logger.warning("no mailer configured; license %s for %s was not emailed", record.key, delivery.reference)
        return False
    try:
        mailer.send_license_email(delivery.customer_email, record.key, delivery.expires_at)
    except MailerError as exc:
        logger.error("license email for %s failed: %s", delivery.reference, exc)
        return False
    service.mark_emailed(delivery.reference)
    return True


def process_charge(
    service: LicensingService,
    mailer: Mailer | None,
    charge: ChargeSuccess,
    validity: timedelta,
) -> WebhookOutcome:
    expires_at = charge.paid_at + validity
    record, delivery, created = service.issue_paid_license(
        charge.email, charge.reference, charge.paid_at, expires_at
    )
    emailed = deliver_license_email(service, mailer, record, delivery)
    return WebhookOutcome(record=record, delivery=delivery, created=created, emailed=emailed)
