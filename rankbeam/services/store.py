import logging
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from rankbeam.db.migrate import upgrade
from rankbeam.db.session import create_db_engine, create_session_factory
from rankbeam.models import License, WebhookDelivery

logger = logging.getLogger(__name__)


class StoreError(Exception):
    pass


class DuplicateLicense(StoreError):
    pass


class StaleLicense(StoreError):
    pass


@dataclass(frozen=True)
class LicenseRecord:
    key: str
    fingerprint_hash: str | None
    customer_id: str
    issued_at: datetime
    expires_at: datetime | None = None

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and not self.expires_at > now


@dataclass(frozen=True)
class DeliveryRecord:
    reference: str
    customer_email: str
    license_key: str
    paid_at: datetime
    expires_at: datetime
    created_at: datetime
    emailed_at: datetime | None = None


def _to_license_record(row: License) -> LicenseRecord:
    return LicenseRecord(
        key=row.key,
        fingerprint_hash=row.fingerprint_hash,
        customer_id=row.customer_id,
        issued_at=row.issued_at,
        expires_at=row.expires_at,
    )


def _to_delivery_record(row: WebhookDelivery) -> DeliveryRecord:
    return DeliveryRecord(
        reference=row.reference,
        customer_email=row.customer_email,
        license_key=row.license_key,
        paid_at=row.paid_at,
        expires_at=row.expires_at,
        created_at=row.created_at,
        emailed_at=row.emailed_at,
    )


class LicenseStore:
    """SQLite-backed license registry.

    Reads go straight to the connection pool. Writes are serialised through a
    single lock because SQLite allows one writer at a time; the unique index on
    ``fingerprint_hash`` remains the arbiter between concurrent issuers.
    """

    def __init__(self, engine: Engine) -> None:
        self.engine = engine
        self._sessions = create_session_factory(engine)
        self._write_lock = threading.Lock()

    @classmethod
    def open(cls, db_path: str) -> "LicenseStore":
        engine = create_db_engine(db_path)
        try:
            upgrade(engine)
        except Exception:
            engine.dispose()
            raise
        logger.info("license store ready at %s", db_path)
        return cls(engine)

    def close(self) -> None:
        self.engine.dispose()

    @contextmanager
    def _session(self) -> Iterator[Session]:
        db = self._sessions()
        try:
            yield db
        finally:
            db.close()

    def find_by_fingerprint(self, fingerprint_hash: str) -> LicenseRecord | None:
        with self._session() as db:
            row = db.query(License).filter(License.fingerprint_hash == fingerprint_hash).first()
            return _to_license_record(row) if row else None

    def find_by_key(self, key: str) -> LicenseRecord | None:
        with self._session() as db:
            row = db.get(License, key)
            return _to_license_record(row) if row else None

    def list_licenses(self) -> list[LicenseRecord]:
        with self._session() as db:
            rows = db.query(License).order_by(License.issued_at.asc(), License.key.asc()).all()
            return [_to_license_record(row) for row in rows]

    def insert(self, record: LicenseRecord) -> None:
        with self._write_lock, self._session() as db:
            db.add(
                License(
                    key=record.key,
                    fingerprint_hash=record.fingerprint_hash,
                    customer_id=record.customer_id,
                    issued_at=record.issued_at,
                    expires_at=record.expires_at,
                )
            )
            try:
                db.commit()
            except IntegrityError as exc:
                db.rollback()
                raise DuplicateLicense(f"license {record.key} conflicts with an existing record") from exc

    def update(
        self,
        fingerprint_hash: str,
        expected_key: str,
        *,
        key: str,
        customer_id: str,
        issued_at: datetime,
        expires_at: datetime | None,
    ) -> LicenseRecord:
        """Rewrite the license bound to ``fingerprint_hash`` in place.

        ``expected_key`` guards against a concurrent replacement: if the row no
        longer carries it, nothing is written and ``StaleLicense`` is raised.
        """
        with self._write_lock, self._session() as db:
            result = db.execute(
                update(License)
                .where(License.fingerprint_hash == fingerprint_hash, License.key == expected_key)
                .values(key=key, customer_id=customer_id, issued_at=issued_at, expires_at=expires_at)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                db.rollback()
                raise StaleLicense(f"license {expected_key} changed before it could be replaced")
            try:
                db.commit()
            except IntegrityError as exc:
                db.rollback()
                raise DuplicateLicense(f"license {key} conflicts with an existing record") from exc
        return LicenseRecord(
            key=key,
            fingerprint_hash=fingerprint_hash,
            customer_id=customer_id,
            issued_at=issued_at,
            expires_at=expires_at,
        )

    def bind_fingerprint(
        self, key: str, fingerprint_hash: str, release_key: str | None = None
    ) -> LicenseRecord:
        with self._write_lock, self._session() as db:
            if release_key is not None:
                db.execute(
                    update(License)
                    .where(License.key == release_key, License.fingerprint_hash == fingerprint_hash)
                    .values(fingerprint_hash=None)
                    .execution_options(synchronize_session=False)
                )
            result = db.execute(
                update(License)
                .where(License.key == key, License.fingerprint_hash.is_(None))
                .values(fingerprint_hash=fingerprint_hash)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                db.rollback()
                raise StaleLicense(f"license {key} was bound before this activation")
            try:
                db.commit()
            except IntegrityError as exc:
                db.rollback()
                raise DuplicateLicense("fingerprint already bound to another license") from exc
            row = db.get(License, key)
            return _to_license_record(row)

    def find_delivery(self, reference: str) -> DeliveryRecord | None:
        with self._session() as db:
            row = db.get(WebhookDelivery, reference)
            return _to_delivery_record(row) if row else None

    def insert_with_delivery(self, record: LicenseRecord, delivery: DeliveryRecord) -> None:
        with self._write_lock, self._session() as db:
            db.add(
                License(
                    key=record.key,
                    fingerprint_hash=record.fingerprint_hash,
                    customer_id=record.customer_id,
                    issued_at=record.issued_at,
                    expires_at=record.expires_at,
                )
            )
            db.add(
                WebhookDelivery(
                    reference=delivery.reference,
                    customer_email=delivery.customer_email,
                    license_key=delivery.license_key,
                    paid_at=delivery.paid_at,
                    expires_at=delivery.expires_at,
                    created_at=delivery.created_at,
                    emailed_at=delivery.emailed_at,
                )
            )
            try:
                db.commit()
            except IntegrityError as exc:
                db.rollback()
                raise DuplicateLicense(f"delivery {delivery.reference} was already processed") from exc

    def mark_delivery_emailed(self, reference: str, emailed_at: datetime) -> None:
        with self._write_lock, self._session() as db:
            db.execute(
                update(WebhookDelivery)
                .where(WebhookDelivery.reference == reference)
                .values(emailed_at=emailed_at)
                .execution_options(synchronize_session=False)
            )
            db.commit()
