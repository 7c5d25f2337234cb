from datetime import datetime

from sqlalchemy import Index, String
from sqlalchemy.orm import Mapped, mapped_column

from rankbeam.db.base import Base
from rankbeam.db.types import UTCDateTime


class License(Base):
    __tablename__ = "licenses"
    __table_args__ = (Index("uq_licenses_fingerprint_hash", "fingerprint_hash", unique=True),)

    key: Mapped[str] = mapped_column(String(64), primary_key=True)
    # NULL until a webhook-issued license is first activated on a machine.
    fingerprint_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)
    customer_id: Mapped[str] = mapped_column(String(12), nullable=False)
    issued_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    expires_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
