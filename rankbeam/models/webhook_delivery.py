from datetime import datetime

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column

from rankbeam.db.base import Base
from rankbeam.db.types import UTCDateTime


class WebhookDelivery(Base):
    __tablename__ = "processed_webhooks"

    reference: Mapped[str] = mapped_column(String(128), primary_key=True)
    customer_email: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    license_key: Mapped[str] = mapped_column(String(64), nullable=False)
    paid_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    emailed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
