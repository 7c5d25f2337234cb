from pydantic import BaseModel, ConfigDict, Field

from rankbeam.services.store import LicenseRecord
from rankbeam.utils.time import format_rfc3339


class CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class IssueRequest(CamelModel):
    customer_id: str = Field(..., alias="customerId", max_length=256)
    fingerprint: str = Field(..., max_length=512)


class IssueResponse(CamelModel):
    license_key: str = Field(..., alias="licenseKey")
    issued_at: str = Field(..., alias="issuedAt")
    expires_at: str | None = Field(default=None, alias="expiresAt")
    customer_id: str = Field(..., alias="customerId")

    @classmethod
    def from_record(cls, record: LicenseRecord) -> "IssueResponse":
        return cls(
            license_key=record.key,
            issued_at=format_rfc3339(record.issued_at),
            expires_at=format_rfc3339(record.expires_at) if record.expires_at else None,
            customer_id=record.customer_id,
        )


class ValidateRequest(CamelModel):
    license_key: str = Field(..., alias="licenseKey", max_length=256)
    fingerprint: str = Field(..., max_length=512)


class ValidateResponse(CamelModel):
    status: str = "valid"
    issued_at: str = Field(..., alias="issuedAt")
    expires_at: str | None = Field(default=None, alias="expiresAt")
    customer_id: str = Field(..., alias="customerId")

    @classmethod
    def from_record(cls, record: LicenseRecord) -> "ValidateResponse":
        return cls(
            issued_at=format_rfc3339(record.issued_at),
            expires_at=format_rfc3339(record.expires_at) if record.expires_at else None,
            customer_id=record.customer_id,
        )


class PaidLicenseResponse(CamelModel):
    license_key: str = Field(..., alias="licenseKey")
    expires_at: str = Field(..., alias="expiresAt")


class WebhookIgnoredResponse(BaseModel):
    status: str = "ignored"
