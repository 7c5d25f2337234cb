from rankbeam.schemas.licenses import (
    IssueRequest,
    IssueResponse,
    PaidLicenseResponse,
    ValidateRequest,
    ValidateResponse,
    WebhookIgnoredResponse,
)

__all__ = [
    "IssueRequest",
    "IssueResponse",
    "ValidateRequest",
    "ValidateResponse",
    "PaidLicenseResponse",
    "WebhookIgnoredResponse",
]
