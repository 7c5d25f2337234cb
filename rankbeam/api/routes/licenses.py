import logging

from fastapi import APIRouter, Depends, HTTPException, Response

from rankbeam.api.deps import get_service, require_installer_token
from rankbeam.schemas import IssueRequest, IssueResponse, ValidateRequest, ValidateResponse
from rankbeam.services.licensing import (
    FingerprintMismatch,
    InvalidRequest,
    LicenseExpired,
    LicenseNotFound,
    LicensingError,
    LicensingService,
)

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/v1/licenses",
    tags=["licenses"],
    dependencies=[Depends(require_installer_token)],
)


@router.post("", response_model=IssueResponse, response_model_exclude_none=True)
def issue_license(
    payload: IssueRequest,
    response: Response,
    service: LicensingService = Depends(get_service),
) -> IssueResponse:
    try:
        record, created = service.issue_license(payload.customer_id, payload.fingerprint)
    except InvalidRequest as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except LicensingError as exc:
        logger.error("issue license failed: %s", exc)
        raise HTTPException(status_code=500, detail="internal error") from exc

    response.status_code = 201 if created else 200
    return IssueResponse.from_record(record)


@router.post("/validate", response_model=ValidateResponse, response_model_exclude_none=True)
def validate_license(
    payload: ValidateRequest,
    service: LicensingService = Depends(get_service),
) -> ValidateResponse:
    try:
        record = service.validate_license(payload.license_key, payload.fingerprint)
    except LicenseNotFound as exc:
        raise HTTPException(status_code=401, detail="license not found") from exc
    except FingerprintMismatch as exc:
        raise HTTPException(status_code=401, detail="fingerprint mismatch") from exc
    except LicenseExpired as exc:
        raise HTTPException(status_code=401, detail="license expired") from exc
    except InvalidRequest as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except LicensingError as exc:
        logger.error("validate license failed: %s", exc)
        raise HTTPException(status_code=500, detail="internal error") from exc
    return ValidateResponse.from_record(record)
