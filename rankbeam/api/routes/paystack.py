import logging
from datetime import timedelta

import anyio
from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from rankbeam.api.deps import get_mailer, get_service, get_settings_state
from rankbeam.config import Settings
from rankbeam.schemas import PaidLicenseResponse, WebhookIgnoredResponse
from rankbeam.services.licensing import LicensingError, LicensingService
from rankbeam.services.mailer import Mailer
from rankbeam.services.paystack import (
    SIGNATURE_HEADER,
    WebhookPayloadError,
    parse_charge_event,
    process_charge,
    verify_signature,
)
from rankbeam.utils.time import format_rfc3339

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/paystack", tags=["paystack"])


@router.post("/webhook")
async def paystack_webhook(
    request: Request,
    settings: Settings = Depends(get_settings_state),
    service: LicensingService = Depends(get_service),
    mailer: Mailer | None = Depends(get_mailer),
) -> JSONResponse:
    try:
        with anyio.fail_after(settings.read_timeout_seconds):
            body = await request.body()
    except TimeoutError as exc:
        raise HTTPException(status_code=408, detail="request body read timed out") from exc

    secret = settings.paystack_webhook_secret
    if not secret:
        raise HTTPException(status_code=503, detail="webhook secret not configured")
    if not verify_signature(secret, body, request.headers.get(SIGNATURE_HEADER)):
        logger.warning("rejected paystack webhook with invalid signature")
        raise HTTPException(status_code=403, detail="invalid signature")

    try:
        charge = parse_charge_event(body)
    except WebhookPayloadError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    if charge is None:
        return JSONResponse(status_code=200, content=WebhookIgnoredResponse().model_dump())

    validity = timedelta(days=settings.paystack_license_days)
    try:
        outcome = await run_in_threadpool(process_charge, service, mailer, charge, validity)
    except LicensingError as exc:
        logger.error("paystack reference %s could not be processed: %s", charge.reference, exc)
        raise HTTPException(status_code=500, detail="internal error") from exc

    if settings.paystack_require_delivery and not outcome.emailed:
        raise HTTPException(status_code=500, detail="license email delivery failed")

    payload = PaidLicenseResponse(
        license_key=outcome.record.key,
        expires_at=format_rfc3339(outcome.delivery.expires_at),
    )
    return JSONResponse(
        status_code=201 if outcome.created else 200,
        content=payload.model_dump(by_alias=True),
    )
