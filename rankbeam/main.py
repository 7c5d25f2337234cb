import logging
import time
from contextlib import asynccontextmanager
from datetime import timedelta

import anyio
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, PlainTextResponse

from rankbeam.api.deps import INSTALLER_TOKEN_HEADER, installer_token_valid
from rankbeam.api.routes import licenses_router, paystack_router
from rankbeam.config import Settings, get_settings
from rankbeam.services.licensing import LicensingService
from rankbeam.services.mailer import Mailer, build_mailer
from rankbeam.services.store import LicenseStore

logger = logging.getLogger(__name__)


def build_service(settings: Settings, store: LicenseStore) -> LicensingService:
    validity = timedelta(days=settings.license_expiry_days) if settings.license_expiry_days > 0 else None
    return LicensingService(store, default_validity=validity)


def create_app(
    settings: Settings | None = None,
    service: LicensingService | None = None,
    mailer: Mailer | None = None,
) -> FastAPI:
    settings = settings or get_settings()
    owned_store: LicenseStore | None = None
    if service is None:
        owned_store = LicenseStore.open(settings.db_path)
        service = build_service(settings, owned_store)
    if mailer is None:
        mailer = build_mailer(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        if owned_store is not None:
            owned_store.close()
            logger.info("license store closed")

    app = FastAPI(title=settings.app_name, lifespan=lifespan)
    app.state.settings = settings
    app.state.service = service
    app.state.mailer = mailer

    @app.middleware("http")
    async def access_log(request: Request, call_next):
        started = time.perf_counter()
        try:
            # The token is checked before the route parses the body.
            if request.url.path.startswith(licenses_router.prefix) and not installer_token_valid(
                request.app.state.settings.installer_token, request.headers.get(INSTALLER_TOKEN_HEADER)
            ):
                response = JSONResponse(status_code=403, content={"detail": "forbidden"})
            else:
                with anyio.fail_after(settings.write_timeout_seconds):
                    response = await call_next(request)
        except TimeoutError:
            logger.warning("%s %s exceeded the write deadline", request.method, request.url.path)
            response = JSONResponse(status_code=503, content={"detail": "request timed out"})
        elapsed = time.perf_counter() - started
        logger.info("%s %s -> %d (%.1fms)", request.method, request.url.path, response.status_code, elapsed * 1000)
        return response

    @app.exception_handler(RequestValidationError)
    async def invalid_payload(request: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(status_code=400, content={"detail": "invalid JSON payload"})

    app.include_router(licenses_router)
    app.include_router(paystack_router)

    @app.get("/healthz", response_class=PlainTextResponse)
    def healthz() -> str:
        return "ok"

    return app
