import hmac

from fastapi import Header, HTTPException, Request

from rankbeam.config import Settings
from rankbeam.services.licensing import LicensingService
from rankbeam.services.mailer import Mailer

INSTALLER_TOKEN_HEADER = "x-installer-token"


def get_settings_state(request: Request) -> Settings:
    return request.app.state.settings


def get_service(request: Request) -> LicensingService:
    return request.app.state.service


def get_mailer(request: Request) -> Mailer | None:
    return request.app.state.mailer


def installer_token_valid(expected: str | None, provided: str | None) -> bool:
    if not expected:
        return True
    if not provided:
        return False
    return hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8"))


def require_installer_token(
    request: Request, x_installer_token: str | None = Header(default=None)
) -> None:
    if not installer_token_valid(get_settings_state(request).installer_token, x_installer_token):
        raise HTTPException(status_code=403, detail="forbidden")
