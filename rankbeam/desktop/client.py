import logging
import os
from typing import Any

import httpx

from rankbeam.desktop.storage import LicenseEnvelope
from rankbeam.utils.time import parse_rfc3339

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 15.0
MAX_ERROR_BODY_BYTES = 4096
ISSUE_PATH = "/api/v1/licenses"
VALIDATE_PATH = "/api/v1/licenses/validate"


class LicenseClientError(Exception):
    pass


class MissingBaseURL(LicenseClientError):
    pass


class UnauthorizedToken(LicenseClientError):
    pass


class InvalidLicense(LicenseClientError):
    pass


class ServerError(LicenseClientError):
    def __init__(self, status_code: int, body: str) -> None:
        self.status_code = status_code
        self.body = body
        super().__init__(f"license server returned {status_code}: {body}")


def _truncated_body(response: httpx.Response) -> str:
    return response.content[:MAX_ERROR_BODY_BYTES].decode("utf-8", errors="replace").strip()


class LicenseClient:
    """HTTP access to the license server for the desktop app."""

    def __init__(
        self,
        base_url: str,
        token: str | None = None,
        http_client: httpx.Client | None = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        base_url = (base_url or "").strip()
        if not base_url:
            raise MissingBaseURL("license server base URL is not configured")
        if not base_url.startswith(("http://", "https://")):
            raise LicenseClientError(f"base URL must include an http(s) scheme, got {base_url!r}")

        self.base_url = base_url.rstrip("/")
        self.token = token or None
        self._owns_http = http_client is None
        self._closed = False
        self.http = http_client or httpx.Client(timeout=httpx.Timeout(timeout))

    @classmethod
    def from_env(cls, http_client: httpx.Client | None = None) -> "LicenseClient":
        return cls(
            os.environ.get("LICENSE_API_URL", ""),
            token=os.environ.get("LICENSE_API_TOKEN"),
            http_client=http_client,
        )

    def close(self) -> None:
        self._closed = True
        if self._owns_http:
            self.http.close()

    def __enter__(self) -> "LicenseClient":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def url_for(self, path: str) -> httpx.URL:
        return httpx.URL(self.base_url).join(path)

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json", "Content-Type": "application/json"}
        if self.token:
            headers["X-Installer-Token"] = self.token
        return headers

    def _post(self, path: str, payload: dict[str, Any], timeout: float | None = None) -> httpx.Response:
        url = self.url_for(path)
        kwargs: dict[str, Any] = {"json": payload, "headers": self._headers()}
        if timeout is not None:
            kwargs["timeout"] = httpx.Timeout(timeout)
        if self._closed:
            raise LicenseClientError(f"request to {url} cancelled: client closed")
        try:
            return self.http.post(url, **kwargs)
        except httpx.HTTPError as exc:
            logger.error("license server request to %s failed: %s", url, exc)
            raise LicenseClientError(f"request to {url} failed: {exc}") from exc
        except RuntimeError as exc:
            # httpx refuses to send once the client was closed mid-request.
            if not self._closed:
                raise
            raise LicenseClientError(f"request to {url} cancelled: client closed") from exc

    @staticmethod
    def _json(response: httpx.Response) -> dict[str, Any]:
        try:
            data = response.json()
        except ValueError as exc:
            raise LicenseClientError("license server returned malformed JSON") from exc
        if not isinstance(data, dict):
            raise LicenseClientError("license server returned an unexpected payload")
        return data

    def request_license(self, customer_id: str, fingerprint: str) -> str:
        response = self._post(ISSUE_PATH, {"customerId": customer_id, "fingerprint": fingerprint})
        if response.status_code in (200, 201):
            key = str(self._json(response).get("licenseKey") or "").strip()
            if not key:
                raise LicenseClientError("license server response did not include a license key")
            return key
        if response.status_code == 403:
            raise UnauthorizedToken("installer token rejected")
        raise ServerError(response.status_code, _truncated_body(response))

    def validate_license(
        self, license_key: str, fingerprint: str, timeout: float | None = None
    ) -> LicenseEnvelope:
        key = license_key.strip().upper()
        response = self._post(
            VALIDATE_PATH, {"licenseKey": key, "fingerprint": fingerprint}, timeout=timeout
        )
        if response.status_code == 401:
            raise InvalidLicense(_truncated_body(response) or "license rejected")
        if response.status_code == 403:
            raise UnauthorizedToken("installer token rejected")
        if response.status_code != 200:
            raise ServerError(response.status_code, _truncated_body(response))

        data = self._json(response)
        if data.get("status") != "valid":
            raise InvalidLicense(f"unexpected license status {data.get('status')!r}")
        try:
            issued_at = parse_rfc3339(str(data["issuedAt"]))
            expires_raw = data.get("expiresAt")
            expires_at = parse_rfc3339(str(expires_raw)) if expires_raw else None
        except (KeyError, ValueError) as exc:
            raise LicenseClientError("license server returned malformed timestamps") from exc

        return LicenseEnvelope(
            license_key=key,
            customer_id=str(data.get("customerId") or ""),
            fingerprint=fingerprint.strip(),
            issued_at=issued_at,
            expires_at=expires_at,
        )
