import os
import sys
import tempfile
from datetime import datetime, timezone
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator

from rankbeam.utils.time import ensure_utc

DEFAULT_APP_ID = "rankbeam"
LICENSE_FILE_NAME = "license.json"
LEGACY_LICENSE_FILE_NAME = "license.key"


class EmptyLicenseKey(ValueError):
    pass


class LicenseEnvelope(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    license_key: str = Field(..., alias="licenseKey")
    customer_id: str = Field(default="", alias="customerId")
    fingerprint: str = ""
    issued_at: datetime = Field(..., alias="issuedAt")
    expires_at: datetime | None = Field(default=None, alias="expiresAt")

    @field_validator("license_key", mode="before")
    @classmethod
    def normalise_key(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip().upper()
        return value

    @field_validator("customer_id", "fingerprint", mode="before")
    @classmethod
    def strip_text(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip()
        return value

    @field_validator("issued_at", "expires_at")
    @classmethod
    def to_utc(cls, value: datetime | None) -> datetime | None:
        return ensure_utc(value) if value is not None else None

    @field_serializer("issued_at", "expires_at")
    def serialize_timestamp(self, value: datetime | None) -> str | None:
        if value is None:
            return None
        return ensure_utc(value).isoformat().replace("+00:00", "Z")


def user_config_dir() -> Path:
    if sys.platform.startswith("win"):
        appdata = os.environ.get("APPDATA")
        if appdata:
            return Path(appdata)
        return Path.home() / "AppData" / "Roaming"
    if sys.platform == "darwin":
        return Path.home() / "Library" / "Application Support"
    xdg = os.environ.get("XDG_CONFIG_HOME")
    if xdg:
        return Path(xdg)
    return Path.home() / ".config"


class LicenseStorage:
    """Per-user license file.

    ``license.json`` holds the full envelope. Older installs wrote the bare key
    to ``license.key``; that file is still read when no envelope exists.
    """

    def __init__(self, app_id: str = DEFAULT_APP_ID, config_dir: Path | str | None = None) -> None:
        base = Path(config_dir) if config_dir is not None else user_config_dir()
        self.directory = base / app_id
        self.path = self.directory / LICENSE_FILE_NAME
        self.legacy_path = self.directory / LEGACY_LICENSE_FILE_NAME

    def load(self) -> LicenseEnvelope:
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return self._load_legacy()

        text = raw.strip()
        if not text:
            raise EmptyLicenseKey(f"{self.path} is empty")
        if not text.startswith("{"):
            return self._bare_key(text, self.path)

        envelope = LicenseEnvelope.model_validate_json(text)
        if not envelope.license_key:
            raise EmptyLicenseKey(f"{self.path} holds no license key")
        return envelope

    def _load_legacy(self) -> LicenseEnvelope:
        raw = self.legacy_path.read_text(encoding="utf-8")
        text = raw.strip()
        if not text:
            raise EmptyLicenseKey(f"{self.legacy_path} is empty")
        return self._bare_key(text, self.legacy_path)

    @staticmethod
    def _bare_key(key: str, path: Path) -> LicenseEnvelope:
        modified = datetime.fromtimestamp(path.stat().st_mtime, tz=timezone.utc)
        return LicenseEnvelope(license_key=key, issued_at=modified)

    def save(self, envelope: LicenseEnvelope) -> Path:
        if not envelope.license_key:
            raise EmptyLicenseKey("refusing to store an empty license key")
        self.directory.mkdir(mode=0o700, parents=True, exist_ok=True)
        payload = envelope.model_dump_json(by_alias=True, exclude_none=True, indent=2) + "\n"

        fd, tmp_name = tempfile.mkstemp(prefix=".license-", suffix=".tmp", dir=self.directory)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(payload)
                handle.flush()
                os.fsync(handle.fileno())
            os.chmod(tmp_name, 0o600)
            os.replace(tmp_name, self.path)
        except BaseException:
            try:
                os.unlink(tmp_name)
            except FileNotFoundError:
                pass
            raise
        return self.path
