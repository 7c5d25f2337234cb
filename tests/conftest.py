from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from rankbeam.config import Settings
from rankbeam.main import create_app
from rankbeam.services.licensing import LicensingService
from rankbeam.services.mailer import MailerError
from rankbeam.services.store import LicenseStore

WEBHOOK_SECRET = "whsec_test_secret"


class FakeMailer:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.sent = []

    def send_license_email(self, to, license_key, expires_at):
        if self.fail:
            raise MailerError("smtp unavailable")
        self.sent.append((to, license_key, expires_at))


def make_settings(tmp_path, **overrides) -> Settings:
    values = {
        "db_path": str(tmp_path / "licenses.db"),
        "installer_token": None,
        "paystack_webhook_secret": WEBHOOK_SECRET,
        "smtp_host": None,
        "smtp_from": None,
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest.fixture
def store(tmp_path):
    store = LicenseStore.open(str(tmp_path / "licenses.db"))
    yield store
    store.close()


@pytest.fixture
def service(store):
    return LicensingService(store, default_validity=timedelta(days=365))


@pytest.fixture
def mailer():
    return FakeMailer()


@pytest.fixture
def settings_factory(tmp_path):
    return lambda **overrides: make_settings(tmp_path, **overrides)


@pytest.fixture
def settings(settings_factory):
    return settings_factory()


@pytest.fixture
def api(settings, service, mailer):
    app = create_app(settings, service=service, mailer=mailer)
    with TestClient(app) as client:
        yield client


@pytest.fixture
def mailer_factory():
    return FakeMailer
