from datetime import timedelta

from fastapi.testclient import TestClient

from rankbeam.main import create_app
from rankbeam.services.keygen import hash_fingerprint
from rankbeam.services.licensing import LicensingService
from rankbeam.services.store import LicenseRecord
from rankbeam.utils.time import utcnow


def test_healthz(api):
    response = api.get("/healthz")

    assert response.status_code == 200
    assert response.text == "ok"


def test_issue_then_reissue_returns_same_key(api):
    payload = {"customerId": "user@example.com", "fingerprint": "FP-1"}

    first = api.post("/api/v1/licenses", json=payload)
    second = api.post("/api/v1/licenses", json=payload)

    assert first.status_code == 201
    body = first.json()
    assert body["licenseKey"]
    assert body["issuedAt"].endswith("Z")
    assert body["customerId"] == "USEREXAMPLEC"
    assert "expiresAt" in body
    assert second.status_code == 200
    assert second.json()["licenseKey"] == body["licenseKey"]


def test_validate_accepts_issuing_machine_only(api):
    key = api.post("/api/v1/licenses", json={"customerId": "user@example.com", "fingerprint": "FP-1"}).json()[
        "licenseKey"
    ]

    valid = api.post("/api/v1/licenses/validate", json={"licenseKey": key, "fingerprint": "FP-1"})
    mismatch = api.post("/api/v1/licenses/validate", json={"licenseKey": key, "fingerprint": "FP-2"})

    assert valid.status_code == 200
    assert valid.json()["status"] == "valid"
    assert valid.json()["customerId"] == "USEREXAMPLEC"
    assert mismatch.status_code == 401
    assert mismatch.json() == {"detail": "fingerprint mismatch"}


def test_validate_unknown_key(api):
    response = api.post("/api/v1/licenses/validate", json={"licenseKey": "NOPE", "fingerprint": "FP-1"})

    assert response.status_code == 401
    assert response.json() == {"detail": "license not found"}


def test_validate_expired_license(api, store):
    now = utcnow().replace(microsecond=0)
    store.insert(
        LicenseRecord(
            key="ACME-AAAA-BBBB-CCCC-22222-33333",
            fingerprint_hash=hash_fingerprint("FP-1"),
            customer_id="ACME",
            issued_at=now - timedelta(days=31),
            expires_at=now - timedelta(days=1),
        )
    )

    response = api.post(
        "/api/v1/licenses/validate",
        json={"licenseKey": "ACME-AAAA-BBBB-CCCC-22222-33333", "fingerprint": "FP-1"},
    )

    assert response.status_code == 401
    assert response.json() == {"detail": "license expired"}


def test_malformed_json_is_bad_request(api):
    response = api.post(
        "/api/v1/licenses",
        content=b"{not json",
        headers={"Content-Type": "application/json"},
    )

    assert response.status_code == 400
    assert response.json() == {"detail": "invalid JSON payload"}


def test_missing_fields_are_bad_request(api):
    assert api.post("/api/v1/licenses", json={"customerId": "acme"}).status_code == 400
    assert api.post("/api/v1/licenses", json={"customerId": "  ", "fingerprint": "FP-1"}).status_code == 400
    assert api.post("/api/v1/licenses/validate", json={"licenseKey": "", "fingerprint": "FP-1"}).status_code == 400


def test_wrong_method_lists_allowed_method(api):
    response = api.get("/api/v1/licenses")

    assert response.status_code == 405
    assert "POST" in response.headers["allow"]


def test_installer_token_guards_license_endpoints(settings_factory, service, mailer):
    settings = settings_factory(installer_token="installer-secret")
    app = create_app(settings, service=service, mailer=mailer)
    payload = {"customerId": "acme", "fingerprint": "FP-1"}

    with TestClient(app) as client:
        missing = client.post("/api/v1/licenses", json=payload)
        wrong = client.post("/api/v1/licenses", json=payload, headers={"X-Installer-Token": "nope"})
        right = client.post("/api/v1/licenses", json=payload, headers={"X-Installer-Token": "installer-secret"})
        validate = client.post(
            "/api/v1/licenses/validate",
            json={"licenseKey": right.json()["licenseKey"], "fingerprint": "FP-1"},
        )
        malformed = client.post(
            "/api/v1/licenses", content=b"{not json", headers={"Content-Type": "application/json"}
        )
        malformed_with_token = client.post(
            "/api/v1/licenses",
            content=b"{not json",
            headers={"Content-Type": "application/json", "X-Installer-Token": "installer-secret"},
        )
        health = client.get("/healthz")

    assert missing.status_code == 403
    assert missing.json() == {"detail": "forbidden"}
    assert wrong.status_code == 403
    assert right.status_code == 201
    assert validate.status_code == 403
    assert malformed.status_code == 403
    assert malformed.json() == {"detail": "forbidden"}
    assert malformed_with_token.status_code == 400
    assert health.status_code == 200


def test_issue_without_expiry_omits_expires_at(settings, store, mailer):
    app = create_app(settings, service=LicensingService(store, default_validity=None), mailer=mailer)

    with TestClient(app) as client:
        response = client.post("/api/v1/licenses", json={"customerId": "acme", "fingerprint": "FP-1"})

    assert response.status_code == 201
    assert "expiresAt" not in response.json()


def test_create_app_opens_and_closes_its_own_store(tmp_path, settings_factory):
    settings = settings_factory(db_path=str(tmp_path / "owned" / "licenses.db"))
    app = create_app(settings)

    with TestClient(app) as client:
        response = client.post("/api/v1/licenses", json={"customerId": "acme", "fingerprint": "FP-1"})

    assert response.status_code == 201
    assert (tmp_path / "owned" / "licenses.db").exists()
