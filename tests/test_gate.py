from datetime import datetime, timezone

import httpx
import pytest

from rankbeam.desktop.client import InvalidLicense, LicenseClientError
from rankbeam.desktop.fingerprint import FingerprintUnavailable
from rankbeam.desktop.gate import ActivationGate, GateState
from rankbeam.desktop.storage import LicenseEnvelope, LicenseStorage

STORED_KEY = "ACME-AAAA-BBBB-CCCC-22222-33333"


def envelope_for(key: str, fingerprint: str = "FP-1") -> LicenseEnvelope:
    return LicenseEnvelope(
        license_key=key,
        customer_id="ACME",
        fingerprint=fingerprint,
        issued_at=datetime(2025, 1, 1, tzinfo=timezone.utc),
        expires_at=datetime(2026, 1, 1, tzinfo=timezone.utc),
    )


class RecordingView:
    def __init__(self):
        self.renders = []
        self.errors = []

    def render(self, state, message):
        self.renders.append((state, message))

    def show_error(self, title, message):
        self.errors.append((title, message))


class StubClient:
    def __init__(self, valid_keys=(), error=None):
        self.valid_keys = set(valid_keys)
        self.error = error
        self.calls = []
        self.closed = False

    def close(self):
        self.closed = True

    def validate_license(self, key, fingerprint, timeout=None):
        self.calls.append((key, fingerprint, timeout))
        if self.closed:
            raise LicenseClientError("request cancelled: client closed")
        if self.error is not None:
            raise self.error
        if key not in self.valid_keys:
            raise InvalidLicense("license not found")
        return envelope_for(key, fingerprint)


class DeferredRunner:
    def __init__(self):
        self.jobs = []

    def __call__(self, fn):
        self.jobs.append(fn)

    def run_all(self):
        jobs, self.jobs = self.jobs, []
        for job in jobs:
            job()


class ReadOnlyStorage(LicenseStorage):
    def save(self, envelope):
        raise PermissionError("read-only config directory")


@pytest.fixture
def storage(tmp_path):
    return LicenseStorage(config_dir=tmp_path)


def make_gate(client, storage, **kwargs):
    view = kwargs.pop("view", RecordingView())
    successes = []
    gate = ActivationGate(
        client,
        storage,
        view,
        lambda: successes.append(True),
        fingerprint_provider=kwargs.pop("fingerprint_provider", lambda: "FP-1"),
        run_in_background=kwargs.pop("run_in_background", lambda fn: fn()),
        **kwargs,
    )
    return gate, view, successes


def test_stored_key_rejected_by_server_asks_for_activation(storage):
    stored = envelope_for(STORED_KEY)
    storage.save(stored)
    gate, view, successes = make_gate(StubClient(), storage)

    gate.start()

    assert gate.state is GateState.awaiting_input
    assert "invalid or expired" in gate.message
    assert view.renders[-1] == (GateState.awaiting_input, gate.message)
    assert successes == []
    assert storage.load() == stored


def test_stored_key_accepted_launches_app(storage):
    storage.save(envelope_for(STORED_KEY))
    client = StubClient(valid_keys={STORED_KEY})
    gate, view, successes = make_gate(client, storage)

    gate.start()

    assert gate.state is GateState.success
    assert successes == [True]
    assert client.calls == [(STORED_KEY, "FP-1", 10.0)]
    assert [state for state, _ in view.renders] == [GateState.validating, GateState.success]


def test_missing_license_waits_for_input(storage):
    gate, _, successes = make_gate(StubClient(), storage)

    gate.start()

    assert gate.state is GateState.awaiting_input
    assert "not found" in gate.message
    assert not gate.can_activate("   ")
    assert gate.can_activate(f" {STORED_KEY} ")
    assert successes == []


def test_empty_stored_key_waits_for_input(storage):
    storage.directory.mkdir(parents=True)
    storage.path.write_text("   ", encoding="utf-8")
    gate, _, _ = make_gate(StubClient(), storage)

    gate.start()

    assert gate.state is GateState.awaiting_input
    assert "empty" in gate.message


def test_user_activation_persists_then_succeeds(storage):
    gate, _, successes = make_gate(StubClient(valid_keys={STORED_KEY}), storage)
    gate.start()

    accepted = gate.activate(f"  {STORED_KEY}\n")

    assert accepted is True
    assert gate.state is GateState.success
    assert successes == [True]
    assert storage.load().license_key == STORED_KEY


def test_user_activation_with_bad_key_returns_to_input(storage):
    gate, _, successes = make_gate(StubClient(), storage)
    gate.start()

    gate.activate("WRONG-KEY")

    assert gate.state is GateState.awaiting_input
    assert successes == []
    with pytest.raises(FileNotFoundError):
        storage.load()


def test_concurrent_taps_are_dropped(storage):
    runner = DeferredRunner()
    client = StubClient(valid_keys={STORED_KEY})
    gate, _, successes = make_gate(client, storage, run_in_background=runner)
    gate.start()

    assert gate.activate(STORED_KEY) is True
    assert gate.state is GateState.validating
    assert gate.can_activate(STORED_KEY) is False
    assert gate.activate(STORED_KEY) is False
    assert len(runner.jobs) == 1

    runner.run_all()

    assert len(client.calls) == 1
    assert successes == [True]


def test_blank_activation_is_ignored(storage):
    gate, _, _ = make_gate(StubClient(), storage)
    gate.start()

    assert gate.activate("   ") is False
    assert gate.state is GateState.awaiting_input


def test_persist_failure_on_activation_is_an_error(tmp_path):
    storage = ReadOnlyStorage(config_dir=tmp_path)
    gate, view, successes = make_gate(StubClient(valid_keys={STORED_KEY}), storage)
    gate.start()

    gate.activate(STORED_KEY)

    assert gate.state is GateState.error
    assert successes == []
    assert len(view.errors) == 1
    assert "insufficient permissions" in view.errors[0][1]
    assert gate.can_activate(STORED_KEY) is False


def test_persist_failure_on_boot_is_best_effort(tmp_path):
    LicenseStorage(config_dir=tmp_path).save(envelope_for(STORED_KEY))
    storage = ReadOnlyStorage(config_dir=tmp_path)
    gate, view, successes = make_gate(StubClient(valid_keys={STORED_KEY}), storage)

    gate.start()

    assert gate.state is GateState.success
    assert successes == [True]
    assert view.errors == []


def test_fingerprint_failure_is_an_error(storage):
    def broken():
        raise FingerprintUnavailable("no interfaces")

    gate, _, successes = make_gate(StubClient(), storage, fingerprint_provider=broken)

    gate.start()

    assert gate.state is GateState.error
    assert "no interfaces" in gate.message
    assert successes == []


def test_transient_failure_keeps_stored_envelope(storage):
    stored = envelope_for(STORED_KEY)
    storage.save(stored)
    timeout = LicenseClientError("request timed out")
    timeout.__cause__ = httpx.ReadTimeout("read timed out")
    gate, _, _ = make_gate(StubClient(error=timeout), storage)

    gate.start()

    assert gate.state is GateState.awaiting_input
    assert "timed out" in gate.message
    assert storage.load() == stored


def test_quit_cancels_in_flight_validation(storage):
    runner = DeferredRunner()
    quits = []
    client = StubClient(valid_keys={STORED_KEY})
    gate, view, successes = make_gate(
        client, storage, run_in_background=runner, on_quit=lambda: quits.append(True)
    )
    gate.start()
    gate.activate(STORED_KEY)
    renders_before = len(view.renders)

    gate.quit()
    runner.run_all()

    assert client.closed is True
    assert quits == [True]
    assert successes == []
    assert gate.state is GateState.validating
    assert len(view.renders) == renders_before
    with pytest.raises(FileNotFoundError):
        storage.load()


def test_completions_are_marshalled_through_post_to_ui(storage):
    posted = []
    storage.save(envelope_for(STORED_KEY))
    gate, _, successes = make_gate(StubClient(valid_keys={STORED_KEY}), storage, post_to_ui=posted.append)

    gate.start()

    assert gate.state is GateState.validating
    assert successes == []
    assert len(posted) == 1

    posted.pop()()
    posted_again = list(posted)

    assert gate.state is GateState.success
    assert successes == [True]
    assert posted_again == []


def test_success_fires_once(storage):
    posted = []
    storage.save(envelope_for(STORED_KEY))
    gate, _, successes = make_gate(StubClient(valid_keys={STORED_KEY}), storage, post_to_ui=posted.append)
    gate.start()

    completion = posted.pop()
    completion()
    completion()

    assert successes == [True]


def test_quit_while_idle_leaves_client_open(storage):
    client = StubClient()
    gate, _, _ = make_gate(client, storage)
    gate.start()

    gate.quit()

    assert gate.closed is True
    assert gate.state is GateState.awaiting_input
    assert client.closed is False
