import pytest

from rankbeam.desktop import fingerprint
from rankbeam.desktop.fingerprint import FingerprintUnavailable, fingerprint_from_parts, machine_fingerprint


def test_fingerprint_is_stable_uppercase_hex():
    first = machine_fingerprint()

    assert first == machine_fingerprint()
    assert len(first) == 64
    assert first == first.upper()
    int(first, 16)


def test_fingerprint_from_parts_depends_on_every_part():
    base = fingerprint_from_parts(["linux", "x86_64", "HOST"])

    assert base == fingerprint_from_parts(["linux", "x86_64", "HOST"])
    assert base != fingerprint_from_parts(["linux", "x86_64", "OTHER"])


def test_fingerprint_hides_raw_components(monkeypatch):
    monkeypatch.setattr(fingerprint.socket, "gethostname", lambda: "secret-host")

    assert "SECRET-HOST" in fingerprint.fingerprint_components()
    assert "SECRET" not in machine_fingerprint()


def test_random_node_is_not_used_as_mac(monkeypatch):
    monkeypatch.setattr(fingerprint.uuid, "getnode", lambda: (1 << 40) | 0x1234)

    assert fingerprint._mac_address() is None


def test_hardware_mac_is_formatted(monkeypatch):
    monkeypatch.setattr(fingerprint.uuid, "getnode", lambda: 0x001A2B3C4D5E)

    assert fingerprint._mac_address() == "00:1A:2B:3C:4D:5E"


def test_no_components_is_unavailable(monkeypatch):
    monkeypatch.setattr(fingerprint, "fingerprint_components", lambda: [])

    with pytest.raises(FingerprintUnavailable):
        machine_fingerprint()
