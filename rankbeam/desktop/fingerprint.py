import getpass
import hashlib
import platform
import socket
import uuid


class FingerprintUnavailable(RuntimeError):
    pass


def _mac_address() -> str | None:
    node = uuid.getnode()
    # getnode() falls back to a random number with the multicast bit set.
    if (node >> 40) & 1:
        return None
    return ":".join(f"{(node >> shift) & 0xFF:02X}" for shift in range(40, -1, -8))


def fingerprint_components() -> list[str]:
    parts = [platform.system().lower(), platform.machine().lower()]

    host = socket.gethostname()
    if host:
        parts.append(host.upper())

    try:
        user = getpass.getuser()
    except (KeyError, OSError):
        user = ""
    if user:
        parts.append(user.upper())

    mac = _mac_address()
    if mac:
        parts.append(mac)
    return parts


def fingerprint_from_parts(parts: list[str]) -> str:
    return hashlib.sha256("|".join(parts).encode("utf-8")).hexdigest().upper()


def machine_fingerprint() -> str:
    """Stable identifier for this machine; raw component values are never exposed."""
    parts = [part for part in fingerprint_components() if part]
    if not parts:
        raise FingerprintUnavailable("unable to derive fingerprint components")
    return fingerprint_from_parts(parts)
