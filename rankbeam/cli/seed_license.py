import argparse
import logging
import os
import sys
from pathlib import Path

from rankbeam.desktop.client import LicenseClient, LicenseClientError
from rankbeam.desktop.fingerprint import FingerprintUnavailable, machine_fingerprint
from rankbeam.desktop.storage import DEFAULT_APP_ID, LicenseEnvelope, LicenseStorage

logger = logging.getLogger(__name__)


def seed_license(
    client: LicenseClient, storage: LicenseStorage, customer_id: str, fingerprint: str
) -> LicenseEnvelope:
    key = client.request_license(customer_id, fingerprint)
    envelope = client.validate_license(key, fingerprint)
    storage.save(envelope)
    return envelope


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Request and store a license for this machine")
    parser.add_argument("--api-base", default=os.environ.get("LICENSE_API_URL", ""), help="license server base URL")
    parser.add_argument("--customer", required=True, help="customer identifier (email or order number)")
    parser.add_argument("--token", default=os.environ.get("LICENSE_API_TOKEN"), help="installer token")
    parser.add_argument("--app-id", default=DEFAULT_APP_ID, help="application identifier used for storage")
    parser.add_argument("--output", default=None, help="also write the license key to this file")
    args = parser.parse_args(argv)
    logging.basicConfig(level=logging.INFO)

    if not args.customer.strip():
        print("customer identifier is required", file=sys.stderr)
        return 2

    try:
        fingerprint = machine_fingerprint()
    except (FingerprintUnavailable, OSError) as exc:
        print(f"failed to read machine fingerprint: {exc}", file=sys.stderr)
        return 1

    try:
        with LicenseClient(args.api_base, token=args.token) as client:
            envelope = seed_license(client, LicenseStorage(args.app_id), args.customer, fingerprint)
    except LicenseClientError as exc:
        print(f"failed to issue license: {exc}", file=sys.stderr)
        return 1
    except (OSError, ValueError) as exc:
        print(f"failed to persist license: {exc}", file=sys.stderr)
        return 1

    if args.output:
        path = Path(args.output)
        try:
            fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(envelope.license_key)
        except OSError as exc:
            print(f"failed to write license to {path}: {exc}", file=sys.stderr)
            return 1

    print(envelope.license_key)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
