import argparse

from rankbeam.config import get_settings
from rankbeam.main import build_service
from rankbeam.services.licensing import InvalidRequest, LicensingService
from rankbeam.services.store import LicenseRecord, LicenseStore
from rankbeam.utils.time import format_rfc3339


def format_expiry(record: LicenseRecord) -> str:
    return format_rfc3339(record.expires_at) if record.expires_at else "never"


def print_license(record: LicenseRecord) -> None:
    print(f"key: {record.key}")
    print(f"customer_id: {record.customer_id}")
    print(f"fingerprint_hash: {record.fingerprint_hash or '-'}")
    print(f"issued_at: {format_rfc3339(record.issued_at)}")
    print(f"expires_at: {format_expiry(record)}")


def list_licenses(store: LicenseStore) -> int:
    records = store.list_licenses()
    if not records:
        print("No licenses found")
        return 0
    for record in records:
        bound = "bound" if record.fingerprint_hash else "unbound"
        print(f"{record.key}\t{record.customer_id}\t{bound}\t{format_rfc3339(record.issued_at)}\t{format_expiry(record)}")
    return 0


def show_license(store: LicenseStore, key: str) -> int:
    record = store.find_by_key(key.strip().upper())
    if not record:
        print("License not found")
        return 1
    print_license(record)
    return 0


def issue_license(service: LicensingService, customer_id: str, fingerprint: str) -> int:
    try:
        record, created = service.issue_license(customer_id, fingerprint)
    except InvalidRequest as exc:
        print(str(exc))
        return 1
    print("License created:" if created else "License already exists:")
    print_license(record)
    return 0


def build_parser(default_db: str) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Admin console for the license database")
    parser.add_argument("--db", default=default_db, help="SQLite database path")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("list")

    show_parser = subparsers.add_parser("show")
    show_parser.add_argument("key")

    issue_parser = subparsers.add_parser("issue")
    issue_parser.add_argument("--customer", required=True)
    issue_parser.add_argument("--fingerprint", required=True)

    return parser


def main(argv: list[str] | None = None) -> int:
    settings = get_settings()
    args = build_parser(settings.db_path).parse_args(argv)

    store = LicenseStore.open(args.db)
    try:
        if args.command == "list":
            return list_licenses(store)
        if args.command == "show":
            return show_license(store, args.key)
        if args.command == "issue":
            return issue_license(build_service(settings, store), args.customer, args.fingerprint)
        print("Unknown command")
        return 1
    finally:
        store.close()


if __name__ == "__main__":
    raise SystemExit(main())
