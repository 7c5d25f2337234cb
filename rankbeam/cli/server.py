import argparse
import logging

import uvicorn

from rankbeam.config import Settings, get_settings
from rankbeam.main import build_service, create_app
from rankbeam.services.store import LicenseStore

logger = logging.getLogger(__name__)


def parse_addr(addr: str) -> tuple[str, int]:
    host, sep, port = addr.strip().rpartition(":")
    if not sep:
        host, port = "", addr.strip()
    try:
        port_number = int(port)
    except ValueError as exc:
        raise ValueError(f"invalid bind address {addr!r}") from exc
    if not 0 <= port_number <= 65535:
        raise ValueError(f"invalid port in bind address {addr!r}")
    host = host.strip("[]") or "0.0.0.0"
    return host, port_number


def build_parser(settings: Settings) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="RankBeam license server")
    parser.add_argument("--addr", default=settings.bind_addr, help="listen address, e.g. :8080")
    parser.add_argument("--db", default=settings.db_path, help="SQLite database path")
    parser.add_argument("--token", default=settings.installer_token, help="installer token required by clients")
    parser.add_argument(
        "--paystack-webhook-secret",
        default=settings.paystack_webhook_secret,
        help="secret used to verify Paystack webhook signatures",
    )
    parser.add_argument("--read-timeout", type=float, default=settings.read_timeout_seconds)
    parser.add_argument("--write-timeout", type=float, default=settings.write_timeout_seconds)
    parser.add_argument("--idle-timeout", type=float, default=settings.idle_timeout_seconds)
    parser.add_argument(
        "--expiry",
        type=int,
        default=settings.license_expiry_days,
        help="license validity in days (0 disables expiry)",
    )
    return parser


def apply_args(settings: Settings, args: argparse.Namespace) -> Settings:
    return settings.model_copy(
        update={
            "bind_addr": args.addr,
            "db_path": args.db,
            "installer_token": args.token or None,
            "paystack_webhook_secret": args.paystack_webhook_secret or None,
            "read_timeout_seconds": args.read_timeout,
            "write_timeout_seconds": args.write_timeout,
            "idle_timeout_seconds": args.idle_timeout,
            "license_expiry_days": max(args.expiry, 0),
        }
    )


def main(argv: list[str] | None = None) -> int:
    base = get_settings()
    logging.basicConfig(level=base.log_level)
    args = build_parser(base).parse_args(argv)
    settings = apply_args(base, args)

    try:
        host, port = parse_addr(settings.bind_addr)
    except ValueError as exc:
        logger.error("%s", exc)
        return 2

    try:
        store = LicenseStore.open(settings.db_path)
    except Exception as exc:
        logger.error("failed to open license store %s: %s", settings.db_path, exc)
        return 1

    try:
        app = create_app(settings, service=build_service(settings, store))
        config = uvicorn.Config(
            app,
            host=host,
            port=port,
            timeout_keep_alive=max(int(settings.idle_timeout_seconds), 1),
            timeout_graceful_shutdown=max(int(settings.shutdown_timeout_seconds), 1),
            log_level=settings.log_level.lower(),
        )
        server = uvicorn.Server(config)
        logger.info("license server listening on %s:%d", host, port)
        server.run()
    finally:
        store.close()
    logger.info("license server stopped")
    return 0 if server.started else 1


if __name__ == "__main__":
    raise SystemExit(main())
