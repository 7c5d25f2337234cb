import argparse
import os
import sys
from pathlib import Path

from rankbeam.desktop.fingerprint import FingerprintUnavailable, machine_fingerprint


def write_fingerprint(path: Path, fingerprint: str) -> None:
    path.parent.mkdir(mode=0o700, parents=True, exist_ok=True)
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "w", encoding="utf-8") as handle:
        handle.write(fingerprint + "\n")
    os.chmod(path, 0o600)


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Print this machine's license fingerprint")
    parser.add_argument("--output", default=None, help="write the fingerprint to this file instead")
    args = parser.parse_args(argv)

    try:
        fingerprint = machine_fingerprint()
    except (FingerprintUnavailable, OSError) as exc:
        print(f"fingerprint unavailable: {exc}", file=sys.stderr)
        return 1

    if args.output:
        try:
            write_fingerprint(Path(args.output), fingerprint)
        except OSError as exc:
            print(f"write fingerprint: {exc}", file=sys.stderr)
            return 1
        print(f"Fingerprint written to {args.output}")
        return 0

    print(fingerprint)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
