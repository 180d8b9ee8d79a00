#!/usr/bin/env python
"""CLI utility to verify audit log integrity hashes."""

from __future__ import annotations

import argparse
import logging
from datetime import datetime
from typing import Optional

from clinic_access.core.database import session_scope
from clinic_access.services.audit_verifier import AuditVerificationError, AuditVerifier


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Verify audit log integrity hashes.")
    parser.add_argument("--start", type=datetime.fromisoformat, default=None, help="Optional ISO-8601 start (inclusive).")
    parser.add_argument("--end", type=datetime.fromisoformat, default=None, help="Optional ISO-8601 end (exclusive).")
    parser.add_argument("--verbose", action="store_true", help="Enable verbose logging.")
    return parser.parse_args(argv)


def main(argv: Optional[list[str]] = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        with session_scope() as session:
            result = AuditVerifier(session).verify(start=args.start, end=args.end, raise_on_failure=True)
    except AuditVerificationError as exc:
        logging.error("Audit verification failed: %s", exc)
        return 1

    logging.info("Audit log verified successfully (%s entries checked)", result.checked)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
