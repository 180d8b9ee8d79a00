"""Runs the SQS intake for externally produced audit events."""

from __future__ import annotations

from clinic_access.audit.sqs_consumer import build_audit_consumer_from_env
from clinic_access.core.config import get_settings
from clinic_access.core.logging import configure_logging


def main() -> None:
    configure_logging(get_settings())
    consumer = build_audit_consumer_from_env()
    consumer.run_forever()


if __name__ == "__main__":
    main()
