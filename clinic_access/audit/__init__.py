"""Audit ingestion: in-process pipeline, archival sinks and external SQS intake."""
