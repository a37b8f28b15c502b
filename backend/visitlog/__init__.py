"""Visitor telemetry ingestion & alerting backend."""
