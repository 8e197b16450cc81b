"""Tests for structured logging helpers."""

import logging

from callgate.core.structured_logging import build_log_context, log_data_anomaly


def test_build_log_context_includes_only_provided_fields():
    context = build_log_context(
        user_id="user-1",
        counterparty_id="dm-1",
        month="2025-09",
        request_id="req-1",
        route="/booking/calls",
    )

    assert context == {
        "user_id": "user-1",
        "counterparty_id": "dm-1",
        "month": "2025-09",
        "request_id": "req-1",
        "route": "/booking/calls",
    }


def test_build_log_context_ignores_empty_fields():
    context = build_log_context(
        user_id="",
        counterparty_id=None,
        request_id="req-1",
    )

    assert context == {"request_id": "req-1"}


def test_log_data_anomaly_tags_warning(caplog):
    logger = logging.getLogger("callgate.tests.anomaly")

    log_data_anomaly(logger, "Invitation %s has no DM", "inv-1", user_id="rep-1")

    record = caplog.records[-1]
    assert record.levelno == logging.WARNING
    assert record.getMessage() == "Invitation inv-1 has no DM"
    assert record.anomaly == "DataIntegrityAnomaly"
    assert record.user_id == "rep-1"
