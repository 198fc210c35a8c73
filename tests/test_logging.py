from __future__ import annotations

import json
import logging


def _format(logger_name: str, event: str, **fields) -> dict:
    from invoice_intake.core.logging import JsonFormatter

    record = logging.LogRecord(logger_name, logging.INFO, __file__, 1, event, None, None)
    record.event = event
    record.fields = fields
    return json.loads(JsonFormatter().format(record))


def test_records_inside_a_session_carry_its_id():
    from invoice_intake.core.logging import reset_session_context, set_session_context

    token = set_session_context("session-1")
    try:
        payload = _format("invoice_intake.test", "session.completed", code=None, duration_ms=12)
    finally:
        reset_session_context(token)

    assert payload["event"] == "session.completed"
    assert payload["session_id"] == "session-1"
    assert payload["duration_ms"] == 12
    assert "code" not in payload


def test_explicit_fields_override_context():
    from invoice_intake.core.logging import reset_session_context, set_session_context

    token = set_session_context("session-1")
    try:
        payload = _format("invoice_intake.test", "sweep.session.failed", session_id="session-2")
    finally:
        reset_session_context(token)

    assert payload["session_id"] == "session-2"


def test_no_context_outside_a_request():
    payload = _format("invoice_intake.test", "app.bootstrap")
    assert "session_id" not in payload
    assert "request_id" not in payload
