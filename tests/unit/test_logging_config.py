from __future__ import annotations

import json
import logging
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[2] / "src"))

from rpos.application.use_cases.context import operation_scope
from rpos.infrastructure.observability.logging_config import JsonFormatter


def _record(**extra: object) -> logging.LogRecord:
    record = logging.makeLogRecord(
        {"name": "rpos.test", "levelname": "INFO", "levelno": logging.INFO, "msg": "expense_added"}
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_json_formatter_keeps_whitelisted_extras() -> None:
    record = _record(expense_id=4, total="20.00", expense_date="2026-10-18", secret="x")

    with operation_scope("op-42"):
        payload = json.loads(JsonFormatter().format(record))

    assert payload["message"] == "expense_added"
    assert payload["operation_id"] == "op-42"
    assert payload["expense_id"] == 4
    assert payload["expense_date"] == "2026-10-18"
    assert payload["total"] == "20.00"
    assert "secret" not in payload
    assert payload["trace_id"] is None


def test_json_formatter_omits_unset_extras() -> None:
    payload = json.loads(JsonFormatter().format(_record()))

    assert payload["operation_id"] is None
    assert "expense_date" not in payload
    assert "table_no" not in payload
