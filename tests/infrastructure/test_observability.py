"""JSON log records — label, surfaced extras, absent keys left out."""

import json
import logging

from vidhub.infrastructure.observability import JSONFormatter


def _record(**extra) -> logging.LogRecord:
    record = logging.LogRecord(
        "vidhub.cluster.primary", logging.INFO, __file__, 1, "Worker %s exited", (42,), None,
    )
    record.__dict__.update(extra)
    return record


def test_record_carries_label_role_and_exit_fields():
    line = json.loads(JSONFormatter().format(
        _record(service="primary", role="primary", worker_pid=42, exit_code=0),
    ))
    assert line["label"] == "vidhub.cluster.primary"
    assert line["message"] == "Worker 42 exited"
    assert line["role"] == "primary"
    assert line["exit_code"] == 0
    assert line["worker_pid"] == 42


def test_unset_extras_are_omitted():
    line = json.loads(JSONFormatter().format(_record(service="worker")))
    assert "role" not in line
    assert "signal" not in line
