from __future__ import annotations

import json
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from vark_engine.telemetry import TelemetryLogger, parse_range, sanitize_actor_id, sanitize_event_data
from vark_engine.tokens import encode_identity_token


def _read_jsonl(path: Path) -> list[dict]:
    if not path.exists():
        return []
    rows: list[dict] = []
    for line in path.read_text(encoding="utf-8").splitlines():
        if not line.strip():
            continue
        rows.append(json.loads(line))
    return rows


def test_sanitize_redacts_tokens_and_emails() -> None:
    payload = {
        "credential": encode_identity_token({"email": "maria@escola.pr.gov.br", "name": "Maria"}),
        "api_key": "sk-abcdefghijklmnop",
        "nested": {"email": "maria@escola.pr.gov.br", "note": "a" * 250},
        "history_count": 3,
    }
    sanitized, stats = sanitize_event_data(payload)
    assert sanitized["credential"] == "[redacted]"
    assert sanitized["api_key"] == "[redacted]"
    assert sanitized["nested"]["email"] == "[redacted]"
    assert sanitized["nested"]["note"].endswith("...[truncated]")
    assert sanitized["history_count"] == 3
    assert stats.redacted_fields >= 3
    assert stats.truncated_fields >= 1


def test_sanitize_keeps_operational_values() -> None:
    payload = {"source_kind": "custom", "scores": {"A": 4, "B": 4}, "assessment": "vark.ca.v1"}
    sanitized, stats = sanitize_event_data(payload)
    assert sanitized == payload
    assert stats.redacted_fields == 0


def test_actor_id_with_email_is_redacted() -> None:
    assert sanitize_actor_id("maria@escola.pr.gov.br") == "[redacted]"
    assert sanitize_actor_id(None) == "unknown"
    assert sanitize_actor_id("user:0123abcd") == "user:0123abcd"


def test_event_logger_appends_valid_jsonl(tmp_path: Path) -> None:
    events_path = tmp_path / "telemetry" / "events.jsonl"
    logger = TelemetryLogger(events_path=events_path)
    logger.log_event("engine.started", actor_id="system:engine", source="cli", data={"history_scope": "identity"})
    rows = _read_jsonl(events_path)
    assert len(rows) == 1
    row = rows[0]
    assert row["schema_version"] == "0.1"
    assert row["event_type"] == "engine.started"
    assert row["actor_id"] == "system:engine"
    assert row["source"] == "cli"
    assert row["trace_id"] is None
    assert set(row["build"]) == {"engine_version", "python_version", "platform"}


def test_redaction_emits_risk_flag(tmp_path: Path) -> None:
    events_path = tmp_path / "events.jsonl"
    logger = TelemetryLogger(events_path=events_path)
    logger.log_event("storage.failed", source="engine", data={"error": "could not write ana@escola.pr.gov.br"})
    rows = _read_jsonl(events_path)
    assert [row["event_type"] for row in rows] == ["storage.failed", "risk.flagged"]
    assert rows[0]["data"]["error"] == "[redacted]"
    assert rows[1]["data"]["reason"] == "telemetry_sanitized"
    assert rows[1]["data"]["trigger_event_type"] == "storage.failed"


def test_unknown_event_type_is_flagged(tmp_path: Path) -> None:
    events_path = tmp_path / "events.jsonl"
    logger = TelemetryLogger(events_path=events_path)
    logger.log_event("quiz.cheated", source="web", data={"anything": 1})
    rows = _read_jsonl(events_path)
    assert rows[0]["event_type"] == "risk.flagged"
    assert rows[0]["data"] == {"reason": "invalid_event_type", "requested_event_type": "quiz.cheated"}
    assert rows[0]["source"] == "engine"


def test_status_counts_by_type(tmp_path: Path) -> None:
    logger = TelemetryLogger(events_path=tmp_path / "events.jsonl")
    logger.log_event("session.resolved", source="api", data={})
    logger.log_event("session.resolved", source="api", data={})
    logger.log_event("result.recorded", source="api", data={})
    status = logger.status()
    assert status["event_count"] == 3
    assert status["events_by_type"] == {"result.recorded": 1, "session.resolved": 2}


def test_purge_drops_old_events(tmp_path: Path) -> None:
    events_path = tmp_path / "events.jsonl"
    logger = TelemetryLogger(events_path=events_path)
    logger.log_event("session.resolved", source="api", data={})
    old_ts = (datetime.now(tz=UTC) - timedelta(days=45)).replace(microsecond=0).isoformat().replace("+00:00", "Z")
    rows = _read_jsonl(events_path)
    old = dict(rows[0], ts=old_ts, event_id="old")
    with events_path.open("a", encoding="utf-8") as handle:
        handle.write(json.dumps(old) + "\n")

    assert logger.purge("30d") == {"removed": 1, "kept": 1}
    assert [row["event_id"] for row in _read_jsonl(events_path)] == [rows[0]["event_id"]]

    assert logger.purge("1h") == {"removed": 0, "kept": 1}


@pytest.mark.parametrize("value", ["", "30", "0d", "2w", "-1d"])
def test_parse_range_rejects_bad_windows(value: str) -> None:
    with pytest.raises(ValueError):
        parse_range(value)


def test_parse_range_accepts_days_and_hours() -> None:
    assert parse_range("7d") == timedelta(days=7)
    assert parse_range(" 24H ") == timedelta(hours=24)
