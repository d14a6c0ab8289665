from __future__ import annotations

"""Local telemetry event sanitization, persistence, and retention helpers."""

import json
import platform
import re
import sys
import unicodedata
import uuid
from collections import Counter
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from importlib.metadata import PackageNotFoundError, version as package_version
from pathlib import Path
from typing import Any

from .redaction import payload_contains_pii, payload_contains_secrets


SCHEMA_VERSION = "0.1"
VALID_EVENT_TYPES = {
    "engine.started",
    "session.resolved",
    "session.signed_in",
    "session.rejected",
    "session.discarded",
    "session.signed_out",
    "quiz.rejected",
    "result.recorded",
    "storage.failed",
    "risk.flagged",
}
VALID_SOURCES = {"cli", "api", "engine"}
MAX_STRING_LENGTH = 200
RANGE_PATTERN = re.compile(r"^(\d+)([dh])$")


def _utc_now() -> datetime:
    return datetime.now(tz=UTC)


def _utc_now_rfc3339() -> str:
    return _utc_now().replace(microsecond=0).isoformat().replace("+00:00", "Z")


def _parse_ts(value: Any) -> datetime | None:
    if not isinstance(value, str):
        return None
    normalized = value.replace("Z", "+00:00")
    try:
        parsed = datetime.fromisoformat(normalized)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


def _safe_json(value: Any) -> str:
    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=True)


def _strip_control_chars(value: str) -> str:
    return "".join(ch for ch in value if not unicodedata.category(ch).startswith("C"))


@dataclass(frozen=True)
class BuildInfo:
    """Static build/runtime metadata attached to every telemetry event."""

    engine_version: str
    python_version: str
    platform: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "engine_version": self.engine_version,
            "python_version": self.python_version,
            "platform": self.platform,
        }


@dataclass(frozen=True)
class SanitizeStats:
    """Counts for redactions and truncations emitted during sanitization."""

    redacted_fields: int = 0
    truncated_fields: int = 0


def _combine_stats(a: SanitizeStats, b: SanitizeStats) -> SanitizeStats:
    return SanitizeStats(
        redacted_fields=a.redacted_fields + b.redacted_fields,
        truncated_fields=a.truncated_fields + b.truncated_fields,
    )


def _sanitize_text(value: str) -> tuple[str, SanitizeStats]:
    cleaned = _strip_control_chars(value).strip()
    if payload_contains_secrets(cleaned) or payload_contains_pii(cleaned):
        return "[redacted]", SanitizeStats(redacted_fields=1)
    if len(cleaned) > MAX_STRING_LENGTH:
        return f"{cleaned[:MAX_STRING_LENGTH]}...[truncated]", SanitizeStats(truncated_fields=1)
    return cleaned, SanitizeStats()


def _sanitize_scalar(value: Any) -> tuple[Any, SanitizeStats]:
    if value is None or isinstance(value, (int, float, bool)):
        return value, SanitizeStats()
    return _sanitize_text(str(value))


def sanitize_event_data(data: Any) -> tuple[Any, SanitizeStats]:
    """Recursively sanitize telemetry payloads for secrets, emails, and controls."""

    if isinstance(data, dict):
        sanitized: dict[str, Any] = {}
        stats = SanitizeStats()
        for key, value in data.items():
            key_text, key_stats = _sanitize_scalar(key)
            value_sanitized, value_stats = sanitize_event_data(value)
            sanitized[str(key_text)] = value_sanitized
            stats = _combine_stats(stats, key_stats)
            stats = _combine_stats(stats, value_stats)
        return sanitized, stats
    if isinstance(data, list):
        sanitized_items: list[Any] = []
        stats = SanitizeStats()
        for item in data:
            item_sanitized, item_stats = sanitize_event_data(item)
            sanitized_items.append(item_sanitized)
            stats = _combine_stats(stats, item_stats)
        return sanitized_items, stats
    return _sanitize_scalar(data)


def sanitize_actor_id(value: Any) -> str:
    """Normalize an actor reference to a short safe string."""

    text = "unknown" if value is None else str(value)
    sanitized, _ = _sanitize_text(text)
    return sanitized or "unknown"


def parse_range(range_value: str) -> timedelta:
    """Parse compact duration windows such as `7d` or `24h`."""

    match = RANGE_PATTERN.match(range_value.strip().lower())
    if not match:
        raise ValueError("range must be like 7d or 24h")
    amount = int(match.group(1))
    unit = match.group(2)
    if amount <= 0:
        raise ValueError("range amount must be > 0")
    if unit == "d":
        return timedelta(days=amount)
    return timedelta(hours=amount)


def detect_engine_version() -> str:
    """Resolve installed package version with local fallback."""

    try:
        return package_version("vark-engine")
    except PackageNotFoundError:
        return "0.1.0"


class TelemetryLogger:
    """Append-only JSONL event log for engine decisions and swallowed failures."""

    def __init__(self, events_path: Path) -> None:
        self.events_path = events_path
        self.events_path.parent.mkdir(parents=True, exist_ok=True)
        self.build = BuildInfo(
            engine_version=detect_engine_version(),
            python_version=sys.version.split()[0],
            platform=platform.platform(),
        )

    def _append_jsonl(self, payload: dict[str, Any]) -> None:
        self.events_path.parent.mkdir(parents=True, exist_ok=True)
        with self.events_path.open("a", encoding="utf-8", newline="\n") as handle:
            handle.write(_safe_json(payload))
            handle.write("\n")

    def _base_event(
        self,
        *,
        event_type: str,
        actor_id: str | None,
        source: str,
        trace_id: str | None,
        data: dict[str, Any],
    ) -> dict[str, Any]:
        if event_type not in VALID_EVENT_TYPES:
            data = {"reason": "invalid_event_type", "requested_event_type": sanitize_actor_id(event_type)}
            event_type = "risk.flagged"
        return {
            "schema_version": SCHEMA_VERSION,
            "event_id": str(uuid.uuid4()),
            "ts": _utc_now_rfc3339(),
            "event_type": event_type,
            "actor_id": sanitize_actor_id(actor_id),
            "source": source if source in VALID_SOURCES else "engine",
            "trace_id": sanitize_actor_id(trace_id) if trace_id else None,
            "build": self.build.to_dict(),
            "data": data,
        }

    def log_event(
        self,
        event_type: str,
        *,
        source: str,
        data: dict[str, Any],
        actor_id: str | None = None,
        trace_id: str | None = None,
        _emit_sanitize_flag: bool = True,
    ) -> None:
        """Write one sanitized event and an optional sanitization risk flag."""

        try:
            sanitized_data, stats = sanitize_event_data(data)
            event_payload = self._base_event(
                event_type=event_type,
                actor_id=actor_id,
                source=source,
                trace_id=trace_id,
                data=sanitized_data if isinstance(sanitized_data, dict) else {"value": sanitized_data},
            )
            self._append_jsonl(event_payload)
            if _emit_sanitize_flag and (stats.redacted_fields or stats.truncated_fields):
                self.log_event(
                    "risk.flagged",
                    actor_id=actor_id,
                    source=source,
                    trace_id=trace_id,
                    data={
                        "reason": "telemetry_sanitized",
                        "trigger_event_type": event_type,
                        "fields_redacted_count": stats.redacted_fields,
                        "fields_truncated_count": stats.truncated_fields,
                    },
                    _emit_sanitize_flag=False,
                )
        except Exception as exc:  # noqa: BLE001
            print(f"[telemetry] failed to append event: {exc}", file=sys.stderr)

    def iter_events(self) -> list[dict[str, Any]]:
        if not self.events_path.exists():
            return []
        events: list[dict[str, Any]] = []
        with self.events_path.open("r", encoding="utf-8") as handle:
            for line in handle:
                line = line.strip()
                if not line:
                    continue
                try:
                    payload = json.loads(line)
                except json.JSONDecodeError:
                    continue
                if isinstance(payload, dict):
                    events.append(payload)
        return events

    def status(self) -> dict[str, Any]:
        events = self.iter_events()
        by_type = Counter(str(event.get("event_type", "unknown")) for event in events)
        return {
            "enabled": True,
            "path": str(self.events_path),
            "event_count": len(events),
            "events_by_type": dict(sorted(by_type.items())),
        }

    def purge(self, older_than: str) -> dict[str, int]:
        """Drop events older than a compact range window and rewrite the log."""

        cutoff = _utc_now() - parse_range(older_than)
        events = self.iter_events()
        kept = [event for event in events if (_parse_ts(event.get("ts")) or cutoff) >= cutoff]
        if not kept:
            if self.events_path.exists():
                self.events_path.unlink()
        else:
            temp_path = self.events_path.parent / f".{self.events_path.name}.tmp"
            with temp_path.open("w", encoding="utf-8", newline="\n") as handle:
                for event in kept:
                    handle.write(_safe_json(event))
                    handle.write("\n")
            temp_path.replace(self.events_path)
        return {"removed": len(events) - len(kept), "kept": len(kept)}
