from __future__ import annotations

"""Append-only, identity-scoped result history on top of the storage port."""

import json
from typing import Any

from .errors import StorageError
from .records import ResultRecord
from .redaction import identity_hash
from .session import Identity
from .storage import KeyValueStore
from .telemetry import TelemetryLogger


GLOBAL_HISTORY_KEY = "vark_results_data"
IDENTITY_HISTORY_KEY_PREFIX = "vark_results_"


class HistoryStore:
    """Newest-first result log; the only mutation is read, prepend, write back."""

    def __init__(
        self,
        store: KeyValueStore,
        *,
        scope: str = "identity",
        telemetry: TelemetryLogger | None = None,
    ) -> None:
        if scope not in {"identity", "global"}:
            raise ValueError("scope must be 'identity' or 'global'.")
        self.store = store
        self.scope = scope
        self.telemetry = telemetry

    def key_for(self, identity: Identity) -> str:
        if self.scope == "global":
            return GLOBAL_HISTORY_KEY
        return f"{IDENTITY_HISTORY_KEY_PREFIX}{identity.email}"

    def _log_failure(self, identity: Identity, operation: str, reason: str, **data: Any) -> None:
        if self.telemetry is None:
            return
        self.telemetry.log_event(
            "storage.failed",
            actor_id=identity_hash(identity.email),
            source="engine",
            data={"operation": operation, "reason": reason, "scope": self.scope, **data},
        )

    def _read_raw(self, key: str) -> list[Any]:
        text = self.store.get(key)
        if text is None or not text.strip():
            return []
        try:
            payload = json.loads(text)
        except json.JSONDecodeError as exc:
            raise StorageError("Stored history is not valid JSON.", key=key) from exc
        if not isinstance(payload, list):
            raise StorageError("Stored history must be a JSON array.", key=key)
        return payload

    def _parse_entries(self, identity: Identity, raw: list[Any]) -> list[ResultRecord]:
        records: list[ResultRecord] = []
        skipped = 0
        for entry in raw:
            try:
                records.append(ResultRecord.from_dict(entry))
            except (KeyError, TypeError, ValueError):
                skipped += 1
        if skipped:
            self._log_failure(identity, "read", "malformed_entries_skipped", skipped=skipped)
        return records

    def fetch_all(self, identity: Identity | None) -> list[ResultRecord]:
        """Full history visible to `identity`; guests and read failures see nothing."""

        if identity is None or identity.is_guest:
            return []
        try:
            raw = self._read_raw(self.key_for(identity))
        except StorageError as exc:
            self._log_failure(identity, "read", exc.code, error=exc.message)
            return []
        return self._parse_entries(identity, raw)

    def append(self, identity: Identity, record: ResultRecord) -> list[ResultRecord]:
        """Prepend `record` and persist; raises `StorageError` without touching stored data."""

        if identity.is_guest:
            return []
        key = self.key_for(identity)
        try:
            raw = self._read_raw(key)
            updated = [record.to_dict(), *raw]
            self.store.set(key, json.dumps(updated, ensure_ascii=False))
        except StorageError as exc:
            self._log_failure(identity, "write", exc.code, error=exc.message)
            raise
        return self._parse_entries(identity, updated)
