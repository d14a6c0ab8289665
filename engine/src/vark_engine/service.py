from __future__ import annotations

"""Assessment engine facade: session resolution, submission, and history state."""

import hashlib
import os
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .config import AssessmentConfig, load_config
from .errors import NotAuthenticatedError, StorageError, SubmissionPendingError, VarkError
from .history import HistoryStore
from .paths import ensure_home_dirs, vark_home
from .quiz import QuizInput, validate_quiz
from .records import ResultRecord, create_record
from .redaction import identity_hash
from .scoring import BreakdownItem, build_breakdown
from .session import (
    CustomSessionStore,
    FederatedProvider,
    Identity,
    NullFederatedProvider,
    resolve_identity,
    select_source,
)
from .signin import guest_session, session_from_token
from .storage import FileKeyValueStore, KeyValueStore
from .telemetry import TelemetryLogger


DEFAULT_TELEMETRY_RETENTION_DAYS = 30
VALID_SOURCES = {"cli", "api", "engine"}


def _env_days(name: str, fallback: int) -> int:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return fallback
    try:
        value = int(raw)
    except ValueError:
        return fallback
    if value <= 0:
        return fallback
    return value


@dataclass
class ResultSession:
    """Most recent successful result, kept in memory only."""

    record: ResultRecord | None = None
    breakdown: list[BreakdownItem] = field(default_factory=list)

    def replace(self, record: ResultRecord, breakdown: list[BreakdownItem]) -> None:
        self.record = record
        self.breakdown = list(breakdown)

    def clear(self) -> None:
        self.record = None
        self.breakdown = []

    def to_dict(self) -> dict[str, Any] | None:
        if self.record is None:
            return None
        payload = self.record.to_dict()
        payload["chart_data"] = [item.to_dict() for item in self.breakdown]
        return payload


@dataclass(frozen=True)
class SubmitOutcome:
    ok: bool
    record: ResultRecord | None = None
    breakdown: tuple[BreakdownItem, ...] = ()
    error: VarkError | None = None
    persisted: bool = False
    warning: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"ok": self.ok, "persisted": self.persisted}
        if self.record is not None:
            payload["record"] = self.record.to_dict()
            payload["chart_data"] = [item.to_dict() for item in self.breakdown]
        if self.error is not None:
            payload["error"] = self.error.to_dict()
        if self.warning is not None:
            payload["warning"] = self.warning
        return payload


@dataclass
class AssessmentService:
    """Stateful engine; every gated operation goes through the resolved identity."""

    home: Path
    config: AssessmentConfig
    store: KeyValueStore
    telemetry: TelemetryLogger
    federated: FederatedProvider = field(default_factory=NullFederatedProvider)
    identity: Identity | None = None
    source_kind: str = "none"
    history: list[ResultRecord] = field(default_factory=list)
    result: ResultSession = field(default_factory=ResultSession)

    def __post_init__(self) -> None:
        self.sessions = CustomSessionStore(self.store)
        self.history_store = HistoryStore(self.store, scope=self.config.history_scope, telemetry=self.telemetry)
        self._submit_lock = threading.Lock()

    @classmethod
    def create(
        cls,
        repo_root: Path,
        *,
        store: KeyValueStore | None = None,
        federated: FederatedProvider | None = None,
    ) -> "AssessmentService":
        """Instantiate the engine against `$VARK_HOME` and restore any cached session."""

        home = vark_home()
        dirs = ensure_home_dirs(home)
        config = load_config(repo_root)
        telemetry = TelemetryLogger(events_path=dirs["telemetry"] / "events.jsonl")
        service = cls(
            home=home,
            config=config,
            store=store if store is not None else FileKeyValueStore(dirs["state"]),
            telemetry=telemetry,
            federated=federated if federated is not None else NullFederatedProvider(),
        )
        service.telemetry.log_event(
            "engine.started",
            actor_id="system:engine",
            source="engine",
            data={
                "home_path_hash": hashlib.sha256(str(home).encode("utf-8")).hexdigest(),
                "history_scope": config.history_scope,
            },
        )
        service.refresh()
        return service

    def _normalize_source(self, source: str) -> str:
        if source in VALID_SOURCES:
            return source
        return "engine"

    def _actor_id(self, identity: Identity | None = None) -> str:
        target = identity if identity is not None else self.identity
        if target is None:
            return "anonymous"
        if target.is_guest:
            return "guest"
        return f"user:{identity_hash(target.email)}"

    def _emit_event(
        self,
        event_type: str,
        *,
        source: str,
        data: dict[str, Any],
        trace_id: str | None = None,
        identity: Identity | None = None,
    ) -> None:
        self.telemetry.log_event(
            event_type,
            actor_id=self._actor_id(identity),
            source=self._normalize_source(source),
            trace_id=trace_id,
            data=data,
        )

    def _clear_derived_state(self) -> None:
        self.identity = None
        self.source_kind = "none"
        self.history = []
        self.result.clear()

    def refresh(self, *, source: str = "engine", trace_id: str | None = None) -> Identity | None:
        """Re-inspect both identity sources and reload history for the winner."""

        loaded = self.sessions.load()
        if loaded.error is not None:
            self._emit_event(
                "session.discarded",
                source=source,
                trace_id=trace_id,
                data={"reason": "custom_session_malformed", "detail": loaded.error},
            )
            try:
                self.sessions.clear()
            except StorageError as exc:
                self._emit_event(
                    "storage.failed",
                    source=source,
                    trace_id=trace_id,
                    data={"operation": "remove", "reason": exc.code},
                )

        chosen = select_source(self.federated.get_session(), loaded.session)
        identity = resolve_identity(chosen)
        if identity is None:
            self._clear_derived_state()
            return None

        if self.identity is None or self.identity.email != identity.email:
            self.result.clear()
        self.identity = identity
        self.source_kind = chosen.kind
        self.history = self.history_store.fetch_all(identity)
        self._emit_event(
            "session.resolved",
            source=source,
            trace_id=trace_id,
            data={"source_kind": chosen.kind, "is_guest": identity.is_guest, "history_count": len(self.history)},
        )
        return identity

    def require_identity(self) -> Identity:
        if self.identity is None:
            raise NotAuthenticatedError("Session expired or missing. Please sign in again.")
        return self.identity

    def _complete_sign_in(self, session: dict[str, Any], *, method: str, source: str, trace_id: str | None) -> Identity:
        self.sessions.save(session)
        identity = self.refresh(source=source, trace_id=trace_id)
        if identity is None:
            raise NotAuthenticatedError("Sign-in did not produce an identity.")
        self._emit_event(
            "session.signed_in",
            source=source,
            trace_id=trace_id,
            data={"method": method, "source_kind": self.source_kind},
        )
        return identity

    def sign_in_with_token(self, token: str, *, source: str = "engine", trace_id: str | None = None) -> Identity:
        """Federated path: decode the token, enforce the domain allow-list, cache the session."""

        try:
            session = session_from_token(token, self.config.allowed_domains)
        except VarkError as exc:
            self._emit_event(
                "session.rejected",
                source=source,
                trace_id=trace_id,
                data={"method": "token", "code": exc.code},
            )
            raise
        return self._complete_sign_in(session, method="token", source=source, trace_id=trace_id)

    def sign_in_as_guest(self, *, source: str = "engine", trace_id: str | None = None) -> Identity:
        session = guest_session(self.config.guest_email, self.config.guest_name)
        return self._complete_sign_in(session, method="guest", source=source, trace_id=trace_id)

    def logout(self, *, source: str = "engine", trace_id: str | None = None) -> dict[str, Any]:
        """Sign out of both sources and drop identity, history, and the transient result."""

        previous = self.identity
        self.federated.sign_out()
        cleared_cache = True
        try:
            self.sessions.clear()
        except StorageError as exc:
            cleared_cache = False
            self._emit_event(
                "storage.failed",
                source=source,
                trace_id=trace_id,
                identity=previous,
                data={"operation": "remove", "reason": exc.code},
            )
        self._clear_derived_state()
        self._emit_event(
            "session.signed_out",
            source=source,
            trace_id=trace_id,
            identity=previous,
            data={"had_identity": previous is not None, "cache_cleared": cleared_cache},
        )
        return {"signed_out": True, "had_identity": previous is not None}

    @property
    def submitting(self) -> bool:
        return self._submit_lock.locked()

    def submit(self, quiz: QuizInput, *, source: str = "engine", trace_id: str | None = None) -> SubmitOutcome:
        """Validate, transform, persist, and mirror one quiz submission."""

        try:
            identity = self.require_identity()
        except NotAuthenticatedError as exc:
            return SubmitOutcome(ok=False, error=exc)
        if not self._submit_lock.acquire(blocking=False):
            return SubmitOutcome(ok=False, error=SubmissionPendingError("A submission is already in progress."))
        try:
            try:
                valid = validate_quiz(quiz, total_points=self.config.total_points)
            except VarkError as exc:
                self._emit_event(
                    "quiz.rejected",
                    source=source,
                    trace_id=trace_id,
                    data={"code": exc.code, **{k: v for k, v in exc.context.items() if k in {"total", "expected"}}},
                )
                return SubmitOutcome(ok=False, error=exc)

            record = create_record(valid, total_points=self.config.total_points)
            breakdown = build_breakdown(record.scores, self.config.categories)
            persisted = False
            warning: dict[str, Any] | None = None
            if not identity.is_guest:
                try:
                    self.history = self.history_store.append(identity, record)
                    persisted = True
                except StorageError:
                    warning = {
                        "code": "STORAGE_WRITE_FAILED",
                        "message": "Could not save the result. It is shown below but was not stored.",
                    }
            self.result.replace(record, breakdown)
            self._emit_event(
                "result.recorded",
                source=source,
                trace_id=trace_id,
                data={
                    "record_id": record.id,
                    "persisted": persisted,
                    "is_guest": identity.is_guest,
                    "scores": record.scores.to_dict(),
                },
            )
            return SubmitOutcome(
                ok=True,
                record=record,
                breakdown=tuple(breakdown),
                persisted=persisted,
                warning=warning,
            )
        finally:
            self._submit_lock.release()

    def view(self) -> dict[str, Any]:
        """Everything the presentation layer renders, as plain data."""

        return {
            "identity": self.identity.to_dict() if self.identity else None,
            "source_kind": self.source_kind,
            "history": [record.to_dict() for record in self.history],
            "history_count": len(self.history),
            "current_result": self.result.to_dict(),
            "submitting": self.submitting,
        }

    def assessment_document(self) -> dict[str, Any]:
        return {
            "assessment_id": self.config.assessment_id,
            "path": self.config.document_path,
            "filename": self.config.document_filename,
        }

    def telemetry_status(self) -> dict[str, Any]:
        return self.telemetry.status()

    def telemetry_retention_days(self) -> int:
        return _env_days("VARK_TELEMETRY_RETENTION_DAYS", DEFAULT_TELEMETRY_RETENTION_DAYS)

    def telemetry_purge(self, *, older_than: str | None = None) -> dict[str, Any]:
        window = older_than or f"{self.telemetry_retention_days()}d"
        result = self.telemetry.purge(window)
        return {"older_than": window, **result}
