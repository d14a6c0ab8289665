from __future__ import annotations

import json
from pathlib import Path

import pytest

from vark_engine.errors import (
    DomainNotAllowedError,
    InvalidSumError,
    MissingNameError,
    NotAuthenticatedError,
    StorageError,
    SubmissionPendingError,
)
from vark_engine.quiz import QuizInput
from vark_engine.service import AssessmentService
from vark_engine.session import CUSTOM_SESSION_KEY, InMemoryFederatedProvider
from vark_engine.storage import FileKeyValueStore, MemoryKeyValueStore
from vark_engine.tokens import encode_identity_token


MARIA_TOKEN = encode_identity_token({"email": "maria@escola.pr.gov.br", "name": "Maria", "picture": None})


def _repo_root() -> Path:
    return Path(__file__).resolve().parents[2]


@pytest.fixture(autouse=True)
def _isolated_home(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("VARK_HOME", str(tmp_path / "home"))
    for name in ("VARK_CONFIG", "VARK_ALLOWED_DOMAINS", "VARK_HISTORY_SCOPE", "VARK_TELEMETRY_RETENTION_DAYS"):
        monkeypatch.delenv(name, raising=False)


def _events(tmp_path: Path) -> list[dict]:
    events_path = tmp_path / "home" / "telemetry" / "events.jsonl"
    if not events_path.exists():
        return []
    return [json.loads(line) for line in events_path.read_text(encoding="utf-8").splitlines() if line.strip()]


class _BrokenWriteStore(MemoryKeyValueStore):
    def set(self, key: str, value: str) -> None:
        if key.startswith("vark_results_"):
            raise StorageError("quota exceeded", key=key)
        super().set(key, value)


def test_fresh_engine_has_no_identity() -> None:
    service = AssessmentService.create(_repo_root(), store=MemoryKeyValueStore())
    view = service.view()
    assert view["identity"] is None
    assert view["source_kind"] == "none"
    assert view["history"] == []
    assert view["current_result"] is None
    assert view["submitting"] is False


def test_submit_without_identity_is_refused() -> None:
    store = MemoryKeyValueStore()
    service = AssessmentService.create(_repo_root(), store=store)
    outcome = service.submit(QuizInput(name="Maria", a=4, b=4, c=4, d=4))
    assert outcome.ok is False
    assert isinstance(outcome.error, NotAuthenticatedError)
    assert store.values == {}
    with pytest.raises(NotAuthenticatedError):
        service.require_identity()


def test_token_sign_in_then_valid_submission_is_stored(tmp_path: Path) -> None:
    store = MemoryKeyValueStore()
    service = AssessmentService.create(_repo_root(), store=store)
    identity = service.sign_in_with_token(MARIA_TOKEN)
    assert identity.email == "maria@escola.pr.gov.br"
    assert service.source_kind == "custom"

    outcome = service.submit(QuizInput(name="Maria", a="4", b="4", c="4", d="4"))
    assert outcome.ok is True
    assert outcome.persisted is True
    assert outcome.record is not None
    assert outcome.record.percentages.to_dict() == {"A": "25.0", "B": "25.0", "C": "25.0", "D": "25.0"}
    assert [record.id for record in service.history] == [outcome.record.id]
    assert service.result.record == outcome.record

    stored = json.loads(store.values["vark_results_maria@escola.pr.gov.br"])
    assert stored[0]["scores"] == {"A": 4, "B": 4, "C": 4, "D": 4}
    event_types = [event["event_type"] for event in _events(tmp_path)]
    assert "session.signed_in" in event_types
    assert "result.recorded" in event_types


def test_invalid_sum_leaves_state_untouched(tmp_path: Path) -> None:
    store = MemoryKeyValueStore()
    service = AssessmentService.create(_repo_root(), store=store)
    service.sign_in_with_token(MARIA_TOKEN)
    outcome = service.submit(QuizInput(name="Ana", a=10, b=10, c=0, d=0))
    assert outcome.ok is False
    assert isinstance(outcome.error, InvalidSumError)
    assert outcome.error.total == 20
    assert service.history == []
    assert service.result.record is None
    assert "vark_results_maria@escola.pr.gov.br" not in store.values
    rejected = [event for event in _events(tmp_path) if event["event_type"] == "quiz.rejected"]
    assert rejected[0]["data"] == {"code": "INVALID_SUM", "total": 20, "expected": 16}


def test_missing_name_is_reported_first() -> None:
    service = AssessmentService.create(_repo_root(), store=MemoryKeyValueStore())
    service.sign_in_with_token(MARIA_TOKEN)
    outcome = service.submit(QuizInput(name="  ", a=10, b=10, c=0, d=0))
    assert isinstance(outcome.error, MissingNameError)


def test_guest_results_are_shown_but_never_stored() -> None:
    store = MemoryKeyValueStore()
    service = AssessmentService.create(_repo_root(), store=store)
    identity = service.sign_in_as_guest()
    assert identity.is_guest is True
    assert identity.display_name == "Visitante"

    outcome = service.submit(QuizInput(name="Visitante", a=16, b=0, c=0, d=0))
    assert outcome.ok is True
    assert outcome.persisted is False
    assert outcome.warning is None
    assert service.history == []
    assert service.result.to_dict()["chart_data"] == [
        {"key": "A", "name": "Visual", "value": 16, "color": "#93C5FD"}
    ]
    assert set(store.values) == {CUSTOM_SESSION_KEY}


def test_rejected_domain_creates_no_session(tmp_path: Path) -> None:
    store = MemoryKeyValueStore()
    service = AssessmentService.create(_repo_root(), store=store)
    token = encode_identity_token({"email": "ana@gmail.com", "name": "Ana"})
    with pytest.raises(DomainNotAllowedError):
        service.sign_in_with_token(token)
    assert service.identity is None
    assert CUSTOM_SESSION_KEY not in store.values
    rejected = [event for event in _events(tmp_path) if event["event_type"] == "session.rejected"]
    assert rejected[0]["data"] == {"method": "token", "code": "DOMAIN_NOT_ALLOWED"}


def test_logout_returns_engine_to_fresh_state() -> None:
    store = MemoryKeyValueStore()
    service = AssessmentService.create(_repo_root(), store=store)
    fresh_view = service.view()
    service.sign_in_with_token(MARIA_TOKEN)
    service.submit(QuizInput(name="Maria", a=4, b=4, c=4, d=4))

    result = service.logout()
    assert result == {"signed_out": True, "had_identity": True}
    assert service.view() == fresh_view
    assert CUSTOM_SESSION_KEY not in store.values
    assert "vark_results_maria@escola.pr.gov.br" in store.values


def test_reload_restores_identity_and_history(tmp_path: Path) -> None:
    service = AssessmentService.create(_repo_root())
    service.sign_in_with_token(MARIA_TOKEN)
    service.submit(QuizInput(name="Maria", a=1, b=3, c=5, d=7))

    reloaded = AssessmentService.create(_repo_root())
    assert reloaded.identity is not None
    assert reloaded.identity.email == "maria@escola.pr.gov.br"
    assert [record.percentages.to_dict() for record in reloaded.history] == [
        {"A": "6.3", "B": "18.8", "C": "31.3", "D": "43.8"}
    ]
    assert reloaded.result.record is None
    assert isinstance(reloaded.store, FileKeyValueStore)


def test_malformed_cached_session_is_discarded(tmp_path: Path) -> None:
    store = MemoryKeyValueStore({CUSTOM_SESSION_KEY: '{"email": 12'})
    service = AssessmentService.create(_repo_root(), store=store)
    assert service.identity is None
    assert CUSTOM_SESSION_KEY not in store.values
    discarded = [event for event in _events(tmp_path) if event["event_type"] == "session.discarded"]
    assert discarded[0]["data"]["reason"] == "custom_session_malformed"


def test_write_failure_still_shows_result() -> None:
    service = AssessmentService.create(_repo_root(), store=_BrokenWriteStore())
    service.sign_in_with_token(MARIA_TOKEN)
    outcome = service.submit(QuizInput(name="Maria", a=4, b=4, c=4, d=4))
    assert outcome.ok is True
    assert outcome.persisted is False
    assert outcome.warning is not None
    assert outcome.warning["code"] == "STORAGE_WRITE_FAILED"
    assert service.history == []
    assert service.result.record == outcome.record


def test_federated_session_takes_precedence_and_logout_signs_out() -> None:
    federated = InMemoryFederatedProvider({"user": {"email": "prof@escola.pr.gov.br", "name": "Prof. Lima"}})
    store = MemoryKeyValueStore()
    service = AssessmentService.create(_repo_root(), store=store, federated=federated)
    assert service.source_kind == "federated"
    assert service.identity is not None

    service.sign_in_as_guest()
    assert service.source_kind == "federated"
    assert service.identity.email == "prof@escola.pr.gov.br"

    service.logout()
    assert federated.sign_out_calls == 1
    assert service.identity is None
    assert service.refresh() is None


def test_switching_identity_drops_previous_result() -> None:
    service = AssessmentService.create(_repo_root(), store=MemoryKeyValueStore())
    service.sign_in_with_token(MARIA_TOKEN)
    service.submit(QuizInput(name="Maria", a=4, b=4, c=4, d=4))
    other = encode_identity_token({"email": "joao@escola.pr.gov.br", "name": "João"})
    service.sign_in_with_token(other)
    assert service.result.record is None
    assert service.history == []


def test_concurrent_submission_is_refused() -> None:
    service = AssessmentService.create(_repo_root(), store=MemoryKeyValueStore())
    service.sign_in_with_token(MARIA_TOKEN)
    service._submit_lock.acquire()
    try:
        assert service.submitting is True
        outcome = service.submit(QuizInput(name="Maria", a=4, b=4, c=4, d=4))
    finally:
        service._submit_lock.release()
    assert outcome.ok is False
    assert isinstance(outcome.error, SubmissionPendingError)
    assert service.history == []


def test_telemetry_never_contains_raw_email(tmp_path: Path) -> None:
    service = AssessmentService.create(_repo_root(), store=MemoryKeyValueStore())
    service.sign_in_with_token(MARIA_TOKEN)
    service.submit(QuizInput(name="Maria", a=4, b=4, c=4, d=4))
    raw = (tmp_path / "home" / "telemetry" / "events.jsonl").read_text(encoding="utf-8")
    assert "maria@escola.pr.gov.br" not in raw
    assert MARIA_TOKEN not in raw


def test_assessment_document_and_purge() -> None:
    service = AssessmentService.create(_repo_root(), store=MemoryKeyValueStore())
    document = service.assessment_document()
    assert document["assessment_id"] == "vark.ca.v1"
    assert document["path"] == "/VARK_CA_Wayground.pdf"
    purged = service.telemetry_purge()
    assert purged["older_than"] == "30d"
    assert purged["removed"] == 0


def test_oversized_score_is_rejected_not_raised(tmp_path: Path) -> None:
    service = AssessmentService.create(_repo_root(), store=MemoryKeyValueStore())
    service.sign_in_as_guest()
    outcome = service.submit(QuizInput(name="Ana", a="9" * 5000, b="0", c="0", d="0"))
    assert outcome.ok is False
    assert isinstance(outcome.error, InvalidSumError)
    assert json.dumps(outcome.to_dict())
    assert any(event["event_type"] == "quiz.rejected" for event in _events(tmp_path))
