from __future__ import annotations

"""HTTP API surface over the local assessment engine."""

from typing import Any
from uuid import uuid4

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from .config import CONFIG_SCHEMA_VERSION
from .errors import VarkError
from .quiz import QuizInput
from .service import AssessmentService
from .telemetry import SCHEMA_VERSION as TELEMETRY_SCHEMA_VERSION, sanitize_actor_id


ERROR_STATUS = {
    "TOKEN_MALFORMED": 400,
    "DOMAIN_NOT_ALLOWED": 403,
    "NOT_AUTHENTICATED": 401,
    "NAME_REQUIRED": 422,
    "INVALID_SUM": 422,
    "SCORE_NEGATIVE": 422,
    "SUBMISSION_PENDING": 409,
    "STORAGE_ERROR": 503,
}


class TokenSignInRequest(BaseModel):
    """Identity token issued by the federated sign-in widget."""

    credential: str = Field(min_length=1, max_length=8192)


class SubmitRequest(BaseModel):
    """Raw form values; scores are parsed leniently by the engine."""

    name: str = Field(default="", max_length=200)
    a: int | float | str | None = ""
    b: int | float | str | None = ""
    c: int | float | str | None = ""
    d: int | float | str | None = ""


def error_response(exc: VarkError, trace_id: str) -> JSONResponse:
    content = exc.to_dict()
    content["trace_id"] = trace_id
    return JSONResponse(status_code=ERROR_STATUS.get(exc.code, 400), content=content)


def create_app(service: AssessmentService) -> FastAPI:
    """Create API routes backed by `AssessmentService`."""

    app = FastAPI(title="VARK Assessment API", version="0.1")

    @app.middleware("http")
    async def trace_id_middleware(request: Request, call_next):  # type: ignore[no-untyped-def]
        incoming = (request.headers.get("x-vark-trace-id") or "").strip()
        trace_id = sanitize_actor_id(incoming) if incoming else f"api:{uuid4()}"
        if not trace_id or trace_id in {"unknown", "[redacted]"}:
            trace_id = f"api:{uuid4()}"
        request.state.trace_id = trace_id
        try:
            response = await call_next(request)
        except Exception as exc:  # noqa: BLE001
            service.telemetry.log_event(
                "risk.flagged",
                actor_id="api:unknown",
                source="api",
                trace_id=trace_id,
                data={
                    "reason": "api_internal_error",
                    "endpoint": request.url.path,
                    "error_type": exc.__class__.__name__,
                },
            )
            response = JSONResponse(
                status_code=500,
                content={
                    "code": "INTERNAL_SERVER_ERROR",
                    "message": "Internal server error",
                    "trace_id": trace_id,
                },
            )
        response.headers["X-Vark-Trace-Id"] = trace_id
        return response

    def request_trace_id(request: Request) -> str:
        value = getattr(request.state, "trace_id", None)
        if isinstance(value, str) and value:
            return value
        return f"api:{uuid4()}"

    @app.get("/v1/health")
    def health() -> dict[str, Any]:
        return {
            "status": "ok",
            "version": "0.1",
            "schema_versions": {"config": CONFIG_SCHEMA_VERSION, "telemetry": TELEMETRY_SCHEMA_VERSION},
        }

    @app.get("/v1/session")
    def get_session(request: Request) -> dict[str, Any]:
        identity = service.refresh(source="api", trace_id=request_trace_id(request))
        return {"identity": identity.to_dict() if identity else None, "source_kind": service.source_kind}

    @app.post("/v1/session/token")
    def sign_in_with_token(body: TokenSignInRequest, request: Request) -> Any:
        trace_id = request_trace_id(request)
        try:
            identity = service.sign_in_with_token(body.credential, source="api", trace_id=trace_id)
        except VarkError as exc:
            return error_response(exc, trace_id)
        return {"identity": identity.to_dict(), "source_kind": service.source_kind}

    @app.post("/v1/session/guest")
    def sign_in_as_guest(request: Request) -> Any:
        trace_id = request_trace_id(request)
        try:
            identity = service.sign_in_as_guest(source="api", trace_id=trace_id)
        except VarkError as exc:
            return error_response(exc, trace_id)
        return {"identity": identity.to_dict(), "source_kind": service.source_kind}

    @app.post("/v1/session/logout")
    def logout(request: Request) -> dict[str, Any]:
        return service.logout(source="api", trace_id=request_trace_id(request))

    @app.get("/v1/state")
    def get_state() -> dict[str, Any]:
        return service.view()

    @app.post("/v1/results")
    def submit_result(body: SubmitRequest, request: Request) -> Any:
        trace_id = request_trace_id(request)
        quiz = QuizInput.from_dict(body.model_dump())
        outcome = service.submit(quiz, source="api", trace_id=trace_id)
        if outcome.error is not None:
            return error_response(outcome.error, trace_id)
        return outcome.to_dict()

    @app.get("/v1/results")
    def list_results() -> list[dict[str, Any]]:
        if service.identity is None:
            raise HTTPException(status_code=401, detail="Sign in to see the result history.")
        return [record.to_dict() for record in service.history]

    @app.get("/v1/results/current")
    def current_result() -> dict[str, Any]:
        current = service.result.to_dict()
        if current is None:
            raise HTTPException(status_code=404, detail="No result submitted in this session.")
        return current

    @app.get("/v1/assessment-document")
    def assessment_document() -> dict[str, Any]:
        return service.assessment_document()

    return app
