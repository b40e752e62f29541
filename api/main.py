"""FastAPI server for WitnessBox."""

from __future__ import annotations

import logging
from dataclasses import replace
from decimal import Decimal
from functools import lru_cache
from typing import Optional, Dict, Any, List

from fastapi import FastAPI, HTTPException, Header, Depends, Request
from pydantic import BaseModel, Field

from witnessbox.auth import AdminAuth, InvalidCredentialsError, LoginThrottledError
from witnessbox.classifier import classify_content
from witnessbox.config import configure_logging, get_admin_password, get_db_path
from witnessbox.generation import OpenAIResponder
from witnessbox.models import Settings, Student
from witnessbox.pipeline import (
    ChatPipeline,
    ContentBlockedError,
    ExchangeResult,
    SessionNotFoundError,
    StudentNotAuthorizedError,
    UsageLimitError,
)
from witnessbox.policy import evaluate_blocking_policy
from witnessbox.rate_limiter import LoginThrottle
from witnessbox.roster import parse_student_list, validate_students
from witnessbox.schemas import FilterMode, UsageWindow, ViolationCategory
from witnessbox.storage import DuplicateStudentError, SQLiteStorage
from witnessbox.usage import UsageAccountant
from witnessbox.validation import (
    ValidationError,
    validate_cost_limit,
    validate_email,
    validate_token_limit,
)
from witnessbox.violations import ViolationStateError


logger = logging.getLogger("witnessbox.api")


@lru_cache(maxsize=1)
def get_storage():
    return SQLiteStorage(db_path=get_db_path())


@lru_cache(maxsize=1)
def get_throttle() -> LoginThrottle:
    return LoginThrottle()


def get_responder():
    try:
        return _openai_responder()
    except ValueError as exc:
        logger.error("Text generation unavailable: %s", exc)
        raise HTTPException(status_code=503, detail="Text generation is not configured") from exc


@lru_cache(maxsize=1)
def _openai_responder() -> OpenAIResponder:
    return OpenAIResponder()


def get_auth(
    store=Depends(get_storage),
    throttle: LoginThrottle = Depends(get_throttle),
) -> AdminAuth:
    return AdminAuth(store, get_admin_password(), throttle=throttle)


def get_pipeline(store=Depends(get_storage), responder=Depends(get_responder)) -> ChatPipeline:
    return ChatPipeline(store, responder)


def _bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def _require_admin(
    authorization: Optional[str] = Header(default=None),
    auth: AdminAuth = Depends(get_auth),
) -> str:
    token = _bearer_token(authorization)
    if not auth.verify(token):
        raise HTTPException(status_code=401, detail="Admin authentication required")
    return token


configure_logging()

app = FastAPI(title="WitnessBox API", version="0.1.0")


# =============================================================================
# Request models
# =============================================================================

class SessionRequest(BaseModel):
    student_email: str = Field(..., min_length=3)
    student_name: Optional[str] = None
    character_name: str = Field(..., min_length=1)
    situation: str = Field(..., min_length=1)


class MessageRequest(BaseModel):
    content: str
    bypass_warning: bool = False
    violation_id: Optional[str] = None


class ProfessorRequest(BaseModel):
    question: str


class LoginRequest(BaseModel):
    password: str


class LoginResponse(BaseModel):
    token: str
    expires_at: str


class StudentRequest(BaseModel):
    email: str
    name: str = Field(..., min_length=2, max_length=100)
    daily_token_limit: Optional[int] = None
    monthly_cost_limit: Optional[Decimal] = None
    notes: Optional[str] = None


class StudentUpdateRequest(BaseModel):
    name: Optional[str] = Field(None, min_length=2, max_length=100)
    is_active: Optional[bool] = None
    daily_token_limit: Optional[int] = None
    monthly_cost_limit: Optional[Decimal] = None
    notes: Optional[str] = None


class BulkStudentsRequest(BaseModel):
    text: str


class SettingsUpdateRequest(BaseModel):
    global_daily_token_limit: Optional[int] = None
    global_monthly_cost_limit: Optional[Decimal] = None
    content_filter_mode: Optional[FilterMode] = None
    alert_email: Optional[str] = None


class ClassifyRequest(BaseModel):
    text: str
    mode: Optional[FilterMode] = None


# =============================================================================
# Serialization
# =============================================================================

def _money(value: Optional[Decimal]) -> Optional[str]:
    return None if value is None else str(value)


def _window(window: UsageWindow) -> Dict[str, Any]:
    return {"total_tokens": window.total_tokens, "total_cost": str(window.total_cost)}


def _student(student: Student) -> Dict[str, Any]:
    return {
        "email": student.email,
        "name": student.name,
        "is_active": student.is_active,
        "daily_token_limit": student.daily_token_limit,
        "monthly_cost_limit": _money(student.monthly_cost_limit),
        "notes": student.notes,
        "created_at": student.created_at.isoformat(),
    }


def _settings(settings: Settings) -> Dict[str, Any]:
    return {
        "global_daily_token_limit": settings.global_daily_token_limit,
        "global_monthly_cost_limit": _money(settings.global_monthly_cost_limit),
        "content_filter_mode": FilterMode(settings.content_filter_mode).value,
        "alert_email": settings.alert_email,
        "updated_at": settings.updated_at.isoformat(),
    }


def _message(message) -> Dict[str, Any]:
    return {
        "message_id": message.message_id,
        "role": message.role.value,
        "content": message.content,
        "timestamp": message.timestamp.isoformat(),
    }


def _exchange(result: ExchangeResult) -> Dict[str, Any]:
    return {
        "user_message": _message(result.user_message),
        "assistant_message": _message(result.assistant_message),
        "responder": result.generation.responder.value,
        "tokens_used": result.generation.total_tokens,
        "cost": str(result.cost),
    }


def _classification(result, decision=None) -> Dict[str, Any]:
    payload = {
        "is_violation": result.is_violation,
        "category": result.category.value if result.category else None,
        "confidence": result.confidence,
        "details": result.details,
    }
    if decision is not None:
        payload["block"] = decision.block
        payload["reason"] = decision.reason
    return payload


def _run_exchange(call) -> Dict[str, Any]:
    """Run a pipeline call and map its errors onto HTTP responses."""
    try:
        return _exchange(call())
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except SessionNotFoundError as exc:
        raise HTTPException(status_code=404, detail="Session not found") from exc
    except UsageLimitError as exc:
        raise HTTPException(
            status_code=429,
            detail={"error": exc.reason, "limits_info": exc.limits_info.to_dict()},
        ) from exc
    except ContentBlockedError as exc:
        detail = {
            "error": exc.reason,
            "can_proceed": exc.can_proceed,
            "violation_id": exc.violation_id,
            "classification": _classification(exc.classification),
        }
        raise HTTPException(status_code=409 if exc.can_proceed else 403, detail=detail) from exc
    except ViolationStateError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc


# =============================================================================
# Public endpoints
# =============================================================================

@app.get("/health")
def health(store=Depends(get_storage)) -> Dict[str, str]:
    try:
        store.get_settings()
    except Exception as exc:
        logger.exception("Health check could not read the store")
        raise HTTPException(status_code=503, detail="Storage unavailable") from exc
    return {"status": "ok"}


@app.post("/sessions", status_code=201)
def create_session(req: SessionRequest, store=Depends(get_storage)) -> Dict[str, Any]:
    # start_session never calls the model
    pipeline = ChatPipeline(store, responder=None)
    try:
        session = pipeline.start_session(
            req.student_email, req.student_name, req.character_name, req.situation,
        )
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except StudentNotAuthorizedError as exc:
        raise HTTPException(status_code=403, detail=exc.message) from exc
    return {
        "session_id": session.session_id,
        "student_email": session.student_email,
        "student_name": session.student_name,
        "character_name": session.character_name,
        "situation": session.situation,
        "created_at": session.created_at.isoformat(),
    }


@app.get("/sessions/{session_id}")
def get_session(session_id: str, store=Depends(get_storage)) -> Dict[str, Any]:
    session = store.get_session(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Session not found")
    return {
        "session_id": session.session_id,
        "student_email": session.student_email,
        "student_name": session.student_name,
        "character_name": session.character_name,
        "situation": session.situation,
        "created_at": session.created_at.isoformat(),
    }


@app.get("/sessions/{session_id}/messages")
def list_messages(session_id: str, store=Depends(get_storage)) -> List[Dict[str, Any]]:
    if store.get_session(session_id) is None:
        raise HTTPException(status_code=404, detail="Session not found")
    return [_message(m) for m in store.list_messages(session_id)]


@app.post("/sessions/{session_id}/messages")
def send_message(
    session_id: str,
    req: MessageRequest,
    pipeline: ChatPipeline = Depends(get_pipeline),
) -> Dict[str, Any]:
    return _run_exchange(
        lambda: pipeline.send_message(
            session_id,
            req.content,
            bypass_warning=req.bypass_warning,
            violation_id=req.violation_id,
        )
    )


@app.post("/sessions/{session_id}/professor-mode")
def professor_mode(
    session_id: str,
    req: ProfessorRequest,
    pipeline: ChatPipeline = Depends(get_pipeline),
) -> Dict[str, Any]:
    return _run_exchange(lambda: pipeline.ask_professor(session_id, req.question))


@app.get("/usage")
def usage(student_email: str, store=Depends(get_storage)) -> Dict[str, Any]:
    try:
        email = validate_email(student_email)
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    check = UsageAccountant(store).check_limits(email)
    return {
        "student_email": email,
        "can_proceed": check.can_proceed,
        "reason": check.reason,
        "limits_info": check.limits_info.to_dict(),
    }


# =============================================================================
# Admin endpoints
# =============================================================================

@app.post("/admin/login", response_model=LoginResponse)
def admin_login(req: LoginRequest, request: Request, auth: AdminAuth = Depends(get_auth)) -> LoginResponse:
    client_id = request.client.host if request.client else "unknown"
    try:
        token = auth.login(req.password, client_id=client_id)
    except LoginThrottledError as exc:
        raise HTTPException(
            status_code=429,
            detail=str(exc),
            headers={"Retry-After": str(int(exc.retry_after) + 1)},
        ) from exc
    except InvalidCredentialsError as exc:
        raise HTTPException(status_code=401, detail="Incorrect admin password") from exc
    return LoginResponse(token=token.token, expires_at=token.expires_at.isoformat())


@app.post("/admin/logout")
def admin_logout(token: str = Depends(_require_admin), auth: AdminAuth = Depends(get_auth)) -> Dict[str, Any]:
    return {"logged_out": auth.logout(token)}


@app.get("/admin/me", dependencies=[Depends(_require_admin)])
def admin_me() -> Dict[str, Any]:
    return {"authenticated": True}


@app.get("/admin/students", dependencies=[Depends(_require_admin)])
def admin_list_students(store=Depends(get_storage)) -> List[Dict[str, Any]]:
    return [_student(s) for s in store.list_students()]


@app.post("/admin/students", status_code=201, dependencies=[Depends(_require_admin)])
def admin_add_student(req: StudentRequest, store=Depends(get_storage)) -> Dict[str, Any]:
    try:
        student = Student(
            email=validate_email(req.email),
            name=req.name.strip(),
            daily_token_limit=validate_token_limit(req.daily_token_limit),
            monthly_cost_limit=validate_cost_limit(req.monthly_cost_limit),
            notes=req.notes,
        )
        created = store.create_student(student)
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except DuplicateStudentError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    logger.info("Whitelisted student %s", created.email)
    return _student(created)


@app.post("/admin/students/bulk", dependencies=[Depends(_require_admin)])
def admin_bulk_students(req: BulkStudentsRequest, store=Depends(get_storage)) -> Dict[str, Any]:
    parsed = parse_student_list(req.text)
    existing = {s.email for s in store.list_students()}
    checked = validate_students(parsed.students, existing)

    added = []
    for entry in checked.valid:
        try:
            added.append(store.create_student(Student(email=entry.email, name=entry.name)))
        except DuplicateStudentError:
            checked.existing.append(entry.email)

    return {
        "added": [_student(s) for s in added],
        "existing": checked.existing,
        "duplicates": parsed.duplicates,
        "errors": parsed.errors,
        "invalid": [{"email": s.email, "name": s.name, "error": reason} for s, reason in checked.invalid],
    }


@app.patch("/admin/students/{email}", dependencies=[Depends(_require_admin)])
def admin_update_student(email: str, req: StudentUpdateRequest, store=Depends(get_storage)) -> Dict[str, Any]:
    updates = req.model_dump(exclude_unset=True)
    for key in ("name", "is_active"):
        if key in updates and updates[key] is None:
            del updates[key]
    try:
        if "daily_token_limit" in updates:
            updates["daily_token_limit"] = validate_token_limit(updates["daily_token_limit"])
        if "monthly_cost_limit" in updates:
            updates["monthly_cost_limit"] = validate_cost_limit(updates["monthly_cost_limit"])
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    student = store.update_student(email, **updates)
    if student is None:
        raise HTTPException(status_code=404, detail="Student not found")
    return _student(student)


@app.delete("/admin/students/{email}", dependencies=[Depends(_require_admin)])
def admin_remove_student(email: str, store=Depends(get_storage)) -> Dict[str, Any]:
    if not store.delete_student(email):
        raise HTTPException(status_code=404, detail="Student not found")
    return {"removed": True}


@app.get("/admin/settings", dependencies=[Depends(_require_admin)])
def admin_get_settings(store=Depends(get_storage)) -> Dict[str, Any]:
    return _settings(store.get_settings() or Settings())


@app.patch("/admin/settings", dependencies=[Depends(_require_admin)])
def admin_update_settings(req: SettingsUpdateRequest, store=Depends(get_storage)) -> Dict[str, Any]:
    updates = req.model_dump(exclude_unset=True)
    try:
        if "global_daily_token_limit" in updates:
            updates["global_daily_token_limit"] = validate_token_limit(updates["global_daily_token_limit"])
        if "global_monthly_cost_limit" in updates:
            updates["global_monthly_cost_limit"] = validate_cost_limit(
                updates["global_monthly_cost_limit"]
            )
        if updates.get("alert_email"):
            updates["alert_email"] = validate_email(updates["alert_email"])
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    if "content_filter_mode" in updates and updates["content_filter_mode"] is None:
        del updates["content_filter_mode"]

    current = store.get_settings() or Settings()
    saved = store.update_settings(replace(current, **updates))
    logger.info("Settings updated: %s", ", ".join(sorted(updates)) or "no changes")
    return _settings(saved)


@app.get("/admin/usage", dependencies=[Depends(_require_admin)])
def admin_usage(store=Depends(get_storage)) -> Dict[str, Any]:
    summary = UsageAccountant(store).usage_summary()
    return {
        "global": {
            "daily": _window(summary["global"]["daily"]),
            "monthly": _window(summary["global"]["monthly"]),
        },
        "students": [
            {
                "email": row["email"],
                "name": row["name"],
                "daily": _window(row["daily"]),
                "monthly": _window(row["monthly"]),
            }
            for row in summary["students"]
        ],
    }


@app.get("/admin/violations", dependencies=[Depends(_require_admin)])
def admin_violations(
    student_email: Optional[str] = None,
    category: Optional[ViolationCategory] = None,
    store=Depends(get_storage),
) -> List[Dict[str, Any]]:
    events = store.list_violations(
        student_email=student_email,
        category=category.value if category else None,
    )
    return [
        {
            "event_id": e.event_id,
            "student_email": e.student_email,
            "session_id": e.session_id,
            "category": e.category.value,
            "status": e.status.value,
            "detail": e.detail,
            "timestamp": e.timestamp.isoformat(),
            "bypassed_at": e.bypassed_at.isoformat() if e.bypassed_at else None,
        }
        for e in events
    ]


@app.post("/admin/classify", dependencies=[Depends(_require_admin)])
def admin_classify(req: ClassifyRequest, store=Depends(get_storage)) -> Dict[str, Any]:
    mode = req.mode
    if mode is None:
        settings = store.get_settings()
        mode = settings.content_filter_mode if settings else FilterMode.NORMAL
    result = classify_content(req.text)
    return _classification(result, evaluate_blocking_policy(result, mode))
