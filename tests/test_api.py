"""Tests for the HTTP API."""

from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from api.main import app, get_responder, get_storage, get_throttle
from witnessbox.generation import GenerationResult
from witnessbox.models import Settings, Student
from witnessbox.rate_limiter import LoginThrottle
from witnessbox.schemas import FilterMode, Responder, ViolationStatus
from witnessbox.storage import InMemoryStorage


ADMIN_PASSWORD = "open-sesame"


class CannedResponder:
    def respond(self, character_name, situation, messages, professor_mode=False):
        return GenerationResult(
            content="Hello. My name is Inigo Montoya.",
            responder=Responder.PROFESSOR if professor_mode else Responder.CHARACTER,
            prompt_tokens=200,
            completion_tokens=40,
            total_tokens=240,
            model="gpt-4o",
        )


class ApiTestBase:
    """Shared client with in-memory storage."""

    @pytest.fixture(autouse=True)
    def _client(self, monkeypatch):
        monkeypatch.setenv("ADMIN_PASSWORD", ADMIN_PASSWORD)
        self.store = InMemoryStorage()
        self.store.create_student(Student(email="ana@school.edu", name="Ana"))
        throttle = LoginThrottle()

        app.dependency_overrides[get_storage] = lambda: self.store
        app.dependency_overrides[get_responder] = lambda: CannedResponder()
        app.dependency_overrides[get_throttle] = lambda: throttle
        self.client = TestClient(app)
        yield
        app.dependency_overrides.clear()

    def admin_headers(self):
        resp = self.client.post("/admin/login", json={"password": ADMIN_PASSWORD})
        assert resp.status_code == 200
        return {"Authorization": f"Bearer {resp.json()['token']}"}

    def open_session(self):
        resp = self.client.post("/sessions", json={
            "student_email": "ana@school.edu",
            "character_name": "Inigo Montoya",
            "situation": "Who killed your father?",
        })
        assert resp.status_code == 201
        return resp.json()["session_id"]


class TestHealth(ApiTestBase):
    def test_ok(self):
        assert self.client.get("/health").json() == {"status": "ok"}

    def test_store_down(self):
        broken = MagicMock()
        broken.get_settings.side_effect = RuntimeError("disk full")
        app.dependency_overrides[get_storage] = lambda: broken

        assert self.client.get("/health").status_code == 503


class TestStudentEndpoints(ApiTestBase):
    """Sessions and messages."""

    def test_unknown_student_forbidden(self):
        resp = self.client.post("/sessions", json={
            "student_email": "nobody@school.edu",
            "character_name": "Fezzik",
            "situation": "x",
        })
        assert resp.status_code == 403

    def test_session_roundtrip(self):
        session_id = self.open_session()

        resp = self.client.get(f"/sessions/{session_id}")
        assert resp.json()["character_name"] == "Inigo Montoya"
        assert self.client.get("/sessions/missing").status_code == 404

    def test_allowed_message(self):
        session_id = self.open_session()

        resp = self.client.post(f"/sessions/{session_id}/messages", json={
            "content": "Why did Westley fake his own death to fool Vizzini?",
        })

        assert resp.status_code == 200
        body = resp.json()
        assert body["responder"] == "character"
        assert body["tokens_used"] == 240
        assert body["cost"] == "0.0009"
        messages = self.client.get(f"/sessions/{session_id}/messages").json()
        assert [m["role"] for m in messages] == ["user", "assistant"]

    def test_warning_then_bypass(self):
        session_id = self.open_session()

        resp = self.client.post(f"/sessions/{session_id}/messages", json={
            "content": "What is the derivative of x^2?",
        })
        assert resp.status_code == 409
        detail = resp.json()["detail"]
        assert detail["can_proceed"] is True
        assert detail["classification"]["category"] == "math"

        resp = self.client.post(f"/sessions/{session_id}/messages", json={
            "content": "What is the derivative of x^2?",
            "bypass_warning": True,
            "violation_id": detail["violation_id"],
        })
        assert resp.status_code == 200
        assert self.store.get_violation(detail["violation_id"]).status == ViolationStatus.PROCEEDED

    def test_strict_block(self):
        self.store.update_settings(Settings(content_filter_mode=FilterMode.STRICT))
        session_id = self.open_session()

        resp = self.client.post(f"/sessions/{session_id}/messages", json={
            "content": "Explain photosynthesis and cell biology",
        })

        assert resp.status_code == 403
        assert resp.json()["detail"]["can_proceed"] is False

    def test_usage_limit(self):
        self.store.update_student("ana@school.edu", daily_token_limit=0)
        session_id = self.open_session()

        resp = self.client.post(f"/sessions/{session_id}/messages", json={"content": "Hello Inigo"})

        assert resp.status_code == 429
        assert resp.json()["detail"]["limits_info"]["daily_tokens"] == 0

    def test_empty_message(self):
        session_id = self.open_session()

        resp = self.client.post(f"/sessions/{session_id}/messages", json={"content": "  "})
        assert resp.status_code == 400

    def test_professor_mode(self):
        session_id = self.open_session()

        resp = self.client.post(f"/sessions/{session_id}/professor-mode", json={"question": "Any tips?"})

        assert resp.status_code == 200
        assert resp.json()["responder"] == "professor"
        assert resp.json()["user_message"]["content"].startswith("[Asked ")

    def test_usage(self):
        resp = self.client.get("/usage", params={"student_email": "ana@school.edu"})

        assert resp.status_code == 200
        assert resp.json()["can_proceed"] is True
        assert resp.json()["limits_info"]["daily_cost"] == "0"


class TestAdminEndpoints(ApiTestBase):
    """Bearer-protected admin routes."""

    def test_requires_token(self):
        assert self.client.get("/admin/students").status_code == 401
        resp = self.client.get("/admin/me", headers={"Authorization": "Bearer nope"})
        assert resp.status_code == 401

    def test_bad_password(self):
        assert self.client.post("/admin/login", json={"password": "guess"}).status_code == 401

    def test_login_throttled(self):
        for _ in range(5):
            self.client.post("/admin/login", json={"password": "guess"})

        resp = self.client.post("/admin/login", json={"password": ADMIN_PASSWORD})

        assert resp.status_code == 429
        assert "Retry-After" in resp.headers

    def test_me_and_logout(self):
        headers = self.admin_headers()

        assert self.client.get("/admin/me", headers=headers).json() == {"authenticated": True}
        assert self.client.post("/admin/logout", headers=headers).json() == {"logged_out": True}
        assert self.client.get("/admin/me", headers=headers).status_code == 401

    def test_student_management(self):
        headers = self.admin_headers()

        resp = self.client.post("/admin/students", headers=headers, json={
            "email": "Ben@School.edu",
            "name": "Ben Ode",
            "monthly_cost_limit": "5.00",
        })
        assert resp.status_code == 201
        assert resp.json()["email"] == "ben@school.edu"
        assert resp.json()["monthly_cost_limit"] == "5.00"

        dup = self.client.post("/admin/students", headers=headers, json={"email": "ben@school.edu", "name": "Ben"})
        assert dup.status_code == 409

        resp = self.client.patch("/admin/students/ben@school.edu", headers=headers, json={
            "is_active": False,
            "monthly_cost_limit": None,
        })
        assert resp.json()["is_active"] is False
        assert resp.json()["monthly_cost_limit"] is None

        emails = [s["email"] for s in self.client.get("/admin/students", headers=headers).json()]
        assert emails == ["ana@school.edu", "ben@school.edu"]

        assert self.client.delete("/admin/students/ben@school.edu", headers=headers).status_code == 200
        assert self.client.delete("/admin/students/ben@school.edu", headers=headers).status_code == 404
        assert self.client.patch("/admin/students/ben@school.edu", headers=headers, json={}).status_code == 404

    def test_student_update_ignores_null_name_and_status(self):
        headers = self.admin_headers()

        resp = self.client.patch("/admin/students/ana@school.edu", headers=headers, json={
            "is_active": None,
            "name": None,
            "daily_token_limit": 500,
        })

        assert resp.status_code == 200
        assert resp.json()["is_active"] is True
        assert resp.json()["name"] == "Ana"
        assert resp.json()["daily_token_limit"] == 500
        assert self.store.get_student("ana@school.edu").is_active is True

    def test_bulk_add(self):
        headers = self.admin_headers()

        resp = self.client.post("/admin/students/bulk", headers=headers, json={
            "text": "Ana Lopez (ana@school.edu), Ben Ode (ben@school.edu), Cy (cy@school.edu), Bad (nope)",
        })

        body = resp.json()
        assert [s["email"] for s in body["added"]] == ["ben@school.edu", "cy@school.edu"]
        assert body["existing"] == ["ana@school.edu"]
        assert len(body["errors"]) == 1

    def test_settings(self):
        headers = self.admin_headers()

        assert self.client.get("/admin/settings", headers=headers).json()["content_filter_mode"] == "normal"

        resp = self.client.patch("/admin/settings", headers=headers, json={
            "content_filter_mode": "strict",
            "global_daily_token_limit": 10000,
        })

        assert resp.json()["content_filter_mode"] == "strict"
        assert self.store.get_settings().global_daily_token_limit == 10000

        bad = self.client.patch("/admin/settings", headers=headers, json={"global_daily_token_limit": -5})
        assert bad.status_code == 400

    def test_usage_and_violations(self):
        headers = self.admin_headers()
        session_id = self.open_session()
        self.client.post(f"/sessions/{session_id}/messages", json={"content": "What is the derivative of x^2?"})

        usage = self.client.get("/admin/usage", headers=headers).json()
        assert usage["global"]["daily"]["total_tokens"] == 0
        assert usage["students"][0]["email"] == "ana@school.edu"

        events = self.client.get(
            "/admin/violations", headers=headers, params={"category": "non-english"},
        ).json()
        assert len(events) == 1
        assert events[0]["status"] == "flagged"
        assert events[0]["detail"].startswith("[MATH] Student asked:")

    def test_classify(self):
        headers = self.admin_headers()

        resp = self.client.post("/admin/classify", headers=headers, json={
            "text": "Explain photosynthesis and cell biology",
            "mode": "strict",
        })

        body = resp.json()
        assert body["is_violation"] is True
        assert body["category"] == "science"
        assert body["block"] is True
