"""
Tests for the fact-find web API.

Uses Flask test client with in-memory storage and the mock identity
provider: the bearer token is the user id, "admin" is an admin.
"""

import sys
import threading
from io import BytesIO
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
from openpyxl import load_workbook

sys.path.insert(0, str(Path(__file__).parent.parent))

import web_app
from web_app import app
from factfind.auth import MockAuthProvider
from factfind.config import EmailSettings
from factfind.errors import ExportError, PersistenceError
from factfind.export import FactFindMailer
from factfind.llm import LLMConfig, LLMManager, LLMManagerConfig, LLMProvider, LLMResponse
from factfind.storage import MemoryStorage

ADMIN = {"Authorization": "Bearer admin"}
ALICE = {"Authorization": "Bearer alice"}
BOB = {"Authorization": "Bearer bob"}


@pytest.fixture
def client(monkeypatch):
    app.config["TESTING"] = True
    monkeypatch.setattr(web_app, "storage", MemoryStorage())
    monkeypatch.setattr(web_app, "auth_provider", MockAuthProvider(admins=["admin"]))
    monkeypatch.setattr(web_app, "mailer", FactFindMailer(EmailSettings()))
    monkeypatch.setattr(web_app, "llm_manager", None)
    # Clear questionnaire state between tests
    with web_app.controllers_lock:
        web_app.controllers.clear()
        web_app.session_locks.clear()
    with app.test_client() as client:
        yield client


@pytest.fixture
def questions(client):
    """Q1 dependants? -> Q2 how many (if Yes) -> Q3 name."""
    storage = web_app.storage
    q1 = storage.create_question({"text": "Do you have any dependants?", "type": "multiple-choice",
                                  "options": ["Yes", "No"], "order": 1})
    q2 = storage.create_question({"text": "How many dependants?", "type": "number", "order": 2,
                                  "dependsOn": {"questionId": q1.id, "value": "Yes"}})
    q3 = storage.create_question({"text": "What is your full name?", "type": "text", "order": 3})
    return q1, q2, q3


def _new_session(client, headers=ALICE):
    resp = client.post("/api/sessions", json={}, headers=headers)
    assert resp.status_code == 201
    return resp.get_json()["id"]


def _started_session(client, headers=ALICE):
    session_id = _new_session(client, headers)
    resp = client.post(f"/api/sessions/{session_id}/questionnaire/start", headers=headers)
    assert resp.status_code == 200
    return session_id


def _submit(client, session_id, value, headers=ALICE):
    return client.post(f"/api/sessions/{session_id}/questionnaire/submit",
                       json={"value": value}, headers=headers)


# ═══════════════════════════════════════════════════════════════
# HEALTH / AUTH / USERS
# ═══════════════════════════════════════════════════════════════

class TestBasics:
    def test_index_page(self, client):
        resp = client.get("/")
        assert resp.status_code == 200
        assert b"Insurance Fact Find" in resp.data

    def test_health(self, client):
        data = client.get("/api/health").get_json()
        assert data == {"status": "ok", "auth": "mock", "storage": "MemoryStorage", "llm": {}}

    def test_health_reports_llm_providers(self, client, monkeypatch):
        _use_llm(monkeypatch, "Hi")
        client.post("/api/ai/generate", headers=ALICE, json={"messages": [{"role": "user", "content": "Hi"}]})
        llm = client.get("/api/health").get_json()["llm"]
        assert llm["openai"]["model"] == "gpt-4o"
        assert llm["openai"]["requests_today"] == 1

    def test_missing_token(self, client):
        resp = client.get("/api/sessions")
        assert resp.status_code == 401
        assert resp.get_json()["error"] == "No session token provided"

    def test_malformed_authorization_header(self, client):
        resp = client.get("/api/sessions", headers={"Authorization": "Token alice"})
        assert resp.status_code == 401

    def test_rejected_token(self, client):
        with patch.object(web_app.auth_provider, "verify", side_effect=web_app.AuthenticationError("Invalid session")):
            resp = client.get("/api/me", headers=ALICE)
        assert resp.status_code == 401
        assert resp.get_json()["error"] == "Invalid session"

    def test_register_user_is_idempotent(self, client):
        first = client.post("/api/users", json={}, headers=ALICE)
        second = client.post("/api/users", json={}, headers=ALICE)
        assert first.status_code == 201
        assert second.status_code == 200
        assert first.get_json()["id"] == second.get_json()["id"]
        assert first.get_json()["email"] == "alice@example.com"

    def test_email_already_registered(self, client):
        client.post("/api/users", json={}, headers=ALICE)
        resp = client.post("/api/users", json={}, headers={"Authorization": "Bearer alice@example.com"})
        assert resp.status_code == 409
        assert web_app.storage.get_user_by_external_id("alice@example.com") is None

    def test_me_reports_admin(self, client):
        assert client.get("/api/me", headers=ADMIN).get_json()["isAdmin"] is True
        assert client.get("/api/me", headers=ALICE).get_json()["isAdmin"] is False

    def test_unknown_route_is_json(self, client):
        resp = client.get("/api/nothing-here")
        assert resp.status_code == 404
        assert "error" in resp.get_json()


# ═══════════════════════════════════════════════════════════════
# QUESTIONS (ADMIN)
# ═══════════════════════════════════════════════════════════════

class TestQuestionsAPI:
    def test_list_is_public(self, client, questions):
        data = client.get("/api/questions").get_json()
        assert [q["text"] for q in data] == [q.text for q in questions]
        assert data[1]["dependsOn"] == {"questionId": questions[0].id, "value": "Yes"}

    def test_create_requires_admin(self, client):
        resp = client.post("/api/questions", json={"text": "Q", "type": "text", "order": 1}, headers=ALICE)
        assert resp.status_code == 403

    def test_create(self, client):
        resp = client.post("/api/questions", headers=ADMIN, json={
            "text": "Do you smoke?",
            "type": "yes/no",
            "order": 4,
            "category": "Health",
            "conditionalLogic": {"if": {"type": "no"}, "then": {"action": "end"}},
        })
        assert resp.status_code == 201
        data = resp.get_json()
        assert data["options"] == ["Yes", "No"]
        assert data["conditionalLogic"]["consequence"] == {"kind": "end_form"}
        assert data["conditionalLogicSummary"] == f"If Q{data['id']} is No → end form"

    def test_create_invalid(self, client):
        resp = client.post("/api/questions", json={"type": "text", "order": 1}, headers=ADMIN)
        assert resp.status_code == 400
        assert resp.get_json()["field"] == "text"

    def test_create_invalid_logic(self, client):
        resp = client.post("/api/questions", headers=ADMIN, json={
            "text": "Q", "type": "text", "order": 1,
            "conditionalLogic": {"condition": {"kind": "between", "questionId": 1}, "consequence": {"kind": "show"}},
        })
        assert resp.status_code == 400
        assert resp.get_json()["field"] == "conditionalLogic"

    def test_non_json_body(self, client):
        resp = client.post("/api/questions", data="text", content_type="text/plain", headers=ADMIN)
        assert resp.status_code == 400

    def test_update_rejects_cycle(self, client, questions):
        q1, q2, _ = questions
        resp = client.put(f"/api/questions/{q1.id}", headers=ADMIN,
                          json={"dependsOn": {"questionId": q2.id, "value": "3"}})
        assert resp.status_code == 400
        assert resp.get_json()["field"] == "dependsOn"

    def test_update(self, client, questions):
        resp = client.put(f"/api/questions/{questions[2].id}", headers=ADMIN,
                          json={"placeholder": "First and last name"})
        assert resp.status_code == 200
        assert resp.get_json()["placeholder"] == "First and last name"

    def test_update_missing(self, client):
        resp = client.put("/api/questions/999", json={"text": "x"}, headers=ADMIN)
        assert resp.status_code == 404

    def test_delete(self, client, questions):
        resp = client.delete(f"/api/questions/{questions[2].id}", headers=ADMIN)
        assert resp.status_code == 204
        assert client.delete(f"/api/questions/{questions[2].id}", headers=ADMIN).status_code == 404


# ═══════════════════════════════════════════════════════════════
# SESSIONS
# ═══════════════════════════════════════════════════════════════

class TestSessionsAPI:
    def test_users_only_see_their_sessions(self, client):
        mine = _new_session(client, ALICE)
        theirs = _new_session(client, BOB)
        listed = [s["id"] for s in client.get("/api/sessions", headers=ALICE).get_json()]
        assert listed == [mine]
        everything = [s["id"] for s in client.get("/api/sessions", headers=ADMIN).get_json()]
        assert sorted(everything) == sorted([mine, theirs])

    def test_other_users_session_forbidden(self, client):
        session_id = _new_session(client, BOB)
        assert client.get(f"/api/sessions/{session_id}", headers=ALICE).status_code == 403
        assert client.get(f"/api/sessions/{session_id}", headers=ADMIN).status_code == 200

    def test_missing_session(self, client):
        assert client.get("/api/sessions/999", headers=ALICE).status_code == 404

    def test_signature_must_be_string(self, client):
        resp = client.post("/api/sessions", json={"signatureData": 42}, headers=ALICE)
        assert resp.status_code == 400

    def test_update_session(self, client):
        session_id = _new_session(client)
        resp = client.put(f"/api/sessions/{session_id}", headers=ALICE,
                          json={"signatureData": "data:image/png;base64,AAAA"})
        assert resp.status_code == 200
        assert resp.get_json()["signatureData"] == "data:image/png;base64,AAAA"

    def test_update_session_invalid_status(self, client):
        session_id = _new_session(client)
        resp = client.put(f"/api/sessions/{session_id}", json={"status": "paused"}, headers=ALICE)
        assert resp.status_code == 400
        assert resp.get_json()["field"] == "status"

    def test_raw_answers(self, client, questions):
        session_id = _new_session(client)
        resp = client.post(f"/api/sessions/{session_id}/answers", headers=ALICE,
                           json={"questionId": questions[2].id, "value": "Sam"})
        assert resp.status_code == 201
        data = client.get(f"/api/sessions/{session_id}", headers=ALICE).get_json()
        assert [(a["questionId"], a["value"]) for a in data["answers"]] == [(questions[2].id, "Sam")]

    def test_raw_answer_updates_running_questionnaire(self, client, questions):
        session_id = _started_session(client)
        resp = client.post(f"/api/sessions/{session_id}/answers", headers=ALICE,
                           json={"questionId": questions[0].id, "value": "No"})
        assert resp.status_code == 201
        state = client.get(f"/api/sessions/{session_id}/questionnaire", headers=ALICE).get_json()
        assert state["currentAnswer"] == "No"

    def test_raw_answer_refused_while_busy(self, client, questions):
        session_id = _started_session(client)
        lock = web_app.session_locks[session_id]
        lock.acquire()
        try:
            resp = client.post(f"/api/sessions/{session_id}/answers", headers=ALICE,
                               json={"questionId": questions[2].id, "value": "Sam"})
        finally:
            lock.release()
        assert resp.status_code == 409
        assert web_app.storage.list_answers(session_id) == []
        assert questions[2].id not in web_app.controllers[session_id].tracker

    def test_raw_answer_validation(self, client):
        session_id = _new_session(client)
        resp = client.post(f"/api/sessions/{session_id}/answers", headers=ALICE,
                           json={"questionId": "one", "value": "Sam"})
        assert resp.status_code == 400


# ═══════════════════════════════════════════════════════════════
# QUESTIONNAIRE
# ═══════════════════════════════════════════════════════════════

class TestQuestionnaireAPI:
    def test_new_session_is_in_intro(self, client, questions):
        session_id = _new_session(client)
        data = client.get(f"/api/sessions/{session_id}/questionnaire", headers=ALICE).get_json()
        assert data["state"] == "intro"
        assert data["question"] is None

    def test_yes_branch(self, client, questions):
        q1, q2, q3 = questions
        session_id = _started_session(client)

        resp = _submit(client, session_id, "yes")
        data = resp.get_json()
        assert resp.status_code == 200
        assert data["answer"] == {"questionId": q1.id, "value": "Yes"}
        assert data["saved"] is True
        assert data["questionnaire"]["question"]["id"] == q2.id

        assert _submit(client, session_id, "2").get_json()["questionnaire"]["question"]["id"] == q3.id
        final = _submit(client, session_id, "Sam Taylor").get_json()
        assert final["questionnaire"]["state"] == "complete"

        stored = client.get(f"/api/sessions/{session_id}", headers=ALICE).get_json()["answers"]
        assert [a["value"] for a in stored] == ["Yes", "2", "Sam Taylor"]

    def test_no_branch_skips_dependent(self, client, questions):
        session_id = _started_session(client)
        data = _submit(client, session_id, "No").get_json()
        assert data["questionnaire"]["question"]["id"] == questions[2].id

    def test_invalid_choice(self, client, questions):
        session_id = _started_session(client)
        resp = _submit(client, session_id, "Maybe")
        assert resp.status_code == 400
        assert resp.get_json()["questionId"] == questions[0].id

    def test_submit_requires_value(self, client, questions):
        session_id = _started_session(client)
        resp = client.post(f"/api/sessions/{session_id}/questionnaire/submit", json={}, headers=ALICE)
        assert resp.status_code == 400

    def test_submit_before_start(self, client, questions):
        session_id = _new_session(client)
        assert _submit(client, session_id, "Yes").status_code == 409

    def test_start_twice(self, client, questions):
        session_id = _started_session(client)
        resp = client.post(f"/api/sessions/{session_id}/questionnaire/start", headers=ALICE)
        assert resp.status_code == 409

    def test_previous_and_next(self, client, questions):
        session_id = _started_session(client)
        _submit(client, session_id, "No")
        back = client.post(f"/api/sessions/{session_id}/questionnaire/previous", headers=ALICE).get_json()
        assert back["question"]["id"] == questions[0].id
        assert back["currentAnswer"] == "No"
        forward = client.post(f"/api/sessions/{session_id}/questionnaire/next", headers=ALICE).get_json()
        assert forward["question"]["id"] == questions[2].id

    def test_resume_after_restart(self, client, questions):
        session_id = _started_session(client)
        _submit(client, session_id, "No")
        with web_app.controllers_lock:
            web_app.controllers.clear()

        data = client.get(f"/api/sessions/{session_id}/questionnaire", headers=ALICE).get_json()
        assert data["state"] == "presenting"
        assert data["question"]["id"] == questions[2].id

    def test_resume_after_restart_follows_skip_rule(self, client, questions):
        q1, _, q3 = questions
        q4 = web_app.storage.create_question({"text": "Any other cover?", "type": "text", "order": 4})
        web_app.storage.update_question(q1.id, {"conditionalLogic": {
            "condition": {"kind": "equals", "questionId": q1.id, "value": "No"},
            "consequence": {"kind": "skip_to", "questionId": q4.id},
        }})
        session_id = _started_session(client)
        assert _submit(client, session_id, "No").get_json()["questionnaire"]["question"]["id"] == q4.id
        with web_app.controllers_lock:
            web_app.controllers.clear()

        data = client.get(f"/api/sessions/{session_id}/questionnaire", headers=ALICE).get_json()
        assert data["question"]["id"] == q4.id

    def test_controller_rebuilt_outside_global_lock(self, client, questions, monkeypatch):
        session_id = _new_session(client)
        list_questions = web_app.storage.list_questions

        def checked_list_questions():
            assert not web_app.controllers_lock.locked()
            return list_questions()

        monkeypatch.setattr(web_app.storage, "list_questions", checked_list_questions)
        resp = client.get(f"/api/sessions/{session_id}/questionnaire", headers=ALICE)
        assert resp.status_code == 200

    def test_persistence_failure_is_surfaced(self, client, questions, monkeypatch):
        monkeypatch.setattr(web_app.storage, "save_answer",
                            MagicMock(side_effect=PersistenceError("Database unavailable: timeout")))
        session_id = _started_session(client)
        data = _submit(client, session_id, "Yes").get_json()
        assert data["saved"] is False
        assert data["persistenceError"] == "Database unavailable: timeout"
        assert data["questionnaire"]["question"]["id"] == questions[1].id

    def test_busy_session(self, client, questions):
        session_id = _new_session(client)
        lock = threading.Lock()
        lock.acquire()
        web_app.session_locks[session_id] = lock
        resp = client.post(f"/api/sessions/{session_id}/questionnaire/start", headers=ALICE)
        assert resp.status_code == 409
        lock.release()

    def test_other_users_questionnaire_forbidden(self, client, questions):
        session_id = _new_session(client, BOB)
        resp = client.post(f"/api/sessions/{session_id}/questionnaire/start", headers=ALICE)
        assert resp.status_code == 403


# ═══════════════════════════════════════════════════════════════
# CONFIG / AI
# ═══════════════════════════════════════════════════════════════

class ScriptedProvider(LLMProvider):
    def __init__(self, reply):
        super().__init__(LLMConfig(provider_name="openai", model="gpt-4o"))
        self.reply = reply

    def is_available(self):
        return True

    def chat(self, messages, temperature=None, max_tokens=None, model=None, **kwargs):
        return LLMResponse(content=self.reply, model="gpt-4o", provider="openai")


def _use_llm(monkeypatch, reply=None):
    providers = {"openai": ScriptedProvider(reply)} if reply is not None else {}
    manager = LLMManager(config=LLMManagerConfig(retry_delay=0), providers=providers)
    monkeypatch.setattr(web_app, "llm_manager", manager)


class TestConfigAPI:
    def test_requires_admin(self, client):
        assert client.get("/api/config", headers=ALICE).status_code == 403

    def test_get_and_update(self, client):
        assert client.get("/api/config", headers=ADMIN).get_json()["aiModel"] == "gpt-4o"
        resp = client.put("/api/config", headers=ADMIN,
                          json={"aiTemperature": 0.4, "emailRecipients": "ops@broker.co.uk"})
        assert resp.status_code == 200
        assert resp.get_json()["aiTemperature"] == "0.4"

    def test_update_invalid(self, client):
        resp = client.put("/api/config", json={"aiTemperature": "hot"}, headers=ADMIN)
        assert resp.status_code == 400


class TestAIAPI:
    def test_generate(self, client, monkeypatch):
        _use_llm(monkeypatch, "Hello! What is your name?")
        resp = client.post("/api/ai/generate", headers=ALICE,
                           json={"messages": [{"role": "user", "content": "Hi"}]})
        assert resp.status_code == 200
        assert resp.get_json() == {"content": "Hello! What is your name?", "role": "assistant"}

    def test_generate_bad_messages(self, client, monkeypatch):
        _use_llm(monkeypatch, "unused")
        resp = client.post("/api/ai/generate", json={"messages": "Hi"}, headers=ALICE)
        assert resp.status_code == 400

    def test_generate_without_providers(self, client, monkeypatch):
        _use_llm(monkeypatch)
        resp = client.post("/api/ai/generate", headers=ALICE,
                           json={"messages": [{"role": "user", "content": "Hi"}]})
        assert resp.status_code == 502

    def test_analyze(self, client, monkeypatch):
        _use_llm(monkeypatch, '{"interpretation": "Two children", "nextAction": "continue"}')
        resp = client.post("/api/ai/analyze", headers=ALICE,
                           json={"question": "Any dependants?", "answer": "Yes, two"})
        assert resp.get_json() == {"interpretation": "Two children", "nextAction": "continue"}

    def test_analyze_requires_strings(self, client, monkeypatch):
        _use_llm(monkeypatch, "{}")
        resp = client.post("/api/ai/analyze", json={"question": "Q"}, headers=ALICE)
        assert resp.status_code == 400


# ═══════════════════════════════════════════════════════════════
# EXPORTS
# ═══════════════════════════════════════════════════════════════

class TestExportsAPI:
    def _completed_session(self, client):
        session_id = _started_session(client)
        for value in ("Yes", "2", "Sam Taylor"):
            _submit(client, session_id, value)
        return session_id

    def test_pdf_marks_session_completed(self, client, questions):
        session_id = self._completed_session(client)
        resp = client.post(f"/api/sessions/{session_id}/pdf", headers=ALICE)

        assert resp.status_code == 200
        assert resp.mimetype == "application/pdf"
        assert resp.data.startswith(b"%PDF")
        assert resp.headers["Content-Disposition"] == f"attachment; filename=fact-find-{session_id}.pdf"
        assert resp.headers["X-Fact-Find-Email"] == "skipped"

        session = client.get(f"/api/sessions/{session_id}", headers=ALICE).get_json()["session"]
        assert session["status"] == "completed"
        assert session["completedAt"] is not None

    def test_pdf_releases_session_state(self, client, questions):
        session_id = self._completed_session(client)
        assert session_id in web_app.controllers
        client.post(f"/api/sessions/{session_id}/pdf", headers=ALICE)
        assert session_id not in web_app.controllers
        assert session_id not in web_app.session_locks

        # A later read rebuilds the finished traversal from the store
        data = client.get(f"/api/sessions/{session_id}/questionnaire", headers=ALICE).get_json()
        assert data["state"] == "complete"

    def test_pdf_emailed_to_recipients(self, client, questions, monkeypatch):
        web_app.storage.update_config({"emailRecipients": "ops@broker.co.uk"})
        send = MagicMock()
        monkeypatch.setattr(web_app.mailer, "send", send)
        session_id = self._completed_session(client)

        resp = client.post(f"/api/sessions/{session_id}/pdf", headers=ALICE)
        assert resp.headers["X-Fact-Find-Email"] == "sent"
        args, kwargs = send.call_args
        assert args[0] == ["ops@broker.co.uk"]
        assert kwargs["session_id"] == session_id
        assert kwargs["pdf"].startswith(b"%PDF")
        assert "Sam Taylor" in kwargs["summary"]

    def test_email_failure_still_returns_pdf(self, client, questions):
        # Recipients configured but no SMTP host
        web_app.storage.update_config({"emailRecipients": "ops@broker.co.uk"})
        session_id = self._completed_session(client)
        resp = client.post(f"/api/sessions/{session_id}/pdf", headers=ALICE)
        assert resp.status_code == 200
        assert resp.headers["X-Fact-Find-Email"] == "failed"

    def test_pdf_generation_failure(self, client, questions):
        session_id = self._completed_session(client)
        with patch("web_app.generate_fact_find_pdf", side_effect=ExportError("PDF generation failed: boom")):
            resp = client.post(f"/api/sessions/{session_id}/pdf", headers=ALICE)
        assert resp.status_code == 502
        session = client.get(f"/api/sessions/{session_id}", headers=ALICE).get_json()["session"]
        assert session["status"] == "in-progress"

    def test_excel(self, client, questions):
        web_app.storage.update_config({"excelTemplate": "Acme Brokers"})
        session_id = self._completed_session(client)
        resp = client.get(f"/api/sessions/{session_id}/excel", headers=ALICE)

        assert resp.status_code == 200
        assert resp.headers["Content-Disposition"] == f"attachment; filename=fact-find-{session_id}.xlsx"
        ws = load_workbook(BytesIO(resp.data)).active
        assert ws["A1"].value == "Acme Brokers"
        assert ws["B5"].value == "alice@example.com"
        assert ws["A8"].value == "Do you have any dependants?"
        assert ws["B10"].value == "Sam Taylor"

    def test_exports_forbidden_for_other_users(self, client, questions):
        session_id = _new_session(client, BOB)
        assert client.post(f"/api/sessions/{session_id}/pdf", headers=ALICE).status_code == 403
        assert client.get(f"/api/sessions/{session_id}/excel", headers=ALICE).status_code == 403
