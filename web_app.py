#!/usr/bin/env python3
"""
Insurance Fact-Find - web service

Features:
- Conditional questionnaire: one question at a time, dependent questions
  shown only when their trigger answer is given
- Admin question editor API with dependency and conditional-logic checks
- PDF / Excel export of a completed fact-find, emailed to the broker
- AI assistant endpoints for the chat-style client

Run:
    python3 web_app.py

Then open: http://localhost:5001
"""

import logging
import threading
from contextlib import contextmanager
from datetime import datetime
from functools import wraps
from typing import Dict, Optional, Tuple

from flask import Flask, Response, abort, g, jsonify, render_template_string, request
from werkzeug.exceptions import HTTPException

from factfind.assistant import AssistantConfig, analyze_response, generate_ai_response, parse_messages
from factfind.auth import Identity, get_auth_provider
from factfind.config import Settings, configure_logging, load_env_file
from factfind.errors import (
    AnswerValidationError,
    AssistantError,
    AuthenticationError,
    ExportError,
    PersistenceError,
    QuestionnaireStateError,
    ValidationError,
)
from factfind.export import (
    XLSX_MIMETYPE,
    FactFindDocument,
    FactFindMailer,
    build_summary,
    generate_fact_find_excel,
    generate_fact_find_pdf,
    summary_html,
)
from factfind.llm import LLMManager
from factfind.questionnaire import DependencyPolicy, QuestionnaireController
from factfind.schemas import SessionStatus, User
from factfind.schemas.records import utcnow
from factfind.seed import seed_questions
from factfind.storage import create_storage

load_env_file()
settings = Settings.from_env()
configure_logging(settings.log_level)
logger = logging.getLogger("factfind.web")

app = Flask(__name__)

storage = create_storage(settings)
if settings.seed_questions:
    seed_questions(storage)

auth_provider = get_auth_provider(settings)
mailer = FactFindMailer(settings.email)
dependency_policy = DependencyPolicy.from_name(settings.dependency_policy)

# Created on first AI request so the service starts without provider keys
llm_manager: Optional[LLMManager] = None

# One questionnaire controller per session, plus a lock per session that
# serialises submit/navigate calls
controllers: Dict[int, QuestionnaireController] = {}
session_locks: Dict[int, threading.Lock] = {}
controllers_lock = threading.Lock()


HTML_TEMPLATE = """
<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>Insurance Fact Find</title>
    <style>
        body { font-family: -apple-system, BlinkMacSystemFont, system-ui, sans-serif;
               background: #f5f5f7; color: #1d1d1f; max-width: 640px; margin: 40px auto; padding: 0 16px; }
        .card { background: #fff; border-radius: 14px; padding: 24px; box-shadow: 0 1px 3px rgba(0,0,0,0.08); }
        h1 { font-size: 22px; }
        .question { font-size: 18px; margin-bottom: 16px; }
        .options label { display: block; padding: 8px 0; }
        input[type=text], input[type=number], input[type=date] { width: 100%; padding: 10px; font-size: 15px; }
        button { padding: 10px 18px; border: 0; border-radius: 10px; background: #0071e3; color: #fff;
                 font-size: 15px; margin-top: 16px; cursor: pointer; }
        button.secondary { background: rgba(0,0,0,0.07); color: #1d1d1f; }
        .error { color: #c62828; margin-top: 12px; }
        .hidden { display: none; }
    </style>
</head>
<body>
<div class="card">
    <h1>Insurance Fact Find</h1>
    <div id="signin">
        <p>Enter your access token to begin.</p>
        <input type="text" id="token" placeholder="Token">
        <button onclick="begin()">Start</button>
    </div>
    <div id="questionnaire" class="hidden">
        <div class="question" id="question-text"></div>
        <div id="answer-area"></div>
        <button class="secondary" id="prev-btn" onclick="act('previous')">Back</button>
        <button onclick="submitAnswer()">Next</button>
    </div>
    <div id="complete" class="hidden">
        <p>Thank you, your fact find is complete.</p>
        <button onclick="downloadPdf()">Download PDF</button>
    </div>
    <div class="error" id="error"></div>
</div>
<script>
let token = null, sessionId = null, current = null;

function headers() {
    return {'Content-Type': 'application/json', 'Authorization': 'Bearer ' + token};
}

async function call(method, url, body) {
    const resp = await fetch(url, {method, headers: headers(), body: body ? JSON.stringify(body) : undefined});
    const data = await resp.json().catch(() => ({}));
    if (!resp.ok) throw new Error(data.error || ('HTTP ' + resp.status));
    return data;
}

async function begin() {
    token = document.getElementById('token').value.trim();
    if (!token) return;
    try {
        const session = await call('POST', '/api/sessions', {});
        sessionId = session.id;
        render(await call('POST', `/api/sessions/${sessionId}/questionnaire/start`));
        document.getElementById('signin').classList.add('hidden');
    } catch (e) { showError(e); }
}

function render(state) {
    document.getElementById('error').textContent = '';
    if (state.state === 'complete') {
        document.getElementById('questionnaire').classList.add('hidden');
        document.getElementById('complete').classList.remove('hidden');
        return;
    }
    current = state.question;
    document.getElementById('questionnaire').classList.remove('hidden');
    document.getElementById('question-text').textContent = current.text;
    document.getElementById('prev-btn').disabled = !state.canGoPrevious;
    const area = document.getElementById('answer-area');
    area.innerHTML = '';
    if (['multiple-choice', 'yes/no', 'checkbox-multiple'].includes(current.type)) {
        const kind = current.type === 'checkbox-multiple' ? 'checkbox' : 'radio';
        const box = document.createElement('div');
        box.className = 'options';
        (current.options || []).forEach(opt => {
            const label = document.createElement('label');
            const input = document.createElement('input');
            input.type = kind; input.name = 'answer'; input.value = opt;
            label.appendChild(input);
            label.appendChild(document.createTextNode(' ' + opt));
            box.appendChild(label);
        });
        area.appendChild(box);
    } else {
        const input = document.createElement('input');
        input.id = 'answer-input';
        input.type = current.type === 'number' ? 'number' : (current.type === 'date' ? 'date' : 'text');
        input.placeholder = current.placeholder || '';
        area.appendChild(input);
    }
}

function readAnswer() {
    if (current.type === 'checkbox-multiple') {
        return [...document.querySelectorAll('input[name=answer]:checked')].map(i => i.value);
    }
    if (['multiple-choice', 'yes/no'].includes(current.type)) {
        const checked = document.querySelector('input[name=answer]:checked');
        return checked ? checked.value : '';
    }
    return document.getElementById('answer-input').value;
}

async function submitAnswer() {
    try {
        const result = await call('POST', `/api/sessions/${sessionId}/questionnaire/submit`, {value: readAnswer()});
        render(result.questionnaire);
        if (!result.saved) showError(new Error('Your answer was not saved yet: ' + result.persistenceError));
    } catch (e) { showError(e); }
}

async function act(action) {
    try { render(await call('POST', `/api/sessions/${sessionId}/questionnaire/${action}`)); }
    catch (e) { showError(e); }
}

async function downloadPdf() {
    const resp = await fetch(`/api/sessions/${sessionId}/pdf`, {method: 'POST', headers: headers()});
    if (!resp.ok) { showError(new Error('PDF generation failed')); return; }
    const url = URL.createObjectURL(await resp.blob());
    const a = document.createElement('a');
    a.href = url; a.download = `fact-find-${sessionId}.pdf`; a.click();
    URL.revokeObjectURL(url);
}

function showError(e) { document.getElementById('error').textContent = e.message; }
</script>
</body>
</html>
"""


# =============================================================================
# ERRORS
# =============================================================================

@app.errorhandler(ValidationError)
def handle_validation_error(e):
    body = {'error': e.message}
    if e.field:
        body['field'] = e.field
    return jsonify(body), 400


@app.errorhandler(AnswerValidationError)
def handle_answer_error(e):
    return jsonify({'error': e.message, 'questionId': e.question_id}), 400


@app.errorhandler(AuthenticationError)
def handle_auth_error(e):
    return jsonify({'error': str(e)}), 401


@app.errorhandler(QuestionnaireStateError)
def handle_state_error(e):
    return jsonify({'error': str(e)}), 409


@app.errorhandler(PersistenceError)
def handle_persistence_error(e):
    logger.error("Storage failure on %s: %s", request.path, e)
    return jsonify({'error': e.message, 'retryable': e.retryable}), 502


@app.errorhandler(AssistantError)
def handle_assistant_error(e):
    logger.error("AI assistant failure on %s: %s", request.path, e)
    return jsonify({'error': str(e)}), 502


@app.errorhandler(ExportError)
def handle_export_error(e):
    return jsonify({'error': str(e)}), 502


@app.errorhandler(HTTPException)
def handle_http_error(e):
    return jsonify({'error': e.description}), e.code


@app.errorhandler(Exception)
def handle_unexpected_error(e):
    logger.exception("Unhandled error on %s", request.path)
    return jsonify({'error': 'Internal server error'}), 500


# =============================================================================
# AUTH
# =============================================================================

def _bearer_token() -> Optional[str]:
    header = request.headers.get('Authorization', '')
    if not header.startswith('Bearer '):
        return None
    return header[len('Bearer '):].strip() or None


def _local_user(identity: Identity) -> Tuple[User, bool]:
    """Find or create the stored user for a verified identity."""
    user = storage.get_user_by_external_id(identity.external_id)
    if user is not None:
        return user, False
    if storage.get_user_by_email(identity.email) is not None:
        abort(409, description='Email already registered to another account')
    user = storage.create_user(
        external_id=identity.external_id,
        email=identity.email,
        name=identity.name,
        is_admin=identity.is_admin,
    )
    logger.info("Registered user %s (%s)", user.id, user.email)
    return user, True


def require_auth(view):
    @wraps(view)
    def wrapper(*args, **kwargs):
        token = _bearer_token()
        if not token:
            return jsonify({'error': 'No session token provided'}), 401
        identity = auth_provider.sign_in(token)
        g.user, g.user_created = _local_user(identity)
        g.is_admin = identity.is_admin or g.user.is_admin
        return view(*args, **kwargs)
    return wrapper


def require_admin(view):
    @require_auth
    @wraps(view)
    def wrapper(*args, **kwargs):
        if not g.is_admin:
            return jsonify({'error': 'Admin access required'}), 403
        return view(*args, **kwargs)
    return wrapper


def _json_body() -> dict:
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        abort(400, description='Request body must be a JSON object')
    return data


def _user_dict(user: User) -> dict:
    data = user.to_dict()
    data['isAdmin'] = g.is_admin
    return data


def _owned_session(session_id: int):
    """Load a session the caller may access (owner or admin)."""
    session = storage.get_session(session_id)
    if session is None:
        abort(404, description='Session not found')
    if not g.is_admin and session.user_id != g.user.id:
        abort(403, description='Forbidden')
    return session


# =============================================================================
# QUESTIONNAIRE STATE
# =============================================================================

def _controller_for(session_id: int) -> QuestionnaireController:
    """Cached controller, or one rebuilt from the store (snapshot of questions)."""
    with controllers_lock:
        controller = controllers.get(session_id)
    if controller is not None:
        return controller

    # Store round-trips happen outside the global lock
    controller = QuestionnaireController.resume(
        storage.list_questions(),
        storage.list_answers(session_id),
        session_id=session_id,
        save_answer=storage.save_answer,
        policy=dependency_policy,
    )
    with controllers_lock:
        return controllers.setdefault(session_id, controller)


def _forget_session(session_id: int) -> None:
    """Drop the cached controller and lock of a finished session."""
    with controllers_lock:
        controllers.pop(session_id, None)
        session_locks.pop(session_id, None)


@contextmanager
def _session_action(session_id: int):
    """Run one questionnaire action; refuse overlapping ones with 409."""
    with controllers_lock:
        lock = session_locks.setdefault(session_id, threading.Lock())
    if not lock.acquire(blocking=False):
        abort(409, description='Another action on this session is still in progress')
    try:
        yield _controller_for(session_id)
    finally:
        lock.release()


def _get_llm_manager() -> LLMManager:
    global llm_manager
    if llm_manager is None:
        llm_manager = LLMManager()
    return llm_manager


# =============================================================================
# ROUTES
# =============================================================================

@app.route('/')
def index():
    return render_template_string(HTML_TEMPLATE)


@app.route('/api/health', methods=['GET'])
def health():
    return jsonify({
        'status': 'ok',
        'auth': auth_provider.name,
        'storage': type(storage).__name__,
        # Providers are reported once the first AI request has created them
        'llm': llm_manager.get_status() if llm_manager is not None else {},
    })


# -- users --------------------------------------------------------------------

@app.route('/api/users', methods=['POST'])
@require_auth
def create_user():
    """Register the signed-in identity (idempotent)."""
    return jsonify(_user_dict(g.user)), 201 if g.user_created else 200


@app.route('/api/me', methods=['GET'])
@require_auth
def me():
    return jsonify(_user_dict(g.user))


# -- questions ----------------------------------------------------------------

@app.route('/api/questions', methods=['GET'])
def list_questions():
    return jsonify([q.to_dict() for q in storage.list_questions()])


@app.route('/api/questions', methods=['POST'])
@require_admin
def create_question():
    question = storage.create_question(_json_body())
    logger.info("Question %s created by user %s", question.id, g.user.id)
    return jsonify(question.to_dict()), 201


@app.route('/api/questions/<int:question_id>', methods=['PUT'])
@require_admin
def update_question(question_id):
    question = storage.update_question(question_id, _json_body())
    if question is None:
        return jsonify({'error': 'Question not found'}), 404
    return jsonify(question.to_dict())


@app.route('/api/questions/<int:question_id>', methods=['DELETE'])
@require_admin
def delete_question(question_id):
    if not storage.delete_question(question_id):
        return jsonify({'error': 'Question not found'}), 404
    logger.info("Question %s deleted by user %s", question_id, g.user.id)
    return '', 204


# -- sessions -----------------------------------------------------------------

@app.route('/api/sessions', methods=['GET'])
@require_auth
def list_sessions():
    sessions = storage.list_sessions() if g.is_admin else storage.list_user_sessions(g.user.id)
    return jsonify([s.to_dict() for s in sessions])


@app.route('/api/sessions', methods=['POST'])
@require_auth
def create_session():
    data = request.get_json(silent=True) or {}
    signature = data.get('signatureData') if isinstance(data, dict) else None
    if signature is not None and not isinstance(signature, str):
        return jsonify({'error': 'signatureData must be a string'}), 400
    session = storage.create_session(g.user.id, signature_data=signature)
    return jsonify(session.to_dict()), 201


@app.route('/api/sessions/<int:session_id>', methods=['GET'])
@require_auth
def get_session(session_id):
    session = _owned_session(session_id)
    answers = storage.list_answers(session_id)
    return jsonify({'session': session.to_dict(), 'answers': [a.to_dict() for a in answers]})


@app.route('/api/sessions/<int:session_id>', methods=['PUT'])
@require_auth
def update_session(session_id):
    _owned_session(session_id)
    session = storage.update_session(session_id, _json_body())
    if session is None:
        return jsonify({'error': 'Session not found'}), 404
    return jsonify(session.to_dict())


@app.route('/api/sessions/<int:session_id>/answers', methods=['POST'])
@require_auth
def save_answer(session_id):
    """Store a raw answer (used by the chat client, which shapes its own input)."""
    _owned_session(session_id)
    data = _json_body()
    question_id, value = data.get('questionId'), data.get('value')
    if not isinstance(question_id, int) or isinstance(question_id, bool):
        return jsonify({'error': 'questionId must be an integer'}), 400
    if not isinstance(value, str):
        return jsonify({'error': 'value must be a string'}), 400

    with _session_action(session_id) as controller:
        answer = storage.save_answer(session_id, question_id, value)
        controller.tracker.record_answer(question_id, value)
    return jsonify(answer.to_dict()), 201


# -- questionnaire ------------------------------------------------------------

@app.route('/api/sessions/<int:session_id>/questionnaire', methods=['GET'])
@require_auth
def questionnaire_state(session_id):
    _owned_session(session_id)
    with _session_action(session_id) as controller:
        return jsonify(controller.to_dict())


@app.route('/api/sessions/<int:session_id>/questionnaire/start', methods=['POST'])
@require_auth
def questionnaire_start(session_id):
    _owned_session(session_id)
    with _session_action(session_id) as controller:
        controller.start()
        return jsonify(controller.to_dict())


@app.route('/api/sessions/<int:session_id>/questionnaire/submit', methods=['POST'])
@require_auth
def questionnaire_submit(session_id):
    _owned_session(session_id)
    data = _json_body()
    if 'value' not in data:
        return jsonify({'error': 'No value provided'}), 400

    with _session_action(session_id) as controller:
        result = controller.submit(data['value'])
        body = {
            'answer': result.answer.to_dict(),
            'saved': result.persisted,
            'persistenceError': result.persistence_error.message if result.persistence_error else None,
            'ruleApplied': result.rule_applied,
            'questionnaire': controller.to_dict(),
        }
    if result.persistence_error:
        logger.warning("Session %s: answer kept locally, save failed", session_id)
    return jsonify(body)


@app.route('/api/sessions/<int:session_id>/questionnaire/previous', methods=['POST'])
@require_auth
def questionnaire_previous(session_id):
    _owned_session(session_id)
    with _session_action(session_id) as controller:
        controller.go_previous()
        return jsonify(controller.to_dict())


@app.route('/api/sessions/<int:session_id>/questionnaire/next', methods=['POST'])
@require_auth
def questionnaire_next(session_id):
    _owned_session(session_id)
    with _session_action(session_id) as controller:
        controller.go_next()
        return jsonify(controller.to_dict())


# -- AI assistant -------------------------------------------------------------

@app.route('/api/ai/generate', methods=['POST'])
@require_auth
def ai_generate():
    data = _json_body()
    try:
        messages = parse_messages(data.get('messages'))
    except ValueError as e:
        return jsonify({'error': str(e)}), 400

    config = AssistantConfig.from_app_config(storage.get_config())
    return jsonify(generate_ai_response(messages, config, _get_llm_manager()))


@app.route('/api/ai/analyze', methods=['POST'])
@require_auth
def ai_analyze():
    data = _json_body()
    question, answer = data.get('question'), data.get('answer')
    if not isinstance(question, str) or not isinstance(answer, str):
        return jsonify({'error': 'question and answer must be strings'}), 400

    config = storage.get_config()
    return jsonify(analyze_response(question, answer, config.ai_prompt, _get_llm_manager(),
                                    model=config.ai_model))


# -- config -------------------------------------------------------------------

@app.route('/api/config', methods=['GET'])
@require_admin
def get_config():
    return jsonify(storage.get_config().to_dict())


@app.route('/api/config', methods=['PUT'])
@require_admin
def update_config():
    return jsonify(storage.update_config(_json_body()).to_dict())


# -- exports ------------------------------------------------------------------

def _fact_find_document(session, completed_at: Optional[datetime] = None) -> FactFindDocument:
    owner = storage.get_user(session.user_id)
    if owner is None:
        abort(404, description='Session user not found')
    answers = storage.list_answers(session.id)
    return FactFindDocument(
        session_id=session.id,
        items=build_summary(storage.list_questions(), answers),
        client_name=owner.name or owner.email,
        client_email=owner.email,
        completed_at=completed_at or session.completed_at,
        signature_data=session.signature_data,
    )


@app.route('/api/sessions/<int:session_id>/pdf', methods=['POST'])
@require_auth
def session_pdf(session_id):
    """Render the PDF, mark the session completed and email it when configured."""
    session = _owned_session(session_id)
    completed_at = utcnow()
    document = _fact_find_document(session, completed_at=completed_at)
    pdf = generate_fact_find_pdf(document)

    storage.update_session(session_id, {'completedAt': completed_at, 'status': SessionStatus.COMPLETED.value})
    _forget_session(session_id)

    email_status = 'skipped'
    config = storage.get_config()
    if config.recipient_list:
        try:
            mailer.send(
                config.recipient_list,
                user_name=document.client_name,
                session_id=session_id,
                summary=summary_html(document.items),
                pdf=pdf,
                template=config.email_template or None,
            )
            email_status = 'sent'
        except ExportError as e:
            logger.warning("Session %s: PDF generated but email not sent: %s", session_id, e)
            email_status = 'failed'

    response = Response(pdf, mimetype='application/pdf')
    response.headers['Content-Disposition'] = f'attachment; filename=fact-find-{session_id}.pdf'
    response.headers['X-Fact-Find-Email'] = email_status
    return response


@app.route('/api/sessions/<int:session_id>/excel', methods=['GET'])
@require_auth
def session_excel(session_id):
    session = _owned_session(session_id)
    document = _fact_find_document(session)
    workbook = generate_fact_find_excel(document, title=storage.get_config().excel_template)

    response = Response(workbook, mimetype=XLSX_MIMETYPE)
    response.headers['Content-Disposition'] = f'attachment; filename=fact-find-{session_id}.xlsx'
    return response


if __name__ == '__main__':
    print("""
╔═══════════════════════════════════════════════════════════════╗
║              INSURANCE FACT-FIND QUESTIONNAIRE                 ║
╠═══════════════════════════════════════════════════════════════╣
║  Conditional questions: dependants, health, income, cover      ║
║  Exports: PDF (emailed to broker) and Excel                    ║
║  Admin API: questions, AI assistant, email and Excel settings  ║
╚═══════════════════════════════════════════════════════════════╝

Starting web server...

Open your browser to: http://localhost:5001

Press Ctrl+C to stop the server.
    """)

    app.run(debug=True, host='0.0.0.0', port=5001)
