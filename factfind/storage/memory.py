"""
In-process storage, used when no DATABASE_URL is configured and in tests.
"""

import copy
import itertools
import logging
import threading
from dataclasses import replace
from typing import Any, Dict, List, Optional, Tuple

from ..schemas.questions import Question, sort_questions
from ..schemas.records import AppConfig, Session, StoredAnswer, User, utcnow
from .base import (
    Storage,
    finalize_question,
    normalize_config_update,
    normalize_session_update,
    prepare_question,
)

logger = logging.getLogger(__name__)


class MemoryStorage(Storage):
    """Dict-backed storage guarded by a single lock. Returned records are copies."""

    def __init__(self):
        self._lock = threading.RLock()
        self._users: Dict[int, User] = {}
        self._questions: Dict[int, Question] = {}
        self._sessions: Dict[int, Session] = {}
        self._answers: Dict[Tuple[int, int], StoredAnswer] = {}
        self._config = AppConfig()

        self._user_ids = itertools.count(1)
        self._question_ids = itertools.count(1)
        self._session_ids = itertools.count(1)
        self._answer_ids = itertools.count(1)

    # -- users ---------------------------------------------------------------

    def get_user(self, user_id: int) -> Optional[User]:
        with self._lock:
            user = self._users.get(user_id)
            return copy.copy(user) if user else None

    def get_user_by_external_id(self, external_id: str) -> Optional[User]:
        with self._lock:
            for user in self._users.values():
                if user.external_id == external_id:
                    return copy.copy(user)
        return None

    def get_user_by_email(self, email: str) -> Optional[User]:
        with self._lock:
            for user in self._users.values():
                if user.email.lower() == email.lower():
                    return copy.copy(user)
        return None

    def create_user(self, external_id: str, email: str, name: Optional[str] = None,
                    is_admin: bool = False) -> User:
        with self._lock:
            user = User(id=next(self._user_ids), external_id=external_id, email=email,
                        name=name, is_admin=is_admin)
            self._users[user.id] = user
            logger.info("Created user %s (%s)", user.id, email)
            return copy.copy(user)

    # -- questions -----------------------------------------------------------

    def list_questions(self) -> List[Question]:
        with self._lock:
            return [copy.deepcopy(q) for q in sort_questions(list(self._questions.values()))]

    def get_question(self, question_id: int) -> Optional[Question]:
        with self._lock:
            question = self._questions.get(question_id)
            return copy.deepcopy(question) if question else None

    def create_question(self, data: Dict[str, Any]) -> Question:
        fields = prepare_question(data)
        with self._lock:
            now = utcnow()
            question = Question(id=next(self._question_ids), created_at=now, updated_at=now, **fields)
            finalize_question(question, list(self._questions.values()))
            self._questions[question.id] = question
            return copy.deepcopy(question)

    def update_question(self, question_id: int, partial: Dict[str, Any]) -> Optional[Question]:
        with self._lock:
            existing = self._questions.get(question_id)
            if existing is None:
                return None
            fields = prepare_question(partial, existing=existing)
            updated = replace(existing, updated_at=utcnow(), **fields)
            others = [q for qid, q in self._questions.items() if qid != question_id]
            finalize_question(updated, others)
            self._questions[question_id] = updated
            return copy.deepcopy(updated)

    def delete_question(self, question_id: int) -> bool:
        with self._lock:
            return self._questions.pop(question_id, None) is not None

    # -- sessions ------------------------------------------------------------

    def list_sessions(self) -> List[Session]:
        with self._lock:
            return [copy.copy(s) for s in self._sessions.values()]

    def list_user_sessions(self, user_id: int) -> List[Session]:
        with self._lock:
            return [copy.copy(s) for s in self._sessions.values() if s.user_id == user_id]

    def get_session(self, session_id: int) -> Optional[Session]:
        with self._lock:
            session = self._sessions.get(session_id)
            return copy.copy(session) if session else None

    def create_session(self, user_id: int, signature_data: Optional[str] = None) -> Session:
        with self._lock:
            session = Session(id=next(self._session_ids), user_id=user_id,
                              signature_data=signature_data)
            self._sessions[session.id] = session
            return copy.copy(session)

    def update_session(self, session_id: int, partial: Dict[str, Any]) -> Optional[Session]:
        fields = normalize_session_update(partial)
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                return None
            for name, value in fields.items():
                setattr(session, name, value)
            return copy.copy(session)

    # -- answers -------------------------------------------------------------

    def save_answer(self, session_id: int, question_id: int, value: str) -> StoredAnswer:
        with self._lock:
            key = (session_id, question_id)
            answer = self._answers.get(key)
            if answer is None:
                answer = StoredAnswer(id=next(self._answer_ids), session_id=session_id,
                                      question_id=question_id, value=value)
                self._answers[key] = answer
            else:
                answer.value = value
            return copy.copy(answer)

    def list_answers(self, session_id: int) -> List[StoredAnswer]:
        with self._lock:
            answers = [a for (sid, _), a in self._answers.items() if sid == session_id]
            return [copy.copy(a) for a in sorted(answers, key=lambda a: a.id)]

    # -- config --------------------------------------------------------------

    def get_config(self) -> AppConfig:
        with self._lock:
            return copy.copy(self._config)

    def update_config(self, partial: Dict[str, Any]) -> AppConfig:
        fields = normalize_config_update(partial)
        with self._lock:
            self._config = replace(self._config, updated_at=utcnow(), **fields)
            return copy.copy(self._config)
