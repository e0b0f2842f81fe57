"""
SQLAlchemy storage backend.

Postgres in production (``DATABASE_URL``), SQLite in tests. Every public
method runs in its own transaction; SQLAlchemy errors are mapped to
PersistenceError (timeouts and dropped connections are retryable).
"""

import logging
from contextlib import contextmanager
from typing import Any, Dict, Generator, List, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    create_engine,
)
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session as DBSession
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from ..config import DEFAULT_DB_TIMEOUT
from ..errors import ConditionalLogicError, FactFindError, PersistenceError
from ..schemas.conditional_logic import parse_conditional_logic
from ..schemas.questions import Dependency, Question, QuestionType
from ..schemas.records import AppConfig, Session, SessionStatus, StoredAnswer, User, utcnow
from .base import (
    Storage,
    finalize_question,
    normalize_config_update,
    normalize_session_update,
    prepare_question,
)

logger = logging.getLogger(__name__)

Base = declarative_base()


# =============================================================================
# TABLES
# =============================================================================

class UserRow(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    external_id = Column(String(255), unique=True, nullable=False, index=True)
    email = Column(String(255), unique=True, nullable=False)
    name = Column(String(255), nullable=True)
    is_admin = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    def to_record(self) -> User:
        return User(id=self.id, external_id=self.external_id, email=self.email,
                    name=self.name, is_admin=bool(self.is_admin), created_at=self.created_at)


class QuestionRow(Base):
    __tablename__ = "questions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    text = Column(Text, nullable=False)
    type = Column(String(32), nullable=False)
    options = Column(JSON, nullable=True)
    order = Column(Integer, nullable=False)
    depends_on = Column(JSON, nullable=True)
    placeholder = Column(Text, nullable=True)
    prefix = Column(String(32), nullable=True)
    suffix = Column(String(32), nullable=True)
    conditional_logic = Column(JSON, nullable=True)
    category = Column(String(100), nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    def apply(self, fields: Dict[str, Any]) -> None:
        self.text = fields["text"]
        self.type = fields["type"].value
        self.options = fields["options"]
        self.order = fields["order"]
        self.depends_on = fields["depends_on"].to_dict() if fields["depends_on"] else None
        self.placeholder = fields["placeholder"]
        self.prefix = fields["prefix"]
        self.suffix = fields["suffix"]
        self.category = fields["category"]

    def _logic(self):
        try:
            return parse_conditional_logic(self.conditional_logic, owner_id=self.id)
        except ConditionalLogicError as e:
            logger.warning("Ignoring unreadable conditional logic on Q%s: %s", self.id, e)
            return None

    def to_record(self) -> Question:
        return Question(
            id=self.id,
            text=self.text,
            type=QuestionType(self.type),
            order=self.order,
            options=list(self.options) if self.options is not None else None,
            depends_on=Dependency.from_dict(self.depends_on) if self.depends_on else None,
            placeholder=self.placeholder,
            prefix=self.prefix,
            suffix=self.suffix,
            category=self.category,
            conditional_logic=self._logic(),
            created_at=self.created_at,
            updated_at=self.updated_at,
        )


class SessionRow(Base):
    __tablename__ = "sessions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    status = Column(String(20), default=SessionStatus.IN_PROGRESS.value, nullable=False)
    started_at = Column(DateTime, default=utcnow, nullable=False)
    completed_at = Column(DateTime, nullable=True)
    signature_data = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    def to_record(self) -> Session:
        return Session(id=self.id, user_id=self.user_id, status=SessionStatus(self.status),
                       started_at=self.started_at, completed_at=self.completed_at,
                       signature_data=self.signature_data, created_at=self.created_at)


class AnswerRow(Base):
    __tablename__ = "answers"
    __table_args__ = (UniqueConstraint("session_id", "question_id", name="uq_answers_session_question"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    session_id = Column(Integer, ForeignKey("sessions.id"), nullable=False, index=True)
    # No foreign key: answers outlive deleted questions
    question_id = Column(Integer, nullable=False)
    value = Column(Text, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    def to_record(self) -> StoredAnswer:
        return StoredAnswer(id=self.id, session_id=self.session_id, question_id=self.question_id,
                            value=self.value, created_at=self.created_at)


class ConfigRow(Base):
    __tablename__ = "configs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    ai_prompt = Column(Text, nullable=True)
    ai_model = Column(String(100), nullable=True)
    ai_temperature = Column(String(10), nullable=True)
    email_template = Column(Text, nullable=True)
    email_recipients = Column(Text, nullable=True)
    excel_template = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    def to_record(self) -> AppConfig:
        defaults = AppConfig()
        return AppConfig(
            ai_prompt=self.ai_prompt if self.ai_prompt is not None else defaults.ai_prompt,
            ai_model=self.ai_model or defaults.ai_model,
            ai_temperature=self.ai_temperature or defaults.ai_temperature,
            email_template=self.email_template or "",
            email_recipients=self.email_recipients or "",
            excel_template=self.excel_template or "",
            created_at=self.created_at,
            updated_at=self.updated_at,
        )


# =============================================================================
# ENGINE
# =============================================================================

def create_storage_engine(database_url: str, timeout: float = DEFAULT_DB_TIMEOUT, echo: bool = False):
    """
    Create an engine with bounded connect and statement timeouts.

    ``sqlite://`` (in-memory) uses a single shared connection so every
    session sees the same database.
    """
    if database_url.startswith("sqlite"):
        kwargs: Dict[str, Any] = {"connect_args": {"timeout": timeout, "check_same_thread": False}}
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
        return create_engine(database_url, echo=echo, **kwargs)

    if database_url.startswith("postgres://"):
        database_url = "postgresql://" + database_url[len("postgres://"):]
    return create_engine(
        database_url,
        echo=echo,
        pool_pre_ping=True,
        pool_timeout=timeout,
        connect_args={
            "connect_timeout": max(1, int(timeout)),
            "options": f"-c statement_timeout={int(timeout * 1000)}",
        },
    )


class SQLStorage(Storage):
    """Relational storage over SQLAlchemy."""

    def __init__(self, database_url: str, timeout: float = DEFAULT_DB_TIMEOUT,
                 create_tables: bool = True, echo: bool = False):
        self.engine = create_storage_engine(database_url, timeout=timeout, echo=echo)
        self._session_factory = sessionmaker(
            bind=self.engine,
            expire_on_commit=False,
            autoflush=False,
        )
        if create_tables:
            self.create_tables()

    def create_tables(self) -> None:
        try:
            Base.metadata.create_all(self.engine)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Could not create tables: {e}") from e

    def close(self) -> None:
        self.engine.dispose()

    @contextmanager
    def _session(self) -> Generator[DBSession, None, None]:
        """Transaction scope: commit on success, roll back and map errors on failure."""
        db = self._session_factory()
        try:
            yield db
            db.commit()
        except FactFindError:
            db.rollback()
            raise
        except OperationalError as e:
            db.rollback()
            logger.warning("Database unavailable: %s", e)
            raise PersistenceError(f"Database unavailable: {e.orig}", retryable=True) from e
        except SQLAlchemyError as e:
            db.rollback()
            logger.error("Database error: %s", e)
            raise PersistenceError(f"Database error: {e}", retryable=False) from e
        finally:
            db.close()

    # -- users ---------------------------------------------------------------

    def get_user(self, user_id: int) -> Optional[User]:
        with self._session() as db:
            row = db.get(UserRow, user_id)
            return row.to_record() if row else None

    def get_user_by_external_id(self, external_id: str) -> Optional[User]:
        with self._session() as db:
            row = db.query(UserRow).filter(UserRow.external_id == external_id).first()
            return row.to_record() if row else None

    def get_user_by_email(self, email: str) -> Optional[User]:
        with self._session() as db:
            row = db.query(UserRow).filter(UserRow.email == email).first()
            return row.to_record() if row else None

    def create_user(self, external_id: str, email: str, name: Optional[str] = None,
                    is_admin: bool = False) -> User:
        with self._session() as db:
            row = UserRow(external_id=external_id, email=email, name=name, is_admin=is_admin)
            db.add(row)
            db.flush()
            logger.info("Created user %s (%s)", row.id, email)
            return row.to_record()

    # -- questions -----------------------------------------------------------

    def list_questions(self) -> List[Question]:
        with self._session() as db:
            rows = db.query(QuestionRow).order_by(QuestionRow.order, QuestionRow.id).all()
            return [row.to_record() for row in rows]

    def get_question(self, question_id: int) -> Optional[Question]:
        with self._session() as db:
            row = db.get(QuestionRow, question_id)
            return row.to_record() if row else None

    def _store_question(self, db: DBSession, row: QuestionRow, fields: Dict[str, Any]) -> Question:
        row.apply(fields)
        db.flush()
        question = Question(id=row.id, **fields)
        others = [r.to_record() for r in db.query(QuestionRow).filter(QuestionRow.id != row.id).all()]
        finalize_question(question, others)
        row.conditional_logic = question.conditional_logic.to_dict() if question.conditional_logic else None
        db.flush()
        return row.to_record()

    def create_question(self, data: Dict[str, Any]) -> Question:
        fields = prepare_question(data)
        with self._session() as db:
            row = QuestionRow()
            db.add(row)
            return self._store_question(db, row, fields)

    def update_question(self, question_id: int, partial: Dict[str, Any]) -> Optional[Question]:
        with self._session() as db:
            row = db.get(QuestionRow, question_id)
            if row is None:
                return None
            fields = prepare_question(partial, existing=row.to_record())
            return self._store_question(db, row, fields)

    def delete_question(self, question_id: int) -> bool:
        with self._session() as db:
            row = db.get(QuestionRow, question_id)
            if row is None:
                return False
            db.delete(row)
            return True

    # -- sessions ------------------------------------------------------------

    def list_sessions(self) -> List[Session]:
        with self._session() as db:
            return [row.to_record() for row in db.query(SessionRow).order_by(SessionRow.id).all()]

    def list_user_sessions(self, user_id: int) -> List[Session]:
        with self._session() as db:
            rows = db.query(SessionRow).filter(SessionRow.user_id == user_id).order_by(SessionRow.id).all()
            return [row.to_record() for row in rows]

    def get_session(self, session_id: int) -> Optional[Session]:
        with self._session() as db:
            row = db.get(SessionRow, session_id)
            return row.to_record() if row else None

    def create_session(self, user_id: int, signature_data: Optional[str] = None) -> Session:
        with self._session() as db:
            row = SessionRow(user_id=user_id, signature_data=signature_data,
                             status=SessionStatus.IN_PROGRESS.value)
            db.add(row)
            db.flush()
            return row.to_record()

    def update_session(self, session_id: int, partial: Dict[str, Any]) -> Optional[Session]:
        fields = normalize_session_update(partial)
        with self._session() as db:
            row = db.get(SessionRow, session_id)
            if row is None:
                return None
            for name, value in fields.items():
                setattr(row, name, value.value if isinstance(value, SessionStatus) else value)
            db.flush()
            return row.to_record()

    # -- answers -------------------------------------------------------------

    def save_answer(self, session_id: int, question_id: int, value: str) -> StoredAnswer:
        try:
            return self._upsert_answer(session_id, question_id, value)
        except PersistenceError as e:
            if not isinstance(e.__cause__, IntegrityError):
                raise
            # Lost an insert race on (session, question); the row exists now
            return self._upsert_answer(session_id, question_id, value)

    def _upsert_answer(self, session_id: int, question_id: int, value: str) -> StoredAnswer:
        with self._session() as db:
            row = (
                db.query(AnswerRow)
                .filter(AnswerRow.session_id == session_id, AnswerRow.question_id == question_id)
                .first()
            )
            if row is None:
                row = AnswerRow(session_id=session_id, question_id=question_id, value=value)
                db.add(row)
            else:
                row.value = value
            db.flush()
            return row.to_record()

    def list_answers(self, session_id: int) -> List[StoredAnswer]:
        with self._session() as db:
            rows = db.query(AnswerRow).filter(AnswerRow.session_id == session_id).order_by(AnswerRow.id).all()
            return [row.to_record() for row in rows]

    # -- config --------------------------------------------------------------

    def _config_row(self, db: DBSession) -> ConfigRow:
        row = db.query(ConfigRow).order_by(ConfigRow.id).first()
        if row is None:
            defaults = AppConfig()
            row = ConfigRow(
                ai_prompt=defaults.ai_prompt,
                ai_model=defaults.ai_model,
                ai_temperature=defaults.ai_temperature,
                email_template="",
                email_recipients="",
                excel_template="",
            )
            db.add(row)
            db.flush()
        return row

    def get_config(self) -> AppConfig:
        with self._session() as db:
            return self._config_row(db).to_record()

    def update_config(self, partial: Dict[str, Any]) -> AppConfig:
        fields = normalize_config_update(partial)
        with self._session() as db:
            row = self._config_row(db)
            for name, value in fields.items():
                setattr(row, name, value)
            row.updated_at = utcnow()
            db.flush()
            return row.to_record()
