import enum
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import relationship

from .database import Base


def utcnow():
    return datetime.now(timezone.utc)


class QuestionType(str, enum.Enum):
    MULTIPLE_CHOICE = "multiple_choice"
    TRUE_FALSE = "true_false"
    SHORT_ANSWER = "short_answer"


class SessionStatus(str, enum.Enum):
    ACTIVE = "active"
    COMPLETED = "completed"


class ResponseOutcome(str, enum.Enum):
    MATCHED = "matched"
    UNMATCHED = "unmatched"
    NO_ANSWER = "no_answer"


class Quiz(Base):
    __tablename__ = "quizzes"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String, nullable=False)
    description = Column(String, nullable=True)
    owner_id = Column(String, index=True, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    questions = relationship(
        "Question",
        back_populates="quiz",
        cascade="all, delete-orphan",
        order_by="Question.order_index",
    )


class Question(Base):
    __tablename__ = "questions"
    __table_args__ = (UniqueConstraint("quiz_id", "order_index", name="uq_question_order"),)

    id = Column(Integer, primary_key=True, index=True)
    quiz_id = Column(Integer, ForeignKey("quizzes.id"), index=True, nullable=False)
    text = Column(String, nullable=False)
    image_url = Column(String, nullable=True)
    time_limit_seconds = Column(Integer, default=30)
    question_type = Column(String, default=QuestionType.MULTIPLE_CHOICE.value)
    order_index = Column(Integer, nullable=False)

    quiz = relationship("Quiz", back_populates="questions")
    answers = relationship(
        "Answer",
        back_populates="question",
        cascade="all, delete-orphan",
        order_by="Answer.id",
    )


class Answer(Base):
    __tablename__ = "answers"

    id = Column(Integer, primary_key=True, index=True)
    question_id = Column(Integer, ForeignKey("questions.id"), index=True, nullable=False)
    text = Column(String, nullable=False)
    is_correct = Column(Boolean, default=False)

    question = relationship("Question", back_populates="answers")


class QuizSession(Base):
    __tablename__ = "sessions"
    # Join codes only need to be unique among sessions still running
    __table_args__ = (
        Index(
            "uq_active_session_code",
            "code",
            unique=True,
            sqlite_where=text("status = 'active'"),
            postgresql_where=text("status = 'active'"),
        ),
    )

    id = Column(Integer, primary_key=True, index=True)
    quiz_id = Column(Integer, ForeignKey("quizzes.id"), index=True, nullable=False)
    host_id = Column(String, index=True, nullable=False)
    code = Column(String(6), index=True, nullable=False)
    status = Column(String, default=SessionStatus.ACTIVE.value, index=True)
    current_question_id = Column(Integer, ForeignKey("questions.id"), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


class Participant(Base):
    __tablename__ = "session_participants"

    id = Column(Integer, primary_key=True, index=True)
    session_id = Column(Integer, ForeignKey("sessions.id"), index=True, nullable=False)
    nickname = Column(String, nullable=False)
    avatar = Column(String, nullable=True)
    score = Column(Integer, default=0, nullable=False)
    user_id = Column(String, nullable=True, index=True)
    guest_id = Column(String, nullable=True, index=True)
    is_active = Column(Boolean, default=True)
    left_at = Column(DateTime(timezone=True), nullable=True)
    joined_at = Column(DateTime(timezone=True), default=utcnow)


class Response(Base):
    __tablename__ = "responses"
    __table_args__ = (
        UniqueConstraint("session_id", "participant_id", "question_id", name="uq_response_per_question"),
    )

    id = Column(Integer, primary_key=True, index=True)
    session_id = Column(Integer, ForeignKey("sessions.id"), index=True, nullable=False)
    participant_id = Column(Integer, ForeignKey("session_participants.id"), index=True, nullable=False)
    question_id = Column(Integer, ForeignKey("questions.id"), index=True, nullable=False)
    answer_id = Column(Integer, ForeignKey("answers.id"), nullable=True)
    is_correct = Column(Boolean, default=False, nullable=False)
    answer_text = Column(String, nullable=True)
    outcome = Column(String, default=ResponseOutcome.MATCHED.value)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
