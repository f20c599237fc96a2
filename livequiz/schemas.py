from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from .core import config
from .models import QuestionType, ResponseOutcome, SessionStatus


class Record(BaseModel):
    model_config = ConfigDict(from_attributes=True)


# --- Records decoded at the store boundary ---

class QuizRecord(Record):
    id: int
    title: str
    description: Optional[str] = None
    owner_id: str
    created_at: Optional[datetime] = None


class AnswerRecord(Record):
    id: int
    question_id: int
    text: str
    is_correct: bool = False


class QuestionRecord(Record):
    id: int
    quiz_id: int
    text: str
    image_url: Optional[str] = None
    time_limit_seconds: int = 30
    question_type: QuestionType = QuestionType.MULTIPLE_CHOICE
    order_index: int
    answers: List[AnswerRecord] = []


class SessionRecord(Record):
    id: int
    quiz_id: int
    host_id: str
    code: str
    status: SessionStatus = SessionStatus.ACTIVE
    current_question_id: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class ParticipantRecord(Record):
    id: int
    session_id: int
    nickname: str
    avatar: Optional[str] = None
    score: int = 0
    user_id: Optional[str] = None
    guest_id: Optional[str] = None
    is_active: bool = True
    left_at: Optional[datetime] = None
    joined_at: Optional[datetime] = None

    @property
    def is_guest(self) -> bool:
        return self.guest_id is not None


class ResponseRecord(Record):
    id: int
    session_id: int
    participant_id: int
    question_id: int
    answer_id: Optional[int] = None
    is_correct: bool = False
    answer_text: Optional[str] = None
    outcome: ResponseOutcome = ResponseOutcome.MATCHED
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


# --- Quiz authoring payloads ---

class AnswerCreate(BaseModel):
    text: str
    is_correct: bool = False


class QuestionCreate(BaseModel):
    text: str
    time_limit_seconds: int = config.DEFAULT_TIME_LIMIT
    question_type: QuestionType = QuestionType.MULTIPLE_CHOICE
    image_url: Optional[str] = None
    answers: List[AnswerCreate]


class QuizCreate(BaseModel):
    title: str
    description: Optional[str] = None
    questions: List[QuestionCreate]


class QuizWithQuestions(QuizRecord):
    questions: List[QuestionRecord] = []


# --- Session payloads ---

class IdentityPayload(BaseModel):
    id: str
    display_name: str
    is_guest: bool = False


class GuestCreate(BaseModel):
    nickname: str = Field(min_length=1)


class SessionCreate(BaseModel):
    quiz_id: int


class JoinRequest(BaseModel):
    code: str
    nickname: Optional[str] = None
    avatar: Optional[str] = None


class JoinResult(BaseModel):
    session: SessionRecord
    participant: ParticipantRecord


class LeaveRequest(BaseModel):
    participant_id: int


class ParticipantUpdate(BaseModel):
    nickname: Optional[str] = None
    avatar: Optional[str] = None


class SubmitRequest(BaseModel):
    participant_id: int
    question_id: int
    answer_id: Optional[int] = None
    answer_text: Optional[str] = None


class LeaderboardEntry(BaseModel):
    participant_id: int
    nickname: str
    avatar: Optional[str] = None
    score: int
    is_active: bool
    rank: int


class QuestionStats(BaseModel):
    total_responses: int = 0
    correct_responses: int = 0
    incorrect_responses: int = 0
    unmatched_responses: int = 0
    no_answer_responses: int = 0
    accuracy: float = 0.0
