import os
import tempfile

# Point the app module at throwaway storage before anything reads the config
os.environ["DATABASE_URL"] = "sqlite://"
os.environ.setdefault("UPLOAD_DIR", tempfile.mkdtemp(prefix="livequiz-uploads-"))

import pytest

from livequiz.blobs import LocalBlobStore
from livequiz.database import init_db, make_engine, make_session_factory
from livequiz.game_manager import GameManager
from livequiz.identity import Identity, mint_guest_identity
from livequiz.models import QuestionType
from livequiz.schemas import AnswerCreate, QuestionCreate, QuizCreate


@pytest.fixture
def engine():
    engine = make_engine("sqlite://")
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return make_session_factory(engine)


@pytest.fixture
def manager(session_factory, tmp_path):
    return GameManager(session_factory, blobs=LocalBlobStore(str(tmp_path), "/uploads"), tick_seconds=0.2)


@pytest.fixture
def host():
    return Identity(id="user-host", display_name="Ms. Rivera")


@pytest.fixture
def players():
    return [
        Identity(id="user-ada", display_name="Ada"),
        Identity(id="user-grace", display_name="Grace"),
        Identity(id="user-linus", display_name="Linus"),
    ]


@pytest.fixture
def guest():
    return mint_guest_identity("Visitor")


@pytest.fixture
def quiz_payload():
    return QuizCreate(
        title="European Capitals",
        description="Warm-up round",
        questions=[
            QuestionCreate(
                text="What is the capital of France?",
                time_limit_seconds=30,
                question_type=QuestionType.MULTIPLE_CHOICE,
                answers=[
                    AnswerCreate(text="Paris", is_correct=True),
                    AnswerCreate(text="London"),
                    AnswerCreate(text="Berlin"),
                ],
            ),
            QuestionCreate(
                text="Name the capital of Italy",
                time_limit_seconds=30,
                question_type=QuestionType.SHORT_ANSWER,
                answers=[AnswerCreate(text="Rome", is_correct=True)],
            ),
        ],
    )
