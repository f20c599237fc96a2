"""Session store: row CRUD over SQLAlchemy plus change notification.

The store is the only place that talks to the database. Callers address
collections by name, filter by column equality and get pydantic records
back, never ORM instances. Every committed write is published on the
change feed, one event per affected row.
"""

import logging
from typing import Any, Dict, List, Optional, Type

from pydantic import BaseModel
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import selectinload

from . import models, schemas
from .errors import ConflictError, StoreError, ValidationError
from .feed import ChangeEvent, ChangeFeed, Collection, EventType

logger = logging.getLogger(__name__)

MODELS: Dict[Collection, Type[models.Base]] = {
    Collection.QUIZZES: models.Quiz,
    Collection.QUESTIONS: models.Question,
    Collection.ANSWERS: models.Answer,
    Collection.SESSIONS: models.QuizSession,
    Collection.PARTICIPANTS: models.Participant,
    Collection.RESPONSES: models.Response,
}

RECORDS: Dict[Collection, Type[BaseModel]] = {
    Collection.QUIZZES: schemas.QuizRecord,
    Collection.QUESTIONS: schemas.QuestionRecord,
    Collection.ANSWERS: schemas.AnswerRecord,
    Collection.SESSIONS: schemas.SessionRecord,
    Collection.PARTICIPANTS: schemas.ParticipantRecord,
    Collection.RESPONSES: schemas.ResponseRecord,
}


def to_row(record: BaseModel) -> Dict[str, Any]:
    # Flat column values only; nested answers are not part of a question row event
    row = record.model_dump(mode="python")
    row.pop("answers", None)
    for key, value in row.items():
        if hasattr(value, "value"):
            row[key] = value.value
    return row


class SessionStore:
    def __init__(self, session_factory, feed: Optional[ChangeFeed] = None):
        self.session_factory = session_factory
        self.feed = feed or ChangeFeed()

    # --- helpers ---

    def _model(self, collection: Collection):
        return MODELS[Collection(collection)]

    def _record(self, collection: Collection, obj) -> BaseModel:
        return RECORDS[Collection(collection)].model_validate(obj)

    def _query(self, db, collection: Collection, filters: Dict[str, Any]):
        model = self._model(collection)
        query = db.query(model)
        if model is models.Question:
            query = query.options(selectinload(models.Question.answers))
        for key, value in (filters or {}).items():
            column = getattr(model, key, None)
            if column is None:
                raise ValidationError(f"Unknown filter field '{key}' on {collection.value}")
            if hasattr(value, "value"):
                value = value.value
            query = query.filter(column == value)
        return query

    def _publish(self, collection: Collection, event_type: EventType, before=None, after=None):
        self.feed.publish(ChangeEvent(Collection(collection), event_type, before=before, after=after))

    def _fail(self, db, collection: Collection, operation: str, exc: SQLAlchemyError):
        db.rollback()
        logger.error("Store %s on %s failed: %s", operation, collection.value, exc)
        if isinstance(exc, IntegrityError):
            raise ConflictError(f"{operation} on {collection.value} violated a constraint") from exc
        raise StoreError(f"{operation} on {collection.value} failed") from exc

    # --- persistence contract ---

    async def insert(self, collection: Collection, values: Dict[str, Any]) -> BaseModel:
        model = self._model(collection)
        with self.session_factory() as db:
            try:
                obj = model(**values)
                db.add(obj)
                db.commit()
                db.refresh(obj)
                record = self._record(collection, obj)
            except SQLAlchemyError as e:
                self._fail(db, collection, "insert", e)
        self._publish(collection, EventType.INSERT, after=to_row(record))
        return record

    async def update(self, collection: Collection, filters: Dict[str, Any], patch: Dict[str, Any]) -> List[BaseModel]:
        with self.session_factory() as db:
            try:
                rows = self._query(db, collection, filters).all()
                befores = [to_row(self._record(collection, obj)) for obj in rows]
                for obj in rows:
                    for key, value in patch.items():
                        setattr(obj, key, value.value if hasattr(value, "value") else value)
                db.commit()
                records = []
                for obj in rows:
                    db.refresh(obj)
                    records.append(self._record(collection, obj))
            except SQLAlchemyError as e:
                self._fail(db, collection, "update", e)
        for before, record in zip(befores, records):
            self._publish(collection, EventType.UPDATE, before=before, after=to_row(record))
        return records

    async def increment(self, collection: Collection, filters: Dict[str, Any], field: str, delta: int) -> List[BaseModel]:
        model = self._model(collection)
        column = getattr(model, field)
        with self.session_factory() as db:
            try:
                query = self._query(db, collection, filters)
                befores = [to_row(self._record(collection, obj)) for obj in query.all()]
                # Single UPDATE ... SET field = field + delta, no read-modify-write window
                query.update({column: column + delta}, synchronize_session=False)
                db.commit()
                records = [self._record(collection, obj) for obj in self._query(db, collection, filters).populate_existing().all()]
            except SQLAlchemyError as e:
                self._fail(db, collection, "increment", e)
        for before, record in zip(befores, records):
            self._publish(collection, EventType.UPDATE, before=before, after=to_row(record))
        return records

    async def get(self, collection: Collection, filters: Dict[str, Any]) -> Optional[BaseModel]:
        with self.session_factory() as db:
            try:
                obj = self._query(db, collection, filters).first()
                return self._record(collection, obj) if obj is not None else None
            except SQLAlchemyError as e:
                self._fail(db, collection, "get", e)

    async def list(
        self,
        collection: Collection,
        filters: Dict[str, Any] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
    ) -> List[BaseModel]:
        model = self._model(collection)
        with self.session_factory() as db:
            try:
                query = self._query(db, collection, filters or {})
                if order_by:
                    column = getattr(model, order_by)
                    query = query.order_by(column.desc() if descending else column.asc(), model.id.asc())
                else:
                    query = query.order_by(model.id.asc())
                return [self._record(collection, obj) for obj in query.all()]
            except SQLAlchemyError as e:
                self._fail(db, collection, "list", e)

    async def delete(self, collection: Collection, filters: Dict[str, Any]) -> int:
        with self.session_factory() as db:
            try:
                rows = self._query(db, collection, filters).all()
                befores = [to_row(self._record(collection, obj)) for obj in rows]
                for obj in rows:
                    db.delete(obj)
                db.commit()
            except SQLAlchemyError as e:
                self._fail(db, collection, "delete", e)
        for before in befores:
            self._publish(collection, EventType.DELETE, before=before)
        return len(befores)
