"""Decides whether a participant submission answers a question correctly.

Multiple choice and true/false submissions are answer ids and simply take the
chosen answer's flag. Short answers are free text: both sides are normalised
(trimmed, lowercased), an exact match wins, otherwise the first stored answer
that contains the submission or is contained by it is accepted. Text that
matches nothing is recorded against the question's first answer as an
explicit ``unmatched`` outcome so hosts can review it.
"""

from dataclasses import dataclass
from typing import Optional, Union

from .models import QuestionType, ResponseOutcome
from .schemas import AnswerRecord, QuestionRecord


@dataclass(frozen=True)
class MatchResult:
    answer_id: Optional[int]
    is_correct: bool
    outcome: ResponseOutcome = ResponseOutcome.MATCHED
    normalized_text: Optional[str] = None


def normalize(text: str) -> str:
    return text.strip().lower()


def no_answer() -> MatchResult:
    return MatchResult(answer_id=None, is_correct=False, outcome=ResponseOutcome.NO_ANSWER)


def match_choice(question: QuestionRecord, answer_id: int) -> MatchResult:
    for answer in question.answers:
        if answer.id == answer_id:
            return MatchResult(answer_id=answer.id, is_correct=bool(answer.is_correct))
    # Not one of this question's answers
    return MatchResult(answer_id=None, is_correct=False, outcome=ResponseOutcome.UNMATCHED)


def find_text_match(answers, normalized: str) -> Optional[AnswerRecord]:
    for answer in answers:
        if normalize(answer.text) == normalized:
            return answer

    # Lenient fallback for minor phrasing differences
    for answer in answers:
        candidate = normalize(answer.text)
        if candidate and (normalized in candidate or candidate in normalized):
            return answer
    return None


def match_text(question: QuestionRecord, text: str) -> MatchResult:
    normalized = normalize(text)
    if not normalized:
        return no_answer()

    answer = find_text_match(question.answers, normalized)
    if answer is not None:
        return MatchResult(
            answer_id=answer.id,
            is_correct=bool(answer.is_correct),
            normalized_text=normalized,
        )

    first = question.answers[0]
    return MatchResult(
        answer_id=first.id,
        is_correct=False,
        outcome=ResponseOutcome.UNMATCHED,
        normalized_text=normalized,
    )


def match_answer(question: QuestionRecord, submission: Union[int, str, None]) -> MatchResult:
    if submission is None:
        return no_answer()

    if question.question_type == QuestionType.SHORT_ANSWER:
        return match_text(question, str(submission))

    if isinstance(submission, str):
        # Choice questions submitted as text: accept the id or the literal answer text
        if submission.strip().isdigit():
            return match_choice(question, int(submission.strip()))
        answer = next(
            (a for a in question.answers if normalize(a.text) == normalize(submission)),
            None,
        )
        if answer is None:
            return MatchResult(
                answer_id=None,
                is_correct=False,
                outcome=ResponseOutcome.UNMATCHED,
                normalized_text=normalize(submission),
            )
        return MatchResult(answer_id=answer.id, is_correct=bool(answer.is_correct))

    return match_choice(question, submission)
