"""
Signal Extractor

Turns a response's loosely-typed answers into the signals the rest of the
engine runs on: an integer rating, a free-text comment, and a location
context (table number) for crisis messages.

Every function here is pure and total. Unparseable input yields None
fields, never an exception.
"""

import re
from dataclasses import dataclass
from typing import Iterable, Optional

from app.schemas.survey import QuestionType, RATING_QUESTION_TYPES

# A TEXT answer must be longer than this to count as a comment
COMMENT_MIN_LENGTH = 5

CONTEXT_KEYWORDS = ("mesa", "table")

_LEADING_INTEGER = re.compile(r"^\s*([+-]?\d+)")

_NAME_QUESTION = re.compile(r"nombre|quién|quien|soy|cliente")
_PHONE_QUESTION = re.compile(r"tel|cel|whats")
_EMAIL_QUESTION = re.compile(r"email|correo")
_PHOTO_QUESTION = re.compile(r"foto|imagen|evidencia")

ANONYMOUS_CUSTOMER = "Anónimo"


@dataclass(frozen=True)
class FeedbackSignal:
    """Signals extracted from one response."""

    rating: Optional[int] = None
    comment: Optional[str] = None
    context: Optional[str] = None

    @property
    def has_rating(self) -> bool:
        return self.rating is not None


@dataclass(frozen=True)
class ContactDetails:
    """Customer details resolved from response columns or answers."""

    name: str
    phone: Optional[str] = None
    email: Optional[str] = None
    photo: Optional[str] = None


def question_type(answer) -> Optional[str]:
    question = getattr(answer, "question", None)
    qtype = getattr(question, "type", None)
    if qtype is None:
        return None
    return getattr(qtype, "value", qtype)


def question_text(answer) -> str:
    question = getattr(answer, "question", None)
    return (getattr(question, "text", None) or "").lower()


def answer_value(answer) -> str:
    value = getattr(answer, "value", None)
    return value if isinstance(value, str) else ("" if value is None else str(value))


def parse_rating(value: Optional[str]) -> Optional[int]:
    """
    Parse a rating the way form widgets emit it.

    Leading integers are accepted ("4", " 5 ", "3 estrellas"); anything else
    returns None.
    """
    if value is None:
        return None
    match = _LEADING_INTEGER.match(str(value))
    if not match:
        return None
    return int(match.group(1))


def find_rating_answer(answers: Iterable):
    """First answer whose question is a RATING or EMOJI question."""
    for answer in answers or []:
        if question_type(answer) in RATING_QUESTION_TYPES:
            return answer
    return None


def extract_rating(answers: Iterable) -> Optional[int]:
    # Only the first rating question counts, even when a later one parses
    rating_answer = find_rating_answer(answers)
    if rating_answer is None:
        return None
    return parse_rating(answer_value(rating_answer))


def extract_comment(answers: Iterable, min_length: int = COMMENT_MIN_LENGTH) -> Optional[str]:
    for answer in answers or []:
        if question_type(answer) != QuestionType.TEXT.value:
            continue
        value = answer_value(answer)
        if len(value) > min_length:
            return value
    return None


def extract_context(answers: Iterable) -> Optional[str]:
    """Value of the first answer whose question asks for a table/location."""
    for answer in answers or []:
        text = question_text(answer)
        if any(keyword in text for keyword in CONTEXT_KEYWORDS):
            value = answer_value(answer).strip()
            if value:
                return value
    return None


def text_answers(answers: Iterable) -> list[str]:
    """Non-empty values of all TEXT answers."""
    return [
        answer_value(a)
        for a in answers or []
        if question_type(a) == QuestionType.TEXT.value and answer_value(a)
    ]


def extract_signal(answers: Iterable) -> FeedbackSignal:
    answers = list(answers or [])
    return FeedbackSignal(
        rating=extract_rating(answers),
        comment=extract_comment(answers),
        context=extract_context(answers),
    )


def resolve_contact(response, answers: Optional[Iterable] = None) -> ContactDetails:
    """
    Resolve customer details, preferring the response's own columns and
    falling back to answers whose question looks like a name/phone/email/photo
    question.
    """
    answers = list(answers if answers is not None else getattr(response, "answers", None) or [])

    def first(predicate) -> Optional[str]:
        for answer in answers:
            value = answer_value(answer)
            if value and predicate(answer, value):
                return value
        return None

    name_answer = first(lambda a, v: bool(_NAME_QUESTION.search(question_text(a))))
    phone_answer = first(
        lambda a, v: question_type(a) == QuestionType.PHONE.value or bool(_PHONE_QUESTION.search(question_text(a)))
    )
    email_answer = first(
        lambda a, v: question_type(a) == QuestionType.EMAIL.value or bool(_EMAIL_QUESTION.search(question_text(a)))
    )
    photo_answer = first(
        lambda a, v: (
            question_type(a) == QuestionType.IMAGE.value or bool(_PHOTO_QUESTION.search(question_text(a)))
        ) and (v.startswith("http") or v.startswith("/"))
    )

    return ContactDetails(
        name=getattr(response, "customer_name", None) or name_answer or ANONYMOUS_CUSTOMER,
        phone=getattr(response, "customer_phone", None) or phone_answer,
        email=getattr(response, "customer_email", None) or email_answer,
        photo=getattr(response, "photo", None) or photo_answer,
    )
