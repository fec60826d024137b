"""
Survey Schemas for the feedback engine
"""

from __future__ import annotations

from pydantic import BaseModel, Field, field_validator, ValidationError as PydanticValidationError
from datetime import datetime
from typing import Optional, Any
from enum import Enum
import logging

logger = logging.getLogger(__name__)

DEFAULT_ALERT_THRESHOLD = 2


class QuestionType(str, Enum):
    RATING = "RATING"
    EMOJI = "EMOJI"
    TEXT = "TEXT"
    SELECT = "SELECT"
    YES_NO = "YES_NO"
    PHONE = "PHONE"
    EMAIL = "EMAIL"
    IMAGE = "IMAGE"
    FILE = "FILE"


RATING_QUESTION_TYPES = frozenset({QuestionType.RATING.value, QuestionType.EMOJI.value})


class Sentiment(str, Enum):
    POSITIVE = "positive"
    NEUTRAL = "neutral"
    NEGATIVE = "negative"


# Survey configuration

class AlertConfig(BaseModel):
    """Crisis alert configuration stored on a survey."""
    enabled: bool = False
    threshold: int = DEFAULT_ALERT_THRESHOLD
    phones: list[str] = []
    emails: list[str] = []

    @field_validator("threshold", mode="before")
    @classmethod
    def default_threshold(cls, v: Any) -> Any:
        """A missing or zero threshold falls back to the default."""
        if v is None or v == "" or v == 0:
            return DEFAULT_ALERT_THRESHOLD
        return v

    @field_validator("phones", "emails", mode="before")
    @classmethod
    def drop_blank_entries(cls, v: Any) -> Any:
        if v is None:
            return []
        return [str(item).strip() for item in v if item and str(item).strip()]

    @classmethod
    def from_raw(cls, raw: Optional[dict]) -> "AlertConfig":
        if not raw:
            return cls()
        try:
            return cls.model_validate(raw)
        except PydanticValidationError as e:
            logger.warning(f"Invalid alert config, using defaults: {e.error_count()} errors")
            return cls()


class RecoveryTierConfig(BaseModel):
    """Offer attached to one recovery tier."""
    enabled: bool = False
    offer: str = ""
    code: str = ""


class RecoveryConfig(BaseModel):
    """
    Reward configuration. The flat enabled/offer/code fields are the legacy
    single-offer setup used only as a fallback for the bad tier.
    """
    enabled: bool = False
    offer: str = ""
    code: str = ""
    bad: RecoveryTierConfig = Field(default_factory=RecoveryTierConfig)
    neutral: RecoveryTierConfig = Field(default_factory=RecoveryTierConfig)
    good: RecoveryTierConfig = Field(default_factory=RecoveryTierConfig)

    @field_validator("bad", "neutral", "good", mode="before")
    @classmethod
    def empty_tier(cls, v: Any) -> Any:
        return v or {}

    @classmethod
    def from_raw(cls, raw: Optional[dict]) -> "RecoveryConfig":
        if not raw:
            return cls()
        try:
            return cls.model_validate(raw)
        except PydanticValidationError as e:
            logger.warning(f"Invalid recovery config, using defaults: {e.error_count()} errors")
            return cls()


# Submission Schemas

class AnswerCreate(BaseModel):
    """Schema for a single submitted answer."""
    question_id: str
    value: Any = ""

    @field_validator("value", mode="before")
    @classmethod
    def coerce_to_text(cls, v: Any) -> str:
        """Answers are stored as text regardless of the widget that produced them."""
        if v is None:
            return ""
        return str(v)


class CustomerInfo(BaseModel):
    """Optional customer contact block on a submission."""
    name: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    source: Optional[str] = None


class SubmissionCreate(BaseModel):
    """Schema for submitting a survey response."""
    answers: list[AnswerCreate] = Field(..., min_length=1)
    customer: Optional[CustomerInfo] = None
    photo: Optional[str] = None


class QuestionRead(BaseModel):
    id: str
    text: str
    type: str

    class Config:
        from_attributes = True


class AnswerRead(BaseModel):
    id: str
    question_id: str
    value: str
    question: Optional[QuestionRead] = None

    class Config:
        from_attributes = True


class SubmissionResponse(BaseModel):
    """Stored survey response returned to the submitter."""
    id: str
    survey_id: str
    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None
    customer_email: Optional[str] = None
    customer_source: Optional[str] = None
    photo: Optional[str] = None
    created_at: Optional[datetime] = None
    answers: list[AnswerRead] = []

    class Config:
        from_attributes = True


class AlertTestRequest(BaseModel):
    """Phone to receive a test crisis alert template."""
    phone: str = Field(..., min_length=1)
