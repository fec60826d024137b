"""
Survey Models for the feedback engine

Surveys belong to a tenant (business branch) and carry the alert and
recovery configuration that drives crisis alerts and customer rewards.
Responses and answers are append-only: the engine never updates them.
"""

from datetime import datetime
import uuid

from sqlalchemy import Column, Integer, String, DateTime, Text, ForeignKey, JSON
from sqlalchemy.orm import relationship

from app.database import Base


def _new_id() -> str:
    return str(uuid.uuid4())


class Survey(Base):
    """
    Survey definition.

    alert_config: {"enabled": bool, "threshold": int, "phones": [str], "emails": [str]}
    recovery_config: {"enabled": bool, "offer": str, "code": str,
                      "bad": {...}, "neutral": {...}, "good": {...}}
    """
    __tablename__ = "surveys"

    id = Column(String(36), primary_key=True, default=_new_id, index=True)
    tenant_id = Column(String(64), nullable=False, index=True)
    title = Column(String(200), nullable=False)
    description = Column(Text)

    alert_config = Column(JSON)
    recovery_config = Column(JSON)

    created_at = Column(DateTime, default=datetime.utcnow)

    # Relationships
    questions = relationship(
        "Question", back_populates="survey", cascade="all, delete-orphan", order_by="Question.order"
    )
    responses = relationship("Response", back_populates="survey", cascade="all, delete-orphan")

    def __repr__(self):
        return f"<Survey id={self.id} tenant_id={self.tenant_id} title='{self.title}'>"


class Question(Base):
    """
    Individual question within a survey.

    type is one of RATING, EMOJI, TEXT, SELECT, YES_NO, PHONE, EMAIL, IMAGE, FILE.
    """
    __tablename__ = "survey_questions"

    id = Column(String(36), primary_key=True, default=_new_id, index=True)
    survey_id = Column(String(36), ForeignKey("surveys.id"), nullable=False, index=True)

    text = Column(Text, nullable=False)
    type = Column(String(20), nullable=False)
    order = Column(Integer, default=0)

    survey = relationship("Survey", back_populates="questions")

    def __repr__(self):
        return f"<Question id={self.id} type={self.type}>"


class Response(Base):
    """
    A customer's submission to a survey (contains multiple answers).
    """
    __tablename__ = "survey_responses"

    id = Column(String(36), primary_key=True, default=_new_id, index=True)
    survey_id = Column(String(36), ForeignKey("surveys.id"), nullable=False, index=True)

    # Customer details captured on the form
    customer_name = Column(String(200))
    customer_phone = Column(String(50))
    customer_email = Column(String(200))
    customer_source = Column(String(100))  # 'instagram', 'google', 'recomendacion', ...
    photo = Column(String(500))

    created_at = Column(DateTime, default=datetime.utcnow, index=True)

    # Relationships
    survey = relationship("Survey", back_populates="responses")
    answers = relationship("Answer", back_populates="response", cascade="all, delete-orphan")

    def __repr__(self):
        return f"<Response id={self.id} survey_id={self.survey_id}>"


class Answer(Base):
    """
    Raw answer to a question. value is always stored as text.
    """
    __tablename__ = "survey_answers"

    id = Column(String(36), primary_key=True, default=_new_id, index=True)
    response_id = Column(String(36), ForeignKey("survey_responses.id"), nullable=False, index=True)
    question_id = Column(String(36), ForeignKey("survey_questions.id"), nullable=False, index=True)

    value = Column(Text, nullable=False, default="")

    # Relationships
    response = relationship("Response", back_populates="answers")
    question = relationship("Question")

    def __repr__(self):
        return f"<Answer id={self.id} question_id={self.question_id}>"
