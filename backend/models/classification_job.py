"""
ClassificationJob model — one customs classification request.

The job holds the user's free-text product description and everything the
user adds later (answers to clarification questions). The orchestrator's
working state lives separately in ConversationCheckpoint.
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Integer, JSON, String, Text
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """SQLAlchemy declarative base for all models."""

    pass


class ClassificationJob(Base):
    """
    A classification job stored in the database.

    Lifecycle mirrors the conversation status:
    pending → in_progress → waiting_for_user | completed | failed | escalated.
    """

    __tablename__ = "classification_jobs"

    id = Column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4()),
    )
    product_description = Column(Text, nullable=False)
    destination_country = Column(String(8), nullable=True)
    intended_use = Column(Text, nullable=True)
    user_answers = Column(JSON, nullable=False, default=list)
    status = Column(String(20), nullable=False, default="pending")
    missing_info_question = Column(Text, nullable=True)
    hs_code = Column(String(32), nullable=True)
    confidence_score = Column(Integer, nullable=True)
    error = Column(Text, nullable=True)
    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    completed_at = Column(
        DateTime(timezone=True),
        nullable=True,
    )

    def to_dict(self) -> dict:
        """Serialize to a JSON-friendly dict."""
        return {
            "id": self.id,
            "product_description": self.product_description,
            "destination_country": self.destination_country,
            "intended_use": self.intended_use,
            "user_answers": list(self.user_answers or []),
            "status": self.status,
            "missing_info_question": self.missing_info_question,
            "hs_code": self.hs_code,
            "confidence_score": self.confidence_score,
            "error": self.error,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }
