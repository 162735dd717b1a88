"""
ConversationCheckpoint model — the durable snapshot of a ConversationState.

One row per job. The full state, including the complete rounds audit trail,
is stored as a single JSON document; a few fields are copied into columns so
they can be queried without decoding the document.
"""

from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, Integer, JSON, String
from models.classification_job import Base


class ConversationCheckpoint(Base):
    """A persisted conversation checkpoint keyed by job id."""

    __tablename__ = "conversation_checkpoints"

    job_id = Column(String(36), primary_key=True)
    status = Column(
        String(20),
        nullable=False,
        default="initializing",
    )
    current_round = Column(Integer, nullable=False, default=0)
    overall_confidence = Column(Integer, nullable=False, default=0)
    document = Column(JSON, nullable=False, default=dict)
    # Set out-of-band to ask a running loop to stop at its next checkpoint load
    abort_requested = Column(Boolean, nullable=False, default=False)
    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    def to_dict(self) -> dict:
        """Serialize to a JSON-friendly dict."""
        return {
            "job_id": self.job_id,
            "status": self.status,
            "current_round": self.current_round,
            "overall_confidence": self.overall_confidence,
            "abort_requested": bool(self.abort_requested),
            "document": self.document,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
