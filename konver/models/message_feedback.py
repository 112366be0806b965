"""
Database model for MessageFeedback
"""
import uuid
from sqlalchemy import Column, Integer, String, Text, DateTime, JSON, Index, func

from konver.core.database import Base

FEEDBACK_STATUSES = ("pending", "applied", "rejected")


class MessageFeedback(Base):
    """MessageFeedback model - human-curated correction to a past bot response"""
    __tablename__ = "message_feedback"
    __table_args__ = (
        Index("ix_message_feedback_bot_status", "bot_id", "status"),
    )

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    bot_id = Column(String(36), nullable=False, index=True)
    conversation_message_id = Column(String(36), nullable=True)

    user_message_context = Column(Text, nullable=False)
    original_bot_response = Column(Text, nullable=False)
    improved_response = Column(Text, nullable=False)

    status = Column(String(20), nullable=False, default="pending")  # pending | applied | rejected

    # Lowercase tokens extracted from user_message_context, used for keyword matching
    similarity_keywords = Column(JSON, nullable=True)
    # Opaque metadata captured at review time; never interpreted here
    conversation_context = Column(JSON, nullable=True)

    times_applied = Column(Integer, nullable=False, default=0)
    last_applied_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=func.now(), onupdate=func.now(), nullable=False)

    def __repr__(self):
        return f"<MessageFeedback(id={self.id}, bot_id={self.bot_id}, status='{self.status}', times_applied={self.times_applied})>"
