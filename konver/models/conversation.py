"""
Database models for WhatsApp conversations
"""
import uuid
from sqlalchemy import Column, String, Text, DateTime, ForeignKey, JSON, func

from konver.core.database import Base


class ExternalConversation(Base):
    """ExternalConversation model - chat thread with an end user on an external platform"""
    __tablename__ = "external_conversations"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    bot_id = Column(String(36), ForeignKey("bots.id", ondelete="CASCADE"), nullable=False, index=True)
    user_name = Column(String(255), nullable=True)
    phone_number = Column(String(32), nullable=True, index=True)
    platform = Column(String(32), nullable=False, default="whatsapp")
    platform_user_id = Column(String(255), nullable=True)
    status = Column(String(20), nullable=False, default="active")
    conversation_metadata = Column("metadata", JSON, nullable=True)
    last_message_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=func.now(), nullable=False)

    def __repr__(self):
        return f"<ExternalConversation(id={self.id}, bot_id={self.bot_id}, phone_number='{self.phone_number}')>"


class ConversationMessage(Base):
    """ConversationMessage model - single message inside an external conversation"""
    __tablename__ = "conversation_messages"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    conversation_id = Column(
        String(36), ForeignKey("external_conversations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    message_type = Column(String(20), nullable=False)  # user | bot
    content = Column(Text, nullable=True)
    # e.g. {"whatsapp_message_id": "...", "message_type": "imageMessage", "media": {...}}
    message_metadata = Column("metadata", JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), default=func.now(), nullable=False)

    def __repr__(self):
        return f"<ConversationMessage(id={self.id}, conversation_id={self.conversation_id}, message_type='{self.message_type}')>"
