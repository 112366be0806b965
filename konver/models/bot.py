"""
Database model for Bot
"""
import uuid
from sqlalchemy import Column, String, Text, DateTime, func

from konver.core.database import Base


class Bot(Base):
    """Bot model - AI assistant owned by one tenant (WhatsApp columns only)"""
    __tablename__ = "bots"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String(36), nullable=True, index=True)
    name = Column(String(255), nullable=True)

    whatsapp_instance = Column(String(100), nullable=True, unique=True)
    whatsapp_status = Column(String(20), nullable=False, default="disconnected")  # connecting | connected | disconnected
    whatsapp_qr_code = Column(Text, nullable=True)  # base64 data URL from Evolution API
    whatsapp_phone_number = Column(String(32), nullable=True)
    whatsapp_profile_name = Column(String(255), nullable=True)
    whatsapp_connected_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), default=func.now(), nullable=False)

    def __repr__(self):
        return f"<Bot(id={self.id}, name='{self.name}', whatsapp_status='{self.whatsapp_status}')>"
