"""
Pydantic schemas for the WhatsApp integration
"""
from typing import Optional, Dict, Any
from pydantic import BaseModel, Field


class WhatsAppConnectionStatus(BaseModel):
    """Connection state of a bot's WhatsApp instance"""
    status: str = Field("disconnected", description="connecting | connected | disconnected")
    instance_name: Optional[str] = None
    phone_number: Optional[str] = None
    profile_name: Optional[str] = None
    qr_code: Optional[str] = Field(None, description="Base64 QR code, only while connecting")


class CreateInstanceResult(BaseModel):
    """Outcome of creating or reconnecting an instance"""
    instance_name: str = ""
    qr_code: str = ""
    success: bool
    error: Optional[str] = None


class SendMessageRequest(BaseModel):
    phone_number: str = Field(..., min_length=1)
    message: str = Field(..., min_length=1)


class SendMessageResult(BaseModel):
    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None


class WebhookEvent(BaseModel):
    """Evolution API webhook payload"""
    event: str
    instance: str
    data: Dict[str, Any] = Field(default_factory=dict)
