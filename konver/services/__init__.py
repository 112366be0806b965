"""
Services package - High-level business logic layer
"""
from konver.services.feedback_service import FeedbackService
from konver.services.chat_relay import ChatRelay
from konver.services.whatsapp_service import WhatsAppService

__all__ = [
    "FeedbackService",
    "ChatRelay",
    "WhatsAppService",
]
