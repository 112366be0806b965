"""
Shared FastAPI dependencies
"""
from typing import Optional

from fastapi import Depends, Header, Query, Request
from sqlalchemy.orm import Session

from konver.core.config import settings
from konver.core.database import get_db
from konver.core.exceptions import ValidationError
from konver.services.chat_relay import ChatRelay
from konver.services.whatsapp_service import WhatsAppService


def get_bot_id(
    bot_id: Optional[str] = Query(None, description="Owning bot id"),
    x_bot_id: Optional[str] = Header(None, description="Owning bot id (header alternative)")
) -> str:
    """Resolve the tenant bot id from the query string or the x-bot-id header"""
    resolved = bot_id or x_bot_id
    if not resolved:
        raise ValidationError("bot_id is required")
    return resolved


def get_chat_relay(request: Request) -> ChatRelay:
    """Chat relay bound to the application's shared HTTP client"""
    return ChatRelay(
        webhook_url=settings.N8N_WEBHOOK_URL,
        client=request.app.state.http_client,
        timeout=settings.ASSISTANT_CHAT_TIMEOUT
    )


def get_whatsapp_service(request: Request, db: Session = Depends(get_db)) -> WhatsAppService:
    """WhatsApp service bound to the request's DB session and the shared Evolution client"""
    return WhatsAppService(db=db, evolution=request.app.state.evolution_client)
