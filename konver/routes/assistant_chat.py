"""
Assistant chat relay route
"""
import logging

from fastapi import APIRouter, Depends

from konver.routes.dependencies import get_chat_relay
from konver.schemas.chat import AssistantChatRequest
from konver.services.chat_relay import ChatRelay

logger = logging.getLogger(__name__)
router = APIRouter(tags=["assistant-chat"])


@router.post(
    "/assistant-chat",
    response_model=dict,
    summary="Send a chat turn to the assistant",
    description="""
    Forwards one turn to the N8N workflow engine and relays its reply.

    Errors: 400 missing fields, 500 webhook not configured,
    502 upstream failure, 408 upstream timeout.
    """
)
async def assistant_chat(request: AssistantChatRequest, relay: ChatRelay = Depends(get_chat_relay)):
    """
    Relay a chat turn

    - **chatInput**: User message
    - **sessionId**: Conversation session id
    - **assistant**: Assistant configuration
    - **promptVersions**: Optional prompt revisions (principal, triagem)
    """
    return await relay.relay(request)
