"""
WhatsApp integration routes
"""
import logging

from fastapi import APIRouter, Depends

from konver.core.exceptions import UpstreamError
from konver.routes.dependencies import get_whatsapp_service
from konver.schemas.whatsapp import SendMessageRequest, WebhookEvent
from konver.services.whatsapp_service import WhatsAppService

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/whatsapp", tags=["whatsapp"])


@router.post("/webhook", response_model=dict, summary="Evolution API webhook")
def receive_webhook(event: WebhookEvent, service: WhatsAppService = Depends(get_whatsapp_service)):
    """Receive connection updates and incoming messages from the Evolution API"""
    handled = service.process_webhook_event(event)
    return {"success": True, "handled": handled}


@router.get("/{bot_id}/status", response_model=dict, summary="WhatsApp connection status")
async def get_status(bot_id: str, service: WhatsAppService = Depends(get_whatsapp_service)):
    status = await service.get_connection_status(bot_id)
    return status.model_dump()


@router.post("/{bot_id}/connect", response_model=dict, summary="Create or reconnect the instance")
async def connect(bot_id: str, service: WhatsAppService = Depends(get_whatsapp_service)):
    """Returns the QR code to scan with the WhatsApp app"""
    result = await service.create_or_connect_instance(bot_id)
    if not result.success:
        raise UpstreamError(result.error or "Erro ao conectar WhatsApp")
    return result.model_dump()


@router.post("/{bot_id}/disconnect", response_model=dict, summary="Log the instance out")
async def disconnect(bot_id: str, service: WhatsAppService = Depends(get_whatsapp_service)):
    success = await service.disconnect_instance(bot_id)
    if not success:
        raise UpstreamError("Falha ao desconectar WhatsApp")
    return {"success": True}


@router.delete("/{bot_id}/instance", response_model=dict, summary="Delete the instance")
async def delete_instance(bot_id: str, service: WhatsAppService = Depends(get_whatsapp_service)):
    success = await service.delete_instance(bot_id)
    if not success:
        raise UpstreamError("Falha ao remover instância WhatsApp")
    return {"success": True}


@router.post("/{bot_id}/send", response_model=dict, summary="Send a text message")
async def send_message(
    bot_id: str,
    request: SendMessageRequest,
    service: WhatsAppService = Depends(get_whatsapp_service)
):
    result = await service.send_message(bot_id, request.phone_number, request.message)
    if not result.success:
        raise UpstreamError(result.error or "Erro ao enviar mensagem")
    return result.model_dump()
