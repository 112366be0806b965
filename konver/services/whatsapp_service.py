"""
WhatsApp business logic service - bot instances on the Evolution API
"""
import logging
import re
import secrets
import string
from datetime import datetime, timezone
from typing import Optional, Dict, Any, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from konver.core.exceptions import StorageError
from konver.integrations.evolution_client import EvolutionClient, EvolutionAPIError
from konver.models.bot import Bot
from konver.models.conversation import ExternalConversation, ConversationMessage
from konver.schemas.whatsapp import (
    WhatsAppConnectionStatus,
    CreateInstanceResult,
    SendMessageResult,
    WebhookEvent,
)

logger = logging.getLogger(__name__)

INSTANCE_ID_ALPHABET = string.ascii_letters + string.digits + "_-"
INSTANCE_ID_LENGTH = 10

_VCARD_PHONE_RE = re.compile(r"TEL[^:]*:([^\r\n]+)")


def generate_instance_name() -> str:
    """Unique Evolution instance name such as bot_V1StGXR8_Z"""
    suffix = "".join(secrets.choice(INSTANCE_ID_ALPHABET) for _ in range(INSTANCE_ID_LENGTH))
    return f"bot_{suffix}"


class WhatsAppService:
    """
    Service for WhatsApp integration of bots

    Keeps the bot's stored WhatsApp columns in sync with the Evolution API.
    Gateway failures are reported through result objects (or a
    ``disconnected`` status) instead of raised; database failures raise
    StorageError.
    """

    def __init__(self, db: Session, evolution: EvolutionClient):
        self.db = db
        self.evolution = evolution

    def _get_bot(self, bot_id: str) -> Optional[Bot]:
        try:
            return self.db.query(Bot).filter(Bot.id == bot_id).first()
        except SQLAlchemyError as e:
            logger.error(f"Failed to load bot {bot_id}: {e}")
            raise StorageError("Database error") from e

    def _update_bot(self, bot: Bot, **fields: Any) -> None:
        try:
            for name, value in fields.items():
                setattr(bot, name, value)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to update bot {bot.id}: {e}")
            raise StorageError("Database error") from e

    def _update_status(self, bot: Bot, status: str, qr_code: Optional[str] = None) -> None:
        updates: Dict[str, Any] = {"whatsapp_status": status}
        if qr_code:
            updates["whatsapp_qr_code"] = qr_code
        if status == "disconnected":
            updates["whatsapp_qr_code"] = None
        self._update_bot(bot, **updates)

    async def create_or_connect_instance(self, bot_id: str) -> CreateInstanceResult:
        """
        Create a WhatsApp instance for a bot, or reconnect its existing one

        Returns:
            CreateInstanceResult with the base64 QR code to scan
        """
        bot = self._get_bot(bot_id)
        if not bot:
            return CreateInstanceResult(success=False, error="Bot não encontrado")

        if bot.whatsapp_instance:
            try:
                response = await self.evolution.connect_instance(bot.whatsapp_instance)
                qr_code = (response or {}).get("base64") or ""
                self._update_status(bot, "connecting", qr_code)
                return CreateInstanceResult(
                    instance_name=bot.whatsapp_instance,
                    qr_code=qr_code,
                    success=True
                )
            except EvolutionAPIError as e:
                logger.warning(f"Failed to reconnect existing instance, creating new one: {e}")

        instance_name = generate_instance_name()
        try:
            response = await self.evolution.create_instance(instance_name)
        except EvolutionAPIError as e:
            logger.error(f"Error creating WhatsApp instance for bot {bot_id}: {e}")
            return CreateInstanceResult(success=False, error=str(e))

        qr_code = ((response or {}).get("qrcode") or {}).get("base64") or ""
        logger.info(f"Created Evolution instance {instance_name} for bot {bot_id}")

        self._update_bot(
            bot,
            whatsapp_instance=instance_name,
            whatsapp_status="connecting",
            whatsapp_qr_code=qr_code,
        )
        return CreateInstanceResult(instance_name=instance_name, qr_code=qr_code, success=True)

    async def get_connection_status(self, bot_id: str) -> WhatsAppConnectionStatus:
        """
        Current WhatsApp connection status of a bot

        Reads the live state from the gateway and writes it back to the bot.
        A missing bot, a bot without instance, or an unreachable gateway all
        report ``disconnected``.
        """
        bot = self._get_bot(bot_id)
        if not bot or not bot.whatsapp_instance:
            return WhatsAppConnectionStatus(status="disconnected")

        try:
            response = await self.evolution.get_connection_state(bot.whatsapp_instance)
        except EvolutionAPIError as e:
            logger.error(f"Error checking connection state of {bot.whatsapp_instance}: {e}")
            if bot.whatsapp_status == "connected":
                self._update_status(bot, "disconnected")
            return WhatsAppConnectionStatus(status="disconnected", instance_name=bot.whatsapp_instance)

        state = ((response or {}).get("instance") or {}).get("state")
        mapped_status = self.evolution.map_connection_state(state)

        if mapped_status == "connecting" and not bot.whatsapp_qr_code:
            logger.info("Status is connecting but no QR code, fetching new one...")
            try:
                qr_response = await self.evolution.connect_instance(bot.whatsapp_instance)
                self._update_bot(bot, whatsapp_qr_code=(qr_response or {}).get("base64"))
            except EvolutionAPIError as e:
                logger.error(f"Failed to fetch QR code: {e}")

        if mapped_status != bot.whatsapp_status:
            self._update_status(bot, mapped_status)
            if mapped_status != "connecting":
                self._update_bot(bot, whatsapp_qr_code=None)

        return WhatsAppConnectionStatus(
            status=mapped_status,
            instance_name=bot.whatsapp_instance,
            phone_number=bot.whatsapp_phone_number,
            profile_name=bot.whatsapp_profile_name,
            qr_code=bot.whatsapp_qr_code if mapped_status == "connecting" else None
        )

    async def disconnect_instance(self, bot_id: str) -> bool:
        """Log the bot's instance out of WhatsApp and clear its connection data"""
        bot = self._get_bot(bot_id)
        if not bot or not bot.whatsapp_instance:
            return False

        try:
            await self.evolution.logout_instance(bot.whatsapp_instance)
        except EvolutionAPIError as e:
            logger.error(f"Error disconnecting WhatsApp instance {bot.whatsapp_instance}: {e}")
            return False

        self._update_bot(
            bot,
            whatsapp_status="disconnected",
            whatsapp_qr_code=None,
            whatsapp_phone_number=None,
            whatsapp_profile_name=None,
            whatsapp_connected_at=None,
        )
        return True

    async def delete_instance(self, bot_id: str) -> bool:
        """Delete the bot's instance from the gateway and forget it"""
        bot = self._get_bot(bot_id)
        if not bot or not bot.whatsapp_instance:
            return False

        try:
            await self.evolution.delete_instance(bot.whatsapp_instance)
        except EvolutionAPIError as e:
            logger.error(f"Error deleting WhatsApp instance {bot.whatsapp_instance}: {e}")
            return False

        self._update_bot(
            bot,
            whatsapp_instance=None,
            whatsapp_status="disconnected",
            whatsapp_qr_code=None,
            whatsapp_phone_number=None,
            whatsapp_profile_name=None,
            whatsapp_connected_at=None,
        )
        return True

    async def send_message(self, bot_id: str, phone_number: str, message: str) -> SendMessageResult:
        """Send a text message from a connected bot"""
        bot = self._get_bot(bot_id)
        if not bot or not bot.whatsapp_instance:
            return SendMessageResult(success=False, error="Bot WhatsApp não configurado")
        if bot.whatsapp_status != "connected":
            return SendMessageResult(success=False, error="WhatsApp não está conectado")

        formatted_number = self.evolution.format_phone_number(phone_number)
        try:
            response = await self.evolution.send_text_message(bot.whatsapp_instance, formatted_number, message)
        except EvolutionAPIError as e:
            logger.error(f"Error sending WhatsApp message from bot {bot_id}: {e}")
            return SendMessageResult(success=False, error=str(e))

        message_id = ((response or {}).get("key") or {}).get("id")
        return SendMessageResult(success=True, message_id=message_id)

    def process_webhook_event(self, event: WebhookEvent) -> bool:
        """
        Handle an Evolution API webhook event

        Returns:
            True if the event was handled, False if ignored
        """
        try:
            bot = self.db.query(Bot).filter(Bot.whatsapp_instance == event.instance).first()
        except SQLAlchemyError as e:
            logger.error(f"Failed to resolve bot for instance {event.instance}: {e}")
            raise StorageError("Database error") from e

        if not bot:
            logger.warning(f"Bot not found for instance: {event.instance}")
            return False

        if event.event == "messages.upsert":
            return self._handle_incoming_message(bot, event.data)
        if event.event == "connection.update":
            self._handle_connection_update(bot, event.data)
            return True

        logger.info(f"Unhandled webhook event: {event.event}")
        return False

    def _handle_connection_update(self, bot: Bot, data: Dict[str, Any]) -> None:
        mapped_status = self.evolution.map_connection_state(data.get("state"))
        self._update_status(bot, mapped_status)

        user = data.get("user")
        if mapped_status == "connected" and isinstance(user, dict):
            self._update_bot(
                bot,
                whatsapp_phone_number=self.evolution.extract_phone_number(user.get("id", "")),
                whatsapp_profile_name=user.get("name"),
                whatsapp_connected_at=datetime.now(timezone.utc),
            )

    def _handle_incoming_message(self, bot: Bot, data: Dict[str, Any]) -> bool:
        key = data.get("key") or {}
        if key.get("fromMe"):
            return False

        remote_jid = key.get("remoteJid", "")
        phone_number = self.evolution.extract_phone_number(remote_jid)
        user_name = data.get("pushName") or phone_number

        text, media = extract_message_content(data.get("messageType"), data.get("message") or {})
        metadata: Dict[str, Any] = {
            "whatsapp_message_id": key.get("id"),
            "message_type": data.get("messageType"),
            "timestamp": data.get("messageTimestamp"),
        }
        if media:
            metadata["media"] = media

        try:
            conversation = self.db.query(ExternalConversation)\
                .filter(ExternalConversation.bot_id == bot.id)\
                .filter(ExternalConversation.phone_number == phone_number)\
                .filter(ExternalConversation.platform == "whatsapp").first()
            if not conversation:
                conversation = ExternalConversation(
                    bot_id=bot.id,
                    user_name=user_name,
                    phone_number=phone_number,
                    platform="whatsapp",
                    platform_user_id=remote_jid,
                    status="active",
                    conversation_metadata={"whatsapp_jid": remote_jid},
                )
                self.db.add(conversation)
                self.db.flush()

            self.db.add(ConversationMessage(
                conversation_id=conversation.id,
                message_type="user",
                content=text,
                message_metadata=metadata,
            ))
            conversation.last_message_at = datetime.now(timezone.utc)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Error saving WhatsApp message for bot {bot.id}: {e}")
            raise StorageError("Database error") from e

        logger.info(f"WhatsApp message from {phone_number} stored for bot {bot.id}")
        return True


def extract_message_content(message_type: Optional[str], message: Dict[str, Any]) -> Tuple[str, Optional[Dict[str, Any]]]:
    """
    Text and media description of a WhatsApp message

    Media messages get a bracketed placeholder text unless they carry a caption.
    """
    if message_type == "conversation":
        return message.get("conversation") or "", None

    if message_type in ("imageMessage", "videoMessage", "audioMessage"):
        media_type = message_type.replace("Message", "")
        payload = message.get(message_type) or {}
        placeholder = {"image": "[Imagem]", "video": "[Vídeo]", "audio": "[Áudio]"}[media_type]
        text = placeholder if media_type == "audio" else (payload.get("caption") or placeholder)
        return text, {
            "type": media_type,
            "url": payload.get("url"),
            "mime_type": payload.get("mimetype"),
            "file_size": payload.get("fileSize"),
        }

    if message_type == "documentMessage":
        payload = message.get("documentMessage") or {}
        return f"[Documento: {payload.get('filename') or 'arquivo'}]", {
            "type": "document",
            "url": payload.get("url"),
            "mime_type": payload.get("mimetype"),
            "file_size": payload.get("fileSize"),
            "filename": payload.get("filename"),
        }

    if message_type == "locationMessage":
        payload = message.get("locationMessage") or {}
        return f"[Localização: {payload.get('name') or 'coordenadas'}]", {
            "type": "location",
            "latitude": payload.get("latitude"),
            "longitude": payload.get("longitude"),
            "location_name": payload.get("name"),
        }

    if message_type == "contactMessage":
        payload = message.get("contactMessage") or {}
        match = _VCARD_PHONE_RE.search(payload.get("vcard") or "")
        return f"[Contato: {payload.get('displayName') or 'contato'}]", {
            "type": "contact",
            "contact_name": payload.get("displayName"),
            "contact_phone": match.group(1).strip() if match else None,
        }

    return "[Mensagem não suportada]", None
