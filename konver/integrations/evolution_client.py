"""
Evolution API client for the WhatsApp gateway
"""
import asyncio
import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import httpx

logger = logging.getLogger(__name__)

# Evolution API connection states mapped to the console's states
CONNECTION_STATE_MAP: Dict[str, str] = {
    "connecting": "connecting",
    "open": "connected",
    "close": "disconnected",
}

MEDIA_ENDPOINTS: Dict[str, str] = {
    "image": "/message/sendMedia",
    "video": "/message/sendMedia",
    "audio": "/message/sendWhatsAppAudio",
    "document": "/message/sendMedia",
}

WEBHOOK_EVENTS = ["MESSAGES_UPSERT", "CONNECTION_UPDATE", "CALL", "PRESENCE_UPDATE"]

DEFAULT_INSTANCE_SETTINGS: Dict[str, Any] = {
    "rejectCall": False,
    "msgCall": "Desculpe, não posso atender chamadas no momento.",
    "groupsIgnore": True,
    "alwaysOnline": True,
    "readMessages": False,
    "readStatus": False,
    "syncFullHistory": False,
}


class EvolutionAPIError(Exception):
    """Evolution API call failed"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


@dataclass(frozen=True)
class EvolutionConfig:
    """Fixed gateway configuration, loaded once at startup"""
    api_url: str
    api_key: str
    webhook_url: str
    timeout: float = 30.0
    restart_delay: float = 2.0


class EvolutionClient:
    """
    HTTP client for the Evolution API.

    Configuration and the HTTPX client are injected, so each process (or test)
    decides what it shares.
    """

    def __init__(self, config: EvolutionConfig, client: Optional[httpx.AsyncClient] = None):
        self.config = config
        self.client = client or httpx.AsyncClient(timeout=config.timeout)

    async def _request(
        self,
        endpoint: str,
        method: str = "GET",
        body: Optional[Dict[str, Any]] = None
    ) -> Any:
        """
        Send a request to the Evolution API.

        :param endpoint: Path below the API URL, e.g. "/instance/create".
        :param method: HTTP method.
        :param body: Optional JSON body.
        :return: Decoded JSON response (None for empty bodies).
        :raises EvolutionAPIError: On transport errors or non-success status.
        """
        url = f"{self.config.api_url.rstrip('/')}{endpoint}"
        try:
            response = await self.client.request(
                method,
                url,
                json=body,
                headers={"Content-Type": "application/json", "apikey": self.config.api_key},
                timeout=self.config.timeout
            )
        except httpx.HTTPError as e:
            raise EvolutionAPIError(f"Evolution API unreachable: {e}") from e

        if not response.is_success:
            error_text = response.text
            try:
                error_json = response.json()
                error_message = error_json.get("message") or error_json.get("error") or error_text
            except ValueError:
                error_message = error_text
            raise EvolutionAPIError(
                f"Evolution API Error ({response.status_code}): {error_message}",
                status_code=response.status_code
            )

        if not response.content:
            return None
        return response.json()

    async def create_instance(self, instance_name: str) -> Dict[str, Any]:
        """Create a new WhatsApp instance with QR code pairing enabled"""
        return await self._request("/instance/create", "POST", {
            "instanceName": instance_name,
            "qrcode": True,
            "integration": "WHATSAPP-BAILEYS",
            "webhook": {
                "url": self.config.webhook_url,
                "byEvents": False,
                "base64": True,
                "events": WEBHOOK_EVENTS,
            },
            "settings": DEFAULT_INSTANCE_SETTINGS,
        })

    async def connect_instance(self, instance_name: str) -> Dict[str, Any]:
        """Connect an existing instance; the response carries a fresh QR code"""
        return await self._request(f"/instance/connect/{instance_name}")

    async def restart_instance(self, instance_name: str) -> Dict[str, Any]:
        """
        Restart an instance to obtain a fresh QR code.
        Falls back to a direct connect when the restart call fails.
        """
        try:
            await self._request(f"/instance/restart/{instance_name}", "PUT")
            await asyncio.sleep(self.config.restart_delay)
        except EvolutionAPIError as e:
            logger.warning(f"Restart failed, trying direct connect: {e}")
        return await self.connect_instance(instance_name)

    async def get_connection_state(self, instance_name: str) -> Dict[str, Any]:
        return await self._request(f"/instance/connectionState/{instance_name}")

    async def logout_instance(self, instance_name: str) -> None:
        await self._request(f"/instance/logout/{instance_name}", "DELETE")

    async def delete_instance(self, instance_name: str) -> None:
        await self._request(f"/instance/delete/{instance_name}", "DELETE")

    async def fetch_instances(self) -> List[Dict[str, Any]]:
        return await self._request("/instance/fetchInstances") or []

    async def send_text_message(self, instance_name: str, number: str, text: str) -> Dict[str, Any]:
        return await self._request(f"/message/sendText/{instance_name}", "POST", {
            "number": number,
            "text": text,
        })

    async def send_media_message(
        self,
        instance_name: str,
        number: str,
        media_url: str,
        caption: Optional[str] = None,
        media_type: str = "image"
    ) -> Dict[str, Any]:
        """
        Send an image, video, audio or document message.

        :raises ValueError: If media_type is not supported.
        """
        endpoint = MEDIA_ENDPOINTS.get(media_type)
        if not endpoint:
            raise ValueError(f"Unsupported media type: {media_type}")

        return await self._request(f"{endpoint}/{instance_name}", "POST", {
            "number": number,
            "media": media_url,
            "caption": caption,
            "mediatype": media_type,
        })

    @staticmethod
    def map_connection_state(state: Optional[str]) -> str:
        """Map an Evolution API state (connecting/open/close) to connecting/connected/disconnected"""
        return CONNECTION_STATE_MAP.get(state or "", "disconnected")

    @staticmethod
    def extract_phone_number(jid: str) -> str:
        """Phone number part of a WhatsApp JID ("5511999999999@s.whatsapp.net")"""
        return jid.split("@")[0] if jid else ""

    @staticmethod
    def format_phone_number(phone: str) -> str:
        """
        Normalize a phone number for WhatsApp, defaulting to Brazil (+55).

        11 digits starting with the São Paulo area code get the country code;
        10 digits get country code and area code 11.
        """
        cleaned = re.sub(r"\D", "", phone or "")

        if len(cleaned) == 11 and cleaned.startswith("11"):
            return f"55{cleaned}"
        if len(cleaned) == 10:
            return f"5511{cleaned}"

        return cleaned

    async def aclose(self):
        await self.client.aclose()
