import asyncio
import json
import logging
from typing import Any, Dict, Optional

import httpx

from konver.core.exceptions import (
    ValidationError,
    ConfigurationError,
    UpstreamError,
    UpstreamTimeoutError,
)
from konver.schemas.chat import AssistantChatRequest, AssistantChatResponse

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 280.0  # 4 minutes 40 seconds
NO_RESPONSE_PLACEHOLDER = "No response from assistant"


class ChatRelay:
    """
    Stateless relay for one assistant chat turn.
    Forwards the turn to the workflow engine webhook and hands back its ``output``.

    At-most-once: a failed or timed out call is reported, never retried.
    """

    def __init__(
        self,
        webhook_url: Optional[str],
        client: httpx.AsyncClient,
        timeout: float = DEFAULT_TIMEOUT
    ):
        """
        Initialize the relay.

        :param webhook_url: Workflow engine webhook URL (None when not configured).
        :param client: Shared HTTPX client used for the upstream call.
        :param timeout: Hard limit on the upstream call, in seconds.
        """
        self.webhook_url = webhook_url
        self.client = client
        self.timeout = timeout

    @staticmethod
    def build_payload(request: AssistantChatRequest) -> Dict[str, Any]:
        """
        Build the JSON body sent to the workflow engine.

        :param request: Validated chat request.
        :return: Payload with chatInput, sessionId, assistant and optional promptVersions.
        """
        payload: Dict[str, Any] = {
            "chatInput": request.chat_input,
            "sessionId": request.session_id,
            "assistant": request.assistant,
        }
        if request.prompt_versions:
            payload["promptVersions"] = {
                "principal": request.prompt_versions.principal,
                "triagem": request.prompt_versions.triagem,
            }
        return payload

    async def relay(self, request: AssistantChatRequest) -> Dict[str, Any]:
        """
        Forward one chat turn and relay the reply.

        :param request: Chat request from the console.
        :return: Dict with success, response, sessionId, assistant and promptVersions.
        :raises ValidationError: If chatInput, sessionId or assistant is missing.
        :raises ConfigurationError: If no webhook URL is configured.
        :raises UpstreamTimeoutError: If the workflow engine exceeds the timeout.
        :raises UpstreamError: If the workflow engine answers with a non-success status.
        """
        if not request.chat_input or not request.session_id or not request.assistant:
            raise ValidationError("Missing required fields: chatInput, sessionId, assistant")

        if not self.webhook_url:
            raise ConfigurationError("N8N_WEBHOOK_URL environment variable not configured")

        payload = self.build_payload(request)
        logger.info(f"Sending to N8N: {json.dumps(payload, ensure_ascii=False, default=str)}")

        try:
            # httpx timeouts apply per connect/read/write step; wait_for bounds the whole call
            response = await asyncio.wait_for(
                self.client.post(
                    self.webhook_url,
                    json=payload,
                    headers={"Content-Type": "application/json"},
                    timeout=self.timeout
                ),
                self.timeout
            )
        except (asyncio.TimeoutError, httpx.TimeoutException) as e:
            logger.error(f"N8N webhook timed out after {self.timeout}s: {e}")
            raise UpstreamTimeoutError(
                "Request timeout",
                {"message": "The N8N webhook took too long to respond"}
            ) from e

        if not response.is_success:
            details = f"{response.status_code} {response.reason_phrase}"
            logger.error(f"N8N webhook request failed: {details}")
            raise UpstreamError(
                "Failed to communicate with assistant service",
                {"details": details}
            )

        data = response.json()
        output = data.get("output") if isinstance(data, dict) else None

        return AssistantChatResponse(
            success=True,
            response=output or NO_RESPONSE_PLACEHOLDER,
            session_id=request.session_id,
            assistant=request.assistant,
            prompt_versions=request.prompt_versions
        ).model_dump(by_alias=True)
