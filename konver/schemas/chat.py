"""
Pydantic schemas for the assistant chat relay
"""
from typing import Optional, Any
from pydantic import BaseModel, ConfigDict, Field


class PromptVersions(BaseModel):
    """Prompt revisions the workflow engine should use"""
    model_config = ConfigDict(extra="allow")

    principal: Optional[Any] = None
    triagem: Optional[Any] = None


class AssistantChatRequest(BaseModel):
    """Body of POST /assistant-chat"""
    model_config = ConfigDict(populate_by_name=True)

    chat_input: Optional[str] = Field(None, alias="chatInput", description="User message for this turn")
    session_id: Optional[str] = Field(None, alias="sessionId", description="Conversation session id")
    assistant: Optional[Any] = Field(None, description="Assistant configuration payload, passed through")
    prompt_versions: Optional[PromptVersions] = Field(None, alias="promptVersions")


class AssistantChatResponse(BaseModel):
    """Relayed reply of the workflow engine"""
    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    response: str
    session_id: str = Field(..., alias="sessionId")
    assistant: Any
    prompt_versions: Optional[PromptVersions] = Field(None, alias="promptVersions")
