"""
Pydantic schemas for the bot feedback API
"""
from datetime import datetime
from typing import Optional, Dict, Any, List
from pydantic import BaseModel, ConfigDict, Field


class FeedbackSearchRequest(BaseModel):
    """Body of POST /bot-feedback-api/search"""
    model_config = ConfigDict(populate_by_name=True)

    user_message: Optional[str] = Field(None, alias="userMessage", description="Incoming user utterance")
    limit: int = Field(5, description="Maximum number of feedbacks to return")


class BestResponseRequest(BaseModel):
    """Body of POST /bot-feedback-api/best-response"""
    model_config = ConfigDict(populate_by_name=True)

    user_message: Optional[str] = Field(None, alias="userMessage", description="Incoming user utterance")
    threshold: float = Field(0.7, description="Minimum keyword score (0-1) for a keyword match")


class ApplyFeedbackRequest(BaseModel):
    """Body of POST /bot-feedback-api/apply-feedback"""
    model_config = ConfigDict(populate_by_name=True)

    feedback_id: Optional[str] = Field(None, alias="feedbackId", description="Feedback record to approve")


class FeedbackCreate(BaseModel):
    """Body of POST /bot-feedback-api/feedbacks (review tooling)"""
    user_message_context: str = Field(..., min_length=1, description="User message that triggered the bad response")
    original_bot_response: str = Field(..., description="Response that was corrected")
    improved_response: str = Field(..., min_length=1, description="Response to use instead")
    conversation_message_id: Optional[str] = Field(None, description="Source conversation message")
    similarity_keywords: Optional[List[str]] = Field(
        None, description="Keywords for fallback matching; extracted from the context when omitted"
    )
    conversation_context: Optional[Any] = Field(None, description="Opaque review metadata")


class FeedbackResponse(BaseModel):
    """Schema for a stored feedback record"""
    id: str
    bot_id: str
    conversation_message_id: Optional[str] = None
    user_message_context: str
    original_bot_response: str
    improved_response: str
    status: str
    similarity_keywords: Optional[List[str]] = None
    conversation_context: Optional[Any] = None
    times_applied: int = 0
    last_applied_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class FeedbackStats(BaseModel):
    """Aggregated feedback counters for one bot"""
    total: int = Field(..., description="Number of feedback records")
    by_status: Dict[str, int] = Field(default_factory=dict, description="Record count per status")
    total_applications: int = Field(..., description="Sum of times_applied over all records")


class BestResponseResult(BaseModel):
    """Outcome of a best-response lookup"""
    found: bool
    improved_response: Optional[str] = None
    confidence: Optional[float] = None
    feedback_id: Optional[str] = None
