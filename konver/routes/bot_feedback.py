"""
Bot feedback API

Lets the workflow engine look up human-curated corrections before it answers,
and lets reviewers approve and inspect them. Every route is scoped to one bot.
"""
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from konver.core.database import get_db
from konver.routes.dependencies import get_bot_id
from konver.schemas.feedback import (
    FeedbackSearchRequest,
    BestResponseRequest,
    ApplyFeedbackRequest,
    FeedbackCreate,
)
from konver.services.feedback_service import FeedbackService, serialize_feedback

router = APIRouter(prefix="/bot-feedback-api", tags=["bot-feedback"])


@router.post(
    "/search",
    response_model=dict,
    summary="Search similar feedbacks",
    description="Full-text search over applied feedbacks, with keyword-overlap fallback"
)
def search_feedback(
    request: FeedbackSearchRequest,
    bot_id: str = Depends(get_bot_id),
    db: Session = Depends(get_db)
):
    """
    Search applied feedbacks similar to a user message

    - **userMessage**: Incoming user utterance (required)
    - **limit**: Maximum results (default 5)
    """
    feedbacks = FeedbackService.search_feedback(db, bot_id, request.user_message, request.limit)
    return {
        "success": True,
        "feedbacks": [serialize_feedback(feedback) for feedback in feedbacks],
        "total": len(feedbacks)
    }


@router.post(
    "/best-response",
    response_model=dict,
    summary="Get the best improved response",
    description="Substring match first, then keyword scoring against the threshold"
)
def get_best_response(
    request: BestResponseRequest,
    bot_id: str = Depends(get_bot_id),
    db: Session = Depends(get_db)
):
    """
    Pick the best correction for a user message and count its use

    - **userMessage**: Incoming user utterance (required)
    - **threshold**: Minimum keyword score between 0 and 1 (default 0.7)
    """
    result = FeedbackService.get_best_response(db, bot_id, request.user_message, request.threshold)

    if not result.found:
        return {
            "success": True,
            "found": False,
            "message": "No matching improved response found"
        }

    return {
        "success": True,
        "found": True,
        "improved_response": result.improved_response,
        "confidence": result.confidence,
        "feedback_id": result.feedback_id
    }


@router.post(
    "/apply-feedback",
    response_model=dict,
    summary="Approve a feedback",
    description="Mark a feedback as applied so it takes part in matching"
)
def apply_feedback(
    request: ApplyFeedbackRequest,
    bot_id: str = Depends(get_bot_id),
    db: Session = Depends(get_db)
):
    """
    Approve a feedback record

    - **feedbackId**: Record to approve (must belong to the bot)
    """
    feedback = FeedbackService.apply_feedback(db, bot_id, request.feedback_id)
    return {
        "success": True,
        "feedback": serialize_feedback(feedback)
    }


@router.get(
    "/stats",
    response_model=dict,
    summary="Feedback statistics",
    description="Totals per status and the number of times corrections were used"
)
def get_stats(bot_id: str = Depends(get_bot_id), db: Session = Depends(get_db)):
    """Aggregate feedback counters of the bot"""
    stats = FeedbackService.get_stats(db, bot_id)
    return {
        "success": True,
        "stats": stats.model_dump()
    }


@router.get(
    "/feedbacks",
    response_model=dict,
    summary="List feedbacks",
    description="All feedbacks of the bot, newest first"
)
def list_feedbacks(
    status_filter: Optional[str] = Query(None, alias="status"),
    bot_id: str = Depends(get_bot_id),
    db: Session = Depends(get_db)
):
    """
    List feedback records

    - **status**: Optional status (pending, applied, rejected)
    """
    feedbacks = FeedbackService.list_feedback(db, bot_id, status_filter)
    return {
        "success": True,
        "feedbacks": [serialize_feedback(feedback) for feedback in feedbacks],
        "total": len(feedbacks)
    }


@router.post(
    "/feedbacks",
    response_model=dict,
    status_code=status.HTTP_201_CREATED,
    summary="Record a feedback",
    description="Store a reviewer's correction in the pending state"
)
def create_feedback(
    feedback_data: FeedbackCreate,
    bot_id: str = Depends(get_bot_id),
    db: Session = Depends(get_db)
):
    """Record a new correction for the bot"""
    feedback = FeedbackService.create_feedback(db, bot_id, feedback_data)
    return {
        "success": True,
        "feedback": serialize_feedback(feedback)
    }


@router.delete(
    "/feedbacks/{feedback_id}",
    response_model=dict,
    summary="Delete a feedback"
)
def delete_feedback(
    feedback_id: str,
    bot_id: str = Depends(get_bot_id),
    db: Session = Depends(get_db)
):
    """Delete a feedback record of the bot"""
    FeedbackService.delete_feedback(db, bot_id, feedback_id)
    return {"success": True}
