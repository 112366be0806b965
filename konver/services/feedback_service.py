"""
Feedback matching service - finds stored corrections for incoming messages
"""
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from konver.core.exceptions import ValidationError, NotFoundError, StorageError
from konver.models.message_feedback import MessageFeedback, FEEDBACK_STATUSES
from konver.modules.text_matching import TextMatcher, extract_keywords
from konver.schemas.feedback import FeedbackCreate, FeedbackStats, BestResponseResult, FeedbackResponse

logger = logging.getLogger(__name__)

APPLIED = "applied"
KEYWORD_CANDIDATES = 3  # keyword pass scores at most this many records
CANDIDATE_BATCH_SIZE = 100


class FeedbackService:
    """
    High-level service for feedback operations

    Every query is scoped to one bot. Matching only ever considers records in
    the ``applied`` state; candidates come back most-applied first, newest
    first on ties.
    """

    @staticmethod
    def _require_message(user_message: Optional[str]) -> str:
        if not isinstance(user_message, str) or not user_message.strip():
            raise ValidationError("userMessage is required")
        return user_message

    @staticmethod
    def _applied_query(db: Session, bot_id: str):
        """Applied records of a bot, ordered by times_applied desc, created_at desc"""
        return db.query(MessageFeedback)\
            .filter(MessageFeedback.bot_id == bot_id)\
            .filter(MessageFeedback.status == APPLIED)\
            .order_by(
                MessageFeedback.times_applied.desc(),
                MessageFeedback.created_at.desc(),
                MessageFeedback.id
            )

    @staticmethod
    def _first_matches(query, predicate: Callable[[MessageFeedback], bool], count: int) -> List[MessageFeedback]:
        """
        First ``count`` rows of ``query`` accepted by ``predicate``

        Rows are fetched in batches and scanning stops once enough matches
        are collected.
        """
        matches: List[MessageFeedback] = []
        offset = 0
        try:
            while len(matches) < count:
                batch = query.offset(offset).limit(CANDIDATE_BATCH_SIZE).all()
                for feedback in batch:
                    if predicate(feedback):
                        matches.append(feedback)
                        if len(matches) == count:
                            break
                if len(batch) < CANDIDATE_BATCH_SIZE:
                    break
                offset += CANDIDATE_BATCH_SIZE
        except SQLAlchemyError as e:
            logger.error(f"Failed to load feedback candidates: {e}")
            raise StorageError("Database error") from e
        return matches

    @staticmethod
    def _has_keyword_overlap(tokens: set) -> Callable[[MessageFeedback], bool]:
        return lambda feedback: bool(tokens & TextMatcher.normalize_keywords(feedback.similarity_keywords))

    @staticmethod
    def search_feedback(
        db: Session,
        bot_id: str,
        user_message: Optional[str],
        limit: int = 5
    ) -> List[MessageFeedback]:
        """
        Search applied feedbacks similar to a user message

        Full-text pass first; keyword-overlap pass only when the full-text
        pass finds nothing. Results are de-duplicated by id, full-text hits
        first.

        Args:
            db: Database session
            bot_id: Owning bot
            user_message: Incoming user utterance
            limit: Maximum results (positive)

        Returns:
            Ordered list of matching feedback records

        Raises:
            ValidationError: If user_message is missing or limit is not positive
            StorageError: If the datastore call fails
        """
        user_message = FeedbackService._require_message(user_message)
        if isinstance(limit, bool) or not isinstance(limit, int) or limit < 1:
            raise ValidationError("limit must be a positive integer")

        query = FeedbackService._applied_query(db, bot_id)

        text_results = []
        terms = TextMatcher.search_terms(user_message)
        if terms:
            text_results = FeedbackService._first_matches(
                query,
                lambda feedback: TextMatcher.matches_full_text(terms, feedback.user_message_context),
                limit
            )

        keyword_results = []
        if not text_results:
            tokens = TextMatcher.extract_keywords(user_message)
            if tokens:
                keyword_results = FeedbackService._first_matches(
                    query, FeedbackService._has_keyword_overlap(tokens), limit
                )

        unique_results = []
        seen_ids = set()
        for feedback in text_results + keyword_results:
            if feedback.id in seen_ids:
                continue
            seen_ids.add(feedback.id)
            unique_results.append(feedback)

        logger.info(
            f"Feedback search for bot {bot_id}: {len(text_results)} text hits, "
            f"{len(keyword_results)} keyword hits"
        )
        return unique_results[:limit]

    @staticmethod
    def get_best_response(
        db: Session,
        bot_id: str,
        user_message: Optional[str],
        threshold: float = 0.7
    ) -> BestResponseResult:
        """
        Pick the single best correction for a user message

        Step 1 accepts any record whose context contains the message
        (case-insensitive) with confidence 1.0. Step 2 scores up to three
        keyword candidates and accepts the best one when its score reaches
        the threshold. The chosen record's usage counter is bumped.

        Args:
            db: Database session
            bot_id: Owning bot
            user_message: Incoming user utterance
            threshold: Minimum keyword score in [0, 1]

        Returns:
            BestResponseResult (found=False when nothing qualifies)

        Raises:
            ValidationError: If user_message is missing or threshold is out of range
            StorageError: If a datastore call fails
        """
        user_message = FeedbackService._require_message(user_message)
        if isinstance(threshold, bool) or not isinstance(threshold, (int, float)) or not 0 <= threshold <= 1:
            raise ValidationError("threshold must be a number between 0 and 1")

        query = FeedbackService._applied_query(db, bot_id)

        # Step 1: substring match, evaluated by the database
        try:
            feedback = query.filter(
                MessageFeedback.user_message_context.ilike(TextMatcher.like_pattern(user_message), escape="\\")
            ).first()
        except SQLAlchemyError as e:
            logger.error(f"Substring lookup failed for bot {bot_id}: {e}")
            raise StorageError("Database error") from e

        if feedback:
            FeedbackService.record_application(db, bot_id, feedback.id)
            logger.info(f"Exact feedback match {feedback.id} for bot {bot_id}")
            return BestResponseResult(
                found=True,
                improved_response=feedback.improved_response,
                confidence=1.0,
                feedback_id=feedback.id
            )

        # Step 2: keyword overlap
        tokens = TextMatcher.extract_keywords(user_message)
        keyword_matches = []
        if tokens:
            keyword_matches = FeedbackService._first_matches(
                query, FeedbackService._has_keyword_overlap(tokens), KEYWORD_CANDIDATES
            )

        best_match = None
        best_score = -1.0
        for feedback in keyword_matches:
            score = TextMatcher.overlap_score(
                tokens, TextMatcher.normalize_keywords(feedback.similarity_keywords)
            )
            if score > best_score:
                best_match, best_score = feedback, score

        if best_match is not None and best_score >= threshold:
            FeedbackService.record_application(db, bot_id, best_match.id)
            logger.info(f"Keyword feedback match {best_match.id} for bot {bot_id} (score {best_score:.3f})")
            return BestResponseResult(
                found=True,
                improved_response=best_match.improved_response,
                confidence=best_score,
                feedback_id=best_match.id
            )

        logger.info(f"No feedback match for bot {bot_id} (best keyword score {max(best_score, 0.0):.3f})")
        return BestResponseResult(found=False)

    @staticmethod
    def record_application(db: Session, bot_id: str, feedback_id: str) -> None:
        """
        Bump times_applied and stamp last_applied_at in a single UPDATE

        The increment happens in SQL so concurrent lookups do not lose counts.
        """
        try:
            db.query(MessageFeedback)\
                .filter(MessageFeedback.id == feedback_id)\
                .filter(MessageFeedback.bot_id == bot_id)\
                .update(
                    {
                        MessageFeedback.times_applied: func.coalesce(MessageFeedback.times_applied, 0) + 1,
                        MessageFeedback.last_applied_at: datetime.now(timezone.utc),
                    },
                    synchronize_session=False
                )
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Failed to record application of feedback {feedback_id}: {e}")
            raise StorageError("Database error") from e

    @staticmethod
    def apply_feedback(db: Session, bot_id: str, feedback_id: Optional[str]) -> MessageFeedback:
        """
        Approve a feedback record for live matching

        Args:
            db: Database session
            bot_id: Owning bot (ids of other bots are treated as unknown)
            feedback_id: Record to approve

        Returns:
            Updated record

        Raises:
            ValidationError: If feedback_id is missing
            NotFoundError: If no record matches both id and bot
            StorageError: If the update fails
        """
        if not feedback_id:
            raise ValidationError("feedbackId is required")

        try:
            feedback = db.query(MessageFeedback)\
                .filter(MessageFeedback.id == feedback_id)\
                .filter(MessageFeedback.bot_id == bot_id).first()
        except SQLAlchemyError as e:
            logger.error(f"Failed to load feedback {feedback_id}: {e}")
            raise StorageError("Failed to apply feedback") from e

        if not feedback:
            raise NotFoundError(f"Feedback {feedback_id} not found")

        try:
            feedback.status = APPLIED
            db.commit()
            db.refresh(feedback)
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Failed to apply feedback {feedback_id}: {e}")
            raise StorageError("Failed to apply feedback") from e

        logger.info(f"Feedback {feedback_id} applied for bot {bot_id}")
        return feedback

    @staticmethod
    def get_stats(db: Session, bot_id: str) -> FeedbackStats:
        """
        Aggregate counters over every feedback record of a bot

        Returns:
            FeedbackStats with total, per-status counts and total applications
        """
        try:
            rows = db.query(
                MessageFeedback.status,
                func.count(MessageFeedback.id),
                func.sum(func.coalesce(MessageFeedback.times_applied, 0))
            ).filter(MessageFeedback.bot_id == bot_id)\
                .group_by(MessageFeedback.status).all()
        except SQLAlchemyError as e:
            logger.error(f"Failed to get stats for bot {bot_id}: {e}")
            raise StorageError("Failed to get stats") from e

        by_status: Dict[str, int] = {}
        total = 0
        total_applications = 0
        for status, count, applications in rows:
            by_status[status] = count
            total += count
            total_applications += int(applications or 0)

        return FeedbackStats(total=total, by_status=by_status, total_applications=total_applications)

    @staticmethod
    def create_feedback(db: Session, bot_id: str, feedback_data: FeedbackCreate) -> MessageFeedback:
        """
        Record a new correction in the pending state

        Keywords are extracted from the user message context when the
        reviewer does not provide them.
        """
        keywords = feedback_data.similarity_keywords
        if keywords is None:
            keywords = sorted(extract_keywords(feedback_data.user_message_context))
        else:
            keywords = sorted(TextMatcher.normalize_keywords(keywords))

        try:
            feedback = MessageFeedback(
                bot_id=bot_id,
                conversation_message_id=feedback_data.conversation_message_id,
                user_message_context=feedback_data.user_message_context,
                original_bot_response=feedback_data.original_bot_response,
                improved_response=feedback_data.improved_response,
                status="pending",
                similarity_keywords=keywords,
                conversation_context=feedback_data.conversation_context,
                times_applied=0
            )
            db.add(feedback)
            db.commit()
            db.refresh(feedback)
            return feedback
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Failed to create feedback for bot {bot_id}: {e}")
            raise StorageError("Failed to create feedback") from e

    @staticmethod
    def list_feedback(db: Session, bot_id: str, status: Optional[str] = None) -> List[MessageFeedback]:
        """List a bot's feedback records, newest first, optionally filtered by status"""
        if status is not None and status not in FEEDBACK_STATUSES:
            raise ValidationError(f"status must be one of: {', '.join(FEEDBACK_STATUSES)}")

        try:
            query = db.query(MessageFeedback).filter(MessageFeedback.bot_id == bot_id)
            if status:
                query = query.filter(MessageFeedback.status == status)
            return query.order_by(MessageFeedback.created_at.desc(), MessageFeedback.id).all()
        except SQLAlchemyError as e:
            logger.error(f"Failed to list feedback for bot {bot_id}: {e}")
            raise StorageError("Failed to list feedback") from e

    @staticmethod
    def delete_feedback(db: Session, bot_id: str, feedback_id: str) -> bool:
        """
        Delete a feedback record of a bot

        Raises:
            NotFoundError: If no record matches both id and bot
        """
        try:
            feedback = db.query(MessageFeedback)\
                .filter(MessageFeedback.id == feedback_id)\
                .filter(MessageFeedback.bot_id == bot_id).first()
            if not feedback:
                raise NotFoundError(f"Feedback {feedback_id} not found")

            db.delete(feedback)
            db.commit()
            return True
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Failed to delete feedback {feedback_id}: {e}")
            raise StorageError("Failed to delete feedback") from e


def serialize_feedback(feedback: MessageFeedback) -> Dict[str, Any]:
    """Render a feedback record as a JSON-ready dict"""
    return FeedbackResponse.model_validate(feedback).model_dump(mode="json")
