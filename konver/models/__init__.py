"""
Database models for Konver
"""
from konver.models.bot import Bot
from konver.models.message_feedback import MessageFeedback, FEEDBACK_STATUSES
from konver.models.conversation import ExternalConversation, ConversationMessage

__all__ = [
    "Bot",
    "MessageFeedback",
    "FEEDBACK_STATUSES",
    "ExternalConversation",
    "ConversationMessage",
]
