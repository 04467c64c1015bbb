"""
Database Models
"""
from app.db.models.chat_session import ChatSessionRecord
from app.db.models.chat_message import ChatMessageRecord
from app.db.models.customer import CustomerRecord
from app.db.models.conversation_summary import ConversationSummaryRecord

__all__ = [
    "ChatSessionRecord",
    "ChatMessageRecord",
    "CustomerRecord",
    "ConversationSummaryRecord",
]
