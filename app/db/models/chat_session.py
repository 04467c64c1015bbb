"""
Chat Session Model - one row per conversation
"""
from sqlalchemy import Column, String, BigInteger

from app.db.database import Base


class ChatSessionRecord(Base):
    """Durable header of a chat session (stage, locale, last activity)"""

    __tablename__ = "sessions"

    session_id = Column(String(200), primary_key=True)
    stage = Column(String(50), nullable=False, default="WELCOME")
    locale = Column(String(20), nullable=False, default="bn-BD")

    # Epoch milliseconds, same clock as message timestamps
    last_seen_at = Column(BigInteger, nullable=False, default=0)
