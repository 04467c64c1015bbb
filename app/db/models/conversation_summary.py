"""
Conversation Summary Model
"""
from sqlalchemy import Column, String, Text, BigInteger

from app.db.database import Base


class ConversationSummaryRecord(Base):
    """Rolling model-written summary of a session"""

    __tablename__ = "summaries"

    session_id = Column(String(200), primary_key=True)
    summary = Column(Text, nullable=False, default="")
    updated_at = Column(BigInteger, nullable=False, default=0)
