"""
Chat Message Model - append-only conversation log
"""
from sqlalchemy import Column, Integer, String, Text, BigInteger, Index

from app.db.database import Base


class ChatMessageRecord(Base):
    """A single user or bot message"""

    __tablename__ = "messages"

    id = Column(Integer, primary_key=True, autoincrement=True)
    session_id = Column(String(200), nullable=False)
    who = Column(String(10), nullable=False)  # user or bot
    text = Column(Text, nullable=False, default="")
    ts = Column(BigInteger, nullable=False)

    __table_args__ = (
        Index("ix_messages_session_ts", "session_id", "ts"),
    )
