"""
Session Store

Durable, best-effort persistence for chat sessions: session headers, the
message log, saved customer details and rolling summaries. Every write is
its own short transaction; database failures are logged and swallowed so a
broken store never breaks a live conversation.
"""
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.conversation.session import ChatMessage, CustomerProfile, now_ms
from app.core.logging import get_logger
from app.db.models import (
    ChatSessionRecord,
    ChatMessageRecord,
    CustomerRecord,
    ConversationSummaryRecord,
)

logger = get_logger(__name__)


class SessionStore:
    """Repository over the chat tables"""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def save_session(self, session_id: str, stage: str, locale: str, last_seen_at: int) -> None:
        try:
            async with self._session_factory() as db:
                await db.merge(ChatSessionRecord(
                    session_id=session_id,
                    stage=stage,
                    locale=locale,
                    last_seen_at=last_seen_at,
                ))
                await db.commit()
        except SQLAlchemyError as e:
            self._log_failure("save_session", session_id, e)

    async def save_message(self, session_id: str, message: ChatMessage) -> None:
        try:
            async with self._session_factory() as db:
                db.add(ChatMessageRecord(
                    session_id=session_id,
                    who=message.who,
                    text=message.text,
                    ts=message.ts,
                ))
                await db.commit()
        except SQLAlchemyError as e:
            self._log_failure("save_message", session_id, e)

    async def load_recent_messages(self, session_id: str, limit: int = 100) -> list[ChatMessage]:
        """Last `limit` messages of a session in chronological order"""
        try:
            async with self._session_factory() as db:
                result = await db.execute(
                    select(ChatMessageRecord)
                    .where(ChatMessageRecord.session_id == session_id)
                    .order_by(ChatMessageRecord.ts.desc(), ChatMessageRecord.id.desc())
                    .limit(limit)
                )
                rows = list(result.scalars().all())
        except SQLAlchemyError as e:
            self._log_failure("load_recent_messages", session_id, e)
            return []

        rows.reverse()
        return [ChatMessage(who=row.who, text=row.text, ts=row.ts) for row in rows]

    async def load_session(self, session_id: str) -> ChatSessionRecord | None:
        try:
            async with self._session_factory() as db:
                return await db.get(ChatSessionRecord, session_id)
        except SQLAlchemyError as e:
            self._log_failure("load_session", session_id, e)
            return None

    async def save_customer(self, session_id: str, customer: CustomerProfile) -> None:
        try:
            async with self._session_factory() as db:
                await db.merge(CustomerRecord(session_id=session_id, **customer.to_dict()))
                await db.commit()
        except SQLAlchemyError as e:
            self._log_failure("save_customer", session_id, e)

    async def load_customer(self, session_id: str) -> CustomerProfile | None:
        try:
            async with self._session_factory() as db:
                row = await db.get(CustomerRecord, session_id)
        except SQLAlchemyError as e:
            self._log_failure("load_customer", session_id, e)
            return None

        if row is None:
            return None
        return CustomerProfile(
            name=row.name or "",
            phone=row.phone or "",
            address=row.address or "",
            district=row.district or "",
            upazila=row.upazila or "",
            email=row.email or "",
        )

    async def save_summary(self, session_id: str, summary: str) -> None:
        try:
            async with self._session_factory() as db:
                await db.merge(ConversationSummaryRecord(
                    session_id=session_id,
                    summary=summary,
                    updated_at=now_ms(),
                ))
                await db.commit()
        except SQLAlchemyError as e:
            self._log_failure("save_summary", session_id, e)

    async def load_summary(self, session_id: str) -> str:
        try:
            async with self._session_factory() as db:
                row = await db.get(ConversationSummaryRecord, session_id)
        except SQLAlchemyError as e:
            self._log_failure("load_summary", session_id, e)
            return ""
        return row.summary if row else ""

    @staticmethod
    def _log_failure(operation: str, session_id: str, error: Exception) -> None:
        logger.warning(
            "Session store operation failed",
            extra_data={
                "operation": operation,
                "session_id": session_id,
                "error": str(error),
            }
        )
