"""Conversation history, source attributions and answer feedback on top of SQLAlchemy async."""

from datetime import datetime, timedelta, timezone

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from shared.helper.HelperConfig import HelperConfig
from shared.helper.KeyedLock import KeyedLock
from shared.models.conversation import ConversationRecord, MessageRecord, MessageRole, SourceRecord
from shared.persistence.Database import Database
from shared.persistence.models import Conversation, Feedback, Message, Source

_TICK = timedelta(microseconds=1)


def utcnow() -> datetime:
    """Naive UTC timestamp, the form stored in the database."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _to_conversation(row: Conversation) -> ConversationRecord:
    return ConversationRecord(id=row.id, owner_id=row.user_id, title=row.title, created_at=row.created_at)


def _to_message(row: Message, sources: list[Source] | None = None) -> MessageRecord:
    return MessageRecord(
        id=row.id,
        conversation_id=row.conversation_id,
        role=MessageRole(row.role),
        content=row.content,
        created_at=row.created_at,
        sources=[SourceRecord(content=s.page_content, metadata=s.source_metadata or {}) for s in (sources or [])],
    )


class ConversationStore:
    """Append-only message log per conversation.

    Messages of one conversation get strictly increasing ``created_at``
    values: appends are serialized per conversation and a timestamp that does
    not move past the previous one is bumped by one microsecond.
    """

    def __init__(self, helper_config: HelperConfig, database: Database) -> None:
        self.logging = helper_config.get_logger()
        self._database = database
        self._conversation_locks = KeyedLock()

    ##########################################
    ############# CONVERSATIONS ##############
    ##########################################

    async def create_conversation(self, owner_id: str, title: str) -> ConversationRecord:
        async with self._database.session_factory() as session:
            row = Conversation(user_id=owner_id, title=title[:255], created_at=utcnow())
            session.add(row)
            await session.commit()
            self.logging.debug("Created conversation %s for user %s.", row.id, owner_id)
            return _to_conversation(row)

    async def get_conversation(self, conversation_id: str, owner_id: str) -> ConversationRecord | None:
        """Return the conversation if it exists and belongs to owner_id, else None."""
        async with self._database.session_factory() as session:
            row = await session.scalar(
                select(Conversation).where(Conversation.id == conversation_id, Conversation.user_id == owner_id)
            )
            return _to_conversation(row) if row else None

    async def list_conversations(self, owner_id: str) -> list[ConversationRecord]:
        """Conversations of owner_id, newest first."""
        async with self._database.session_factory() as session:
            rows = await session.scalars(
                select(Conversation)
                .where(Conversation.user_id == owner_id)
                .order_by(Conversation.created_at.desc())
            )
            return [_to_conversation(row) for row in rows]

    async def _delete_conversations(self, session: AsyncSession, conversation_ids: list[str]) -> None:
        message_ids = select(Message.id).where(Message.conversation_id.in_(conversation_ids))
        await session.execute(delete(Source).where(Source.message_id.in_(message_ids)))
        await session.execute(delete(Message).where(Message.conversation_id.in_(conversation_ids)))
        await session.execute(delete(Conversation).where(Conversation.id.in_(conversation_ids)))

    async def delete_conversation(self, conversation_id: str, owner_id: str) -> bool:
        """Delete a conversation with its messages and sources. Returns False if owner_id does not own it."""
        async with self._database.session_factory() as session:
            owned = await session.scalar(
                select(Conversation.id).where(Conversation.id == conversation_id, Conversation.user_id == owner_id)
            )
            if owned is None:
                return False
            await self._delete_conversations(session, [conversation_id])
            await session.commit()
        self.logging.info("Deleted conversation %s of user %s.", conversation_id, owner_id)
        return True

    async def delete_user_data(self, owner_id: str) -> int:
        """Delete every conversation and feedback entry of owner_id. Returns the number of conversations removed."""
        async with self._database.session_factory() as session:
            conversation_ids = list(await session.scalars(select(Conversation.id).where(Conversation.user_id == owner_id)))
            if conversation_ids:
                await self._delete_conversations(session, conversation_ids)
            await session.execute(delete(Feedback).where(Feedback.user_id == owner_id))
            await session.commit()
        self.logging.info("Deleted %d conversation(s) of user %s.", len(conversation_ids), owner_id)
        return len(conversation_ids)

    ##########################################
    ################ MESSAGES ################
    ##########################################

    async def _next_timestamp(self, session: AsyncSession, conversation_id: str) -> datetime:
        last = await session.scalar(
            select(func.max(Message.created_at)).where(Message.conversation_id == conversation_id)
        )
        now = utcnow()
        if last is not None and now <= last:
            now = last + _TICK
        return now

    async def append_message(self, conversation_id: str, role: MessageRole, content: str) -> MessageRecord:
        async with self._conversation_locks.hold(conversation_id):
            async with self._database.session_factory() as session:
                row = Message(
                    conversation_id=conversation_id,
                    role=role.value,
                    content=content,
                    created_at=await self._next_timestamp(session, conversation_id),
                )
                session.add(row)
                await session.commit()
                return _to_message(row)

    async def save_assistant_answer(self, conversation_id: str, content: str, sources: list[SourceRecord]) -> MessageRecord:
        """Persist an assistant message and then its sources in one transaction."""
        async with self._conversation_locks.hold(conversation_id):
            async with self._database.session_factory() as session:
                async with session.begin():
                    row = Message(
                        conversation_id=conversation_id,
                        role=MessageRole.ASSISTANT.value,
                        content=content,
                        created_at=await self._next_timestamp(session, conversation_id),
                    )
                    session.add(row)
                    # the message row must exist before its sources reference it
                    await session.flush()
                    source_rows = [
                        Source(message_id=row.id, page_content=source.content, source_metadata=source.metadata)
                        for source in sources
                    ]
                    session.add_all(source_rows)
                return _to_message(row, source_rows)

    async def load_messages(self, conversation_id: str, limit: int | None = None) -> list[MessageRecord]:
        """Messages in chronological order; with limit, only the most recent ones."""
        async with self._database.session_factory() as session:
            query = select(Message).where(Message.conversation_id == conversation_id)
            if limit is not None:
                query = query.order_by(Message.created_at.desc()).limit(limit)
                rows = list(await session.scalars(query))
                rows.reverse()
            else:
                rows = list(await session.scalars(query.order_by(Message.created_at.asc())))
            return [_to_message(row) for row in rows]

    async def load_messages_with_sources(self, conversation_id: str) -> list[MessageRecord]:
        async with self._database.session_factory() as session:
            rows = await session.scalars(
                select(Message)
                .where(Message.conversation_id == conversation_id)
                .options(selectinload(Message.sources))
                .order_by(Message.created_at.asc())
            )
            return [_to_message(row, row.sources) for row in rows]

    async def list_user_messages_between(self, start: datetime, end: datetime) -> list[str]:
        """Contents of all user messages with start <= created_at < end, across all users."""
        async with self._database.session_factory() as session:
            rows = await session.scalars(
                select(Message.content).where(
                    Message.role == MessageRole.USER.value,
                    Message.created_at >= start,
                    Message.created_at < end,
                )
            )
            return list(rows)

    ##########################################
    ################ FEEDBACK ################
    ##########################################

    async def add_feedback(self, user_id: str, query: str, response: str, feedback: str, sources: list[str]) -> str:
        async with self._database.session_factory() as session:
            row = Feedback(
                user_id=user_id,
                query=query,
                response=response,
                feedback=feedback,
                sources=sources,
                created_at=utcnow(),
            )
            session.add(row)
            await session.commit()
            return row.id
