"""
Assistant Infrastructure Repositories
=====================================

Conversation store implementations and the messaging-provider credential
repository.

Appends to one thread key are serialized by a per-key asyncio.Lock inside
the process. Across processes, the SQLAlchemy store relies on the row lock
taken by SELECT ... FOR UPDATE and the unique (channel, participant_id)
constraint.
"""

import asyncio
import dataclasses
import weakref
from datetime import datetime, timezone
from typing import Any, Dict, Hashable, List, Optional, Tuple
from uuid import uuid4

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from ragdesk.assistant.application import IConversationStore
from ragdesk.assistant.domain import ConversationThread, Message
from ragdesk.core import RepositoryException
from ragdesk.infrastructure.database import Database
from ragdesk.shared.infrastructure.logging import get_logger

from .models import ConversationThreadModel, MessagingProviderModel

logger = get_logger(__name__)


class KeyedLocks:
    """One asyncio.Lock per key, dropped once nobody holds or awaits it."""

    def __init__(self):
        self._locks: "weakref.WeakValueDictionary[Hashable, asyncio.Lock]" = weakref.WeakValueDictionary()

    def get(self, key: Hashable) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    def __len__(self) -> int:
        return len(self._locks)


def _snapshot(thread: ConversationThread, replayed: bool = False) -> ConversationThread:
    return dataclasses.replace(
        thread,
        messages=list(thread.messages),
        meta=dict(thread.meta),
        replayed=replayed,
    )


class InMemoryConversationStore(IConversationStore):
    """Process-local store for development and tests."""

    def __init__(self):
        self._threads: Dict[Tuple[str, str], ConversationThread] = {}
        self._locks = KeyedLocks()

    async def upsert(
        self,
        channel: str,
        connected_endpoint: str,
        participant_id: str,
        participant_name: Optional[str],
        message: Message,
        meta: Optional[Dict[str, Any]] = None,
    ) -> ConversationThread:
        key = (channel, participant_id)
        async with self._locks.get(key):
            thread = self._threads.get(key)
            if thread is None:
                thread = ConversationThread(
                    id=str(uuid4()),
                    channel=channel,
                    participant_id=participant_id,
                    connected_endpoint=connected_endpoint,
                    participant_name=participant_name,
                    meta=dict(meta or {}),
                )
                self._threads[key] = thread
            else:
                if participant_name:
                    thread.participant_name = participant_name
                if meta:
                    thread.meta.update(meta)

            appended = thread.append(message)
            return _snapshot(thread, replayed=not appended)

    async def history(self, channel: str, participant_id: str, limit: int) -> List[Message]:
        thread = self._threads.get((channel, participant_id))
        if thread is None:
            return []
        return thread.tail(limit)

    async def get_thread(self, channel: str, participant_id: str) -> Optional[ConversationThread]:
        thread = self._threads.get((channel, participant_id))
        return _snapshot(thread) if thread else None


class SQLAlchemyConversationStore(IConversationStore):
    """SQLAlchemy implementation of the conversation store."""

    def __init__(self, database: Database):
        self._database = database
        self._locks = KeyedLocks()

    async def upsert(
        self,
        channel: str,
        connected_endpoint: str,
        participant_id: str,
        participant_name: Optional[str],
        message: Message,
        meta: Optional[Dict[str, Any]] = None,
    ) -> ConversationThread:
        async with self._locks.get((channel, participant_id)):
            try:
                try:
                    return await self._upsert(
                        channel, connected_endpoint, participant_id, participant_name, message, meta
                    )
                except IntegrityError:
                    # Row created by another process between our SELECT and INSERT
                    return await self._upsert(
                        channel, connected_endpoint, participant_id, participant_name, message, meta
                    )
            except SQLAlchemyError as e:
                raise RepositoryException(
                    f"Conversation upsert failed: {str(e)}",
                    details={"channel": channel}
                )

    async def _upsert(
        self,
        channel: str,
        connected_endpoint: str,
        participant_id: str,
        participant_name: Optional[str],
        message: Message,
        meta: Optional[Dict[str, Any]],
    ) -> ConversationThread:
        now = datetime.now(timezone.utc)
        async with self._database.session() as session:
            stmt = select(ConversationThreadModel).where(
                ConversationThreadModel.channel == channel,
                ConversationThreadModel.participant_id == participant_id,
            )
            if self._database.supports_row_locks:
                stmt = stmt.with_for_update()
            model = (await session.execute(stmt)).scalar_one_or_none()

            replayed = False
            if model is None:
                model = ConversationThreadModel(
                    id=uuid4(),
                    channel=channel,
                    connected_endpoint=connected_endpoint,
                    participant_id=participant_id,
                    participant_name=participant_name,
                    messages=[message.to_dict()],
                    last_message_text=message.text,
                    last_message_at=message.timestamp,
                    last_direction=message.direction,
                    meta=dict(meta or {}),
                    created_at=now,
                )
                session.add(model)
            else:
                messages = list(model.messages or [])
                if any(item.get("id") == message.id for item in messages):
                    replayed = True
                else:
                    messages.append(message.to_dict())
                    # Reassign so the JSON column is flagged as changed
                    model.messages = messages
                    model.last_message_text = message.text
                    model.last_message_at = message.timestamp
                    model.last_direction = message.direction
                if participant_name:
                    model.participant_name = participant_name
                if connected_endpoint:
                    model.connected_endpoint = connected_endpoint
                if meta:
                    model.meta = {**(model.meta or {}), **meta}
                model.updated_at = now

            await session.flush()
            thread = self._to_entity(model)

        thread.replayed = replayed
        return thread

    async def history(self, channel: str, participant_id: str, limit: int) -> List[Message]:
        thread = await self.get_thread(channel, participant_id)
        if thread is None:
            return []
        return thread.tail(limit)

    async def get_thread(self, channel: str, participant_id: str) -> Optional[ConversationThread]:
        try:
            async with self._database.session() as session:
                stmt = select(ConversationThreadModel).where(
                    ConversationThreadModel.channel == channel,
                    ConversationThreadModel.participant_id == participant_id,
                )
                model = (await session.execute(stmt)).scalar_one_or_none()
                return self._to_entity(model) if model else None
        except SQLAlchemyError as e:
            raise RepositoryException(f"Conversation read failed: {str(e)}", details={"channel": channel})

    @staticmethod
    def _to_entity(model: ConversationThreadModel) -> ConversationThread:
        return ConversationThread(
            id=str(model.id),
            channel=model.channel,
            participant_id=model.participant_id,
            connected_endpoint=model.connected_endpoint,
            participant_name=model.participant_name,
            messages=[Message.from_dict(item) for item in (model.messages or [])],
            last_message_text=model.last_message_text,
            last_message_at=model.last_message_at,
            last_direction=model.last_direction,
            meta=dict(model.meta or {}),
            created_at=model.created_at,
        )


class MessagingProviderRepository:
    """Reads gateway credential rows from `messaging_providers`."""

    def __init__(self, database: Database):
        self._database = database

    async def get_active(self, name: str) -> Optional[Dict[str, Any]]:
        """Credential values of the active row named `name`, or None."""
        try:
            async with self._database.session() as session:
                stmt = select(MessagingProviderModel).where(
                    MessagingProviderModel.name == name,
                    MessagingProviderModel.is_active.is_(True),
                )
                model = (await session.execute(stmt)).scalar_one_or_none()
        except SQLAlchemyError as e:
            raise RepositoryException(f"Provider lookup failed: {str(e)}", details={"provider": name})

        if model is None:
            return None
        values = {
            "instance_id": model.instance_id,
            "token": model.token,
            "client_token": model.client_token,
        }
        if model.base_url:
            values["base_url"] = model.base_url
        return values
