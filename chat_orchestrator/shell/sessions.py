"""
SessionStore - ordered chat history on top of a DocumentStore.

Collections:
  chat_sessions/{session_id}   userId, title, createdAt, updatedAt, lastMessage, messageCount
  chat_messages/{message_id}   sessionId, seq, role, content, timestamp, toolCalls?, ...

Messages are append-only. `seq` is assigned under a per-session asyncio.Lock,
so history order is exactly append-call order for that session while other
sessions proceed in parallel. A write started under the lock completes before
the lock is released, even if its caller is cancelled.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
import weakref
from typing import Any, Callable, Dict, List, Optional

from chat_orchestrator.errors import InputValidationError, SessionNotFound
from chat_orchestrator.libs.store import DocumentStore
from chat_orchestrator.models import Message, NewMessage, Session, now

logger = logging.getLogger(__name__)

SESSIONS_COLLECTION = "chat_sessions"
MESSAGES_COLLECTION = "chat_messages"

TITLE_MAX_CHARS = 30
DEFAULT_TITLE = "New Chat"
LAST_MESSAGE_MAX_CHARS = 200


def derive_title(seed: Optional[str]) -> str:
    text = " ".join((seed or "").split())
    if not text:
        return DEFAULT_TITLE
    if len(text) > TITLE_MAX_CHARS:
        return text[:TITLE_MAX_CHARS] + "..."
    return text


class SessionStore:
    def __init__(self, store: DocumentStore, auto_create: bool = False):
        self.store = store
        self.auto_create = auto_create
        # An entry lives only while some caller holds or awaits the lock.
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    def _lock(self, session_id: str) -> asyncio.Lock:
        lock = self._locks.get(session_id)
        if lock is None:
            lock = self._locks[session_id] = asyncio.Lock()
        return lock

    @staticmethod
    async def _write(fn: Callable[..., Any], *args: Any) -> None:
        """
        Run a blocking store write to completion, even when the caller is
        cancelled. The caller's session lock stays held until the write has
        landed, so the next append always reads the committed messageCount.
        """
        write = asyncio.ensure_future(asyncio.to_thread(fn, *args))
        try:
            await asyncio.shield(write)
        finally:
            while not write.done():
                try:
                    await asyncio.wait({write})
                except asyncio.CancelledError:
                    # Already unwinding from a cancel; it is re-raised below.
                    continue

    async def create_session(self, user_id: str, seed_title: Optional[str] = None) -> str:
        if not user_id:
            raise InputValidationError("user_id is required")
        session_id = uuid.uuid4().hex
        await asyncio.to_thread(self.store.set, SESSIONS_COLLECTION, session_id, self._new_session_doc(user_id, seed_title))
        logger.info("Created session %s for user=%s", session_id, user_id)
        return session_id

    async def get_session(self, session_id: str) -> Session:
        doc = await asyncio.to_thread(self.store.get, SESSIONS_COLLECTION, session_id)
        if doc is None:
            raise SessionNotFound(session_id)
        return Session.from_dict(dict(doc, id=session_id))

    async def list_sessions(self, user_id: str, limit: int = 50) -> List[Session]:
        """Most recently updated first."""
        docs = await asyncio.to_thread(
            self.store.query,
            SESSIONS_COLLECTION,
            [("userId", "==", user_id)],
            "updatedAt",
            True,
            limit,
        )
        return [Session.from_dict(dict(doc.data, id=doc.id)) for doc in docs]

    async def append(self, session_id: str, message: NewMessage) -> Message:
        async with self._lock(session_id):
            session = await asyncio.to_thread(self.store.get, SESSIONS_COLLECTION, session_id)
            created = session is None
            if created:
                if not (self.auto_create and message.user_id):
                    raise SessionNotFound(session_id)
                session = self._new_session_doc(message.user_id, message.content)
                logger.info("Auto-created session %s for user=%s", session_id, message.user_id)

            seq = int(session.get("messageCount", 0))
            # Never let timestamps run backwards inside a session.
            timestamp = max(now(), float(session.get("updatedAt") or 0.0))
            stored = Message(
                id=uuid.uuid4().hex,
                session_id=session_id,
                role=message.role,
                content=message.content,
                timestamp=timestamp,
                seq=seq,
                tool_calls=tuple(message.tool_calls),
                user_id=message.user_id,
                interrupted=message.interrupted,
            )
            summary = {
                "updatedAt": timestamp,
                "lastMessage": message.content[:LAST_MESSAGE_MAX_CHARS],
                "messageCount": seq + 1,
            }
            batch = self.store.batch()
            if created:
                batch.set(SESSIONS_COLLECTION, session_id, dict(session, **summary))
            else:
                batch.update(SESSIONS_COLLECTION, session_id, summary)
            batch.set(MESSAGES_COLLECTION, stored.id, stored.to_dict())
            await self._write(self.store.commit, batch)
            return stored

    async def get_history(self, session_id: str, limit: Optional[int] = None) -> List[Message]:
        """The most recent `limit` messages (all when None), oldest first."""
        if limit is not None and limit <= 0:
            return []
        docs = await asyncio.to_thread(
            self.store.query,
            MESSAGES_COLLECTION,
            [("sessionId", "==", session_id)],
            "seq",
            True,
            limit,
        )
        messages = [Message.from_dict(doc.data) for doc in docs]
        messages.reverse()
        return messages

    async def rename_session(self, session_id: str, title: str) -> None:
        title = " ".join((title or "").split())
        if not title:
            raise InputValidationError("title must not be empty")
        async with self._lock(session_id):
            if await asyncio.to_thread(self.store.get, SESSIONS_COLLECTION, session_id) is None:
                raise SessionNotFound(session_id)
            await self._write(
                self.store.update, SESSIONS_COLLECTION, session_id, {"title": title, "updatedAt": now()}
            )

    async def delete_session(self, session_id: str) -> None:
        """Remove the session and all its messages in one batch."""
        async with self._lock(session_id):
            if await asyncio.to_thread(self.store.get, SESSIONS_COLLECTION, session_id) is None:
                raise SessionNotFound(session_id)
            docs = await asyncio.to_thread(
                self.store.query, MESSAGES_COLLECTION, [("sessionId", "==", session_id)]
            )
            batch = self.store.batch()
            # Session first: a reader never sees messages without their session.
            batch.delete(SESSIONS_COLLECTION, session_id)
            for doc in docs:
                batch.delete(MESSAGES_COLLECTION, doc.id)
            await self._write(self.store.commit, batch)
            logger.info("Deleted session %s (%d messages)", session_id, len(docs))

    @staticmethod
    def _new_session_doc(user_id: str, seed_title: Optional[str]) -> Dict[str, object]:
        created = now()
        return {
            "userId": user_id,
            "title": derive_title(seed_title),
            "createdAt": created,
            "updatedAt": created,
            "lastMessage": "",
            "messageCount": 0,
        }
