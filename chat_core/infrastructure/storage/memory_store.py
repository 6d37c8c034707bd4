"""进程内会话存储。

会话按 id 分区保存在字典中，不做持久化。所有修改操作都容忍会话已被删除的情况：
慢速流可能在用户关闭会话之后才结束，这种竞争是无害的，直接忽略即可。

同一会话的消息只由持有该会话活动流的任务修改；不同会话互不相交，因此无需跨会话加锁。
"""

import dataclasses
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from uuid import uuid4

from chat_core.config.settings import settings
from chat_core.domain.exceptions import StateError, ValidationError
from chat_core.domain.session import Message, Session, SessionStore
from chat_core.infrastructure.logging.logger import logger


_MESSAGE_FIELDS = {f.name for f in dataclasses.fields(Message)}
_IMMUTABLE_FIELDS = {"id", "role"}


class InMemorySessionStore(SessionStore):
    def __init__(self, context_limit: Optional[int] = None):
        self._sessions: Dict[str, Session] = {}
        self._active: List[str] = []
        self._context_limit = context_limit if context_limit is not None else settings.context_window_messages

    # ---- 会话 ----

    def create_session(self, model: str, name: Optional[str] = None) -> str:
        sid = f"s-{uuid4().hex}"
        now = datetime.now(timezone.utc)
        self._sessions[sid] = Session(
            id=sid,
            name=name or f"Chat with {model}",
            model=model,
            created_at=now,
            updated_at=now,
        )
        self._active.append(sid)
        logger.info("Created session", extra={"extra": {"session_id": sid, "model": model}})
        return sid

    def get_session(self, session_id: str) -> Optional[Session]:
        return self._sessions.get(session_id)

    def list_sessions(self) -> List[Session]:
        return list(self._sessions.values())

    def remove_session(self, session_id: str) -> None:
        removed = self._sessions.pop(session_id, None)
        self._active = [sid for sid in self._active if sid != session_id]
        if removed is not None:
            logger.info("Removed session", extra={"extra": {"session_id": session_id}})

    def set_active(self, session_id: str, active: bool) -> None:
        session = self._sessions.get(session_id)
        if session is None:
            return
        session.is_active = active
        if active and session_id not in self._active:
            self._active.append(session_id)
        elif not active:
            self._active = [sid for sid in self._active if sid != session_id]

    def active_session_ids(self) -> List[str]:
        return list(self._active)

    def clear_session(self, session_id: str) -> None:
        try:
            session = self._require(session_id)
        except StateError:
            return
        session.messages = []
        self._touch(session)

    # ---- 消息 ----

    def append_message(self, session_id: str, message: Message) -> Optional[str]:
        """追加消息并返回分配的消息 id；会话不存在时返回 None。"""

        try:
            session = self._require(session_id)
        except StateError as e:
            logger.debug(e.message, extra={"extra": {"session_id": session_id, "op": "append"}})
            return None
        if message.is_streaming and self.streaming_message(session_id) is not None:
            raise ValidationError(
                code="STREAM_IN_PROGRESS",
                message="Session already has a streaming message",
                session_id=session_id,
            )
        message.id = message.id or f"m-{uuid4().hex}"
        message.timestamp = message.timestamp or datetime.now(timezone.utc)
        session.messages.append(message)
        self._touch(session)
        return message.id

    def update_message(self, session_id: str, message_id: str, **fields: Any) -> bool:
        """把 fields 合并到指定消息上；会话或消息不存在时返回 False。"""

        unknown = set(fields) - _MESSAGE_FIELDS
        if unknown:
            raise ValueError(f"Unknown message fields: {sorted(unknown)}")
        frozen = set(fields) & _IMMUTABLE_FIELDS
        if frozen:
            raise ValueError(f"Message fields cannot be changed: {sorted(frozen)}")
        try:
            session = self._require(session_id)
        except StateError as e:
            logger.debug(e.message, extra={"extra": {"session_id": session_id, "op": "update"}})
            return False
        for message in session.messages:
            if message.id == message_id:
                for key, value in fields.items():
                    setattr(message, key, value)
                self._touch(session)
                return True
        return False

    def get_message(self, session_id: str, message_id: str) -> Optional[Message]:
        session = self._sessions.get(session_id)
        if session is None:
            return None
        for message in session.messages:
            if message.id == message_id:
                return message
        return None

    def streaming_message(self, session_id: str) -> Optional[Message]:
        session = self._sessions.get(session_id)
        if session is None:
            return None
        for message in reversed(session.messages):
            if message.is_streaming:
                return message
        return None

    def context_window(self, session_id: str, limit: Optional[int] = None) -> List[Dict[str, str]]:
        """返回最近 limit 条消息（旧的在前），只保留 role/content。

        更早的历史只从上下文中丢弃，不会从会话记录里删除。
        """

        session = self._sessions.get(session_id)
        if session is None:
            return []
        size = limit if limit is not None else self._context_limit
        if size <= 0:
            return []
        recent = session.messages[-size:]
        return [{"role": m.role, "content": m.content} for m in recent]

    # ---- 内部 ----

    def _require(self, session_id: str) -> Session:
        session = self._sessions.get(session_id)
        if session is None:
            raise StateError(code="SESSION_NOT_FOUND", message=f"Session not found: {session_id}")
        return session

    @staticmethod
    def _touch(session: Session) -> None:
        session.updated_at = datetime.now(timezone.utc)
