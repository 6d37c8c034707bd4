"""会话对话引擎。

把 SessionStore 与 ChatStreamClient 连接起来：追加用户消息和待完成的助手消息，
打开事件流，再把每个事件对账到助手消息上。

对账规则（StreamReconciler）：
- chunk: 追加到本地缓冲，消息内容更新为缓冲全文，保持 is_streaming=True。
- complete: 内容整体替换为服务端声明的 fullResponse（以服务端为准，
  防止坏帧被跳过造成的偏差），is_streaming=False，status="complete"。
- error: 内容替换为错误描述，is_streaming=False，status="error"。

流被取消时，消息保留已收到的部分内容，并进入显式终态 status="aborted"。
"""

import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional
from uuid import uuid4

from chat_core.config.settings import settings
from chat_core.domain.events import StreamEvent
from chat_core.domain.exceptions import BusinessError, ValidationError
from chat_core.domain.session import Attachment, Message, SessionStore
from chat_core.infrastructure.logging.logger import logger
from chat_core.transport.client import ChatStreamClient, ChatTurn, StreamEventReader


class StreamReconciler:
    """把一个流的事件依次应用到一条助手消息上。"""

    def __init__(self, store: SessionStore, session_id: str, message_id: str):
        self._store = store
        self._session_id = session_id
        self._message_id = message_id
        self._buffer: List[str] = []
        self.finished = False

    @property
    def buffered_text(self) -> str:
        return "".join(self._buffer)

    def apply(self, event: StreamEvent) -> bool:
        """应用事件，返回是否为终止事件。终止之后的事件一律忽略。"""

        if self.finished:
            return True
        if event.type == "chunk":
            self._buffer.append(event.content or "")
            self._store.update_message(
                self._session_id, self._message_id, content=self.buffered_text, is_streaming=True
            )
            return False
        self.finished = True
        if event.type == "complete":
            fields: Dict[str, Any] = {
                "content": event.full_response or "",
                "is_streaming": False,
                "status": "complete",
            }
            if event.model:
                fields["model"] = event.model
            self._store.update_message(self._session_id, self._message_id, **fields)
        else:
            self._store.update_message(
                self._session_id,
                self._message_id,
                content=f"Error: {event.error}",
                is_streaming=False,
                status="error",
            )
        return True

    def abort(self) -> None:
        """流在终止事件之前被取消：保留部分内容，标记为 aborted。"""

        if self.finished:
            return
        self.finished = True
        self._store.update_message(
            self._session_id, self._message_id, is_streaming=False, status="aborted"
        )


@dataclass
class SessionAgentConfig:
    context_limit: int = 10


class SessionChatAgent:
    def __init__(
        self,
        store: SessionStore,
        client: ChatStreamClient,
        config: Optional[SessionAgentConfig] = None,
    ):
        self._store = store
        self._client = client
        self._config = config or SessionAgentConfig(context_limit=settings.context_window_messages)
        self._streams: Dict[str, StreamEventReader] = {}
        # 正在打开流的会话 -> 打开期间是否收到取消请求
        self._opening: Dict[str, bool] = {}

    def is_streaming(self, session_id: str) -> bool:
        if session_id in self._streams or session_id in self._opening:
            return True
        return self._store.streaming_message(session_id) is not None

    async def send(
        self,
        session_id: str,
        content: str,
        attachments: Optional[List[Attachment]] = None,
        model: Optional[str] = None,
    ) -> Optional[str]:
        """发送一条用户消息并消费完整的流式回答。

        Returns:
            助手消息 id；会话已不存在时返回 None。

        Raises:
            ValidationError: 该会话已有进行中的流。
            BusinessError: 打开流失败（准入拒绝、网络错误等），助手消息会先被标记为 error。
        """

        session = self._store.get_session(session_id)
        if session is None:
            return None
        if self.is_streaming(session_id):
            raise ValidationError(
                code="STREAM_IN_PROGRESS",
                message="Wait for the current response to finish",
                session_id=session_id,
            )
        chosen_model = model or session.model
        trace_id = f"tr-{uuid4().hex}"
        log_ctx: Dict[str, Any] = {"trace_id": trace_id, "session_id": session_id, "model": chosen_model}
        start_time = time.time()

        # 上下文取自本轮消息追加之前的历史
        context = self._store.context_window(session_id, self._config.context_limit)
        self._store.append_message(
            session_id, Message(role="user", content=content, attachments=attachments or None)
        )
        assistant_id = self._store.append_message(
            session_id, Message(role="assistant", content="", model=chosen_model, is_streaming=True)
        )
        if assistant_id is None:
            return None
        reconciler = StreamReconciler(self._store, session_id, assistant_id)

        turn = ChatTurn(
            message=content,
            model=chosen_model,
            session_id=session_id,
            context=context,
            attachments=list(attachments or []),
        )
        self._opening[session_id] = False
        try:
            reader = await self._client.open_stream(turn)
        except BusinessError as e:
            reconciler.apply(StreamEvent.failure(e.message))
            self._log(logging.WARNING, "Failed to open stream", log_ctx, code=e.code, error=e.message)
            raise
        except BaseException:
            # 打开阶段被取消（CancelledError 等）：消息同样进入终态
            reconciler.abort()
            self._log(logging.INFO, "Stream open interrupted", log_ctx)
            raise
        finally:
            cancel_requested = self._opening.pop(session_id, False)

        if cancel_requested:
            await reader.cancel()
            reconciler.abort()
            self._log(logging.INFO, "Stream cancelled while opening", log_ctx)
            return assistant_id

        self._streams[session_id] = reader
        events = 0
        try:
            async for event in reader:
                events += 1
                if reconciler.apply(event):
                    break
        finally:
            self._streams.pop(session_id, None)
            if not reconciler.finished:
                await reader.cancel()
                reconciler.abort()
            self._log(
                logging.INFO,
                "Stream consumed",
                log_ctx,
                events=events,
                cancelled=reader.cancelled,
                skipped_frames=reader.frames_skipped,
                elapsed_seconds=round(time.time() - start_time, 2),
            )
        return assistant_id

    async def cancel(self, session_id: str) -> bool:
        """取消会话当前的流；没有进行中的流时返回 False。

        流仍在打开时先记下取消请求，打开完成后由 send 立即关闭连接。
        """

        if session_id in self._opening:
            self._opening[session_id] = True
            self._log(logging.INFO, "Stream cancel requested while opening", {"session_id": session_id})
            return True
        reader = self._streams.get(session_id)
        if reader is None:
            return False
        await reader.cancel()
        self._log(logging.INFO, "Stream cancelled", {"session_id": session_id})
        return True

    async def close_session(self, session_id: str) -> None:
        await self.cancel(session_id)
        self._store.remove_session(session_id)

    @staticmethod
    def _log(level: int, message: str, log_ctx: Dict[str, Any], **fields: Any) -> None:
        payload = dict(log_ctx)
        payload.update(fields)
        logger.log(level, message, extra={"extra": payload})
