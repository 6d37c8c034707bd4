"""流式传输：服务端。

把 Provider 的增量序列转换为有序的 StreamEvent 序列：每个非空增量一个 chunk 事件，
最后恰好一个终止事件（complete 或 error）。

- Provider 的任何失败（超时、模型被拒、限流、网络错误）都被捕获并转换为一个 error 事件，
  已经发出的 chunk 不会撤回，由客户端以终止事件为准进行对账。
- 整个流的最长持续时间在这里强制执行，超时同样以 error 事件结束。
- 采用拉取模式：下游不消费时不会继续向 Provider 请求下一个增量，
  不会在内存中堆积未发送的增量。
- 本模块不持有任何会话状态。
"""

import asyncio
import time
from typing import Any, AsyncIterator, Dict, Iterable, List, Optional
from uuid import uuid4

from chat_core.config.settings import settings
from chat_core.domain.events import StreamEvent
from chat_core.domain.exceptions import BusinessError, ProviderError
from chat_core.domain.models import ChatMessage, ChatRequest
from chat_core.domain.session import Attachment
from chat_core.infrastructure.logging.logger import logger
from chat_core.prompts import load_system_prompt
from chat_core.providers.base import ProviderClient
from chat_core.transport.sse import encode_frame


ATTACHMENT_HEADER = "The user has attached the following files:"

_EXHAUSTED = object()


def attachment_context(attachments: Iterable[Any]) -> Optional[str]:
    """把附件拼成一段 system 上下文；没有附件时返回 None。

    附件既可以是 Attachment，也可以是带 filename/summary/content 的字典。
    """

    parts: List[str] = []
    for att in attachments or []:
        if isinstance(att, Attachment):
            filename, text = att.filename, att.context_text()
        else:
            filename = att.get("filename", "")
            text = att.get("summary") or att.get("content") or ""
        parts.append(f"File: {filename}\nContent: {text}")
    if not parts:
        return None
    return f"{ATTACHMENT_HEADER}\n\n" + "\n\n".join(parts)


def build_messages(
    message: str,
    context: Optional[Iterable[Dict[str, str]]] = None,
    attachments: Optional[Iterable[Any]] = None,
    system_prompt: Optional[str] = None,
) -> List[ChatMessage]:
    """按固定顺序构造发给 Provider 的消息列表。

    顺序：system 提示词 → 历史上下文（按时间先后）→ 附件上下文（若有）→ 本次用户消息。
    """

    messages = [ChatMessage(role="system", content=system_prompt or load_system_prompt())]
    for item in context or []:
        messages.append(ChatMessage(role=item["role"], content=item.get("content") or ""))
    extra = attachment_context(attachments or [])
    if extra:
        messages.append(ChatMessage(role="system", content=extra))
    messages.append(ChatMessage(role="user", content=message))
    return messages


async def _next_chunk(iterator):
    try:
        return await iterator.__anext__()
    except StopAsyncIteration:
        return _EXHAUSTED


async def stream_chat_events(
    provider: ProviderClient,
    req: ChatRequest,
    max_duration: Optional[float] = None,
) -> AsyncIterator[StreamEvent]:
    """驱动 Provider 流式生成，并逐个产出 StreamEvent。

    保证：最后一个事件一定是终止事件，且只有一个；本函数不会向调用方抛出 Provider 异常。
    """

    limit = max_duration if max_duration is not None else settings.stream_timeout
    trace_id = f"st-{uuid4().hex}"
    log_ctx = {"trace_id": trace_id, "model": req.model, "caller": req.caller}
    started = time.monotonic()
    loop = asyncio.get_running_loop()
    deadline = loop.time() + limit
    parts: List[str] = []
    iterator = None
    logger.info("Stream started", extra={"extra": log_ctx})
    try:
        iterator = provider.chat_stream(req).__aiter__()
        while True:
            remaining = deadline - loop.time()
            if remaining <= 0:
                raise asyncio.TimeoutError()
            chunk = await asyncio.wait_for(_next_chunk(iterator), timeout=remaining)
            if chunk is _EXHAUSTED:
                break
            text = chunk.delta_text
            if text:
                parts.append(text)
                yield StreamEvent.chunk(text)
        terminal = StreamEvent.complete("".join(parts), req.model)
    except asyncio.TimeoutError:
        err = ProviderError(code="STREAM_TIMEOUT", message=f"Completion timed out after {limit:g}s", http_status=504)
        logger.warning(err.message, extra={"extra": {**log_ctx, "chunks": len(parts)}})
        terminal = StreamEvent.failure(err.message)
    except BusinessError as e:
        logger.warning(
            "Stream failed",
            extra={"extra": {**log_ctx, "code": e.code, "error": e.message, "chunks": len(parts)}},
        )
        terminal = StreamEvent.failure(e.message)
    except Exception as e:
        logger.exception("Stream failed unexpectedly", extra={"extra": {**log_ctx, "chunks": len(parts)}})
        terminal = StreamEvent.failure(str(e) or type(e).__name__)
    finally:
        aclose = getattr(iterator, "aclose", None)
        if aclose is not None:
            await aclose()
    logger.info(
        "Stream finished",
        extra={"extra": {
            **log_ctx,
            "outcome": terminal.type,
            "chunks": len(parts),
            "elapsed_seconds": round(time.monotonic() - started, 2),
        }},
    )
    yield terminal


async def sse_frames(events: AsyncIterator[StreamEvent]) -> AsyncIterator[bytes]:
    """把事件序列编码为 SSE 字节帧，供 StreamingResponse 直接发送。"""

    async for event in events:
        yield encode_frame(event)
