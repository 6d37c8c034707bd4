"""流式传输：客户端。

ChatStreamClient 负责发请求；StreamEventReader 把响应字节流惰性地转换为 StreamEvent：

- 调用方逐个拉取事件，第一个事件不必等待整个响应读完。
- 跨读取边界的半帧会缓存，坏帧跳过并记录日志。
- 连接在终止事件之前关闭（正常 EOF 或读取异常）时，补发一个隐式 error 事件。
- cancel() 会立即唤醒正在等待的拉取，关闭连接并释放缓冲区，之后不再交付任何事件，
  即使取消与最后一个事件发生竞争。
- 序列有限且不可重启：终止事件之后迭代结束。
"""

import asyncio
from collections import deque
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Awaitable, Callable, Deque, Dict, List, Optional

import httpx

from chat_core.config.settings import settings
from chat_core.domain.events import StreamEvent
from chat_core.domain.exceptions import AdmissionError, ApiError, NetworkError, TransportError
from chat_core.domain.session import Attachment
from chat_core.infrastructure.logging.logger import logger
from chat_core.transport.sse import FrameDecoder


CONNECTION_CLOSED = "Connection closed before the response completed"

_EOF = object()


@dataclass
class ChatTurn:
    """一次对话请求（客户端 → 服务端）。"""

    message: str
    model: Optional[str] = None
    session_id: Optional[str] = None
    context: List[Dict[str, str]] = field(default_factory=list)
    attachments: List[Any] = field(default_factory=list)

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"message": self.message}
        if self.model:
            payload["model"] = self.model
        if self.session_id:
            payload["sessionId"] = self.session_id
        if self.context:
            payload["context"] = list(self.context)
        if self.attachments:
            payload["attachments"] = [
                a.to_payload() if isinstance(a, Attachment) else dict(a) for a in self.attachments
            ]
        return payload


class StreamEventReader:
    """惰性、有限、不可重启的 StreamEvent 序列。"""

    def __init__(
        self,
        chunks: AsyncIterator[bytes],
        on_close: Optional[Callable[[], Awaitable[None]]] = None,
    ):
        self._chunks = chunks.__aiter__()
        self._on_close = on_close
        self._decoder = FrameDecoder()
        self._pending: Deque[StreamEvent] = deque()
        self._cancel_event = asyncio.Event()
        self._eof = False
        self._closed = False
        self._terminal_seen = False
        self.cancelled = False
        self.close_reason: Optional[str] = None

    @property
    def frames_skipped(self) -> int:
        return self._decoder.frames_skipped

    @property
    def closed(self) -> bool:
        return self._closed

    def __aiter__(self) -> "StreamEventReader":
        return self

    async def __anext__(self) -> StreamEvent:
        while not self._pending:
            if self._closed:
                raise StopAsyncIteration
            if self._eof:
                await self.aclose()
                if self._terminal_seen or self.cancelled:
                    raise StopAsyncIteration
                self._terminal_seen = True
                return StreamEvent.failure(self.close_reason or CONNECTION_CLOSED)
            data = await self._read()
            if data is None:
                self._eof = True
                self._pending.extend(self._decoder.flush())
            else:
                self._pending.extend(self._decoder.feed(data))
        if self.cancelled:
            raise StopAsyncIteration
        event = self._pending.popleft()
        if event.is_terminal:
            # 终止事件之后的任何帧都不再交付
            self._terminal_seen = True
            self._pending.clear()
            await self.aclose()
        return event

    async def _pull(self) -> Any:
        try:
            return await self._chunks.__anext__()
        except StopAsyncIteration:
            return _EOF

    async def _read(self) -> Optional[bytes]:
        """读取下一块字节；EOF 或连接异常返回 None，被取消时结束迭代。"""

        read = asyncio.ensure_future(self._pull())
        cancelled = asyncio.ensure_future(self._cancel_event.wait())
        try:
            done, _ = await asyncio.wait({read, cancelled}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            read.cancel()
            cancelled.cancel()
            raise
        if read not in done:
            read.cancel()
            await asyncio.gather(read, return_exceptions=True)
            raise StopAsyncIteration
        cancelled.cancel()
        try:
            data = read.result()
        except httpx.HTTPError as e:
            self.close_reason = f"{CONNECTION_CLOSED}: {str(e) or type(e).__name__}"
            logger.warning("Stream connection dropped", extra={"extra": {"error": str(e)}})
            return None
        return None if data is _EOF else data

    async def cancel(self) -> None:
        """取消流：唤醒等待中的拉取，关闭连接，丢弃未交付的事件。"""

        if self._closed and self.cancelled:
            return
        self.cancelled = True
        self._cancel_event.set()
        self._pending.clear()
        await self.aclose()

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._decoder.reset()
        aclose = getattr(self._chunks, "aclose", None)
        try:
            if aclose is not None:
                await aclose()
        except RuntimeError:
            # 读取协程仍在运行（取消竞争），连接由 on_close 负责关闭
            pass
        finally:
            if self._on_close is not None:
                on_close, self._on_close = self._on_close, None
                await on_close()

    async def __aenter__(self) -> "StreamEventReader":
        return self

    async def __aexit__(self, *exc) -> None:
        if not self._closed:
            await self.cancel()


class ChatStreamClient:
    """访问聊天服务的 HTTP 客户端。

    - open_stream: 发送一轮对话并返回 StreamEventReader。
    - complete: 非流式对话。
    - run_chain: 链式处理。
    - list_models: 获取模型白名单。
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        cfg=settings,
        token: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._settings = cfg
        self._base_url = (base_url or cfg.api_base_url).rstrip("/")
        self._token = token
        self._transport = transport

    def set_token(self, token: Optional[str]) -> None:
        self._token = token

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        return headers

    def _client(self, stream: bool = False) -> httpx.AsyncClient:
        timeout = httpx.Timeout(
            self._settings.http_timeout,
            read=self._settings.stream_timeout + self._settings.http_timeout if stream else self._settings.http_timeout,
        )
        return httpx.AsyncClient(timeout=timeout, transport=self._transport, trust_env=False)

    async def list_models(self) -> Dict[str, Any]:
        return await self._request_json("GET", "/chat/models")

    async def complete(self, turn: ChatTurn) -> Dict[str, Any]:
        return await self._request_json("POST", "/chat/complete", json=turn.to_payload())

    async def run_chain(
        self,
        message: str,
        chain: List[Dict[str, Any]],
        context: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        body = {"message": message, "chain": chain, "context": context or {}}
        return await self._request_json("POST", "/chat/chain", json=body)

    async def open_stream(self, turn: ChatTurn) -> StreamEventReader:
        """发送对话请求并返回事件读取器。

        准入失败（400/429）以 AdmissionError 同步抛出，此时不会产生任何事件。
        """

        client = self._client(stream=True)
        try:
            request = client.build_request(
                "POST", f"{self._base_url}/chat", json=turn.to_payload(), headers=self._headers()
            )
            resp = await client.send(request, stream=True)
        except httpx.RequestError as e:
            await client.aclose()
            raise NetworkError(code="NETWORK_ERROR", message=str(e) or type(e).__name__)
        try:
            if resp.status_code >= 400:
                await resp.aread()
                raise self._error_from_response(resp)
            content_type = resp.headers.get("content-type", "")
            if "text/event-stream" not in content_type:
                raise TransportError(
                    code="NOT_EVENT_STREAM",
                    message=f"Unexpected response content type: {content_type or 'none'}",
                    http_status=502,
                )
        except BaseException:
            await resp.aclose()
            await client.aclose()
            raise

        async def _close() -> None:
            try:
                await resp.aclose()
            finally:
                await client.aclose()

        logger.info("Opened chat stream", extra={"extra": {"session_id": turn.session_id, "model": turn.model}})
        return StreamEventReader(resp.aiter_bytes(), on_close=_close)

    async def _request_json(self, method: str, path: str, **kwargs: Any) -> Dict[str, Any]:
        try:
            async with self._client() as client:
                resp = await client.request(method, f"{self._base_url}{path}", headers=self._headers(), **kwargs)
        except httpx.RequestError as e:
            raise NetworkError(code="NETWORK_ERROR", message=str(e) or type(e).__name__)
        if resp.status_code >= 400:
            raise self._error_from_response(resp)
        return resp.json()

    @staticmethod
    def _error_from_response(resp: httpx.Response):
        try:
            body = resp.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}
        code = body.get("error") or "HTTP_ERROR"
        message = body.get("message") or resp.text or f"HTTP error! status: {resp.status_code}"
        if resp.status_code == 429:
            return AdmissionError(code="RATE_LIMITED", message=message, http_status=429)
        if resp.status_code == 400:
            return AdmissionError(code=code, message=message, http_status=400)
        return ApiError(code=code, message=message, http_status=resp.status_code)
