"""对外 API 服务模块。

把准入、消息构造、Provider 调用与流式编码串起来，供 HTTP 层调用。
HTTP 层只负责解析请求和把 BusinessError 映射成响应。
"""

from typing import Any, AsyncIterator, Dict, Iterable, List, Optional

from chat_core.config.settings import settings
from chat_core.domain.events import isoformat_z, utc_now
from chat_core.domain.models import ChatRequest
from chat_core.flows.runner import ChainProcessor
from chat_core.infrastructure.logging.logger import logger
from chat_core.providers import create_provider
from chat_core.providers.base import ProviderClient
from chat_core.providers.registry import list_available_models
from chat_core.transport.admission import (
    TokenBucketRateLimiter,
    chain_policy,
    chat_policy,
    validate_turn,
)
from chat_core.transport.server import build_messages, sse_frames, stream_chat_events


class ChatService:
    def __init__(
        self,
        provider: Optional[ProviderClient] = None,
        cfg=settings,
        limiter: Optional[TokenBucketRateLimiter] = None,
    ):
        self._provider = provider or create_provider(cfg.default_provider)
        self._settings = cfg
        self._limiter = limiter or TokenBucketRateLimiter()
        self._chain = ChainProcessor(self._provider, cfg)

    def available_models(self) -> Dict[str, Any]:
        return {
            "models": list_available_models(self._settings),
            "default": self._settings.default_model,
        }

    def admit_turn(
        self,
        caller: str,
        message: Any,
        model: Optional[str] = None,
        session_id: Optional[str] = None,
        context: Optional[List[Dict[str, Any]]] = None,
        attachments: Optional[Iterable[Any]] = None,
    ) -> ChatRequest:
        """限流 + 参数校验，通过后返回可以直接交给 Provider 的请求。

        Raises:
            AdmissionError: 限流或参数不合法。
        """

        self._limiter.admit(chat_policy(self._settings), caller)
        chosen = validate_turn(message, model, session_id, context, self._settings)
        return ChatRequest(
            provider=self._provider.name,
            model=chosen,
            messages=build_messages(message, context, attachments),
            temperature=self._settings.completion_temperature,
            max_tokens=self._settings.completion_max_tokens,
            caller=caller,
        )

    def stream_turn(self, req: ChatRequest) -> AsyncIterator[bytes]:
        """已准入请求的 SSE 字节流；Provider 失败只会以 error 事件出现。"""

        return sse_frames(stream_chat_events(self._provider, req, self._settings.stream_timeout))

    async def complete_turn(self, req: ChatRequest) -> Dict[str, Any]:
        result = await self._provider.chat(req)
        logger.info(
            "Completion finished",
            extra={"extra": {"model": result.model, "caller": req.caller, "chars": len(result.text)}},
        )
        return {
            "response": result.text,
            "model": result.model or req.model,
            "usage": result.usage.to_payload() if result.usage else None,
            "timestamp": isoformat_z(utc_now()),
        }

    async def run_chain(self, caller: str, message: Any, steps: List[Any]) -> Dict[str, Any]:
        self._limiter.admit(chain_policy(self._settings), caller)
        results = await self._chain.run(message, steps)
        return {
            "results": [r.to_payload() for r in results],
            "totalSteps": len(results),
            "timestamp": isoformat_z(utc_now()),
        }


_service: Optional[ChatService] = None


def get_default_service() -> ChatService:
    """获取默认的 ChatService 实例（单例）。"""
    global _service
    if _service is None:
        _service = ChatService()
    return _service
