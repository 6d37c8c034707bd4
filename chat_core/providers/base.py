"""Provider 抽象接口。

传输层与链式处理器不直接依赖具体厂商的 HTTP 调用，而是依赖此协议：

- 每个厂商实现一个 ProviderClient（如 OpenAIClient）。
- 负责：将 ChatRequest 转成具体 API 请求，并把响应 JSON 解析为 ChatResult。
- 每次调用都携带完整消息列表，对核心而言是无状态的。
"""

from typing import AsyncIterator, List, Protocol
from chat_core.domain.models import ChatRequest, ChatResult, ChatStreamChunk


class ProviderClient(Protocol):
    """LLM Provider 客户端协议。

    实现者需要提供：
    - name: Provider 名称，用于日志/统计。
    - chat(req): 执行一次非流式对话调用，返回统一的 ChatResult。
    - chat_stream(req): 执行一次流式调用，逐个产出 ChatStreamChunk。
      调用方按需拉取，不拉取时底层读取自然暂停。
    - list_models(): 返回可用模型列表。
    """

    name: str

    async def chat(self, req: ChatRequest) -> ChatResult:
        ...

    def chat_stream(self, req: ChatRequest) -> AsyncIterator[ChatStreamChunk]:
        ...

    async def list_models(self) -> List[str]:
        ...
