"""Chat Core 顶层包。

该包提供流式对话核心的实现：SSE 事件流的服务端与客户端、
会话存储与流式消息对账、链式模型调用、请求准入与限流，
以及 Provider 适配、配置加载与日志等基础能力。
"""

from chat_core.flows.runner import ChainProcessor, run_chain

__all__ = ["ChainProcessor", "run_chain"]
