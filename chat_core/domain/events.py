"""流式事件模型。

StreamEvent 是服务端与客户端之间唯一的流式通知类型：

- chunk: 携带一段增量文本 content。
- complete: 携带服务端确认的完整回答 fullResponse 与实际使用的模型 model。
- error: 携带可读的错误信息 error。

同一个流中最多出现一个终止事件（complete 或 error），并且一定是最后一个事件。
线上 JSON 字段名与前端约定保持一致（fullResponse 为驼峰）。
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Literal, Optional


EventType = Literal["chunk", "complete", "error"]
TERMINAL_TYPES = ("complete", "error")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def isoformat_z(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


@dataclass
class StreamEvent:
    type: EventType
    timestamp: str
    content: Optional[str] = None
    full_response: Optional[str] = None
    model: Optional[str] = None
    error: Optional[str] = None

    @classmethod
    def chunk(cls, content: str) -> "StreamEvent":
        return cls(type="chunk", content=content, timestamp=isoformat_z(utc_now()))

    @classmethod
    def complete(cls, full_response: str, model: str) -> "StreamEvent":
        return cls(
            type="complete",
            full_response=full_response,
            model=model,
            timestamp=isoformat_z(utc_now()),
        )

    @classmethod
    def failure(cls, message: str) -> "StreamEvent":
        return cls(type="error", error=message, timestamp=isoformat_z(utc_now()))

    @property
    def is_terminal(self) -> bool:
        return self.type in TERMINAL_TYPES

    def to_payload(self) -> Dict[str, Any]:
        """转换为线上 JSON 对象，只输出该类型约定的字段。"""

        payload: Dict[str, Any] = {"type": self.type}
        if self.type == "chunk":
            payload["content"] = self.content or ""
        elif self.type == "complete":
            payload["fullResponse"] = self.full_response or ""
            payload["model"] = self.model
        else:
            payload["error"] = self.error or ""
        payload["timestamp"] = self.timestamp
        return payload

    @classmethod
    def from_payload(cls, data: Any) -> "StreamEvent":
        """从线上 JSON 对象还原事件。

        结构不符合约定时抛出 ValueError，由解码器决定跳过该帧。
        """

        if not isinstance(data, dict):
            raise ValueError("event payload must be an object")
        kind = data.get("type")
        timestamp = data.get("timestamp")
        if not isinstance(timestamp, str):
            timestamp = isoformat_z(utc_now())
        if kind == "chunk":
            content = data.get("content")
            if not isinstance(content, str):
                raise ValueError("chunk event without string content")
            return cls(type="chunk", content=content, timestamp=timestamp)
        if kind == "complete":
            full = data.get("fullResponse")
            if not isinstance(full, str):
                raise ValueError("complete event without string fullResponse")
            model = data.get("model")
            return cls(
                type="complete",
                full_response=full,
                model=model if isinstance(model, str) else None,
                timestamp=timestamp,
            )
        if kind == "error":
            error = data.get("error")
            return cls(
                type="error",
                error=str(error) if error is not None else "Unknown error",
                timestamp=timestamp,
            )
        raise ValueError(f"unknown event type: {kind!r}")
