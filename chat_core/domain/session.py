"""会话与消息的领域模型，以及 SessionStore 抽象。"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Dict, Any, List, Literal, Protocol

from .models import Role


# 消息定稿后的终态；流式进行中为 None
MessageStatus = Literal["complete", "error", "aborted"]


@dataclass
class Attachment:
    """附件。由外部文件处理协作者产出，核心只把它当作上下文文本。"""

    id: str
    filename: str
    type: str
    size: int
    content: Optional[str] = None
    summary: Optional[str] = None

    def context_text(self) -> str:
        return self.summary or self.content or ""

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "id": self.id,
            "filename": self.filename,
            "type": self.type,
            "size": self.size,
        }
        if self.content is not None:
            payload["content"] = self.content
        if self.summary is not None:
            payload["summary"] = self.summary
        return payload


@dataclass
class Message:
    """会话中的一条消息。

    content 只在 is_streaming 为 True 时被追加；定稿后 is_streaming 置为 False，
    status 记录终态（complete/error/aborted）。id 与 timestamp 由 SessionStore 分配。
    """

    role: Role
    content: str = ""
    id: str = ""
    timestamp: Optional[datetime] = None
    model: Optional[str] = None
    attachments: Optional[List[Attachment]] = None
    is_streaming: bool = False
    status: Optional[MessageStatus] = None


@dataclass
class Session:
    id: str
    name: str
    model: str
    messages: List[Message] = field(default_factory=list)
    is_active: bool = True
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    meta: Dict[str, Any] = field(default_factory=dict)


class SessionStore(Protocol):
    def create_session(self, model: str, name: Optional[str] = None) -> str:
        ...

    def get_session(self, session_id: str) -> Optional[Session]:
        ...

    def list_sessions(self) -> List[Session]:
        ...

    def remove_session(self, session_id: str) -> None:
        ...

    def append_message(self, session_id: str, message: Message) -> Optional[str]:
        ...

    def update_message(self, session_id: str, message_id: str, **fields: Any) -> bool:
        ...

    def context_window(self, session_id: str, limit: Optional[int] = None) -> List[Dict[str, str]]:
        ...

    def streaming_message(self, session_id: str) -> Optional[Message]:
        ...
