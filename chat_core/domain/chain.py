"""链式处理（chain）的输入与输出模型。"""

from dataclasses import dataclass
from typing import Any, Dict, Optional

from .events import isoformat_z, utc_now


@dataclass
class ChainStep:
    """链中的一步。

    - model: 本步使用的模型（必须在白名单内）。
    - prompt_template: 本步的 system 提示词，缺省使用通用助手提示词。
    - transform: 已注册的文本变换名称（见 flows.transforms），在调用前作用于输入。
    - name: 步骤名，缺省为 "Step N"。
    """

    model: str
    prompt_template: Optional[str] = None
    transform: Optional[str] = None
    name: Optional[str] = None

    @classmethod
    def from_payload(cls, data: Dict[str, Any]) -> "ChainStep":
        return cls(
            model=data.get("model") or "",
            prompt_template=data.get("prompt_template"),
            transform=data.get("transform"),
            name=data.get("name"),
        )


@dataclass
class ChainStepResult:
    """单步执行结果，output 与 error 互斥。"""

    step: str
    model: str
    input: str
    output: Optional[str] = None
    error: Optional[str] = None
    timestamp: str = ""

    def __post_init__(self) -> None:
        if not self.timestamp:
            self.timestamp = isoformat_z(utc_now())

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "step": self.step,
            "model": self.model,
            "input": self.input,
        }
        if self.error is not None:
            payload["error"] = self.error
        else:
            payload["output"] = self.output or ""
        payload["timestamp"] = self.timestamp
        return payload
