"""请求准入：参数校验与限流。

准入发生在任何 Provider 调用或流事件之前；不满足条件的请求直接以 AdmissionError
同步拒绝，不会变成流中的 error 事件。

限流采用令牌桶：每个 "<策略名>:<调用方>" 键一个桶，首次请求总是允许，
令牌按 max_requests / window_seconds 的速率回填。
"""

import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional

from chat_core.config.settings import settings
from chat_core.domain.chain import ChainStep
from chat_core.domain.exceptions import AdmissionError
from chat_core.flows.transforms import has_transform
from chat_core.infrastructure.logging.logger import logger
from chat_core.providers.registry import list_available_models


@dataclass
class RateLimitPolicy:
    name: str
    max_requests: int
    window_seconds: float


def chat_policy(cfg=settings) -> RateLimitPolicy:
    return RateLimitPolicy("chat", cfg.chat_rate_limit, cfg.chat_rate_window)


def chain_policy(cfg=settings) -> RateLimitPolicy:
    return RateLimitPolicy("chain", cfg.chain_rate_limit, cfg.chain_rate_window)


class TokenBucketRateLimiter:
    """令牌桶限流器（进程内，单事件循环使用，无需加锁）。"""

    def __init__(self, clock: Callable[[], float] = time.monotonic, cleanup_interval: float = 300.0):
        self._clock = clock
        self._cleanup_interval = cleanup_interval
        self._last_cleanup = clock()
        self.buckets: Dict[str, Dict[str, float]] = {}

    def _cleanup_stale(self, now: float) -> None:
        """移除已经回填满的桶：它们与新建的桶等价。"""

        if now - self._last_cleanup < self._cleanup_interval:
            return
        self._last_cleanup = now
        stale = [
            key for key, bucket in self.buckets.items()
            if bucket["tokens"] + (now - bucket["last_update"]) * bucket["max_requests"] / bucket["window_seconds"]
            >= bucket["max_requests"]
        ]
        for key in stale:
            del self.buckets[key]
        if stale:
            logger.info("Evicted idle rate limit buckets", extra={"extra": {"count": len(stale)}})

    def check_rate_limit(self, key: str, max_requests: int, window_seconds: float) -> bool:
        """消耗一个令牌；桶内不足一个令牌时返回 False。"""

        now = self._clock()
        self._cleanup_stale(now)
        bucket = self.buckets.get(key)
        if bucket is None:
            bucket = {
                "tokens": float(max_requests),
                "last_update": now,
                "max_requests": float(max_requests),
                "window_seconds": float(window_seconds),
            }
            self.buckets[key] = bucket

        elapsed = now - bucket["last_update"]
        bucket["tokens"] = min(
            float(max_requests),
            bucket["tokens"] + elapsed * max_requests / window_seconds,
        )
        bucket["last_update"] = now

        if bucket["tokens"] >= 1:
            bucket["tokens"] -= 1
            return True
        return False

    def admit(self, policy: RateLimitPolicy, caller: str) -> None:
        key = f"{policy.name}:{caller}"
        if not self.check_rate_limit(key, policy.max_requests, policy.window_seconds):
            logger.warning("Rate limit exceeded", extra={"extra": {"key": key}})
            raise AdmissionError(
                code="RATE_LIMITED",
                message=f"Too many {policy.name} requests, please slow down.",
                http_status=429,
                policy=policy.name,
            )

    def reset(self) -> None:
        self.buckets.clear()


def _reject(code: str, message: str, **extra: Any) -> AdmissionError:
    logger.info("Request rejected", extra={"extra": {"code": code, "error": message, **extra}})
    return AdmissionError(code=code, message=message, **extra)


def validate_message(message: Any, cfg=settings) -> str:
    if not isinstance(message, str) or not message.strip():
        raise _reject("INVALID_MESSAGE", "Message must be a non-empty string")
    if len(message) > cfg.max_message_length:
        raise _reject(
            "MESSAGE_TOO_LONG",
            f"Message must be between 1 and {cfg.max_message_length} characters",
            length=len(message),
        )
    return message


def validate_model(model: Optional[str], cfg=settings) -> str:
    chosen = model or cfg.default_model
    if chosen not in list_available_models(cfg):
        raise _reject("INVALID_MODEL", f"Invalid model specified: {chosen}", model=chosen)
    return chosen


def validate_turn(
    message: Any,
    model: Optional[str] = None,
    session_id: Optional[str] = None,
    context: Optional[Iterable[Dict[str, Any]]] = None,
    cfg=settings,
) -> str:
    """校验一次对话请求，返回最终使用的模型名。"""

    validate_message(message, cfg)
    chosen = validate_model(model, cfg)
    if session_id is not None and not (0 < len(session_id) <= cfg.max_session_id_length):
        raise _reject("INVALID_SESSION_ID", "Invalid session ID")
    for item in context or []:
        if item.get("role") not in ("system", "user", "assistant") or not isinstance(item.get("content"), str):
            raise _reject("INVALID_CONTEXT", "Context items must be {role, content} with a known role")
    return chosen


def validate_chain(message: Any, steps: List[ChainStep], cfg=settings) -> None:
    """校验链式请求：长度上限在流水线开始前检查，而不是中途截断。"""

    validate_message(message, cfg)
    if not steps or len(steps) > cfg.max_chain_steps:
        raise _reject("INVALID_CHAIN", f"Chain must be an array with 1-{cfg.max_chain_steps} steps")
    allowed = list_available_models(cfg)
    for idx, step in enumerate(steps):
        if not isinstance(step.model, str):
            raise _reject("INVALID_CHAIN", f"Model must be a string in chain step {idx + 1}", step=idx)
        for attr in ("name", "prompt_template", "transform"):
            value = getattr(step, attr)
            if value is not None and not isinstance(value, str):
                raise _reject("INVALID_CHAIN", f"{attr} must be a string in chain step {idx + 1}", step=idx)
        if step.model not in allowed:
            raise _reject("INVALID_MODEL", f"Invalid model in chain step {idx + 1}: {step.model}", step=idx)
        if step.name is not None and len(step.name) > cfg.max_step_name_length:
            raise _reject("INVALID_CHAIN", f"Step name too long in chain step {idx + 1}", step=idx)
        if step.transform is not None and not has_transform(step.transform):
            raise _reject("UNKNOWN_TRANSFORM", f"Unknown transform in chain step {idx + 1}: {step.transform}", step=idx)
