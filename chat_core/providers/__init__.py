"""LLM Provider 集成层。

该包下的模块负责：
- 定义 Provider 抽象接口 (base)。
- 维护 Provider 与模型白名单 (registry)。
- 提供具体实现 (openai_client)。
"""

from typing import Optional

from chat_core.config.settings import settings
from chat_core.domain.exceptions import ValidationError
from chat_core.providers.base import ProviderClient
from chat_core.providers.openai_client import OpenAIClient


def create_provider(name: Optional[str] = None) -> ProviderClient:
    """根据名称创建 Provider 实例，默认取配置中的 provider。"""

    provider_name = (name or getattr(settings, "default_provider", "openai")).lower()
    if provider_name == "openai":
        return OpenAIClient(settings)
    raise ValidationError(code="UNKNOWN_PROVIDER", message=f"Unknown provider: {provider_name}")


__all__ = ["ProviderClient", "OpenAIClient", "create_provider"]
