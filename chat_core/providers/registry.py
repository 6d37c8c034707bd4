"""Provider 与模型配置。

集中维护 Provider 的基础地址与模型白名单。白名单之外的模型在准入阶段即被拒绝，
不会到达 Provider。

模型列表以 settings.available_models 为准，这里为每个模型补充生成参数；
未在 MODEL_DEFAULTS 中单独配置的模型使用通用默认值。"""

from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional

from chat_core.config.settings import settings


@dataclass
class ModelConfig:
    """单个模型的配置。"""

    logical_name: str
    provider_model: str
    max_tokens: int
    default_temperature: float


@dataclass
class ProviderConfig:
    """某个 Provider 的整体配置。"""

    name: str
    base_url: str
    models: Dict[str, ModelConfig]


MODEL_DEFAULTS: Mapping[str, ModelConfig] = {
    "gpt-4-turbo": ModelConfig("gpt-4-turbo", "gpt-4-turbo", 2000, 0.7),
    "gpt-4": ModelConfig("gpt-4", "gpt-4", 2000, 0.7),
    "gpt-3.5-turbo": ModelConfig("gpt-3.5-turbo", "gpt-3.5-turbo", 2000, 0.7),
    "gpt-4o": ModelConfig("gpt-4o", "gpt-4o", 2000, 0.7),
    "gpt-4o-mini": ModelConfig("gpt-4o-mini", "gpt-4o-mini", 2000, 0.7),
}


def _build_models(names: List[str]) -> Dict[str, ModelConfig]:
    models: Dict[str, ModelConfig] = {}
    for name in names:
        models[name] = MODEL_DEFAULTS.get(name) or ModelConfig(
            logical_name=name,
            provider_model=name,
            max_tokens=settings.completion_max_tokens,
            default_temperature=settings.completion_temperature,
        )
    return models


# OpenAI 配置
OPENAI_CONFIG = ProviderConfig(
    name="openai",
    base_url="https://api.openai.com/v1",
    models=_build_models(settings.available_models),
)


PROVIDER_REGISTRY: Mapping[str, ProviderConfig] = {
    "openai": OPENAI_CONFIG,
}


def get_provider_config(name: str) -> ProviderConfig:
    """根据名称获取 ProviderConfig，名称不区分大小写。"""

    key = name.lower()
    for k, cfg in PROVIDER_REGISTRY.items():
        if k.lower() == key:
            return cfg
    raise KeyError(f"Unknown provider: {name!r}")


def list_available_models(cfg=None) -> List[str]:
    """返回模型白名单（保持配置中的顺序）。"""

    source = cfg or settings
    return list(getattr(source, "available_models", None) or OPENAI_CONFIG.models.keys())


def is_model_allowed(model: Optional[str], cfg=None) -> bool:
    return bool(model) and model in list_available_models(cfg)
