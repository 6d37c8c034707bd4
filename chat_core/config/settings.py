"""配置管理模块。

支持从 .env、config.yaml 以及环境变量加载配置。
优先级：初始化参数 > 环境变量 > .env > config.yaml > secrets。
"""

import os
import warnings
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_MODELS = [
    "gpt-4-turbo",
    "gpt-4",
    "gpt-3.5-turbo",
    "gpt-4o",
    "gpt-4o-mini",
]


def _load_config_from_yaml() -> Dict[str, Any]:
    """从 config.yaml 加载配置（若存在）。"""
    candidates = []
    explicit = os.getenv("CHAT_CONFIG_FILE")
    if explicit:
        candidates.append(Path(explicit).expanduser())
    candidates.extend([
        Path.cwd() / "config.yaml",
        Path(__file__).resolve().parents[2] / "config.yaml",
        Path(__file__).resolve().parents[1] / "config.yaml",
    ])

    seen: set[Path] = set()
    for path in candidates:
        if not path or path in seen:
            continue
        seen.add(path)
        try:
            if path.exists():
                data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
                if isinstance(data, dict):
                    return data
                warnings.warn(f"Config file {path} is not a mapping, ignored")
        except (OSError, yaml.YAMLError) as exc:
            warnings.warn(f"Failed to read config file {path}: {exc}")
    return {}


class Settings(BaseSettings):
    """配置设置（使用 Pydantic）。"""

    # ---- Provider 相关配置 ----
    default_provider: str = Field(
        default="openai",
        description="默认使用的 Provider 名称",
    )
    default_model: str = Field(
        default="gpt-4o-mini",
        description="默认模型，必须在 available_models 白名单内",
    )
    available_models: List[str] = Field(
        default_factory=lambda: list(DEFAULT_MODELS),
        description="允许使用的模型白名单",
    )
    openai_api_key: Optional[str] = Field(default=None, description="OpenAI API 密钥")
    openai_base_url: str = Field(
        default="https://api.openai.com/v1",
        description="OpenAI 兼容 API 基础URL",
    )
    http_timeout: float = Field(default=30.0, ge=1.0, description="HTTP 超时时间（秒）")
    stream_timeout: float = Field(default=120.0, ge=1.0, description="单个流的最长持续时间（秒）")
    completion_max_tokens: int = Field(default=2000, ge=1, description="发给模型的 max_tokens")
    completion_temperature: float = Field(default=0.7, ge=0.0, le=2.0, description="生成温度")

    # ---- 准入限制 ----
    max_message_length: int = Field(default=10000, ge=1, description="单条用户消息最大长度")
    max_session_id_length: int = Field(default=100, ge=1, description="会话ID最大长度")
    max_chain_steps: int = Field(default=5, ge=1, le=5, description="链式处理最大步数（硬上限 5）")
    max_step_name_length: int = Field(default=100, ge=1, description="链步骤名最大长度")
    context_window_messages: int = Field(default=10, ge=1, le=100, description="上下文窗口消息数")
    chat_rate_limit: int = Field(default=20, ge=1, description="窗口内允许的聊天请求数")
    chat_rate_window: float = Field(default=60.0, gt=0, description="聊天限流窗口（秒）")
    chain_rate_limit: int = Field(default=5, ge=1, description="窗口内允许的链式请求数")
    chain_rate_window: float = Field(default=600.0, gt=0, description="链式限流窗口（秒）")
    max_attachment_size: int = Field(default=10 * 1024 * 1024, ge=1, description="附件最大字节数")

    # ---- 服务与客户端 ----
    api_base_url: str = Field(default="http://localhost:3001/api", description="客户端默认服务地址")
    server_host: str = Field(default="127.0.0.1", description="服务监听地址")
    server_port: int = Field(default=3001, ge=1, le=65535, description="服务监听端口")

    # ---- 日志 ----
    log_dir: str = Field(default="logs", description="日志目录")
    log_level: str = Field(default="INFO", description="日志级别")
    log_redact_content: bool = Field(default=False, description="是否脱敏日志内容")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @staticmethod
    def _config_source() -> Dict[str, Any]:
        return _load_config_from_yaml()

    @field_validator("openai_api_key")
    @classmethod
    def validate_api_key(cls, v: Optional[str]) -> Optional[str]:
        if v and len(v) < 10:
            raise ValueError("API key seems too short")
        return v

    @field_validator("available_models")
    @classmethod
    def validate_models(cls, v: List[str]) -> List[str]:
        models = [m.strip() for m in v if m and m.strip()]
        if not models:
            raise ValueError("available_models must not be empty")
        return models

    @model_validator(mode="after")
    def check_default_model(self) -> "Settings":
        if self.default_model not in self.available_models:
            raise ValueError(f"default_model {self.default_model!r} is not in available_models")
        return self

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            cls._config_source,
            file_secret_settings,
        )


settings = Settings()
