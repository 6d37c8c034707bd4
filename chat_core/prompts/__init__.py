"""系统提示词加载工具。

按语言(locale) 从 prompts/<locale> 目录读取对应的 system prompt 文本，
用于构造 ChatMessage(role="system")。
"""

from functools import lru_cache
from pathlib import Path


PROMPTS_DIR = Path(__file__).resolve().parent


@lru_cache(maxsize=None)
def load_system_prompt(name: str = "assistant", locale: str = "en") -> str:
    """根据提示词名称和语言加载系统提示词文本。

    目前只有通用助手 "assistant"，流式对话与链式处理的缺省提示词都来自这里。
    """

    fname = PROMPTS_DIR / locale / f"{name}_system.md"
    return fname.read_text(encoding="utf-8").strip()
