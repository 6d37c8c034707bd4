"""Named text transforms usable by chain steps.

Chain definitions reference transforms by name only; executable code is never
accepted from request input. Transforms are pure ``str -> str`` functions.
"""

from __future__ import annotations

import re
from typing import Callable, Dict, List

from chat_core.domain.exceptions import ValidationError

Transform = Callable[[str], str]

_WHITESPACE = re.compile(r"\s+")

_TRANSFORMS: Dict[str, Transform] = {
    "strip": str.strip,
    "lowercase": str.lower,
    "uppercase": str.upper,
    "collapse_whitespace": lambda text: _WHITESPACE.sub(" ", text).strip(),
}


def register_transform(name: str, func: Transform) -> None:
    """Register a transform at import/startup time."""

    if not name:
        raise ValueError("transform name must not be empty")
    _TRANSFORMS[name] = func


def has_transform(name: str) -> bool:
    return name in _TRANSFORMS


def get_transform(name: str) -> Transform:
    try:
        return _TRANSFORMS[name]
    except KeyError:
        raise ValidationError(code="UNKNOWN_TRANSFORM", message=f"Unknown transform: {name}") from None


def available_transforms() -> List[str]:
    return sorted(_TRANSFORMS)
