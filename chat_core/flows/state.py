"""State definition for the chain LangGraph."""

from __future__ import annotations

from typing import List, TypedDict

from chat_core.domain.chain import ChainStep, ChainStepResult


class ChainState(TypedDict, total=False):
    """State shared across chain graph nodes."""

    message: str
    steps: List[ChainStep]
    index: int
    results: List[ChainStepResult]
    failed: bool
    trace_id: str
