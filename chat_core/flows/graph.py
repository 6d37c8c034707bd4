"""LangGraph construction and node implementations for model chains."""

from __future__ import annotations

from typing import Optional

from langgraph.graph import END, StateGraph
from langgraph.graph.state import CompiledStateGraph

from chat_core.config.settings import settings
from chat_core.domain.chain import ChainStepResult
from chat_core.domain.exceptions import BusinessError
from chat_core.domain.models import ChatMessage, ChatRequest
from chat_core.flows.state import ChainState
from chat_core.flows.transforms import get_transform
from chat_core.infrastructure.logging.logger import logger
from chat_core.prompts import load_system_prompt
from chat_core.providers.base import ProviderClient


async def step_node(state: ChainState, provider: ProviderClient, cfg=settings) -> ChainState:
    idx = state["index"]
    step = state["steps"][idx]
    name = step.name or f"Step {idx + 1}"
    sent = state["message"]
    log_extra = {"trace_id": state.get("trace_id"), "step": idx + 1, "model": step.model}
    try:
        if step.transform:
            sent = get_transform(step.transform)(sent)
        req = ChatRequest(
            provider=provider.name,
            model=step.model,
            messages=[
                ChatMessage(role="system", content=step.prompt_template or load_system_prompt()),
                ChatMessage(role="user", content=sent),
            ],
            temperature=cfg.completion_temperature,
            max_tokens=cfg.completion_max_tokens,
        )
        result = await provider.chat(req)
    except Exception as exc:
        message = exc.message if isinstance(exc, BusinessError) else (str(exc) or type(exc).__name__)
        state["results"].append(ChainStepResult(step=name, model=step.model, input=sent, error=message))
        state["failed"] = True
        logger.warning("chain.step_failed", extra={"extra": {**log_extra, "error": message}})
    else:
        output = result.text
        state["results"].append(ChainStepResult(step=name, model=step.model, input=sent, output=output))
        state["message"] = output
        logger.info("chain.step_done", extra={"extra": {**log_extra, "output_chars": len(output)}})
    state["index"] = idx + 1
    return state


def chain_router(state: ChainState) -> str:
    if state.get("failed") or state["index"] >= len(state["steps"]):
        return "end"
    return "step"


def build_chain_graph(provider: ProviderClient, cfg: Optional[object] = None) -> CompiledStateGraph:
    active_cfg = cfg or settings

    async def _step(state: ChainState) -> ChainState:
        return await step_node(state, provider, active_cfg)

    graph = StateGraph(ChainState)
    graph.add_node("step", _step)
    graph.set_entry_point("step")
    graph.add_conditional_edges("step", chain_router, {"step": "step", "end": END})
    return graph.compile()
