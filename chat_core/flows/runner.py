"""High-level entry point for model chains."""

from __future__ import annotations

import time
from typing import Any, Dict, Iterable, List, Optional, Union
from uuid import uuid4

from chat_core.config.settings import settings
from chat_core.domain.chain import ChainStep, ChainStepResult
from chat_core.flows.graph import build_chain_graph
from chat_core.flows.state import ChainState
from chat_core.infrastructure.logging.logger import logger
from chat_core.providers import create_provider
from chat_core.providers.base import ProviderClient
from chat_core.transport.admission import validate_chain


StepLike = Union[ChainStep, Dict[str, Any]]


def _coerce_steps(steps: Iterable[StepLike]) -> List[ChainStep]:
    return [s if isinstance(s, ChainStep) else ChainStep.from_payload(s) for s in steps]


class ChainProcessor:
    """Run a chain of model invocations, feeding each output into the next step.

    The pipeline stops at the first failing step; the returned list is either
    as long as the chain or ends with the failing step's result.
    """

    def __init__(self, provider: ProviderClient, cfg=settings):
        self._provider = provider
        self._settings = cfg
        self._graph = build_chain_graph(provider, cfg)

    async def run(self, message: str, steps: Iterable[StepLike]) -> List[ChainStepResult]:
        chain = _coerce_steps(steps)
        validate_chain(message, chain, self._settings)
        trace_id = f"ch-{uuid4().hex}"
        started = time.monotonic()
        logger.info("chain.start", extra={"extra": {"trace_id": trace_id, "steps": len(chain)}})
        state: ChainState = {
            "message": message,
            "steps": chain,
            "index": 0,
            "results": [],
            "failed": False,
            "trace_id": trace_id,
        }
        final = await self._graph.ainvoke(state, config={"recursion_limit": len(chain) + 5})
        results: List[ChainStepResult] = final.get("results") or []
        logger.info(
            "chain.end",
            extra={"extra": {
                "trace_id": trace_id,
                "completed": len(results),
                "failed": bool(final.get("failed")),
                "elapsed_seconds": round(time.monotonic() - started, 2),
            }},
        )
        return results


async def run_chain(
    message: str,
    steps: Iterable[StepLike],
    *,
    provider_name: Optional[str] = None,
) -> List[ChainStepResult]:
    """Execute a chain with the configured provider and return step results.

    Args:
        message: 链的初始输入
        steps: ChainStep 或等价的字典
        provider_name: 指定 Provider
    """

    provider = create_provider(provider_name)
    return await ChainProcessor(provider).run(message, steps)
