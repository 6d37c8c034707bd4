import asyncio

import pytest

from chat_core.domain.chain import ChainStep
from chat_core.domain.exceptions import AdmissionError, ApiError
from chat_core.domain.models import ChatChoice, ChatMessage, ChatResult
from chat_core.flows.runner import ChainProcessor
from chat_core.flows.transforms import available_transforms, get_transform, register_transform
from chat_core.prompts import load_system_prompt


class FakeProvider:
    """按调用顺序返回预设输出；outputs 中的异常会被抛出。"""

    name = "fake"

    def __init__(self, outputs):
        self.outputs = list(outputs)
        self.requests = []

    async def chat(self, req):
        self.requests.append(req)
        out = self.outputs[len(self.requests) - 1]
        if isinstance(out, Exception):
            raise out
        msg = ChatMessage(role="assistant", content=out)
        return ChatResult(provider="fake", model=req.model, choices=[ChatChoice(index=0, message=msg)])

    def chat_stream(self, req):
        raise NotImplementedError

    async def list_models(self):
        return []


def test_chain_feeds_each_output_into_next_step():
    provider = FakeProvider(["one", "two", "three"])
    steps = [
        {"model": "gpt-4o-mini", "name": "draft"},
        {"model": "gpt-4o", "prompt_template": "Summarise."},
        ChainStep(model="gpt-4o-mini"),
    ]
    results = asyncio.run(ChainProcessor(provider).run("start", steps))

    assert [r.output for r in results] == ["one", "two", "three"]
    assert [r.input for r in results] == ["start", "one", "two"]
    assert [r.step for r in results] == ["draft", "Step 2", "Step 3"]
    assert provider.requests[1].messages[0].content == "Summarise."
    assert provider.requests[1].model == "gpt-4o"


def test_chain_stops_at_first_failing_step():
    provider = FakeProvider(["A", ApiError(code="API_ERROR", message="model overloaded", http_status=503), "C"])
    steps = [{"model": "gpt-4o-mini"}, {"model": "gpt-4o-mini"}, {"model": "gpt-4o-mini"}]
    results = asyncio.run(ChainProcessor(provider).run("start", steps))

    assert len(provider.requests) == 2
    assert len(results) == 2
    assert results[0].output == "A"
    assert results[1].error == "model overloaded"
    assert results[1].input == "A"
    payload = results[1].to_payload()
    assert "output" not in payload
    assert payload["error"] == "model overloaded"


def test_chain_longer_than_limit_is_rejected_before_any_call():
    provider = FakeProvider(["x"] * 6)
    with pytest.raises(AdmissionError) as exc:
        asyncio.run(ChainProcessor(provider).run("start", [{"model": "gpt-4o-mini"}] * 6))
    assert exc.value.code == "INVALID_CHAIN"
    assert provider.requests == []


def test_empty_chain_and_unknown_model_are_rejected():
    provider = FakeProvider([])
    with pytest.raises(AdmissionError):
        asyncio.run(ChainProcessor(provider).run("start", []))
    with pytest.raises(AdmissionError) as exc:
        asyncio.run(ChainProcessor(provider).run("start", [{"model": "not-a-model"}]))
    assert exc.value.code == "INVALID_MODEL"
    assert provider.requests == []


def test_named_transform_applies_to_step_input():
    provider = FakeProvider(["done"])
    results = asyncio.run(
        ChainProcessor(provider).run("  Mixed   Case  ", [{"model": "gpt-4o-mini", "transform": "collapse_whitespace"}])
    )
    assert results[0].input == "Mixed Case"
    assert provider.requests[0].messages[-1].content == "Mixed Case"


def test_unknown_transform_is_an_admission_error():
    provider = FakeProvider(["done"])
    with pytest.raises(AdmissionError) as exc:
        asyncio.run(ChainProcessor(provider).run("hi", [{"model": "gpt-4o-mini", "transform": "eval"}]))
    assert exc.value.code == "UNKNOWN_TRANSFORM"
    assert provider.requests == []


def test_transform_registry():
    assert {"collapse_whitespace", "lowercase", "strip", "uppercase"} <= set(available_transforms())
    assert get_transform("uppercase")("abc") == "ABC"


def test_registered_transform_is_usable_in_chain():
    register_transform("reverse", lambda text: text[::-1])
    provider = FakeProvider(["ok"])
    results = asyncio.run(ChainProcessor(provider).run("abc", [{"model": "gpt-4o-mini", "transform": "reverse"}]))
    assert results[0].input == "cba"
    with pytest.raises(ValueError):
        register_transform("", str.strip)


def test_step_without_template_uses_default_prompt():
    provider = FakeProvider(["ok"])
    asyncio.run(ChainProcessor(provider).run("hi", [{"model": "gpt-4o-mini"}]))
    assert provider.requests[0].messages[0].content == load_system_prompt()
    assert load_system_prompt(locale="zh") == "你是一个有用的AI助手。"
