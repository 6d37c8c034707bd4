import pytest

from chat_core.domain.exceptions import ValidationError
from chat_core.providers import OpenAIClient, create_provider
from chat_core.providers.registry import get_provider_config, is_model_allowed, list_available_models


def test_create_default_provider():
    assert isinstance(create_provider(), OpenAIClient)
    assert isinstance(create_provider("OpenAI"), OpenAIClient)


def test_unknown_provider_is_rejected():
    with pytest.raises(ValidationError) as exc:
        create_provider("zhipu")
    assert exc.value.code == "UNKNOWN_PROVIDER"


def test_registry_lookup():
    cfg = get_provider_config("OPENAI")
    assert cfg.name == "openai"
    assert "gpt-4o-mini" in cfg.models
    with pytest.raises(KeyError):
        get_provider_config("nope")


def test_model_allow_list():
    assert list_available_models() == ["gpt-4-turbo", "gpt-4", "gpt-3.5-turbo", "gpt-4o", "gpt-4o-mini"]
    assert is_model_allowed("gpt-4o")
    assert not is_model_allowed("gpt-5")
    assert not is_model_allowed(None)
