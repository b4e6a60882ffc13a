"""
Tests for execution/case_intel/llm_client.py and model_config.py

Covers: CompletionResult JSON parsing, request parameters per model family,
        usage/cost accounting, OpenAI exception translation, lazy client
        creation, model configs from the environment and cost arithmetic.
"""

from unittest.mock import MagicMock

import httpx
import openai
import pytest


def make_response(content='{"category": "Financial"}', prompt_tokens=200, completion_tokens=50):
    response = MagicMock()
    response.id = "chatcmpl-123"
    response.choices = [MagicMock()]
    response.choices[0].message.content = content
    response.usage.prompt_tokens = prompt_tokens
    response.usage.completion_tokens = completion_tokens
    return response


REQUEST = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")


# ---------------------------------------------------------------------------
# CompletionResult
# ---------------------------------------------------------------------------

class TestCompletionResult:
    """Tests for CompletionResult.parse_json."""

    def test_parse_object(self):
        from execution.case_intel.llm_client import CompletionResult

        result = CompletionResult(content='{"a": 1}', model="gpt-4o-mini")
        assert result.parse_json() == {"a": 1}

    @pytest.mark.parametrize("content", ["not json", "[1, 2]", "", None])
    def test_invalid_content(self, content):
        from execution.case_intel.errors import InvalidModelResponse
        from execution.case_intel.llm_client import CompletionResult

        with pytest.raises(InvalidModelResponse):
            CompletionResult(content=content, model="gpt-4o-mini").parse_json()

    def test_total_tokens(self):
        from execution.case_intel.llm_client import CompletionResult

        assert CompletionResult("x", "m", input_tokens=3, output_tokens=4).total_tokens == 7


# ---------------------------------------------------------------------------
# LLMClient.complete
# ---------------------------------------------------------------------------

class TestComplete:
    """Tests for LLMClient.complete."""

    def test_returns_content_and_cost(self):
        from execution.case_intel.llm_client import LLMClient
        from execution.case_intel.model_config import ModelConfig, calculate_cost_cents

        client = MagicMock()
        client.chat.completions.create.return_value = make_response()
        config = ModelConfig.for_model("gpt-4o-mini")

        result = LLMClient(client=client).complete([{"role": "user", "content": "hi"}], config)

        assert result.content == '{"category": "Financial"}'
        assert result.input_tokens == 200
        assert result.output_tokens == 50
        assert result.response_id == "chatcmpl-123"
        assert result.cost_cents == pytest.approx(calculate_cost_cents(200, 50, config))

    def test_json_mode_and_completion_tokens_for_gpt4o(self):
        from execution.case_intel.llm_client import LLMClient
        from execution.case_intel.model_config import ModelConfig

        client = MagicMock()
        client.chat.completions.create.return_value = make_response()
        LLMClient(client=client).complete([], ModelConfig.for_model("gpt-4o-mini", max_tokens=300))

        params = client.chat.completions.create.call_args.kwargs
        assert params["response_format"] == {"type": "json_object"}
        assert params["max_completion_tokens"] == 300
        assert "max_tokens" not in params

    def test_gpt5_minimum_completion_budget(self):
        from execution.case_intel.llm_client import GPT5_MIN_COMPLETION_TOKENS, LLMClient
        from execution.case_intel.model_config import ModelConfig

        client = MagicMock()
        client.chat.completions.create.return_value = make_response()
        LLMClient(client=client).complete([], ModelConfig.for_model("gpt-5-mini", max_tokens=500))

        params = client.chat.completions.create.call_args.kwargs
        assert params["max_completion_tokens"] == GPT5_MIN_COMPLETION_TOKENS

    def test_legacy_model_uses_max_tokens(self):
        from execution.case_intel.llm_client import LLMClient
        from execution.case_intel.model_config import ModelConfig

        client = MagicMock()
        client.chat.completions.create.return_value = make_response()
        LLMClient(client=client).complete([], ModelConfig.for_model("gpt-3.5-turbo"), json_mode=False)

        params = client.chat.completions.create.call_args.kwargs
        assert params["max_tokens"] == 500
        assert "response_format" not in params

    def test_reasoning_model_skips_response_format(self):
        from execution.case_intel.llm_client import LLMClient
        from execution.case_intel.model_config import ModelConfig

        client = MagicMock()
        client.chat.completions.create.return_value = make_response()
        LLMClient(client=client).complete([], ModelConfig.for_model("o3-mini"))

        assert "response_format" not in client.chat.completions.create.call_args.kwargs

    def test_empty_choices(self):
        from execution.case_intel.llm_client import LLMClient
        from execution.case_intel.model_config import ModelConfig

        response = make_response()
        response.choices = []
        client = MagicMock()
        client.chat.completions.create.return_value = response

        result = LLMClient(client=client).complete([], ModelConfig())
        assert result.content == ""

    def test_missing_api_key(self, monkeypatch):
        from execution.case_intel.errors import ModelAuthenticationError
        from execution.case_intel.llm_client import LLMClient
        from execution.case_intel.model_config import ModelConfig

        monkeypatch.delenv("OPENAI_API_KEY", raising=False)
        with pytest.raises(ModelAuthenticationError):
            LLMClient().complete([], ModelConfig())

    def test_timeout_from_environment(self, monkeypatch):
        from execution.case_intel.llm_client import LLMClient

        monkeypatch.setenv("LLM_TIMEOUT_SECONDS", "12.5")
        assert LLMClient(client=MagicMock()).timeout == 12.5


# ---------------------------------------------------------------------------
# Error translation
# ---------------------------------------------------------------------------

class TestErrorTranslation:
    """Tests for translate_openai_error and its use in complete()."""

    def test_timeout(self):
        from execution.case_intel.errors import ModelTimeout
        from execution.case_intel.llm_client import translate_openai_error

        assert isinstance(translate_openai_error(openai.APITimeoutError(request=REQUEST)), ModelTimeout)

    def test_rate_limit(self):
        from execution.case_intel.errors import ModelRateLimited
        from execution.case_intel.llm_client import translate_openai_error

        error = openai.RateLimitError(
            "slow down", response=httpx.Response(429, request=REQUEST), body=None,
        )
        assert isinstance(translate_openai_error(error), ModelRateLimited)

    def test_authentication(self):
        from execution.case_intel.errors import ModelAuthenticationError
        from execution.case_intel.llm_client import translate_openai_error

        error = openai.AuthenticationError(
            "bad key", response=httpx.Response(401, request=REQUEST), body=None,
        )
        assert isinstance(translate_openai_error(error), ModelAuthenticationError)

    def test_connection_error(self):
        from execution.case_intel.errors import ModelServiceError
        from execution.case_intel.llm_client import translate_openai_error

        translated = translate_openai_error(openai.APIConnectionError(request=REQUEST))
        assert type(translated) is ModelServiceError

    def test_other_exceptions_pass_through(self):
        from execution.case_intel.llm_client import translate_openai_error

        error = KeyError("x")
        assert translate_openai_error(error) is error

    def test_complete_raises_translated(self):
        from execution.case_intel.errors import ModelTimeout
        from execution.case_intel.llm_client import LLMClient
        from execution.case_intel.model_config import ModelConfig

        client = MagicMock()
        client.chat.completions.create.side_effect = openai.APITimeoutError(request=REQUEST)

        with pytest.raises(ModelTimeout):
            LLMClient(client=client).complete([], ModelConfig())


# ---------------------------------------------------------------------------
# Model configuration
# ---------------------------------------------------------------------------

class TestModelConfig:
    """Tests for model_config."""

    def test_for_model_uses_price_table(self):
        from execution.case_intel.model_config import MODEL_PRICING, ModelConfig

        config = ModelConfig.for_model("gpt-4o")
        assert (config.input_cost_per_1k, config.output_cost_per_1k) == MODEL_PRICING["gpt-4o"]

    def test_unknown_model_uses_default_price(self):
        from execution.case_intel.model_config import MODEL_PRICING, ModelConfig

        config = ModelConfig.for_model("some-new-model")
        assert (config.input_cost_per_1k, config.output_cost_per_1k) == MODEL_PRICING["default"]

    def test_classification_config_from_env(self, monkeypatch):
        from execution.case_intel.model_config import get_classification_config

        monkeypatch.setenv("OPENAI_MODEL_CLASSIFICATION", "gpt-4o")
        monkeypatch.setenv("OPENAI_CLASSIFICATION_MAX_TOKENS", "800")
        monkeypatch.setenv("OPENAI_CLASSIFICATION_TEMPERATURE", "0.0")

        config = get_classification_config()
        assert config.model == "gpt-4o"
        assert config.max_tokens == 800
        assert config.temperature == 0.0

    def test_classification_config_defaults(self, monkeypatch):
        from execution.case_intel.model_config import get_classification_config

        for var in ("OPENAI_MODEL_CLASSIFICATION", "OPENAI_CLASSIFICATION_MAX_TOKENS",
                    "OPENAI_CLASSIFICATION_TEMPERATURE"):
            monkeypatch.delenv(var, raising=False)

        config = get_classification_config()
        assert config.model == "gpt-4o-mini"
        assert config.max_tokens == 500

    def test_embedding_config(self, monkeypatch):
        from execution.case_intel.model_config import get_embedding_config

        monkeypatch.delenv("OPENAI_MODEL_EMBEDDING", raising=False)
        assert get_embedding_config().dimensions == 1536
        assert get_embedding_config("text-embedding-3-large").dimensions == 3072

    def test_cost_in_cents(self):
        from execution.case_intel.model_config import (
            EmbeddingModelConfig, ModelConfig,
            calculate_cost_cents, calculate_embedding_cost_cents,
        )

        config = ModelConfig(input_cost_per_1k=0.001, output_cost_per_1k=0.002)
        assert calculate_cost_cents(1000, 500, config) == pytest.approx(0.2)
        assert calculate_cost_cents(0, 0, config) == 0

        embedding = EmbeddingModelConfig.for_model("text-embedding-3-small")
        assert calculate_embedding_cost_cents(1_000_000, embedding) == pytest.approx(2.0)
