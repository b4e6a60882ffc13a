"""
LLM Client

Thin wrapper around the OpenAI chat-completions API used by the classification
pipeline. Handles the per-model request parameters, enforces a timeout,
translates SDK exceptions into the pipeline's error kinds, and reports token
usage and cost for every call.
"""

import os
import json
import logging
from dataclasses import dataclass
from typing import Optional

import openai
from openai import OpenAI

from .errors import (
    InvalidModelResponse,
    ModelAuthenticationError,
    ModelRateLimited,
    ModelServiceError,
    ModelTimeout,
)
from .model_config import ModelConfig, calculate_cost_cents

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 60.0

# gpt-5 spends completion tokens on reasoning before answering
GPT5_MIN_COMPLETION_TOKENS = 2000


@dataclass
class CompletionResult:
    """Model answer with usage accounting."""
    content: str
    model: str
    input_tokens: int = 0
    output_tokens: int = 0
    cost_cents: float = 0.0
    response_id: Optional[str] = None

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens

    def parse_json(self) -> dict:
        """Parse the content as a JSON object or raise InvalidModelResponse."""
        try:
            parsed = json.loads(self.content)
        except (TypeError, ValueError) as e:
            raise InvalidModelResponse(f"Invalid response from AI: {e}") from e
        if not isinstance(parsed, dict):
            raise InvalidModelResponse("Invalid response from AI: expected a JSON object")
        return parsed


def translate_openai_error(error: Exception) -> Exception:
    """Map an OpenAI SDK exception onto the pipeline's error kinds."""
    if isinstance(error, openai.APITimeoutError):
        return ModelTimeout()
    if isinstance(error, openai.RateLimitError):
        return ModelRateLimited()
    if isinstance(error, openai.AuthenticationError):
        return ModelAuthenticationError(str(error))
    if isinstance(error, openai.APIStatusError) and error.status_code == 429:
        return ModelRateLimited()
    if isinstance(error, openai.APIError):
        return ModelServiceError(str(error))
    return error


class LLMClient:
    """
    Chat-completion client with timeout and error translation.

    The OpenAI client is created lazily from OPENAI_API_KEY / OPENAI_BASE_URL
    unless one is injected (tests inject a MagicMock).
    """

    def __init__(
        self,
        client: Optional[OpenAI] = None,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        self._client = client
        self._api_key = api_key or os.getenv("OPENAI_API_KEY")
        self._base_url = base_url or os.getenv("OPENAI_BASE_URL")
        self.timeout = timeout or float(
            os.getenv("LLM_TIMEOUT_SECONDS", str(DEFAULT_TIMEOUT_SECONDS))
        )

    @property
    def client(self) -> OpenAI:
        if self._client is None:
            if not self._api_key:
                raise ModelAuthenticationError(
                    "OpenAI client not initialized. Check OPENAI_API_KEY."
                )
            kwargs = {"api_key": self._api_key, "timeout": self.timeout}
            if self._base_url:
                kwargs["base_url"] = self._base_url
            self._client = OpenAI(**kwargs)
        return self._client

    def _build_request(self, messages: list[dict], config: ModelConfig, json_mode: bool) -> dict:
        params = {
            "model": config.model,
            "messages": messages,
            "temperature": config.temperature,
        }
        if config.uses_completion_tokens:
            max_tokens = config.max_tokens
            if config.model.startswith("gpt-5"):
                max_tokens = max(max_tokens, GPT5_MIN_COMPLETION_TOKENS)
            params["max_completion_tokens"] = max_tokens
        else:
            params["max_tokens"] = config.max_tokens

        if json_mode and not config.is_reasoning_model:
            params["response_format"] = {"type": "json_object"}
        return params

    def complete(
        self,
        messages: list[dict],
        config: ModelConfig,
        json_mode: bool = True,
    ) -> CompletionResult:
        """
        Run one chat completion.

        Args:
            messages: OpenAI-style message list
            config: Model, token limit, temperature and pricing
            json_mode: Request a JSON object response

        Returns:
            CompletionResult with content, token counts and cost in cents

        Raises:
            ModelRateLimited, ModelTimeout, ModelAuthenticationError,
            ModelServiceError
        """
        params = self._build_request(messages, config, json_mode)
        try:
            response = self.client.chat.completions.create(**params)
        except openai.OpenAIError as e:
            translated = translate_openai_error(e)
            logger.error(f"{config.model} completion failed: {translated}")
            raise translated from e

        content = ""
        if response.choices:
            content = response.choices[0].message.content or ""

        usage = getattr(response, "usage", None)
        input_tokens = getattr(usage, "prompt_tokens", 0) or 0
        output_tokens = getattr(usage, "completion_tokens", 0) or 0
        cost = calculate_cost_cents(input_tokens, output_tokens, config)

        logger.debug(
            f"{config.model}: {input_tokens} in / {output_tokens} out tokens, "
            f"{cost:.4f} cents"
        )
        return CompletionResult(
            content=content,
            model=config.model,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            cost_cents=cost,
            response_id=getattr(response, "id", None),
        )
