"""
Model Configuration and Cost Accounting

Environment-driven model selection for classification and embeddings, plus the
price tables used to convert token usage into cents.
"""

import os
from dataclasses import dataclass


# Price per 1K tokens in dollars (input, output)
MODEL_PRICING = {
    "gpt-4o": (0.005, 0.015),
    "gpt-4o-mini": (0.00015, 0.0006),
    "gpt-5": (0.01, 0.03),
    "gpt-5-mini": (0.001, 0.003),
    "gpt-5-nano": (0.0003, 0.0012),
    "default": (0.001, 0.003),
}

# Price per 1K tokens in dollars
EMBEDDING_PRICING = {
    "text-embedding-3-small": 0.00002,
    "text-embedding-3-large": 0.00013,
    "text-embedding-ada-002": 0.0001,
    "voyage-law-2": 0.00022,
    "embed-english-v3.0": 0.0001,
    "BAAI/bge-m3": 0.0,
    "default": 0.0001,
}

EMBEDDING_DIMENSIONS = {
    "text-embedding-3-small": 1536,
    "text-embedding-3-large": 3072,
    "text-embedding-ada-002": 1536,
    "voyage-law-2": 1024,
    "embed-english-v3.0": 1024,
    "BAAI/bge-m3": 1024,
}

DEFAULT_CLASSIFICATION_MODEL = "gpt-4o-mini"
DEFAULT_EMBEDDING_MODEL = "text-embedding-3-small"


@dataclass
class ModelConfig:
    """Chat-completion model settings with pricing."""
    model: str = DEFAULT_CLASSIFICATION_MODEL
    max_tokens: int = 500
    temperature: float = 0.1
    input_cost_per_1k: float = 0.00015  # dollars
    output_cost_per_1k: float = 0.0006  # dollars

    @classmethod
    def for_model(cls, model: str, **overrides) -> "ModelConfig":
        """Build a config with the price table entry for ``model``."""
        input_cost, output_cost = MODEL_PRICING.get(model, MODEL_PRICING["default"])
        return cls(
            model=model,
            input_cost_per_1k=input_cost,
            output_cost_per_1k=output_cost,
            **overrides,
        )

    @property
    def uses_completion_tokens(self) -> bool:
        """o1/o3/gpt-5/gpt-4o take max_completion_tokens instead of max_tokens."""
        return self.model.startswith(("o1", "o3", "gpt-5", "gpt-4o"))

    @property
    def is_reasoning_model(self) -> bool:
        """o1/o3 reject response_format."""
        return self.model.startswith(("o1", "o3"))

    def to_dict(self) -> dict:
        return {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "temperature": self.temperature,
            "input_cost_per_1k": self.input_cost_per_1k,
            "output_cost_per_1k": self.output_cost_per_1k,
        }


@dataclass
class EmbeddingModelConfig:
    """Embedding model settings with pricing."""
    model: str = DEFAULT_EMBEDDING_MODEL
    dimensions: int = 1536
    cost_per_1k: float = 0.00002  # dollars

    @classmethod
    def for_model(cls, model: str) -> "EmbeddingModelConfig":
        return cls(
            model=model,
            dimensions=EMBEDDING_DIMENSIONS.get(model, 1536),
            cost_per_1k=EMBEDDING_PRICING.get(model, EMBEDDING_PRICING["default"]),
        )


def get_classification_config() -> ModelConfig:
    """Classification model config from OPENAI_MODEL_CLASSIFICATION and friends."""
    model = os.getenv("OPENAI_MODEL_CLASSIFICATION") or DEFAULT_CLASSIFICATION_MODEL
    return ModelConfig.for_model(
        model,
        max_tokens=int(os.getenv("OPENAI_CLASSIFICATION_MAX_TOKENS", "500")),
        temperature=float(os.getenv("OPENAI_CLASSIFICATION_TEMPERATURE", "0.1")),
    )


def get_embedding_config(model: str = None) -> EmbeddingModelConfig:
    """Embedding model config; ``model`` overrides OPENAI_MODEL_EMBEDDING."""
    model = model or os.getenv("OPENAI_MODEL_EMBEDDING") or DEFAULT_EMBEDDING_MODEL
    return EmbeddingModelConfig.for_model(model)


def calculate_cost_cents(
    input_tokens: int,
    output_tokens: int,
    config: ModelConfig,
) -> float:
    """
    Convert chat token usage into cents.

    Args:
        input_tokens: Prompt tokens reported by the API
        output_tokens: Completion tokens reported by the API
        config: Model config carrying per-1K prices in dollars

    Returns:
        Cost in cents (unrounded, so small calls still aggregate correctly)
    """
    dollars = (
        (input_tokens / 1000) * config.input_cost_per_1k
        + (output_tokens / 1000) * config.output_cost_per_1k
    )
    return dollars * 100


def calculate_embedding_cost_cents(tokens: int, config: EmbeddingModelConfig) -> float:
    """Convert embedding token usage into cents."""
    return (tokens / 1000) * config.cost_per_1k * 100
