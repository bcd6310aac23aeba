"""LLM capability used to answer questions over retrieved chunks."""

from llm.client import (
    LLMClient,
    OllamaClient,
    OpenAICompatibleClient,
    build_prompt,
    create_llm_client,
    format_context,
)

__all__ = [
    "LLMClient",
    "OllamaClient",
    "OpenAICompatibleClient",
    "build_prompt",
    "create_llm_client",
    "format_context",
]
