"""Factory for creating LLM providers and content services from configuration."""

from __future__ import annotations

from membank.config import LLMConfig
from membank.llm.base import ContentService, LLMProvider


def create_provider(config: LLMConfig) -> LLMProvider:
    """Create an LLM provider from configuration.

    Args:
        config: LLM configuration with provider, model, etc.

    Returns:
        An initialized LLM provider.

    Raises:
        ValueError: If the provider is unknown.
        ProviderNotAvailableError: If the provider's SDK is not installed.
    """
    provider = config.provider.lower()

    if provider == "openai" or provider == "local":
        from membank.llm.openai_provider import OpenAIProvider

        return OpenAIProvider(
            model=config.model,
            api_key=config.api_key,
            base_url=config.base_url,
            embedding_model=config.embedding_model,
        )
    elif provider == "anthropic":
        from membank.llm.anthropic_provider import AnthropicProvider

        return AnthropicProvider(
            model=config.model,
            api_key=config.api_key,
            base_url=config.base_url,
        )
    else:
        raise ValueError(
            f"Unknown LLM provider: '{provider}'. "
            f"Supported providers: openai, anthropic, local, mock"
        )


def create_content_service(config: LLMConfig) -> ContentService:
    """Create the content service for a configuration ("mock" runs offline)."""
    if config.provider.lower() == "mock":
        from membank.llm.mock import MockContentService

        return MockContentService()

    from membank.llm.service import ProviderContentService

    return ProviderContentService(create_provider(config), temperature=config.temperature)
