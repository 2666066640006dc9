"""
OpenAI client factory.

Builds the async client shared by the embedding client and the chat
generator. Plain OpenAI is used by default, Azure OpenAI when
AZURE_OPENAI_ENDPOINT is configured.
"""

from typing import Optional, Union

from openai import AsyncAzureOpenAI, AsyncOpenAI

from config.settings import ConfigurationError, OpenAIConfig, get_settings

AsyncClient = Union[AsyncOpenAI, AsyncAzureOpenAI]


def create_openai_client(config: Optional[OpenAIConfig] = None) -> AsyncClient:
    """
    Create an async OpenAI client from settings.

    Raises:
        ConfigurationError: no API key is configured
    """
    config = config or get_settings().openai

    if not config.api_key:
        raise ConfigurationError(
            "OPENAI_API_KEY is not set. "
            "Add it to your .env file or set it as an environment variable."
        )

    if config.use_azure:
        return AsyncAzureOpenAI(
            azure_endpoint=config.azure_endpoint,
            api_key=config.api_key,
            api_version=config.api_version
        )

    return AsyncOpenAI(api_key=config.api_key)
