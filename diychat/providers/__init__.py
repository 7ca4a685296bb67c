from typing import Optional

import httpx

from .base import BaseLLMProvider
from .openai import OpenAIProvider
from .anthropic import AnthropicProvider
from ..crypto import KeyCipher
from ..errors import ConfigurationError
from ..types import Backend

PROVIDERS = {
    "openai": OpenAIProvider,
    "anthropic": AnthropicProvider,
}


def create_provider(
    backend: Backend,
    cipher: KeyCipher,
    http_client: Optional[httpx.AsyncClient] = None,
) -> BaseLLMProvider:
    """
    Build the provider adapter for a stored backend, decrypting its API key.

    Raises:
        ConfigurationError: If the backend's provider type is unknown.
    """
    provider_cls = PROVIDERS.get(backend["provider_type"])
    if provider_cls is None:
        raise ConfigurationError(f"Unknown provider type: {backend['provider_type']}")
    return provider_cls(
        api_key=cipher.decrypt(backend.get("api_key_encrypted") or ""),
        base_url=backend["base_url"],
        http_client=http_client,
    )


__all__ = ["BaseLLMProvider", "OpenAIProvider", "AnthropicProvider", "PROVIDERS", "create_provider"]
