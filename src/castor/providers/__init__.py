"""Provider implementations and compositions."""

from .anthropic import AnthropicProvider
from .base import BaseProvider, Provider, ProviderConfig
from .factory import create_provider_set, create_providers
from .fallback import FallbackProvider
from .gemini import GeminiProvider
from .lazy import LazyProvider
from .mock import MockProvider, MockScenario, MockStep
from .models import (
    CompletionRequest,
    CompletionResponse,
    FunctionTool,
    Message,
    StreamChunk,
    TokenUsage,
    ToolCall,
)
from .openai import OpenAIProvider

__all__ = [
    "AnthropicProvider",
    "BaseProvider",
    "CompletionRequest",
    "CompletionResponse",
    "FallbackProvider",
    "FunctionTool",
    "GeminiProvider",
    "LazyProvider",
    "Message",
    "MockProvider",
    "MockScenario",
    "MockStep",
    "OpenAIProvider",
    "Provider",
    "ProviderConfig",
    "StreamChunk",
    "TokenUsage",
    "ToolCall",
    "create_provider_set",
    "create_providers",
]
