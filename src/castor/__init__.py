"""Castor: a conversational agent that answers questions from API documentation.

Public API:
    - Agent: the facade wiring providers, tools, memory and the tool loop
    - load_settings(): resolve configuration from file, environment and overrides
    - ToolCallOrchestrator / OrchestrationPolicy: the bounded tool-calling loop
    - Provider compositions: FallbackProvider, LazyProvider
"""

from __future__ import annotations

import logging

from castor.agent import Agent, MessageOptions
from castor.config import Settings, load_settings
from castor.errors import (
    AllProvidersFailedError,
    CastorError,
    ConfigurationError,
    ErrorKind,
    NoProvidersConfiguredError,
    ProviderError,
    SessionError,
    ToolError,
)
from castor.memory import MemoryManager
from castor.orchestrator import OrchestrationPolicy, ToolCallOrchestrator
from castor.prompts import UserContext
from castor.providers import (
    CompletionRequest,
    CompletionResponse,
    FallbackProvider,
    LazyProvider,
    Message,
    MockProvider,
    ToolCall,
)
from castor.tools import KnowledgeBaseTool, Tool, ToolRegistry, ToolResult

try:
    from importlib.metadata import PackageNotFoundError, version

    __version__ = version("castor-agent")
except PackageNotFoundError:
    __version__ = "0.0.0+unknown"

# Library-level NullHandler: stay silent unless the consumer configures logging.
logging.getLogger("castor").addHandler(logging.NullHandler())

__all__ = [
    "Agent",
    "AllProvidersFailedError",
    "CastorError",
    "CompletionRequest",
    "CompletionResponse",
    "ConfigurationError",
    "ErrorKind",
    "FallbackProvider",
    "KnowledgeBaseTool",
    "LazyProvider",
    "MemoryManager",
    "Message",
    "MessageOptions",
    "MockProvider",
    "NoProvidersConfiguredError",
    "OrchestrationPolicy",
    "ProviderError",
    "SessionError",
    "Settings",
    "Tool",
    "ToolCall",
    "ToolCallOrchestrator",
    "ToolError",
    "ToolRegistry",
    "ToolResult",
    "UserContext",
    "__version__",
    "load_settings",
]
