"""Tool abstraction, registry and the documentation search tool."""

from .base import (
    ParameterSchema,
    PropertySchema,
    SchemaValidator,
    Tool,
    ToolCategory,
    ToolExecution,
    ToolResult,
)
from .registry import RegistryStats, ToolRegistry, ToolUsageStats
from .search import (
    SEARCH_TOOL_NAME,
    DirectorySearchEngine,
    KnowledgeBaseTool,
    SearchEngine,
    SearchHit,
)

__all__ = [
    "SEARCH_TOOL_NAME",
    "DirectorySearchEngine",
    "KnowledgeBaseTool",
    "ParameterSchema",
    "PropertySchema",
    "RegistryStats",
    "SchemaValidator",
    "SearchEngine",
    "SearchHit",
    "Tool",
    "ToolCategory",
    "ToolExecution",
    "ToolRegistry",
    "ToolResult",
    "ToolUsageStats",
]
