"""Tool registry: registration, gated execution and execution history."""

from __future__ import annotations

import asyncio
from collections import deque
from dataclasses import dataclass
from datetime import datetime
import logging
import threading
import time
from typing import TYPE_CHECKING

from castor.errors import (
    ConfirmationRequiredError,
    ToolExecutionError,
    ToolNotFoundError,
    ToolRegistrationError,
    ToolUnavailableError,
    ToolValidationError,
)
from castor.tools.base import ToolResult, new_execution_id

if TYPE_CHECKING:
    from collections.abc import Callable

    from castor.providers.models import FunctionTool
    from castor.tools.base import ParameterValidator, Tool, ToolCategory, ToolExecution

logger = logging.getLogger(__name__)

DEFAULT_MAX_HISTORY = 1000


@dataclass(frozen=True)
class _Registered:
    tool: Tool
    validator: ParameterValidator | None


@dataclass(frozen=True)
class ExecutionRecord:
    tool_name: str
    execution: ToolExecution
    result: ToolResult


@dataclass(frozen=True)
class ToolUsageStats:
    tool_name: str
    total_executions: int
    successful_executions: int
    failed_executions: int
    success_rate: float
    total_duration_s: float
    average_duration_s: float
    min_duration_s: float
    max_duration_s: float
    last_used: datetime | None


@dataclass(frozen=True)
class RegistryStats:
    total_tools: int
    available_tools: int
    categories: dict[str, int]
    total_executions: int
    overall_success_rate: float
    last_execution: datetime | None


class ToolRegistry:
    """Holds named tools and runs them behind availability, confirmation and
    validation gates.

    Gate failures come back as ``ToolResult(success=False)`` so callers can
    feed them to the model; only an unknown tool name raises.
    """

    def __init__(self, *, max_history: int = DEFAULT_MAX_HISTORY) -> None:
        self._tools: dict[str, _Registered] = {}
        self._history: deque[ExecutionRecord] = deque(maxlen=max_history)
        self._history_lock = threading.Lock()

    # --- registration ---

    def register_tool(self, tool: Tool) -> None:
        if tool is None:
            raise ToolRegistrationError("tool cannot be None")
        name = tool.name
        if not name:
            raise ToolRegistrationError("tool name cannot be empty")
        if name in self._tools:
            raise ToolRegistrationError(
                f"tool '{name}' is already registered", tool_name=name
            )
        # Resolve the validation capability once, not per call.
        self._tools[name] = _Registered(tool=tool, validator=tool.parameter_validator())
        logger.debug("Registered tool %s (%s)", name, tool.category.value)

    def unregister_tool(self, name: str) -> None:
        if self._tools.pop(name, None) is None:
            raise ToolNotFoundError(f"tool '{name}' not found", tool_name=name)

    def get_tool(self, name: str) -> Tool:
        entry = self._tools.get(name)
        if entry is None:
            raise ToolNotFoundError(f"tool '{name}' not found", tool_name=name)
        return entry.tool

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)

    # --- listing ---

    def list_tools(self) -> list[Tool]:
        """All tools, sorted by category then name."""
        return sorted(
            (e.tool for e in self._tools.values()),
            key=lambda t: (t.category.value, t.name),
        )

    async def list_available_tools(self) -> list[Tool]:
        return [t for t in self.list_tools() if await t.is_available()]

    def tools_by_category(self, category: ToolCategory) -> list[Tool]:
        return [t for t in self.list_tools() if t.category == category]

    def search_tools(self, query: str) -> list[Tool]:
        """Case-insensitive match on name or description."""
        q = query.lower()
        return [
            t for t in self.list_tools() if q in t.name.lower() or q in t.description.lower()
        ]

    def filter_tools(self, predicate: Callable[[Tool], bool]) -> list[Tool]:
        return [t for t in self.list_tools() if predicate(t)]

    async def function_definitions(self) -> list[FunctionTool]:
        """Function declarations for every currently available tool."""
        return [t.function_definition() for t in await self.list_available_tools()]

    # --- execution ---

    async def execute_tool(self, execution: ToolExecution) -> ToolResult:
        """Run a tool behind its gates and record the outcome.

        Raises:
            ToolNotFoundError: no tool is registered under ``execution.tool_name``.
        """
        entry = self._tools.get(execution.tool_name)
        if entry is None:
            raise ToolNotFoundError(
                f"tool '{execution.tool_name}' not found", tool_name=execution.tool_name
            )
        tool = entry.tool
        start = time.perf_counter()
        result = await self._run_gated(entry, execution)
        result.duration_s = time.perf_counter() - start
        result.timestamp = datetime.now()
        if not result.execution_id:
            result.execution_id = new_execution_id(result.timestamp)

        with self._history_lock:
            self._history.append(
                ExecutionRecord(tool_name=tool.name, execution=execution, result=result)
            )
        if not result.success:
            logger.debug("Tool %s failed: %s", tool.name, result.error)
        return result

    async def _run_gated(self, entry: _Registered, execution: ToolExecution) -> ToolResult:
        tool = entry.tool
        if not await tool.is_available():
            return ToolResult.failure(
                "tool is not available",
                f"Tool '{tool.name}' is currently unavailable",
                error_type=ToolUnavailableError.__name__,
            )

        if tool.requires_confirmation and not execution.confirmed:
            return ToolResult.failure(
                "confirmation required",
                f"Tool '{tool.name}' requires confirmation before execution",
                error_type=ConfirmationRequiredError.__name__,
                requires_confirmation=True,
                estimated_cost=tool.estimated_cost,
            )

        if entry.validator is not None:
            try:
                entry.validator(execution.parameters)
            except ToolValidationError as e:
                return ToolResult.failure(
                    str(e),
                    f"Parameter validation failed for tool '{tool.name}'",
                    error_type=ToolValidationError.__name__,
                    field=e.field,
                )

        try:
            return await tool.execute(dict(execution.parameters))
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.debug("Tool %s raised", tool.name, exc_info=True)
            return ToolResult.failure(
                str(e) or type(e).__name__,
                f"Tool '{tool.name}' execution failed",
                error_type=ToolExecutionError.__name__,
            )

    # --- history and statistics ---

    def history(self, limit: int | None = None) -> list[ExecutionRecord]:
        """Most recent records, newest last."""
        with self._history_lock:
            records = list(self._history)
        return records[-limit:] if limit else records

    def clear_history(self) -> None:
        with self._history_lock:
            self._history.clear()

    def usage_stats(self) -> dict[str, ToolUsageStats]:
        with self._history_lock:
            records = list(self._history)

        grouped: dict[str, list[ExecutionRecord]] = {}
        for record in records:
            grouped.setdefault(record.tool_name, []).append(record)

        stats: dict[str, ToolUsageStats] = {}
        for name, items in grouped.items():
            durations = [r.result.duration_s for r in items]
            successes = sum(1 for r in items if r.result.success)
            total = sum(durations)
            stats[name] = ToolUsageStats(
                tool_name=name,
                total_executions=len(items),
                successful_executions=successes,
                failed_executions=len(items) - successes,
                success_rate=successes / len(items),
                total_duration_s=total,
                average_duration_s=total / len(items),
                min_duration_s=min(durations),
                max_duration_s=max(durations),
                last_used=max(
                    (r.result.timestamp for r in items if r.result.timestamp),
                    default=None,
                ),
            )
        return stats

    async def stats(self) -> RegistryStats:
        tools = self.list_tools()
        available = await self.list_available_tools()
        categories: dict[str, int] = {}
        for tool in tools:
            categories[tool.category.value] = categories.get(tool.category.value, 0) + 1

        with self._history_lock:
            records = list(self._history)
        successes = sum(1 for r in records if r.result.success)
        return RegistryStats(
            total_tools=len(tools),
            available_tools=len(available),
            categories=categories,
            total_executions=len(records),
            overall_success_rate=successes / len(records) if records else 0.0,
            last_execution=records[-1].result.timestamp if records else None,
        )
