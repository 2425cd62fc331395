"""ToolRegistry: registration, execution gates, history and statistics."""

from __future__ import annotations

import asyncio

import pytest

from castor.errors import ToolNotFoundError, ToolRegistrationError, ToolValidationError
from castor.tools.base import (
    ParameterSchema,
    PropertySchema,
    SchemaValidator,
    ToolCategory,
    ToolExecution,
)
from castor.tools.registry import ToolRegistry

from tests.helpers import BrokenTool, DeleteRecordsTool, EchoTool, SlowTool

pytestmark = pytest.mark.unit


def _registry(*tools) -> ToolRegistry:
    registry = ToolRegistry()
    for tool in tools:
        registry.register_tool(tool)
    return registry


# =============================================================================
# Registration
# =============================================================================


def test_register_rejects_none_empty_and_duplicate_names() -> None:
    registry = _registry(EchoTool())

    with pytest.raises(ToolRegistrationError, match="None"):
        registry.register_tool(None)  # type: ignore[arg-type]
    with pytest.raises(ToolRegistrationError, match="empty"):
        registry.register_tool(EchoTool(name=""))
    with pytest.raises(ToolRegistrationError, match="already registered"):
        registry.register_tool(EchoTool())


def test_unregister_and_lookup() -> None:
    registry = _registry(EchoTool(), BrokenTool())
    assert "echo" in registry
    assert len(registry) == 2

    registry.unregister_tool("echo")
    assert "echo" not in registry
    with pytest.raises(ToolNotFoundError):
        registry.get_tool("echo")
    with pytest.raises(ToolNotFoundError):
        registry.unregister_tool("echo")


@pytest.mark.asyncio
async def test_listing_sorts_by_category_and_filters_availability() -> None:
    registry = _registry(
        EchoTool("zeta"), EchoTool("alpha", available=False), DeleteRecordsTool()
    )

    assert [t.name for t in registry.list_tools()] == ["delete_records", "alpha", "zeta"]
    assert [t.name for t in await registry.list_available_tools()] == [
        "delete_records",
        "zeta",
    ]
    assert [t.name for t in registry.tools_by_category(ToolCategory.TEXT)] == [
        "alpha",
        "zeta",
    ]
    assert [t.name for t in registry.search_tools("PERMANENTLY")] == ["delete_records"]
    definitions = await registry.function_definitions()
    assert definitions[1].parameters["required"] == ["text"]


# =============================================================================
# Execution Gates
# =============================================================================


@pytest.mark.asyncio
async def test_unknown_tool_raises() -> None:
    with pytest.raises(ToolNotFoundError):
        await ToolRegistry().execute_tool(ToolExecution(tool_name="ghost"))


@pytest.mark.asyncio
async def test_successful_execution_is_stamped() -> None:
    registry = _registry(EchoTool())
    result = await registry.execute_tool(
        ToolExecution(tool_name="echo", parameters={"text": "hi", "repeat": 2})
    )

    assert result.success
    assert result.message == "hi hi"
    assert result.execution_id.startswith("exec_")
    assert result.timestamp is not None
    assert result.duration_s >= 0


@pytest.mark.asyncio
async def test_unavailable_tool_fails_without_executing() -> None:
    tool = EchoTool(available=False)
    result = await _registry(tool).execute_tool(
        ToolExecution(tool_name="echo", parameters={"text": "hi"})
    )

    assert not result.success
    assert result.error == "tool is not available"
    assert result.metadata["error_type"] == "ToolUnavailableError"
    assert tool.calls == []


@pytest.mark.asyncio
async def test_confirmation_gate_reports_cost() -> None:
    tool = DeleteRecordsTool()
    registry = _registry(tool)

    blocked = await registry.execute_tool(ToolExecution(tool_name="delete_records"))
    assert not blocked.success
    assert blocked.metadata["requires_confirmation"] is True
    assert blocked.metadata["estimated_cost"] == 5
    assert not tool.executed

    allowed = await registry.execute_tool(
        ToolExecution(tool_name="delete_records", confirmed=True)
    )
    assert allowed.success
    assert tool.executed


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("params", "field"),
    [
        ({}, "text"),
        ({"text": 3}, "text"),
        ({"text": "hi", "repeat": 9}, "repeat"),
        ({"text": "hi", "repeat": True}, "repeat"),
        ({"text": "hi", "volume": 11}, "volume"),
    ],
)
async def test_validation_failures_name_the_field(params: dict, field: str) -> None:
    tool = EchoTool()
    result = await _registry(tool).execute_tool(
        ToolExecution(tool_name="echo", parameters=params)
    )

    assert not result.success
    assert result.metadata["error_type"] == "ToolValidationError"
    assert result.metadata["field"] == field
    assert tool.calls == []


@pytest.mark.asyncio
async def test_exceptions_from_tools_become_failures() -> None:
    result = await _registry(BrokenTool()).execute_tool(ToolExecution(tool_name="broken"))
    assert not result.success
    assert result.error == "disk on fire"
    assert result.metadata["error_type"] == "ToolExecutionError"


@pytest.mark.asyncio
async def test_cancellation_propagates_out_of_execute() -> None:
    registry = _registry(SlowTool(delay_s=10))
    task = asyncio.create_task(registry.execute_tool(ToolExecution(tool_name="slow")))
    await asyncio.sleep(0)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
    assert registry.history() == []


def test_schema_validator_checks_array_items() -> None:
    validator = SchemaValidator(
        ParameterSchema(
            properties={
                "tags": PropertySchema(type="array", items=PropertySchema(type="string")),
                "mode": PropertySchema(type="string", enum=("fast", "slow")),
            }
        )
    )
    validator({"tags": ["a", "b"], "mode": "fast"})
    with pytest.raises(ToolValidationError) as exc:
        validator({"tags": ["a", 2]})
    assert exc.value.field == "tags[1]"
    with pytest.raises(ToolValidationError, match="one of"):
        validator({"mode": "medium"})


# =============================================================================
# History and Statistics
# =============================================================================


@pytest.mark.asyncio
async def test_history_is_bounded() -> None:
    registry = ToolRegistry(max_history=3)
    registry.register_tool(EchoTool())
    for i in range(5):
        await registry.execute_tool(
            ToolExecution(tool_name="echo", parameters={"text": str(i)})
        )

    history = registry.history()
    assert [r.execution.parameters["text"] for r in history] == ["2", "3", "4"]
    assert len(registry.history(limit=1)) == 1

    registry.clear_history()
    assert registry.history() == []


@pytest.mark.asyncio
async def test_usage_and_registry_stats() -> None:
    registry = _registry(EchoTool(), BrokenTool())
    await registry.execute_tool(ToolExecution(tool_name="echo", parameters={"text": "a"}))
    await registry.execute_tool(ToolExecution(tool_name="echo", parameters={}))
    await registry.execute_tool(ToolExecution(tool_name="broken"))

    usage = registry.usage_stats()
    assert usage["echo"].total_executions == 2
    assert usage["echo"].successful_executions == 1
    assert usage["echo"].success_rate == 0.5
    assert usage["broken"].failed_executions == 1
    assert usage["echo"].last_used is not None

    stats = await registry.stats()
    assert stats.total_tools == 2
    assert stats.available_tools == 2
    assert stats.categories == {"text": 1, "system": 1}
    assert stats.total_executions == 3
    assert stats.overall_success_rate == pytest.approx(1 / 3)
