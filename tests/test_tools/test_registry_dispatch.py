import asyncio
from typing import Any

import pytest

from pnpfucius.exceptions import DuplicateToolError, ToolNotFoundError
from pnpfucius.tools.registry import Tool, ToolInvocationResult, ToolRegistry, is_blocked_shell_command


class _StatsTool(Tool):
    name = "get_stats"
    description = "Stats"
    category = "analytics"
    parameters = {
        "type": "object",
        "properties": {
            "period": {"type": "string", "enum": ["24h", "7d", "30d", "all"]},
            "limit": {"type": "integer"},
        },
    }

    async def execute(self, period: str = "7d", limit: int = 10, **kwargs: Any) -> dict[str, Any]:
        return {"period": period, "limit": limit}


class _BoomTool(Tool):
    name = "boom"
    description = "Always fails"

    async def execute(self, **kwargs: Any) -> dict[str, Any]:
        raise RuntimeError("gateway exploded")


class _ReportsErrorTool(Tool):
    name = "reports_error"
    description = "Returns an error field"

    async def execute(self, **kwargs: Any) -> dict[str, Any]:
        return {"error": "market not found", "address": "abc"}


class _SlowTool(Tool):
    name = "slow"
    description = "Sleeps"

    def __init__(self):
        self.cancelled = False

    def effective_timeout(self, arguments: dict[str, Any]) -> float:
        return 0.05

    async def execute(self, **kwargs: Any) -> dict[str, Any]:
        try:
            await asyncio.sleep(5)
        except asyncio.CancelledError:
            self.cancelled = True
            raise
        return {}


class _NotADictTool(Tool):
    name = "not_a_dict"
    description = "Bad payload"

    async def execute(self, **kwargs: Any) -> dict[str, Any]:
        return ["nope"]  # type: ignore[return-value]


def _registry(*tools: Tool) -> ToolRegistry:
    registry = ToolRegistry()
    for tool in tools:
        registry.register(tool)
    registry.freeze()
    return registry


@pytest.mark.asyncio
async def test_success_result_carries_fields_and_meta():
    registry = _registry(_StatsTool())

    result = await registry.execute("get_stats", {"period": "30d"})

    assert result.ok
    assert result.data == {"period": "30d", "limit": 10}
    assert result.meta.tool == "get_stats"
    assert result.meta.duration_ms >= 0
    payload = result.to_payload()
    assert "error" not in payload
    assert payload["_meta"]["tool"] == "get_stats"


@pytest.mark.asyncio
async def test_unknown_tool_lists_available_tools():
    registry = _registry(_StatsTool(), _BoomTool())

    result = await registry.execute("no_such_tool", {})

    assert not result.ok
    assert result.error == "Unknown tool: no_such_tool"
    assert result.data == {"available_tools": ["get_stats", "boom"]}
    assert result.meta.tool == "no_such_tool"


@pytest.mark.asyncio
async def test_executor_exception_becomes_error_without_tool_fields():
    registry = _registry(_BoomTool())

    result = await registry.execute("boom", {})

    assert result.error == "gateway exploded"
    assert set(result.to_payload()) == {"error", "_meta"}


@pytest.mark.asyncio
async def test_payload_error_field_is_reported_as_failure():
    registry = _registry(_ReportsErrorTool())

    result = await registry.execute("reports_error")

    assert not result.ok
    assert result.error == "market not found"
    assert result.data == {}


@pytest.mark.asyncio
async def test_non_dict_payload_is_rejected():
    registry = _registry(_NotADictTool())

    result = await registry.execute("not_a_dict", {})

    assert result.error == "Tool returned invalid result payload"


@pytest.mark.asyncio
async def test_timeout_cancels_the_tool():
    tool = _SlowTool()
    registry = _registry(tool)

    result = await registry.execute("slow", {})

    assert result.error == "Execution timed out after 0.05s"
    assert tool.cancelled


@pytest.mark.asyncio
async def test_invalid_arguments_are_rejected_before_execution():
    registry = _registry(_StatsTool())

    bad_enum = await registry.execute("get_stats", {"period": "1y"})
    bad_type = await registry.execute("get_stats", {"limit": "ten"})
    bool_for_int = await registry.execute("get_stats", {"limit": True})

    assert bad_enum.error == "Invalid input for 'get_stats': Argument 'period' must be one of: 24h, 7d, 30d, all"
    assert bad_type.error == "Invalid input for 'get_stats': Argument 'limit' must be integer"
    assert not bool_for_int.ok


@pytest.mark.asyncio
async def test_input_error_skips_the_executor():
    registry = _registry(_BoomTool())

    result = await registry.execute("boom", {}, input_error="Malformed tool input JSON: oops")

    assert result.error == "Invalid input for 'boom': Malformed tool input JSON: oops"


def test_missing_required_argument_is_reported():
    class _NeedsAddress(Tool):
        name = "needs_address"
        parameters = {"type": "object", "properties": {"address": {"type": "string"}}, "required": ["address"]}

        async def execute(self, **kwargs: Any) -> dict[str, Any]:
            return {}

    registry = _registry(_NeedsAddress())
    result = asyncio.run(registry.execute("needs_address", {}))

    assert result.error == "Invalid input for 'needs_address': Missing required argument: address"


def test_duplicate_registration_is_rejected():
    registry = ToolRegistry()
    registry.register(_StatsTool())

    with pytest.raises(DuplicateToolError):
        registry.register(_StatsTool())


def test_frozen_registry_rejects_new_tools():
    registry = _registry(_StatsTool())

    assert registry.frozen
    assert registry.get("get_stats").name == "get_stats"
    with pytest.raises(ToolNotFoundError):
        registry.get("boom")
    with pytest.raises(ValueError):
        registry.register(_BoomTool())


def test_definitions_and_grouping_follow_registration_order():
    registry = _registry(_StatsTool(), _BoomTool())

    assert [d.name for d in registry.get_definitions()] == ["get_stats", "boom"]
    assert registry.get_definitions()[0].to_api()["input_schema"]["properties"]["period"]["type"] == "string"
    assert list(registry.tools_by_category()) == ["analytics", "general"]


def test_invocation_result_success_drops_reserved_keys():
    result = ToolInvocationResult.success("t", {"value": 1, "error": None, "_meta": "x"}, 3)

    assert result.ok
    assert result.data == {"value": 1}
    assert result.to_payload() == {"value": 1, "_meta": {"tool": "t", "durationMs": 3}}


@pytest.mark.parametrize(
    "command, blocked",
    [
        ("ls -la", False),
        ("echo hi && rm -rf /", True),
        ("mkfs.ext4 /dev/sda1", True),
        ("", True),
    ],
)
def test_blocked_shell_commands(command, blocked):
    result, _ = is_blocked_shell_command(command, ["rm -rf /", "mkfs"])

    assert result is blocked
