import json
from typing import Any

import pytest

from pnpfucius.agent import Agent, AgentState
from pnpfucius.exceptions import LLMAPIError, LLMRateLimitError
from pnpfucius.llm import LLMProvider, Message, StreamEvent, TextBlock, ToolResultBlock, ToolUseBlock
from pnpfucius.session import Session
from pnpfucius.tools.registry import Tool, ToolRegistry


class _ScriptedProvider(LLMProvider):
    """Replays scripted turns; exception entries are raised where they appear."""

    def __init__(self, turns: list[Any]):
        self.turns = list(turns)
        self.calls: list[list[Message]] = []

    async def stream(self, system, messages, tools=None, max_tokens=None):
        self.calls.append(list(messages))
        step = self.turns.pop(0)
        if isinstance(step, Exception):
            raise step
        for event in step:
            if isinstance(event, Exception):
                raise event
            yield event

    async def complete(self, system, prompt, max_tokens=None, model=None):
        return ""


class _EchoTool(Tool):
    name = "echo"
    description = "Echo input"
    parameters = {
        "type": "object",
        "properties": {"text": {"type": "string"}},
        "required": ["text"],
    }

    def __init__(self):
        self.calls: list[str] = []

    async def execute(self, text: str, **kwargs: Any) -> dict[str, Any]:
        self.calls.append(text)
        return {"echo": text}


def _text_turn(text: str) -> list[StreamEvent]:
    return [
        StreamEvent(kind="block_start", index=0, block_type="text"),
        StreamEvent(kind="block_delta", index=0, text=text),
        StreamEvent(kind="block_stop", index=0),
        StreamEvent(kind="message_delta", stop_reason="end_turn", usage={"input_tokens": 10, "output_tokens": 3}),
    ]


def _tool_turn(*calls: tuple[str, str, str]) -> list[StreamEvent]:
    events: list[StreamEvent] = []
    for index, (tool_id, name, raw_json) in enumerate(calls):
        events.append(StreamEvent(kind="block_start", index=index, block_type="tool_use", tool_id=tool_id, name=name))
        events.append(StreamEvent(kind="block_delta", index=index, partial_json=raw_json))
        events.append(StreamEvent(kind="block_stop", index=index))
    events.append(StreamEvent(kind="message_delta", stop_reason="tool_use"))
    return events


def _make_agent(provider: LLMProvider, **kwargs: Any) -> tuple[Agent, Session, _EchoTool]:
    tool = _EchoTool()
    registry = ToolRegistry()
    registry.register(tool)
    registry.freeze()
    session = Session(model="test-model", system_prompt="You are a test.")
    sleeps: list[float] = []

    async def fake_sleep(delay: float) -> None:
        sleeps.append(delay)

    agent = Agent(provider=provider, tools=registry, session=session, sleep=fake_sleep, **kwargs)
    agent.sleeps = sleeps  # type: ignore[attr-defined]
    return agent, session, tool


@pytest.mark.asyncio
async def test_plain_text_turn_appends_user_and_assistant():
    streamed: list[str] = []
    provider = _ScriptedProvider([_text_turn("Hi there")])
    agent, session, _ = _make_agent(provider, text_callback=streamed.append)

    reply = await agent.chat("hello")

    assert reply == "Hi there"
    assert streamed == ["Hi there"]
    assert [m.role for m in session.messages] == ["user", "assistant"]
    assert session.messages[0].content == [TextBlock(text="hello")]
    assert agent.state is AgentState.IDLE
    assert agent.last_usage == {"prompt_tokens": 10, "completion_tokens": 3, "total_tokens": 13}


@pytest.mark.asyncio
async def test_tool_results_answer_every_tool_use_by_id():
    provider = _ScriptedProvider(
        [
            _tool_turn(("t1", "echo", '{"text": "a"}'), ("t2", "echo", '{"text": "b"}')),
            _text_turn("done"),
        ]
    )
    started: list[str] = []
    finished: list[bool] = []
    agent, session, tool = _make_agent(
        provider,
        tool_start_callback=lambda name, args: started.append(name),
        tool_result_callback=lambda name, result: finished.append(result.ok),
    )

    reply = await agent.chat("echo twice")

    assert reply == "done"
    assert tool.calls == ["a", "b"]
    assert started == ["echo", "echo"]
    assert finished == [True, True]
    assert [m.role for m in session.messages] == ["user", "assistant", "user", "assistant"]

    uses = session.messages[1].tool_uses
    results = session.messages[2].tool_results
    assert [u.id for u in uses] == [r.tool_use_id for r in results]
    assert session.messages[2].content == results
    payload = json.loads(results[0].content)
    assert payload["echo"] == "a"
    assert payload["_meta"]["tool"] == "echo"
    assert results[0].is_error is False


@pytest.mark.asyncio
async def test_second_model_call_sees_tool_results():
    provider = _ScriptedProvider([_tool_turn(("t1", "echo", '{"text": "x"}')), _text_turn("ok")])
    agent, _, _ = _make_agent(provider)

    await agent.chat("go")

    second_call = provider.calls[1]
    assert [m.role for m in second_call] == ["user", "assistant", "user"]
    assert isinstance(second_call[2].content[0], ToolResultBlock)


@pytest.mark.asyncio
async def test_unknown_and_malformed_tool_calls_become_error_results():
    provider = _ScriptedProvider(
        [
            _tool_turn(("t1", "missing_tool", "{}"), ("t2", "echo", '{"text": ')),
            _text_turn("recovered"),
        ]
    )
    agent, session, tool = _make_agent(provider)

    reply = await agent.chat("break things")

    assert reply == "recovered"
    assert tool.calls == []
    results = session.messages[2].tool_results
    assert [r.is_error for r in results] == [True, True]
    unknown = json.loads(results[0].content)
    assert unknown["error"] == "Unknown tool: missing_tool"
    assert unknown["available_tools"] == ["echo"]
    malformed = json.loads(results[1].content)
    assert "Malformed tool input JSON" in malformed["error"]


@pytest.mark.asyncio
async def test_rate_limit_retries_without_duplicating_history():
    notices: list[str] = []
    provider = _ScriptedProvider(
        [
            LLMRateLimitError("slow down"),
            LLMRateLimitError("slow down", retry_after=15),
            _text_turn("finally"),
        ]
    )
    agent, session, _ = _make_agent(provider, status_callback=notices.append, rate_limit_cooldown=10)

    reply = await agent.chat("hello")

    assert reply == "finally"
    assert agent.sleeps == [10.0, 15.0]
    assert notices == ["Rate limited. Waiting 10 seconds...", "Rate limited. Waiting 15 seconds..."]
    assert len(provider.calls) == 3
    assert all(len(call) == 1 for call in provider.calls)
    assert [m.role for m in session.messages] == ["user", "assistant"]


@pytest.mark.asyncio
async def test_rate_limit_retries_are_bounded():
    provider = _ScriptedProvider([LLMRateLimitError("busy") for _ in range(4)])
    agent, session, _ = _make_agent(provider, max_rate_limit_retries=2, rate_limit_cooldown=1)

    with pytest.raises(LLMRateLimitError) as excinfo:
        await agent.chat("hello")

    assert "after 3 attempts" in str(excinfo.value)
    assert len(provider.calls) == 3
    assert agent.sleeps == [1.0, 1.0]
    assert [m.role for m in session.messages] == ["user"]
    assert agent.state is AgentState.IDLE


@pytest.mark.asyncio
async def test_other_errors_propagate_and_session_stays_usable():
    provider = _ScriptedProvider([LLMAPIError("boom", status_code=500), _text_turn("back")])
    agent, session, _ = _make_agent(provider)

    with pytest.raises(LLMAPIError):
        await agent.chat("first")

    assert agent.sleeps == []
    reply = await agent.chat("second")

    assert reply == "back"
    assert [m.text for m in session.messages] == ["first", "second", "back"]


@pytest.mark.asyncio
async def test_iteration_limit_appends_notice():
    provider = _ScriptedProvider([_tool_turn((f"t{i}", "echo", '{"text": "loop"}')) for i in range(2)])
    notices: list[str] = []
    agent, session, tool = _make_agent(provider, max_iterations=2, status_callback=notices.append)

    reply = await agent.chat("loop forever")

    assert reply == "Stopped after 2 model calls without a final answer."
    assert notices == [reply]
    assert len(tool.calls) == 2
    assert session.messages[-1].role == "assistant"
    assert session.messages[-1].text == reply


@pytest.mark.asyncio
async def test_retry_after_partial_text_does_not_repeat_it():
    partial = [
        StreamEvent(kind="block_start", index=0, block_type="text"),
        StreamEvent(kind="block_delta", index=0, text="Hello "),
        LLMRateLimitError("slow down"),
    ]
    full = [
        StreamEvent(kind="block_start", index=0, block_type="text"),
        StreamEvent(kind="block_delta", index=0, text="Hello "),
        StreamEvent(kind="block_delta", index=0, text="world"),
        StreamEvent(kind="block_stop", index=0),
        StreamEvent(kind="message_delta", stop_reason="end_turn"),
    ]
    streamed: list[str] = []
    notices: list[str] = []
    provider = _ScriptedProvider([partial, full])
    agent, session, _ = _make_agent(provider, text_callback=streamed.append, status_callback=notices.append)

    reply = await agent.chat("hi")

    assert reply == "Hello world"
    assert "".join(streamed) == "Hello world"
    assert streamed == ["Hello ", "world"]
    assert notices == ["Rate limited. Waiting 10 seconds..."]
    assert [m.role for m in session.messages] == ["user", "assistant"]


@pytest.mark.asyncio
async def test_retry_that_diverges_is_announced_before_reprinting():
    partial = [
        StreamEvent(kind="block_start", index=0, block_type="text"),
        StreamEvent(kind="block_delta", index=0, text="Sure, "),
        LLMRateLimitError("slow down"),
    ]
    streamed: list[str] = []
    notices: list[str] = []
    provider = _ScriptedProvider([partial, _text_turn("Okay.")])
    agent, _, _ = _make_agent(provider, text_callback=streamed.append, status_callback=notices.append)

    reply = await agent.chat("hi")

    assert reply == "Okay."
    assert streamed == ["Sure, ", "Okay."]
    assert notices[-1] == "Response restarted after retry."


@pytest.mark.asyncio
async def test_turn_resumes_from_replayed_tool_history():
    first = _ScriptedProvider([_tool_turn(("t1", "echo", '{"text": "x"}')), _text_turn("ok")])
    agent, session, _ = _make_agent(first)
    await agent.chat("go")
    assert session.messages[1].content[0] == ToolUseBlock(id="t1", name="echo", input={"text": "x"})

    # Restore user message, tool request and tool results, then let a new agent finish.
    history = list(session.messages[:3])
    provider = _ScriptedProvider([_text_turn("final")])
    replay_agent, replay_session, tool = _make_agent(provider)
    replay_session.messages.extend(history)

    reply = await replay_agent.run_turn()

    assert reply == "final"
    assert tool.calls == []
    assert len(provider.calls) == 1
    assert [m.to_api() for m in provider.calls[0]] == [m.to_api() for m in history]
    assert [m.role for m in replay_session.messages] == ["user", "assistant", "user", "assistant"]
    assert replay_session.messages[-1].text == "final"
    assert replay_agent.state is AgentState.IDLE


@pytest.mark.asyncio
async def test_failing_tool_notice_still_records_the_tool_result():
    provider = _ScriptedProvider([_tool_turn(("t1", "echo", '{"text": "x"}')), _text_turn("ok")])

    def broken_notice(name: str, payload: Any) -> None:
        raise RuntimeError("display broke")

    agent, session, tool = _make_agent(
        provider,
        tool_start_callback=broken_notice,
        tool_result_callback=broken_notice,
    )

    reply = await agent.chat("go")

    assert reply == "ok"
    assert tool.calls == ["x"]
    assert session.messages[2].tool_results[0].tool_use_id == "t1"
