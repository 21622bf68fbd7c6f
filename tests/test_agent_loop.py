import pytest

from diffagent.models.agent import AgentStatus, ChatMsg
from diffagent.services.agent_loop import (
    HISTORY_KEEP,
    MAX_STEPS,
    AgentLoop,
    build_system_prompt,
    extract_final_answer,
    extract_thought_and_plan,
    prune_history,
)
from diffagent.services.agent_tools import ToolDispatcher
from diffagent.services.cancellation import CancellationToken
from diffagent.services.errors import AgentTimeoutError
from diffagent.services.review import AutoReviewer

LIST_FILES_CALL = 'Thought: look around\nPlan: list\nAction:\n```json\n{"tool": "listfiles", "args": {"directoryPath": "."}}\n```'


@pytest.fixture
def make_agent(workspace_session):
    def factory(llm):
        dispatcher = ToolDispatcher(workspace_session, llm, AutoReviewer())
        return AgentLoop(llm, dispatcher)
    return factory


# ========== Helpers ==========


def test_prune_history_keeps_system_prompt_and_recent_entries():
    system = ChatMsg(role="system", content="sys")
    history = [system] + [ChatMsg(role="user", content=str(i)) for i in range(21)]

    pruned = prune_history(history, system)

    assert len(pruned) == HISTORY_KEEP + 1
    assert pruned[0] is system
    assert pruned[-1].content == "20"


def test_prune_history_leaves_short_history_alone():
    system = ChatMsg(role="system", content="sys")
    history = [system] + [ChatMsg(role="user", content=str(i)) for i in range(19)]

    assert prune_history(history, system) is history


def test_extract_thought_and_plan():
    thought, plan = extract_thought_and_plan(LIST_FILES_CALL)

    assert thought == "look around"
    assert plan == "list"


def test_extract_thought_without_plan():
    assert extract_thought_and_plan("thought: only this\naction: x") == ("only this", None)


def test_extract_final_answer():
    assert extract_final_answer("Thought: done\nFinal Answer: all good") == "all good"
    assert extract_final_answer("plain reply") == "plain reply"


def test_system_prompt_lists_tools(workspace_session, fake_llm_class):
    dispatcher = ToolDispatcher(workspace_session, fake_llm_class(), AutoReviewer())

    prompt = build_system_prompt(dispatcher.describe_tools())

    for name in ("run", "read", "write", "applydiff", "undo", "searchsemantic"):
        assert f"- {name}:" in prompt
    assert "Final Answer:" in prompt


# ========== Runs ==========


@pytest.mark.asyncio
async def test_tool_step_then_final_answer(make_agent, fake_llm_class, workspace_root):
    (workspace_root / "main.py").write_text("")
    llm = fake_llm_class([LIST_FILES_CALL, "Thought: I have completed the task.\nFinal Answer: Found main.py"])
    events = []

    result = await make_agent(llm).run("what files exist?", [], CancellationToken(), events.append)

    assert result.status == AgentStatus.DONE
    assert result.steps == 2
    assert result.final_answer == "Found main.py"
    assert result.records[0].tool_call.tool == "listfiles"
    assert "main.py" in result.records[0].tool_result

    second_call = llm.calls[1]
    assert second_call[0]["role"] == "system"
    assert second_call[-1]["role"] == "user"
    assert second_call[-1]["content"].startswith("Tool Output (listfiles):\nFiles in .:\nmain.py")
    assert second_call[-1]["content"].endswith("Continue with your Thought-Plan-Action cycle.")
    assert [e.label for e in events][0] == "Analyzing request..."
    assert events[-1].label == "Task completed"


@pytest.mark.asyncio
async def test_events_carry_loop_state(make_agent, fake_llm_class):
    llm = fake_llm_class([LIST_FILES_CALL, "Final Answer: nothing here"])
    events = []

    await make_agent(llm).run("list", [], CancellationToken(), events.append)

    assert [e.state for e in events] == [
        AgentStatus.ANALYZING,
        AgentStatus.THINKING,
        AgentStatus.TOOL_EXECUTING,
        AgentStatus.TOOL_EXECUTING,
        AgentStatus.DONE,
    ]


@pytest.mark.asyncio
async def test_prior_history_is_sent_before_the_new_message(make_agent, fake_llm_class):
    llm = fake_llm_class(["Final Answer: ok"])
    history = [ChatMsg(role="user", content="earlier"), ChatMsg(role="assistant", content="reply")]

    await make_agent(llm).run("now", history, CancellationToken())

    assert [m["content"] for m in llm.calls[0][1:]] == ["earlier", "reply", "now"]


@pytest.mark.asyncio
async def test_step_limit_reached_exactly_at_max_steps(make_agent, fake_llm_class):
    llm = fake_llm_class(default=LIST_FILES_CALL)

    result = await make_agent(llm).run("loop forever", [], CancellationToken())

    assert result.status == AgentStatus.STEP_LIMIT_REACHED
    assert result.steps == MAX_STEPS == 15
    assert len(llm.calls) == MAX_STEPS
    assert result.final_answer is None


@pytest.mark.asyncio
async def test_history_is_pruned_during_long_runs(make_agent, fake_llm_class):
    llm = fake_llm_class(default=LIST_FILES_CALL)

    result = await make_agent(llm).run("loop forever", [], CancellationToken())

    assert all(len(call) <= 20 for call in llm.calls)
    assert all(call[0]["role"] == "system" for call in llm.calls)
    assert len(result.history) <= 20


@pytest.mark.asyncio
async def test_unknown_tool_is_reported_to_the_model(make_agent, fake_llm_class):
    llm = fake_llm_class(['{"tool": "teleport", "args": {}}', "Final Answer: gave up"])

    result = await make_agent(llm).run("go", [], CancellationToken())

    assert result.status == AgentStatus.DONE
    assert result.records[0].tool_result == "Unknown tool: teleport"


@pytest.mark.asyncio
async def test_cancelled_before_start(make_agent, fake_llm_class):
    llm = fake_llm_class(default="Final Answer: never")
    token = CancellationToken()
    token.cancel()

    result = await make_agent(llm).run("go", [], token)

    assert result.status == AgentStatus.CANCELLED
    assert llm.calls == []


@pytest.mark.asyncio
async def test_cancel_during_run_stops_at_next_step(make_agent, fake_llm_class):
    token = CancellationToken()

    def cancel_then_call_tool(messages, _token):
        token.cancel()
        return LIST_FILES_CALL

    llm = fake_llm_class([cancel_then_call_tool], default="Final Answer: unreachable")

    result = await make_agent(llm).run("go", [], token)

    assert result.status == AgentStatus.CANCELLED
    assert result.message == "Generation cancelled."
    assert len(llm.calls) == 1


@pytest.mark.asyncio
async def test_timeout_is_distinct_from_cancel(make_agent, fake_llm_class):
    llm = fake_llm_class([AgentTimeoutError("Inactivity timeout (10ms) reached.")])

    result = await make_agent(llm).run("go", [], CancellationToken())

    assert result.status == AgentStatus.TIMED_OUT
    assert result.message == "Request timed out."


@pytest.mark.asyncio
async def test_unexpected_error_ends_run_with_error_status(make_agent, fake_llm_class):
    llm = fake_llm_class([RuntimeError("connection refused")])
    events = []

    result = await make_agent(llm).run("go", [], CancellationToken(), events.append)

    assert result.status == AgentStatus.ERROR
    assert "connection refused" in result.message
    assert events[-1].status == "error"
