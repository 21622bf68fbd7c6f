"""
Agent Loop - Thought/Plan/Action cycle over the tool table

Each step makes one model call, parses at most one tool call and runs it.
A response without a tool call ends the run. Thought and Plan sections are
parsed for progress display only and never drive control flow.
"""

from __future__ import annotations

import re
from typing import Callable

from ..models.agent import AgentEvent, AgentRunResult, AgentStatus, AgentStepRecord, ChatMsg
from .agent_tools import ToolDispatcher
from .cancellation import CancellationToken
from .errors import AgentCancelledError, AgentTimeoutError
from .llm_service import LLMService
from .log import debug, log
from .tool_call_parser import parse_agent_tool_call

MAX_STEPS = 15
HISTORY_LIMIT = 20
HISTORY_KEEP = 10
PREVIEW_CHARS = 100

THOUGHT_RE = re.compile(r"Thought:([\s\S]*?)Plan:|Thought:([\s\S]*?)Action:", re.IGNORECASE)
PLAN_RE = re.compile(r"Plan:([\s\S]*?)Action:", re.IGNORECASE)
FINAL_ANSWER_RE = re.compile(r"Final Answer:([\s\S]*)", re.IGNORECASE)

EventCallback = Callable[[AgentEvent], None]


def build_system_prompt(tools_description: str) -> str:
    return f"""You are an autonomous AI agent capable of using tools to solve complex tasks.
You must follow a Thought-Plan-Action cycle:
1. Thought: Analyze the current state and what needs to be done.
2. Plan: Outline the steps to reach the goal.
3. Action: Choose the best tool to execute the next step.

AVAILABLE TOOLS:
{tools_description}

RESPONSE FORMAT:
Thought: ...
Plan: ...
Action:
```json
{{ "tool": "toolname", "args": {{ ... }} }}
```

IMPORTANT:
- Use only ONE tool per turn.
- Always provide a JSON block for the tool call.
- Be precise with file paths relative to workspace root.
If you are done, respond with:
Thought: I have completed the task.
Final Answer: ..."""


def prune_history(history: list[ChatMsg], system_prompt: ChatMsg) -> list[ChatMsg]:
    """Collapse to [system prompt, last 10 entries] once over 20 entries"""
    if len(history) <= HISTORY_LIMIT:
        return history
    return [system_prompt, *history[-HISTORY_KEEP:]]


def extract_thought_and_plan(response: str) -> tuple[str | None, str | None]:
    thought = None
    plan = None
    thought_match = THOUGHT_RE.search(response)
    if thought_match:
        thought = (thought_match.group(1) or thought_match.group(2) or "").strip()
    plan_match = PLAN_RE.search(response)
    if plan_match:
        plan = plan_match.group(1).strip()
    return thought, plan


def extract_final_answer(response: str) -> str:
    """Text after 'Final Answer:' if present, otherwise the whole response"""
    match = FINAL_ANSWER_RE.search(response)
    return match.group(1).strip() if match else response


def _preview(text: str, limit: int = PREVIEW_CHARS) -> str:
    return text[:limit] + ("..." if len(text) > limit else "")


class AgentLoop:
    """Runs one agent request to a terminal status"""

    def __init__(self, llm: LLMService, dispatcher: ToolDispatcher, max_steps: int = MAX_STEPS):
        self.llm = llm
        self.dispatcher = dispatcher
        self.max_steps = max_steps
        self.system_prompt = ChatMsg(role="system", content=build_system_prompt(dispatcher.describe_tools()))

    async def run(
        self,
        user_message: str,
        history: list[ChatMsg],
        token: CancellationToken,
        on_event: EventCallback | None = None,
    ) -> AgentRunResult:
        """
        Drive the Thought-Plan-Action cycle

        Args:
            user_message: The request, with pinned files and mentions already inlined
            history: Earlier conversation turns, oldest first
            token: Cancellation token shared by every call in this run
            on_event: Receives progress updates for display

        Returns:
            AgentRunResult with the terminal status; never raises
        """
        emit = on_event or (lambda event: None)
        run_history = [self.system_prompt, *history, ChatMsg(role="user", content=user_message)]
        records: list[AgentStepRecord] = []
        step = 0

        emit(AgentEvent(step=0, state=AgentStatus.ANALYZING, label="Analyzing request...", status="loading"))
        try:
            while step < self.max_steps:
                token.raise_if_cancelled()
                step += 1
                debug("Agent", f"Step {step}/{self.max_steps}")

                response = await self.llm.chat([m.model_dump() for m in run_history], token)
                thought, plan = extract_thought_and_plan(response)
                if thought:
                    emit(AgentEvent(
                        step=step, state=AgentStatus.THINKING, label="Thinking...", status="done", details=_preview(thought)
                    ))

                record = AgentStepRecord(step=step, thought=thought, plan=plan)
                records.append(record)

                tool_call = parse_agent_tool_call(response)
                if tool_call is None:
                    final_answer = extract_final_answer(response)
                    emit(AgentEvent(step=step, state=AgentStatus.DONE, label="Task completed", status="done"))
                    run_history.append(ChatMsg(role="assistant", content=final_answer))
                    return AgentRunResult(
                        status=AgentStatus.DONE,
                        steps=step,
                        final_answer=final_answer,
                        records=records,
                        history=run_history,
                    )

                label = f"Using tool: {tool_call.tool}"
                emit(AgentEvent(step=step, state=AgentStatus.TOOL_EXECUTING, label=label, status="loading"))
                result = await self.dispatcher.execute(tool_call, token)
                emit(AgentEvent(
                    step=step, state=AgentStatus.TOOL_EXECUTING, label=label, status="done",
                    details=f"Result: {_preview(result, 50)}",
                ))

                record.tool_call = tool_call
                record.tool_result = result
                run_history.append(ChatMsg(role="assistant", content=response))
                run_history.append(ChatMsg(
                    role="user",
                    content=(
                        f"Tool Output ({tool_call.tool}):\n{result}\n\n"
                        "Continue with your Thought-Plan-Action cycle."
                    ),
                ))
                run_history = prune_history(run_history, self.system_prompt)

            log("Agent", f"Step limit reached ({self.max_steps})")
            emit(AgentEvent(step=step, state=AgentStatus.STEP_LIMIT_REACHED, label="Step limit reached", status="error"))
            return AgentRunResult(
                status=AgentStatus.STEP_LIMIT_REACHED,
                steps=step,
                message=f"Stopped after {self.max_steps} steps without a final answer.",
                records=records,
                history=run_history,
            )

        except AgentTimeoutError as e:
            log("Agent", f"Run timed out at step {step}: {e}")
            return AgentRunResult(status=AgentStatus.TIMED_OUT, steps=step, message="Request timed out.",
                                  records=records, history=run_history)
        except AgentCancelledError:
            log("Agent", f"Run cancelled at step {step}")
            return AgentRunResult(status=AgentStatus.CANCELLED, steps=step, message="Generation cancelled.",
                                  records=records, history=run_history)
        except Exception as e:
            log("Agent", f"Agent error: {e}")
            emit(AgentEvent(step=step, state=AgentStatus.ERROR, label="Agent error", status="error", details=str(e)))
            return AgentRunResult(status=AgentStatus.ERROR, steps=step, message=f"Agent Error: {e}",
                                  records=records, history=run_history)
