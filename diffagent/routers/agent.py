"""Agent mode API endpoints"""

from __future__ import annotations

import asyncio

from fastapi import APIRouter
from sse_starlette.sse import EventSourceResponse

from ..models.agent import AgentEvent, AgentRunRequest, AgentRunResult, CancelResponse, ChatMsg
from ..models.chat import ChatSession, StreamEvent
from ..services.agent_loop import AgentLoop
from ..services.agent_tools import ToolDispatcher
from ..services.cancellation import CancellationToken
from ..services.config_manager import ConfigManager
from ..services.context_resolver import resolve_message_context
from ..services.llm_service import LLMService
from ..services.review import AutoReviewer
from ..services.session_store import SessionStore
from ..services.workspace_session import WorkspaceSession, get_workspace_session

router = APIRouter()


def build_agent(workspace: WorkspaceSession, config: dict, auto_approve: bool) -> AgentLoop:
    """Agent loop whose reviewer approves diffs and commands only when asked to"""
    llm_service = LLMService(config)
    reviewer = AutoReviewer(approve=auto_approve, allow_commands=auto_approve)
    return AgentLoop(llm_service, ToolDispatcher(workspace, llm_service, reviewer))


def session_history(session: ChatSession) -> list[ChatMsg]:
    return [ChatMsg(role=m.role, content=m.content) for m in session.messages]


def record_result(store: SessionStore, session: ChatSession, message: str, result: AgentRunResult):
    store.append_turn(session, message, result.final_answer or result.message or "")


class AgentRun:
    """Everything one request needs to start and persist an agent run"""

    def __init__(self, request: AgentRunRequest):
        config_manager = ConfigManager.get_instance()
        config = config_manager.get_config()
        self.message = request.message
        self.store = SessionStore(config_manager.config_dir)
        self.workspace = get_workspace_session(config)
        self.session = self.store.get_or_create(request.session_id)
        self.agent = build_agent(self.workspace, config, request.auto_approve)
        self.message_with_context = resolve_message_context(request.message, self.workspace)
        self.history = session_history(self.session)

    def start(self) -> CancellationToken:
        return self.workspace.generations.start(self.session.id)

    def finish(self, token: CancellationToken, result: AgentRunResult | None):
        self.workspace.generations.finish(self.session.id, token)
        if result is not None:
            record_result(self.store, self.session, self.message, result)


@router.post("/message", response_model=AgentRunResult)
async def agent_message(request: AgentRunRequest) -> AgentRunResult:
    """Run the agent to completion and return the terminal result"""
    run = AgentRun(request)
    token = run.start()
    result = None
    try:
        result = await run.agent.run(run.message_with_context, run.history, token)
        return result
    finally:
        run.finish(token, result)


@router.post("/run")
async def agent_run(request: AgentRunRequest):
    """Run the agent, streaming progress events and then the result (SSE)"""
    run = AgentRun(request)
    token = run.start()

    async def event_generator():
        queue: asyncio.Queue[AgentEvent] = asyncio.Queue()
        task = asyncio.create_task(run.agent.run(run.message_with_context, run.history, token, queue.put_nowait))
        result = None
        try:
            while not task.done() or not queue.empty():
                getter = asyncio.ensure_future(queue.get())
                done, _ = await asyncio.wait({getter, task}, return_when=asyncio.FIRST_COMPLETED)
                if getter not in done:
                    getter.cancel()
                    continue
                event = StreamEvent(type="agent_event", metadata=getter.result().model_dump(mode="json"))
                yield {"event": "message", "data": event.model_dump_json()}

            result = task.result()
            event = StreamEvent(
                type="done",
                done=True,
                chunk=result.final_answer or result.message,
                metadata={"session_id": run.session.id, **result.model_dump(mode="json", exclude={"history"})},
            )
            yield {"event": "message", "data": event.model_dump_json()}
        finally:
            if not task.done():
                # Client went away mid-run
                token.cancel()
                await asyncio.gather(task, return_exceptions=True)
            run.finish(token, result)

    return EventSourceResponse(event_generator())


@router.post("/cancel/{session_id}", response_model=CancelResponse)
async def cancel_agent(session_id: str) -> CancelResponse:
    """Cancel the active agent run of a session"""
    workspace = get_workspace_session(ConfigManager.get_instance().get_config())
    if workspace.generations.cancel(session_id):
        return CancelResponse(cancelled=True, message="Generation cancelled.")
    return CancelResponse(cancelled=False, message="No active generation.")
