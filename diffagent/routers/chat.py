"""Chat mode API endpoints"""

from __future__ import annotations

import re

from fastapi import APIRouter, HTTPException
from sse_starlette.sse import EventSourceResponse

from ..models.agent import CancelResponse
from ..models.chat import ChatRequest, ChatResponse, ChatSession, CodeBlock, StreamEvent
from ..services.config_manager import ConfigManager
from ..services.context_resolver import resolve_message_context
from ..services.errors import AgentCancelledError, AgentTimeoutError
from ..services.llm_service import LLMService
from ..services.log import log
from ..services.session_store import SessionStore
from ..services.workspace_session import get_workspace_session

router = APIRouter()

CODE_BLOCK_RE = re.compile(r"```(\w+)?\n(.*?)```", re.DOTALL)


def extract_code_blocks(content: str) -> list[CodeBlock]:
    """Extract code blocks from markdown response"""
    return [
        CodeBlock(language=lang or "text", code=code.strip())
        for lang, code in CODE_BLOCK_RE.findall(content)
    ]


def build_messages(session: ChatSession, message_with_context: str) -> list[dict[str, str]]:
    """Earlier turns of the session followed by the new user turn"""
    messages = [{"role": m.role, "content": m.content} for m in session.messages]
    messages.append({"role": "user", "content": message_with_context})
    return messages


@router.post("/message", response_model=ChatResponse)
async def chat_message(request: ChatRequest) -> ChatResponse:
    """Send a chat message and get a response (non-streaming)"""
    config_manager = ConfigManager.get_instance()
    config = config_manager.get_config()
    llm_service = LLMService(config)
    store = SessionStore(config_manager.config_dir)
    workspace = get_workspace_session(config)

    session = store.get_or_create(request.session_id)
    messages = build_messages(session, resolve_message_context(request.message, workspace))

    token = workspace.generations.start(session.id)
    try:
        response_content = await llm_service.chat(messages, token)
    except AgentTimeoutError:
        raise HTTPException(status_code=504, detail="Request timed out.")
    except AgentCancelledError:
        raise HTTPException(status_code=409, detail="Generation cancelled.")
    finally:
        workspace.generations.finish(session.id, token)

    store.append_turn(session, request.message, response_content)

    return ChatResponse(
        session_id=session.id,
        content=response_content,
        code_blocks=extract_code_blocks(response_content),
        metadata={"provider": config.get("provider", "ollama")},
    )


@router.post("/stream")
async def chat_stream(request: ChatRequest):
    """Send a chat message and get a streaming response (SSE)"""
    config_manager = ConfigManager.get_instance()
    config = config_manager.get_config()
    llm_service = LLMService(config)
    store = SessionStore(config_manager.config_dir)
    workspace = get_workspace_session(config)

    session = store.get_or_create(request.session_id)
    messages = build_messages(session, resolve_message_context(request.message, workspace))
    token = workspace.generations.start(session.id)

    async def event_generator():
        full_content = ""

        try:
            async for chunk in llm_service.chat_stream(messages, token):
                full_content += chunk
                event = StreamEvent(type="content", chunk=chunk)
                yield {"event": "message", "data": event.model_dump_json()}

            for block in extract_code_blocks(full_content):
                event = StreamEvent(type="code_block", code_block=block)
                yield {"event": "message", "data": event.model_dump_json()}

            store.append_turn(session, request.message, full_content)

            event = StreamEvent(
                type="done",
                done=True,
                metadata={"session_id": session.id, "provider": config.get("provider", "ollama")},
            )
            yield {"event": "message", "data": event.model_dump_json()}

        except AgentTimeoutError:
            event = StreamEvent(type="error", error="Request timed out.")
            yield {"event": "message", "data": event.model_dump_json()}
        except AgentCancelledError:
            event = StreamEvent(type="error", error="Generation cancelled.")
            yield {"event": "message", "data": event.model_dump_json()}
        except Exception as e:
            log("Chat", f"Streaming failed: {e}")
            event = StreamEvent(type="error", error=str(e))
            yield {"event": "message", "data": event.model_dump_json()}
        finally:
            workspace.generations.finish(session.id, token)

    return EventSourceResponse(event_generator())


@router.post("/cancel/{session_id}", response_model=CancelResponse)
async def cancel_chat(session_id: str) -> CancelResponse:
    """Cancel the active generation of a session"""
    workspace = get_workspace_session(ConfigManager.get_instance().get_config())
    if workspace.generations.cancel(session_id):
        return CancelResponse(cancelled=True, message="Generation cancelled.")
    return CancelResponse(cancelled=False, message="No active generation.")
