"""Services module - Business logic layer"""

from .agent_loop import AgentLoop
from .agent_tools import ToolDispatcher
from .cancellation import CancellationToken, GenerationRegistry, InactivityTimer
from .change_set import ChangeSetManager
from .config_manager import ConfigManager
from .diff_generator import DiffGenerator
from .llm_service import LLMService
from .session_store import SessionStore
from .workspace_session import WorkspaceSession

__all__ = [
    "AgentLoop",
    "CancellationToken",
    "ChangeSetManager",
    "ConfigManager",
    "DiffGenerator",
    "GenerationRegistry",
    "InactivityTimer",
    "LLMService",
    "SessionStore",
    "ToolDispatcher",
    "WorkspaceSession",
]
