"""
Domain errors - diff engine, change sets and agent run interruption
"""

from __future__ import annotations


class DiffAgentError(Exception):
    """Base class for all backend domain errors"""


class ParseError(DiffAgentError):
    """Malformed unified diff structure"""


class ConflictError(DiffAgentError):
    """Patch context does not match the current file content"""


class StateError(DiffAgentError):
    """Patch expects a file state (exists / missing) that does not hold"""


class SecurityError(DiffAgentError):
    """Target path escapes the workspace root"""


class UnsupportedOperationError(DiffAgentError):
    """Patch requests an operation the applier does not implement (renames)"""


class AgentCancelledError(DiffAgentError):
    """Agent run cancelled by the user"""


class AgentTimeoutError(DiffAgentError):
    """Agent run aborted after the inactivity timeout elapsed"""
