"""
Operator decisions - review previews, override conflicts, confirm commands

The HTTP layer and the agent tools ask a reviewer instead of prompting a UI
directly, so callers decide how approval happens.
"""

from __future__ import annotations

from ..models.diff import DiffPreview
from .log import log


class Reviewer:
    """Base reviewer: approves nothing"""

    async def review(self, previews: list[DiffPreview], title: str) -> bool:
        """Decide whether a previewed change set gets applied"""
        return False

    async def confirm_override(self, conflicts: list[str], action: str) -> bool:
        """Decide whether to proceed although files drifted on disk"""
        return False

    async def confirm_command(self, command: str, cwd: str) -> bool:
        """Decide whether a shell command may run"""
        return False


class AutoReviewer(Reviewer):
    """Non-interactive reviewer driven by flags"""

    def __init__(self, approve: bool = True, force: bool = False, allow_commands: bool = False):
        self.approve = approve
        self.force = force
        self.allow_commands = allow_commands

    async def review(self, previews: list[DiffPreview], title: str) -> bool:
        log("Review", f"{title}: {len(previews)} file(s) {'approved' if self.approve else 'rejected'}")
        return self.approve

    async def confirm_override(self, conflicts: list[str], action: str) -> bool:
        shown = ", ".join(conflicts[:3]) + (", ..." if len(conflicts) > 3 else "")
        log("Review", f"{len(conflicts)} file(s) changed before {action}: {shown}")
        return self.force

    async def confirm_command(self, command: str, cwd: str) -> bool:
        return self.allow_commands
