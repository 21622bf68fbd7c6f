"""
Diff Generator Service - Render staged file changes for operator review
"""

from __future__ import annotations

import time
from difflib import unified_diff
from urllib.parse import quote

from ..models.diff import DiffPreview, FileChange

PREVIEW_SCHEME = "diffagent-preview"


class DiffGenerator:
    """Render before/after pairs as unified diffs for preview only"""

    def render(self, change: FileChange) -> str:
        """Unified diff text of one staged change"""
        before_lines = change.before_content.splitlines(keepends=True)
        after_lines = change.after_content.splitlines(keepends=True)

        # Ensure last lines have newlines for proper diff
        if before_lines and not before_lines[-1].endswith("\n"):
            before_lines[-1] += "\n"
        if after_lines and not after_lines[-1].endswith("\n"):
            after_lines[-1] += "\n"

        fromfile = f"a/{change.relative_path}" if change.existed_before else "/dev/null"
        tofile = f"b/{change.relative_path}" if change.existed_after else "/dev/null"
        return "".join(unified_diff(before_lines, after_lines, fromfile=fromfile, tofile=tofile))

    def create_previews(self, changes: list[FileChange]) -> list[DiffPreview]:
        """One preview per file, keyed by timestamp + index + path so sessions never collide"""
        timestamp = int(time.time() * 1000)
        previews = []
        for index, change in enumerate(changes):
            safe_path = quote(change.relative_path, safe="")
            previews.append(
                DiffPreview(
                    relative_path=change.relative_path,
                    original_key=f"{PREVIEW_SCHEME}:multi-{timestamp}-{index}-original-{safe_path}",
                    modified_key=f"{PREVIEW_SCHEME}:multi-{timestamp}-{index}-modified-{safe_path}",
                    unified_diff=self.render(change),
                )
            )
        return previews
