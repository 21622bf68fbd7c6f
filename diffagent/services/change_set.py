"""
Change Set Service - Stage, preview, apply and undo multi-file patches

A parsed diff is fully validated and turned into FileChange snapshots before
anything touches the disk. Apply and undo re-check the disk against those
snapshots and commit all files as one atomic unit.
"""

from __future__ import annotations

import asyncio
import posixpath
import time
import uuid
from collections import deque
from pathlib import Path

from ..models.diff import (
    AppliedChangeBatch,
    ApplyResult,
    FileChange,
    PreviewResponse,
    UnifiedDiffFile,
)
from .diff_generator import DiffGenerator
from .errors import DiffAgentError, ParseError, SecurityError, StateError, UnsupportedOperationError
from .log import log
from .review import AutoReviewer, Reviewer
from .unified_diff import DEV_NULL, apply_unified_diff, parse_unified_diff
from .workspace import FileOperation, Workspace

MAX_UNDO_STACK_SIZE = 20
MAX_STAGED_PREVIEWS = 20


def normalize_relative_path(relative_path: str) -> str:
    """Normalize a patch path, rejecting anything outside the workspace"""
    normalized = posixpath.normpath(relative_path.replace("\\", "/"))
    if not relative_path or normalized == "." or normalized == DEV_NULL:
        raise ParseError(f'Invalid path in patch: "{relative_path}".')
    if posixpath.isabs(normalized) or normalized == ".." or normalized.startswith("../"):
        raise SecurityError(f'Patch contains a path outside the workspace: "{relative_path}".')
    return normalized


def build_file_changes(patches: list[UnifiedDiffFile], workspace: Workspace) -> list[FileChange]:
    """
    Fold parsed patches into one FileChange per touched file.

    Several patches for the same path are applied in sequence, each on top of
    the previous result, while the first snapshot of the file is kept as the
    before-state. Files whose before and after states are equal are dropped.
    """
    change_map: dict[str, FileChange] = {}

    for file_patch in patches:
        if (
            file_patch.old_path
            and file_patch.new_path
            and file_patch.old_path != file_patch.new_path
            and not file_patch.is_new_file
            and not file_patch.is_deleted_file
        ):
            raise UnsupportedOperationError(
                f"Rename patches are not supported: {file_patch.old_path} -> {file_patch.new_path}."
            )

        raw_target = file_patch.old_path if file_patch.is_deleted_file else (file_patch.new_path or file_patch.old_path)
        if not raw_target or raw_target == DEV_NULL:
            continue

        relative_path = normalize_relative_path(raw_target)
        absolute_path = workspace.resolve(relative_path)
        existing = change_map.get(relative_path)

        if existing:
            existed_before = existing.existed_before
            before_content = existing.before_content
            base_content = existing.after_content
        else:
            state = workspace.read_state(absolute_path)
            existed_before = state.exists
            before_content = state.content
            base_content = state.content

        if file_patch.is_new_file and not existing and existed_before:
            raise StateError(f'File "{relative_path}" already exists, but the patch tries to create it.')
        if not file_patch.is_new_file and not existing and not existed_before:
            action = "delete it" if file_patch.is_deleted_file else "apply the patch"
            raise StateError(f'File "{relative_path}" does not exist, cannot {action}.')

        existed_after = not file_patch.is_deleted_file
        after_content = apply_unified_diff(base_content, file_patch) if existed_after else ""

        change_map[relative_path] = FileChange(
            absolute_path=str(absolute_path),
            relative_path=relative_path,
            before_content=before_content,
            after_content=after_content,
            existed_before=existed_before,
            existed_after=existed_after,
        )

    return [
        change
        for change in change_map.values()
        if change.existed_before != change.existed_after or change.before_content != change.after_content
    ]


class ChangeSetManager:
    """Per-session apply/undo orchestration with a bounded undo stack"""

    def __init__(self, workspace: Workspace):
        self.workspace = workspace
        self.diff_generator = DiffGenerator()
        self.undo_stack: deque[AppliedChangeBatch] = deque(maxlen=MAX_UNDO_STACK_SIZE)
        self.last_previews = []
        self._staged: dict[str, tuple[str, list[FileChange]]] = {}
        self._lock = asyncio.Lock()

    # ========== Preview + Apply ==========

    async def preview_and_apply(self, diff_content: str, title: str, reviewer: Reviewer) -> ApplyResult:
        """Parse, stage, preview and (if the reviewer agrees) apply a diff"""
        try:
            patches = parse_unified_diff(diff_content)
        except ParseError as e:
            return ApplyResult(applied=False, changed_files=0, message=f"Invalid diff: {e}")

        try:
            changes = build_file_changes(patches, self.workspace)
        except DiffAgentError as e:
            return ApplyResult(applied=False, changed_files=0, message=f"Failed to prepare diff: {e}")

        if not changes:
            return ApplyResult(applied=False, changed_files=0, message="The diff contains no applicable changes.")

        self.last_previews = self.diff_generator.create_previews(changes)
        if not await reviewer.review(self.last_previews, title):
            return ApplyResult(applied=False, changed_files=len(changes), message="Apply cancelled by the user.")

        return await self.apply_file_changes(changes, title, reviewer)

    def stage(self, diff_content: str, title: str) -> PreviewResponse:
        """Validate a diff and keep its changes until apply_staged; raises domain errors"""
        changes = build_file_changes(parse_unified_diff(diff_content), self.workspace)
        preview_id = str(uuid.uuid4())
        self._staged[preview_id] = (title, changes)
        while len(self._staged) > MAX_STAGED_PREVIEWS:
            # oldest preview first
            evicted = next(iter(self._staged))
            del self._staged[evicted]
            log("ChangeSet", f"Discarded unapplied preview {evicted}")
        self.last_previews = self.diff_generator.create_previews(changes)
        return PreviewResponse(preview_id=preview_id, changes=changes, previews=self.last_previews)

    async def apply_staged(self, preview_id: str, force: bool = False) -> ApplyResult:
        """Apply a staged change set; raises KeyError for unknown ids"""
        title, changes = self._staged.pop(preview_id)
        if not changes:
            return ApplyResult(applied=False, changed_files=0, message="The diff contains no applicable changes.")
        return await self.apply_file_changes(changes, title, AutoReviewer(force=force))

    def collect_conflicts(self, changes: list[FileChange], snapshot: str) -> list[str]:
        """Paths whose disk state differs from the 'before' or 'after' snapshot"""
        conflicts = []
        for change in changes:
            expected_exists = change.existed_before if snapshot == "before" else change.existed_after
            expected_content = change.before_content if snapshot == "before" else change.after_content
            state = self.workspace.read_state(change.absolute_path)

            if state.exists != expected_exists:
                conflicts.append(change.relative_path)
            elif expected_exists and state.content != expected_content:
                conflicts.append(change.relative_path)
        return conflicts

    async def apply_file_changes(self, changes: list[FileChange], title: str, reviewer: Reviewer) -> ApplyResult:
        """Commit staged changes atomically after a drift check"""
        async with self._lock:
            conflicts = self.collect_conflicts(changes, "before")
            if conflicts and not await reviewer.confirm_override(conflicts, "apply"):
                return ApplyResult(
                    applied=False,
                    changed_files=len(changes),
                    message="Apply cancelled to avoid overwriting unexpected changes: " + ", ".join(conflicts),
                )

            operations = [
                FileOperation(Path(change.absolute_path), change.after_content if change.existed_after else None)
                for change in changes
            ]
            try:
                self.workspace.commit(operations)
            except OSError as e:
                return ApplyResult(
                    applied=False,
                    changed_files=len(changes),
                    message=f"Failed to apply changes to the workspace: {e}",
                )

            self.undo_stack.append(AppliedChangeBatch(title=title, created_at=time.time(), files=changes))
            log("ChangeSet", f"Applied '{title}' to {len(changes)} file(s)")
            return ApplyResult(
                applied=True,
                changed_files=len(changes),
                message=f"Patch applied successfully to {len(changes)} file(s).",
            )

    # ========== Undo ==========

    async def undo_last(self, reviewer: Reviewer) -> str:
        """Revert the latest batch to its exact before-content"""
        async with self._lock:
            if not self.undo_stack:
                return "No applied changes to undo."

            batch = self.undo_stack[-1]
            conflicts = self.collect_conflicts(batch.files, "after")
            if conflicts and not await reviewer.confirm_override(conflicts, "undo"):
                return "Undo cancelled."

            operations = [
                FileOperation(Path(change.absolute_path), change.before_content if change.existed_before else None)
                for change in batch.files
            ]
            try:
                self.workspace.commit(operations)
            except OSError as e:
                log("ChangeSet", f"Undo of '{batch.title}' failed: {e}")
                return f"Failed to undo changes: {e}"

            self.undo_stack.pop()
            log("ChangeSet", f"Undid '{batch.title}' ({len(batch.files)} file(s))")
            return f"Changes undone: {len(batch.files)} file(s)."
