"""
Workspace - File system access scoped to a workspace root

All paths handed in by the model or by a patch are workspace-relative and
are checked for root containment before any read or write.
"""

from __future__ import annotations

import fnmatch
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path

from .errors import SecurityError, StateError
from .log import debug, log

IGNORED_DIRS = {".git", "node_modules", "__pycache__", ".venv"}


@dataclass
class FileState:
    """Snapshot of a file on disk"""

    exists: bool
    content: str = ""


@dataclass
class FileOperation:
    """One step of an atomic commit; content None means delete"""

    path: Path
    content: str | None


class Workspace:
    """Workspace-relative file access with root containment checks"""

    def __init__(self, root: str | os.PathLike):
        self.root = Path(root).resolve()

    # ========== Path Helpers ==========

    def is_inside_root(self, target: str | os.PathLike) -> bool:
        """True if target resolves to the root or below it"""
        try:
            Path(target).resolve().relative_to(self.root)
        except ValueError:
            return False
        return True

    def resolve(self, relative_path: str) -> Path:
        """Resolve a workspace-relative path, rejecting escapes"""
        absolute = (self.root / relative_path).resolve()
        if not self.is_inside_root(absolute):
            raise SecurityError(f"Path is outside the workspace: {relative_path}")
        return absolute

    def relative(self, absolute: str | os.PathLike) -> str:
        return Path(absolute).resolve().relative_to(self.root).as_posix()

    # ========== Reads ==========

    def read_state(self, path: str | os.PathLike) -> FileState:
        """Read a file as UTF-8; a missing file is a state, not an error"""
        try:
            with open(path, encoding="utf-8", newline="") as f:
                return FileState(exists=True, content=f.read())
        except FileNotFoundError:
            return FileState(exists=False)
        except UnicodeDecodeError:
            raise StateError(f"File \"{self.relative(path)}\" is not valid UTF-8 text.")

    def read_text(self, relative_path: str) -> str:
        with open(self.resolve(relative_path), encoding="utf-8", newline="") as f:
            return f.read()

    def write_text(self, relative_path: str, content: str):
        target = self.resolve(relative_path)
        target.parent.mkdir(parents=True, exist_ok=True)
        with open(target, "w", encoding="utf-8", newline="") as f:
            f.write(content)

    def list_dir(self, relative_path: str) -> list[str]:
        """Entry names of a directory, directories suffixed with /"""
        directory = self.resolve(relative_path)
        return sorted(
            entry.name + ("/" if entry.is_dir() else "") for entry in directory.iterdir()
        )

    def find_files(self, pattern: str, limit: int = 10) -> list[str]:
        """Workspace-relative paths matching a glob, skipping vendored dirs"""
        # a leading **/ also matches files at the root
        patterns = {pattern}
        while pattern.startswith("**/"):
            pattern = pattern[3:]
            patterns.add(pattern)

        matches = []
        for dirpath, dirnames, filenames in os.walk(self.root):
            dirnames[:] = sorted(d for d in dirnames if d not in IGNORED_DIRS)
            for name in sorted(filenames):
                relative = Path(dirpath, name).relative_to(self.root).as_posix()
                if any(fnmatch.fnmatch(relative, p) or fnmatch.fnmatch(name, p) for p in patterns):
                    matches.append(relative)
                    if len(matches) >= limit:
                        return matches
        return matches

    # ========== Atomic Commit ==========

    def commit(self, operations: list[FileOperation]):
        """
        Apply all operations or none of them.

        New contents are first written to temp files next to their targets,
        then swapped in. Any failure restores every file already touched
        from its backup and removes files that did not exist before.
        """
        staged: list[tuple[FileOperation, Path | None]] = []
        backups: list[tuple[Path, FileState]] = []

        try:
            for op in operations:
                temp_path = None
                if op.content is not None:
                    op.path.parent.mkdir(parents=True, exist_ok=True)
                    fd, name = tempfile.mkstemp(prefix=".diffagent-", dir=op.path.parent)
                    with os.fdopen(fd, "w", encoding="utf-8", newline="") as f:
                        f.write(op.content)
                    temp_path = Path(name)
                staged.append((op, temp_path))

            for op, temp_path in staged:
                backups.append((op.path, self.read_state(op.path)))
                if temp_path is None:
                    op.path.unlink(missing_ok=True)
                else:
                    os.replace(temp_path, op.path)
                debug("Workspace", f"Committed {op.path}")
        except Exception as e:
            log("Workspace", f"Commit failed, rolling back {len(backups)} file(s): {e}")
            self._rollback(backups)
            raise
        finally:
            for _, temp_path in staged:
                if temp_path is not None and temp_path.exists():
                    temp_path.unlink()

    def _rollback(self, backups: list[tuple[Path, FileState]]):
        for path, state in reversed(backups):
            if state.exists:
                with open(path, "w", encoding="utf-8", newline="") as f:
                    f.write(state.content)
            else:
                path.unlink(missing_ok=True)
