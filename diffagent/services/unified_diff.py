"""
Unified Diff Service - Parse and apply git-style unified diffs

Application is strict: every context/remove line must match the base text
byte for byte. There is no fuzzy matching, so a stale base surfaces as a
ConflictError instead of a silently corrupted file.
"""

from __future__ import annotations

import re

from ..models.diff import DiffLineType, UnifiedDiffFile, UnifiedDiffHunk, UnifiedDiffLine
from .errors import ConflictError, ParseError

DEV_NULL = "/dev/null"
NO_NEWLINE_MARKER = "\\ No newline at end of file"

HUNK_HEADER_RE = re.compile(r"^@@ -(\d+)(?:,(\d+))? \+(\d+)(?:,(\d+))? @@")
FENCED_DIFF_RE = re.compile(r"```(?:diff|patch)?\s*([\s\S]*?)```", re.IGNORECASE)
GIT_HEADER_TOKEN_RE = re.compile(r'"[^"]+"|\S+')

_MARKER_TYPES = {
    " ": DiffLineType.CONTEXT,
    "+": DiffLineType.ADD,
    "-": DiffLineType.REMOVE,
}


# ========== Parsing ==========


def sanitize_unified_diff(content: str) -> str:
    """Strip an outer ```diff / ```patch fence, else return the trimmed text"""
    trimmed = (content or "").strip()
    if not trimmed:
        return ""

    fenced = FENCED_DIFF_RE.search(trimmed)
    return fenced.group(1).strip() if fenced else trimmed


def normalize_diff_path(raw_path: str) -> str:
    """Strip quotes and one a/ or b/ prefix, use forward slashes"""
    normalized = raw_path.strip()
    if normalized == DEV_NULL:
        return normalized

    if len(normalized) >= 2 and normalized[0] == normalized[-1] and normalized[0] in ("'", '"'):
        normalized = normalized[1:-1]

    if normalized.startswith("a/") or normalized.startswith("b/"):
        normalized = normalized[2:]

    return normalized.replace("\\", "/")


def _parse_diff_git_header(line: str) -> tuple[str, str]:
    raw_header = re.sub(r"^diff --git\s+", "", line)
    tokens = GIT_HEADER_TOKEN_RE.findall(raw_header)
    if len(tokens) < 2:
        raise ParseError(f"Invalid diff header: {line}")
    return normalize_diff_path(tokens[0]), normalize_diff_path(tokens[1])


def _is_file_header(lines: list[str], index: int) -> bool:
    return (
        index + 1 < len(lines)
        and lines[index].startswith("--- ")
        and lines[index + 1].startswith("+++ ")
    )


def _parse_hunk(
    lines: list[str],
    index: int,
    file: UnifiedDiffFile,
    last_line_type: DiffLineType | None,
) -> tuple[UnifiedDiffHunk, int, DiffLineType | None]:
    """Consume one hunk starting at its @@ header; return (hunk, next index, last line type)"""
    header = HUNK_HEADER_RE.match(lines[index])
    hunk = UnifiedDiffHunk(
        old_start=int(header.group(1)),
        old_lines=int(header.group(2)) if header.group(2) is not None else 1,
        new_start=int(header.group(3)),
        new_lines=int(header.group(4)) if header.group(4) is not None else 1,
    )
    index += 1

    consumed_old = 0
    consumed_new = 0
    while index < len(lines) and (consumed_old < hunk.old_lines or consumed_new < hunk.new_lines):
        diff_line = lines[index]

        if diff_line == NO_NEWLINE_MARKER:
            if last_line_type in (DiffLineType.ADD, DiffLineType.CONTEXT):
                file.new_file_has_trailing_newline = False
            index += 1
            continue

        line_type = _MARKER_TYPES.get(diff_line[:1])
        if line_type is None:
            raise ParseError(f"Invalid hunk line in {file.display_path}: {diff_line}")

        hunk.lines.append(UnifiedDiffLine(type=line_type, content=diff_line[1:]))
        if line_type != DiffLineType.ADD:
            consumed_old += 1
        if line_type != DiffLineType.REMOVE:
            consumed_new += 1
        last_line_type = line_type
        index += 1

    # trailing marker right after the last counted line
    while index < len(lines) and lines[index] == NO_NEWLINE_MARKER:
        if last_line_type in (DiffLineType.ADD, DiffLineType.CONTEXT):
            file.new_file_has_trailing_newline = False
        index += 1

    if consumed_old != hunk.old_lines or consumed_new != hunk.new_lines:
        raise ParseError(
            f"Incomplete hunk in {file.display_path}. Expected -{hunk.old_lines}/+{hunk.new_lines}, "
            f"got -{consumed_old}/+{consumed_new}."
        )

    return hunk, index, last_line_type


def parse_unified_diff(diff_content: str) -> list[UnifiedDiffFile]:
    """Parse raw (optionally fenced) diff text into per-file patches"""
    sanitized = sanitize_unified_diff(diff_content)
    if not sanitized:
        raise ParseError("Empty diff.")

    lines = sanitized.replace("\r\n", "\n").split("\n")
    files: list[UnifiedDiffFile] = []

    i = 0
    while i < len(lines):
        if lines[i].startswith("diff --git "):
            old_path, new_path = _parse_diff_git_header(lines[i])
            i += 1
        elif _is_file_header(lines, i):
            old_path = normalize_diff_path(lines[i][4:])
            new_path = normalize_diff_path(lines[i + 1][4:])
            i += 2
        else:
            i += 1
            continue

        file = UnifiedDiffFile(old_path=old_path, new_path=new_path)
        last_line_type: DiffLineType | None = None

        while i < len(lines):
            line = lines[i]

            if line.startswith("diff --git "):
                break
            # a second ---/+++ pair after a hunk opens the next file section
            if _is_file_header(lines, i) and file.hunks:
                break

            if line.startswith("new file mode "):
                file.is_new_file = True
                i += 1
            elif line.startswith("deleted file mode "):
                file.is_deleted_file = True
                i += 1
            elif line.startswith("rename from "):
                file.old_path = normalize_diff_path(line[len("rename from "):])
                i += 1
            elif line.startswith("rename to "):
                file.new_path = normalize_diff_path(line[len("rename to "):])
                i += 1
            elif _is_file_header(lines, i):
                file.old_path = normalize_diff_path(line[4:])
                file.new_path = normalize_diff_path(lines[i + 1][4:])
                if file.old_path == DEV_NULL:
                    file.is_new_file = True
                if file.new_path == DEV_NULL:
                    file.is_deleted_file = True
                i += 2
            elif HUNK_HEADER_RE.match(line):
                hunk, i, last_line_type = _parse_hunk(lines, i, file, last_line_type)
                file.hunks.append(hunk)
            else:
                i += 1

        if not file.old_path and not file.new_path:
            raise ParseError("Could not determine the file path of the patch.")

        if file.old_path == DEV_NULL:
            file.is_new_file = True
        if file.new_path == DEV_NULL:
            file.is_deleted_file = True

        files.append(file)

    if not files:
        raise ParseError("No files found in diff.")

    return files


# ========== Application ==========


def _split_text_for_patch(content: str) -> tuple[list[str], bool, str]:
    """Split into logical lines: (lines, has_trailing_newline, eol)"""
    eol = "\r\n" if "\r\n" in content else "\n"
    normalized = content.replace("\r\n", "\n")

    has_trailing_newline = normalized.endswith("\n")
    lines = normalized.split("\n") if normalized else []
    if has_trailing_newline and lines:
        lines.pop()

    return lines, has_trailing_newline, eol


def _join_lines_with_style(lines: list[str], has_trailing_newline: bool, eol: str) -> str:
    normalized = "\n".join(lines)
    if has_trailing_newline:
        normalized += "\n"
    if eol == "\r\n":
        return normalized.replace("\n", "\r\n")
    return normalized


def apply_unified_diff(original_content: str, file_patch: UnifiedDiffFile) -> str:
    """Apply one file patch to its base text, raising ConflictError on any mismatch"""
    source, has_trailing_newline, eol = _split_text_for_patch(original_content)
    path = file_patch.display_path
    result: list[str] = []

    source_index = 0
    line_offset = 0

    for hunk in file_patch.hunks:
        expected_index = max(0, hunk.old_start - 1 + line_offset)
        if expected_index < source_index or expected_index > len(source):
            raise ConflictError(f"Invalid hunk for {path}: position is outside the file.")

        result.extend(source[source_index:expected_index])
        source_index = expected_index

        for line in hunk.lines:
            if line.type == DiffLineType.ADD:
                result.append(line.content)
                continue

            if source_index >= len(source):
                raise ConflictError(f"Patch does not match the current content of {path}.")

            current_line = source[source_index]
            if current_line != line.content:
                raise ConflictError(
                    f'Conflict applying patch to {path}. '
                    f'Expected "{line.content}" but found "{current_line}".'
                )

            if line.type == DiffLineType.CONTEXT:
                result.append(current_line)
            source_index += 1

        line_offset += hunk.new_lines - hunk.old_lines

    result.extend(source[source_index:])

    if file_patch.is_new_file and result:
        has_trailing_newline = True
    if file_patch.new_file_has_trailing_newline is False:
        has_trailing_newline = False

    return _join_lines_with_style(result, has_trailing_newline, eol)


def invert_file_patch(file_patch: UnifiedDiffFile) -> UnifiedDiffFile:
    """Build the reverse patch (add/remove and old/new ranges swapped)"""
    swapped = {
        DiffLineType.ADD: DiffLineType.REMOVE,
        DiffLineType.REMOVE: DiffLineType.ADD,
        DiffLineType.CONTEXT: DiffLineType.CONTEXT,
    }
    hunks = [
        UnifiedDiffHunk(
            old_start=hunk.new_start,
            old_lines=hunk.new_lines,
            new_start=hunk.old_start,
            new_lines=hunk.old_lines,
            lines=[UnifiedDiffLine(type=swapped[line.type], content=line.content) for line in hunk.lines],
        )
        for hunk in file_patch.hunks
    ]
    return UnifiedDiffFile(
        old_path=file_patch.new_path,
        new_path=file_patch.old_path,
        is_new_file=file_patch.is_deleted_file,
        is_deleted_file=file_patch.is_new_file,
        hunks=hunks,
    )
