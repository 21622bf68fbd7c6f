"""
Context Resolver - Inline pinned files and @mentions into a user message

All referenced files share one token budget. Each file gets a fair share of
what is left, so a single large file cannot crowd out the others.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from .context_window import chunk_text_for_token_budget, get_context_window_config, render_chunked_content
from .log import log
from .workspace_session import WorkspaceSession

MENTION_RE = re.compile(r"@([a-zA-Z0-9_.\-/]+)")
MIN_FILE_TOKEN_SHARE = 128


@dataclass
class ContextTarget:
    source: str  # "pinned" or "mention"
    requested_path: str
    relative_path: str


def resolve_context_file(session: WorkspaceSession, file_ref: str) -> str | None:
    """Direct workspace path first, then the first glob match"""
    ref = file_ref.strip()
    if not ref:
        return None

    workspace = session.workspace
    direct = workspace.root / ref
    if workspace.is_inside_root(direct) and direct.is_file():
        return workspace.relative(direct)

    matches = workspace.find_files(ref, limit=1)
    return matches[0] if matches else None


def collect_context_targets(message: str, session: WorkspaceSession) -> list[ContextTarget]:
    """Pinned files, then mentions; deduplicated case-insensitively"""
    targets = []
    seen = set()

    requests = [("pinned", path) for path in session.pinned_files]
    requests += [("mention", match) for match in MENTION_RE.findall(message)]

    for source, requested in requests:
        relative = resolve_context_file(session, requested)
        if relative is None or relative.lower() in seen:
            continue
        seen.add(relative.lower())
        targets.append(ContextTarget(source=source, requested_path=requested, relative_path=relative))
    return targets


def resolve_message_context(message: str, session: WorkspaceSession) -> str:
    """Append budgeted file contents for pinned files and @mentions"""
    targets = collect_context_targets(message, session)
    if not targets:
        return message

    window = get_context_window_config(session.config)
    remaining_tokens = window.context_token_budget
    pinned_sections = []
    mention_sections = []
    omitted_files = 0

    for index, target in enumerate(targets):
        if remaining_tokens <= 0:
            omitted_files += len(targets) - index
            break

        files_left = len(targets) - index
        fair_share = remaining_tokens // max(files_left, 1)
        file_budget = max(1, min(remaining_tokens, max(MIN_FILE_TOKEN_SHARE, fair_share)))

        try:
            content = session.workspace.read_text(target.relative_path)
        except (OSError, UnicodeDecodeError) as e:
            omitted_files += 1
            log("Context", f"Error reading context file {target.requested_path}: {e}")
            continue

        chunked = chunk_text_for_token_budget(content, window.chunk_size_chars, file_budget)
        if chunked.included_chunk_count == 0:
            omitted_files += 1
            continue

        remaining_tokens = max(0, remaining_tokens - chunked.used_tokens)
        rendered = render_chunked_content(chunked)
        note = ""
        if chunked.truncated:
            note = (
                f"\n[context truncated: {chunked.included_chunk_count}/{chunked.total_chunk_count} chunks, "
                f"~{chunked.used_tokens}/{chunked.estimated_total_tokens} tokens]"
            )

        if target.source == "pinned":
            pinned_sections.append(f"\n# {target.relative_path}\n{rendered}{note}\n")
        else:
            mention_sections.append(
                f"\n\n--- FILE CONTEXT: {target.relative_path} ---\n{rendered}{note}\n"
                "----------------------------------\n"
            )

    context_data = ""
    if pinned_sections:
        context_data += "\n\n--- PINNED FILES ---\n" + "".join(pinned_sections) + "\n---------------------------------\n"
    context_data += "".join(mention_sections)
    if omitted_files:
        context_data += f"\n[Context budget reached: {omitted_files} file(s) omitted]\n"

    return message + context_data
