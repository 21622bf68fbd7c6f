"""Terminal output formatting for the agent context"""

from __future__ import annotations

from dataclasses import dataclass

DEFAULT_TERMINAL_STREAM_LIMIT = 6000


@dataclass
class TerminalCommandResult:
    """Captured outcome of one shell command"""

    command: str
    cwd: str
    status: str  # "completed", "failed", "cancelled"
    exit_code: int | None
    duration_ms: float
    stdout: str = ""
    stderr: str = ""
    error_message: str | None = None


def truncate_for_context(raw: str, max_chars: int = DEFAULT_TERMINAL_STREAM_LIMIT) -> tuple[str, bool]:
    """Cut text to max_chars, appending a note with the hidden length"""
    text = raw or ""
    limit = int(max_chars) if max_chars and max_chars > 0 else DEFAULT_TERMINAL_STREAM_LIMIT
    if len(text) <= limit:
        return text, False
    return f"{text[:limit]}\n...[truncated {len(text) - limit} chars]", True


def format_terminal_command_for_context(
    result: TerminalCommandResult,
    max_stream_chars: int = DEFAULT_TERMINAL_STREAM_LIMIT,
) -> str:
    stdout, stdout_truncated = truncate_for_context(result.stdout, max_stream_chars)
    stderr, stderr_truncated = truncate_for_context(result.stderr, max_stream_chars)
    exit_code = "null" if result.exit_code is None else str(result.exit_code)

    lines = [
        f"Terminal Command: {result.command}",
        f"Working Directory: {result.cwd}",
        f"Status: {result.status}",
        f"Exit Code: {exit_code}",
        f"DurationMs: {max(0, round(result.duration_ms or 0))}",
    ]

    if result.status == "cancelled":
        lines.append("Result: command execution was cancelled by the user.")
        return "\n".join(lines)

    lines += ["", "STDOUT:", stdout or "(empty)", "", "STDERR:", stderr or "(empty)"]

    if result.error_message:
        lines += ["", "ERROR:", result.error_message]

    if stdout_truncated or stderr_truncated:
        lines += ["", f"Note: command output was truncated to {max(1, int(max_stream_chars))} chars per stream."]

    return "\n".join(lines)
