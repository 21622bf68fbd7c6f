from diffagent.services.terminal import (
    TerminalCommandResult,
    format_terminal_command_for_context,
    truncate_for_context,
)


def test_truncate_short_text_untouched():
    assert truncate_for_context("hello", 10) == ("hello", False)


def test_truncate_long_text_appends_note():
    text, truncated = truncate_for_context("x" * 15, 10)

    assert truncated
    assert text == "x" * 10 + "\n...[truncated 5 chars]"


def test_truncate_invalid_limit_uses_default():
    text, truncated = truncate_for_context("y" * 100, 0)

    assert not truncated
    assert text == "y" * 100


def test_format_completed_command():
    result = TerminalCommandResult(
        command="pytest -q",
        cwd="/repo",
        status="completed",
        exit_code=0,
        duration_ms=1234.4,
        stdout="3 passed",
    )

    text = format_terminal_command_for_context(result)

    assert text.splitlines()[:5] == [
        "Terminal Command: pytest -q",
        "Working Directory: /repo",
        "Status: completed",
        "Exit Code: 0",
        "DurationMs: 1234",
    ]
    assert "STDOUT:\n3 passed" in text
    assert "STDERR:\n(empty)" in text
    assert "ERROR:" not in text
    assert "Note:" not in text


def test_format_failed_command_with_truncation():
    result = TerminalCommandResult(
        command="make",
        cwd="/repo",
        status="failed",
        exit_code=2,
        duration_ms=10,
        stderr="e" * 50,
        error_message="Command exited with code 2",
    )

    text = format_terminal_command_for_context(result, max_stream_chars=20)

    assert "Exit Code: 2" in text
    assert "...[truncated 30 chars]" in text
    assert "ERROR:\nCommand exited with code 2" in text
    assert text.endswith("Note: command output was truncated to 20 chars per stream.")


def test_format_cancelled_command_omits_streams():
    result = TerminalCommandResult(command="rm -rf build", cwd="/repo", status="cancelled", exit_code=None, duration_ms=0)

    text = format_terminal_command_for_context(result)

    assert "Exit Code: null" in text
    assert text.endswith("Result: command execution was cancelled by the user.")
    assert "STDOUT" not in text
