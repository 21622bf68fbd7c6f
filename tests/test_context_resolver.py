import pytest

from diffagent.services.context_resolver import (
    collect_context_targets,
    resolve_context_file,
    resolve_message_context,
)
from diffagent.services.workspace_session import WorkspaceSession


@pytest.fixture
def session(workspace_root, workspace_config):
    (workspace_root / "src").mkdir()
    (workspace_root / "src" / "app.py").write_text("print('app')\n")
    (workspace_root / "README.md").write_text("# Readme\n")
    return WorkspaceSession(str(workspace_root), workspace_config)


def test_message_without_references_is_unchanged(session):
    assert resolve_message_context("just a question", session) == "just a question"


def test_mention_is_inlined(session):
    result = resolve_message_context("explain @src/app.py please", session)

    assert result.startswith("explain @src/app.py please")
    assert "--- FILE CONTEXT: src/app.py ---\nprint('app')\n" in result


def test_mention_resolves_by_glob(session):
    assert resolve_context_file(session, "app.py") == "src/app.py"


def test_unknown_mention_is_ignored(session):
    assert resolve_message_context("look at @nowhere.py", session) == "look at @nowhere.py"


def test_mention_outside_workspace_is_ignored(session, workspace_root):
    (workspace_root.parent / "secret.txt").write_text("hidden\n")

    assert resolve_context_file(session, "../secret.txt") is None


def test_pinned_files_come_first_and_are_deduplicated(session):
    session.pin_file("README.md")

    targets = collect_context_targets("see @README.md and @src/app.py", session)

    assert [(t.source, t.relative_path) for t in targets] == [
        ("pinned", "README.md"),
        ("mention", "src/app.py"),
    ]


def test_pinned_section_rendering(session):
    session.pin_file("README.md")

    result = resolve_message_context("hello", session)

    assert "--- PINNED FILES ---\n\n# README.md\n# Readme\n" in result
    assert "FILE CONTEXT" not in result


def test_budget_is_shared_and_overflow_is_reported(workspace_root):
    for name in ("one.txt", "two.txt", "three.txt", "four.txt", "five.txt"):
        (workspace_root / name).write_text("line\n" * 800)
    # 512 token context budget
    session = WorkspaceSession(str(workspace_root), {"contextSize": 2000, "maxTokens": 1900})

    result = resolve_message_context("@one.txt @two.txt @three.txt @four.txt @five.txt", session)

    assert result.count("--- FILE CONTEXT:") == 4
    assert result.count("[context truncated: 1/1 chunks, ~128/1000 tokens]") == 4
    assert "five.txt" not in result.split("\n", 1)[1]
    assert "[Context budget reached: 1 file(s) omitted]" in result
