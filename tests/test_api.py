import pytest
from fastapi.testclient import TestClient

from diffagent.main import app
from diffagent.services.config_manager import ConfigManager
from diffagent.services.errors import AgentTimeoutError
from diffagent.services.llm_service import LLMService
from diffagent.services.workspace_session import reset_workspace_sessions

MODIFY_DIFF = "--- a/a.txt\n+++ b/a.txt\n@@ -1 +1 @@\n-one\n+uno\n"


@pytest.fixture
def client(tmp_path, monkeypatch, workspace_root):
    monkeypatch.setenv("DIFFAGENT_CONFIG_DIR", str(tmp_path / "config"))
    ConfigManager.reset_instance()
    reset_workspace_sessions()
    ConfigManager.get_instance().save_config({"workspaceRoot": str(workspace_root), "requestTimeoutMs": 0})

    yield TestClient(app)

    ConfigManager.reset_instance()
    reset_workspace_sessions()


@pytest.fixture
def scripted_llm(monkeypatch):
    """Replace LLMService.chat with replies popped from a list"""
    replies = []

    async def fake_chat(self, messages, token=None):
        reply = replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply

    monkeypatch.setattr(LLMService, "chat", fake_chat)
    return replies


def test_health(client):
    assert client.get("/health").json() == {"status": "healthy", "service": "diffagent-backend"}


# ========== Diff ==========


def test_parse_diff(client):
    response = client.post("/api/diff/parse", json={"diffContent": MODIFY_DIFF})

    assert response.status_code == 200
    files = response.json()
    assert files[0]["new_path"] == "a.txt"
    assert files[0]["hunks"][0]["old_start"] == 1


def test_parse_invalid_diff_is_400(client):
    assert client.post("/api/diff/parse", json={"diffContent": "not a diff"}).status_code == 400


def test_preview_apply_undo_cycle(client, workspace_root):
    (workspace_root / "a.txt").write_text("one\n")

    preview = client.post("/api/diff/preview", json={"diffContent": MODIFY_DIFF, "title": "rename"})
    assert preview.status_code == 200
    body = preview.json()
    assert body["changes"][0]["after_content"] == "uno\n"
    assert (workspace_root / "a.txt").read_text() == "one\n"

    applied = client.post("/api/diff/apply", json={"preview_id": body["preview_id"]})
    assert applied.json()["applied"] is True
    assert (workspace_root / "a.txt").read_text() == "uno\n"

    history = client.get("/api/diff/history").json()
    assert [(h["title"], h["files"]) for h in history] == [("rename", ["a.txt"])]

    undone = client.post("/api/diff/undo", json={})
    assert undone.json() == {"message": "Changes undone: 1 file(s).", "remaining": 0}
    assert (workspace_root / "a.txt").read_text() == "one\n"


def test_preview_conflict_is_409(client, workspace_root):
    (workspace_root / "a.txt").write_text("something else\n")

    response = client.post("/api/diff/preview", json={"diffContent": MODIFY_DIFF})

    assert response.status_code == 409


def test_preview_missing_file_is_409(client):
    assert client.post("/api/diff/preview", json={"diffContent": MODIFY_DIFF}).status_code == 409


def test_preview_path_escape_is_400(client):
    diff = "--- a/../evil.txt\n+++ b/../evil.txt\n@@ -0,0 +1 @@\n+x\n"

    assert client.post("/api/diff/preview", json={"diffContent": diff}).status_code == 400


def test_apply_unknown_preview_is_404(client):
    assert client.post("/api/diff/apply", json={"preview_id": "nope"}).status_code == 404


def test_apply_refuses_drifted_file_unless_forced(client, workspace_root):
    (workspace_root / "a.txt").write_text("one\n")
    first = client.post("/api/diff/preview", json={"diffContent": MODIFY_DIFF}).json()
    second = client.post("/api/diff/preview", json={"diffContent": MODIFY_DIFF}).json()
    (workspace_root / "a.txt").write_text("edited\n")

    refused = client.post("/api/diff/apply", json={"preview_id": first["preview_id"]}).json()
    forced = client.post("/api/diff/apply", json={"preview_id": second["preview_id"], "force": True}).json()

    assert refused["applied"] is False
    assert "a.txt" in refused["message"]
    assert forced["applied"] is True
    assert (workspace_root / "a.txt").read_text() == "uno\n"


def test_undo_with_empty_stack(client):
    assert client.post("/api/diff/undo", json={}).json()["message"] == "No applied changes to undo."


# ========== Context ==========


def test_pin_resolve_and_unpin(client, workspace_root):
    (workspace_root / "notes.md").write_text("remember this\n")

    pinned = client.post("/api/context/pinned", json={"file_path": "notes.md"})
    assert pinned.json() == {"pinned": True, "files": ["notes.md"]}
    assert client.get("/api/context/pinned").json() == {"files": ["notes.md"]}

    resolved = client.post("/api/context/resolve", json={"message": "hi"}).json()["content"]
    assert "--- PINNED FILES ---" in resolved
    assert "remember this" in resolved

    assert client.delete("/api/context/pinned", params={"file_path": "notes.md"}).json() == {"files": []}
    assert client.delete("/api/context/pinned", params={"file_path": "notes.md"}).status_code == 404


def test_pin_unknown_file_is_404(client):
    assert client.post("/api/context/pinned", json={"file_path": "ghost.py"}).status_code == 404


# ========== Sessions ==========


def test_session_crud(client):
    created = client.post("/api/sessions", json={"title": "Refactor"}).json()

    assert client.get(f"/api/sessions/{created['id']}").json()["title"] == "Refactor"
    assert [s["id"] for s in client.get("/api/sessions").json()] == [created["id"]]

    assert client.delete(f"/api/sessions/{created['id']}").status_code == 200
    assert client.get(f"/api/sessions/{created['id']}").status_code == 404
    assert client.delete(f"/api/sessions/{created['id']}").status_code == 404


def test_clear_sessions(client):
    client.post("/api/sessions", json={})
    client.post("/api/sessions", json={})

    client.delete("/api/sessions")

    assert client.get("/api/sessions").json() == []


# ========== Config ==========


def test_config_masks_api_keys(client):
    client.put("/api/config", json={"provider": "openai", "openai": {"apiKey": "sk-1234567890abcd"}})

    config = client.get("/api/config").json()

    assert config["provider"] == "openai"
    assert config["openai"]["apiKey"] == "sk-1*********abcd"
    assert config["openai"]["model"] == "gpt-4o-mini"


def test_config_update_keeps_other_settings(client, workspace_root):
    client.put("/api/config", json={"chunkSize": 4096})

    config = client.get("/api/config").json()

    assert config["chunkSize"] == 4096
    assert config["workspaceRoot"] == str(workspace_root)


# ========== Chat + Agent ==========


def test_chat_message_records_turn(client, scripted_llm):
    scripted_llm.append("Use this:\n```python\nprint('hi')\n```")

    response = client.post("/api/chat/message", json={"message": "say hi"}).json()

    assert response["code_blocks"] == [{"language": "python", "code": "print('hi')"}]
    stored = client.get(f"/api/sessions/{response['session_id']}").json()
    assert [m["role"] for m in stored["messages"]] == ["user", "assistant"]
    assert stored["title"] == "say hi"


def test_chat_message_timeout_is_504(client, scripted_llm):
    scripted_llm.append(AgentTimeoutError("Inactivity timeout (10ms) reached."))

    assert client.post("/api/chat/message", json={"message": "slow"}).status_code == 504


def test_agent_message_runs_to_final_answer(client, scripted_llm, workspace_root):
    (workspace_root / "main.py").write_text("")
    scripted_llm.extend([
        'Thought: check\nPlan: list\nAction:\n```json\n{"tool": "listfiles", "args": {}}\n```',
        "Thought: I have completed the task.\nFinal Answer: There is one file, main.py.",
    ])

    result = client.post("/api/agent/message", json={"message": "what is here?", "session_id": "s1"}).json()

    assert result["status"] == "done"
    assert result["final_answer"] == "There is one file, main.py."
    assert result["records"][0]["tool_call"]["tool"] == "listfiles"
    stored = client.get("/api/sessions/s1").json()
    assert stored["messages"][-1]["content"] == "There is one file, main.py."


def test_agent_applydiff_declined_without_auto_approve(client, scripted_llm, workspace_root):
    (workspace_root / "a.txt").write_text("one\n")
    call = '{"tool": "applydiff", "args": {"diffContent": "--- a/a.txt\\n+++ b/a.txt\\n@@ -1 +1 @@\\n-one\\n+uno\\n"}}'
    scripted_llm.extend([call, "Final Answer: done"])

    result = client.post("/api/agent/message", json={"message": "edit"}).json()

    assert result["records"][0]["tool_result"] == "Apply cancelled by the user."
    assert (workspace_root / "a.txt").read_text() == "one\n"


def test_cancel_without_active_generation(client):
    response = client.post("/api/agent/cancel/nobody").json()

    assert response == {"cancelled": False, "message": "No active generation."}


def test_preview_non_utf8_file_is_409(client, workspace_root):
    (workspace_root / "a.txt").write_bytes(b"\xff\xfeone\n")

    response = client.post("/api/diff/preview", json={"diffContent": MODIFY_DIFF})

    assert response.status_code == 409
    assert "not valid UTF-8" in response.json()["detail"]
