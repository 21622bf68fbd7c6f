import pytest

from diffagent.services.workspace_session import WorkspaceSession


# Workspace Fixtures
@pytest.fixture
def workspace_root(tmp_path):
    """Empty workspace directory inside the test's tmp_path."""
    root = tmp_path / "workspace"
    root.mkdir()
    return root


@pytest.fixture
def workspace_config(workspace_root):
    return {
        "workspaceRoot": str(workspace_root),
        "contextSize": 32768,
        "maxTokens": 8192,
        "chunkSize": 25000,
        "requestTimeoutMs": 0,
        "requireTerminalCommandConfirmation": True,
    }


@pytest.fixture
def workspace_session(workspace_root, workspace_config):
    return WorkspaceSession(str(workspace_root), workspace_config)


# Fake LLM Fixtures
class FakeLLM:
    """
    Scripted stand-in for LLMService.

    Each entry of `responses` is returned by one chat() call, in order.
    An entry may be a callable taking (messages, token) for dynamic replies,
    or an exception instance to raise.
    """

    def __init__(self, responses=None, default=None):
        self.responses = list(responses or [])
        self.default = default
        self.calls = []

    async def chat(self, messages, token=None):
        self.calls.append([dict(m) for m in messages])
        if token is not None:
            token.raise_if_cancelled()
        if self.responses:
            reply = self.responses.pop(0)
        elif self.default is not None:
            reply = self.default
        else:
            raise AssertionError("FakeLLM ran out of scripted responses")

        if isinstance(reply, Exception):
            raise reply
        if callable(reply):
            return reply(messages, token)
        return reply

    async def generate_code(self, prompt, token=None):
        return await self.chat([{"role": "user", "content": prompt}], token)


@pytest.fixture
def fake_llm_class():
    """
    Factory fixture for FakeLLM.

    Example:
        def test_something(fake_llm_class):
            llm = fake_llm_class(["Final Answer: done"])
    """
    return FakeLLM
