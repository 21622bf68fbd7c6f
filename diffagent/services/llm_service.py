"""
LLM Service - Handles interactions with different LLM providers

Every call takes the run's CancellationToken. Streaming calls arm an
InactivityTimer on that token and refresh it for each received chunk.
"""

from __future__ import annotations

import asyncio
import json
import re
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Awaitable, TypeVar

import aiohttp

from .cancellation import CancellationToken, InactivityTimer
from .errors import DiffAgentError
from .log import debug, log

T = TypeVar("T")

CODE_FENCE_RE = re.compile(r"```[a-zA-Z]*\n?|\n?```")


class LLMServiceError(DiffAgentError):
    """Provider returned an error or an unusable response"""


class LLMService:
    """Service for interacting with various LLM providers"""

    def __init__(self, config: dict[str, Any]):
        self.config = config
        self.provider = config.get("provider", "ollama")

    # ========== Config Helpers ==========

    def _get_ollama_config(self) -> tuple[str, str, dict[str, str]]:
        """Get Ollama config: (model, url, headers)."""
        cfg = self.config.get("ollama", {})
        endpoint = cfg.get("endpoint", "http://localhost:11434").rstrip("/")
        model = cfg.get("model", "qwen2.5-coder:7b")
        return model, f"{endpoint}/api/chat", {"Content-Type": "application/json"}

    def _get_openai_config(self) -> tuple[str, str, dict[str, str]]:
        """Get OpenAI config: (model, url, headers). Raises if api_key missing."""
        cfg = self.config.get("openai", {})
        api_key = cfg.get("apiKey")
        if not api_key:
            raise ValueError("OpenAI API key not configured")
        model = cfg.get("model", "gpt-4o-mini")
        url = "https://api.openai.com/v1/chat/completions"
        headers = {"Authorization": f"Bearer {api_key}", "Content-Type": "application/json"}
        return model, url, headers

    def _get_vllm_config(self) -> tuple[str, str, dict[str, str]]:
        """Get vLLM config: (model, url, headers)."""
        cfg = self.config.get("vllm", {})
        endpoint = cfg.get("endpoint", "http://localhost:8000").rstrip("/")
        model = cfg.get("model", "default")
        url = f"{endpoint}/v1/chat/completions"
        headers = {"Content-Type": "application/json"}
        if cfg.get("apiKey"):
            headers["Authorization"] = f"Bearer {cfg['apiKey']}"
        return model, url, headers

    def _get_provider_config(self) -> tuple[str, str, dict[str, str]]:
        if self.provider == "ollama":
            return self._get_ollama_config()
        if self.provider == "openai":
            return self._get_openai_config()
        if self.provider == "vllm":
            return self._get_vllm_config()
        raise ValueError(f"Unsupported provider: {self.provider}")

    def _timeout_seconds(self) -> float:
        timeout_ms = self.config.get("requestTimeoutMs", 120000)
        return max(0, timeout_ms or 0) / 1000

    # ========== Payload Builders ==========

    def _build_payload(self, model: str, messages: list[dict[str, str]], stream: bool) -> dict[str, Any]:
        """Build provider request payload"""
        max_tokens = self.config.get("maxTokens", 8192)
        if self.provider == "ollama":
            return {
                "model": model,
                "messages": messages,
                "stream": stream,
                "options": {
                    "temperature": 0.2,
                    "num_predict": max_tokens,
                    "num_ctx": self.config.get("contextSize", 32768),
                },
            }
        return {
            "model": model,
            "messages": messages,
            "max_tokens": max_tokens,
            "temperature": 0.0,
            "stream": stream,
        }

    # ========== Response Parsers ==========

    def _parse_response(self, data: dict[str, Any]) -> str:
        """Parse a non-streaming response of the configured provider"""
        if self.provider == "ollama":
            content = data.get("message", {}).get("content")
            if isinstance(content, str):
                return content
        elif "choices" in data and len(data["choices"]) > 0:
            choice = data["choices"][0]
            if "message" in choice and "content" in choice["message"]:
                return choice["message"]["content"]
            elif "text" in choice:
                return choice["text"]
        raise LLMServiceError("No valid response from API")

    def _parse_ollama_stream_line(self, line_text: str) -> str | None:
        """Parse a single NDJSON line from an Ollama chat stream"""
        if not line_text:
            return None
        try:
            data = json.loads(line_text)
        except json.JSONDecodeError:
            return None
        if data.get("error"):
            raise LLMServiceError(f"Ollama API error: {data['error']}")
        return data.get("message", {}).get("content") or None

    def _parse_openai_stream_line(self, line_text: str) -> str | None:
        """Parse a single SSE line from an OpenAI-compatible stream"""
        if not line_text.startswith("data: "):
            return None
        data_str = line_text[6:]
        if data_str == "[DONE]":
            return None
        try:
            data = json.loads(data_str)
        except json.JSONDecodeError:
            return None
        if "choices" in data and len(data["choices"]) > 0:
            delta = data["choices"][0].get("delta", {})
            return delta.get("content", "") or None
        return None

    def _parse_stream_line(self, line_text: str) -> str | None:
        if self.provider == "ollama":
            return self._parse_ollama_stream_line(line_text)
        return self._parse_openai_stream_line(line_text)

    # ========== HTTP ==========

    async def _retry_with_backoff(self, operation, max_retries: int = 3, provider: str = "API"):
        """Execute operation with exponential backoff retry logic"""
        for attempt in range(max_retries):
            try:
                return await operation()
            except asyncio.TimeoutError:
                if attempt < max_retries - 1:
                    wait_time = (2**attempt) * 3
                    log("LLMService", f"Request timeout. Retrying in {wait_time}s... (attempt {attempt + 1}/{max_retries})")
                    await asyncio.sleep(wait_time)
                    continue
                raise LLMServiceError(f"Request timeout after {max_retries} retries")
            except LLMServiceError as e:
                error_msg = str(e)
                retryable = "(429)" in error_msg or "(503)" in error_msg
                if retryable and attempt < max_retries - 1:
                    wait_time = (2**attempt) * 5
                    log("LLMService", f"{provider} busy. Retrying in {wait_time}s... (attempt {attempt + 1}/{max_retries})")
                    await asyncio.sleep(wait_time)
                    continue
                raise
            except aiohttp.ClientError as e:
                if attempt < max_retries - 1:
                    wait_time = (2**attempt) * 2
                    log("LLMService", f"Network error: {e}. Retrying in {wait_time}s... (attempt {attempt + 1}/{max_retries})")
                    await asyncio.sleep(wait_time)
                    continue
                raise LLMServiceError(f"{provider} network error: {e}") from e

    @asynccontextmanager
    async def _request(
        self,
        url: str,
        payload: dict[str, Any],
        headers: dict[str, str] | None = None,
        token: CancellationToken | None = None,
    ):
        """POST under the token from connect onwards; session and response are closed on exit"""
        async with aiohttp.ClientSession() as session:
            response = await self._guarded(session.post(url, json=payload, headers=headers), token)
            try:
                if response.status != 200:
                    error_text = await self._guarded(response.text(), token)
                    log("LLMService", f"{self.provider} API Error ({response.status}): {error_text}")
                    raise LLMServiceError(f"{self.provider} API error ({response.status}): {error_text}")
                yield response
            finally:
                response.release()

    @staticmethod
    async def _guarded(awaitable: Awaitable[T], token: CancellationToken | None) -> T:
        if token is None:
            return await awaitable
        return await token.run(awaitable)

    # ========== Public API ==========

    async def chat_stream(
        self,
        messages: list[dict[str, str]],
        token: CancellationToken | None = None,
    ) -> AsyncIterator[str]:
        """Stream a chat completion, observing cancellation and inactivity"""
        model, url, headers = self._get_provider_config()
        payload = self._build_payload(model, messages, stream=True)
        token = token or CancellationToken()
        timer = InactivityTimer(token, self._timeout_seconds())
        debug("LLMService", f"Streaming chat from {self.provider}/{model} ({len(messages)} messages)")

        timer.refresh()
        try:
            async with self._request(url, payload, headers, token) as response:
                while True:
                    line = await self._guarded(response.content.readline(), token)
                    if not line:
                        break
                    timer.refresh()
                    content = self._parse_stream_line(line.decode("utf-8").strip())
                    if content:
                        yield content
            token.raise_if_cancelled()
        finally:
            timer.dispose()

    async def chat(self, messages: list[dict[str, str]], token: CancellationToken | None = None) -> str:
        """Full chat completion text"""
        parts = []
        async for chunk in self.chat_stream(messages, token):
            parts.append(chunk)
        response_text = "".join(parts)
        log("LLMService", f"Received response from {self.provider} (length: {len(response_text)} chars)")
        return response_text

    async def generate_code(self, prompt: str, token: CancellationToken | None = None) -> str:
        """Single-prompt completion with code fences stripped"""
        response = await self.chat([{"role": "user", "content": prompt}], token)
        return CODE_FENCE_RE.sub("", response).strip()

    async def generate_response(self, prompt: str, context: str | None = None) -> str:
        """Non-streaming completion with retries (used for connection checks)"""
        model, url, headers = self._get_provider_config()
        messages = []
        if context:
            messages.append({"role": "system", "content": f"Context:\n{context}"})
        messages.append({"role": "user", "content": prompt})
        payload = self._build_payload(model, messages, stream=False)

        async def _execute_request():
            async with self._request(url, payload, headers) as response:
                return self._parse_response(await response.json())

        timeout = self._timeout_seconds() or None
        return await self._retry_with_backoff(
            lambda: asyncio.wait_for(_execute_request(), timeout),
            provider=self.provider,
        )
