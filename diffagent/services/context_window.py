"""
Context Window - Token estimation and budget-aware chunking

Token counts are estimated from character length. Chunking follows line
boundaries so the model sees whole lines wherever possible.
"""

from __future__ import annotations

import math
from typing import Any

from ..models.context import ChunkedTextForTokenBudget, ContextWindowConfig

DEFAULT_CHARS_PER_TOKEN = 4
DEFAULT_CHUNK_SIZE_CHARS = 25000


def normalize_positive_int(value: Any, fallback: int, minimum: int = 1) -> int:
    """Floor a numeric option, falling back when it is missing or below minimum"""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return fallback
    if not math.isfinite(value) or value < minimum:
        return fallback
    return max(minimum, math.floor(value))


def estimate_token_count(text: str, chars_per_token: int = DEFAULT_CHARS_PER_TOKEN) -> int:
    """ceil(len / chars_per_token); at least 1 for non-empty text"""
    if not text:
        return 0
    safe_chars_per_token = normalize_positive_int(chars_per_token, DEFAULT_CHARS_PER_TOKEN)
    return max(1, math.ceil(len(text) / safe_chars_per_token))


def split_text_into_chunks(text: str, chunk_size_chars: int) -> list[str]:
    """
    Greedily pack lines (terminators included) into chunks of at most
    chunk_size_chars. A line longer than the chunk size is hard-split.
    ''.join(result) == text always holds.
    """
    if not text:
        return []

    chunk_size = normalize_positive_int(chunk_size_chars, DEFAULT_CHUNK_SIZE_CHARS)
    lines = text.split("\n")
    chunks: list[str] = []
    current = ""

    for index, line in enumerate(lines):
        line_with_break = line + ("\n" if index < len(lines) - 1 else "")
        if not line_with_break:
            continue

        if len(line_with_break) > chunk_size:
            if current:
                chunks.append(current)
                current = ""
            for cursor in range(0, len(line_with_break), chunk_size):
                chunks.append(line_with_break[cursor:cursor + chunk_size])
            continue

        if current and len(current) + len(line_with_break) > chunk_size:
            chunks.append(current)
            current = ""

        current += line_with_break

    if current:
        chunks.append(current)
    return chunks


def chunk_text_for_token_budget(
    text: str,
    chunk_size_chars: int,
    max_tokens: int,
    chars_per_token: int = DEFAULT_CHARS_PER_TOKEN,
) -> ChunkedTextForTokenBudget:
    """Take whole chunks while they fit, then a character prefix of the next one"""
    text = text or ""
    safe_max_tokens = normalize_positive_int(max_tokens, 0, minimum=0)
    safe_chars_per_token = normalize_positive_int(chars_per_token, DEFAULT_CHARS_PER_TOKEN)

    estimated_total = estimate_token_count(text, safe_chars_per_token)
    source_chunks = split_text_into_chunks(text, chunk_size_chars)

    if not source_chunks or safe_max_tokens == 0:
        return ChunkedTextForTokenBudget(
            chunks=[],
            used_tokens=0,
            estimated_total_tokens=estimated_total,
            total_chunk_count=len(source_chunks),
            included_chunk_count=0,
            omitted_chunk_count=len(source_chunks),
            partial_chunk_included=False,
            truncated=bool(text) and safe_max_tokens == 0,
        )

    selected: list[str] = []
    used_tokens = 0
    partial_chunk_included = False

    for chunk in source_chunks:
        remaining = safe_max_tokens - used_tokens
        if remaining <= 0:
            break

        chunk_tokens = estimate_token_count(chunk, safe_chars_per_token)
        if chunk_tokens <= remaining:
            selected.append(chunk)
            used_tokens += chunk_tokens
            continue

        partial = chunk[:remaining * safe_chars_per_token]
        if partial:
            selected.append(partial)
            used_tokens += estimate_token_count(partial, safe_chars_per_token)
            partial_chunk_included = True
        break

    included = len(selected)
    return ChunkedTextForTokenBudget(
        chunks=selected,
        used_tokens=used_tokens,
        estimated_total_tokens=estimated_total,
        total_chunk_count=len(source_chunks),
        included_chunk_count=included,
        omitted_chunk_count=max(len(source_chunks) - included, 0),
        partial_chunk_included=partial_chunk_included,
        truncated=partial_chunk_included or included < len(source_chunks),
    )


def render_chunked_content(chunked: ChunkedTextForTokenBudget) -> str:
    """Join selected chunks, labelling them when the text was split"""
    if chunked.total_chunk_count <= 1 and not chunked.partial_chunk_included:
        return "\n\n".join(chunked.chunks)
    return "\n\n".join(
        f"[chunk {index + 1}/{chunked.total_chunk_count}]\n{chunk}"
        for index, chunk in enumerate(chunked.chunks)
    )


def get_context_window_config(config: dict[str, Any]) -> ContextWindowConfig:
    """Derive prompt budgets from the configured context and output sizes"""
    context_size = normalize_positive_int(config.get("contextSize", 32768), 32768, 1024)
    max_tokens = normalize_positive_int(config.get("maxTokens", 8192), 8192, 256)
    chunk_size = normalize_positive_int(config.get("chunkSize", DEFAULT_CHUNK_SIZE_CHARS), DEFAULT_CHUNK_SIZE_CHARS, 512)

    safe_input_tokens = max(1024, context_size - max(512, max_tokens))
    return ContextWindowConfig(
        chunk_size_chars=chunk_size,
        context_token_budget=max(512, math.floor(safe_input_tokens * 0.5)),
        read_token_budget=max(256, math.floor(safe_input_tokens * 0.65)),
    )
