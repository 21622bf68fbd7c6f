"""
Agent Tools - The fixed tool table exposed to the model

Arguments arrive as an untyped JSON object. Each tool declares a pydantic
argument model; the dispatcher validates and coerces against it before the
handler runs. Handlers always return text: failures are reported to the
model as observations, never raised, except cancellation and timeout,
which end the run.
"""

from __future__ import annotations

import asyncio
import math
import time
from dataclasses import dataclass
from typing import Annotated, Any, Awaitable, Callable

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, ValidationError

from ..models.agent import AgentToolCall
from .cancellation import CancellationToken
from .context_window import (
    chunk_text_for_token_budget,
    get_context_window_config,
    render_chunked_content,
    split_text_into_chunks,
)
from .errors import AgentCancelledError, AgentTimeoutError, SecurityError
from .llm_service import LLMService
from .log import debug, log
from .review import Reviewer
from .terminal import TerminalCommandResult, format_terminal_command_for_context
from .workspace_session import WorkspaceSession

MAX_SEARCH_RESULTS = 50
MAX_FIND_RESULTS = 10
SEMANTIC_SNIPPET_CHARS = 500


# ========== Coercion Helpers ==========


def as_non_empty_string(value: Any) -> str | None:
    if not isinstance(value, str):
        return None
    trimmed = value.strip()
    return trimmed or None


def as_optional_number(value: Any) -> float | None:
    """Numbers and numeric strings; None for anything else"""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)) and math.isfinite(value):
        return value
    if isinstance(value, str) and value.strip():
        try:
            parsed = float(value)
        except ValueError:
            return None
        return parsed if math.isfinite(parsed) else None
    return None


def as_boolean(value: Any, default: bool) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        normalized = value.strip().lower()
        if normalized == "true":
            return True
        if normalized == "false":
            return False
    return default


def _required_string(value: Any) -> str:
    text = as_non_empty_string(value)
    if text is None:
        raise ValueError("must be a non-empty string")
    return text


def _string_or_dot(value: Any) -> str:
    return as_non_empty_string(value) or "."


def _positive_int_or_default(default: int) -> Callable[[Any], int]:
    def coerce(value: Any) -> int:
        number = as_optional_number(value)
        return int(number) if number is not None and number >= 1 else default
    return coerce


RequiredStr = Annotated[str, BeforeValidator(_required_string)]


# ========== Argument Models ==========


class ToolArgs(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class RunArgs(ToolArgs):
    command: RequiredStr


class ReadArgs(ToolArgs):
    file_path: RequiredStr = Field(alias="filePath")


class WriteArgs(ToolArgs):
    file_path: RequiredStr = Field(alias="filePath")
    content: str


class ListFilesArgs(ToolArgs):
    directory_path: Annotated[str, BeforeValidator(_string_or_dot)] = Field(".", alias="directoryPath")


class FindFileArgs(ToolArgs):
    pattern: RequiredStr


class SearchTextArgs(ToolArgs):
    query: RequiredStr
    case_sensitive: Annotated[bool, BeforeValidator(lambda v: as_boolean(v, True))] = Field(True, alias="caseSensitive")


class SearchSemanticArgs(ToolArgs):
    query: RequiredStr
    k: Annotated[int, BeforeValidator(_positive_int_or_default(5))] = 5


class ApplyDiffArgs(ToolArgs):
    diff_content: RequiredStr = Field(alias="diffContent")


class UndoArgs(ToolArgs):
    pass


class GenerateCodeArgs(ToolArgs):
    prompt: RequiredStr
    file_path: Annotated[str | None, BeforeValidator(as_non_empty_string)] = Field(None, alias="filePath")


class AnalyzeFileArgs(ToolArgs):
    file_path: RequiredStr = Field(alias="filePath")
    instruction: RequiredStr


@dataclass
class ToolSpec:
    """One row of the tool table"""

    name: str
    args_model: type[ToolArgs]
    handler: Callable[[Any, CancellationToken], Awaitable[str]]
    description: str


def format_validation_error(tool: str, error: ValidationError) -> str:
    problems = []
    for item in error.errors():
        field = ".".join(str(part) for part in item["loc"]) or "args"
        problems.append(f"{field}: {item['msg']}")
    return f"Invalid arguments for tool '{tool}': " + "; ".join(problems)


class ToolDispatcher:
    """Validates tool arguments and routes calls to their handlers"""

    def __init__(self, session: WorkspaceSession, llm: LLMService, reviewer: Reviewer):
        self.session = session
        self.workspace = session.workspace
        self.llm = llm
        self.reviewer = reviewer
        self.tools: dict[str, ToolSpec] = {
            spec.name: spec
            for spec in (
                ToolSpec("run", RunArgs, self.run_command,
                         'Execute a shell command in the workspace root. args: { "command": "npm test" }'),
                ToolSpec("read", ReadArgs, self.read_file,
                         'Read file content. args: { "filePath": "src/app.py" }'),
                ToolSpec("write", WriteArgs, self.write_file,
                         'Write/create a file. args: { "filePath": "new.py", "content": "..." }'),
                ToolSpec("listfiles", ListFilesArgs, self.list_files,
                         'List directory contents. args: { "directoryPath": "." }'),
                ToolSpec("findfile", FindFileArgs, self.find_file,
                         'Find files by glob pattern. args: { "pattern": "**/test_*.py" }'),
                ToolSpec("searchtext", SearchTextArgs, self.search_text,
                         'Search text using git grep. args: { "query": "SearchTerm", "caseSensitive": true }'),
                ToolSpec("searchsemantic", SearchSemanticArgs, self.search_semantic,
                         'Semantic search over the indexed workspace. args: { "query": "How is X implemented?" }'),
                ToolSpec("applydiff", ApplyDiffArgs, self.apply_diff,
                         'Apply a unified diff with preview and undo. args: { "diffContent": "diff --git ..." }'),
                ToolSpec("undo", UndoArgs, self.undo,
                         "Undo the last applied diff. args: {}"),
                ToolSpec("generatecode", GenerateCodeArgs, self.generate_code,
                         'Generate code with the model, optionally into a file. args: { "prompt": "...", "filePath": "optional.py" }'),
                ToolSpec("analyzefile", AnalyzeFileArgs, self.analyze_file,
                         'Analyze a (possibly large) file. args: { "filePath": "src/app.py", "instruction": "..." }'),
            )
        }

    def describe_tools(self) -> str:
        return "\n".join(f"- {spec.name}: {spec.description}" for spec in self.tools.values())

    async def execute(self, call: AgentToolCall, token: CancellationToken) -> str:
        """Run one tool call; always returns an observation string"""
        name = call.tool.strip().lower()
        spec = self.tools.get(name)
        if spec is None:
            log("Tools", f"Unknown tool: {name}")
            return f"Unknown tool: {name}"

        try:
            args = spec.args_model.model_validate(call.args)
        except ValidationError as e:
            return format_validation_error(name, e)

        debug("Tools", f"Executing {name} with {call.args}")
        try:
            return await spec.handler(args, token)
        except (AgentCancelledError, AgentTimeoutError):
            raise
        except Exception as e:
            log("Tools", f"Tool {name} failed: {e}")
            return f"Error executing tool {name}: {e}"

    # ========== Shell ==========

    async def run_command(self, args: RunArgs, token: CancellationToken) -> str:
        cwd = str(self.workspace.root)
        if self.session.config.get("requireTerminalCommandConfirmation", True):
            if not await self.reviewer.confirm_command(args.command, cwd):
                log("Tools", f"Execution cancelled for: {args.command}")
                return format_terminal_command_for_context(
                    TerminalCommandResult(args.command, cwd, "cancelled", None, 0)
                )

        log("Tools", f"Running command: {args.command}")
        started = time.monotonic()
        process = await asyncio.create_subprocess_shell(
            args.command,
            cwd=cwd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        try:
            stdout, stderr = await token.run(process.communicate())
        except (AgentCancelledError, AgentTimeoutError):
            if process.returncode is None:
                process.kill()
                await process.wait()
            raise

        exit_code = process.returncode
        return format_terminal_command_for_context(
            TerminalCommandResult(
                command=args.command,
                cwd=cwd,
                status="completed" if exit_code == 0 else "failed",
                exit_code=exit_code,
                duration_ms=(time.monotonic() - started) * 1000,
                stdout=stdout.decode("utf-8", errors="replace"),
                stderr=stderr.decode("utf-8", errors="replace"),
                error_message=None if exit_code == 0 else f"Command exited with code {exit_code}",
            )
        )

    # ========== Files ==========

    async def read_file(self, args: ReadArgs, token: CancellationToken) -> str:
        try:
            content = self.workspace.read_text(args.file_path)
        except SecurityError:
            return f"Path is outside the workspace: {args.file_path}"
        except (OSError, UnicodeDecodeError) as e:
            return f"Error reading file {args.file_path}: {e}"

        window = get_context_window_config(self.session.config)
        chunked = chunk_text_for_token_budget(content, window.chunk_size_chars, window.read_token_budget)
        if not content:
            return f"Content of {args.file_path}:\n\n(empty file)"
        if chunked.included_chunk_count == 0:
            return f"Content of {args.file_path} cannot be shown within the current context budget."

        rendered = render_chunked_content(chunked)
        if not chunked.truncated:
            return f"Content of {args.file_path}:\n\n{rendered}"
        return (
            f"Content of {args.file_path} (~{chunked.used_tokens}/{chunked.estimated_total_tokens} tokens, "
            f"{chunked.included_chunk_count}/{chunked.total_chunk_count} chunks):\n\n{rendered}"
            "\n\n...[file truncated to respect the context limit]"
        )

    async def write_file(self, args: WriteArgs, token: CancellationToken) -> str:
        try:
            self.workspace.write_text(args.file_path, args.content)
        except SecurityError:
            return f"Path is outside the workspace: {args.file_path}"
        except OSError as e:
            return f"Error writing file {args.file_path}: {e}"
        return f"Content written to {args.file_path}."

    async def list_files(self, args: ListFilesArgs, token: CancellationToken) -> str:
        try:
            entries = self.workspace.list_dir(args.directory_path)
        except SecurityError:
            return f"Path is outside the workspace: {args.directory_path}"
        except OSError as e:
            return f"Error listing files in {args.directory_path}: {e}"
        return f"Files in {args.directory_path}:\n" + "\n".join(entries)

    async def find_file(self, args: FindFileArgs, token: CancellationToken) -> str:
        matches = self.workspace.find_files(args.pattern, limit=MAX_FIND_RESULTS)
        if not matches:
            return f"No files found for pattern: {args.pattern}."
        return f"Files found for {args.pattern}:\n" + "\n".join(matches)

    # ========== Search ==========

    async def search_text(self, args: SearchTextArgs, token: CancellationToken) -> str:
        flags = ["-I", "-n", "-F"] if args.case_sensitive else ["-I", "-n", "-F", "-i"]
        process = await asyncio.create_subprocess_exec(
            "git", "grep", *flags, "--", args.query,
            cwd=str(self.workspace.root),
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        try:
            stdout, stderr = await token.run(process.communicate())
        except (AgentCancelledError, AgentTimeoutError):
            if process.returncode is None:
                process.kill()
                await process.wait()
            raise

        if process.returncode == 1:
            return f"No results found for: {args.query}."
        if process.returncode != 0:
            return f"Error searching text: {stderr.decode('utf-8', errors='replace').strip()}"

        lines = [line for line in stdout.decode("utf-8", errors="replace").splitlines() if line.strip()]
        header = f'Found {len(lines)} results for "{args.query}".\n\n'
        if len(lines) > MAX_SEARCH_RESULTS:
            header += f"(showing first {MAX_SEARCH_RESULTS})\n\n"
        return header + "\n".join(lines[:MAX_SEARCH_RESULTS])

    async def search_semantic(self, args: SearchSemanticArgs, token: CancellationToken) -> str:
        if self.session.semantic_search is None:
            return "Semantic search is not configured for this workspace."

        results = await token.run(self.session.semantic_search.search(args.query, args.k))
        if not results:
            return "No relevant results found."

        sections = [
            f"File: {r.file_path}\nScore: {r.score:.2f}\n{r.content[:SEMANTIC_SNIPPET_CHARS]}...\n"
            for r in results
        ]
        return f"Semantic results for: {args.query}\n\n" + "\n".join(sections)

    # ========== Patches ==========

    async def apply_diff(self, args: ApplyDiffArgs, token: CancellationToken) -> str:
        token.raise_if_cancelled()
        result = await self.session.change_sets.preview_and_apply(args.diff_content, "Agent Patch", self.reviewer)
        return result.message

    async def undo(self, args: UndoArgs, token: CancellationToken) -> str:
        token.raise_if_cancelled()
        return await self.session.change_sets.undo_last(self.reviewer)

    # ========== Model-backed ==========

    async def generate_code(self, args: GenerateCodeArgs, token: CancellationToken) -> str:
        prompt = (
            "You are an expert programming assistant. Generate code for the following request:\n\n"
            f"{args.prompt}\n\n"
            "RULES:\n"
            "- Return only the requested code, no explanations\n"
            "- Add comments only where necessary\n"
        )
        code = await self.llm.generate_code(prompt, token)
        if not args.file_path:
            return f"Generated code:\n```\n{code}\n```"

        try:
            self.workspace.write_text(args.file_path, code + "\n")
        except SecurityError:
            return f"Path is outside the workspace: {args.file_path}"
        return f"Generated code written to {args.file_path}."

    async def analyze_file(self, args: AnalyzeFileArgs, token: CancellationToken) -> str:
        try:
            content = self.workspace.read_text(args.file_path)
        except SecurityError:
            return f"Path is outside the workspace: {args.file_path}"
        except (OSError, UnicodeDecodeError) as e:
            return f"Error reading file {args.file_path}: {e}"

        window = get_context_window_config(self.session.config)
        # Files up to two chunks go to the model in one request
        if len(content) <= window.chunk_size_chars * 2:
            analysis = await self.llm.chat(
                [{"role": "user", "content": f"{args.instruction}\n\nFile {args.file_path}:\n\n{content}"}],
                token,
            )
            return f"Analysis of {args.file_path}:\n\n{analysis}"

        chunks = split_text_into_chunks(content, window.chunk_size_chars)
        debug("Tools", f"Splitting {args.file_path} into {len(chunks)} parts")
        partials = []
        for index, chunk in enumerate(chunks):
            token.raise_if_cancelled()
            prompt = (
                f"{args.instruction}\n\nThis is part {index + 1}/{len(chunks)} of {args.file_path}. "
                f"Analyze only this part.\n\n{chunk}"
            )
            try:
                partial = await self.llm.chat([{"role": "user", "content": prompt}], token)
            except (AgentCancelledError, AgentTimeoutError):
                raise
            except Exception as e:
                log("Tools", f"Error in part {index + 1}: {e}")
                partials.append(f"=== ERROR IN PART {index + 1} ===\nError: {e}")
                continue
            partials.append(f"=== PART {index + 1}/{len(chunks)} ===\n{partial}")

        consolidated = await self.llm.chat(
            [{
                "role": "user",
                "content": (
                    f"{args.instruction}\n\nCombine these partial analyses of {args.file_path} "
                    "into one answer:\n\n" + "\n\n".join(partials)
                ),
            }],
            token,
        )
        return f"Analysis of {args.file_path} ({len(chunks)} parts):\n\n{consolidated}"
