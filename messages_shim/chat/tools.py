"""Read-only local tools the chat client offers to the model."""

from __future__ import annotations

import re
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

from ..core.exceptions import ProxyError

MAX_OUTPUT_CHARS = 20_000
MAX_RESULTS = 200


class ToolError(ProxyError):
    """A tool could not complete; the message goes back to the model."""


def _truncate(text: str) -> str:
    if len(text) <= MAX_OUTPUT_CHARS:
        return text
    return text[:MAX_OUTPUT_CHARS] + f"\n... (truncated, {len(text) - MAX_OUTPUT_CHARS} more characters)"


class ChatTool(ABC):
    """A tool declared to the model and executed locally under ``root``."""

    required: tuple[str, ...] = ()

    def __init__(self, root: Path | str):
        self.root = Path(root)

    @property
    @abstractmethod
    def name(self) -> str:
        ...

    @property
    @abstractmethod
    def description(self) -> str:
        ...

    @property
    @abstractmethod
    def parameters(self) -> dict[str, Any]:
        ...

    @abstractmethod
    def execute(self, **kwargs: Any) -> str:
        ...

    def to_anthropic(self) -> dict[str, Any]:
        """Return the Anthropic tool declaration for this tool."""
        return {
            "name": self.name,
            "description": self.description,
            "input_schema": {
                "type": "object",
                "properties": self.parameters,
                "required": list(self.required),
            },
        }

    def run(self, tool_input: Any) -> tuple[str, bool]:
        """Execute with model-supplied input; returns ``(text, is_error)``."""
        if not isinstance(tool_input, dict):
            return f"Error: {self.name} input must be an object", True
        missing = [key for key in self.required if key not in tool_input]
        if missing:
            return f"Error: {self.name} is missing required input: {', '.join(missing)}", True
        try:
            return _truncate(self.execute(**tool_input)), False
        except TypeError as exc:
            return f"Error: invalid input for {self.name}: {exc}", True
        except ToolError as exc:
            return f"Error: {exc.message}", True
        except OSError as exc:
            return f"Error: {exc.strerror or exc}", True

    def _resolve(self, path: str | None) -> Path:
        if not path:
            return self.root
        candidate = Path(path).expanduser()
        return candidate if candidate.is_absolute() else self.root / candidate

    def _display(self, path: Path) -> str:
        try:
            return str(path.relative_to(self.root))
        except ValueError:
            return str(path)


class ReadTool(ChatTool):
    required = ("file_path",)

    @property
    def name(self) -> str:
        return "Read"

    @property
    def description(self) -> str:
        return "Read a text file. Returns numbered lines; use offset and limit for large files."

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "file_path": {"type": "string", "description": "Path of the file to read"},
            "offset": {"type": "integer", "description": "First line to read, starting at 1"},
            "limit": {"type": "integer", "description": "Number of lines to read"},
        }

    def execute(self, file_path: str, offset: int = 1, limit: int | None = None) -> str:
        path = self._resolve(file_path)
        if path.is_dir():
            raise ToolError(f"{file_path} is a directory")
        try:
            lines = path.read_text(encoding="utf-8").splitlines()
        except UnicodeDecodeError:
            raise ToolError(f"{file_path} is not a UTF-8 text file")

        start = max(int(offset), 1)
        end = len(lines) if limit is None else start - 1 + max(int(limit), 0)
        selected = lines[start - 1:end]
        if not selected:
            return "(no lines in range)" if lines else "(empty file)"
        return "\n".join(f"{number:>6}\t{line}" for number, line in enumerate(selected, start))


class GlobTool(ChatTool):
    required = ("pattern",)

    @property
    def name(self) -> str:
        return "Glob"

    @property
    def description(self) -> str:
        return "Find files by glob pattern, e.g. '**/*.py'. Returns matching paths."

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "pattern": {"type": "string", "description": "Glob pattern to match"},
            "path": {"type": "string", "description": "Directory to search (default: working directory)"},
        }

    def execute(self, pattern: str, path: str | None = None) -> str:
        base = self._resolve(path)
        if not base.is_dir():
            raise ToolError(f"{path} is not a directory")
        try:
            matches = sorted(p for p in base.glob(pattern) if p.is_file())
        except ValueError as exc:
            raise ToolError(f"invalid pattern {pattern!r}: {exc}")

        if not matches:
            return "No files found"
        lines = [self._display(p) for p in matches[:MAX_RESULTS]]
        if len(matches) > MAX_RESULTS:
            lines.append(f"... ({len(matches) - MAX_RESULTS} more)")
        return "\n".join(lines)


class GrepTool(ChatTool):
    required = ("pattern",)

    @property
    def name(self) -> str:
        return "Grep"

    @property
    def description(self) -> str:
        return "Search file contents with a regular expression. Returns file:line: text matches."

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "pattern": {"type": "string", "description": "Regular expression to search for"},
            "path": {"type": "string", "description": "File or directory to search (default: working directory)"},
            "glob": {"type": "string", "description": "Only search files matching this glob (default: **/*)"},
        }

    def execute(self, pattern: str, path: str | None = None, glob: str = "**/*") -> str:
        try:
            regex = re.compile(pattern)
        except re.error as exc:
            raise ToolError(f"invalid regular expression {pattern!r}: {exc}")

        base = self._resolve(path)
        if base.is_file():
            files = [base]
        elif base.is_dir():
            files = sorted(p for p in base.glob(glob) if p.is_file())
        else:
            raise ToolError(f"{path} does not exist")

        matches: list[str] = []
        for file in files:
            try:
                text = file.read_text(encoding="utf-8")
            except (UnicodeDecodeError, OSError):
                continue
            for number, line in enumerate(text.splitlines(), 1):
                if regex.search(line):
                    matches.append(f"{self._display(file)}:{number}: {line}")
                    if len(matches) >= MAX_RESULTS:
                        matches.append(f"... (stopped after {MAX_RESULTS} matches)")
                        return "\n".join(matches)

        return "\n".join(matches) if matches else "No matches found"


def default_tools(root: Path | str) -> list[ChatTool]:
    """The tools offered in chat mode, rooted at ``root``."""
    return [ReadTool(root), GlobTool(root), GrepTool(root)]
