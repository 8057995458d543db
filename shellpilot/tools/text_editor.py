"""File viewing, creation and string-replacement editing tools."""

import difflib
import os
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any

from shellpilot.confirmation import ConfirmationBroker, ConfirmationRequest
from shellpilot.logging import get_logger
from shellpilot.tools.registry import Tool, ToolResult

log = get_logger(__name__)

VIEW_PREVIEW_LINES = 10
MAX_VIEW_BYTES = 1_000_000


@dataclass(frozen=True)
class EditRecord:
    """One file change made during the session."""

    command: str
    path: str
    old_str: str | None = None
    new_str: str | None = None
    timestamp: datetime = field(default_factory=datetime.now)


def _count_label(count: int, noun: str) -> str:
    return f"{count} {noun}{'' if count == 1 else 's'}"


def unified_diff(path: str, before: str, after: str, context: int = 3) -> str:
    """Unified diff with an addition/removal summary line on top."""
    old_lines = before.splitlines()
    new_lines = after.splitlines()
    body = list(
        difflib.unified_diff(
            old_lines,
            new_lines,
            fromfile=f"a/{path}",
            tofile=f"b/{path}",
            n=context,
            lineterm="",
        )
    )
    added = sum(1 for line in body if line.startswith("+") and not line.startswith("+++"))
    removed = sum(1 for line in body if line.startswith("-") and not line.startswith("---"))
    summary = f"Updated {path} with {_count_label(added, 'addition')} and {_count_label(removed, 'removal')}"
    return "\n".join([summary, *body])


class TextEditor:
    """Session-scoped file operations shared by the editor tools."""

    def __init__(
        self,
        broker: ConfirmationBroker,
        cwd: Callable[[], str] | None = None,
    ):
        self.broker = broker
        self._cwd = cwd or os.getcwd
        self.edit_history: list[EditRecord] = []

    def resolve(self, path: str) -> Path:
        candidate = Path(path).expanduser()
        if not candidate.is_absolute():
            candidate = Path(self._cwd()) / candidate
        return candidate.resolve()

    def view(self, path: str, view_range: list[int] | tuple[int, int] | None = None) -> ToolResult:
        """Show a file with ``N: line`` numbering, or list a directory."""
        target = self.resolve(path)
        if not target.exists():
            return ToolResult(success=False, error=f"File or directory not found: {path}")

        if target.is_dir():
            names = sorted(
                child.name + ("/" if child.is_dir() else "")
                for child in target.iterdir()
            )
            listing = "\n".join(names) if names else "(empty directory)"
            return ToolResult(success=True, output=f"Directory contents of {path}:\n{listing}")

        size = target.stat().st_size
        if size > MAX_VIEW_BYTES:
            return ToolResult(success=False, error=f"File too large: {size} bytes (max {MAX_VIEW_BYTES})")

        lines = target.read_text(encoding="utf-8", errors="replace").splitlines()

        if view_range:
            if len(view_range) != 2:
                return ToolResult(success=False, error="view_range must be [start_line, end_line]")
            start, end = int(view_range[0]), int(view_range[1])
            if start < 1 or end < start or start > max(len(lines), 1):
                return ToolResult(
                    success=False,
                    error=f"Invalid line range [{start}, {end}] for file with {len(lines)} lines",
                )
            selected = lines[start - 1:end]
            numbered = [f"{start + offset}: {line}" for offset, line in enumerate(selected)]
            return ToolResult(
                success=True,
                output=f"Lines {start}-{start + len(selected) - 1} of {path}:\n" + "\n".join(numbered),
            )

        shown = lines[:VIEW_PREVIEW_LINES]
        numbered = [f"{idx + 1}: {line}" for idx, line in enumerate(shown)]
        if len(lines) > VIEW_PREVIEW_LINES:
            numbered.append(f"... +{len(lines) - VIEW_PREVIEW_LINES} lines")
        return ToolResult(success=True, output=f"Contents of {path}:\n" + "\n".join(numbered))

    async def create(self, path: str, content: str) -> ToolResult:
        """Create a new file, asking the operator first."""
        target = self.resolve(path)
        if target.exists():
            return ToolResult(
                success=False,
                error=f"File already exists: {path}. Use str_replace_editor to modify it.",
            )

        preview = "\n".join(f"+{line}" for line in content.splitlines())
        if self.broker.needs_confirmation("file_operations"):
            await self.broker.require(
                ConfirmationRequest(
                    operation="Write",
                    target=str(target),
                    content=preview,
                    category="file_operations",
                )
            )

        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content, encoding="utf-8")
        self.edit_history.append(EditRecord(command="create", path=str(target), new_str=content))
        log.info("File created", path=str(target), chars=len(content))

        line_count = len(content.splitlines())
        return ToolResult(
            success=True,
            output=f"Created {path} with {_count_label(line_count, 'line')}\n{preview}",
        )

    async def str_replace(
        self,
        path: str,
        old_str: str,
        new_str: str,
        replace_all: bool = False,
    ) -> ToolResult:
        """Replace the first (or every) occurrence of ``old_str``."""
        target = self.resolve(path)
        if not target.is_file():
            return ToolResult(success=False, error=f"File not found: {path}")
        if not old_str:
            return ToolResult(success=False, error="old_str must not be empty")

        before = target.read_text(encoding="utf-8")
        if old_str not in before:
            return ToolResult(success=False, error=f"String not found in file: {old_str!r}")

        after = before.replace(old_str, new_str) if replace_all else before.replace(old_str, new_str, 1)
        diff = unified_diff(path, before, after)

        if self.broker.needs_confirmation("file_operations"):
            await self.broker.require(
                ConfirmationRequest(
                    operation="Edit file" + (" (replace all)" if replace_all else ""),
                    target=str(target),
                    content=diff,
                    category="file_operations",
                )
            )

        target.write_text(after, encoding="utf-8")
        self.edit_history.append(
            EditRecord(command="str_replace", path=str(target), old_str=old_str, new_str=new_str)
        )
        log.info("File edited", path=str(target), replace_all=replace_all)
        return ToolResult(success=True, output=diff)


class ViewFileTool(Tool):
    """View a file or list a directory."""

    name = "view_file"
    description = (
        "View the contents of a file with line numbers, or list a directory. "
        "Without a range only the first 10 lines are shown."
    )
    parameters = {
        "type": "object",
        "properties": {
            "path": {
                "type": "string",
                "description": "Path to the file or directory",
            },
            "start_line": {
                "type": "number",
                "description": "First line to show (1-indexed, optional)",
            },
            "end_line": {
                "type": "number",
                "description": "Last line to show (inclusive, optional)",
            },
        },
        "required": ["path"],
    }

    def __init__(self, editor: TextEditor):
        self.editor = editor

    async def execute(
        self,
        path: str,
        start_line: int | None = None,
        end_line: int | None = None,
        **kwargs: Any,
    ) -> ToolResult:
        view_range = None
        if start_line is not None or end_line is not None:
            start = int(start_line or 1)
            view_range = (start, int(end_line if end_line is not None else start))
        return self.editor.view(path, view_range)


class CreateFileTool(Tool):
    """Create a new file."""

    name = "create_file"
    description = "Create a new file with the given content. Parent directories are created as needed."
    parameters = {
        "type": "object",
        "properties": {
            "path": {
                "type": "string",
                "description": "Path of the file to create",
            },
            "content": {
                "type": "string",
                "description": "Full content of the new file",
            },
        },
        "required": ["path", "content"],
    }

    def __init__(self, editor: TextEditor):
        self.editor = editor

    async def execute(self, path: str, content: str, **kwargs: Any) -> ToolResult:
        return await self.editor.create(path, content)


class StrReplaceTool(Tool):
    """Edit a file by exact string replacement."""

    name = "str_replace_editor"
    description = (
        "Replace text in an existing file. old_str must match exactly; "
        "only the first occurrence is replaced unless replace_all is true."
    )
    parameters = {
        "type": "object",
        "properties": {
            "path": {
                "type": "string",
                "description": "Path of the file to edit",
            },
            "old_str": {
                "type": "string",
                "description": "Exact text to replace",
            },
            "new_str": {
                "type": "string",
                "description": "Replacement text",
            },
            "replace_all": {
                "type": "boolean",
                "description": "Replace every occurrence (default: false)",
            },
        },
        "required": ["path", "old_str", "new_str"],
    }

    def __init__(self, editor: TextEditor):
        self.editor = editor

    async def execute(
        self,
        path: str,
        old_str: str,
        new_str: str,
        replace_all: bool = False,
        **kwargs: Any,
    ) -> ToolResult:
        return await self.editor.str_replace(path, old_str, new_str, bool(replace_all))
