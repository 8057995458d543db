"""Tools package for ShellPilot."""

from shellpilot.tools.registry import (
    ExternalToolProvider,
    Tool,
    ToolResult,
    ToolRouter,
)
from shellpilot.tools.search import SearchTool
from shellpilot.tools.shell import ShellTool
from shellpilot.tools.text_editor import (
    CreateFileTool,
    StrReplaceTool,
    TextEditor,
    ViewFileTool,
)
from shellpilot.tools.todo import CreateTodoListTool, TodoList, UpdateTodoListTool

__all__ = [
    "ExternalToolProvider",
    "Tool",
    "ToolResult",
    "ToolRouter",
    "SearchTool",
    "ShellTool",
    "CreateFileTool",
    "StrReplaceTool",
    "TextEditor",
    "ViewFileTool",
    "CreateTodoListTool",
    "TodoList",
    "UpdateTodoListTool",
]
