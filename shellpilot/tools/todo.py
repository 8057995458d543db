"""Session-scoped todo list tools."""

from dataclasses import dataclass, replace
from typing import Any

from shellpilot.logging import get_logger
from shellpilot.tools.registry import Tool, ToolResult

log = get_logger(__name__)

STATUSES = ("pending", "in_progress", "completed")
PRIORITIES = ("high", "medium", "low")
_STATUS_MARKS = {"pending": "[ ]", "in_progress": "[~]", "completed": "[x]"}


@dataclass(frozen=True)
class TodoItem:
    id: str
    content: str
    status: str = "pending"
    priority: str = "medium"


class TodoList:
    """In-memory todo list owned by one session."""

    def __init__(self) -> None:
        self.items: list[TodoItem] = []

    def replace_all(self, raw_items: list[dict[str, Any]]) -> None:
        items: list[TodoItem] = []
        seen: set[str] = set()
        for index in range(len(raw_items)):
            item = self._parse(raw_items[index], default_id=str(index + 1))
            if item.id in seen:
                raise ValueError(f"Duplicate todo id: {item.id}")
            seen.add(item.id)
            items.append(item)
        self.items = items

    def apply_updates(self, updates: list[dict[str, Any]]) -> list[str]:
        """Apply partial updates by id; returns the ids that were not found."""
        missing: list[str] = []
        for update in updates:
            if not isinstance(update, dict):
                raise ValueError("Each update must be an object")
            todo_id = str(update.get("id", "")).strip()
            position = self._index_of(todo_id)
            if position is None:
                missing.append(todo_id)
                continue
            current = self.items[position]
            changes: dict[str, str] = {}
            if "status" in update:
                changes["status"] = self._check("status", update["status"], STATUSES)
            if "priority" in update:
                changes["priority"] = self._check("priority", update["priority"], PRIORITIES)
            content = update.get("content", update.get("task"))
            if content is not None:
                changes["content"] = str(content).strip() or current.content
            self.items[position] = replace(current, **changes)
        return missing

    def format(self) -> str:
        if not self.items:
            return "Todo list is empty"
        lines = [
            f"{_STATUS_MARKS[item.status]} {item.content} ({item.priority}) #{item.id}"
            for item in self.items
        ]
        done = sum(1 for item in self.items if item.status == "completed")
        lines.append(f"{done}/{len(self.items)} completed")
        return "\n".join(lines)

    def _index_of(self, todo_id: str) -> int | None:
        for index in range(len(self.items)):
            if self.items[index].id == todo_id:
                return index
        return None

    @staticmethod
    def _check(field_name: str, value: Any, allowed: tuple[str, ...]) -> str:
        text = str(value or "").strip().lower()
        if text not in allowed:
            raise ValueError(f"Invalid {field_name} '{value}'. Expected one of: {', '.join(allowed)}")
        return text

    @classmethod
    def _parse(cls, raw: dict[str, Any], default_id: str) -> TodoItem:
        if not isinstance(raw, dict):
            raise ValueError("Each todo must be an object")
        content = str(raw.get("content", raw.get("task", "")) or "").strip()
        if not content:
            raise ValueError("Todo content is required")
        return TodoItem(
            id=str(raw.get("id") or default_id).strip(),
            content=content,
            status=cls._check("status", raw.get("status", "pending"), STATUSES),
            priority=cls._check("priority", raw.get("priority", "medium"), PRIORITIES),
        )


_TODO_ITEM_SCHEMA = {
    "type": "object",
    "properties": {
        "id": {"type": "string", "description": "Unique identifier"},
        "content": {"type": "string", "description": "Task description"},
        "status": {"type": "string", "enum": list(STATUSES)},
        "priority": {"type": "string", "enum": list(PRIORITIES)},
    },
    "required": ["content"],
}


class CreateTodoListTool(Tool):
    """Create (or replace) the session todo list."""

    name = "create_todo_list"
    description = "Create a todo list to plan and track multi-step work. Replaces any existing list."
    parameters = {
        "type": "object",
        "properties": {
            "todos": {
                "type": "array",
                "items": _TODO_ITEM_SCHEMA,
                "description": "Todo items",
            },
        },
        "required": ["todos"],
    }

    def __init__(self, todo_list: TodoList):
        self.todo_list = todo_list

    async def execute(self, todos: list[dict[str, Any]], **kwargs: Any) -> ToolResult:
        if not isinstance(todos, list):
            return ToolResult(success=False, error="todos must be a list")
        try:
            self.todo_list.replace_all(todos)
        except ValueError as e:
            return ToolResult(success=False, error=str(e))
        log.debug("Todo list created", count=len(self.todo_list.items))
        return ToolResult(success=True, output=self.todo_list.format())


class UpdateTodoListTool(Tool):
    """Update status, priority or content of existing todos."""

    name = "update_todo_list"
    description = "Update existing todo items by id (status, priority or content)."
    parameters = {
        "type": "object",
        "properties": {
            "updates": {
                "type": "array",
                "items": {
                    "type": "object",
                    "properties": {
                        "id": {"type": "string"},
                        "status": {"type": "string", "enum": list(STATUSES)},
                        "priority": {"type": "string", "enum": list(PRIORITIES)},
                        "content": {"type": "string"},
                    },
                    "required": ["id"],
                },
                "description": "Updates to apply",
            },
        },
        "required": ["updates"],
    }

    def __init__(self, todo_list: TodoList):
        self.todo_list = todo_list

    async def execute(self, updates: list[dict[str, Any]], **kwargs: Any) -> ToolResult:
        if not isinstance(updates, list):
            return ToolResult(success=False, error="updates must be a list")
        try:
            missing = self.todo_list.apply_updates(updates)
        except ValueError as e:
            return ToolResult(success=False, error=str(e))
        if missing:
            return ToolResult(success=False, error=f"Todo not found: {', '.join(missing)}")
        return ToolResult(success=True, output=self.todo_list.format())
