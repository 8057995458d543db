"""Text and file-name search under the session working directory."""

import asyncio
import fnmatch
import os
import re
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from shellpilot.logging import get_logger
from shellpilot.tools.registry import Tool, ToolResult

log = get_logger(__name__)

DEFAULT_MAX_RESULTS = 50
DEFAULT_MAX_FILE_BYTES = 1_000_000
_SKIP_DIRS = frozenset({".git", "node_modules", "__pycache__", ".venv", "venv", ".mypy_cache", ".pytest_cache"})


@dataclass(frozen=True)
class SearchHit:
    path: str
    line: int | None = None
    text: str = ""

    def format(self) -> str:
        if self.line is None:
            return self.path
        return f"{self.path}:{self.line}: {self.text}"


def _split_patterns(value: str | None) -> list[str]:
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


def _matches_any(rel_path: str, patterns: list[str]) -> bool:
    name = os.path.basename(rel_path)
    return any(fnmatch.fnmatch(rel_path, pat) or fnmatch.fnmatch(name, pat) for pat in patterns)


def compile_query(query: str, regex: bool, case_sensitive: bool, whole_word: bool) -> re.Pattern[str]:
    """Build the line matcher. Raises re.error for an invalid regex."""
    body = query if regex else re.escape(query)
    if whole_word:
        body = rf"\b(?:{body})\b"
    return re.compile(body, 0 if case_sensitive else re.IGNORECASE)


class SearchTool(Tool):
    """Search file contents and/or file names."""

    name = "search"
    description = (
        "Search for text inside files and/or for file names under the working directory. "
        "Supports include/exclude glob patterns, regex, whole-word and case-sensitive matching."
    )
    parameters = {
        "type": "object",
        "properties": {
            "query": {
                "type": "string",
                "description": "Text or pattern to search for",
            },
            "search_type": {
                "type": "string",
                "enum": ["text", "files", "both"],
                "description": "Search file contents, file names, or both (default: both)",
            },
            "include_pattern": {
                "type": "string",
                "description": "Comma-separated glob patterns of files to include (e.g. '*.py')",
            },
            "exclude_pattern": {
                "type": "string",
                "description": "Comma-separated glob patterns of files to skip",
            },
            "case_sensitive": {
                "type": "boolean",
                "description": "Match case exactly (default: false)",
            },
            "whole_word": {
                "type": "boolean",
                "description": "Match whole words only (default: false)",
            },
            "regex": {
                "type": "boolean",
                "description": "Treat query as a regular expression (default: false)",
            },
            "max_results": {
                "type": "number",
                "description": "Maximum number of results (default: 50)",
            },
            "file_types": {
                "type": "array",
                "items": {"type": "string"},
                "description": "File extensions to search, e.g. ['py', 'ts']",
            },
            "include_hidden": {
                "type": "boolean",
                "description": "Include hidden files and directories (default: false)",
            },
        },
        "required": ["query"],
    }

    def __init__(
        self,
        cwd: Callable[[], str] | None = None,
        max_results: int = DEFAULT_MAX_RESULTS,
        max_file_bytes: int = DEFAULT_MAX_FILE_BYTES,
    ):
        self._cwd = cwd or os.getcwd
        self.default_max_results = max_results
        self.max_file_bytes = max_file_bytes

    async def execute(
        self,
        query: str,
        search_type: str = "both",
        include_pattern: str | None = None,
        exclude_pattern: str | None = None,
        case_sensitive: bool = False,
        whole_word: bool = False,
        regex: bool = False,
        max_results: int | None = None,
        file_types: list[str] | None = None,
        include_hidden: bool = False,
        **kwargs: Any,
    ) -> ToolResult:
        if not query:
            return ToolResult(success=False, error="Search query must not be empty")
        if search_type not in ("text", "files", "both"):
            return ToolResult(success=False, error=f"Unknown search_type: {search_type}")
        try:
            matcher = compile_query(query, bool(regex), bool(case_sensitive), bool(whole_word))
        except re.error as e:
            return ToolResult(success=False, error=f"Invalid regex: {e}")

        limit = max(1, int(max_results or self.default_max_results))
        root = Path(self._cwd())
        loop = asyncio.get_running_loop()
        hits = await loop.run_in_executor(
            None,
            lambda: self._walk(
                root,
                matcher,
                search_type,
                _split_patterns(include_pattern),
                _split_patterns(exclude_pattern),
                [ext.lstrip(".").lower() for ext in (file_types or []) if ext],
                bool(include_hidden),
                limit,
            ),
        )

        log.debug("Search finished", query=query, root=str(root), hits=len(hits))
        if not hits:
            return ToolResult(success=True, output=f"No results found for '{query}'")
        lines = [hit.format() for hit in hits]
        header = f"Found {len(hits)} result{'' if len(hits) == 1 else 's'} for '{query}'"
        if len(hits) >= limit:
            header += f" (limited to {limit})"
        return ToolResult(success=True, output=header + ":\n" + "\n".join(lines))

    def _walk(
        self,
        root: Path,
        matcher: re.Pattern[str],
        search_type: str,
        includes: list[str],
        excludes: list[str],
        extensions: list[str],
        include_hidden: bool,
        limit: int,
    ) -> list[SearchHit]:
        hits: list[SearchHit] = []
        for dirpath, dirnames, filenames in os.walk(root):
            dirnames[:] = sorted(
                d for d in dirnames
                if d not in _SKIP_DIRS and (include_hidden or not d.startswith("."))
            )
            for filename in sorted(filenames):
                if not include_hidden and filename.startswith("."):
                    continue
                full = Path(dirpath) / filename
                rel = full.relative_to(root).as_posix()
                if includes and not _matches_any(rel, includes):
                    continue
                if excludes and _matches_any(rel, excludes):
                    continue
                if extensions and full.suffix.lstrip(".").lower() not in extensions:
                    continue

                if search_type in ("files", "both") and matcher.search(filename):
                    hits.append(SearchHit(path=rel))
                    if len(hits) >= limit:
                        return hits
                if search_type in ("text", "both"):
                    for hit in self._search_file(full, rel, matcher):
                        hits.append(hit)
                        if len(hits) >= limit:
                            return hits
        return hits

    def _search_file(self, path: Path, rel: str, matcher: re.Pattern[str]) -> list[SearchHit]:
        try:
            if path.stat().st_size > self.max_file_bytes:
                return []
            raw = path.read_bytes()
        except OSError as e:
            log.debug("Skipping unreadable file", path=rel, error=str(e))
            return []
        if b"\x00" in raw[:8192]:
            return []
        text = raw.decode("utf-8", errors="replace")
        return [
            SearchHit(path=rel, line=number, text=line.strip()[:200])
            for number, line in enumerate(text.splitlines(), start=1)
            if matcher.search(line)
        ]
