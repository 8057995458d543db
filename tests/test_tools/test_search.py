from pathlib import Path

import pytest

from shellpilot.tools.search import SearchTool


@pytest.fixture
def project(tmp_path: Path) -> Path:
    (tmp_path / "src").mkdir()
    (tmp_path / "src" / "app.py").write_text("def main():\n    return Main()\n", encoding="utf-8")
    (tmp_path / "src" / "util.ts").write_text("export const mainValue = 1;\n", encoding="utf-8")
    (tmp_path / "README.md").write_text("Run main to start\n", encoding="utf-8")
    (tmp_path / ".hidden").mkdir()
    (tmp_path / ".hidden" / "secret.py").write_text("main = 1\n", encoding="utf-8")
    return tmp_path


def _tool(root: Path) -> SearchTool:
    return SearchTool(cwd=lambda: str(root))


@pytest.mark.asyncio
async def test_text_search_case_insensitive_by_default(project: Path):
    result = await _tool(project).execute(query="main", search_type="text")

    assert result.success is True
    assert "src/app.py:1: def main():" in result.output
    assert "src/app.py:2: return Main()" in result.output
    assert "README.md:1:" in result.output
    assert ".hidden" not in result.output


@pytest.mark.asyncio
async def test_case_sensitive_and_whole_word(project: Path):
    result = await _tool(project).execute(
        query="main", search_type="text", case_sensitive=True, whole_word=True
    )

    assert "src/app.py:1:" in result.output
    assert "Main()" not in result.output
    assert "mainValue" not in result.output


@pytest.mark.asyncio
async def test_file_type_and_include_filters(project: Path):
    by_type = await _tool(project).execute(query="main", search_type="text", file_types=["ts"])
    by_glob = await _tool(project).execute(query="main", search_type="text", include_pattern="*.md")

    assert "src/util.ts" in by_type.output
    assert "app.py" not in by_type.output
    assert "README.md" in by_glob.output
    assert "app.py" not in by_glob.output


@pytest.mark.asyncio
async def test_exclude_pattern(project: Path):
    result = await _tool(project).execute(query="main", search_type="text", exclude_pattern="*.py,*.ts")

    assert "README.md" in result.output
    assert ".py" not in result.output


@pytest.mark.asyncio
async def test_file_name_search(project: Path):
    result = await _tool(project).execute(query="util", search_type="files")

    assert "src/util.ts" in result.output
    assert ":1:" not in result.output


@pytest.mark.asyncio
async def test_include_hidden(project: Path):
    result = await _tool(project).execute(query="main", search_type="text", include_hidden=True)

    assert ".hidden/secret.py" in result.output


@pytest.mark.asyncio
async def test_regex_and_max_results(project: Path):
    result = await _tool(project).execute(query=r"ma\w+", regex=True, search_type="text", max_results=1)

    assert "limited to 1" in result.output
    assert len(result.output.splitlines()) == 2


@pytest.mark.asyncio
async def test_invalid_regex_is_failure(project: Path):
    result = await _tool(project).execute(query="(", regex=True)

    assert result.success is False
    assert "Invalid regex" in result.error


@pytest.mark.asyncio
async def test_no_results(project: Path):
    result = await _tool(project).execute(query="zzz-not-here")

    assert result.success is True
    assert result.output == "No results found for 'zzz-not-here'"
