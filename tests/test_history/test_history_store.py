import pytest

from shellpilot.exceptions import ConfigurationError
from shellpilot.history import HistoryStore
from shellpilot.models import ChatEntry, ToolCall, ToolResult


def _entries(store: HistoryStore) -> list[str]:
    return [entry.content for entry in store.entries()]


def test_retains_last_100_entries_in_order():
    store = HistoryStore()
    for index in range(150):
        store.append(ChatEntry.user(f"m{index}"))

    assert len(store) == 100
    assert _entries(store) == [f"m{index}" for index in range(50, 150)]


def test_display_window_is_last_20():
    store = HistoryStore()
    for index in range(30):
        store.append(ChatEntry.user(f"m{index}"))

    window = store.display_window()

    assert [entry.content for entry in window] == [f"m{index}" for index in range(10, 30)]


def test_batch_append_trims_once():
    store = HistoryStore(max_entries=5, display_size=2)
    store.append([ChatEntry.user(str(index)) for index in range(8)])

    assert _entries(store) == ["3", "4", "5", "6", "7"]


def test_extend_streaming_grows_active_entry():
    store = HistoryStore()
    store.append(ChatEntry.assistant("Hel", streaming=True))

    assert store.extend_streaming("lo") is True
    assert store.streaming_entry is not None
    assert store.streaming_entry.content == "Hello"


def test_extend_streaming_without_active_entry_returns_false():
    store = HistoryStore()
    store.append(ChatEntry.assistant("done"))

    assert store.extend_streaming("more") is False
    assert _entries(store) == ["done"]


def test_finish_streaming_attaches_tool_calls():
    store = HistoryStore()
    store.append(ChatEntry.assistant("Let me check", streaming=True))
    calls = (ToolCall(id="c1", name="bash", raw_arguments='{"command": "ls"}'),)

    assert store.finish_streaming(tool_calls=calls) is True

    entry = store.entries()[0]
    assert entry.is_streaming is False
    assert entry.tool_calls == calls
    assert store.streaming_entry is None


def test_eviction_never_drops_streaming_entry():
    store = HistoryStore(max_entries=1, display_size=1)
    store.append(ChatEntry.assistant("partial", streaming=True))

    with pytest.raises(ConfigurationError):
        store.append(ChatEntry.user("next"))


def test_resolve_tool_call_replaces_placeholder():
    store = HistoryStore()
    call = ToolCall(id="c1", name="bash")
    store.append(ChatEntry.pending_tool_call(call))

    assert store.resolve_tool_call("c1", ToolResult(success=True, output="file.txt")) is True

    entry = store.entries()[0]
    assert entry.kind == "tool_result"
    assert entry.content == "file.txt"
    assert entry.tool_call == call


def test_resolve_unknown_tool_call_leaves_history_unchanged():
    store = HistoryStore()
    store.append(ChatEntry.pending_tool_call(ToolCall(id="c1", name="bash")))
    before = store.entries()

    assert store.resolve_tool_call("missing", ToolResult(success=True, output="x")) is False
    assert store.entries() == before


def test_failed_result_shows_error_text():
    store = HistoryStore()
    store.append(ChatEntry.pending_tool_call(ToolCall(id="c1", name="bash")))

    store.resolve_tool_call("c1", ToolResult(success=False, error="Command blocked"))

    assert store.entries()[0].content == "Command blocked"


@pytest.mark.parametrize("max_entries,display_size", [(0, 0), (10, 11), (10, -1)])
def test_invalid_configuration_rejected(max_entries, display_size):
    with pytest.raises(ConfigurationError):
        HistoryStore(max_entries=max_entries, display_size=display_size)


def test_clear_empties_store():
    store = HistoryStore()
    store.append(ChatEntry.user("hi"))

    store.clear()

    assert len(store) == 0
    assert store.display_window() == []
