import pytest

from reader_agent.agent.extraction import extract_session_id, extract_text, extract_tool_list
from reader_agent.agent.registry import ToolDescriptor, parse_tools, select_search_tool
from reader_agent.errors import ToolNotFoundError


def test_session_id_lookup_order() -> None:
    payload = {"result": {"sessionId": "from-result"}, "sessionId": "from-top"}
    headers = {"mcp-session-id": "from-header"}

    assert extract_session_id(payload, headers) == "from-result"
    assert extract_session_id({"sessionId": "from-top"}, headers) == "from-top"
    assert extract_session_id({}, headers) == "from-header"
    assert extract_session_id({}, {"session-id": "legacy-header"}) == "legacy-header"
    assert extract_session_id({}, {}) is None


@pytest.mark.parametrize(
    "payload",
    [
        {"result": {"tools": [{"name": "search"}]}},
        {"result": {"capabilities": {"tools": [{"name": "search"}]}}},
        {"tools": [{"name": "search"}]},
        {"result": [{"name": "search"}]},
        [{"name": "search"}],
    ],
)
def test_tool_list_shapes(payload) -> None:
    assert extract_tool_list(payload) == [{"name": "search"}]


def test_tool_list_missing_returns_none() -> None:
    assert extract_tool_list({"result": {"capabilities": {"tools": {"listChanged": True}}}}) is None


@pytest.mark.parametrize(
    ("payload", "expected"),
    [
        ("plain", "plain"),
        ({"response": "from response", "content": "ignored"}, "from response"),
        ({"content": "from content", "result": "ignored"}, "from content"),
        (
            {"messages": [{"role": "user", "content": "q"}, {"role": "assistant", "content": "a"}]},
            "a",
        ),
        ({"messages": [{"role": "user", "content": "only"}]}, "only"),
        ({"outputs": ["one", {"k": 1}]}, 'one\n{"k": 1}'),
        ({"result": "from result"}, "from result"),
    ],
)
def test_text_extraction_order(payload, expected) -> None:
    assert extract_text(payload) == expected


def test_text_extraction_unwraps_json_rpc_content_parts() -> None:
    payload = {
        "jsonrpc": "2.0",
        "id": "1",
        "result": {
            "content": [
                {"type": "text", "text": "first line"},
                {"type": "text", "text": "second line"},
            ],
            "isError": False,
        },
    }

    assert extract_text(payload) == "first line\nsecond line"


def test_text_extraction_falls_back_to_json() -> None:
    assert extract_text({"unexpected": 1}) == '{"unexpected": 1}'
    assert extract_text(None) == ""


def test_parse_tools_skips_unusable_entries() -> None:
    tools = parse_tools(
        [
            {"name": "bing_search", "inputSchema": {"type": "object"}, "vendor": "x"},
            "fetch",
            {"description": "no name"},
            42,
        ]
    )

    assert [tool.label for tool in tools] == ["bing_search", "fetch"]
    assert tools[0].input_schema == {"type": "object"}
    assert tools[0].model_extra == {"vendor": "x"}


def test_select_search_tool_matches_name_or_id() -> None:
    tools = [ToolDescriptor(name="fetch"), ToolDescriptor(id="web_search")]

    assert select_search_tool(tools).label == "web_search"
    assert select_search_tool([ToolDescriptor(name="BingLookup")]).label == "BingLookup"


def test_select_search_tool_lists_available_tools() -> None:
    tools = [ToolDescriptor(name="fetch"), ToolDescriptor(name="weather")]

    with pytest.raises(ToolNotFoundError, match="Available tools: fetch, weather"):
        select_search_tool(tools, service_id="svc")
