import asyncio

import pytest
import requests

from goldqa.src.backend.mcp_client import MCPClient, ToolResult
from goldqa.src.utils.config import MCPConfig
from goldqa.src.utils.errors import BackendUnavailableError, ToolCallError


class _Response:
    def __init__(self, status_code=200, payload=None, text=""):
        self.status_code = status_code
        self._payload = payload
        self.text = text
        self.content = b"" if payload is None else b"{}"

    def json(self):
        return self._payload


class _Session:
    def __init__(self, response=None, error=None):
        self.response = response or _Response(payload={"success": True})
        self.error = error
        self.posts = []
        self.closed = False

    def post(self, url, json=None, timeout=None):
        self.posts.append({"url": url, "json": json, "timeout": timeout})
        if self.error:
            raise self.error
        return self.response

    def close(self):
        self.closed = True


def _client(session):
    return MCPClient(MCPConfig(host_url="http://mcp.test", request_timeout=3, session_id="s1"), session=session)


def test_call_posts_action_with_session_id():
    session = _Session(_Response(payload={"success": True, "url": "http://app.test"}))

    result = asyncio.run(_client(session).navigate("http://app.test"))

    assert result.success is True
    assert result.get("url") == "http://app.test"
    assert session.posts[0] == {
        "url": "http://mcp.test/execute",
        "json": {"action": "navigate", "params": {"session_id": "s1", "url": "http://app.test"}},
        "timeout": 3,
    }


def test_tool_failure_is_a_failed_result():
    session = _Session(_Response(payload={"success": False, "error": "element not found"}))

    result = asyncio.run(_client(session).click("#missing"))

    assert result.success is False
    assert result.error == "element not found"
    with pytest.raises(ToolCallError, match="element not found"):
        MCPClient.require(result)


def test_client_error_status_is_a_failed_result():
    session = _Session(_Response(status_code=400, payload={"detail": "unknown action"}))

    result = asyncio.run(_client(session).call("hover", selector="#x"))

    assert result.success is False
    assert result.error == "unknown action"


@pytest.mark.parametrize(
    "session",
    [
        _Session(_Response(status_code=502, text="bad gateway")),
        _Session(error=requests.ConnectionError("connection refused")),
    ],
)
def test_transport_problems_raise(session):
    with pytest.raises(BackendUnavailableError):
        asyncio.run(_client(session).current_url())


def test_elements_of_ignores_malformed_payloads():
    assert MCPClient.elements_of(ToolResult("query_elements", True, {"elements": [{"id": "a"}, "junk"]})) == [{"id": "a"}]
    assert MCPClient.elements_of(ToolResult("query_elements", False, {"elements": [{"id": "a"}]})) == []
    assert MCPClient.elements_of(ToolResult("query_elements", True, {"elements": None})) == []


def test_press_key_targets_selector_only_when_given():
    session = _Session()
    client = _client(session)

    asyncio.run(client.press_key("Escape"))
    asyncio.run(client.press_key("Enter", selector="#q"))

    assert session.posts[0]["json"]["params"] == {"session_id": "s1", "key": "Escape"}
    assert session.posts[1]["json"]["params"] == {"session_id": "s1", "key": "Enter", "selector": "#q"}


def test_close_swallows_transport_errors():
    session = _Session(error=requests.ConnectionError("gone"))

    _client(session).close()

    assert session.closed is True
