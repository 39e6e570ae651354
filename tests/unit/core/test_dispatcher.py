"""Unit tests for ProtocolDispatcher and the batch helpers."""

import anyio
import mcp.types as types
import pytest

from mcp_sysinfo.core.dispatcher import (
    DEFAULT_PROTOCOL_VERSION,
    collapse_responses,
    parse_messages,
)
from mcp_sysinfo.core.errors import SESSION_NOT_FOUND, InvalidRequestError, ParseError
from mcp_sysinfo.core.models import SessionKind
from mcp_sysinfo.tools.monitor import StreamingCall


def request(method, request_id=1, params=None):
    message = {"jsonrpc": "2.0", "id": request_id, "method": method}
    if params is not None:
        message["params"] = params
    return message


def call_tool(name, arguments=None, request_id=2):
    return request("tools/call", request_id, {"name": name, "arguments": arguments or {}})


class TestParseMessages:
    def test_single_message(self):
        messages, is_batch = parse_messages(b'{"jsonrpc": "2.0", "id": 1, "method": "ping"}')
        assert is_batch is False
        assert messages == [{"jsonrpc": "2.0", "id": 1, "method": "ping"}]

    def test_batch(self):
        messages, is_batch = parse_messages('[{"id": 1}, {"id": 2}]')
        assert is_batch is True
        assert len(messages) == 2

    def test_malformed_json(self):
        with pytest.raises(ParseError):
            parse_messages(b"{not json")

    def test_empty_batch(self):
        with pytest.raises(InvalidRequestError):
            parse_messages(b"[]")

    def test_collapse_responses(self):
        assert collapse_responses([]) is None
        assert collapse_responses([{"id": 1}]) == {"id": 1}
        assert collapse_responses([{"id": 1}, {"id": 2}]) == [{"id": 1}, {"id": 2}]


@pytest.mark.asyncio
class TestInitialize:
    async def test_initialize_creates_explicit_session(self, dispatcher, store, initialize_request):
        result = await dispatcher.dispatch(initialize_request, None)

        assert result.created_session is True
        session = store.get(result.session_id)
        assert session is not None
        assert session.kind is SessionKind.EXPLICIT
        assert session.initialized is True
        assert session.metadata["client_name"] == "test-client"

        body = result.response["result"]
        assert result.response["id"] == 1
        assert body["protocolVersion"] == "2025-03-26"
        assert body["capabilities"] == {"tools": {"listChanged": False}}
        assert body["serverInfo"] == {"name": "test-server", "version": "0.0.1"}
        assert body["sessionId"] == result.session_id
        assert body["instructions"] == "test instructions"

    async def test_unsupported_protocol_version_falls_back(self, dispatcher):
        result = await dispatcher.dispatch(request("initialize", params={"protocolVersion": "1999-01-01"}), None)
        assert result.response["result"]["protocolVersion"] == DEFAULT_PROTOCOL_VERSION

    async def test_initialize_with_session_id_is_rejected(self, dispatcher, session, initialize_request):
        result = await dispatcher.dispatch(initialize_request, session.id)

        assert result.created_session is False
        assert result.response["error"]["code"] == types.INVALID_REQUEST

    async def test_each_initialize_creates_a_new_session(self, dispatcher, store, initialize_request):
        first = await dispatcher.dispatch(initialize_request, None)
        second = await dispatcher.dispatch(initialize_request, None)

        assert first.session_id != second.session_id
        assert len(store) == 2


@pytest.mark.asyncio
class TestRequests:
    async def test_ping(self, dispatcher, session):
        result = await dispatcher.dispatch(request("ping", 5), session.id)
        assert result.response == {"jsonrpc": "2.0", "id": 5, "result": {}}

    async def test_tools_list(self, dispatcher, session):
        result = await dispatcher.dispatch(request("tools/list"), session.id)

        tools = {tool["name"]: tool for tool in result.response["result"]["tools"]}
        assert set(tools) == {"get_system_info", "system_monitor_stream"}
        assert tools["system_monitor_stream"]["inputSchema"]["properties"].keys() == {"duration", "interval"}
        assert "description" in tools["get_system_info"]

    async def test_get_system_info(self, dispatcher, session, fake_collector):
        result = await dispatcher.dispatch(call_tool("get_system_info", {"random_string": "x"}), session.id)

        body = result.response["result"]
        assert body["isError"] is False
        assert body["content"][0]["type"] == "text"
        assert "Cores: 8" in body["content"][0]["text"]
        assert fake_collector.calls == 1

    async def test_get_system_info_collector_failure(self, dispatcher, session, fake_collector):
        fake_collector.fail = OSError("permission denied")

        result = await dispatcher.dispatch(call_tool("get_system_info"), session.id)

        assert result.response["error"]["code"] == types.INTERNAL_ERROR
        assert "permission denied" in result.response["error"]["message"]

    async def test_streaming_tool_returns_deferred_call(self, dispatcher, session):
        result = await dispatcher.dispatch(
            call_tool("system_monitor_stream", {"duration": "1s", "interval": "250ms"}, request_id=9),
            session.id,
        )

        assert result.response is None
        assert isinstance(result.call, StreamingCall)
        assert result.call.request_id == 9
        assert result.call.session is session
        assert result.call.runner.settings.interval == 0.25

    @pytest.mark.parametrize(
        "arguments",
        [{"duration": "abc"}, {"interval": "0s"}, {"duration": "-5s"}, {"interval": "-1s"}],
    )
    async def test_streaming_tool_invalid_arguments(self, dispatcher, session, arguments):
        result = await dispatcher.dispatch(call_tool("system_monitor_stream", arguments), session.id)

        assert result.call is None
        assert result.response["error"]["code"] == types.INVALID_PARAMS

    async def test_unknown_tool(self, dispatcher, session):
        result = await dispatcher.dispatch(call_tool("nope"), session.id)

        assert result.response["error"]["code"] == types.METHOD_NOT_FOUND
        assert result.response["error"]["message"] == "Tool not found"

    async def test_unknown_tool_reported_before_session_lookup(self, dispatcher):
        result = await dispatcher.dispatch(call_tool("nope"), "missing-session")
        assert result.response["error"]["code"] == types.METHOD_NOT_FOUND

    async def test_tools_call_without_name(self, dispatcher, session):
        result = await dispatcher.dispatch(request("tools/call", params={}), session.id)
        assert result.response["error"]["code"] == types.INVALID_PARAMS

    async def test_unknown_method(self, dispatcher, session):
        result = await dispatcher.dispatch(request("resources/list"), session.id)
        assert result.response["error"]["code"] == types.METHOD_NOT_FOUND

    async def test_unknown_session(self, dispatcher):
        result = await dispatcher.dispatch(request("ping"), "missing-session")
        assert result.response["error"]["code"] == SESSION_NOT_FOUND

    async def test_missing_session(self, dispatcher):
        result = await dispatcher.dispatch(request("tools/list"), None)
        assert result.response["error"]["code"] == SESSION_NOT_FOUND

    async def test_handler_crash_becomes_internal_error(self, dispatcher, session, monkeypatch):
        def boom(*args, **kwargs):
            raise RuntimeError("kaboom")

        monkeypatch.setattr(dispatcher._registry, "list_tools", boom)

        result = await dispatcher.dispatch(request("tools/list", 4), session.id)

        assert result.response["id"] == 4
        assert result.response["error"]["code"] == types.INTERNAL_ERROR

    async def test_tool_without_handler_is_internal_error(self, dispatcher, session, monkeypatch):
        monkeypatch.setattr(dispatcher._registry.get("get_system_info"), "handler", None)

        result = await dispatcher.dispatch(call_tool("get_system_info", request_id=6), session.id)

        assert result.response["id"] == 6
        assert result.response["error"] == {
            "code": types.INTERNAL_ERROR,
            "message": "Tool get_system_info has no handler",
        }


@pytest.mark.asyncio
class TestInvalidMessages:
    async def test_invalid_message_gets_null_id(self, dispatcher):
        result = await dispatcher.dispatch({"jsonrpc": "2.0"}, None)
        assert result.response["id"] is None
        assert result.response["error"]["code"] == types.INVALID_REQUEST

    async def test_non_object_message(self, dispatcher):
        result = await dispatcher.dispatch(17, None)
        assert result.response["error"]["code"] == types.INVALID_REQUEST

    async def test_invalid_message_echoes_valid_id(self, dispatcher):
        result = await dispatcher.dispatch({"jsonrpc": "2.0", "id": 3, "method": 12}, None)
        assert result.response["id"] == 3

    async def test_client_response_is_ignored(self, dispatcher, session):
        result = await dispatcher.dispatch({"jsonrpc": "2.0", "id": 1, "result": {}}, session.id)
        assert result.response is None
        assert result.call is None


@pytest.mark.asyncio
class TestAutoProvisionedSessions:
    async def test_allow_list_before_initialized(self, dispatcher, store):
        session = store.create(SessionKind.AUTO_PROVISIONED)

        ping = await dispatcher.dispatch(request("ping"), session.id)
        listing = await dispatcher.dispatch(request("tools/list"), session.id)

        assert ping.response["result"] == {}
        assert "tools" in listing.response["result"]

    async def test_tool_call_rejected_before_initialized(self, dispatcher, store):
        session = store.create(SessionKind.AUTO_PROVISIONED)

        result = await dispatcher.dispatch(call_tool("get_system_info"), session.id)

        assert result.response["error"]["code"] == types.INVALID_REQUEST
        assert result.response["error"]["message"] == "Session not initialized"

    async def test_initialized_notification_unlocks_session(self, dispatcher, store, initialized_notification):
        session = store.create(SessionKind.AUTO_PROVISIONED)

        result = await dispatcher.dispatch(initialized_notification, session.id)
        assert result.response is None
        assert session.initialized is True

        call = await dispatcher.dispatch(call_tool("get_system_info"), session.id)
        assert call.response["result"]["isError"] is False

    async def test_legacy_initialized_notification(self, dispatcher, store):
        session = store.create(SessionKind.AUTO_PROVISIONED)
        await dispatcher.dispatch({"jsonrpc": "2.0", "method": "initialized"}, session.id)
        assert session.initialized is True


@pytest.mark.asyncio
class TestNotifications:
    async def test_notification_for_unknown_session_is_dropped(self, dispatcher, initialized_notification):
        result = await dispatcher.dispatch(initialized_notification, "missing")
        assert result.response is None

    async def test_unknown_notification_is_dropped(self, dispatcher, session):
        result = await dispatcher.dispatch({"jsonrpc": "2.0", "method": "notifications/whatever"}, session.id)
        assert result.response is None

    async def test_cancelled_notification_cancels_call(self, dispatcher, session):
        with anyio.CancelScope() as scope:
            session.register_call(42, scope)
            await dispatcher.dispatch(
                {"jsonrpc": "2.0", "method": "notifications/cancelled", "params": {"requestId": 42}},
                session.id,
            )
            await anyio.sleep(1)

        assert scope.cancelled_caught

    async def test_cancelled_notification_with_bad_params(self, dispatcher, session):
        result = await dispatcher.dispatch(
            {"jsonrpc": "2.0", "method": "notifications/cancelled", "params": "oops"},
            session.id,
        )
        assert result.response is None
