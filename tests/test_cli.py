import io
import json

import httpx
import pytest

from ccremote.cli import create_parser, run_pre_tool_use, run_session_report
from ccremote.web.settings import BridgeSettings


def _settings(**overrides) -> BridgeSettings:
    return BridgeSettings(_env_file=None, bridge_url="http://bridge:4097", **overrides)


def _decision(out: io.StringIO) -> dict:
    return json.loads(out.getvalue())["hookSpecificOutput"]


def test_pre_tool_use_forwards_bridge_answer() -> None:
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["auth"] = request.headers.get("authorization")
        seen["body"] = json.loads(request.content)
        return httpx.Response(
            200,
            json={"hookSpecificOutput": {"hookEventName": "PreToolUse", "permissionDecision": "allow"}},
        )

    payload = {"session_id": "S1", "tool_name": "Bash", "tool_input": {"command": "ls"}}
    out = io.StringIO()
    code = run_pre_tool_use(
        _settings(hook_token="tok"),
        io.StringIO(json.dumps(payload)),
        out,
        transport=httpx.MockTransport(handler),
    )

    assert code == 0
    assert _decision(out)["permissionDecision"] == "allow"
    assert seen == {
        "url": "http://bridge:4097/api/hooks/pre-tool-use",
        "auth": "Bearer tok",
        "body": payload,
    }


@pytest.mark.parametrize(
    "handler",
    [
        lambda request: httpx.Response(500, text="boom"),
        lambda request: httpx.Response(200, text="<html>"),
    ],
)
def test_pre_tool_use_denies_on_bridge_error(handler) -> None:
    out = io.StringIO()
    code = run_pre_tool_use(
        _settings(),
        io.StringIO('{"session_id": "S1", "tool_name": "Bash", "tool_input": {}}'),
        out,
        transport=httpx.MockTransport(handler),
    )
    assert code == 0
    assert _decision(out)["permissionDecision"] == "deny"


def test_pre_tool_use_denies_when_unreachable() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    out = io.StringIO()
    run_pre_tool_use(
        _settings(),
        io.StringIO('{"session_id": "S1", "tool_name": "Edit", "tool_input": {}}'),
        out,
        transport=httpx.MockTransport(handler),
    )
    decision = _decision(out)
    assert decision["permissionDecision"] == "deny"
    assert "unavailable" in decision["permissionDecisionReason"]


def test_pre_tool_use_denies_garbage_stdin() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("bridge must not be called")

    out = io.StringIO()
    run_pre_tool_use(_settings(), io.StringIO("not json"), out, transport=httpx.MockTransport(handler))
    assert _decision(out)["permissionDecision"] == "deny"


def test_session_report_never_fails() -> None:
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request.url.path)
        return httpx.Response(503)

    code = run_session_report(
        _settings(),
        io.StringIO('{"session_id": "S1", "cwd": "/w"}'),
        url="http://other:1/",
        transport=httpx.MockTransport(handler),
    )
    assert code == 0
    assert calls == ["/api/hooks/session"]
    assert run_session_report(_settings(), io.StringIO(""), transport=httpx.MockTransport(handler)) == 0


def test_parser() -> None:
    parser = create_parser()
    args = parser.parse_args(["serve", "--port", "9000"])
    assert (args.command, args.port, args.host) == ("serve", 9000, None)

    args = parser.parse_args(["hook", "pre-tool-use", "--timeout", "5"])
    assert (args.command, args.hook_command, args.timeout) == ("hook", "pre-tool-use", 5.0)
