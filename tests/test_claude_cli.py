import asyncio
import json
import os
import sys
from pathlib import Path

import pytest

from ccremote.providers.base import CancelToken, ProcessFailed, SpawnError, TurnCancelled, TurnTimeout
from ccremote.providers.claude_cli import ClaudeCliProvider, parse_claude_output

posix_only = pytest.mark.skipif(os.name != "posix", reason="uses executable scripts and signals")


def _fake_claude(tmp_path: Path, body: str) -> str:
    script = tmp_path / "claude"
    script.write_text(f"#!{sys.executable}\nimport json, signal, sys, time\n{body}\n", encoding="utf-8")
    script.chmod(0o755)
    return str(script)


def test_parse_result_field() -> None:
    resp = parse_claude_output(json.dumps({"result": "done", "session_id": "new-id"}), "old-id")
    assert resp.text == "done"
    assert resp.session_id == "new-id"
    assert resp.raw == {"result": "done", "session_id": "new-id"}


def test_parse_content_blocks_and_session_fallback() -> None:
    out = json.dumps({"content": [{"type": "text", "text": "a"}, {"type": "tool_use"}, {"type": "text", "text": "b"}]})
    resp = parse_claude_output(out, "old-id")
    assert resp.text == "a\nb"
    assert resp.session_id == "old-id"


def test_parse_non_json() -> None:
    assert parse_claude_output("  plain text \n", None).text == "plain text"
    assert parse_claude_output("", "s").text == "(empty response)"


def test_build_args_resume() -> None:
    p = ClaudeCliProvider()
    assert p.build_args("hi", None) == ["-p", "hi", "--output-format", "json"]
    assert p.build_args("hi", "abc")[-2:] == ["--resume", "abc"]


@posix_only
@pytest.mark.asyncio
async def test_run_success(tmp_path: Path) -> None:
    binary = _fake_claude(
        tmp_path,
        'print(json.dumps({"result": "cwd=" + __import__("os").getcwd(), "session_id": sys.argv[-1]}))',
    )
    provider = ClaudeCliProvider(binary=binary, timeout_s=10)
    resp = await provider.run("hello", session_id="sess-1", cwd=str(tmp_path))

    assert resp.text == f"cwd={tmp_path.resolve()}" or resp.text == f"cwd={tmp_path}"
    assert resp.session_id == "sess-1"


@posix_only
@pytest.mark.asyncio
async def test_run_nonzero_exit(tmp_path: Path) -> None:
    binary = _fake_claude(tmp_path, 'sys.stderr.write("no such session"); sys.exit(2)')
    provider = ClaudeCliProvider(binary=binary, timeout_s=10)

    with pytest.raises(ProcessFailed) as exc_info:
        await provider.run("hello", session_id=None, cwd=str(tmp_path))
    assert "no such session" in str(exc_info.value)
    assert exc_info.value.returncode == 2


@pytest.mark.asyncio
async def test_spawn_failure(tmp_path: Path) -> None:
    provider = ClaudeCliProvider(binary=str(tmp_path / "missing-binary"))
    with pytest.raises(SpawnError):
        await provider.run("hello", session_id=None, cwd=str(tmp_path))


@posix_only
@pytest.mark.asyncio
async def test_timeout_terminates(tmp_path: Path) -> None:
    binary = _fake_claude(tmp_path, "time.sleep(30)")
    provider = ClaudeCliProvider(binary=binary, timeout_s=0.5, kill_grace_s=2)

    with pytest.raises(TurnTimeout):
        await provider.run("hello", session_id=None, cwd=str(tmp_path))


@posix_only
@pytest.mark.asyncio
async def test_ignored_sigterm_escalates_to_kill(tmp_path: Path) -> None:
    binary = _fake_claude(
        tmp_path,
        'signal.signal(signal.SIGTERM, signal.SIG_IGN)\nprint("ready", flush=True)\ntime.sleep(30)',
    )
    provider = ClaudeCliProvider(binary=binary, timeout_s=0.5, kill_grace_s=0.5)

    loop = asyncio.get_running_loop()
    started = loop.time()
    with pytest.raises(TurnTimeout):
        await provider.run("hello", session_id=None, cwd=str(tmp_path))
    assert loop.time() - started < 10


@posix_only
@pytest.mark.asyncio
async def test_cancel_token(tmp_path: Path) -> None:
    binary = _fake_claude(tmp_path, "time.sleep(30)")
    provider = ClaudeCliProvider(binary=binary, timeout_s=30, kill_grace_s=1)
    token = CancelToken()

    task = asyncio.create_task(provider.run("hello", session_id=None, cwd=str(tmp_path), token=token))
    await asyncio.sleep(0.2)
    token.cancel("stop please")

    with pytest.raises(TurnCancelled, match="stop please"):
        await task
