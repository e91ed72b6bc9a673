"""Command-line interface for ccremote.

``ccremote serve`` runs the bridge. The ``hook`` sub-commands are meant to be
registered as Claude Code hooks: they read the hook payload from stdin and
forward it to the bridge.
"""

from __future__ import annotations

import argparse
import json
import sys
from collections.abc import Sequence
from typing import Any, TextIO

import httpx
from loguru import logger

from ccremote import __version__
from ccremote.web.protocol import deny_envelope
from ccremote.web.settings import BridgeSettings


def create_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ccremote",
        description="Drive Claude Code sessions remotely with tool approvals",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    sub = parser.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="Run the bridge server")
    serve.add_argument("--host", default=None, help="Bind host (default: CCREMOTE_HOST)")
    serve.add_argument("--port", type=int, default=None, help="Bind port (default: CCREMOTE_PORT)")
    serve.add_argument("--log-level", default="info", help="Uvicorn log level (default: info)")

    hook = sub.add_parser("hook", help="Claude Code hook entry points")
    hook_sub = hook.add_subparsers(dest="hook_command", required=True)
    for name, help_text in (
        ("pre-tool-use", "Ask the bridge whether a tool call may run"),
        ("session", "Report the current session to the bridge"),
    ):
        p = hook_sub.add_parser(name, help=help_text)
        p.add_argument("--url", default=None, help="Bridge URL (default: CCREMOTE_BRIDGE_URL)")
        p.add_argument(
            "--timeout",
            type=float,
            default=None,
            help="Seconds to wait for the bridge (default: permission timeout + 30)",
        )
    return parser


def _headers(settings: BridgeSettings) -> dict[str, str]:
    if settings.hook_token:
        return {"Authorization": f"Bearer {settings.hook_token}"}
    return {}


def _read_payload(stdin: TextIO) -> Any:
    raw = stdin.read()
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return None


def run_pre_tool_use(
    settings: BridgeSettings,
    stdin: TextIO,
    stdout: TextIO,
    *,
    url: str | None = None,
    timeout: float | None = None,
    transport: httpx.BaseTransport | None = None,
) -> int:
    """Forward a PreToolUse payload; any failure prints a deny envelope."""
    payload = _read_payload(stdin)
    base = (url or settings.bridge_url).rstrip("/")
    wait_s = timeout if timeout is not None else settings.permission_timeout_s + 30.0

    if payload is None:
        envelope = deny_envelope("Malformed permission request")
    else:
        try:
            with httpx.Client(timeout=wait_s, transport=transport) as client:
                resp = client.post(f"{base}/api/hooks/pre-tool-use", json=payload, headers=_headers(settings))
                resp.raise_for_status()
                envelope = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"Bridge unreachable, denying tool call: {e}")
            envelope = deny_envelope(f"Remote bridge unavailable: {e}")

    stdout.write(json.dumps(envelope))
    stdout.write("\n")
    return 0


def run_session_report(
    settings: BridgeSettings,
    stdin: TextIO,
    *,
    url: str | None = None,
    timeout: float | None = None,
    transport: httpx.BaseTransport | None = None,
) -> int:
    payload = _read_payload(stdin)
    if payload is None:
        logger.warning("Session hook received non-JSON input")
        return 0
    base = (url or settings.bridge_url).rstrip("/")
    try:
        with httpx.Client(timeout=timeout or 10.0, transport=transport) as client:
            resp = client.post(f"{base}/api/hooks/session", json=payload, headers=_headers(settings))
            resp.raise_for_status()
    except httpx.HTTPError as e:
        logger.warning(f"Could not report session to bridge: {e}")
    return 0


def run_server(settings: BridgeSettings, *, host: str | None, port: int | None, log_level: str) -> int:
    import uvicorn

    from ccremote.web.app import create_app

    try:
        uvicorn.run(
            create_app(settings),
            host=host or settings.host,
            port=port or settings.port,
            log_level=log_level,
        )
    except (KeyboardInterrupt, SystemExit):
        pass
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    args = create_parser().parse_args(argv)
    settings = BridgeSettings()

    if args.command == "serve":
        return run_server(settings, host=args.host, port=args.port, log_level=args.log_level)

    # Hook output goes to stdout; keep logs on stderr only.
    logger.remove()
    logger.add(sys.stderr, level="WARNING")
    if args.hook_command == "pre-tool-use":
        return run_pre_tool_use(settings, sys.stdin, sys.stdout, url=args.url, timeout=args.timeout)
    return run_session_report(settings, sys.stdin, url=args.url, timeout=args.timeout)


if __name__ == "__main__":
    raise SystemExit(main())
