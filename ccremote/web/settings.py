"""Runtime settings for the ccremote bridge.

Everything is read from environment variables (prefix ``CCREMOTE_``) or a
local ``.env`` file:
- server binding and bearer tokens for the operator / hook endpoints
- passphrase lock and idle auto-lock
- queue bound, Claude Code binary and timeouts
- permission deadline and the base-safe tool set
"""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


# Tools that cannot change the filesystem or run commands.
DEFAULT_SAFE_TOOLS: tuple[str, ...] = (
    "Read",
    "Glob",
    "Grep",
    "LS",
    "NotebookRead",
    "TodoRead",
    "TodoWrite",
)


class BridgeSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="CCREMOTE_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Server
    host: str = "127.0.0.1"
    port: int = Field(default=4097, ge=1, le=65535)
    bridge_url: str = "http://127.0.0.1:4097"

    # Optional bearer tokens (empty disables the check)
    auth_token: str = ""
    hook_token: str = ""

    # Security gate
    passphrase: str = ""
    auto_lock_minutes: float = Field(default=15.0, ge=0)
    lock_sweep_interval_s: float = Field(default=60.0, gt=0)

    # Execution queue / external process
    max_queue_size: int = Field(default=5, ge=1)
    claude_binary: str = "claude"
    claude_timeout_s: float = Field(default=300.0, gt=0)
    claude_kill_grace_s: float = Field(default=5.0, ge=0)
    allow_fresh_sessions: bool = False
    default_cwd: str = "~"

    # Permission broker
    permission_timeout_s: float = Field(default=600.0, gt=0)
    safe_tools: list[str] = Field(default_factory=lambda: list(DEFAULT_SAFE_TOOLS))

    # Event stream
    event_buffer_size: int = Field(default=2000, ge=1)
    sse_wait_timeout_s: float = 15.0
